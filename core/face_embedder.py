"""
Face Embedding Extractor

Turns a camera frame into a fixed-length identity embedding plus the bounding
box of the face it came from, or reports that no face was found.

Supports two backends:
  - insightface (preferred): buffalo_l model bundle with SCRFD + ArcFace R100
  - facenet-pytorch (fallback): MTCNN + InceptionResnetV1 with VGGFace2 pretraining

Embeddings are only comparable between captures made by the same backend and
model. ``model_id`` identifies that pair so enrollments made with one model are
never compared against captures made with another.

Usage:
    from core.face_embedder import FaceEmbedder

    embedder = FaceEmbedder(config)
    embedder.load_model()

    face = embedder.detect(frame_bgr)
    if face is not None:
        print(face.embedding.shape, face.bbox)
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import numpy as np

from core.errors import ModelLoadError

logger = logging.getLogger(__name__)

# Backend availability flags
_INSIGHTFACE_AVAILABLE = False
_FACENET_AVAILABLE = False

try:
    from insightface.app import FaceAnalysis
    _INSIGHTFACE_AVAILABLE = True
except ImportError:
    pass

try:
    from facenet_pytorch import MTCNN, InceptionResnetV1
    import torch
    _FACENET_AVAILABLE = True
except ImportError:
    pass


@dataclass(frozen=True)
class FaceEmbedding:
    """
    A face found in a frame.

    Attributes:
        embedding: Identity embedding, shape (D,), dtype float32.
        bbox: Bounding box (x1, y1, x2, y2) in pixels.
        confidence: Detection confidence score (0.0 to 1.0).
    """

    embedding: np.ndarray
    bbox: Tuple[int, int, int, int]
    confidence: float = 1.0


class EmbeddingExtractor(ABC):
    """
    Interface the session uses to turn frames into embeddings.

    Both methods block; callers on an event loop run them in a worker thread.
    """

    @property
    @abstractmethod
    def embedding_dim(self) -> int:
        """Dimensionality of produced embeddings."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier of the backend/model producing the embeddings."""

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """True once load_model() has succeeded."""

    @abstractmethod
    def load_model(self) -> None:
        """
        Warm up the model. Must be called before detect().

        Raises:
            ModelLoadError: If the model cannot be loaded.
        """

    @abstractmethod
    def detect(self, frame: np.ndarray) -> Optional[FaceEmbedding]:
        """
        Extract the embedding of the most confident face in a frame.

        Args:
            frame: Image in BGR format (H, W, 3), uint8.

        Returns:
            FaceEmbedding, or None if no face is found.
        """


class FaceEmbedder(EmbeddingExtractor):
    """
    Extract identity embeddings from camera frames using ArcFace.

    Args:
        config: Dictionary with keys:
            - model: Model name ("buffalo_l", "buffalo_sc", or "vggface2")
            - embedding_dim: Expected embedding dimension (default 512)
            - device: "cuda" or "cpu"
            - backend: "insightface", "facenet" or "auto"
            - det_size: insightface detector input size (default [640, 640])
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.model_name = config.get("model", "buffalo_l")
        self._embedding_dim = int(config.get("embedding_dim", 512))
        self.device = config.get("device", "cpu")
        self.det_size = tuple(config.get("det_size", (640, 640)))
        self.requested_backend = config.get("backend", "auto")

        self.backend = self._resolve_backend(self.requested_backend)
        self._model = None
        self._detector = None  # For facenet backend
        self._loaded = False

    @staticmethod
    def _resolve_backend(requested: str) -> Optional[str]:
        """Pick the backend to use; None when nothing suitable is installed."""
        if requested == "auto":
            if _INSIGHTFACE_AVAILABLE:
                return "insightface"
            if _FACENET_AVAILABLE:
                return "facenet"
            return None
        return requested

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    @property
    def model_id(self) -> str:
        return f"{self.backend or self.requested_backend}/{self.model_name}"

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load_model(self) -> None:
        """Load the face recognition model. Call this before detect."""
        if self._loaded:
            return

        if self.backend is None:
            raise ModelLoadError(
                log_message=(
                    "No face embedding backend available. "
                    "Install insightface: pip install insightface onnxruntime\n"
                    "Or facenet-pytorch: pip install facenet-pytorch"
                )
            )

        try:
            if self.backend == "insightface":
                self._load_insightface()
            elif self.backend == "facenet":
                self._load_facenet()
            else:
                raise ValueError(f"Unknown backend: {self.backend}")
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(log_message=f"Failed to load {self.model_id}: {e}") from e

        self._loaded = True
        logger.info(f"FaceEmbedder loaded (backend={self.backend}, model={self.model_name})")

    def _load_insightface(self) -> None:
        """Load insightface model bundle."""
        if not _INSIGHTFACE_AVAILABLE:
            raise ModelLoadError(
                log_message="insightface not installed. Run: pip install insightface onnxruntime"
            )

        if self.device == "cuda":
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]

        self._model = FaceAnalysis(name=self.model_name, providers=providers)
        self._model.prepare(ctx_id=0 if self.device == "cuda" else -1, det_size=self.det_size)

    def _load_facenet(self) -> None:
        """Load facenet-pytorch model."""
        if not _FACENET_AVAILABLE:
            raise ModelLoadError(
                log_message="facenet-pytorch not installed. Run: pip install facenet-pytorch"
            )

        device = torch.device(self.device if torch.cuda.is_available() else "cpu")

        self._detector = MTCNN(
            image_size=160,
            margin=20,
            device=device,
            select_largest=True,
        )
        self._model = InceptionResnetV1(pretrained="vggface2").eval().to(device)

    def detect(self, frame: np.ndarray) -> Optional[FaceEmbedding]:
        if not self._loaded:
            self.load_model()

        if self.backend == "insightface":
            face = self._detect_insightface(frame)
        else:
            face = self._detect_facenet(frame)

        if face is not None and face.embedding.shape[0] != self._embedding_dim:
            raise ValueError(
                f"{self.model_id} produced {face.embedding.shape[0]}-d embeddings, "
                f"config expects {self._embedding_dim}"
            )
        return face

    def _detect_insightface(self, frame: np.ndarray) -> Optional[FaceEmbedding]:
        """Extract embedding using insightface."""
        # insightface expects BGR input (same as OpenCV)
        faces = self._model.get(frame)
        if not faces:
            return None

        best_face = max(faces, key=lambda f: f.det_score)
        x1, y1, x2, y2 = (int(round(v)) for v in best_face.bbox)
        return FaceEmbedding(
            embedding=best_face.normed_embedding.astype(np.float32),
            bbox=(x1, y1, x2, y2),
            confidence=float(best_face.det_score),
        )

    def _detect_facenet(self, frame: np.ndarray) -> Optional[FaceEmbedding]:
        """Extract embedding using facenet-pytorch."""
        import cv2

        # facenet-pytorch expects RGB input
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        boxes, probs = self._detector.detect(rgb)
        if boxes is None or len(boxes) == 0:
            return None

        face_tensor = self._detector(rgb)
        if face_tensor is None:
            return None
        if face_tensor.dim() == 3:
            face_tensor = face_tensor.unsqueeze(0)

        device = next(self._model.parameters()).device
        with torch.no_grad():
            embedding = self._model(face_tensor.to(device)).cpu().numpy().flatten()

        # L2 normalize
        norm = np.linalg.norm(embedding)
        if norm > 1e-8:
            embedding = embedding / norm

        # select_largest=True: the tensor belongs to the largest box
        areas = [(b[2] - b[0]) * (b[3] - b[1]) for b in boxes]
        best = int(np.argmax(areas))
        x1, y1, x2, y2 = (int(round(v)) for v in boxes[best])
        return FaceEmbedding(
            embedding=embedding.astype(np.float32),
            bbox=(x1, y1, x2, y2),
            confidence=float(probs[best]),
        )


# ============================================================
# Stub Implementation (tests and hardware-free demos)
# ============================================================


class StubEmbeddingExtractor(EmbeddingExtractor):
    """
    Extractor that returns scripted results instead of running a model.

    Queued results are returned first, in order; after that every frame
    yields ``default``. A queued None (or a None default) means "no face".
    A queued exception instance is raised from detect().

    Args:
        default: Embedding returned once the queue is empty, or None.
        embedding_dim: Reported dimensionality (defaults to len(default), or 128).
        fail_load: If True, load_model() raises ModelLoadError.
        model_id: Reported model identifier.
    """

    def __init__(
        self,
        default: Optional[Iterable[float]] = None,
        embedding_dim: Optional[int] = None,
        fail_load: bool = False,
        model_id: str = "stub/fixed",
    ):
        self.default = None if default is None else np.asarray(default, dtype=np.float32)
        if embedding_dim is None:
            embedding_dim = self.default.shape[0] if self.default is not None else 128
        self._embedding_dim = int(embedding_dim)
        self.fail_load = fail_load
        self._model_id = model_id
        self._loaded = False
        self._queue: deque = deque()
        self.load_calls = 0
        self.detect_calls = 0

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def queue(self, *results: Union[None, Iterable[float], Exception]) -> None:
        """Queue results for the next detect() calls."""
        for result in results:
            if result is None or isinstance(result, Exception):
                self._queue.append(result)
            else:
                self._queue.append(np.asarray(result, dtype=np.float32))

    def load_model(self) -> None:
        self.load_calls += 1
        if self.fail_load:
            raise ModelLoadError(log_message="Stub extractor configured to fail loading")
        self._loaded = True

    def detect(self, frame: np.ndarray) -> Optional[FaceEmbedding]:
        self.detect_calls += 1
        result = self._queue.popleft() if self._queue else self.default
        if isinstance(result, Exception):
            raise result
        if result is None:
            return None

        h, w = frame.shape[:2] if frame is not None else (0, 0)
        return FaceEmbedding(
            embedding=result,
            bbox=(w // 4, h // 4, 3 * w // 4, 3 * h // 4),
            confidence=1.0,
        )
