"""
Embedding Matcher: Accept/reject face embeddings by euclidean distance.

Implementation of the MatchPolicy interface defined in interfaces.py.

The live embedding is compared against the enrolled one with plain euclidean
distance, and accepted iff the distance is strictly below the threshold.

The threshold is only meaningful for the extractor model it was tuned on.
``matching.model_thresholds`` maps model names (or full ``backend/model``
ids) to their threshold; ``matching.threshold`` applies to any model without
an entry.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np

from core.matching.interfaces import MatchOutcome, MatchPolicy

logger = logging.getLogger(__name__)

# Fallback for models without a tuned entry. Fits 128-d unnormalized face
# descriptors; unit-length ArcFace/FaceNet embeddings need a larger value.
DEFAULT_THRESHOLD = 0.55


def threshold_for_model(config: Optional[Dict[str, Any]], model_id: Optional[str] = None) -> float:
    """
    Pick the threshold for an extractor model.

    Looks up ``model_thresholds`` by the full model id, then by the model
    name after the last "/", then falls back to ``threshold``.
    """
    config = config or {}
    per_model = config.get("model_thresholds") or {}
    if model_id:
        for key in (model_id, model_id.rsplit("/", 1)[-1]):
            if key in per_model:
                return float(per_model[key])
    return float(config.get("threshold", DEFAULT_THRESHOLD))


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """
    Euclidean distance between two embeddings: sqrt(sum((a_i - b_i)^2)).

    Args:
        a: (D,) embedding.
        b: (D,) embedding.

    Returns:
        Non-negative distance. 0.0 for identical vectors.

    Raises:
        ValueError: If the embeddings have different dimensionality.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()

    if a.shape[0] != b.shape[0]:
        raise ValueError(
            f"Embedding dimension mismatch: {a.shape[0]} != {b.shape[0]}"
        )

    return float(np.sqrt(np.sum((a - b) ** 2)))


class EuclideanMatchPolicy(MatchPolicy):
    """
    Hard-threshold euclidean match policy.

    Args:
        config: Dictionary with optional keys:
            - threshold: Accept iff distance < threshold (default 0.55)
            - model_thresholds: Per-model overrides of ``threshold``
        model_id: Extractor model the embeddings come from.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, model_id: Optional[str] = None):
        threshold = threshold_for_model(config, model_id)
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def distance(self, live_embedding: np.ndarray, stored_embedding: np.ndarray) -> float:
        return euclidean_distance(live_embedding, stored_embedding)

    def decide(self, distance: float) -> MatchOutcome:
        # Strict comparison: a distance equal to the threshold rejects.
        if distance < self._threshold:
            return MatchOutcome.ACCEPT
        return MatchOutcome.REJECT

    def describe(self, live_embedding: np.ndarray) -> Dict[str, Any]:
        details = super().describe(live_embedding)
        details["method"] = "euclidean"
        return details
