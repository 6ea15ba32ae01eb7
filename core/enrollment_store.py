"""
Enrollment Store Module

This module persists the single enrolled face embedding used by the login
session.

The store is a one-slot key-value store backed by SQLite:
- One row per key in the ``enrollments`` table
- The embedding is serialized as a JSON array of floats
- Every write is a single transaction, so a reader never observes a
  half-written record (a crash mid-write leaves the previous record intact)

The EnrollmentStore class provides:
- put: Overwrite the enrolled embedding unconditionally
- get: Read the enrolled embedding (None when nothing is enrolled)
- clear: Remove the enrolled embedding

Reads are validated against the current extractor's contract. A record with
the wrong dimensionality, produced by another extractor model, or that cannot
be parsed raises IncompatibleTemplateError instead of being compared.

Usage:
    from core.enrollment_store import EnrollmentStore

    store = EnrollmentStore(db_path="storage/enrollment.sqlite", expected_dim=512)
    store.put(embedding, extractor_id="insightface/buffalo_l")
    record = store.get()
    if record is not None:
        print(record.created_at, record.embedding.shape)
"""

import json
import math
import sqlite3
import threading
import logging
from pathlib import Path
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

from core.errors import IncompatibleTemplateError

# Setup logging
logger = logging.getLogger(__name__)

# Well-known key for the single-user enrollment slot
DEFAULT_KEY = "face_descriptor_demo"


@dataclass(frozen=True)
class EnrollmentRecord:
    """
    The enrolled reference embedding.

    Attributes:
        embedding: Face embedding, shape (D,), dtype float32.
        created_at: UTC time the record was written.
        extractor_id: Identifier of the extractor model that produced the
                      embedding (e.g. "insightface/buffalo_l"), or None if
                      unknown.
    """

    embedding: np.ndarray
    created_at: datetime
    extractor_id: Optional[str] = None

    @property
    def embedding_dim(self) -> int:
        """Return the dimensionality of the stored embedding."""
        return int(self.embedding.shape[0])

    def to_summary(self) -> Dict[str, Any]:
        """Metadata about the record, without the embedding values."""
        return {
            "embedding_dim": self.embedding_dim,
            "created_at": self.created_at.isoformat(),
            "extractor_id": self.extractor_id,
        }


def _validate_embedding(values: Union[np.ndarray, Sequence[float]]) -> np.ndarray:
    """Coerce to a 1-D float32 array and reject empty or non-finite input."""
    embedding = np.asarray(values, dtype=np.float32)
    if embedding.ndim != 1 or embedding.shape[0] == 0:
        raise ValueError(f"embedding must be a non-empty 1-D vector, got shape {embedding.shape}")
    if not np.all(np.isfinite(embedding)):
        raise ValueError("embedding contains NaN or infinite values")
    return embedding


class EnrollmentStore:
    """
    Single-slot durable storage for the enrolled face embedding.

    Attributes:
        db_path: Path to the SQLite database file.
        key: Key of the enrollment slot.
        expected_dim: Dimensionality the current extractor produces.
                      None disables the dimensionality check.
        extractor_id: Identifier of the current extractor model.
                      None disables the model check.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        key: str = DEFAULT_KEY,
        expected_dim: Optional[int] = None,
        extractor_id: Optional[str] = None,
    ):
        """
        Initialize the EnrollmentStore.

        Creates the database and its schema if they don't exist.

        Args:
            db_path: Path to SQLite database file.
            key: Key of the enrollment slot.
            expected_dim: Embedding dimensionality accepted on read and write.
            extractor_id: Extractor model accepted on read.
        """
        self.db_path = Path(db_path)
        self.key = key
        self.expected_dim = expected_dim
        self.extractor_id = extractor_id
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

        logger.info(f"EnrollmentStore initialized: db={self.db_path}, key={self.key}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get or create the SQLite connection.

        Returns:
            SQLite connection with Row factory for dict-like access.
        """
        if self._conn is None:
            # The session may touch the store from worker threads; access is
            # serialized by self._lock.
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """Create the enrollments table if it doesn't exist."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS enrollments (
                    key TEXT PRIMARY KEY,
                    embedding TEXT NOT NULL,
                    extractor_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.commit()
        logger.debug("Database schema initialized")

    def put(
        self,
        embedding: Union[np.ndarray, Sequence[float]],
        extractor_id: Optional[str] = None,
    ) -> EnrollmentRecord:
        """
        Overwrite the enrolled embedding.

        The write is a single transaction: either the new record is stored
        completely or the previous one is left untouched.

        Args:
            embedding: (D,) face embedding.
            extractor_id: Model that produced the embedding. Defaults to the
                          store's extractor_id.

        Returns:
            The EnrollmentRecord that was written.

        Raises:
            ValueError: If the embedding is malformed or has the wrong
                        dimensionality.
        """
        vector = _validate_embedding(embedding)
        if self.expected_dim is not None and vector.shape[0] != self.expected_dim:
            raise ValueError(
                f"embedding has {vector.shape[0]} dimensions, "
                f"extractor produces {self.expected_dim}"
            )

        record = EnrollmentRecord(
            embedding=vector,
            created_at=datetime.now(timezone.utc),
            extractor_id=extractor_id if extractor_id is not None else self.extractor_id,
        )

        payload = json.dumps([float(v) for v in vector])

        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO enrollments (key, embedding, extractor_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (self.key, payload, record.extractor_id, record.created_at.isoformat()),
                )

        logger.info(
            f"Stored enrollment '{self.key}' "
            f"(dim={record.embedding_dim}, extractor={record.extractor_id})"
        )
        return record

    def get(self) -> Optional[EnrollmentRecord]:
        """
        Read the enrolled embedding.

        Returns:
            EnrollmentRecord, or None if nothing has been enrolled.

        Raises:
            IncompatibleTemplateError: If the stored record cannot be parsed,
                has the wrong dimensionality, or was produced by a different
                extractor model.
        """
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT embedding, extractor_id, created_at FROM enrollments WHERE key = ?",
                (self.key,),
            ).fetchone()

        if row is None:
            return None

        try:
            values = json.loads(row["embedding"])
            if not isinstance(values, list) or not all(
                isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
                for v in values
            ):
                raise ValueError("stored embedding is not a list of finite numbers")
            embedding = _validate_embedding(values)
            created_at = datetime.fromisoformat(row["created_at"])
        except (ValueError, TypeError, OverflowError) as e:
            logger.error(f"Corrupt enrollment record '{self.key}': {e}")
            raise IncompatibleTemplateError(
                log_message=f"Corrupt enrollment record '{self.key}': {e}"
            ) from e

        if self.expected_dim is not None and embedding.shape[0] != self.expected_dim:
            message = (
                f"Enrollment '{self.key}' has {embedding.shape[0]} dimensions, "
                f"extractor produces {self.expected_dim}"
            )
            logger.warning(message)
            raise IncompatibleTemplateError(log_message=message)

        stored_extractor = row["extractor_id"]
        if (
            self.extractor_id is not None
            and stored_extractor is not None
            and stored_extractor != self.extractor_id
        ):
            message = (
                f"Enrollment '{self.key}' was produced by {stored_extractor}, "
                f"current extractor is {self.extractor_id}"
            )
            logger.warning(message)
            raise IncompatibleTemplateError(log_message=message)

        return EnrollmentRecord(
            embedding=embedding,
            created_at=created_at,
            extractor_id=stored_extractor,
        )

    def clear(self) -> bool:
        """
        Remove the enrolled embedding.

        Returns:
            True if a record was removed, False if the slot was already empty.
        """
        with self._lock:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute("DELETE FROM enrollments WHERE key = ?", (self.key,))
            removed = cursor.rowcount > 0

        if removed:
            logger.info(f"Cleared enrollment '{self.key}'")
        return removed

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("Database connection closed")

    def __del__(self):
        """Clean up resources on deletion."""
        self.close()


# Singleton instance for the store
_store_instance: Optional[EnrollmentStore] = None


def get_enrollment_store(
    db_path: Optional[str] = None,
    expected_dim: Optional[int] = None,
    extractor_id: Optional[str] = None,
) -> EnrollmentStore:
    """
    Get or create the singleton EnrollmentStore instance.

    Args:
        db_path: Path to SQLite database. If None, uses value from config
                 (relative paths are resolved against the project root).
        expected_dim: Embedding dimensionality. If None, uses
                      ``extractor.embedding_dim`` from config.
        extractor_id: Current extractor model identifier.

    Returns:
        The shared EnrollmentStore instance.
    """
    global _store_instance

    if _store_instance is None:
        from core.config import get_extractor_config, get_storage_config, resolve_path

        storage_config = get_storage_config()
        if db_path is None:
            db_path = resolve_path(storage_config["db_path"])
        if expected_dim is None:
            expected_dim = get_extractor_config().get("embedding_dim")

        _store_instance = EnrollmentStore(
            db_path=db_path,
            key=storage_config.get("key", DEFAULT_KEY),
            expected_dim=expected_dim,
            extractor_id=extractor_id,
        )

    return _store_instance
