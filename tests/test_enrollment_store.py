"""
Tests for the EnrollmentStore module.

This test suite verifies:
- Empty store reads
- put/get of the single enrollment slot
- Unconditional overwrite
- Validation of stored records on read (corrupt, wrong dimension, wrong model)
- clear()

Run with: pytest tests/test_enrollment_store.py -v
"""

import os
import sys
import sqlite3
import tempfile
import shutil
from datetime import datetime, timezone

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.enrollment_store import DEFAULT_KEY, EnrollmentRecord, EnrollmentStore
from core.errors import IncompatibleTemplateError, NoRegisteredTemplate


class TestEnrollmentStore:
    """Tests for the EnrollmentStore class."""

    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for testing."""
        temp_dir = tempfile.mkdtemp(prefix="enrollment_test_")
        yield temp_dir
        shutil.rmtree(temp_dir)

    @pytest.fixture
    def db_path(self, temp_dir):
        return os.path.join(temp_dir, "nested", "enrollment.sqlite")

    @pytest.fixture
    def store(self, db_path):
        """Create an EnrollmentStore instance for testing."""
        s = EnrollmentStore(db_path=db_path, expected_dim=128, extractor_id="stub/fixed")
        yield s
        s.close()

    @pytest.fixture
    def embedding(self):
        return np.random.default_rng(7).normal(size=128).astype(np.float32)

    def test_init_creates_database(self, db_path):
        """Initialization creates parent directories and the database."""
        store = EnrollmentStore(db_path=db_path)
        assert os.path.exists(db_path)
        store.close()

    def test_get_empty_returns_none(self, store):
        """Nothing enrolled yet: get() returns None and does not raise."""
        assert store.get() is None

    def test_put_and_get(self, store, embedding):
        """A stored embedding is read back unchanged."""
        written = store.put(embedding)
        loaded = store.get()

        assert isinstance(loaded, EnrollmentRecord)
        assert loaded.embedding.dtype == np.float32
        assert np.array_equal(loaded.embedding, embedding)
        assert loaded.extractor_id == "stub/fixed"
        assert loaded.created_at == written.created_at
        assert loaded.created_at.tzinfo is not None

    def test_put_accepts_lists(self, store):
        """Plain lists are accepted and stored as float32."""
        store.put([0.5] * 128)
        assert np.allclose(store.get().embedding, 0.5)

    def test_put_overwrites(self, store):
        """A second put replaces the first; nothing is merged."""
        first = np.zeros(128, dtype=np.float32)
        second = np.ones(128, dtype=np.float32)

        store.put(first)
        store.put(second)

        assert np.array_equal(store.get().embedding, second)
        conn = sqlite3.connect(str(store.db_path))
        try:
            count = conn.execute("SELECT COUNT(*) FROM enrollments").fetchone()[0]
        finally:
            conn.close()
        assert count == 1

    def test_persists_across_instances(self, db_path, embedding):
        """The record survives reopening the store."""
        writer = EnrollmentStore(db_path=db_path, expected_dim=128)
        writer.put(embedding)
        writer.close()

        reader = EnrollmentStore(db_path=db_path, expected_dim=128)
        try:
            assert np.array_equal(reader.get().embedding, embedding)
        finally:
            reader.close()

    def test_stored_as_json_array(self, store, embedding):
        """The persisted representation is a JSON array of floats under the key."""
        store.put(embedding)
        conn = sqlite3.connect(str(store.db_path))
        try:
            row = conn.execute(
                "SELECT embedding FROM enrollments WHERE key = ?", (DEFAULT_KEY,)
            ).fetchone()
        finally:
            conn.close()
        assert row[0].startswith("[") and row[0].endswith("]")

    def test_put_wrong_dimension_raises(self, store):
        """Writing an embedding of the wrong size is rejected."""
        with pytest.raises(ValueError, match="dimensions"):
            store.put(np.zeros(64, dtype=np.float32))
        assert store.get() is None

    def test_put_invalid_embedding_raises(self, store):
        """Empty, multi-dimensional and non-finite embeddings are rejected."""
        with pytest.raises(ValueError):
            store.put([])
        with pytest.raises(ValueError):
            store.put(np.zeros((2, 64)))
        bad = np.zeros(128, dtype=np.float32)
        bad[3] = np.nan
        with pytest.raises(ValueError):
            store.put(bad)

    def test_get_wrong_dimension_raises(self, db_path):
        """A record of another dimensionality is flagged, not compared."""
        legacy = EnrollmentStore(db_path=db_path)
        legacy.put(np.zeros(64, dtype=np.float32))
        legacy.close()

        store = EnrollmentStore(db_path=db_path, expected_dim=128)
        try:
            with pytest.raises(IncompatibleTemplateError):
                store.get()
        finally:
            store.close()

    def test_get_other_extractor_raises(self, db_path, embedding):
        """A record produced by another model is flagged."""
        writer = EnrollmentStore(db_path=db_path, expected_dim=128, extractor_id="facenet/vggface2")
        writer.put(embedding)
        writer.close()

        store = EnrollmentStore(db_path=db_path, expected_dim=128, extractor_id="insightface/buffalo_l")
        try:
            with pytest.raises(IncompatibleTemplateError):
                store.get()
        finally:
            store.close()

    def test_incompatible_is_no_registered_template(self):
        """Incompatible records are handled like an empty store."""
        assert issubclass(IncompatibleTemplateError, NoRegisteredTemplate)

    @pytest.mark.parametrize("payload", [
        "not json",
        '{"a": 1}',
        '["x", "y"]',
        "[]",
        "[1.0, NaN]",
        "[1" + "0" * 400 + ", 0, 0]",
    ])
    def test_get_corrupt_record_raises(self, store, payload):
        """Unparsable records are flagged instead of crashing."""
        conn = sqlite3.connect(str(store.db_path))
        try:
            conn.execute(
                "INSERT OR REPLACE INTO enrollments (key, embedding, extractor_id, created_at) "
                "VALUES (?, ?, ?, ?)",
                (DEFAULT_KEY, payload, None, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

        with pytest.raises(IncompatibleTemplateError):
            store.get()

    def test_clear(self, store, embedding):
        """clear() empties the slot."""
        store.put(embedding)
        assert store.clear() is True
        assert store.get() is None

    def test_clear_empty(self, store):
        """Clearing an empty slot reports that nothing was removed."""
        assert store.clear() is False

    def test_keys_are_independent(self, db_path, embedding):
        """Stores with different keys do not see each other's records."""
        a = EnrollmentStore(db_path=db_path, key="slot_a")
        b = EnrollmentStore(db_path=db_path, key="slot_b")
        try:
            a.put(embedding)
            assert b.get() is None
        finally:
            a.close()
            b.close()

    def test_record_summary(self, store, embedding):
        """Summary carries metadata but never the embedding values."""
        summary = store.put(embedding).to_summary()
        assert summary["embedding_dim"] == 128
        assert summary["extractor_id"] == "stub/fixed"
        assert "embedding" not in summary
