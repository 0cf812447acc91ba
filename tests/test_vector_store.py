"""
Tests for the SQLite Vector Store

Tests atomic chunk replacement, nearest-neighbour ordering, deduplication
and dimension handling.
"""

import pytest
import sqlite3
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from brain.core.errors import EmbeddingDimensionError, VectorStoreError
from brain.database.vector_store import (
    VectorStore, ChunkRow, NearestChunk, make_chunk_id, deduplicate_by_entity
)

from fixtures.fakes import DIMENSION, axis_vector, vector_with_similarity


def make_rows(count, similarity=0.9, text_prefix="chunk"):
    return [
        ChunkRow(
            chunk_index=i,
            total_chunks=count,
            chunk_start=i * 100,
            chunk_end=i * 100 + 100,
            chunk_text=f"{text_prefix} {i}",
            embedding=vector_with_similarity(similarity),
        )
        for i in range(count)
    ]


class TestVectorStoreWrites:
    """Tests for upsert and delete."""

    @pytest.fixture
    def store(self, tmp_path):
        return VectorStore(tmp_path / "vectors.db", dimension=DIMENSION)

    def test_upsert_and_count(self, store):
        assert store.upsert_chunks("features/auth", make_rows(3)) == 3

        assert store.count_chunks("features/auth") == 3
        assert store.count_rows() == 3
        assert store.count_entities() == 1
        assert store.has_any() is True

    def test_rows_form_complete_sequence(self, store):
        store.upsert_chunks("features/auth", make_rows(4))

        chunks = store.get_chunks("features/auth")

        assert [c.chunk_index for c in chunks] == [0, 1, 2, 3]
        assert all(c.total_chunks == 4 for c in chunks)
        assert chunks[1].chunk_id == make_chunk_id("features/auth", 1)
        assert chunks[0].embedding.shape == (DIMENSION,)

    def test_upsert_replaces_previous_rows(self, store):
        store.upsert_chunks("features/auth", make_rows(3))
        store.upsert_chunks("features/auth", make_rows(1, text_prefix="new"))

        chunks = store.get_chunks("features/auth")

        assert len(chunks) == 1
        assert chunks[0].chunk_text == "new 0"

    def test_upsert_is_idempotent(self, store):
        store.upsert_chunks("a", make_rows(2))
        first = [(c.chunk_id, c.chunk_text) for c in store.get_chunks("a")]

        store.upsert_chunks("a", make_rows(2))

        assert [(c.chunk_id, c.chunk_text) for c in store.get_chunks("a")] == first

    def test_failed_upsert_keeps_previous_rows(self, store):
        """A write that fails mid-transaction leaves the old rows intact."""
        store.upsert_chunks("features/auth", make_rows(2))

        rows = make_rows(3, text_prefix="broken")
        rows[2].chunk_text = None  # violates NOT NULL on insert

        with pytest.raises(VectorStoreError):
            store.upsert_chunks("features/auth", rows)

        chunks = store.get_chunks("features/auth")
        assert [c.chunk_text for c in chunks] == ["chunk 0", "chunk 1"]

    def test_wrong_dimension_rejected(self, store):
        store.upsert_chunks("a", make_rows(1))
        rows = make_rows(1)
        rows[0].embedding = [0.1, 0.2]

        with pytest.raises(EmbeddingDimensionError):
            store.upsert_chunks("a", rows)

        assert store.count_chunks("a") == 1

    def test_non_contiguous_indices_rejected(self, store):
        rows = make_rows(3)
        rows[1].chunk_index = 5

        with pytest.raises(VectorStoreError):
            store.upsert_chunks("a", rows)

    def test_empty_rows_deletes(self, store):
        store.upsert_chunks("a", make_rows(2))

        assert store.upsert_chunks("a", []) == 0
        assert store.count_chunks("a") == 0

    def test_delete_by_entity(self, store):
        store.upsert_chunks("a", make_rows(2))
        store.upsert_chunks("b", make_rows(1))

        assert store.delete_by_entity("a") is True
        assert store.delete_by_entity("a") is False
        assert store.distinct_entities() == ["b"]

    def test_stats(self, store):
        store.upsert_chunks("a", make_rows(2))

        stats = store.stats()

        assert stats["entities"] == 1
        assert stats["rows"] == 2
        assert stats["dimension"] == DIMENSION


class TestNearest:
    """Tests for nearest-neighbour search."""

    @pytest.fixture
    def store(self, tmp_path):
        return VectorStore(tmp_path / "vectors.db", dimension=DIMENSION)

    def test_empty_store(self, store):
        assert store.nearest(axis_vector(), k=10) == []
        assert store.has_any() is False

    def test_ordering_and_cutoff(self, store):
        store.upsert_chunks("b", make_rows(1, similarity=0.9))
        store.upsert_chunks("a", make_rows(1, similarity=0.9))
        store.upsert_chunks("c", make_rows(1, similarity=0.6))
        store.upsert_chunks("d", make_rows(1, similarity=0.2))

        hits = store.nearest(axis_vector(), k=10, max_distance=0.5)

        # ties on distance break on entity_id
        assert [h.entity_id for h in hits] == ["a", "b", "c"]
        assert hits[0].similarity == pytest.approx(0.9, abs=1e-5)
        assert hits[2].distance == pytest.approx(0.4, abs=1e-5)

    def test_k_limits_rows(self, store):
        store.upsert_chunks("a", make_rows(5))

        assert len(store.nearest(axis_vector(), k=2)) == 2
        assert store.nearest(axis_vector(), k=0) == []

    def test_query_dimension_checked(self, store):
        store.upsert_chunks("a", make_rows(1))

        with pytest.raises(EmbeddingDimensionError):
            store.nearest([1.0, 0.0], k=1)

    def test_deterministic(self, store):
        for name in ("n1", "n2", "n3"):
            store.upsert_chunks(name, make_rows(2, similarity=0.8))

        first = store.nearest(axis_vector(), k=6)
        second = store.nearest(axis_vector(), k=6)

        assert [(h.entity_id, h.chunk_index) for h in first] == \
               [(h.entity_id, h.chunk_index) for h in second]
        assert [(h.entity_id, h.chunk_index) for h in first][:2] == [("n1", 0), ("n1", 1)]


class TestDeduplicate:
    """Tests for deduplicate_by_entity."""

    def hit(self, entity_id, index, distance):
        return NearestChunk(
            chunk_id=make_chunk_id(entity_id, index),
            entity_id=entity_id,
            chunk_index=index,
            total_chunks=3,
            chunk_text=f"{entity_id}-{index}",
            distance=distance,
        )

    def test_keeps_best_chunk_per_note(self):
        hits = [
            self.hit("a", 1, 0.20),
            self.hit("a", 0, 0.10),
            self.hit("b", 0, 0.15),
            self.hit("a", 2, 0.30),
        ]

        result = deduplicate_by_entity(hits)

        assert [(h.entity_id, h.chunk_index) for h in result] == [("a", 0), ("b", 0)]

    def test_similarity_is_clamped(self):
        assert self.hit("a", 0, 1.7).similarity == 0.0
        assert self.hit("a", 0, 0.0).similarity == 1.0


class TestDimension:
    """Tests for dimension bookkeeping."""

    def test_mismatch_requires_rebuild(self, tmp_path):
        db_path = tmp_path / "vectors.db"
        VectorStore(db_path, dimension=DIMENSION).upsert_chunks("a", make_rows(1))

        with pytest.raises(EmbeddingDimensionError):
            VectorStore(db_path, dimension=16)

    def test_rebuild_drops_rows(self, tmp_path):
        db_path = tmp_path / "vectors.db"
        VectorStore(db_path, dimension=DIMENSION).upsert_chunks("a", make_rows(1))

        store = VectorStore(db_path, dimension=16, rebuild=True)

        assert store.count_rows() == 0
        assert store.dimension == 16

    def test_reopen_keeps_rows(self, tmp_path):
        db_path = tmp_path / "vectors.db"
        VectorStore(db_path, dimension=DIMENSION).upsert_chunks("a", make_rows(2))

        assert VectorStore(db_path, dimension=DIMENSION).count_chunks("a") == 2

    def test_schema_on_disk(self, tmp_path):
        db_path = tmp_path / "vectors.db"
        VectorStore(db_path, dimension=DIMENSION)

        conn = sqlite3.connect(str(db_path))
        columns = [row[1] for row in conn.execute("PRAGMA table_info(brain_embeddings)")]
        conn.close()

        assert columns == [
            "chunk_id", "entity_id", "chunk_index", "total_chunks",
            "chunk_start", "chunk_end", "chunk_text", "embedding",
        ]
