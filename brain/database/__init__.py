"""
Database Layer for Brain

SQLite-based vector storage for chunk embeddings.

Features:
- Atomic per-note chunk replacement
- Cosine nearest-neighbour search
- Per-note deduplication of chunk hits

Usage:
    from brain.database import VectorStore

    store = VectorStore('~/.brain/vectors.db', dimension=768)
    hits = store.nearest(query_vec, k=30, max_distance=0.3)
"""

from .vector_store import (
    VectorStore, ChunkRow, StoredChunk, NearestChunk,
    make_chunk_id, deduplicate_by_entity,
)

__all__ = [
    'VectorStore',
    'ChunkRow',
    'StoredChunk',
    'NearestChunk',
    'make_chunk_id',
    'deduplicate_by_entity',
]
