"""
SQLite Vector Store for chunk embeddings

One row per chunk:
    (chunk_id PK, entity_id, chunk_index, total_chunks,
     chunk_start, chunk_end, chunk_text, embedding float32[D])

Features:
- Atomic per-note replacement (DELETE + INSERT in one transaction)
- Cosine nearest-neighbour search with numpy over a consistent snapshot
- Deterministic ordering: (distance, entity_id, chunk_index)
- Dimension recorded in brain_meta; changing it requires a rebuild

Usage:
    from brain.database.vector_store import VectorStore, ChunkRow

    store = VectorStore('~/.brain/vectors.db', dimension=768)
    store.upsert_chunks('features/auth', rows)
    hits = store.nearest(query_vec, k=30, max_distance=0.3)
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..core.errors import EmbeddingDimensionError, VectorStoreError

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 768


# =============================================================================
# Schema
# =============================================================================

SCHEMA = '''
CREATE TABLE IF NOT EXISTS brain_meta (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS brain_embeddings (
    chunk_id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    total_chunks INTEGER NOT NULL,
    chunk_start INTEGER NOT NULL,
    chunk_end INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    embedding BLOB NOT NULL  -- little-endian float32[D]
);

CREATE INDEX IF NOT EXISTS idx_embeddings_entity ON brain_embeddings(entity_id);
'''


def make_chunk_id(entity_id: str, chunk_index: int) -> str:
    """Chunk primary key: '{entity_id}#{chunk_index}'."""
    return f'{entity_id}#{chunk_index}'


@dataclass
class ChunkRow:
    """A chunk ready to be stored."""
    chunk_index: int
    total_chunks: int
    chunk_start: int
    chunk_end: int
    chunk_text: str
    embedding: Sequence[float]


@dataclass
class StoredChunk:
    """A chunk as read back from the store."""
    chunk_id: str
    entity_id: str
    chunk_index: int
    total_chunks: int
    chunk_start: int
    chunk_end: int
    chunk_text: str
    embedding: np.ndarray


@dataclass
class NearestChunk:
    """A nearest-neighbour hit."""
    chunk_id: str
    entity_id: str
    chunk_index: int
    total_chunks: int
    chunk_text: str
    distance: float

    @property
    def similarity(self) -> float:
        """1 - distance, clamped to [0, 1]."""
        return max(0.0, min(1.0, 1.0 - self.distance))


class VectorStore:
    """
    Durable chunk storage with cosine nearest-neighbour search.

    Single writer, many readers: writes are serialised by an in-process lock
    and each runs in its own SQLite transaction.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        dimension: int = DEFAULT_DIMENSION,
        rebuild: bool = False
    ):
        """
        Open (or create) the store.

        Args:
            db_path: SQLite file path
            dimension: Embedding length D
            rebuild: Drop and recreate the table if its dimension differs

        Raises:
            EmbeddingDimensionError: Stored dimension differs and rebuild is False
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.dimension = dimension
        self._write_lock = threading.Lock()

        self._init_db(rebuild)

    def _init_db(self, rebuild: bool):
        """Initialize the schema and check the recorded dimension."""
        with self._connection() as conn:
            conn.executescript(SCHEMA)
            row = conn.execute(
                "SELECT value FROM brain_meta WHERE key = 'dimension'"
            ).fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO brain_meta (key, value) VALUES ('dimension', ?)",
                    (str(self.dimension),)
                )
                return

            stored = int(row['value'])
            if stored == self.dimension:
                return

            if not rebuild:
                raise EmbeddingDimensionError(
                    self.dimension, stored,
                    f'Vector table holds {stored}-dimension embeddings, '
                    f'configured {self.dimension}; rebuild required'
                )

            logger.warning(
                f'Rebuilding vector table: dimension {stored} -> {self.dimension}'
            )
            conn.execute('DROP TABLE IF EXISTS brain_embeddings')
            conn.executescript(SCHEMA)
            conn.execute(
                "UPDATE brain_meta SET value = ? WHERE key = 'dimension'",
                (str(self.dimension),)
            )

    @contextmanager
    def _connection(self):
        """Get a database connection with proper cleanup."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise VectorStoreError(f'Cannot open vector store: {e}', db_path=str(self.db_path)) from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise VectorStoreError(str(e), db_path=str(self.db_path)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def reset(self, dimension: Optional[int] = None):
        """Drop every row and (optionally) switch dimension."""
        with self._write_lock:
            if dimension is not None:
                self.dimension = dimension
            with self._connection() as conn:
                conn.execute('DROP TABLE IF EXISTS brain_embeddings')
                conn.executescript(SCHEMA)
                conn.execute(
                    "INSERT OR REPLACE INTO brain_meta (key, value) VALUES ('dimension', ?)",
                    (str(self.dimension),)
                )

    # =========================================================================
    # Writes
    # =========================================================================

    def _to_blob(self, embedding: Sequence[float], label: str) -> bytes:
        arr = np.asarray(embedding, dtype='<f4')
        if arr.ndim != 1 or arr.shape[0] != self.dimension:
            actual = arr.shape[0] if arr.ndim == 1 else arr.size
            raise EmbeddingDimensionError(
                self.dimension, actual,
                f'{label}: expected {self.dimension} dimensions, got {actual}'
            )
        return arr.tobytes()

    def upsert_chunks(self, entity_id: str, rows: List[ChunkRow]) -> int:
        """
        Atomically replace every chunk of a note.

        Args:
            entity_id: Note identifier
            rows: Complete chunk set with chunk_index 0..n-1

        Returns:
            Number of rows stored

        Raises:
            EmbeddingDimensionError: A vector has the wrong length
            VectorStoreError: Non-contiguous chunk set or SQLite failure;
                the previous rows are left intact
        """
        if not rows:
            self.delete_by_entity(entity_id)
            return 0

        total = len(rows)
        indices = sorted(r.chunk_index for r in rows)
        if indices != list(range(total)):
            raise VectorStoreError(
                f'Chunk indices for {entity_id} are not contiguous from 0',
                entity_id=entity_id,
                indices=indices
            )
        if any(r.total_chunks != total for r in rows):
            raise VectorStoreError(
                f'total_chunks for {entity_id} does not match row count {total}',
                entity_id=entity_id
            )

        params = [
            (
                make_chunk_id(entity_id, r.chunk_index),
                entity_id,
                r.chunk_index,
                r.total_chunks,
                r.chunk_start,
                r.chunk_end,
                r.chunk_text,
                self._to_blob(r.embedding, f'Chunk {r.chunk_index}'),
            )
            for r in rows
        ]

        with self._write_lock:
            with self._connection() as conn:
                conn.execute('DELETE FROM brain_embeddings WHERE entity_id = ?', (entity_id,))
                conn.executemany('''
                    INSERT INTO brain_embeddings (
                        chunk_id, entity_id, chunk_index, total_chunks,
                        chunk_start, chunk_end, chunk_text, embedding
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', params)

        return total

    def delete_by_entity(self, entity_id: str) -> bool:
        """Delete every chunk of a note. Returns True if any row was removed."""
        with self._write_lock:
            with self._connection() as conn:
                cursor = conn.execute(
                    'DELETE FROM brain_embeddings WHERE entity_id = ?',
                    (entity_id,)
                )
                return cursor.rowcount > 0

    # =========================================================================
    # Reads
    # =========================================================================

    def count_rows(self, entity_id: Optional[str] = None) -> int:
        """Total chunk rows, or rows of one note."""
        with self._connection() as conn:
            if entity_id is None:
                row = conn.execute('SELECT COUNT(*) FROM brain_embeddings').fetchone()
            else:
                row = conn.execute(
                    'SELECT COUNT(*) FROM brain_embeddings WHERE entity_id = ?',
                    (entity_id,)
                ).fetchone()
            return row[0]

    def count_chunks(self, entity_id: str) -> int:
        return self.count_rows(entity_id)

    def count_entities(self) -> int:
        with self._connection() as conn:
            row = conn.execute(
                'SELECT COUNT(DISTINCT entity_id) FROM brain_embeddings'
            ).fetchone()
            return row[0]

    def has_any(self) -> bool:
        with self._connection() as conn:
            row = conn.execute('SELECT 1 FROM brain_embeddings LIMIT 1').fetchone()
            return row is not None

    def distinct_entities(self) -> List[str]:
        with self._connection() as conn:
            rows = conn.execute(
                'SELECT DISTINCT entity_id FROM brain_embeddings ORDER BY entity_id'
            ).fetchall()
            return [row['entity_id'] for row in rows]

    def get_chunks(self, entity_id: str) -> List[StoredChunk]:
        """All chunks of a note ordered by chunk_index."""
        with self._connection() as conn:
            rows = conn.execute('''
                SELECT chunk_id, entity_id, chunk_index, total_chunks,
                       chunk_start, chunk_end, chunk_text, embedding
                FROM brain_embeddings
                WHERE entity_id = ?
                ORDER BY chunk_index ASC
            ''', (entity_id,)).fetchall()

        return [
            StoredChunk(
                chunk_id=row['chunk_id'],
                entity_id=row['entity_id'],
                chunk_index=row['chunk_index'],
                total_chunks=row['total_chunks'],
                chunk_start=row['chunk_start'],
                chunk_end=row['chunk_end'],
                chunk_text=row['chunk_text'],
                embedding=np.frombuffer(row['embedding'], dtype='<f4'),
            )
            for row in rows
        ]

    def nearest(
        self,
        query_vec: Sequence[float],
        k: int,
        max_distance: float = 2.0
    ) -> List[NearestChunk]:
        """
        Find the k chunks closest to a query vector.

        Args:
            query_vec: Query embedding of length D
            k: Maximum rows to return
            max_distance: Cosine distance cut-off (inclusive)

        Returns:
            Hits ordered by (distance, entity_id, chunk_index)
        """
        if k <= 0:
            return []

        query = np.asarray(query_vec, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != self.dimension:
            raise EmbeddingDimensionError(self.dimension, int(query.size))

        with self._connection() as conn:
            rows = conn.execute('''
                SELECT chunk_id, entity_id, chunk_index, total_chunks, chunk_text, embedding
                FROM brain_embeddings
            ''').fetchall()

        if not rows:
            return []

        matrix = np.vstack([
            np.frombuffer(row['embedding'], dtype='<f4') for row in rows
        ]).astype(np.float64)

        # Cosine distance; zero vectors are treated as orthogonal
        denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        distances = np.clip(1.0 - sims, 0.0, 2.0)

        candidates = [
            NearestChunk(
                chunk_id=row['chunk_id'],
                entity_id=row['entity_id'],
                chunk_index=row['chunk_index'],
                total_chunks=row['total_chunks'],
                chunk_text=row['chunk_text'],
                distance=float(distance),
            )
            for row, distance in zip(rows, distances)
            if distance <= max_distance
        ]

        candidates.sort(key=lambda c: (c.distance, c.entity_id, c.chunk_index))
        return candidates[:k]

    # =========================================================================
    # Statistics
    # =========================================================================

    def stats(self) -> Dict[str, Any]:
        """Store statistics."""
        return {
            'entities': self.count_entities(),
            'rows': self.count_rows(),
            'dimension': self.dimension,
            'db_path': str(self.db_path),
        }


def deduplicate_by_entity(hits: List[NearestChunk]) -> List[NearestChunk]:
    """
    Keep the best (lowest-distance) chunk per note.

    Input order is preserved for the kept hits, so an input already sorted by
    (distance, entity_id, chunk_index) stays sorted.
    """
    best: Dict[str, NearestChunk] = {}
    for hit in hits:
        existing = best.get(hit.entity_id)
        if existing is None or (hit.distance, hit.chunk_index) < (existing.distance, existing.chunk_index):
            best[hit.entity_id] = hit

    return sorted(best.values(), key=lambda c: (c.distance, c.entity_id, c.chunk_index))
