"""
Embedding retry queue.

Notes whose refresh failed because the embedding backend was down are
recorded here (in the vector database file) so a later pass can retry them.
Each note appears at most once; re-enqueueing resets its attempt counter.

Usage:
    from brain.embedding.queue import EmbeddingQueue

    queue = EmbeddingQueue('~/.brain/vectors.db')
    queue.enqueue('features/auth')
    item = queue.dequeue()
"""

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..core.errors import VectorStoreError

MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.0

SCHEMA = '''
CREATE TABLE IF NOT EXISTS embedding_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id TEXT UNIQUE NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    attempts INTEGER DEFAULT 0,
    last_error TEXT
);
'''


@dataclass
class QueueItem:
    id: int
    entity_id: str
    created_at: str
    attempts: int
    last_error: Optional[str]


class EmbeddingQueue:
    """Persistent FIFO of notes awaiting an embedding retry."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connection(self):
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise VectorStoreError(str(e), db_path=str(self.db_path)) from e
        finally:
            conn.close()

    def enqueue(self, entity_id: str):
        """Add a note, or reset it if already queued."""
        with self._connection() as conn:
            conn.execute('''
                INSERT INTO embedding_queue (entity_id) VALUES (?)
                ON CONFLICT(entity_id) DO UPDATE SET
                    created_at = CURRENT_TIMESTAMP,
                    attempts = 0,
                    last_error = NULL
            ''', (entity_id,))

    def dequeue(self) -> Optional[QueueItem]:
        """Oldest item, or None when empty. The item stays queued until marked."""
        with self._connection() as conn:
            row = conn.execute('''
                SELECT id, entity_id, created_at, attempts, last_error
                FROM embedding_queue
                ORDER BY created_at ASC, id ASC
                LIMIT 1
            ''').fetchone()

        if row is None:
            return None

        return QueueItem(
            id=row['id'],
            entity_id=row['entity_id'],
            created_at=row['created_at'],
            attempts=row['attempts'],
            last_error=row['last_error'],
        )

    def mark_processed(self, item_id: int):
        """Remove an item after success (or after giving up)."""
        with self._connection() as conn:
            conn.execute('DELETE FROM embedding_queue WHERE id = ?', (item_id,))

    def increment_attempts(self, item_id: int, error: Optional[str] = None):
        with self._connection() as conn:
            conn.execute('''
                UPDATE embedding_queue SET attempts = attempts + 1, last_error = ?
                WHERE id = ?
            ''', (error, item_id))

    def __len__(self) -> int:
        with self._connection() as conn:
            return conn.execute('SELECT COUNT(*) FROM embedding_queue').fetchone()[0]
