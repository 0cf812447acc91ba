"""
Markdown Note Repository

File-backed NoteStore: every `*.md` file under a notes directory is a note
whose entity_id is its relative path without the `.md` suffix
(e.g. `features/auth-design`).

Keyword search runs over an SQLite FTS5 index kept next to the notes
(`.brain/index.db`). The index is refreshed from file modification times
before each query, so edits made outside the repository are picked up.

Usage:
    from brain.notes.repository import MarkdownNoteRepository

    repo = MarkdownNoteRepository('~/notes')
    ids = await repo.list_notes()
    hits = await repo.keyword_search('oauth token refresh', page_size=5)
    await repo.write_note('decisions/use-jwt', '# Use JWT\\n...')
"""

import asyncio
import inspect
import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..core.errors import NoteNotFoundError, NoteReadError
from .store import NoteChangedCallback, NoteContent, NoteHit, NoteStore, folder_of, title_from_slug

logger = logging.getLogger(__name__)

INDEX_DIR = '.brain'
INDEX_FILE = 'index.db'


# =============================================================================
# Schema
# =============================================================================

SCHEMA = '''
CREATE TABLE IF NOT EXISTS notes (
    entity_id TEXT PRIMARY KEY,
    title TEXT,
    folder TEXT,
    content TEXT,
    mtime REAL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Full-text search index
CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
    title,
    content,
    content=notes,
    content_rowid=rowid,
    tokenize='porter unicode61'
);

-- Triggers to keep FTS in sync
CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
    INSERT INTO notes_fts(rowid, title, content)
    VALUES (NEW.rowid, NEW.title, NEW.content);
END;

CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
    INSERT INTO notes_fts(notes_fts, rowid, title, content)
    VALUES ('delete', OLD.rowid, OLD.title, OLD.content);
END;

CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE ON notes BEGIN
    INSERT INTO notes_fts(notes_fts, rowid, title, content)
    VALUES ('delete', OLD.rowid, OLD.title, OLD.content);
    INSERT INTO notes_fts(rowid, title, content)
    VALUES (NEW.rowid, NEW.title, NEW.content);
END;
'''

_HEADING = re.compile(r'^#\s+(.+?)\s*#*\s*$', re.MULTILINE)
_FRONTMATTER = re.compile(r'\A---[ \t]*\n(.*?)^---[ \t]*$', re.MULTILINE | re.DOTALL)
_TITLE_FIELD = re.compile(r'^title:\s*["\']?(.+?)["\']?\s*$', re.MULTILINE)


def extract_title(entity_id: str, content: str) -> str:
    """Frontmatter title, else first H1, else derived from the slug."""
    frontmatter = _FRONTMATTER.match(content)
    if frontmatter:
        match = _TITLE_FIELD.search(frontmatter.group(1))
        if match:
            return match.group(1).strip()
    match = _HEADING.search(content)
    if match:
        return match.group(1).strip()
    return title_from_slug(entity_id)


def build_fts_query(query: str) -> str:
    """
    Build an FTS5 query from a user query.

    A fully quoted query is an exact phrase; anything else becomes an OR of
    its cleaned terms for better recall.
    """
    stripped = query.strip()
    if len(stripped) >= 2 and stripped.startswith('"') and stripped.endswith('"'):
        phrase = stripped[1:-1].replace('"', '""').strip()
        if phrase:
            return f'"{phrase}"'

    escaped = []
    for term in stripped.split():
        clean = ''.join(c for c in term if c.isalnum() or c in '_')
        if clean:
            escaped.append(f'"{clean}"')

    return ' OR '.join(escaped)


class MarkdownNoteRepository(NoteStore):
    """
    NoteStore over a directory of markdown files.

    Single-project: the project argument is accepted for interface
    compatibility and otherwise ignored.
    """

    def __init__(self, notes_dir: Union[str, Path], db_path: Union[str, Path] = None):
        """
        Initialize the repository.

        Args:
            notes_dir: Root directory of the markdown notes
            db_path: FTS index path. Defaults to <notes_dir>/.brain/index.db
        """
        self.notes_dir = Path(notes_dir).expanduser().resolve()
        self.notes_dir.mkdir(parents=True, exist_ok=True)

        if db_path is None:
            db_path = self.notes_dir / INDEX_DIR / INDEX_FILE

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._sync_lock = threading.Lock()
        self._subscribers: List[NoteChangedCallback] = []

        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
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
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Paths
    # =========================================================================

    def _path_for(self, entity_id: str) -> Path:
        path = (self.notes_dir / f'{entity_id}.md').resolve()
        if self.notes_dir not in path.parents:
            raise NoteNotFoundError(entity_id)
        return path

    def _iter_note_files(self) -> Dict[str, Path]:
        files = {}
        for path in sorted(self.notes_dir.rglob('*.md')):
            relative = path.relative_to(self.notes_dir)
            if any(part.startswith('.') for part in relative.parts):
                continue
            files[relative.with_suffix('').as_posix()] = path
        return files

    # =========================================================================
    # Index Maintenance
    # =========================================================================

    def sync_index(self) -> Dict[str, int]:
        """
        Bring the FTS index in line with the files on disk.

        Returns:
            Counts of added, updated and removed notes
        """
        stats = {'added': 0, 'updated': 0, 'removed': 0}

        with self._sync_lock, self._connection() as conn:
            indexed = {
                row['entity_id']: row['mtime']
                for row in conn.execute('SELECT entity_id, mtime FROM notes')
            }
            files = self._iter_note_files()

            for entity_id, path in files.items():
                mtime = path.stat().st_mtime
                if indexed.get(entity_id) == mtime:
                    continue

                try:
                    content = path.read_text(encoding='utf-8')
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(f'Skipping unreadable note {entity_id}: {e}')
                    continue

                conn.execute('''
                    INSERT INTO notes (entity_id, title, folder, content, mtime, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(entity_id) DO UPDATE SET
                        title = excluded.title,
                        folder = excluded.folder,
                        content = excluded.content,
                        mtime = excluded.mtime,
                        updated_at = excluded.updated_at
                ''', (
                    entity_id,
                    extract_title(entity_id, content),
                    folder_of(entity_id),
                    content,
                    mtime,
                    datetime.now().isoformat(),
                ))
                stats['updated' if entity_id in indexed else 'added'] += 1

            for entity_id in set(indexed) - set(files):
                conn.execute('DELETE FROM notes WHERE entity_id = ?', (entity_id,))
                stats['removed'] += 1

        if any(stats.values()):
            logger.debug('Note index synced', extra=stats)

        return stats

    # =========================================================================
    # Sync Operations
    # =========================================================================

    def _read_sync(self, entity_id: str) -> NoteContent:
        path = self._path_for(entity_id)
        if not path.is_file():
            raise NoteNotFoundError(entity_id)

        try:
            content = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise NoteReadError(entity_id, f'Failed to read note {entity_id}: {e}') from e

        return NoteContent(
            entity_id=entity_id,
            content=content,
            title=extract_title(entity_id, content)
        )

    def _search_sync(self, query: str, page_size: int) -> List[NoteHit]:
        fts_query = build_fts_query(query)
        if not fts_query or page_size <= 0:
            return []

        self.sync_index()

        with self._connection() as conn:
            rows = conn.execute('''
                SELECT n.entity_id, n.title,
                       snippet(notes_fts, 1, '', '', '...', 32) AS snippet,
                       bm25(notes_fts, 10.0, 1.0) AS rank
                FROM notes_fts
                JOIN notes n ON n.rowid = notes_fts.rowid
                WHERE notes_fts MATCH ?
                ORDER BY rank
                LIMIT ?
            ''', (fts_query, page_size)).fetchall()

            hits = [
                NoteHit(
                    title=row['title'] or title_from_slug(row['entity_id']),
                    entity_id=row['entity_id'],
                    content_snippet=row['snippet'] or '',
                    # bm25 is lower-is-better; map to a 0-1 scale
                    score=1.0 / (1.0 + abs(row['rank']) / 10.0),
                )
                for row in rows
            ]

            # A quoted query naming a title exactly resolves to that note first
            stripped = query.strip()
            if len(stripped) >= 2 and stripped[0] == stripped[-1] == '"':
                exact = conn.execute(
                    'SELECT entity_id, title, content FROM notes WHERE lower(title) = lower(?) '
                    'ORDER BY entity_id LIMIT 1',
                    (stripped[1:-1].strip(),)
                ).fetchone()
                if exact is not None:
                    hits = [h for h in hits if h.entity_id != exact['entity_id']]
                    hits.insert(0, NoteHit(
                        title=exact['title'],
                        entity_id=exact['entity_id'],
                        content_snippet=(exact['content'] or '')[:200],
                        score=1.0,
                    ))
                    hits = hits[:page_size]

        return hits

    def _write_sync(self, entity_id: str, content: str) -> Path:
        path = self._path_for(entity_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding='utf-8')
        return path

    # =========================================================================
    # NoteStore
    # =========================================================================

    async def list_notes(self, project: Optional[str] = None) -> List[str]:
        files = await asyncio.to_thread(self._iter_note_files)
        return list(files)

    async def read_note(self, entity_id: str, project: Optional[str] = None) -> NoteContent:
        return await asyncio.to_thread(self._read_sync, entity_id)

    async def keyword_search(
        self,
        query: str,
        page_size: int = 10,
        project: Optional[str] = None
    ) -> List[NoteHit]:
        return await asyncio.to_thread(self._search_sync, query, page_size)

    def on_note_changed(self, callback: NoteChangedCallback) -> bool:
        self._subscribers.append(callback)
        return True

    async def write_note(self, entity_id: str, content: str, project: Optional[str] = None):
        """
        Create or overwrite a note and notify subscribers.

        Subscriber failures are logged; they never fail the write.
        """
        await asyncio.to_thread(self._write_sync, entity_id, content)

        for callback in list(self._subscribers):
            try:
                result = callback(entity_id, content)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    f'Note change subscriber failed for {entity_id}: {e}',
                    extra={'entity_id': entity_id}
                )
