"""
Note Store port and adapters.

Provides:
- NoteStore: the async interface the retrieval core consumes
- MarkdownNoteRepository: markdown directory + SQLite FTS5 keyword search
- ToolNoteStore: adapter over an MCP-style tool caller

Usage:
    from brain.notes import MarkdownNoteRepository

    notes = MarkdownNoteRepository('~/notes')
    hits = await notes.keyword_search('"Auth Design"', page_size=1)
"""

from .store import NoteStore, NoteContent, NoteHit, folder_of, title_from_slug
from .repository import MarkdownNoteRepository
from .tool_adapter import ToolNoteStore, NoteStoreResult

__all__ = [
    'NoteStore',
    'NoteContent',
    'NoteHit',
    'folder_of',
    'title_from_slug',
    'MarkdownNoteRepository',
    'ToolNoteStore',
    'NoteStoreResult',
]
