"""
Note Store port.

The retrieval core never stores note bodies. It sees notes only through
this narrow async interface: list ids, read one note, keyword search.

Usage:
    class MyNotes(NoteStore):
        async def list_notes(self, project=None): ...
        async def read_note(self, entity_id, project=None): ...
        async def keyword_search(self, query, page_size=10, project=None): ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional


@dataclass
class NoteContent:
    """Body of one note."""
    entity_id: str
    content: str
    title: str = ''


@dataclass
class NoteHit:
    """One keyword search hit."""
    title: str
    entity_id: str
    content_snippet: str = ''
    score: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'entity_id': self.entity_id,
            'content_snippet': self.content_snippet,
            'score': self.score,
        }


# (entity_id, new_content) -> awaitable or None
NoteChangedCallback = Callable[[str, str], Optional[Awaitable[None]]]


def folder_of(entity_id: str) -> str:
    """Folder prefix of an entity id, up to the last '/'."""
    if '/' not in entity_id:
        return ''
    return entity_id.rsplit('/', 1)[0]


def title_from_slug(entity_id: str) -> str:
    """'features/auth-design' -> 'Auth Design'."""
    slug = entity_id.rstrip('/').split('/')[-1] or entity_id
    return ' '.join(word[:1].upper() + word[1:] for word in slug.replace('-', ' ').split(' '))


class NoteStore(ABC):
    """
    Abstract note store.

    All operations are fallible and asynchronous. read_note raises
    NoteNotFoundError for unknown ids and NoteReadError for anything else.
    """

    @abstractmethod
    async def list_notes(self, project: Optional[str] = None) -> List[str]:
        """List every entity_id."""

    @abstractmethod
    async def read_note(self, entity_id: str, project: Optional[str] = None) -> NoteContent:
        """Read one note."""

    @abstractmethod
    async def keyword_search(
        self,
        query: str,
        page_size: int = 10,
        project: Optional[str] = None
    ) -> List[NoteHit]:
        """Full-text search, best hits first."""

    def on_note_changed(self, callback: NoteChangedCallback) -> bool:
        """
        Subscribe to note writes.

        Returns:
            False when the store cannot notify; callers must then trigger
            refreshes explicitly on write.
        """
        return False
