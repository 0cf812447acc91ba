"""
Tool-call Note Store adapter.

Wraps an MCP-style tool caller (the note server's `list_directory`,
`read_note` and `search_notes` tools). Tool results arrive as
`{"content": [{"type": "text", "text": ...}], "isError": bool}`; they are
parsed once here into NoteStoreResult and typed values, so nothing past this
boundary handles raw tool JSON.

Usage:
    async def call_tool(name, arguments):
        return await mcp_session.call_tool(name, arguments)

    store = ToolNoteStore(call_tool)
    ids = await store.list_notes(project='brain')
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from ..core.errors import NoteNotFoundError, NoteReadError
from .store import NoteContent, NoteHit, NoteStore, title_from_slug

logger = logging.getLogger(__name__)

ToolCaller = Callable[[str, Dict[str, Any]], Awaitable[Mapping[str, Any]]]

# "📄 auth-design.md features/auth-design.md | Auth Design | 2025-01-02"
_FILE_MARKER = '\U0001F4C4'
_MD_PATH = re.compile(r'\s(\S+\.md)\s*$')


@dataclass
class NoteStoreResult:
    """Parsed tool result: the first text block and the error flag."""
    text: Optional[str]
    is_error: bool = False

    @classmethod
    def parse(cls, raw: Any) -> 'NoteStoreResult':
        if hasattr(raw, 'model_dump'):
            raw = raw.model_dump()
        if not isinstance(raw, Mapping):
            return cls(text=None, is_error=True)

        is_error = bool(raw.get('isError') or raw.get('is_error'))
        blocks = raw.get('content')
        if isinstance(blocks, list):
            for block in blocks:
                if isinstance(block, Mapping) and block.get('type') == 'text' and 'text' in block:
                    return cls(text=str(block['text']), is_error=is_error)

        return cls(text=None, is_error=is_error)


def parse_directory_listing(text: str) -> List[str]:
    """Extract note ids (file entries only, folders skipped) from a listing."""
    notes = []
    for line in text.splitlines():
        if _FILE_MARKER not in line:
            continue
        path_part = line.split('|')[0].strip()
        match = _MD_PATH.search(path_part)
        if match:
            entity_id = match.group(1)[:-len('.md')]
            if entity_id:
                notes.append(entity_id)

    # de-duplicate, keep order
    return list(dict.fromkeys(notes))


def parse_search_response(text: str) -> List[NoteHit]:
    """Parse the search_notes JSON body."""
    try:
        parsed = json.loads(text)
    except ValueError:
        logger.debug('Failed to parse search response')
        return []

    results = parsed.get('results', []) if isinstance(parsed, Mapping) else []
    hits = []
    for r in results:
        if not isinstance(r, Mapping):
            continue
        entity_id = r.get('permalink') or r.get('entity_id') or ''
        hits.append(NoteHit(
            title=r.get('title') or '',
            entity_id=entity_id,
            content_snippet=(r.get('content') or '')[:200],
            score=r.get('score'),
        ))
    return hits


class ToolNoteStore(NoteStore):
    """NoteStore backed by a tool-calling client."""

    def __init__(self, call_tool: ToolCaller, listing_depth: int = 10):
        self._call_tool = call_tool
        self.listing_depth = listing_depth

    async def _call(self, name: str, arguments: Dict[str, Any], project: Optional[str]) -> NoteStoreResult:
        if project:
            arguments['project'] = project
        raw = await self._call_tool(name, arguments)
        return NoteStoreResult.parse(raw)

    async def list_notes(self, project: Optional[str] = None) -> List[str]:
        result = await self._call('list_directory', {'depth': self.listing_depth}, project)
        if result.is_error or result.text is None:
            return []
        return parse_directory_listing(result.text)

    async def read_note(self, entity_id: str, project: Optional[str] = None) -> NoteContent:
        try:
            result = await self._call('read_note', {'identifier': entity_id}, project)
        except Exception as e:
            raise NoteReadError(entity_id, f'read_note failed for {entity_id}: {e}') from e

        if result.is_error:
            text = (result.text or '').lower()
            if 'not found' in text:
                raise NoteNotFoundError(entity_id)
            raise NoteReadError(entity_id, result.text)

        if result.text is None:
            raise NoteReadError(entity_id, f'No text content in read_note response for {entity_id}')

        return NoteContent(entity_id=entity_id, content=result.text, title=title_from_slug(entity_id))

    async def keyword_search(
        self,
        query: str,
        page_size: int = 10,
        project: Optional[str] = None
    ) -> List[NoteHit]:
        result = await self._call('search_notes', {'query': query, 'page_size': page_size}, project)
        if result.is_error or result.text is None:
            return []
        return parse_search_response(result.text)
