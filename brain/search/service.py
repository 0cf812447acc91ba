"""
Search Service

Unified query interface over the vector store and the note store.

Features:
- Mode dispatch: semantic, keyword, hybrid, auto (semantic with keyword fallback)
- Per-note deduplication of chunk hits
- Folder prefix filtering
- Depth-N wiki-link expansion (BFS, never revisits a note)
- Optional full-content enrichment with a bounded per-instance cache

Usage:
    from brain.search import SearchService, SearchOptions

    service = SearchService(client, store, notes, config=config)
    response = await service.search('token refresh', SearchOptions(depth=1))

    for result in response.results:
        print(f"{result.similarity:.2f} - {result.title}")
"""

import asyncio
import logging
import re
import time
from typing import Dict, List, Optional

from ..core.config import BrainConfig
from ..core.errors import ConfigurationError
from ..database.vector_store import VectorStore, deduplicate_by_entity
from ..embedding.client import TaskType
from ..notes.store import NoteStore, title_from_slug
from .cache import ContentCache
from .types import SearchMode, SearchOptions, SearchResponse, SearchResult, SearchSource

logger = logging.getLogger(__name__)

WIKILINK_PATTERN = re.compile(r'\[\[([^\]]+)\]\]')
MAX_LINKS_PER_NOTE = 5
RELATED_SIMILARITY = 0.5
SNIPPET_LENGTH = 200
CANDIDATE_MULTIPLIER = 3


def extract_wikilinks(content: str) -> List[str]:
    """Distinct [[link]] targets in order of first appearance."""
    return list(dict.fromkeys(WIKILINK_PATTERN.findall(content)))


def matches_folders(entity_id: str, folders: List[str]) -> bool:
    """True when the note lives under any of the folder prefixes."""
    return any(entity_id.startswith(folder) for folder in folders)


class SearchService:
    """
    Search across notes with semantic, keyword and hybrid modes.

    The service only reads the vector store. The full-content cache belongs
    to this instance and is cleared when the project changes.
    """

    def __init__(
        self,
        client,
        store: VectorStore,
        notes: NoteStore,
        config: Optional[BrainConfig] = None,
        project: Optional[str] = None
    ):
        """
        Initialize the search service.

        Args:
            client: Embedding client exposing batch_embed(texts, task_type)
            store: Vector store to query
            notes: Note store for keyword search, expansion and enrichment
            config: Defaults for limit, threshold and content limits
            project: Default project for note store calls
        """
        self.config = config or BrainConfig()
        self.client = client
        self.store = store
        self.notes = notes
        self.project = project
        self.content_cache = ContentCache(self.config.content_cache_size)

    # =========================================================================
    # Public API
    # =========================================================================

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        """
        Run a search.

        Args:
            query: Search text
            options: SearchOptions (defaults when omitted)

        Returns:
            SearchResponse with results, total and the source actually used

        Raises:
            Any keyword search error from the note store
        """
        opts = options or SearchOptions()
        limit = opts.limit if opts.limit is not None else self.config.search_default_limit
        threshold = opts.threshold if opts.threshold is not None else self.config.search_default_threshold
        project = opts.project or self.project

        start_time = time.time()

        if opts.mode == SearchMode.KEYWORD:
            results = await self._keyword(query, limit, project)
            actual_source = SearchSource.KEYWORD
        elif opts.mode == SearchMode.SEMANTIC:
            results = await self._semantic(query, limit, threshold)
            actual_source = SearchSource.SEMANTIC
        elif opts.mode == SearchMode.HYBRID:
            results = await self._hybrid(query, limit, threshold, project)
            actual_source = SearchSource.HYBRID
        else:
            results, actual_source = await self._auto(query, limit, threshold, project)

        if opts.folders:
            results = [r for r in results if matches_folders(r.entity_id, opts.folders)]

        if opts.depth > 0:
            results = await self._expand(results, opts.depth, project)

        if opts.full_content:
            results = await self._enrich(results, project)

        logger.debug(
            'Search complete',
            extra={
                'query': query,
                'mode': opts.mode.value,
                'actual_source': actual_source.value,
                'results': len(results),
                'duration_ms': round((time.time() - start_time) * 1000, 1),
            }
        )

        return SearchResponse(
            results=results,
            total=len(results),
            query=query,
            mode=opts.mode,
            depth=opts.depth,
            actual_source=actual_source,
        )

    async def semantic_search(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> List[SearchResult]:
        """Semantic-only search; never raises."""
        return await self._semantic(
            query,
            limit if limit is not None else self.config.search_default_limit,
            threshold if threshold is not None else self.config.search_default_threshold
        )

    async def keyword_search(
        self,
        query: str,
        limit: Optional[int] = None,
        project: Optional[str] = None
    ) -> List[SearchResult]:
        """Keyword-only search; note store errors propagate."""
        return await self._keyword(
            query,
            limit if limit is not None else self.config.search_default_limit,
            project or self.project
        )

    async def has_embeddings(self) -> bool:
        """True when the vector store holds at least one row."""
        try:
            return await asyncio.to_thread(self.store.has_any)
        except Exception as e:
            logger.debug(f'Failed to check embeddings existence: {e}')
            return False

    def clear_full_content_cache(self):
        self.content_cache.clear()

    def set_project(self, project: Optional[str]):
        """Switch the default project; cached note bodies are dropped."""
        if project != self.project:
            self.content_cache.clear()
        self.project = project

    # =========================================================================
    # Modes
    # =========================================================================

    async def _semantic(self, query: str, limit: int, threshold: float) -> List[SearchResult]:
        if not await self.has_embeddings():
            logger.debug('No embeddings in database, semantic search unavailable')
            return []

        try:
            vectors = await asyncio.to_thread(self.client.batch_embed, [query], TaskType.SEARCH_QUERY)
            hits = await asyncio.to_thread(
                self.store.nearest,
                vectors[0],
                limit * CANDIDATE_MULTIPLIER,
                1.0 - threshold
            )
        except Exception as e:
            logger.error(f'Semantic search failed: {e}')
            return []

        return [
            SearchResult(
                entity_id=hit.entity_id,
                title=title_from_slug(hit.entity_id),
                similarity=hit.similarity,
                snippet=hit.chunk_text[:SNIPPET_LENGTH],
                source=SearchSource.SEMANTIC,
            )
            for hit in deduplicate_by_entity(hits)[:limit]
        ]

    async def _keyword(self, query: str, limit: int, project: Optional[str]) -> List[SearchResult]:
        try:
            hits = await self.notes.keyword_search(query, page_size=limit, project=project)
        except Exception as e:
            logger.error(f'Keyword search failed: {e}')
            raise

        return [
            SearchResult(
                entity_id=hit.entity_id,
                title=hit.title or title_from_slug(hit.entity_id),
                similarity=hit.score if hit.score is not None else 0.0,
                snippet=(hit.content_snippet or '')[:SNIPPET_LENGTH],
                source=SearchSource.KEYWORD,
            )
            for hit in hits
            if hit.entity_id
        ]

    async def _hybrid(
        self,
        query: str,
        limit: int,
        threshold: float,
        project: Optional[str]
    ) -> List[SearchResult]:
        semantic, keyword = await asyncio.gather(
            self._semantic(query, limit, threshold),
            self._keyword(query, limit, project),
        )

        # Semantic results first so they win entity_id collisions
        merged: Dict[str, SearchResult] = {}
        for result in semantic + keyword:
            if result.entity_id not in merged:
                result.source = SearchSource.HYBRID
                merged[result.entity_id] = result

        # Stable sort keeps semantic ahead on equal similarity
        ranked = sorted(merged.values(), key=lambda r: r.similarity, reverse=True)
        return ranked[:limit]

    async def _auto(self, query: str, limit: int, threshold: float, project: Optional[str]):
        if not await self.has_embeddings():
            logger.debug('No embeddings available, using keyword search')
            return await self._keyword(query, limit, project), SearchSource.KEYWORD

        results = await self._semantic(query, limit, threshold)
        if results:
            return results, SearchSource.SEMANTIC

        logger.debug('Semantic search returned no results, falling back to keyword')
        return await self._keyword(query, limit, project), SearchSource.KEYWORD

    # =========================================================================
    # Wiki-link Expansion
    # =========================================================================

    async def _expand(self, results: List[SearchResult], max_depth: int, project: Optional[str]) -> List[SearchResult]:
        for result in results:
            result.depth = 0

        seen = {r.entity_id for r in results}
        expanded = list(results)
        level = list(results)

        for depth in range(1, max_depth + 1):
            next_level = []

            for result in level:
                for related in await self._related_notes(result.entity_id, depth, project):
                    if related.entity_id in seen:
                        continue
                    seen.add(related.entity_id)
                    next_level.append(related)

            if not next_level:
                break

            expanded.extend(next_level)
            level = next_level

        logger.debug(
            'Expanded search with relations',
            extra={'direct': len(results), 'total': len(expanded), 'max_depth': max_depth}
        )
        return expanded

    async def _related_notes(self, entity_id: str, depth: int, project: Optional[str]) -> List[SearchResult]:
        try:
            note = await self.notes.read_note(entity_id, project)
        except Exception as e:
            logger.debug(f'Failed to get related notes for {entity_id}: {e}', extra={'entity_id': entity_id})
            return []

        related = []
        for title in extract_wikilinks(note.content)[:MAX_LINKS_PER_NOTE]:
            resolved = await self._resolve_wikilink(title, project)
            if resolved is None:
                logger.debug(f'Unresolved wiki-link [[{title}]] in {entity_id}', extra={'entity_id': entity_id})
                continue
            related.append(SearchResult(
                entity_id=resolved,
                title=title,
                similarity=RELATED_SIMILARITY,
                snippet=f'Related via [[{title}]]',
                source=SearchSource.RELATED,
                depth=depth,
            ))
        return related

    async def _resolve_wikilink(self, title: str, project: Optional[str]) -> Optional[str]:
        try:
            hits = await self.notes.keyword_search(f'"{title}"', page_size=1, project=project)
        except Exception as e:
            logger.debug(f'Wiki-link resolution failed for {title}: {e}')
            return None

        for hit in hits:
            if hit.entity_id:
                return hit.entity_id
        return None

    # =========================================================================
    # Full Content
    # =========================================================================

    async def _fetch_full_content(self, entity_id: str, project: Optional[str]) -> Optional[str]:
        key = ContentCache.key(entity_id, project)
        cached = self.content_cache.get(key)
        if cached is not None:
            return cached

        try:
            note = await self.notes.read_note(entity_id, project)
        except Exception as e:
            logger.debug(f'Failed to fetch full content for note {entity_id}: {e}', extra={'entity_id': entity_id})
            return None

        content = note.content[:self.config.full_content_char_limit]
        self.content_cache.put(key, content)
        return content

    async def _enrich(self, results: List[SearchResult], project: Optional[str]) -> List[SearchResult]:
        contents = await asyncio.gather(*(
            self._fetch_full_content(r.entity_id, project) for r in results
        ))
        for result, content in zip(results, contents):
            result.full_content = content or None

        logger.debug(
            'Enriched search results with full content',
            extra={'results': len(results), 'enriched': sum(1 for c in contents if c)}
        )
        return results


# =============================================================================
# Default Instance
# =============================================================================

_default_service: Optional[SearchService] = None


def configure_default_search_service(service: Optional[SearchService]):
    """Wire (or with None, reset) the process default service at startup."""
    global _default_service
    _default_service = service


def get_search_service() -> SearchService:
    """
    Get the default SearchService.

    Raises:
        ConfigurationError: configure_default_search_service was never called
    """
    if _default_service is None:
        raise ConfigurationError('Default search service is not configured')
    return _default_service


def create_search_service(
    project: Optional[str] = None,
    client=None,
    store: Optional[VectorStore] = None,
    notes: Optional[NoteStore] = None,
    config: Optional[BrainConfig] = None
) -> SearchService:
    """
    Create a new SearchService bound to a project.

    Components not given are shared with the default service.
    """
    base = _default_service
    if base is None and (client is None or store is None or notes is None):
        raise ConfigurationError('Default search service is not configured')

    return SearchService(
        client if client is not None else base.client,
        store if store is not None else base.store,
        notes if notes is not None else base.notes,
        config=config or (base.config if base is not None else None),
        project=project,
    )
