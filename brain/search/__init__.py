"""
Search layer for Brain.

Provides:
- SearchService: semantic, keyword, hybrid and auto search
- Depth-N wiki-link expansion and full-content enrichment

Usage:
    from brain.search import SearchService, SearchOptions, SearchMode

    service = SearchService(client, store, notes)
    response = await service.search('auth', SearchOptions(mode=SearchMode.HYBRID))
"""

from .types import SearchMode, SearchSource, SearchOptions, SearchResult, SearchResponse
from .cache import ContentCache
from .service import (
    SearchService, extract_wikilinks, matches_folders,
    get_search_service, create_search_service, configure_default_search_service,
)

__all__ = [
    'SearchMode',
    'SearchSource',
    'SearchOptions',
    'SearchResult',
    'SearchResponse',
    'ContentCache',
    'SearchService',
    'extract_wikilinks',
    'matches_folders',
    'get_search_service',
    'create_search_service',
    'configure_default_search_service',
]
