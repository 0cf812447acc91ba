"""
Search request and result types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class SearchMode(str, Enum):
    AUTO = 'auto'
    SEMANTIC = 'semantic'
    KEYWORD = 'keyword'
    HYBRID = 'hybrid'


class SearchSource(str, Enum):
    SEMANTIC = 'semantic'
    KEYWORD = 'keyword'
    HYBRID = 'hybrid'
    RELATED = 'related'


@dataclass
class SearchOptions:
    """
    Options for SearchService.search.

    limit and threshold fall back to the service's configured defaults
    when left as None.
    """
    limit: Optional[int] = None
    threshold: Optional[float] = None
    mode: SearchMode = SearchMode.AUTO
    depth: int = 0
    folders: List[str] = field(default_factory=list)
    full_content: bool = False
    project: Optional[str] = None

    def __post_init__(self):
        self.mode = SearchMode(self.mode)
        if self.depth < 0:
            raise ValueError(f'depth must be >= 0, got {self.depth}')


@dataclass
class SearchResult:
    """One note in a search response."""
    entity_id: str
    title: str
    similarity: float
    snippet: str
    source: SearchSource
    depth: Optional[int] = None
    full_content: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            'entity_id': self.entity_id,
            'title': self.title,
            'similarity': self.similarity,
            'snippet': self.snippet,
            'source': SearchSource(self.source).value,
        }
        if self.depth is not None:
            data['depth'] = self.depth
        if self.full_content is not None:
            data['full_content'] = self.full_content
        return data


@dataclass
class SearchResponse:
    results: List[SearchResult]
    total: int
    query: str
    mode: SearchMode
    depth: int
    actual_source: SearchSource

    def to_dict(self) -> dict:
        return {
            'results': [r.to_dict() for r in self.results],
            'total': self.total,
            'query': self.query,
            'mode': SearchMode(self.mode).value,
            'depth': self.depth,
            'actual_source': SearchSource(self.actual_source).value,
        }
