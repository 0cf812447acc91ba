"""
Bounded LRU cache for note bodies attached to search results.
"""

import threading
from collections import OrderedDict
from typing import Dict, Optional

DEFAULT_MAX_ENTRIES = 256


class ContentCache:
    """
    Least-recently-used map of cache key -> truncated note body.

    No TTL: entries live until evicted or the cache is cleared.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError(f'max_entries must be >= 1, got {max_entries}')
        self.max_entries = max_entries
        self._data: 'OrderedDict[str, str]' = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(entity_id: str, project: Optional[str] = None) -> str:
        return f'{project or ""}:{entity_id}'

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            if key not in self._data:
                self.misses += 1
                return None
            self._data.move_to_end(key)
            self.hits += 1
            return self._data[key]

    def put(self, key: str, value: str):
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def clear(self):
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get_stats(self) -> Dict[str, int]:
        return {
            'entries': len(self._data),
            'max_entries': self.max_entries,
            'hits': self.hits,
            'misses': self.misses,
        }
