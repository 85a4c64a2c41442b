"""
Bounded least-recently-used cache owned by a single flow or evaluation.
"""

from collections import OrderedDict
from typing import Any, Callable, Hashable


class LRUCache:
    """
    Mapping with a fixed capacity that evicts the least recently used entry.

    Parameters
    ----------
    maxsize : int
        Maximum number of entries kept. ``0`` disables caching entirely.

    Examples
    --------
    >>> cache = LRUCache(2)
    >>> cache.get_or_compute("a", lambda: 1)
    1
    >>> cache.hits, cache.misses
    (0, 1)
    """

    def __init__(self, maxsize: int = 16):
        if maxsize < 0:
            raise ValueError(f"maxsize must be non-negative, got {maxsize}")
        self.maxsize = maxsize
        self._data: OrderedDict = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, computing and storing it on a miss."""
        if key in self._data:
            self.hits += 1
            self._data.move_to_end(key)
            return self._data[key]

        self.misses += 1
        value = compute()
        if self.maxsize > 0:
            self._data[key] = value
            if len(self._data) > self.maxsize:
                self._data.popitem(last=False)
        return value

    def clear(self) -> None:
        self._data.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        return {"size": len(self._data), "maxsize": self.maxsize,
                "hits": self.hits, "misses": self.misses}
