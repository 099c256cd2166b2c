"""
Memoization cache for ROI strategies.

The key is the exact input tuple of a scheduling request. Concurrent
requests for the same key wait for the solve already in flight instead of
starting a second one. Failed solves are not cached.
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable, Dict, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class StrategyCache:
    """Bounded LRU cache with at most one computation in flight per key."""

    def __init__(self, max_entries: int = 32):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0
        self._entries: "OrderedDict[Hashable, object]" = OrderedDict()
        self._in_flight: Dict[Hashable, threading.Lock] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def _lookup(self, key: Hashable):
        """Return (True, value) on a hit; caller must hold self._lock."""
        if key in self._entries:
            self._entries.move_to_end(key)
            self.hits += 1
            return True, self._entries[key]
        return False, None

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        """
        Return the cached value for key, computing it once if absent.

        Exceptions from compute propagate to every caller that ran it and
        leave the cache unchanged.
        """
        with self._lock:
            found, value = self._lookup(key)
            if found:
                logger.debug("Strategy is pulled from cache")
                return value
            key_lock = self._in_flight.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                found, value = self._lookup(key)
                if found:
                    return value
                self.misses += 1

            try:
                value = compute()
            except BaseException:
                with self._lock:
                    self._in_flight.pop(key, None)
                raise

            with self._lock:
                self._entries[key] = value
                self._entries.move_to_end(key)
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
                self._in_flight.pop(key, None)
            return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
