import logging
import threading
from collections import Counter
from typing import Optional

from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)


class CounterStore:
    """Named integer counters."""

    def increment(self, key: str) -> int:
        raise NotImplementedError

    def get(self, key: str) -> int:
        raise NotImplementedError

    def reset(self, key: str) -> None:
        raise NotImplementedError


class InMemoryCounterStore(CounterStore):

    def __init__(self):
        self._counts = Counter()
        self._lock = threading.Lock()

    def increment(self, key):
        with self._lock:
            self._counts[key] += 1
            return self._counts[key]

    def get(self, key):
        with self._lock:
            return self._counts[key]

    def reset(self, key):
        with self._lock:
            self._counts.pop(key, None)


class DjangoCacheCounterStore(CounterStore):
    """Counters shared between processes through a Django cache backend."""

    def __init__(self, alias: str = 'default', prefix: str = 'query-pattern', timeout: Optional[float] = None):
        self._cache = caches[alias]
        self._prefix = prefix
        self._timeout = timeout

    def _key(self, key):
        return f'{self._prefix}:{key}'

    def increment(self, key):
        cache_key = self._key(key)
        self._cache.add(cache_key, 0, timeout=self._timeout)
        try:
            return self._cache.incr(cache_key)
        except ValueError:
            # expired between add() and incr()
            self._cache.set(cache_key, 1, timeout=self._timeout)
            return 1

    def get(self, key):
        return self._cache.get(self._key(key), 0)

    def reset(self, key):
        self._cache.delete(self._key(key))


def pattern_key(dimensions: dict) -> str:
    if not dimensions:
        return '*'
    return '&'.join(f'{name}={value}' for name, value in sorted(dimensions.items()))


class QueryPatternTracker:
    """
    Counts how often each filter combination is requested.

    A combination seen at least `threshold` times is hot: its exact result is
    worth computing and caching instead of serving a narrowed broader one.
    """

    def __init__(self, store: Optional[CounterStore] = None, threshold: Optional[int] = None):
        self.store = store if store is not None else InMemoryCounterStore()
        self.threshold = threshold if threshold is not None else settings.QUERY_PATTERN_HOT_THRESHOLD

    def track(self, dimensions: dict) -> int:
        count = self.store.increment(pattern_key(dimensions))
        if count == self.threshold:
            logger.info("Query pattern %s became hot after %d requests.", pattern_key(dimensions), count)
        return count

    def count(self, dimensions: dict) -> int:
        return self.store.get(pattern_key(dimensions))

    def is_hot(self, dimensions: dict) -> bool:
        return self.count(dimensions) >= self.threshold
