import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    hits: int = 0


def hierarchical_keys(base_key: str, dimensions: dict) -> list[str]:
    """
    Lookup keys for a filtered query, most specific first.

    Dimensions are sorted by name so the same filter set always builds the
    same key: {'size': 'M', 'color': 'red'} under 'products' gives
    ['products:color=red:size=M', 'products:color=red', 'products'].
    """
    keys = [base_key]
    current = base_key
    for name, value in sorted(dimensions.items()):
        current = f'{current}:{name}={value}'
        keys.append(current)
    return list(reversed(keys))


class BoundedCache:
    """
    In-process cache bounded by age and by entry count.

    An entry is valid while its age is below `ttl`; expired entries are
    treated as absent even before a sweep removes them. When the cache is full
    the entries with the fewest hits are evicted first, oldest first among
    equals. A daemon thread sweeps every `sweep_interval` seconds when one is
    given. Values are handed out as stored, callers must not mutate them.
    """

    def __init__(self, max_size: int = 1000, ttl: float = 3600, sweep_interval: Optional[float] = None,
                 clock=time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if sweep_interval:
            self.start()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, key):
        return self.is_valid(key)

    # -----------------------------------------------------------------------
    # Plain keys
    # -----------------------------------------------------------------------

    def get(self, key: str, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not self._fresh(entry):
                del self._entries[key]
                return default
            entry.hits += 1
            return entry.value

    def set(self, key: str, value) -> None:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None and len(self._entries) >= self.max_size:
                self._sweep_locked(capacity=self.max_size - 1)
            hits = entry.hits if entry is not None else 0
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), hits=hits + 1)

    def is_valid(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._fresh(entry)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries, then the least used ones until within capacity."""
        with self._lock:
            return self._sweep_locked(capacity=self.max_size)

    def _fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self.ttl

    def _sweep_locked(self, capacity: int) -> int:
        expired = [key for key, entry in self._entries.items() if not self._fresh(entry)]
        for key in expired:
            del self._entries[key]

        overflow = len(self._entries) - capacity
        evicted = []
        if overflow > 0:
            # sorted() is stable, so equal hit counts keep insertion order.
            by_hits = sorted(self._entries.items(), key=lambda item: item[1].hits)
            evicted = [key for key, _ in by_hits[:overflow]]
            for key in evicted:
                del self._entries[key]

        if expired or evicted:
            logger.debug("Cache sweep removed %d expired and %d least used entries.", len(expired), len(evicted))
        return len(expired) + len(evicted)

    # -----------------------------------------------------------------------
    # Hierarchical keys
    # -----------------------------------------------------------------------

    def set_hierarchical(self, base_key: str, dimensions: dict, value) -> str:
        """Store `value` under the most specific key only and return that key."""
        key = hierarchical_keys(base_key, dimensions)[0]
        self.set(key, value)
        return key

    def resolve_hierarchical(self, base_key: str, dimensions: dict) -> tuple[Optional[str], Any]:
        """
        Walk from the most specific key to the base key and return the first
        valid `(key, value)`, or `(None, None)` when nothing is cached.
        """
        for key in hierarchical_keys(base_key, dimensions):
            value = self.get(key, _MISSING)
            if value is not _MISSING:
                return key, value
        return None, None

    def get_hierarchical(self, base_key: str, dimensions: dict, default=None):
        key, value = self.resolve_hierarchical(base_key, dimensions)
        return default if key is None else value

    # -----------------------------------------------------------------------
    # Background sweeper
    # -----------------------------------------------------------------------

    def start(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        if not self.sweep_interval:
            raise ValueError("sweep_interval is required for the background sweeper")
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name='cache-sweeper', daemon=True)
        self._sweeper.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def _sweep_loop(self):
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed.")
