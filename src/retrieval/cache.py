"""Thread-safe TTL + LRU cache for hybrid search results."""

from collections import OrderedDict
from dataclasses import asdict, is_dataclass
import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Sequence

from .config import DEFAULT_RETRIEVAL_CONFIG
from .tokenize import normalize_query
from .types import CacheEntry, SearchResult

log = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def cache_key(query: str, filters: dict[str, Any] | None) -> str:
    """Stable key for (normalized query, filter set).

    Filter maps are serialized with sorted keys, so insertion order does not
    change the key.
    """
    payload = {"query": normalize_query(query), "filters": filters or {}}
    encoded = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class SearchCache:
    """Bounded cache of prior hybrid search results.

    Entries expire ``ttl_seconds`` after insertion (checked lazily on access).
    When full, the least recently used entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RETRIEVAL_CONFIG.cache_ttl_seconds,
        capacity: int = DEFAULT_RETRIEVAL_CONFIG.cache_capacity,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(
        self, query: str, filters: dict[str, Any] | None
    ) -> tuple[CacheEntry | None, bool]:
        key = cache_key(query, filters)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None, False

            if now > entry.created_at + self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                log.debug(f"Search cache expired: {key[:12]}")
                return None, False

            self._entries.move_to_end(key)
            self._hits += 1
            return entry, True

    def set(
        self,
        query: str,
        filters: dict[str, Any] | None,
        results: Sequence[SearchResult],
        query_time_ms: float,
        query_vector: Sequence[float] | None = None,
    ) -> None:
        key = cache_key(query, filters)
        entry = CacheEntry(
            results=tuple(results),
            query_time_ms=query_time_ms,
            query_vector=tuple(query_vector) if query_vector is not None else None,
            created_at=self._clock(),
        )

        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                log.debug(f"Search cache evicted: {evicted[:12]}")
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "size": len(self._entries),
                "capacity": self.capacity,
            }
