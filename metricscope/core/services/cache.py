"""
Computation Cache - TTL + LRU memoization of expensive engine results.

Entries are immutable: a parameter change produces a different key. Concurrent
callers for the same uncached key share one in-flight computation, which keeps
running when any single caller is cancelled. Failed computations are not
cached, and a computation invalidated while running does not store its result.
"""

import asyncio
import fnmatch
import inspect
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from metricscope.core.domain.settings import SystemSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float  # clock() reading at insertion
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl_seconds


class ComputationCache:
    """
    One cache namespace with a default TTL and an entry cap.

    The least recently used entry is evicted once the cap is exceeded.
    """

    def __init__(
        self,
        name: str,
        default_ttl: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.name = name
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[str, asyncio.Task] = {}

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._lookup(key) is not None

    def get(self, key: str) -> Any | None:
        entry = self._lookup(key)
        return None if entry is None else entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl_seconds=ttl_seconds if ttl_seconds is not None else self.default_ttl,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Cache '{self.name}' evicted {evicted}")
        return entry

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any | Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Canonical cache key (see make_cache_key)
            compute_fn: Zero-argument function or coroutine function
            ttl_seconds: Overrides the namespace default TTL for this entry
        """
        entry = self._lookup(key)
        if entry is not None:
            self.hits += 1
            return entry.value

        task = self._in_flight.get(key)
        if task is not None:
            self.hits += 1
            logger.debug(f"Cache '{self.name}' joined in-flight computation for {key}")
        else:
            self.misses += 1
            task = asyncio.ensure_future(self._compute(key, compute_fn, ttl_seconds))
            task.add_done_callback(_mark_retrieved)
            self._in_flight[key] = task

        # The computation belongs to the cache: a cancelled caller stops waiting
        # without cancelling it for the other callers
        return await asyncio.shield(task)

    async def _compute(
        self,
        key: str,
        compute_fn: Callable[[], Any | Awaitable[Any]],
        ttl_seconds: float | None,
    ) -> Any:
        try:
            value = compute_fn()
            if inspect.isawaitable(value):
                value = await value
        finally:
            # Invalidation detaches the computation, its result is then stale
            current = self._in_flight.get(key) is asyncio.current_task()
            if current:
                del self._in_flight[key]

        if current:
            self.set(key, value, ttl_seconds)
        else:
            logger.debug(f"Cache '{self.name}' discarded result for {key}, invalidated while computing")
        return value

    def invalidate(self, key: str) -> bool:
        self._in_flight.pop(key, None)
        return self._entries.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching a glob pattern, e.g. 'forecast:revenue:*'."""
        for key in [k for k in self._in_flight if fnmatch.fnmatchcase(k, pattern)]:
            del self._in_flight[key]
        matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in matched:
            del self._entries[key]
        return len(matched)

    def clear(self) -> int:
        self._in_flight.clear()
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "name": self.name,
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "default_ttl": self.default_ttl,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / total if total else 0.0,
        }

    def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry


def _mark_retrieved(task: asyncio.Task) -> None:
    # A failure nobody waited for is not logged as "never retrieved"
    if not task.cancelled():
        task.exception()


def make_cache_key(
    operation: str,
    metric_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    interval: str | None = None,
    **options: Any,
) -> str:
    """
    Canonical key: operation:metric:start:end:interval:{options as sorted JSON}.

    Option order does not matter; options set to None are dropped.
    """
    opts = {k: v for k, v in options.items() if v is not None}
    return ":".join([
        operation,
        metric_id,
        start.isoformat() if start else "",
        end.isoformat() if end else "",
        interval or "",
        json.dumps(opts, sort_keys=True, separators=(",", ":"), default=_json_default),
    ])


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)


class AnalyticsCache:
    """
    The cache namespaces used by the analytics service.

    series, decomposition and forecast hold raw history and the two expensive
    engine results. analysis holds the cheaper derived results (anomalies,
    correlation, entropy) so they never evict raw history from its LRU.
    """

    def __init__(
        self,
        series: ComputationCache,
        decomposition: ComputationCache,
        forecast: ComputationCache,
        analysis: ComputationCache,
    ):
        self.series = series
        self.decomposition = decomposition
        self.forecast = forecast
        self.analysis = analysis

    @classmethod
    def from_settings(cls, settings: SystemSettings, clock: Callable[[], float] = time.monotonic) -> "AnalyticsCache":
        return cls(
            series=ComputationCache(
                "series", settings.series_cache_ttl, settings.series_cache_max_entries, clock
            ),
            decomposition=ComputationCache(
                "decomposition", settings.decomposition_cache_ttl, settings.decomposition_cache_max_entries, clock
            ),
            forecast=ComputationCache(
                "forecast", settings.forecast_cache_ttl, settings.forecast_cache_max_entries, clock
            ),
            analysis=ComputationCache(
                "analysis", settings.analysis_cache_ttl, settings.analysis_cache_max_entries, clock
            ),
        )

    @property
    def namespaces(self) -> list[ComputationCache]:
        return [self.series, self.decomposition, self.forecast, self.analysis]

    def invalidate(self, pattern: str | None = None) -> int:
        """Clear every namespace, or only keys matching a glob pattern. Returns the number removed."""
        if pattern is None:
            removed = sum(ns.clear() for ns in self.namespaces)
        else:
            removed = sum(ns.invalidate_pattern(pattern) for ns in self.namespaces)
        logger.info(f"Cache invalidated ({pattern or 'all'}): {removed} entries removed")
        return removed

    def stats(self) -> dict[str, dict[str, Any]]:
        return {ns.name: ns.stats() for ns in self.namespaces}
