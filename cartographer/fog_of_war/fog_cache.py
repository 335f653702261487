# -*- coding: utf-8 -*-
"""
Fog Result Cache - Fog-of-War Engine

Memoizes fog calculation results so that repeated renders and rapid,
near-identical viewport changes do not recompute the same fog.

Key = (viewport bounds bucketed at ``cache_viewport_tolerance``,
revealed-area content hash, calculation options fingerprint).

Features:
    - LRU eviction at ``cache_max_entries``
    - Expiration after ``cache_expiration_seconds``
    - Approximate viewport matching within the configured tolerance
    - Lazy staleness: an entry whose content hash no longer matches the
      current revealed-area version is dropped when it is next looked up,
      never swept eagerly
    - Results computed from caller-supplied areas are keyed (kind
      ``caller``) on a hash of those areas and never go stale
    - gzip compression of large results
    - Deep copies on set and get so cached geometry is never aliased
    - Hit/miss, eviction and time-saved analytics

Example:
    >>> cache = FogResultCache(content_version=lambda: index.content_hash)
    >>> key = cache.build_key(bounds, index.content_hash, options)
    >>> cache.set(key, result)
    >>> cache.get(key) == result
    True

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import copy
import gzip
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, List, Optional

from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.metrics import (
    record_cache_eviction,
    record_cache_request,
    update_cache_entries,
)
from cartographer.fog_of_war.models import (
    FogCacheEntry,
    FogCacheKey,
    FogCacheStats,
    FogCalculationOptions,
    FogCalculationResult,
    ViewportBounds,
)

logger = logging.getLogger(__name__)

CALLER_KIND = "caller"


def revealed_areas_hash(features: List[Any]) -> str:
    """SHA-256 content hash of a list of revealed-area features."""
    serialized = json.dumps(features, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class FogResultCache:
    """Bounded LRU cache of fog calculation results.

    Attributes:
        config: Engine configuration.
    """

    def __init__(
        self,
        config: Optional[FogOfWarConfig] = None,
        content_version: Optional[Callable[[], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            config: Engine configuration.
            content_version: Callable returning the current revealed-area
                content hash. When omitted, entries are matched against the
                content hash carried by the lookup key.
            clock: Monotonic time source in seconds.
        """
        self.config = config or get_config()
        self._content_version = content_version
        self._clock = clock
        self._entries: "OrderedDict[str, FogCacheEntry]" = OrderedDict()
        self._destroyed = False

        self._hits = 0
        self._misses = 0
        self._evicted = 0
        self._expired = 0
        self._stale = 0
        self._time_saved_ms = 0.0

        logger.info(
            "FogResultCache initialized: max_entries=%d, expiration=%.0fs, "
            "tolerance=%.4f, compression=%s",
            self.config.cache_max_entries,
            self.config.cache_expiration_seconds,
            self.config.cache_viewport_tolerance,
            self.config.cache_compression_enabled,
        )

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def build_key(
        self,
        bounds: Any,
        content_hash: str,
        options: Optional[FogCalculationOptions] = None,
        kind: str = "final",
    ) -> FogCacheKey:
        """Build the cache key for a viewport.

        Raises:
            InvalidBoundsError: If ``bounds`` is not a valid viewport.
        """
        viewport = ViewportBounds.parse(bounds)
        tolerance = self.config.cache_viewport_tolerance
        bucket = tuple(int(round(v / tolerance)) for v in viewport.as_list())
        return FogCacheKey(
            kind=kind,
            bounds_bucket=bucket,
            content_hash=content_hash,
            options_hash=options.fingerprint() if options is not None else "",
            request_bounds=tuple(viewport.as_list()),
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, key: FogCacheKey) -> Optional[FogCalculationResult]:
        """Return a deep copy of the cached result, or None on a miss.

        Expired entries and entries whose content hash differs from the
        current content version are removed on discovery. An entry whose
        viewport is outside the tolerance of the request is a miss.
        """
        fingerprint = key.fingerprint
        entry = self._entries.get(fingerprint)
        if entry is None:
            return self._miss("miss")

        now = self._clock()
        if now - entry.created_at > self.config.cache_expiration_seconds:
            del self._entries[fingerprint]
            self._expired += 1
            record_cache_eviction("expired")
            update_cache_entries(len(self._entries))
            return self._miss("expired")

        if self._content_version is None or key.kind == CALLER_KIND:
            current = key.content_hash
        else:
            current = self._content_version()
        if entry.content_hash != current:
            del self._entries[fingerprint]
            self._stale += 1
            record_cache_eviction("stale")
            update_cache_entries(len(self._entries))
            logger.debug("Stale fog cache entry dropped: %s", fingerprint)
            return self._miss("stale")

        tolerance = self.config.cache_viewport_tolerance
        if any(
            abs(cached - requested) > tolerance
            for cached, requested in zip(entry.bounds, key.request_bounds)
        ):
            return self._miss("miss")

        entry.last_accessed_at = now
        entry.access_count += 1
        self._entries.move_to_end(fingerprint)
        self._hits += 1
        self._time_saved_ms += entry.calculation_time_ms
        record_cache_request("hit")
        return FogCalculationResult.model_validate(self._decode(entry))

    def _miss(self, reason: str) -> None:
        self._misses += 1
        record_cache_request(reason)
        return None

    @staticmethod
    def _decode(entry: FogCacheEntry) -> Any:
        if entry.compressed:
            return json.loads(gzip.decompress(entry.payload).decode("utf-8"))
        return copy.deepcopy(entry.payload)

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def set(self, key: FogCacheKey, value: FogCalculationResult) -> None:
        """Insert or overwrite an entry, evicting LRU entries at capacity."""
        if self._destroyed:
            raise RuntimeError("FogResultCache has been destroyed")

        payload: Any = value.model_dump(mode="json")
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        size = len(raw)
        compressed = False
        if (
            self.config.cache_compression_enabled
            and size > self.config.cache_compression_threshold_bytes
        ):
            payload = gzip.compress(raw)
            compressed = True
            logger.debug("Compressed fog cache entry %d -> %d bytes", size, len(payload))
            size = len(payload)

        now = self._clock()
        fingerprint = key.fingerprint
        self._entries.pop(fingerprint, None)
        self._entries[fingerprint] = FogCacheEntry(
            key=key,
            payload=payload,
            compressed=compressed,
            bounds=key.request_bounds,
            content_hash=key.content_hash,
            created_at=now,
            last_accessed_at=now,
            size_bytes=size,
            calculation_time_ms=value.calculation_time_ms,
        )

        evicted = 0
        while len(self._entries) > max(1, self.config.cache_max_entries):
            self._entries.popitem(last=False)
            evicted += 1
        if evicted:
            self._evicted += evicted
            record_cache_eviction("capacity", evicted)
        update_cache_entries(len(self._entries))

    # ------------------------------------------------------------------
    # Invalidation and housekeeping
    # ------------------------------------------------------------------

    def invalidate_all(self) -> int:
        """Drop every entry. Returns the number removed."""
        count = len(self._entries)
        self._entries.clear()
        record_cache_eviction("invalidated", count)
        update_cache_entries(0)
        logger.info("FogResultCache invalidated %d entries", count)
        return count

    def invalidate_viewport(self, bounds: Any) -> int:
        """Drop entries whose viewport intersects ``bounds``."""
        viewport = ViewportBounds.parse(bounds)
        doomed: List[str] = [
            fingerprint
            for fingerprint, entry in self._entries.items()
            if entry.bounds[0] <= viewport.max_lon and entry.bounds[2] >= viewport.min_lon
            and entry.bounds[1] <= viewport.max_lat and entry.bounds[3] >= viewport.min_lat
        ]
        for fingerprint in doomed:
            del self._entries[fingerprint]
        record_cache_eviction("invalidated", len(doomed))
        update_cache_entries(len(self._entries))
        return len(doomed)

    def prune_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expiration = self.config.cache_expiration_seconds
        doomed = [
            fingerprint
            for fingerprint, entry in self._entries.items()
            if now - entry.created_at > expiration
        ]
        for fingerprint in doomed:
            del self._entries[fingerprint]
        self._expired += len(doomed)
        record_cache_eviction("expired", len(doomed))
        update_cache_entries(len(self._entries))
        return len(doomed)

    def optimize(self, aggressive: bool = False) -> int:
        """Prune expired entries, then rarely used ones.

        Entries accessed less than half as often as the average are
        dropped when the cache is over 80% full, or always when
        ``aggressive``.
        """
        removed = self.prune_expired()
        if not self._entries:
            return removed
        if aggressive or len(self._entries) > 0.8 * self.config.cache_max_entries:
            average = sum(e.access_count for e in self._entries.values()) / len(self._entries)
            doomed = [
                fingerprint
                for fingerprint, entry in self._entries.items()
                if entry.access_count < average * 0.5
            ]
            for fingerprint in doomed:
                del self._entries[fingerprint]
            self._evicted += len(doomed)
            record_cache_eviction("optimize", len(doomed))
            removed += len(doomed)
        update_cache_entries(len(self._entries))
        logger.info("FogResultCache optimized: %d entries removed", removed)
        return removed

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        self._entries.clear()
        self._hits = self._misses = 0
        self._evicted = self._expired = self._stale = 0
        self._time_saved_ms = 0.0
        update_cache_entries(0)

    def destroy(self) -> None:
        """Clear the cache and refuse further writes."""
        self.clear()
        self._destroyed = True
        logger.info("FogResultCache destroyed")

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> FogCacheStats:
        lookups = self._hits + self._misses
        top = sorted(
            self._entries.values(),
            key=lambda e: e.access_count,
            reverse=True,
        )[:5]
        return FogCacheStats(
            total_entries=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            hit_ratio=(self._hits / lookups) if lookups else 0.0,
            memory_usage=sum(e.size_bytes for e in self._entries.values()),
            evicted_entries=self._evicted,
            expired_entries=self._expired,
            stale_entries=self._stale,
            average_time_saved_ms=(self._time_saved_ms / self._hits) if self._hits else 0.0,
            top_cache_keys=[e.key.fingerprint for e in top],
        )


__all__ = ["CALLER_KIND", "FogResultCache", "revealed_areas_hash"]
