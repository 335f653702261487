# -*- coding: utf-8 -*-
"""
Prometheus Metrics - Fog-of-War Engine

12 Prometheus metrics for the fog-of-war computation core with graceful
fallback when prometheus_client is not installed.

Metrics:
    1.  carto_fog_calculations_total (Counter) [tier, status]
    2.  carto_fog_calculation_duration_seconds (Histogram) [tier]
    3.  carto_fog_geometry_operations_total (Counter) [operation, status]
    4.  carto_fog_geometry_fallbacks_total (Counter) [operation]
    5.  carto_fog_index_queries_total (Counter) [query_type]
    6.  carto_fog_index_query_duration_seconds (Histogram) [query_type]
    7.  carto_fog_index_features (Gauge) []
    8.  carto_fog_index_memory_bytes (Gauge) []
    9.  carto_fog_cache_requests_total (Counter) [result]
    10. carto_fog_cache_evictions_total (Counter) [reason]
    11. carto_fog_cache_entries (Gauge) []
    12. carto_fog_repository_errors_total (Counter) [operation, error_type]

Gauges are process-wide; with several fog sessions in one process they
report the most recent update.

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Graceful prometheus_client import
# ---------------------------------------------------------------------------

try:
    from prometheus_client import Counter, Gauge, Histogram
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False
    logger.info("prometheus_client not installed; fog-of-war metrics disabled")


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

if PROMETHEUS_AVAILABLE:
    # 1. Fog calculations by producing tier and status
    fog_calculations_total = Counter(
        "carto_fog_calculations_total",
        "Total fog calculations performed",
        labelnames=["tier", "status"],
    )

    # 2. Fog calculation duration (interactive target ~100 ms)
    fog_calculation_duration_seconds = Histogram(
        "carto_fog_calculation_duration_seconds",
        "Fog calculation duration in seconds",
        labelnames=["tier"],
        buckets=(
            0.001, 0.005, 0.01, 0.025, 0.05, 0.1,
            0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
        ),
    )

    # 3. Geometry primitive calls by operation and status
    geometry_operations_total = Counter(
        "carto_fog_geometry_operations_total",
        "Total geometry operations performed",
        labelnames=["operation", "status"],
    )

    # 4. Geometry primitives that returned their documented fallback
    geometry_fallbacks_total = Counter(
        "carto_fog_geometry_fallbacks_total",
        "Total geometry operations that used a fallback result",
        labelnames=["operation"],
    )

    # 5. Spatial index queries by type
    index_queries_total = Counter(
        "carto_fog_index_queries_total",
        "Total spatial index queries",
        labelnames=["query_type"],
    )

    # 6. Spatial index query duration
    index_query_duration_seconds = Histogram(
        "carto_fog_index_query_duration_seconds",
        "Spatial index query duration in seconds",
        labelnames=["query_type"],
        buckets=(
            0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025,
            0.05, 0.1, 0.25, 0.5, 1.0,
        ),
    )

    # 7. Features currently indexed
    index_features = Gauge(
        "carto_fog_index_features",
        "Number of revealed-area features in the spatial index",
    )

    # 8. Estimated spatial index memory
    index_memory_bytes = Gauge(
        "carto_fog_index_memory_bytes",
        "Estimated spatial index memory footprint in bytes",
    )

    # 9. Cache lookups by result (hit, miss, stale, expired)
    cache_requests_total = Counter(
        "carto_fog_cache_requests_total",
        "Total fog result cache lookups",
        labelnames=["result"],
    )

    # 10. Cache evictions by reason (capacity, expired, stale, optimize)
    cache_evictions_total = Counter(
        "carto_fog_cache_evictions_total",
        "Total fog result cache evictions",
        labelnames=["reason"],
    )

    # 11. Cached fog results
    cache_entries = Gauge(
        "carto_fog_cache_entries",
        "Number of cached fog results",
    )

    # 12. Repository failures by operation and error type
    repository_errors_total = Counter(
        "carto_fog_repository_errors_total",
        "Total revealed-area repository errors",
        labelnames=["operation", "error_type"],
    )

else:
    # No-op placeholders
    fog_calculations_total = None  # type: ignore[assignment]
    fog_calculation_duration_seconds = None  # type: ignore[assignment]
    geometry_operations_total = None  # type: ignore[assignment]
    geometry_fallbacks_total = None  # type: ignore[assignment]
    index_queries_total = None  # type: ignore[assignment]
    index_query_duration_seconds = None  # type: ignore[assignment]
    index_features = None  # type: ignore[assignment]
    index_memory_bytes = None  # type: ignore[assignment]
    cache_requests_total = None  # type: ignore[assignment]
    cache_evictions_total = None  # type: ignore[assignment]
    cache_entries = None  # type: ignore[assignment]
    repository_errors_total = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Helper functions (safe to call even without prometheus_client)
# ---------------------------------------------------------------------------


def record_fog_calculation(
    tier: str, duration_seconds: float, status: str = "success",
) -> None:
    """Record a completed fog calculation.

    Args:
        tier: Tier that produced the result (spatial, viewport-db, world, cache).
        duration_seconds: Calculation duration in seconds.
        status: success or degraded.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    fog_calculations_total.labels(tier=tier, status=status).inc()
    fog_calculation_duration_seconds.labels(tier=tier).observe(duration_seconds)


def record_geometry_operation(
    operation: str, status: str = "success", fallback: bool = False,
) -> None:
    """Record a geometry primitive call.

    Args:
        operation: Primitive name (buffer, union, difference).
        status: success or failed.
        fallback: Whether the documented fallback result was returned.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    geometry_operations_total.labels(operation=operation, status=status).inc()
    if fallback:
        geometry_fallbacks_total.labels(operation=operation).inc()


def record_index_query(query_type: str, duration_seconds: float) -> None:
    """Record a spatial index query.

    Args:
        query_type: viewport or radius.
        duration_seconds: Query duration in seconds.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    index_queries_total.labels(query_type=query_type).inc()
    index_query_duration_seconds.labels(query_type=query_type).observe(
        duration_seconds,
    )


def update_index_size(feature_count: int, estimated_bytes: int) -> None:
    """Set the spatial index size gauges.

    Args:
        feature_count: Features currently indexed.
        estimated_bytes: Estimated memory footprint.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    index_features.set(feature_count)
    index_memory_bytes.set(estimated_bytes)


def record_cache_request(result: str) -> None:
    """Record a cache lookup.

    Args:
        result: hit, miss, stale or expired.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    cache_requests_total.labels(result=result).inc()


def record_cache_eviction(reason: str, count: int = 1) -> None:
    """Record cache evictions.

    Args:
        reason: capacity, expired, stale, optimize or invalidated.
        count: Number of entries evicted.
    """
    if not PROMETHEUS_AVAILABLE or count <= 0:
        return
    cache_evictions_total.labels(reason=reason).inc(count)


def update_cache_entries(count: int) -> None:
    """Set the cached results gauge."""
    if not PROMETHEUS_AVAILABLE:
        return
    cache_entries.set(count)


def record_repository_error(operation: str, error_type: str) -> None:
    """Record a repository failure.

    Args:
        operation: get_revealed_areas or save_revealed_area.
        error_type: timeout, circuit_open or exception.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    repository_errors_total.labels(
        operation=operation, error_type=error_type,
    ).inc()


__all__ = [
    "PROMETHEUS_AVAILABLE",
    # Metric objects
    "fog_calculations_total",
    "fog_calculation_duration_seconds",
    "geometry_operations_total",
    "geometry_fallbacks_total",
    "index_queries_total",
    "index_query_duration_seconds",
    "index_features",
    "index_memory_bytes",
    "cache_requests_total",
    "cache_evictions_total",
    "cache_entries",
    "repository_errors_total",
    # Helper functions
    "record_fog_calculation",
    "record_geometry_operation",
    "record_index_query",
    "update_index_size",
    "record_cache_request",
    "record_cache_eviction",
    "update_cache_entries",
    "record_repository_error",
]
