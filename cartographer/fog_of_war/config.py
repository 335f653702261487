# -*- coding: utf-8 -*-
"""
Fog-of-War Engine Configuration

Centralized configuration for the fog-of-war computation core covering:
- Geometry operations (buffer vertex count, complexity thresholds)
- Location reveal radius and duplicate-fix tolerance
- Spatial index query defaults and level-of-detail thresholds
- Spatial index memory threshold and optimization ratios
- Fog result cache sizing, expiration, tolerance and compression
- Repository timeout and circuit breaker
- Performance level thresholds
- Logging level

All settings can be overridden via environment variables with the
``CARTO_FOG_`` prefix (e.g. ``CARTO_FOG_REVEAL_RADIUS_M``).

Example:
    >>> from cartographer.fog_of_war.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.reveal_radius_m, cfg.cache_max_entries)

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "CARTO_FOG_"


# ---------------------------------------------------------------------------
# FogOfWarConfig
# ---------------------------------------------------------------------------


@dataclass
class FogOfWarConfig:
    """Complete configuration for the fog-of-war computation core.

    Attributes:
        log_level: Logging level for the fog-of-war engine.
        buffer_steps: Number of vertices used to approximate a buffered
            circle around a location fix.
        complexity_medium_vertices: Total vertex count above which a
            geometry is classified MEDIUM complexity.
        complexity_high_vertices: Total vertex count above which a
            geometry is classified HIGH complexity; single rings above
            this count also raise a validation warning.
        reveal_radius_m: Radius in meters of the disc revealed around a
            location fix.
        duplicate_location_tolerance: Coordinate delta in degrees below
            which two consecutive fixes are treated as duplicates.
        merge_adjacent_areas: Whether a new revealed area is unioned with
            the indexed areas it touches.
        max_query_results: Default cap on features returned by a viewport
            query.
        query_buffer_distance: Degrees added to every side of a viewport
            before querying the index.
        full_detail_zoom: Zoom level at and above which no level-of-detail
            reduction is applied.
        full_detail_distance: Distance in degrees from the viewport center
            within which features keep full fidelity.
        lod_medium_zoom: Zoom level at and above which the medium
            simplification tolerance is used instead of the low one.
        lod_area_zoom_offset: Offset in the cull threshold
            ``10 ** -(zoom - offset)`` square degrees.
        medium_detail_tolerance: Simplification tolerance (degrees) for
            medium-detail features.
        low_detail_tolerance: Simplification tolerance (degrees) for
            low-detail features.
        memory_threshold_bytes: Estimated index size above which cleanup is
            required.
        memory_warning_ratio: Fraction of the threshold above which cleanup
            is recommended.
        optimize_keep_ratio: Fraction of entries kept untouched by a normal
            memory optimization.
        aggressive_keep_ratio: Fraction of entries kept untouched by an
            aggressive memory optimization.
        auto_optimize_memory: Whether the service runs memory optimization
            when the index reports cleanup_required.
        cache_enabled: Whether fog results are memoized.
        cache_max_entries: Maximum number of cached fog results.
        cache_expiration_seconds: Lifetime of a cached fog result.
        cache_viewport_tolerance: Bucket size in degrees used to match
            near-identical viewports.
        cache_compression_enabled: Whether large results are stored gzip
            compressed.
        cache_compression_threshold_bytes: Serialized size above which a
            cached result is compressed.
        repository_timeout_seconds: Upper bound on any repository call.
        circuit_breaker_threshold: Consecutive repository failures that
            open the circuit.
        circuit_breaker_reset_seconds: Time an open circuit waits before
            letting a trial call through.
        fast_threshold_ms: Calculations faster than this are FAST.
        moderate_threshold_ms: Calculations faster than this are MODERATE;
            slower ones are SLOW.
    """

    # -- Logging -------------------------------------------------------------
    log_level: str = "INFO"

    # -- Geometry ------------------------------------------------------------
    buffer_steps: int = 64
    complexity_medium_vertices: int = 500
    complexity_high_vertices: int = 1000

    # -- Location reveal -----------------------------------------------------
    reveal_radius_m: float = 50.0
    duplicate_location_tolerance: float = 0.00001
    merge_adjacent_areas: bool = True

    # -- Spatial index queries -----------------------------------------------
    max_query_results: int = 1000
    query_buffer_distance: float = 0.001

    # -- Level of detail -----------------------------------------------------
    full_detail_zoom: int = 12
    full_detail_distance: float = 0.01
    lod_medium_zoom: int = 9
    lod_area_zoom_offset: int = 5
    medium_detail_tolerance: float = 0.001
    low_detail_tolerance: float = 0.005

    # -- Spatial index memory ------------------------------------------------
    memory_threshold_bytes: int = 50 * 1024 * 1024
    memory_warning_ratio: float = 0.7
    optimize_keep_ratio: float = 0.7
    aggressive_keep_ratio: float = 0.5
    auto_optimize_memory: bool = True

    # -- Fog result cache ----------------------------------------------------
    cache_enabled: bool = True
    cache_max_entries: int = 100
    cache_expiration_seconds: float = 300.0
    cache_viewport_tolerance: float = 0.001
    cache_compression_enabled: bool = True
    cache_compression_threshold_bytes: int = 64 * 1024

    # -- Repository ----------------------------------------------------------
    repository_timeout_seconds: float = 5.0
    circuit_breaker_threshold: int = 3
    circuit_breaker_reset_seconds: float = 30.0

    # -- Performance levels --------------------------------------------------
    fast_threshold_ms: float = 50.0
    moderate_threshold_ms: float = 100.0

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> FogOfWarConfig:
        """Build a FogOfWarConfig from environment variables.

        Every field can be overridden via ``CARTO_FOG_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).
        Integer values are parsed via ``int()``.
        Float values are parsed via ``float()``.

        Returns:
            Populated FogOfWarConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _float(name: str, default: float) -> float:
            val = _env(name)
            if val is None:
                return default
            try:
                return float(val)
            except ValueError:
                logger.warning(
                    "Invalid float for %s%s=%s, using default %s",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        config = cls(
            log_level=_str("LOG_LEVEL", cls.log_level),
            buffer_steps=_int("BUFFER_STEPS", cls.buffer_steps),
            complexity_medium_vertices=_int(
                "COMPLEXITY_MEDIUM_VERTICES", cls.complexity_medium_vertices,
            ),
            complexity_high_vertices=_int(
                "COMPLEXITY_HIGH_VERTICES", cls.complexity_high_vertices,
            ),
            reveal_radius_m=_float("REVEAL_RADIUS_M", cls.reveal_radius_m),
            duplicate_location_tolerance=_float(
                "DUPLICATE_LOCATION_TOLERANCE",
                cls.duplicate_location_tolerance,
            ),
            merge_adjacent_areas=_bool(
                "MERGE_ADJACENT_AREAS", cls.merge_adjacent_areas,
            ),
            max_query_results=_int(
                "MAX_QUERY_RESULTS", cls.max_query_results,
            ),
            query_buffer_distance=_float(
                "QUERY_BUFFER_DISTANCE", cls.query_buffer_distance,
            ),
            full_detail_zoom=_int("FULL_DETAIL_ZOOM", cls.full_detail_zoom),
            full_detail_distance=_float(
                "FULL_DETAIL_DISTANCE", cls.full_detail_distance,
            ),
            lod_medium_zoom=_int("LOD_MEDIUM_ZOOM", cls.lod_medium_zoom),
            lod_area_zoom_offset=_int(
                "LOD_AREA_ZOOM_OFFSET", cls.lod_area_zoom_offset,
            ),
            medium_detail_tolerance=_float(
                "MEDIUM_DETAIL_TOLERANCE", cls.medium_detail_tolerance,
            ),
            low_detail_tolerance=_float(
                "LOW_DETAIL_TOLERANCE", cls.low_detail_tolerance,
            ),
            memory_threshold_bytes=_int(
                "MEMORY_THRESHOLD_BYTES", cls.memory_threshold_bytes,
            ),
            memory_warning_ratio=_float(
                "MEMORY_WARNING_RATIO", cls.memory_warning_ratio,
            ),
            optimize_keep_ratio=_float(
                "OPTIMIZE_KEEP_RATIO", cls.optimize_keep_ratio,
            ),
            aggressive_keep_ratio=_float(
                "AGGRESSIVE_KEEP_RATIO", cls.aggressive_keep_ratio,
            ),
            auto_optimize_memory=_bool(
                "AUTO_OPTIMIZE_MEMORY", cls.auto_optimize_memory,
            ),
            cache_enabled=_bool("CACHE_ENABLED", cls.cache_enabled),
            cache_max_entries=_int(
                "CACHE_MAX_ENTRIES", cls.cache_max_entries,
            ),
            cache_expiration_seconds=_float(
                "CACHE_EXPIRATION_SECONDS", cls.cache_expiration_seconds,
            ),
            cache_viewport_tolerance=_float(
                "CACHE_VIEWPORT_TOLERANCE", cls.cache_viewport_tolerance,
            ),
            cache_compression_enabled=_bool(
                "CACHE_COMPRESSION_ENABLED", cls.cache_compression_enabled,
            ),
            cache_compression_threshold_bytes=_int(
                "CACHE_COMPRESSION_THRESHOLD_BYTES",
                cls.cache_compression_threshold_bytes,
            ),
            repository_timeout_seconds=_float(
                "REPOSITORY_TIMEOUT_SECONDS", cls.repository_timeout_seconds,
            ),
            circuit_breaker_threshold=_int(
                "CIRCUIT_BREAKER_THRESHOLD", cls.circuit_breaker_threshold,
            ),
            circuit_breaker_reset_seconds=_float(
                "CIRCUIT_BREAKER_RESET_SECONDS",
                cls.circuit_breaker_reset_seconds,
            ),
            fast_threshold_ms=_float(
                "FAST_THRESHOLD_MS", cls.fast_threshold_ms,
            ),
            moderate_threshold_ms=_float(
                "MODERATE_THRESHOLD_MS", cls.moderate_threshold_ms,
            ),
        )

        logger.info(
            "FogOfWarConfig loaded: reveal_radius=%.1fm, buffer_steps=%d, "
            "max_results=%d, lod=[zoom>=%d, dist<=%.4f, tol=%.4f/%.4f], "
            "memory_threshold=%dB, cache=%s/%d entries/%.0fs, "
            "repository_timeout=%.1fs, breaker=%d/%.0fs",
            config.reveal_radius_m,
            config.buffer_steps,
            config.max_query_results,
            config.full_detail_zoom,
            config.full_detail_distance,
            config.medium_detail_tolerance,
            config.low_detail_tolerance,
            config.memory_threshold_bytes,
            config.cache_enabled,
            config.cache_max_entries,
            config.cache_expiration_seconds,
            config.repository_timeout_seconds,
            config.circuit_breaker_threshold,
            config.circuit_breaker_reset_seconds,
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[FogOfWarConfig] = None
_config_lock = threading.Lock()


def get_config() -> FogOfWarConfig:
    """Return the default FogOfWarConfig, creating it from env if needed.

    Components use it only when no config was injected.

    Returns:
        FogOfWarConfig singleton instance.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = FogOfWarConfig.from_env()
    return _config_instance


def set_config(config: FogOfWarConfig) -> None:
    """Replace the default FogOfWarConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("FogOfWarConfig replaced programmatically")


def reset_config() -> None:
    """Reset the default config (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "FogOfWarConfig",
    "get_config",
    "set_config",
    "reset_config",
]
