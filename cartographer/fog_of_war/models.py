# -*- coding: utf-8 -*-
"""
Fog-of-War Engine Data Models

Pydantic v2 data models for the fog-of-war computation core. Defines the
enumerations, value objects and result envelopes exchanged between the
geometry operations, spatial index, fog calculator and result cache:

- Viewport bounds with strict validation (never clamped)
- Geometry validation and complexity reporting
- Geometry operation results with fallback metrics
- Spatial index query results and memory statistics
- Fog calculation options, metrics and results
- Fog result cache keys, entries and statistics
- Location fixes and reveal results

Geometries themselves travel as GeoJSON dictionaries (``Feature``,
``FeatureCollection``, ``Point``, ``Polygon``, ``MultiPolygon``) with
``[longitude, latitude]`` coordinates.

Models:
    - Enumerations (7): ComplexityLevel, GeometryOperationType,
        MemoryRecommendation, IndexState, FogTier, PerformanceLevel,
        DistanceUnit
    - Core data models: ViewportBounds, GeometryComplexity,
        GeometryValidationResult, GeometryOperationMetrics,
        GeometryOperationResult, SpatialQueryResult,
        SpatialIndexMemoryStats, MemoryOptimizationResult,
        FogCalculationOptions, FogPerformanceMetrics, DataSourceStats,
        FogCalculationResult, FogCacheKey, FogCacheEntry, FogCacheStats,
        LocationFix, RevealResult

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import json
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from cartographer.exceptions import InvalidBoundsError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _new_id(prefix: str) -> str:
    """Generate a short prefixed unique identifier."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# =============================================================================
# Enumerations
# =============================================================================


class ComplexityLevel(str, Enum):
    """Vertex-count complexity class of a geometry."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class GeometryOperationType(str, Enum):
    """Geometry primitives that report operation metrics."""

    VALIDATE = "validate"
    SANITIZE = "sanitize"
    BUFFER = "buffer"
    UNION = "union"
    DIFFERENCE = "difference"


class MemoryRecommendation(str, Enum):
    """Memory housekeeping advice derived from the index size estimate."""

    OPTIMAL = "optimal"
    CONSIDER_CLEANUP = "consider_cleanup"
    CLEANUP_REQUIRED = "cleanup_required"


class IndexState(str, Enum):
    """Lifecycle state of the spatial index."""

    EMPTY = "empty"
    POPULATED = "populated"


class FogTier(str, Enum):
    """Fallback tier that produced a fog result.

    SPATIAL uses the in-memory index (or caller-supplied areas),
    VIEWPORT_DB queries the repository directly for the viewport, and
    WORLD returns the uniform "assume unexplored" fog.
    """

    SPATIAL = "spatial"
    VIEWPORT_DB = "viewport-db"
    WORLD = "world"


class PerformanceLevel(str, Enum):
    """Coarse latency class of a fog calculation."""

    FAST = "FAST"
    MODERATE = "MODERATE"
    SLOW = "SLOW"


class DistanceUnit(str, Enum):
    """Units accepted by the buffering operation."""

    METERS = "meters"
    KILOMETERS = "kilometers"
    MILES = "miles"
    FEET = "feet"


# =============================================================================
# Viewport bounds
# =============================================================================


class ViewportBounds(BaseModel):
    """Axis-aligned geographic rectangle of the visible map region.

    Bounds must satisfy ``min_lon < max_lon`` and ``min_lat < max_lat``
    with every value finite and inside [-180, 180] x [-90, 90]. Invalid
    bounds are rejected, never clamped.

    Attributes:
        min_lon: Western edge in decimal degrees.
        min_lat: Southern edge in decimal degrees.
        max_lon: Eastern edge in decimal degrees.
        max_lat: Northern edge in decimal degrees.
    """

    min_lon: float = Field(..., description="Western edge in decimal degrees")
    min_lat: float = Field(..., description="Southern edge in decimal degrees")
    max_lon: float = Field(..., description="Eastern edge in decimal degrees")
    max_lat: float = Field(..., description="Northern edge in decimal degrees")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_bounds(self) -> ViewportBounds:
        values = (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        if not all(math.isfinite(v) for v in values):
            raise ValueError("bounds must be finite numbers")
        if self.min_lon < -180.0 or self.max_lon > 180.0:
            raise ValueError("longitude must be within [-180, 180]")
        if self.min_lat < -90.0 or self.max_lat > 90.0:
            raise ValueError("latitude must be within [-90, 90]")
        if self.min_lon >= self.max_lon:
            raise ValueError("min_lon must be less than max_lon")
        if self.min_lat >= self.max_lat:
            raise ValueError("min_lat must be less than max_lat")
        return self

    @classmethod
    def parse(cls, value: Any) -> ViewportBounds:
        """Build bounds from a model, a 4-sequence or a mapping.

        Raises:
            InvalidBoundsError: If the value is malformed or violates the
                bounds invariant.
        """
        if isinstance(value, cls):
            return value
        try:
            if isinstance(value, dict):
                return cls(**value)
            if isinstance(value, (list, tuple)) and len(value) == 4:
                min_lon, min_lat, max_lon, max_lat = value
                return cls(
                    min_lon=min_lon, min_lat=min_lat,
                    max_lon=max_lon, max_lat=max_lat,
                )
        except (ValidationError, TypeError) as exc:
            raise InvalidBoundsError(
                message=f"Invalid viewport bounds: {value!r}",
                component="ViewportBounds",
                context={"bounds": repr(value), "reason": str(exc)},
            ) from exc
        raise InvalidBoundsError(
            message=(
                "Viewport bounds must be [min_lon, min_lat, max_lon, max_lat]"
            ),
            component="ViewportBounds",
            context={"bounds": repr(value)},
        )

    def as_list(self) -> List[float]:
        return [self.min_lon, self.min_lat, self.max_lon, self.max_lat]

    @property
    def center(self) -> Tuple[float, float]:
        """Viewport center as (lon, lat)."""
        return (
            (self.min_lon + self.max_lon) / 2.0,
            (self.min_lat + self.max_lat) / 2.0,
        )

    @property
    def area(self) -> float:
        """Area in square degrees."""
        return (self.max_lon - self.min_lon) * (self.max_lat - self.min_lat)

    def expanded(self, distance: float) -> Tuple[float, float, float, float]:
        """Return the bounds grown by ``distance`` degrees on every side.

        The result is a plain tuple since it may leave the world box.
        """
        return (
            self.min_lon - distance,
            self.min_lat - distance,
            self.max_lon + distance,
            self.max_lat + distance,
        )

    def to_polygon_feature(self) -> Dict[str, Any]:
        """Return the viewport rectangle as a closed GeoJSON Polygon Feature."""
        ring = [
            [self.min_lon, self.min_lat],
            [self.max_lon, self.min_lat],
            [self.max_lon, self.max_lat],
            [self.min_lon, self.max_lat],
            [self.min_lon, self.min_lat],
        ]
        return {
            "type": "Feature",
            "properties": {"kind": "viewport"},
            "geometry": {"type": "Polygon", "coordinates": [ring]},
        }


# =============================================================================
# Geometry operation models
# =============================================================================


class GeometryComplexity(BaseModel):
    """Vertex statistics of a polygonal geometry.

    Attributes:
        total_vertices: Number of positions across all rings.
        ring_count: Number of rings (outer and holes).
        max_ring_vertices: Largest ring size.
        average_ring_vertices: Mean ring size.
        complexity_level: LOW, MEDIUM or HIGH by total vertex count.
    """

    total_vertices: int = Field(default=0, ge=0)
    ring_count: int = Field(default=0, ge=0)
    max_ring_vertices: int = Field(default=0, ge=0)
    average_ring_vertices: float = Field(default=0.0, ge=0.0)
    complexity_level: ComplexityLevel = Field(default=ComplexityLevel.LOW)


class GeometryValidationResult(BaseModel):
    """Outcome of a structural geometry check."""

    is_valid: bool = Field(default=False)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    complexity: GeometryComplexity = Field(default_factory=GeometryComplexity)


class GeometryOperationMetrics(BaseModel):
    """Timing and degradation signals of one geometry primitive call.

    Attributes:
        operation_type: Primitive that produced these metrics.
        execution_time_ms: Wall-clock duration in milliseconds.
        input_complexity: Complexity of the (primary) input.
        output_complexity: Complexity of the result, when there is one.
        had_errors: Whether any error was recorded.
        fallback_used: Whether a documented fallback replaced the exact
            result (skipped union inputs, minuend echoed by difference).
    """

    operation_type: GeometryOperationType
    execution_time_ms: float = Field(default=0.0, ge=0.0)
    input_complexity: Optional[GeometryComplexity] = None
    output_complexity: Optional[GeometryComplexity] = None
    had_errors: bool = False
    fallback_used: bool = False


class GeometryOperationResult(BaseModel):
    """Result envelope shared by buffer, union and difference."""

    result: Optional[Dict[str, Any]] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    metrics: GeometryOperationMetrics


# =============================================================================
# Spatial index models
# =============================================================================


class SpatialQueryResult(BaseModel):
    """Features returned by a spatial index viewport query.

    Attributes:
        features: Deep copies of the matching features.
        total_candidates: Features whose envelope intersected the
            buffered query rectangle, before LOD culling and capping.
        returned_features: Number of features returned.
        query_time_ms: Query duration in milliseconds.
        truncated: Whether ``max_results`` capped the result.
        level_of_detail_applied: Whether LOD filtering ran.
        culled_features: Features removed by LOD area culling.
        simplified_features: Features replaced by a simplified variant.
        query_bounds: The buffered rectangle actually searched.
        errors: Reasons the query could not run.
    """

    features: List[Dict[str, Any]] = Field(default_factory=list)
    total_candidates: int = Field(default=0, ge=0)
    returned_features: int = Field(default=0, ge=0)
    query_time_ms: float = Field(default=0.0, ge=0.0)
    truncated: bool = False
    level_of_detail_applied: bool = False
    culled_features: int = Field(default=0, ge=0)
    simplified_features: int = Field(default=0, ge=0)
    query_bounds: Optional[List[float]] = None
    errors: List[str] = Field(default_factory=list)


class SpatialIndexMemoryStats(BaseModel):
    """Approximate memory footprint of the spatial index."""

    estimated_bytes: int = Field(default=0, ge=0)
    feature_count: int = Field(default=0, ge=0)
    total_vertices: int = Field(default=0, ge=0)
    average_vertices: float = Field(default=0.0, ge=0.0)
    threshold_bytes: int = Field(default=0, ge=0)
    recommendation: MemoryRecommendation = MemoryRecommendation.OPTIMAL


class MemoryOptimizationResult(BaseModel):
    """What a memory optimization pass changed."""

    aggressive: bool = False
    removed_features: List[str] = Field(default_factory=list)
    simplified_features: List[str] = Field(default_factory=list)
    bytes_before: int = Field(default=0, ge=0)
    bytes_after: int = Field(default=0, ge=0)


# =============================================================================
# Fog calculation models
# =============================================================================


class FogCalculationOptions(BaseModel):
    """Per-call options of a fog calculation.

    Attributes:
        use_spatial_index: Whether the spatial tier may run.
        max_results: Cap on index query results (config default if None).
        buffer_distance: Query buffer in degrees (config default if None).
        use_level_of_detail: Whether LOD filtering may run.
        zoom_level: Map zoom; LOD only applies when set.
        use_cache: Whether the result cache is consulted and written.
    """

    use_spatial_index: bool = True
    max_results: Optional[int] = Field(default=None, gt=0)
    buffer_distance: Optional[float] = Field(default=None, ge=0.0)
    use_level_of_detail: bool = True
    zoom_level: Optional[int] = Field(default=None, ge=0, le=24)
    use_cache: bool = True

    def fingerprint(self) -> str:
        """Short hash of the options that change the computed fog."""
        payload = self.model_dump(exclude={"use_cache"})
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class FogPerformanceMetrics(BaseModel):
    """Performance and degradation signals of one fog calculation.

    Callers treat ``had_errors=True`` as degraded-but-valid output.
    """

    geometry_complexity: GeometryComplexity = Field(
        default_factory=GeometryComplexity,
    )
    operation_type: FogTier = FogTier.SPATIAL
    had_errors: bool = False
    fallback_used: bool = False
    execution_time_ms: float = Field(default=0.0, ge=0.0)
    performance_level: PerformanceLevel = PerformanceLevel.FAST


class DataSourceStats(BaseModel):
    """Where the revealed areas of a calculation came from."""

    from_spatial_index: int = Field(default=0, ge=0)
    from_repository: int = Field(default=0, ge=0)
    from_caller: int = Field(default=0, ge=0)
    total_processed: int = Field(default=0, ge=0)


class FogCalculationResult(BaseModel):
    """Fog feature collection for a viewport plus calculation metrics.

    Attributes:
        fog_geojson: FeatureCollection of unexplored Polygon/MultiPolygon
            features; an empty collection means fully revealed.
        calculation_time_ms: Total wall-clock duration.
        performance_metrics: Tier, complexity and degradation flags.
        errors: Reasons recorded by failed tiers or primitives.
        warnings: Non-fatal notes (skipped inputs, truncation).
        data_source_stats: Feature counts by origin.
        from_cache: Whether the result was served by the cache.
        bounds: The requested viewport when it was valid.
    """

    fog_geojson: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "FeatureCollection", "features": []},
    )
    calculation_time_ms: float = Field(default=0.0, ge=0.0)
    performance_metrics: FogPerformanceMetrics = Field(
        default_factory=FogPerformanceMetrics,
    )
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    data_source_stats: DataSourceStats = Field(default_factory=DataSourceStats)
    from_cache: bool = False
    bounds: Optional[List[float]] = None

    @property
    def is_fully_revealed(self) -> bool:
        return not self.fog_geojson.get("features")


# =============================================================================
# Cache models
# =============================================================================


class FogCacheKey(BaseModel):
    """Structured fingerprint of (viewport, content version, options).

    ``request_bounds`` keeps the raw viewport for the tolerance check and
    is not part of the fingerprint.
    """

    kind: str = "final"
    bounds_bucket: Tuple[int, int, int, int]
    content_hash: str
    options_hash: str = ""
    request_bounds: Tuple[float, float, float, float]

    model_config = ConfigDict(frozen=True)

    @property
    def fingerprint(self) -> str:
        buckets = ",".join(str(b) for b in self.bounds_bucket)
        return (
            f"{self.kind}:{buckets}:{self.content_hash[:16]}:"
            f"{self.options_hash}"
        )


class FogCacheEntry(BaseModel):
    """One memoized fog result.

    ``payload`` is a plain deep copy of the result dump, or gzip bytes
    when ``compressed`` is set.
    """

    key: FogCacheKey
    payload: Any = None
    compressed: bool = False
    bounds: Tuple[float, float, float, float]
    content_hash: str
    created_at: float
    last_accessed_at: float
    access_count: int = 0
    size_bytes: int = 0
    calculation_time_ms: float = 0.0


class FogCacheStats(BaseModel):
    """Hit/miss and eviction statistics of the fog result cache."""

    total_entries: int = 0
    hits: int = 0
    misses: int = 0
    hit_ratio: float = 0.0
    memory_usage: int = 0
    evicted_entries: int = 0
    expired_entries: int = 0
    stale_entries: int = 0
    average_time_saved_ms: float = 0.0
    top_cache_keys: List[str] = Field(default_factory=list)


# =============================================================================
# Location reveal models
# =============================================================================


class LocationFix(BaseModel):
    """A raw location fix from the location collaborator."""

    latitude: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False)
    timestamp: datetime = Field(default_factory=_utcnow)
    accuracy_m: Optional[float] = Field(default=None, ge=0.0)

    model_config = ConfigDict(frozen=True)


class RevealResult(BaseModel):
    """Outcome of turning a location fix into a revealed area.

    Attributes:
        reveal_id: Identifier of this reveal operation.
        accepted: Whether the index was updated.
        duplicate: Whether the fix was suppressed as a duplicate.
        feature_id: Index id of the (possibly merged) revealed area.
        feature: The revealed area inserted into the index.
        merged_ids: Index ids absorbed by the merge.
        persisted: Whether the repository accepted the raw area.
        repository_id: Identifier returned by the repository.
        errors: Recorded failures.
        processing_time_ms: Wall-clock duration.
    """

    reveal_id: str = Field(default_factory=lambda: _new_id("RVL"))
    accepted: bool = False
    duplicate: bool = False
    feature_id: Optional[str] = None
    feature: Optional[Dict[str, Any]] = None
    merged_ids: List[str] = Field(default_factory=list)
    persisted: bool = False
    repository_id: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    processing_time_ms: float = Field(default=0.0, ge=0.0)


__all__ = [
    "ComplexityLevel",
    "GeometryOperationType",
    "MemoryRecommendation",
    "IndexState",
    "FogTier",
    "PerformanceLevel",
    "DistanceUnit",
    "ViewportBounds",
    "GeometryComplexity",
    "GeometryValidationResult",
    "GeometryOperationMetrics",
    "GeometryOperationResult",
    "SpatialQueryResult",
    "SpatialIndexMemoryStats",
    "MemoryOptimizationResult",
    "FogCalculationOptions",
    "FogPerformanceMetrics",
    "DataSourceStats",
    "FogCalculationResult",
    "FogCacheKey",
    "FogCacheEntry",
    "FogCacheStats",
    "LocationFix",
    "RevealResult",
]
