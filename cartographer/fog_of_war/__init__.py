# -*- coding: utf-8 -*-
"""
Cartographer Fog-of-War Engine
================================================================================

Computes the "unexplored" overlay of an exploration map: given a viewport
rectangle and the areas the user has physically visited, it produces the
polygon(s) covering every part of the viewport that has not been revealed.
It supports:

- Defensive polygon primitives (validate, sanitize, geodesic buffer, union,
  difference) that degrade to documented fallbacks instead of raising
- A bounding-box spatial index (shapely STRtree) with viewport and radius
  queries, level-of-detail culling and simplification, and memory
  estimation and optimization
- A tiered fog calculator (spatial index -> repository viewport query ->
  world fog) that always returns a usable result
- A bounded LRU result cache keyed on viewport buckets, the revealed-area
  content hash and calculation options, with lazy staleness detection
- Location reveals with duplicate suppression and adjacent-area merging
- A guarded repository boundary with timeouts and a circuit breaker
- SHA-256 chain-hashed provenance of every index mutation
- Prometheus metrics for observability
- Configuration with the CARTO_FOG_ env prefix

Key Components:
    - config: FogOfWarConfig with CARTO_FOG_ env prefix
    - models: Pydantic v2 models (enums, bounds, results, cache entries)
    - geometry_operations: Polygon primitives over shapely
    - spatial_index: SpatialIndex with LOD and memory management
    - fog_calculator: FogCalculator and its fallback tiers
    - fog_cache: FogResultCache
    - repository: Repository protocol, guard and in-memory store
    - location_processing: LocationProcessor
    - provenance: SHA-256 chain-hashed audit trails
    - metrics: Prometheus metrics for observability
    - setup: FogOfWarService facade

Example:
    >>> from cartographer.fog_of_war import FogOfWarService
    >>> service = FogOfWarService()
    >>> await service.reveal_location(37.7749, -122.4194)
    >>> result = await service.calculate_fog([-122.43, 37.77, -122.41, 37.78])
    >>> len(result.fog_geojson["features"])
    1
"""

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from cartographer.fog_of_war.config import (
    FogOfWarConfig,
    get_config,
    set_config,
    reset_config,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
from cartographer.fog_of_war.models import (
    # Enumerations
    ComplexityLevel,
    GeometryOperationType,
    MemoryRecommendation,
    IndexState,
    FogTier,
    PerformanceLevel,
    DistanceUnit,
    # Data models
    ViewportBounds,
    GeometryComplexity,
    GeometryValidationResult,
    GeometryOperationMetrics,
    GeometryOperationResult,
    SpatialQueryResult,
    SpatialIndexMemoryStats,
    MemoryOptimizationResult,
    FogCalculationOptions,
    FogPerformanceMetrics,
    DataSourceStats,
    FogCalculationResult,
    FogCacheKey,
    FogCacheEntry,
    FogCacheStats,
    LocationFix,
    RevealResult,
)

# ---------------------------------------------------------------------------
# Geometry operations
# ---------------------------------------------------------------------------
from cartographer.fog_of_war.geometry_operations import (
    validate_geometry,
    get_geometry_complexity,
    sanitize_geometry,
    buffer_point,
    union_all,
    difference,
    is_empty_feature,
    create_viewport_polygon,
    create_world_polygon,
)

# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------
from cartographer.fog_of_war.provenance import ProvenanceTracker
from cartographer.fog_of_war.spatial_index import SpatialIndex
from cartographer.fog_of_war.fog_cache import FogResultCache
from cartographer.fog_of_war.repository import (
    RevealedAreaRepository,
    GuardedRepository,
    InMemoryRevealedAreaRepository,
)
from cartographer.fog_of_war.fog_calculator import (
    FogCalculator,
    FogTierStrategy,
    SpatialIndexTier,
    RepositoryViewportTier,
    WorldFogTier,
    TierContext,
    TierOutcome,
)
from cartographer.fog_of_war.location_processing import LocationProcessor

# ---------------------------------------------------------------------------
# Metrics flag
# ---------------------------------------------------------------------------
from cartographer.fog_of_war.metrics import PROMETHEUS_AVAILABLE

# ---------------------------------------------------------------------------
# Service setup facade
# ---------------------------------------------------------------------------
from cartographer.fog_of_war.setup import FogOfWarService

__all__ = [
    # Version
    "__version__",
    # Configuration
    "FogOfWarConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Enumerations
    "ComplexityLevel",
    "GeometryOperationType",
    "MemoryRecommendation",
    "IndexState",
    "FogTier",
    "PerformanceLevel",
    "DistanceUnit",
    # Data models
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
    # Geometry operations
    "validate_geometry",
    "get_geometry_complexity",
    "sanitize_geometry",
    "buffer_point",
    "union_all",
    "difference",
    "is_empty_feature",
    "create_viewport_polygon",
    "create_world_polygon",
    # Engines
    "ProvenanceTracker",
    "SpatialIndex",
    "FogResultCache",
    "RevealedAreaRepository",
    "GuardedRepository",
    "InMemoryRevealedAreaRepository",
    "FogCalculator",
    "FogTierStrategy",
    "SpatialIndexTier",
    "RepositoryViewportTier",
    "WorldFogTier",
    "TierContext",
    "TierOutcome",
    "LocationProcessor",
    # Metrics
    "PROMETHEUS_AVAILABLE",
    # Service facade
    "FogOfWarService",
]
