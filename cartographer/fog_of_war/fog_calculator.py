# -*- coding: utf-8 -*-
"""
Fog Calculation Orchestrator - Fog-of-War Engine

Produces the fog FeatureCollection for a viewport (viewport rectangle
minus revealed areas) and always returns a usable result.

Tiers run in order until one succeeds:

    1. spatial      Query the spatial index (bulk-loading it from the
                    repository when empty), union, difference. Areas passed
                    by the caller are used instead of the index.
    2. viewport-db  Query the repository directly for the viewport,
                    bypassing the index, union, difference.
    3. world        The viewport polygon itself ("assume unexplored"),
                    flagged ``had_errors``.

Each tier is a strategy object with ``async run(context) -> TierOutcome``;
failures carry a reason and exceptions raised inside a tier are converted
to failures, so the list is declarative and each tier can be tested on
its own. Invalid bounds skip straight to world fog over the whole globe.

Results without errors from the spatial tier are memoized in the fog
result cache, keyed on the index content hash observed when the index was
read, or on a hash of the caller-supplied areas. Repository-tier results
are not cached because repository writes do not advance the index hash.

Example:
    >>> calculator = FogCalculator(index, repository=repo, cache=cache)
    >>> result = await calculator.calculate_fog([-122.5, 37.7, -122.3, 37.8])
    >>> result.performance_metrics.operation_type
    <FogTier.SPATIAL: 'spatial'>

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cartographer.exceptions import (
    CartographerException,
    InvalidBoundsError,
    format_exception_chain,
)
from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.fog_cache import CALLER_KIND, FogResultCache, revealed_areas_hash
from cartographer.fog_of_war.geometry_operations import (
    create_world_polygon,
    difference,
    get_geometry_complexity,
    is_empty_feature,
    union_all,
)
from cartographer.fog_of_war.metrics import record_fog_calculation
from cartographer.fog_of_war.models import (
    DataSourceStats,
    FogCalculationOptions,
    FogCalculationResult,
    FogPerformanceMetrics,
    FogTier,
    GeometryComplexity,
    PerformanceLevel,
    ViewportBounds,
)
from cartographer.fog_of_war.repository import GuardedRepository
from cartographer.fog_of_war.spatial_index import SpatialIndex

logger = logging.getLogger(__name__)


def feature_collection(features: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


# =============================================================================
# Tier plumbing
# =============================================================================


@dataclass
class TierContext:
    """Inputs and accumulated diagnostics of one fog calculation."""

    bounds: Optional[ViewportBounds]
    options: FogCalculationOptions
    revealed_areas: Optional[List[Dict[str, Any]]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: DataSourceStats = field(default_factory=DataSourceStats)
    fallback_used: bool = False
    content_hash: Optional[str] = None

    @property
    def viewport_polygon(self) -> Dict[str, Any]:
        if self.bounds is None:
            return create_world_polygon()
        return self.bounds.to_polygon_feature()


@dataclass
class TierOutcome:
    """Result of one tier: fog on success, a reason on failure or skip.

    A skipped tier did not apply to the request (disabled by options, no
    repository configured) and is not reported as an error.
    """

    tier: FogTier
    fog: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    had_errors: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.fog is not None

    @classmethod
    def failure(cls, tier: FogTier, reason: str) -> TierOutcome:
        return cls(tier=tier, reason=reason)

    @classmethod
    def skip(cls, tier: FogTier, reason: str) -> TierOutcome:
        return cls(tier=tier, reason=reason, skipped=True)


class FogTierStrategy:
    """Base class of the fallback tiers."""

    tier: FogTier = FogTier.WORLD

    def __init__(self, config: FogOfWarConfig) -> None:
        self.config = config

    async def run(self, context: TierContext) -> TierOutcome:
        raise NotImplementedError

    def _fog_from_revealed(
        self,
        context: TierContext,
        features: List[Dict[str, Any]],
        assume_valid: bool = False,
    ) -> TierOutcome:
        """Union ``features`` and subtract them from the viewport."""
        viewport = context.viewport_polygon
        union = union_all(features, self.config, assume_valid=assume_valid)
        context.warnings.extend(union.warnings)
        if union.errors:
            context.errors.extend(f"{self.tier.value}: {e}" for e in union.errors)
        if union.metrics.fallback_used:
            context.fallback_used = True

        if union.result is None:
            # nothing revealed here
            return TierOutcome(tier=self.tier, fog=feature_collection([viewport]))

        diff = difference(viewport, union.result, self.config)
        if diff.metrics.fallback_used:
            return TierOutcome.failure(self.tier, "; ".join(diff.errors) or "difference failed")
        if is_empty_feature(diff.result):
            return TierOutcome(tier=self.tier, fog=feature_collection([]))
        return TierOutcome(tier=self.tier, fog=feature_collection([diff.result]))


class SpatialIndexTier(FogTierStrategy):
    """Tier 1: spatial index query (or caller-supplied areas)."""

    tier = FogTier.SPATIAL

    def __init__(
        self,
        index: SpatialIndex,
        repository: Optional[GuardedRepository],
        config: FogOfWarConfig,
    ) -> None:
        super().__init__(config)
        self.index = index
        self.repository = repository
        self._loaded_version: Optional[str] = None

    async def run(self, context: TierContext) -> TierOutcome:
        options = context.options
        if context.revealed_areas is not None:
            context.stats.from_caller = len(context.revealed_areas)
            return self._fog_from_revealed(context, context.revealed_areas)
        if not options.use_spatial_index:
            return TierOutcome.skip(self.tier, "spatial index disabled by options")

        if (
            self.index.is_empty
            and self.repository is not None
            and self._loaded_version != self.index.content_hash
        ):
            areas = await self.repository.fetch_revealed_areas(None)
            context.stats.from_repository += len(areas)
            if areas:
                self.index.add_features(areas)
            # at most one load per index version
            self._loaded_version = self.index.content_hash

        context.content_hash = self.index.content_hash
        query = self.index.query_viewport(
            context.bounds,
            max_results=options.max_results,
            buffer_distance=options.buffer_distance,
            use_level_of_detail=options.use_level_of_detail,
            zoom_level=options.zoom_level,
        )
        if query.errors:
            return TierOutcome.failure(self.tier, "; ".join(query.errors))
        if query.truncated:
            context.warnings.append(
                f"Spatial query truncated to {query.returned_features} of "
                f"{query.total_candidates} features"
            )
        context.stats.from_spatial_index = query.returned_features
        return self._fog_from_revealed(context, query.features, assume_valid=True)


class RepositoryViewportTier(FogTierStrategy):
    """Tier 2: direct repository viewport query, bypassing the index."""

    tier = FogTier.VIEWPORT_DB

    def __init__(self, repository: Optional[GuardedRepository], config: FogOfWarConfig) -> None:
        super().__init__(config)
        self.repository = repository

    async def run(self, context: TierContext) -> TierOutcome:
        if self.repository is None:
            return TierOutcome.skip(self.tier, "no repository configured")
        if context.bounds is None:
            return TierOutcome.failure(self.tier, "no valid viewport")
        areas = await self.repository.fetch_revealed_areas(context.bounds)
        context.stats.from_repository += len(areas)
        return self._fog_from_revealed(context, areas)


class WorldFogTier(FogTierStrategy):
    """Tier 3: uniform fog over the viewport (or the world)."""

    tier = FogTier.WORLD

    async def run(self, context: TierContext) -> TierOutcome:
        return TierOutcome(
            tier=self.tier,
            fog=feature_collection([context.viewport_polygon]),
            had_errors=True,
        )


# =============================================================================
# FogCalculator
# =============================================================================


class FogCalculator:
    """Tiered fog calculation over an injected index, repository and cache.

    Attributes:
        config: Engine configuration.
        index: Spatial index of revealed areas.
        repository: Guarded repository collaborator, if any.
        cache: Fog result cache, if any.
        tiers: Ordered fallback strategies.
    """

    def __init__(
        self,
        index: SpatialIndex,
        repository: Any = None,
        cache: Optional[FogResultCache] = None,
        config: Optional[FogOfWarConfig] = None,
        tiers: Optional[List[FogTierStrategy]] = None,
    ) -> None:
        self.config = config or get_config()
        self.index = index
        if repository is not None and not isinstance(repository, GuardedRepository):
            repository = GuardedRepository(repository, self.config)
        self.repository: Optional[GuardedRepository] = repository
        self.cache = cache
        self.tiers: List[FogTierStrategy] = tiers or [
            SpatialIndexTier(index, self.repository, self.config),
            RepositoryViewportTier(self.repository, self.config),
            WorldFogTier(self.config),
        ]
        self._calculations = 0
        self._cache_hits = 0
        self._tier_counts: Dict[str, int] = {}
        logger.info(
            "FogCalculator initialized: tiers=%s, repository=%s, cache=%s",
            [t.tier.value for t in self.tiers],
            self.repository is not None,
            self.cache is not None,
        )

    async def calculate_fog(
        self,
        bounds: Any,
        options: Optional[FogCalculationOptions] = None,
        revealed_areas: Optional[List[Dict[str, Any]]] = None,
    ) -> FogCalculationResult:
        """Compute the fog for a viewport.

        Args:
            bounds: ViewportBounds or ``[min_lon, min_lat, max_lon, max_lat]``.
            options: Calculation options.
            revealed_areas: Pre-loaded revealed areas to use instead of the
                index (cached under a hash of the areas).

        Returns:
            FogCalculationResult; never raises for expected failures.
        """
        start = time.perf_counter()
        options = options or FogCalculationOptions()
        self._calculations += 1

        try:
            viewport = ViewportBounds.parse(bounds)
        except InvalidBoundsError as exc:
            logger.warning("Rejected viewport bounds %r: %s", bounds, exc.message)
            context = TierContext(bounds=None, options=options, errors=[exc.message])
            outcome = await WorldFogTier(self.config).run(context)
            return self._finish(start, context, outcome, fallback_used=True)

        use_cache = (
            self.cache is not None
            and self.config.cache_enabled
            and options.use_cache
        )
        kind, content_hash = "final", self.index.content_hash
        if use_cache and revealed_areas is not None:
            kind, content_hash = CALLER_KIND, revealed_areas_hash(revealed_areas)
        if use_cache:
            key = self.cache.build_key(viewport, content_hash, options, kind=kind)
            cached = self.cache.get(key)
            if cached is not None:
                self._cache_hits += 1
                cached.from_cache = True
                record_fog_calculation("cache", time.perf_counter() - start)
                return cached

        context = TierContext(bounds=viewport, options=options, revealed_areas=revealed_areas)
        outcome: Optional[TierOutcome] = None
        failed_tiers = 0
        for tier in self.tiers:
            try:
                outcome = await tier.run(context)
            except CartographerException as exc:
                reason = exc.message
                detail = format_exception_chain(exc)
            except Exception as exc:
                logger.error("Fog tier %s raised", tier.tier.value, exc_info=True)
                reason = detail = f"{type(exc).__name__}: {exc}"
            else:
                if outcome.ok:
                    break
                if outcome.skipped:
                    logger.debug("Fog tier %s skipped: %s", tier.tier.value, outcome.reason)
                    outcome = None
                    continue
                reason = detail = outcome.reason or "unknown failure"
            outcome = None
            failed_tiers += 1
            context.errors.append(f"{tier.tier.value}: {reason}")
            logger.warning("Fog tier %s failed: %s", tier.tier.value, detail)

        if outcome is None:
            outcome = await WorldFogTier(self.config).run(context)

        fallback_used = context.fallback_used or failed_tiers > 0 or outcome.tier == FogTier.WORLD
        result = self._finish(start, context, outcome, fallback_used=fallback_used)

        if (
            use_cache
            and not result.performance_metrics.had_errors
            and outcome.tier == FogTier.SPATIAL
        ):
            if kind != CALLER_KIND:
                content_hash = context.content_hash or content_hash
            self.cache.set(self.cache.build_key(viewport, content_hash, options, kind=kind), result)
        return result

    def _finish(
        self,
        start: float,
        context: TierContext,
        outcome: TierOutcome,
        fallback_used: bool,
    ) -> FogCalculationResult:
        features = outcome.fog.get("features", [])
        complexity = get_geometry_complexity(features[0], self.config) if features else GeometryComplexity()
        had_errors = outcome.had_errors or bool(context.errors)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if elapsed_ms < self.config.fast_threshold_ms:
            level = PerformanceLevel.FAST
        elif elapsed_ms < self.config.moderate_threshold_ms:
            level = PerformanceLevel.MODERATE
        else:
            level = PerformanceLevel.SLOW

        stats = context.stats
        stats.total_processed = stats.from_spatial_index + stats.from_repository + stats.from_caller
        self._tier_counts[outcome.tier.value] = self._tier_counts.get(outcome.tier.value, 0) + 1
        record_fog_calculation(
            outcome.tier.value, elapsed_ms / 1000.0,
            status="degraded" if had_errors else "success",
        )
        if level == PerformanceLevel.SLOW:
            logger.info(
                "Slow fog calculation: %.1fms via %s (%d features processed)",
                elapsed_ms, outcome.tier.value, stats.total_processed,
            )

        return FogCalculationResult(
            fog_geojson=outcome.fog,
            calculation_time_ms=elapsed_ms,
            performance_metrics=FogPerformanceMetrics(
                geometry_complexity=complexity,
                operation_type=outcome.tier,
                had_errors=had_errors,
                fallback_used=fallback_used,
                execution_time_ms=elapsed_ms,
                performance_level=level,
            ),
            errors=list(context.errors),
            warnings=list(context.warnings),
            data_source_stats=stats,
            bounds=context.bounds.as_list() if context.bounds else None,
        )

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "calculations": self._calculations,
            "cache_hits": self._cache_hits,
            "tiers": dict(self._tier_counts),
        }


__all__ = [
    "TierContext",
    "TierOutcome",
    "FogTierStrategy",
    "SpatialIndexTier",
    "RepositoryViewportTier",
    "WorldFogTier",
    "FogCalculator",
    "feature_collection",
]
