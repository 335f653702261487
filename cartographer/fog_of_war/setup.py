# -*- coding: utf-8 -*-
"""
Fog-of-War Service Setup - Fog-of-War Engine

Provides the ``FogOfWarService`` facade which wires up the fog-of-war
engines (provenance tracker, spatial index, fog result cache, guarded
repository, fog calculator, location processor) behind a single,
explicitly constructed and caller-owned entry point. There is no
module-level singleton: hosts create one service per fog session.

Usage:
    >>> from cartographer.fog_of_war.setup import FogOfWarService
    >>> service = FogOfWarService(repository=InMemoryRevealedAreaRepository())
    >>> await service.startup()
    >>> await service.reveal_location(37.7749, -122.4194)
    >>> result = await service.calculate_fog([-122.43, 37.77, -122.41, 37.78])

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from cartographer.exceptions import ResourceExhaustion, SourceUnavailable
from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.fog_cache import FogResultCache
from cartographer.fog_of_war.fog_calculator import FogCalculator
from cartographer.fog_of_war.location_processing import LocationProcessor
from cartographer.fog_of_war.metrics import PROMETHEUS_AVAILABLE
from cartographer.fog_of_war.models import (
    FogCalculationOptions,
    FogCalculationResult,
    LocationFix,
    MemoryOptimizationResult,
    MemoryRecommendation,
    RevealResult,
    SpatialIndexMemoryStats,
)
from cartographer.fog_of_war.provenance import ProvenanceTracker
from cartographer.fog_of_war.repository import GuardedRepository
from cartographer.fog_of_war.spatial_index import SpatialIndex

logger = logging.getLogger(__name__)


# ===================================================================
# FogOfWarService facade
# ===================================================================


class FogOfWarService:
    """Unified facade over the fog-of-war engines.

    Attributes:
        config: FogOfWarConfig instance.
        provenance: ProvenanceTracker for the SHA-256 mutation chain.
        index: SpatialIndex of revealed areas.
        cache: FogResultCache bound to the index content hash.
        repository: GuardedRepository, or None when running index-only.
        calculator: FogCalculator running the fallback tiers.
        processor: LocationProcessor applying location fixes.

    Example:
        >>> service = FogOfWarService()
        >>> service.get_statistics()["index"]["feature_count"]
        0
    """

    def __init__(
        self,
        config: Optional[FogOfWarConfig] = None,
        repository: Any = None,
    ) -> None:
        """Initialize the facade and its engines.

        Args:
            config: Optional configuration. Uses global config if None.
            repository: Optional revealed-area repository collaborator.
        """
        self.config = config or get_config()
        self._apply_log_level()
        self.provenance = ProvenanceTracker()
        self._init_engines(repository)
        self._started = False
        self._destroyed = False
        logger.info("FogOfWarService facade created")

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _apply_log_level(self) -> None:
        level = logging.getLevelName(str(self.config.log_level).upper())
        if not isinstance(level, int):
            logger.warning("Unknown log level %r; leaving logging unchanged", self.config.log_level)
            return
        logging.getLogger("cartographer").setLevel(level)

    def _init_engines(self, repository: Any) -> None:
        self.index = SpatialIndex(config=self.config, provenance=self.provenance)
        self.cache = FogResultCache(
            config=self.config,
            content_version=lambda: self.index.content_hash,
        )
        if repository is not None and not isinstance(repository, GuardedRepository):
            repository = GuardedRepository(repository, self.config)
        self.repository: Optional[GuardedRepository] = repository
        self.calculator = FogCalculator(
            self.index,
            repository=self.repository,
            cache=self.cache if self.config.cache_enabled else None,
            config=self.config,
        )
        self.processor = LocationProcessor(
            self.index,
            repository=self.repository,
            config=self.config,
            provenance=self.provenance,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> int:
        """Bulk-load the spatial index from the repository.

        Safe to call multiple times. A repository failure leaves the index
        empty; the spatial tier retries the load on the next calculation.

        Returns:
            Number of features loaded.
        """
        self._ensure_alive()
        if self._started:
            logger.debug("FogOfWarService already started; skipping")
            return 0

        logger.info("FogOfWarService starting up...")
        loaded = 0
        if self.repository is not None and self.index.is_empty:
            try:
                areas = await self.repository.fetch_revealed_areas(None)
            except SourceUnavailable as exc:
                logger.warning("Initial index load failed: %s", exc.message)
            else:
                loaded = self.index.add_features(areas)
        self._started = True
        logger.info("FogOfWarService startup complete (%d features loaded)", loaded)
        return loaded

    def clear(self) -> None:
        """Drop all revealed areas from the index and every cached result."""
        self._ensure_alive()
        self.index.clear()
        self.cache.clear()
        self.processor.reset()
        logger.info("FogOfWarService cleared")

    def destroy(self) -> None:
        """Release the index and cache; the service is unusable afterwards."""
        if self._destroyed:
            return
        self.index.destroy()
        self.cache.destroy()
        self.processor.reset()
        self._destroyed = True
        self._started = False
        logger.info("FogOfWarService destroyed")

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise RuntimeError("FogOfWarService has been destroyed")

    # ------------------------------------------------------------------
    # Facade methods
    # ------------------------------------------------------------------

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
            revealed_areas: Pre-loaded revealed areas overriding the index.

        Returns:
            FogCalculationResult.
        """
        self._ensure_alive()
        return await self.calculator.calculate_fog(bounds, options, revealed_areas)

    async def reveal_location(
        self,
        latitude: float,
        longitude: float,
        radius_m: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> RevealResult:
        """Reveal the area around a coordinate.

        Out-of-range coordinates are reported on the result rather than
        raised. Memory pressure is checked after every accepted reveal
        when ``auto_optimize_memory`` is set.
        """
        self._ensure_alive()
        fields: Dict[str, Any] = {"latitude": latitude, "longitude": longitude}
        if timestamp is not None:
            fields["timestamp"] = timestamp
        try:
            fix = LocationFix(**fields)
        except PydanticValidationError as exc:
            logger.warning("Rejected location fix (%r, %r)", latitude, longitude)
            return RevealResult(errors=[err["msg"] for err in exc.errors()])

        result = await self.processor.reveal_location(fix, radius_m)
        if result.accepted and self.config.auto_optimize_memory:
            self.check_memory_pressure()
        return result

    def _ensure_memory_budget(self, stats: SpatialIndexMemoryStats) -> None:
        if stats.recommendation == MemoryRecommendation.CLEANUP_REQUIRED:
            raise ResourceExhaustion(
                message=(
                    f"Spatial index estimate {stats.estimated_bytes} bytes over "
                    f"threshold {stats.threshold_bytes}"
                ),
                component="SpatialIndex",
                context={"feature_count": stats.feature_count},
            )

    def check_memory_pressure(self) -> Optional[MemoryOptimizationResult]:
        """Optimize the index and cache when the index is over budget.

        Returns:
            The optimization result, or None when no cleanup was needed.
        """
        self._ensure_alive()
        stats = self.index.get_memory_stats()
        try:
            self._ensure_memory_budget(stats)
        except ResourceExhaustion as exc:
            logger.warning("%s", exc)
            optimized = self.index.optimize_memory(aggressive=True)
            self.cache.optimize(aggressive=True)
            return optimized
        if stats.recommendation == MemoryRecommendation.CONSIDER_CLEANUP:
            logger.info(
                "Spatial index at %d of %d bytes; consider cleanup",
                stats.estimated_bytes, stats.threshold_bytes,
            )
        return None

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        """Get aggregate service statistics."""
        return {
            "prometheus_available": PROMETHEUS_AVAILABLE,
            "started": self._started,
            "index": self.index.get_memory_stats().model_dump(mode="json"),
            "index_state": self.index.state.value,
            "dropped_features": self.index.dropped_features,
            "cache": self.cache.get_cache_stats().model_dump(mode="json"),
            "calculator": self.calculator.get_statistics(),
            "reveals": self.processor.get_statistics(),
            "repository": (
                self.repository.get_circuit_breaker_state() if self.repository else None
            ),
            "provenance_entries": self.provenance.entry_count,
        }

    def get_provenance(self) -> ProvenanceTracker:
        return self.provenance


__all__ = ["FogOfWarService"]
