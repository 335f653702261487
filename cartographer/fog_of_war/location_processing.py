# -*- coding: utf-8 -*-
"""
Location Reveal Flow - Fog-of-War Engine

Turns location fixes into revealed areas:

    1. Suppress fixes within ``duplicate_location_tolerance`` degrees of the
       last accepted fix.
    2. Buffer the fix into a geodesic disc (``reveal_radius_m``, 50 m).
    3. When ``merge_adjacent_areas`` is set, union the disc with indexed
       areas it touches and replace them in the index.
    4. Persist the raw disc through the guarded repository. A repository
       failure is recorded on the result; the index update stands.

Each accepted reveal is recorded in the provenance chain.

Example:
    >>> processor = LocationProcessor(index, repository=repo)
    >>> result = await processor.reveal_location(
    ...     LocationFix(latitude=37.7749, longitude=-122.4194))
    >>> result.accepted
    True

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from cartographer.exceptions import SourceUnavailable
from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.geometry_operations import buffer_point, union_all
from cartographer.fog_of_war.models import LocationFix, RevealResult
from cartographer.fog_of_war.provenance import ProvenanceTracker
from cartographer.fog_of_war.repository import GuardedRepository
from cartographer.fog_of_war.spatial_index import SpatialIndex

logger = logging.getLogger(__name__)


class LocationProcessor:
    """Applies location fixes to the spatial index and repository.

    Attributes:
        config: Engine configuration.
        index: Spatial index receiving revealed areas.
        repository: Guarded repository, if any.
        provenance: Provenance tracker for reveal records.
    """

    def __init__(
        self,
        index: SpatialIndex,
        repository: Any = None,
        config: Optional[FogOfWarConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
    ) -> None:
        self.config = config or get_config()
        self.index = index
        if repository is not None and not isinstance(repository, GuardedRepository):
            repository = GuardedRepository(repository, self.config)
        self.repository: Optional[GuardedRepository] = repository
        self.provenance = provenance or index.provenance
        self._last_fix: Optional[LocationFix] = None
        self._accepted = 0
        self._duplicates = 0
        self._persist_failures = 0

    @property
    def last_fix(self) -> Optional[LocationFix]:
        return self._last_fix

    def is_duplicate_location(self, fix: LocationFix) -> bool:
        """Whether ``fix`` is within tolerance of the last accepted fix."""
        last = self._last_fix
        if last is None:
            return False
        tolerance = self.config.duplicate_location_tolerance
        return (
            abs(fix.latitude - last.latitude) <= tolerance
            and abs(fix.longitude - last.longitude) <= tolerance
        )

    async def reveal_location(
        self,
        fix: LocationFix,
        radius_m: Optional[float] = None,
    ) -> RevealResult:
        """Reveal the area around a location fix.

        Args:
            fix: The location fix.
            radius_m: Reveal radius in meters (config default if None).

        Returns:
            RevealResult describing the index and repository outcome.
        """
        start = time.perf_counter()
        result = RevealResult()

        if self.is_duplicate_location(fix):
            self._duplicates += 1
            result.duplicate = True
            result.processing_time_ms = (time.perf_counter() - start) * 1000.0
            logger.debug(
                "Duplicate location suppressed: (%.6f, %.6f)", fix.latitude, fix.longitude,
            )
            return result

        radius = self.config.reveal_radius_m if radius_m is None else radius_m
        disc = buffer_point((fix.longitude, fix.latitude), radius, config=self.config)
        if disc.result is None:
            result.errors.extend(disc.errors)
            result.processing_time_ms = (time.perf_counter() - start) * 1000.0
            logger.warning("Location reveal rejected: %s", "; ".join(disc.errors))
            return result

        revealed = disc.result
        revealed["properties"]["revealed_at"] = fix.timestamp.isoformat()

        area = revealed
        if self.config.merge_adjacent_areas:
            neighbours = self.index.query_radius((fix.longitude, fix.latitude), radius)
            if neighbours:
                merged = union_all([revealed] + neighbours, self.config, assume_valid=True)
                if merged.result is not None:
                    area = merged.result
                    area["properties"]["revealed_at"] = fix.timestamp.isoformat()
                    result.merged_ids = [
                        str(n["properties"]["id"]) for n in neighbours
                        if isinstance(n.get("properties"), dict) and "id" in n["properties"]
                    ]
                else:
                    result.errors.extend(merged.errors)

        feature_id = self.index.add_feature(area)
        if feature_id is None:
            result.errors.append("Revealed area rejected by the spatial index")
            result.processing_time_ms = (time.perf_counter() - start) * 1000.0
            return result
        for old_id in result.merged_ids:
            if old_id != feature_id:
                self.index.remove_feature(old_id)

        result.accepted = True
        result.feature_id = feature_id
        result.feature = self.index.get_feature(feature_id)
        self._last_fix = fix
        self._accepted += 1

        if self.repository is not None:
            try:
                result.repository_id = await self.repository.save_revealed_area(revealed)
                result.persisted = True
            except SourceUnavailable as exc:
                self._persist_failures += 1
                result.errors.append(exc.message)
                logger.warning("Revealed area %s not persisted: %s", feature_id, exc.message)

        self.provenance.record(
            "location_reveal",
            result.reveal_id,
            "reveal",
            self.provenance.build_hash({
                "latitude": fix.latitude,
                "longitude": fix.longitude,
                "radius_m": radius,
                "feature_id": feature_id,
                "merged": result.merged_ids,
            }),
        )
        result.processing_time_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            "Revealed %.0fm around (%.6f, %.6f) as %s (merged %d, persisted=%s)",
            radius, fix.latitude, fix.longitude, feature_id,
            len(result.merged_ids), result.persisted,
        )
        return result

    def reset(self) -> None:
        """Forget the last accepted fix."""
        self._last_fix = None

    def get_statistics(self) -> dict:
        return {
            "accepted": self._accepted,
            "duplicates": self._duplicates,
            "persist_failures": self._persist_failures,
        }


__all__ = ["LocationProcessor"]
