# -*- coding: utf-8 -*-
"""
Spatial Index - Fog-of-War Engine

In-memory bounding-box index over revealed-area features. Retrieves the
features relevant to a viewport or a radius without scanning the whole
dataset, applies level-of-detail (LOD) reduction for zoomed-out views, and
tracks an approximate memory footprint.

The index is a shapely ``STRtree`` (sort-tile-recursive packed R-tree)
over each entry's envelope. STRtree is immutable, so mutations only mark
the tree dirty and it is rebuilt on the next query; a bulk load therefore
costs one build.

Every successful mutation is recorded in the provenance chain under the
index id. The chain head is exposed as ``content_hash`` and is the
content version the fog result cache validates entries against.

The index owns deep copies of everything inserted and returns deep copies
from queries. It performs no locking; hosts that share one index across
threads must serialize access themselves.

Example:
    >>> from cartographer.fog_of_war.spatial_index import SpatialIndex
    >>> index = SpatialIndex()
    >>> index.add_feature(disc_feature)
    'ra-5f0c...'
    >>> result = index.query_viewport([-122.5, 37.7, -122.3, 37.8])
    >>> result.returned_features
    1

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import shapely
from shapely.errors import ShapelyError
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree
from shapely.validation import make_valid

from cartographer.exceptions import GeometryValidationError, InvalidBoundsError
from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.geometry_operations import (
    buffer_point,
    polygonal_part,
    sanitize_geometry,
    to_feature,
    to_shape,
    validate_geometry,
)
from cartographer.fog_of_war.metrics import record_index_query, update_index_size
from cartographer.fog_of_war.models import (
    IndexState,
    MemoryOptimizationResult,
    MemoryRecommendation,
    SpatialIndexMemoryStats,
    SpatialQueryResult,
    ViewportBounds,
    _new_id,
)
from cartographer.fog_of_war.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Memory estimate constants
# ---------------------------------------------------------------------------

BYTES_PER_FEATURE = 1024
BYTES_PER_VERTEX = 64


# =============================================================================
# SpatialIndexEntry
# =============================================================================


@dataclass
class SpatialIndexEntry:
    """Index-internal record of one revealed area.

    ``bbox`` is always the envelope of ``geometry``; entries are rebuilt
    rather than edited when their payload changes.
    """

    feature_id: str
    feature: Dict[str, Any]
    geometry: BaseGeometry
    bbox: Tuple[float, float, float, float]
    area: float
    centroid: Tuple[float, float]
    vertex_count: int
    sequence: int
    last_queried_at: int = 0
    query_count: int = 0
    simplified: Dict[float, Tuple[Dict[str, Any], int]] = field(default_factory=dict)

    @property
    def bbox_area(self) -> float:
        return (self.bbox[2] - self.bbox[0]) * (self.bbox[3] - self.bbox[1])

    @property
    def estimated_vertices(self) -> int:
        return self.vertex_count + sum(v for _, v in self.simplified.values())


def _make_entry(
    feature_id: str,
    feature: Dict[str, Any],
    geom: BaseGeometry,
    sequence: int,
) -> SpatialIndexEntry:
    centroid = geom.centroid
    return SpatialIndexEntry(
        feature_id=feature_id,
        feature=feature,
        geometry=geom,
        bbox=tuple(geom.bounds),
        area=geom.area,
        centroid=(centroid.x, centroid.y),
        vertex_count=int(shapely.get_num_coordinates(geom)),
        sequence=sequence,
    )


def stable_feature_id(geometry: Dict[str, Any]) -> str:
    """Content-derived identifier for a feature that arrives without one."""
    raw = json.dumps(geometry, sort_keys=True, separators=(",", ":"))
    return "ra-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


# =============================================================================
# SpatialIndex
# =============================================================================


class SpatialIndex:
    """Bounding-box index over revealed-area features.

    States: ``IndexState.EMPTY`` until the first successful insert,
    ``IndexState.POPULATED`` afterwards, back to EMPTY on :meth:`clear`.

    Attributes:
        config: Engine configuration.
        provenance: Tracker that records mutations and yields the
            content hash.
        index_id: Entity id under which mutations are recorded.
    """

    def __init__(
        self,
        config: Optional[FogOfWarConfig] = None,
        provenance: Optional[ProvenanceTracker] = None,
        index_id: Optional[str] = None,
    ) -> None:
        self.config = config or get_config()
        self.provenance = provenance or ProvenanceTracker()
        self.index_id = index_id or _new_id("IDX")

        self._entries: Dict[str, SpatialIndexEntry] = {}
        self._tree: Optional[STRtree] = None
        self._tree_ids: List[str] = []
        self._tree_dirty = False
        self._sequence = 0
        self._tick = 0
        self._dropped_features = 0
        self._query_count = 0
        self._destroyed = False

        logger.info("SpatialIndex %s initialized", self.index_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> IndexState:
        return IndexState.POPULATED if self._entries else IndexState.EMPTY

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def content_hash(self) -> str:
        """Version of the indexed content; advances on every mutation."""
        return self.provenance.latest_hash(self.index_id)

    @property
    def dropped_features(self) -> int:
        """Number of inserts rejected by validation."""
        return self._dropped_features

    @property
    def query_count(self) -> int:
        return self._query_count

    def feature_ids(self) -> List[str]:
        return list(self._entries)

    def get_feature(self, feature_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(feature_id)
        return copy.deepcopy(entry.feature) if entry else None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_feature(self, feature: Any) -> Optional[str]:
        """Validate and insert one feature.

        Args:
            feature: Polygonal Feature (loosely-typed input is sanitized).

        Returns:
            The feature id, or None when the feature was dropped.
        """
        self._ensure_alive()
        feature_id = self._insert(feature)
        if feature_id is not None:
            self._record_mutation("insert", [feature_id])
        return feature_id

    def add_features(self, features: Iterable[Any]) -> int:
        """Validate and insert many features; invalid ones are dropped.

        Returns:
            Number of features inserted.
        """
        self._ensure_alive()
        added: List[str] = []
        dropped_before = self._dropped_features
        for feature in features or []:
            feature_id = self._insert(feature)
            if feature_id is not None:
                added.append(feature_id)
        if added:
            self._record_mutation("bulk_insert", added)
        dropped = self._dropped_features - dropped_before
        logger.info(
            "SpatialIndex %s loaded %d features (%d dropped, %d total)",
            self.index_id, len(added), dropped, len(self._entries),
        )
        return len(added)

    def remove_feature(self, feature_id: str) -> bool:
        """Remove a feature by id. Returns whether it was present."""
        self._ensure_alive()
        if self._entries.pop(feature_id, None) is None:
            return False
        self._record_mutation("remove", [feature_id])
        return True

    def clear(self) -> None:
        """Remove every feature (POPULATED -> EMPTY)."""
        had_entries = bool(self._entries)
        self._entries.clear()
        self._tree = None
        self._tree_ids = []
        self._tree_dirty = False
        if had_entries:
            self._record_mutation("clear", [])
        logger.info("SpatialIndex %s cleared", self.index_id)

    def destroy(self) -> None:
        """Clear the index and refuse further mutations."""
        self.clear()
        self._destroyed = True
        logger.info("SpatialIndex %s destroyed", self.index_id)

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise RuntimeError(f"SpatialIndex {self.index_id} has been destroyed")

    def _prepare(self, feature: Any) -> Tuple[Dict[str, Any], BaseGeometry]:
        """Owned, repaired copy of ``feature`` and its shapely geometry.

        Raises:
            GeometryValidationError: If no usable polygon can be recovered.
        """
        validation = validate_geometry(feature, self.config)
        candidate = feature if validation.is_valid else sanitize_geometry(feature, self.config)
        if candidate is None:
            raise GeometryValidationError(
                message="Feature is not a usable polygon",
                component="SpatialIndex",
                errors=validation.errors[:3],
            )

        if candidate.get("type") != "Feature":
            candidate = {"type": "Feature", "properties": {}, "geometry": candidate}
        owned = copy.deepcopy(candidate)
        if not isinstance(owned.get("properties"), dict):
            owned["properties"] = {}

        try:
            geom = to_shape(owned)
            if not geom.is_valid:
                geom = polygonal_part(make_valid(geom))
                if geom is None:
                    raise GeometryValidationError(
                        message="No polygonal part after repair",
                        component="SpatialIndex",
                    )
                owned = to_feature(geom, owned["properties"])
        except (ShapelyError, ValueError, TypeError) as exc:
            raise GeometryValidationError(
                message=f"Geometry could not be built: {exc}",
                component="SpatialIndex",
            ) from exc
        return owned, geom

    def _insert(self, feature: Any) -> Optional[str]:
        try:
            owned, geom = self._prepare(feature)
        except GeometryValidationError as exc:
            self._dropped_features += 1
            details = exc.context.get("errors") or []
            logger.warning(
                "SpatialIndex %s dropped feature: %s",
                self.index_id, "; ".join([exc.message] + details),
            )
            return None

        properties = owned["properties"]
        raw_id = properties.get("id")
        feature_id = str(raw_id) if raw_id is not None else stable_feature_id(owned["geometry"])
        properties["id"] = feature_id

        self._sequence += 1
        self._entries[feature_id] = _make_entry(feature_id, owned, geom, self._sequence)
        return feature_id

    def _record_mutation(self, action: str, feature_ids: List[str]) -> None:
        self._tree_dirty = True
        data_hash = self.provenance.build_hash({
            "action": action,
            "ids": feature_ids,
            "count": len(self._entries),
        })
        self.provenance.record("index_mutation", self.index_id, action, data_hash)
        update_index_size(len(self._entries), self._estimate_bytes())

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def _ensure_tree(self) -> None:
        if self._tree is not None and not self._tree_dirty:
            return
        self._tree_ids = list(self._entries)
        if self._tree_ids:
            self._tree = STRtree([box(*self._entries[i].bbox) for i in self._tree_ids])
        else:
            self._tree = None
        self._tree_dirty = False

    def _candidates(self, rect: Tuple[float, float, float, float]) -> List[SpatialIndexEntry]:
        """Entries whose envelope intersects ``rect`` (boundary inclusive)."""
        self._ensure_tree()
        if self._tree is None:
            return []
        hits = self._tree.query(box(*rect))
        return [self._entries[self._tree_ids[i]] for i in sorted(int(h) for h in hits)]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_viewport(
        self,
        bounds: Any,
        max_results: Optional[int] = None,
        buffer_distance: Optional[float] = None,
        use_level_of_detail: bool = True,
        zoom_level: Optional[int] = None,
    ) -> SpatialQueryResult:
        """Features whose envelope intersects the buffered viewport.

        Args:
            bounds: ViewportBounds or ``[min_lon, min_lat, max_lon, max_lat]``.
            max_results: Cap on returned features (config default if None);
                the largest-area features are kept.
            buffer_distance: Degrees added on every side (config default if None).
            use_level_of_detail: Apply LOD when ``zoom_level`` is given.
            zoom_level: Map zoom level.

        Returns:
            SpatialQueryResult; invalid bounds yield an empty result with
            errors.
        """
        start = time.perf_counter()
        try:
            viewport = ViewportBounds.parse(bounds)
        except InvalidBoundsError as exc:
            return SpatialQueryResult(errors=[exc.message])

        buffer = self.config.query_buffer_distance if buffer_distance is None else buffer_distance
        limit = self.config.max_query_results if max_results is None else max_results
        rect = viewport.expanded(buffer)
        candidates = self._candidates(rect)
        lod_applied = use_level_of_detail and zoom_level is not None

        selected: List[Tuple[SpatialIndexEntry, Dict[str, Any]]] = []
        culled = 0
        simplified = 0
        for entry in candidates:
            payload = entry.feature
            if lod_applied:
                payload, decision = self._apply_lod(entry, viewport, zoom_level)
                if decision == "culled":
                    culled += 1
                    continue
                if decision == "simplified":
                    simplified += 1
            selected.append((entry, payload))

        truncated = False
        if limit is not None and len(selected) > limit:
            selected.sort(key=lambda item: (-item[0].area, item[0].sequence))
            selected = selected[:limit]
            truncated = True

        self._tick += 1
        for entry, _ in selected:
            entry.last_queried_at = self._tick
            entry.query_count += 1
        self._query_count += 1

        features = [copy.deepcopy(payload) for _, payload in selected]
        elapsed = time.perf_counter() - start
        record_index_query("viewport", elapsed)
        logger.debug(
            "SpatialIndex %s viewport query: %d candidates, %d returned, "
            "%d culled, truncated=%s in %.2fms",
            self.index_id, len(candidates), len(features), culled, truncated,
            elapsed * 1000.0,
        )
        return SpatialQueryResult(
            features=features,
            total_candidates=len(candidates),
            returned_features=len(features),
            query_time_ms=elapsed * 1000.0,
            truncated=truncated,
            level_of_detail_applied=lod_applied,
            culled_features=culled,
            simplified_features=simplified,
            query_bounds=list(rect),
        )

    def query_radius(self, center: Any, radius_m: float) -> List[Dict[str, Any]]:
        """Features whose geometry intersects a geodesic circle.

        Args:
            center: Point Feature, Point geometry or ``(lon, lat)``.
            radius_m: Radius in meters.

        Returns:
            Deep copies of the matching features; empty on invalid input.
        """
        start = time.perf_counter()
        circle = buffer_point(center, radius_m, config=self.config)
        if circle.result is None:
            logger.warning("query_radius rejected input: %s", "; ".join(circle.errors))
            return []
        disc = to_shape(circle.result)
        hits = [e for e in self._candidates(disc.bounds) if e.geometry.intersects(disc)]

        self._tick += 1
        for entry in hits:
            entry.last_queried_at = self._tick
            entry.query_count += 1
        self._query_count += 1
        record_index_query("radius", time.perf_counter() - start)
        return [copy.deepcopy(e.feature) for e in hits]

    # ------------------------------------------------------------------
    # Level of detail
    # ------------------------------------------------------------------

    def _apply_lod(
        self,
        entry: SpatialIndexEntry,
        viewport: ViewportBounds,
        zoom_level: int,
    ) -> Tuple[Optional[Dict[str, Any]], str]:
        cfg = self.config
        if zoom_level >= cfg.full_detail_zoom:
            return entry.feature, "full"
        center_lon, center_lat = viewport.center
        distance = math.hypot(entry.centroid[0] - center_lon, entry.centroid[1] - center_lat)
        if distance <= cfg.full_detail_distance:
            return entry.feature, "full"
        if entry.bbox_area < self.min_area_threshold(zoom_level):
            return None, "culled"
        if zoom_level >= cfg.lod_medium_zoom:
            tolerance = cfg.medium_detail_tolerance
        else:
            tolerance = cfg.low_detail_tolerance
        return self._simplified_variant(entry, tolerance), "simplified"

    def min_area_threshold(self, zoom_level: int) -> float:
        """Bounding-box area (square degrees) below which LOD culls a feature."""
        return 10.0 ** -(zoom_level - self.config.lod_area_zoom_offset)

    def _simplified_variant(self, entry: SpatialIndexEntry, tolerance: float) -> Dict[str, Any]:
        cached = entry.simplified.get(tolerance)
        if cached is not None:
            return cached[0]
        simple = polygonal_part(entry.geometry.simplify(tolerance, preserve_topology=True))
        if simple is None:
            return entry.feature
        properties = dict(entry.feature.get("properties") or {})
        properties["lod_tolerance"] = tolerance
        variant = to_feature(simple, properties)
        entry.simplified[tolerance] = (variant, int(shapely.get_num_coordinates(simple)))
        return variant

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def _estimate_bytes(self) -> int:
        vertices = sum(e.estimated_vertices for e in self._entries.values())
        return len(self._entries) * BYTES_PER_FEATURE + vertices * BYTES_PER_VERTEX

    def get_memory_stats(self) -> SpatialIndexMemoryStats:
        """Approximate memory footprint and a housekeeping recommendation."""
        count = len(self._entries)
        vertices = sum(e.estimated_vertices for e in self._entries.values())
        estimated = count * BYTES_PER_FEATURE + vertices * BYTES_PER_VERTEX
        threshold = self.config.memory_threshold_bytes
        if estimated > threshold:
            recommendation = MemoryRecommendation.CLEANUP_REQUIRED
        elif estimated > threshold * self.config.memory_warning_ratio:
            recommendation = MemoryRecommendation.CONSIDER_CLEANUP
        else:
            recommendation = MemoryRecommendation.OPTIMAL
        update_index_size(count, estimated)
        return SpatialIndexMemoryStats(
            estimated_bytes=estimated,
            feature_count=count,
            total_vertices=vertices,
            average_vertices=(vertices / count) if count else 0.0,
            threshold_bytes=threshold,
            recommendation=recommendation,
        )

    def optimize_memory(self, aggressive: bool = False) -> MemoryOptimizationResult:
        """Shrink the index, least-recently-queried and smallest first.

        Cached LOD variants are discarded. The lowest-ranked share of
        entries (``1 - optimize_keep_ratio``, or ``1 - aggressive_keep_ratio``
        when aggressive) is eligible: eligible entries smaller than the
        LOD cull area at ``lod_medium_zoom`` are dropped, the rest are
        re-simplified.
        """
        self._ensure_alive()
        cfg = self.config
        bytes_before = self._estimate_bytes()
        for entry in self._entries.values():
            entry.simplified.clear()

        keep_ratio = cfg.aggressive_keep_ratio if aggressive else cfg.optimize_keep_ratio
        tolerance = cfg.low_detail_tolerance if aggressive else cfg.medium_detail_tolerance
        ranked = sorted(
            self._entries.values(),
            key=lambda e: (e.last_queried_at, e.area, e.sequence),
        )
        eligible = ranked[: len(ranked) - int(math.ceil(len(ranked) * keep_ratio))]
        drop_area = self.min_area_threshold(cfg.lod_medium_zoom)

        removed: List[str] = []
        simplified: List[str] = []
        for entry in eligible:
            if entry.bbox_area < drop_area:
                del self._entries[entry.feature_id]
                removed.append(entry.feature_id)
                continue
            simple = polygonal_part(entry.geometry.simplify(tolerance, preserve_topology=True))
            if simple is None or shapely.get_num_coordinates(simple) >= entry.vertex_count:
                continue
            replacement = _make_entry(
                entry.feature_id,
                to_feature(simple, entry.feature.get("properties")),
                simple,
                entry.sequence,
            )
            replacement.last_queried_at = entry.last_queried_at
            replacement.query_count = entry.query_count
            self._entries[entry.feature_id] = replacement
            simplified.append(entry.feature_id)

        if removed or simplified:
            self._record_mutation("optimize", removed + simplified)
        bytes_after = self._estimate_bytes()
        logger.info(
            "SpatialIndex %s optimized (aggressive=%s): %d removed, %d simplified, "
            "%d -> %d bytes",
            self.index_id, aggressive, len(removed), len(simplified),
            bytes_before, bytes_after,
        )
        return MemoryOptimizationResult(
            aggressive=aggressive,
            removed_features=removed,
            simplified_features=simplified,
            bytes_before=bytes_before,
            bytes_after=bytes_after,
        )


__all__ = [
    "BYTES_PER_FEATURE",
    "BYTES_PER_VERTEX",
    "SpatialIndexEntry",
    "SpatialIndex",
    "stable_feature_id",
]
