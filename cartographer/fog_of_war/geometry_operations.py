# -*- coding: utf-8 -*-
"""
Geometry Operations - Fog-of-War Engine

Deterministic, side-effect-free polygon primitives shared by the spatial
index, the fog calculator and the location reveal flow. Every primitive
has an explicit validation gate and a documented safe output instead of
raising on malformed input:

    validate_geometry   never raises; reports errors, warnings, complexity
    sanitize_geometry   returns None when coercion is impossible
    buffer_point        result None on bad center, distance or unit
    union_all           skips invalid entries, result None only when none remain
    difference          returns the minuend unchanged on any failure

Geometries are GeoJSON dictionaries with ``[lon, lat]`` coordinates.
Computation uses shapely; inputs are never mutated and results never
alias inputs.

Example:
    >>> from cartographer.fog_of_war.geometry_operations import (
    ...     buffer_point, difference, create_viewport_polygon,
    ... )
    >>> disc = buffer_point((-122.4194, 37.7749), 50).result
    >>> viewport = create_viewport_polygon([-122.5, 37.7, -122.3, 37.8])
    >>> fog = difference(viewport, disc).result
    >>> len(fog["geometry"]["coordinates"])
    2

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import copy
import json
import logging
import math
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from shapely.errors import GEOSException, ShapelyError
from shapely.geometry import MultiPolygon, Polygon, box, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid

from cartographer.fog_of_war.config import FogOfWarConfig, get_config
from cartographer.fog_of_war.metrics import record_geometry_operation
from cartographer.fog_of_war.models import (
    ComplexityLevel,
    DistanceUnit,
    GeometryComplexity,
    GeometryOperationMetrics,
    GeometryOperationResult,
    GeometryOperationType,
    GeometryValidationResult,
    ViewportBounds,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M = 6371008.8
COORDINATE_PRECISION = 6
DUPLICATE_EPSILON = 1e-6
WORLD_BOUNDS: Tuple[float, float, float, float] = (-180.0, -90.0, 180.0, 90.0)

_UNIT_TO_METERS = {
    DistanceUnit.METERS: 1.0,
    DistanceUnit.KILOMETERS: 1000.0,
    DistanceUnit.MILES: 1609.344,
    DistanceUnit.FEET: 0.3048,
}

_POLYGONAL_TYPES = ("Polygon", "MultiPolygon")

_GEOMETRY_ERRORS = (ShapelyError, ValueError, TypeError, AttributeError, KeyError)


# =============================================================================
# Small helpers
# =============================================================================


def _elapsed_ms(start: float) -> float:
    return max(0.0, (time.perf_counter() - start) * 1000.0)


def _is_number(value: Any) -> bool:
    """True for finite int/float values; booleans are not coordinates."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _listify(value: Any) -> Any:
    """Turn the nested tuples produced by shapely ``mapping`` into lists."""
    if isinstance(value, (list, tuple)):
        return [_listify(v) for v in value]
    return value


def _nesting_depth(value: Any) -> int:
    depth = 0
    while isinstance(value, (list, tuple)) and value:
        depth += 1
        value = value[0]
    return depth


def _split_feature(value: Any) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Return ``(geometry, error)`` for a Feature or bare geometry dict."""
    if not isinstance(value, dict):
        return None, "Geometry must be a GeoJSON Feature or geometry object"
    if value.get("type") == "Feature":
        geometry = value.get("geometry")
        if not isinstance(geometry, dict):
            return None, "Feature has no geometry"
        return geometry, None
    return value, None


def _properties_of(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict) and value.get("type") == "Feature":
        props = value.get("properties")
        if isinstance(props, dict):
            return copy.deepcopy(props)
    return {}


def _polygons_of(geometry: Dict[str, Any]) -> List[Any]:
    coords = geometry.get("coordinates")
    if geometry.get("type") == "Polygon":
        return [coords]
    return list(coords or [])


def _complexity_from_ring_sizes(
    ring_sizes: Sequence[int], config: FogOfWarConfig,
) -> GeometryComplexity:
    total = int(sum(ring_sizes))
    ring_count = len(ring_sizes)
    if total > config.complexity_high_vertices:
        level = ComplexityLevel.HIGH
    elif total > config.complexity_medium_vertices:
        level = ComplexityLevel.MEDIUM
    else:
        level = ComplexityLevel.LOW
    return GeometryComplexity(
        total_vertices=total,
        ring_count=ring_count,
        max_ring_vertices=max(ring_sizes) if ring_sizes else 0,
        average_ring_vertices=(total / ring_count) if ring_count else 0.0,
        complexity_level=level,
    )


def _ring_sizes(geometry: Dict[str, Any]) -> List[int]:
    sizes: List[int] = []
    if geometry.get("type") not in _POLYGONAL_TYPES:
        return sizes
    for polygon in _polygons_of(geometry):
        if not isinstance(polygon, (list, tuple)):
            continue
        for ring in polygon:
            if isinstance(ring, (list, tuple)):
                sizes.append(len(ring))
    return sizes


# =============================================================================
# Validation
# =============================================================================


def get_geometry_complexity(
    geometry: Any, config: Optional[FogOfWarConfig] = None,
) -> GeometryComplexity:
    """Vertex statistics of a Feature or Polygon/MultiPolygon geometry."""
    cfg = config or get_config()
    geom, _ = _split_feature(geometry)
    if geom is None:
        return GeometryComplexity()
    return _complexity_from_ring_sizes(_ring_sizes(geom), cfg)


def _validate_ring(
    ring: Any,
    label: str,
    errors: List[str],
    warnings: List[str],
    config: FogOfWarConfig,
) -> None:
    if not isinstance(ring, (list, tuple)):
        errors.append(f"{label} is not a coordinate array")
        return
    if len(ring) < 4:
        errors.append(
            f"{label} has {len(ring)} positions; at least 4 are required"
        )
    for i, position in enumerate(ring):
        if (
            not isinstance(position, (list, tuple))
            or len(position) not in (2, 3)
            or not all(_is_number(v) for v in position)
        ):
            errors.append(f"{label} position {i} is not a finite [lon, lat] pair")
            return
        lon, lat = position[0], position[1]
        if lon < -180.0 or lon > 180.0:
            errors.append(f"{label} position {i} longitude {lon} out of range")
            return
        if lat < -90.0 or lat > 90.0:
            errors.append(f"{label} position {i} latitude {lat} out of range")
            return
    if ring and list(ring[0][:2]) != list(ring[-1][:2]):
        errors.append(f"{label} is not closed")
    if len(ring) > config.complexity_high_vertices:
        warnings.append(
            f"{label} has {len(ring)} vertices; consider simplification"
        )


def validate_geometry(
    geometry: Any, config: Optional[FogOfWarConfig] = None,
) -> GeometryValidationResult:
    """Structurally validate a polygonal Feature or geometry.

    Checks the type tag, non-empty coordinates, ring length (at least 4
    positions), ring closure, numeric finiteness and coordinate ranges.
    Never raises.

    Args:
        geometry: GeoJSON Feature, Polygon or MultiPolygon.
        config: Optional config for the complexity thresholds.

    Returns:
        GeometryValidationResult with accumulated errors and warnings.
    """
    cfg = config or get_config()
    errors: List[str] = []
    warnings: List[str] = []

    geom, error = _split_feature(geometry)
    if geom is None:
        return GeometryValidationResult(is_valid=False, errors=[error])

    geometry_type = geom.get("type")
    if geometry_type not in _POLYGONAL_TYPES:
        errors.append(
            f"Unsupported geometry type {geometry_type!r}; "
            "expected Polygon or MultiPolygon"
        )
        return GeometryValidationResult(is_valid=False, errors=errors)

    coords = geom.get("coordinates")
    if not isinstance(coords, (list, tuple)) or not coords:
        errors.append("Empty coordinates array")
        return GeometryValidationResult(is_valid=False, errors=errors)

    for p_idx, polygon in enumerate(_polygons_of(geom)):
        prefix = f"Polygon {p_idx}" if geometry_type == "MultiPolygon" else "Polygon"
        if not isinstance(polygon, (list, tuple)) or not polygon:
            errors.append(f"{prefix} has no rings")
            continue
        for r_idx, ring in enumerate(polygon):
            label = f"{prefix} ring {r_idx}"
            _validate_ring(ring, label, errors, warnings, cfg)

    complexity = _complexity_from_ring_sizes(_ring_sizes(geom), cfg)
    if complexity.complexity_level == ComplexityLevel.HIGH:
        warnings.append(
            f"High complexity geometry ({complexity.total_vertices} vertices)"
        )

    return GeometryValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        complexity=complexity,
    )


# =============================================================================
# Sanitization
# =============================================================================


def _coerce_feature(value: Any) -> Optional[Dict[str, Any]]:
    """Normalize loosely-typed input into ``{"geometry", "properties"}``."""
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    if hasattr(value, "__geo_interface__") and not isinstance(value, dict):
        value = value.__geo_interface__

    if isinstance(value, dict):
        properties = _properties_of(value)
        if value.get("type") == "Feature":
            geometry = value.get("geometry")
        else:
            geometry = value
        if not isinstance(geometry, dict):
            return None
        geometry_type = geometry.get("type")
        coords = geometry.get("coordinates")
        depth = _nesting_depth(coords)
        if geometry_type == "Polygon":
            if depth == 2:
                coords = [coords]
            elif depth != 3:
                return None
            polygons = [coords]
        elif geometry_type == "MultiPolygon":
            if depth == 3:
                coords = [coords]
            elif depth != 4:
                return None
            polygons = list(coords)
        else:
            return None
        return {"polygons": polygons, "properties": properties}

    if isinstance(value, (list, tuple)):
        depth = _nesting_depth(value)
        if depth == 2:
            return {"polygons": [[value]], "properties": {}}
        if depth == 3:
            return {"polygons": [value], "properties": {}}
        if depth == 4:
            return {"polygons": list(value), "properties": {}}
    return None


def _clean_ring(ring: Any) -> Optional[List[List[float]]]:
    if not isinstance(ring, (list, tuple)):
        return None
    cleaned: List[List[float]] = []
    for position in ring:
        if not isinstance(position, (list, tuple)) or len(position) < 2:
            return None
        if isinstance(position[0], bool) or isinstance(position[1], bool):
            return None
        lon = float(position[0])
        lat = float(position[1])
        if not (math.isfinite(lon) and math.isfinite(lat)):
            return None
        if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
            return None
        point = [round(lon, COORDINATE_PRECISION), round(lat, COORDINATE_PRECISION)]
        if cleaned and (
            abs(cleaned[-1][0] - point[0]) < DUPLICATE_EPSILON
            and abs(cleaned[-1][1] - point[1]) < DUPLICATE_EPSILON
        ):
            continue
        cleaned.append(point)
    if cleaned and cleaned[0] != cleaned[-1]:
        cleaned.append(list(cleaned[0]))
    if len(cleaned) < 4:
        return None
    return cleaned


def polygonal_part(geom: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
    """Keep only the polygonal components of a shapely geometry."""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    parts: List[Polygon] = []
    for part in getattr(geom, "geoms", []):
        if isinstance(part, Polygon) and not part.is_empty:
            parts.append(part)
        elif isinstance(part, MultiPolygon):
            parts.extend(p for p in part.geoms if not p.is_empty)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return MultiPolygon(parts)


def sanitize_geometry(
    value: Any, config: Optional[FogOfWarConfig] = None,
) -> Optional[Dict[str, Any]]:
    """Coerce loosely-typed polygon input into a normalized Feature.

    Accepts a Feature, a bare Polygon/MultiPolygon dict (including one
    missing a nesting level), a JSON string, any object exposing
    ``__geo_interface__``, a bare ring, or a list of rings. Coordinates
    are coerced to float and rounded to 6 decimals, consecutive
    duplicates are dropped, rings are closed, and rings with fewer than 4
    positions are dropped (a bad outer ring drops its polygon).
    Self-intersections are repaired with ``make_valid``.

    Returns:
        A new Feature, or None when no usable polygon remains.
    """
    cfg = config or get_config()
    try:
        coerced = _coerce_feature(value)
        if coerced is None:
            return None

        polygons: List[List[List[List[float]]]] = []
        for polygon in coerced["polygons"]:
            if not isinstance(polygon, (list, tuple)):
                continue
            rings: List[List[List[float]]] = []
            for r_idx, ring in enumerate(polygon):
                cleaned = _clean_ring(ring)
                if cleaned is None:
                    if r_idx == 0:
                        rings = []
                        break
                    continue
                rings.append(cleaned)
            if rings:
                polygons.append(rings)
        if not polygons:
            return None

        if len(polygons) == 1:
            geometry = {"type": "Polygon", "coordinates": polygons[0]}
        else:
            geometry = {"type": "MultiPolygon", "coordinates": polygons}

        geom = shape(geometry)
        if not geom.is_valid:
            repaired = polygonal_part(make_valid(geom))
            if repaired is None:
                return None
            geometry = _listify(mapping(repaired))

        feature = {
            "type": "Feature",
            "properties": coerced["properties"],
            "geometry": geometry,
        }
        if not validate_geometry(feature, cfg).is_valid:
            return None
        return feature
    except _GEOMETRY_ERRORS as exc:
        logger.debug("sanitize_geometry could not coerce input: %s", exc)
        return None


# =============================================================================
# Conversion helpers
# =============================================================================


def to_shape(feature: Dict[str, Any]) -> BaseGeometry:
    """Return the shapely geometry of a Feature or geometry dict."""
    geom, error = _split_feature(feature)
    if geom is None:
        raise ValueError(error)
    return shape(geom)


def to_feature(
    geom: BaseGeometry, properties: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Wrap a shapely geometry in a GeoJSON Feature with list coordinates."""
    return {
        "type": "Feature",
        "properties": dict(properties or {}),
        "geometry": _listify(mapping(geom)),
    }


def empty_feature(properties: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Feature with an empty MultiPolygon, the fully-revealed difference."""
    props = dict(properties or {})
    props["fully_revealed"] = True
    return {
        "type": "Feature",
        "properties": props,
        "geometry": {"type": "MultiPolygon", "coordinates": []},
    }


def is_empty_feature(feature: Any) -> bool:
    geom, _ = _split_feature(feature)
    return geom is not None and geom.get("coordinates") == []


def feature_bbox(feature: Dict[str, Any]) -> Tuple[float, float, float, float]:
    """Tight envelope ``(min_lon, min_lat, max_lon, max_lat)`` of a feature."""
    return tuple(to_shape(feature).bounds)  # type: ignore[return-value]


def create_viewport_polygon(bounds: Any) -> Dict[str, Any]:
    """Closed rectangle Feature for viewport bounds.

    Raises:
        InvalidBoundsError: If the bounds are invalid.
    """
    return ViewportBounds.parse(bounds).to_polygon_feature()


def create_world_polygon() -> Dict[str, Any]:
    """Rectangle Feature covering the whole world."""
    feature = to_feature(box(*WORLD_BOUNDS), {"kind": "world"})
    return feature


# =============================================================================
# Buffer
# =============================================================================


def _parse_center(point: Any) -> Tuple[Optional[Tuple[Any, Any]], Optional[str]]:
    if point is None:
        return None, "Point is missing"
    if isinstance(point, dict):
        geom = point.get("geometry") if point.get("type") == "Feature" else point
        if not isinstance(geom, dict) or geom.get("type") != "Point":
            return None, "Point feature must have a Point geometry"
        coords = geom.get("coordinates")
    else:
        coords = point
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return None, "Point coordinates must be [lon, lat]"
    return (coords[0], coords[1]), None


def _destination(
    lon: float, lat: float, bearing: float, angular_distance: float,
) -> Tuple[float, float]:
    """Spherical destination point from (lon, lat) in degrees."""
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)
    phi2 = math.asin(
        math.sin(phi1) * math.cos(angular_distance)
        + math.cos(phi1) * math.sin(angular_distance) * math.cos(bearing)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(bearing) * math.sin(angular_distance) * math.cos(phi1),
        math.cos(angular_distance) - math.sin(phi1) * math.sin(phi2),
    )
    return math.degrees(lambda2), math.degrees(phi2)


def buffer_point(
    point: Any,
    distance: Any,
    unit: Any = DistanceUnit.METERS,
    config: Optional[FogOfWarConfig] = None,
) -> GeometryOperationResult:
    """Circular polygon of ``distance`` around a point.

    The circle is geodesic on a spherical earth with
    ``config.buffer_steps`` vertices, wound counterclockwise. Circles that
    cross the antimeridian are clipped to the world box. A circle that
    encloses a pole becomes a cap spanning every longitude.

    Args:
        point: Point Feature, Point geometry, or ``(lon, lat)`` pair.
        distance: Positive radius.
        unit: meters, kilometers, miles or feet.
        config: Optional config override.

    Returns:
        GeometryOperationResult whose result is None when the center,
        distance or unit is rejected.
    """
    cfg = config or get_config()
    start = time.perf_counter()
    errors: List[str] = []

    center, error = _parse_center(point)
    if error:
        errors.append(error)
    else:
        lon, lat = center
        if not (_is_number(lon) and _is_number(lat)):
            errors.append("Point coordinates must be finite numbers")
        elif not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
            errors.append(f"Point coordinates out of range: [{lon}, {lat}]")

    if not _is_number(distance) or distance <= 0:
        errors.append(f"Buffer distance must be a positive number, got {distance!r}")

    try:
        distance_unit = DistanceUnit(unit)
    except ValueError:
        distance_unit = None
        errors.append(f"Unsupported distance unit {unit!r}")

    def _metrics(output: Optional[GeometryComplexity] = None) -> GeometryOperationMetrics:
        return GeometryOperationMetrics(
            operation_type=GeometryOperationType.BUFFER,
            execution_time_ms=_elapsed_ms(start),
            output_complexity=output,
            had_errors=bool(errors),
        )

    if errors:
        logger.warning("buffer_point rejected input: %s", "; ".join(errors))
        record_geometry_operation("buffer", status="failed")
        return GeometryOperationResult(result=None, errors=errors, metrics=_metrics())

    lon, lat = float(center[0]), float(center[1])
    radius_m = float(distance) * _UNIT_TO_METERS[distance_unit]
    angular = radius_m / EARTH_RADIUS_M
    angular_deg = math.degrees(angular)
    steps = max(8, cfg.buffer_steps)

    try:
        geom: Optional[BaseGeometry]
        if abs(lat) + angular_deg >= 90.0:
            # circle encloses a pole: planar cap spanning every longitude
            if lat > 0:
                geom = box(-180.0, max(-90.0, lat - angular_deg), 180.0, 90.0)
            else:
                geom = box(-180.0, -90.0, 180.0, min(90.0, lat + angular_deg))
        else:
            ring = [
                _destination(lon, lat, -2.0 * math.pi * i / steps, angular)
                for i in range(steps)
            ]
            ring.append(ring[0])
            geom = Polygon(ring)
            world = box(*WORLD_BOUNDS)
            if not geom.is_valid or not world.contains(geom):
                geom = polygonal_part(make_valid(geom).intersection(world))
    except GEOSException as exc:
        geom = None
        errors.append(f"Buffer construction failed: {exc}")
    if geom is None:
        if not errors:
            errors.append("Buffer produced an empty geometry")
        record_geometry_operation("buffer", status="failed")
        return GeometryOperationResult(result=None, errors=errors, metrics=_metrics())

    properties = _properties_of(point)
    properties.update({
        "kind": "revealed_area",
        "center": [lon, lat],
        "radius_m": radius_m,
    })
    feature = to_feature(geom, properties)
    output = get_geometry_complexity(feature, cfg)
    record_geometry_operation("buffer")
    return GeometryOperationResult(result=feature, metrics=_metrics(output))


# =============================================================================
# Union
# =============================================================================


def union_all(
    features: Iterable[Any],
    config: Optional[FogOfWarConfig] = None,
    assume_valid: bool = False,
) -> GeometryOperationResult:
    """Union polygonal features, skipping invalid entries.

    Invalid entries are first passed through :func:`sanitize_geometry`;
    entries that still fail are skipped with an error and set
    ``fallback_used``. If ``unary_union`` fails the features are unioned
    pairwise instead.

    Args:
        features: Iterable of polygonal Features.
        config: Optional config override.
        assume_valid: Skip structural validation for features that were
            already validated (spatial index output).

    Returns:
        GeometryOperationResult whose result is None only when no valid
        entry remains.
    """
    cfg = config or get_config()
    start = time.perf_counter()
    errors: List[str] = []
    warnings: List[str] = []
    shapes: List[BaseGeometry] = []
    ring_sizes: List[int] = []
    skipped = 0
    fallback = False

    try:
        items = list(features or [])
    except TypeError:
        items = []
        errors.append("union_all expects an iterable of features")

    for idx, item in enumerate(items):
        candidate = item
        if not assume_valid:
            validation = validate_geometry(item, cfg)
            if not validation.is_valid:
                candidate = sanitize_geometry(item, cfg)
                if candidate is None:
                    skipped += 1
                    reason = "; ".join(validation.errors[:2])
                    errors.append(f"Feature {idx} skipped: {reason}")
                    continue
                warnings.append(f"Feature {idx} sanitized before union")
        try:
            geom = to_shape(candidate)
            if not geom.is_valid:
                geom = polygonal_part(make_valid(geom))
        except _GEOMETRY_ERRORS as exc:
            geom = None
            errors.append(f"Feature {idx} skipped: {exc}")
        if geom is None:
            skipped += 1
            continue
        shapes.append(geom)
        ring_sizes.extend(_ring_sizes(candidate.get("geometry", candidate)))

    input_complexity = _complexity_from_ring_sizes(ring_sizes, cfg)
    if skipped:
        fallback = True
        logger.warning("union_all skipped %d of %d features", skipped, len(items))

    merged: Optional[BaseGeometry] = None
    if shapes:
        try:
            merged = unary_union(shapes)
        except GEOSException as exc:
            logger.warning("unary_union failed (%s); falling back to pairwise union", exc)
            fallback = True
            errors.append(f"unary_union failed: {exc}")
            merged = shapes[0]
            for idx, geom in enumerate(shapes[1:], start=1):
                try:
                    merged = merged.union(geom)
                except GEOSException as pair_exc:
                    errors.append(f"Union with feature {idx} failed: {pair_exc}")
        merged = polygonal_part(merged)

    result = None
    output_complexity = None
    if merged is not None:
        result = to_feature(merged, {"kind": "revealed_union", "source_count": len(shapes)})
        output_complexity = get_geometry_complexity(result, cfg)
    elif shapes:
        errors.append("Union produced an empty geometry")

    metrics = GeometryOperationMetrics(
        operation_type=GeometryOperationType.UNION,
        execution_time_ms=_elapsed_ms(start),
        input_complexity=input_complexity,
        output_complexity=output_complexity,
        had_errors=bool(errors),
        fallback_used=fallback,
    )
    record_geometry_operation(
        "union", status="success" if result is not None or not items else "failed",
        fallback=fallback,
    )
    return GeometryOperationResult(
        result=result, errors=errors, warnings=warnings, metrics=metrics,
    )


# =============================================================================
# Difference
# =============================================================================


def difference(
    minuend: Any,
    subtrahend: Any,
    config: Optional[FogOfWarConfig] = None,
) -> GeometryOperationResult:
    """Subtract ``subtrahend`` from ``minuend``.

    On any failure (invalid input, missing subtrahend, shapely error,
    invalid output) the result is a deep copy of ``minuend`` with
    ``fallback_used`` and ``had_errors`` set. When the subtrahend covers
    the minuend the result is an empty MultiPolygon feature.

    Returns:
        GeometryOperationResult; never None-valued for a valid minuend.
    """
    cfg = config or get_config()
    start = time.perf_counter()
    errors: List[str] = []
    input_complexity = get_geometry_complexity(minuend, cfg)

    def _fallback() -> GeometryOperationResult:
        logger.warning("difference fell back to minuend: %s", "; ".join(errors))
        record_geometry_operation("difference", status="failed", fallback=True)
        return GeometryOperationResult(
            result=copy.deepcopy(minuend),
            errors=errors,
            metrics=GeometryOperationMetrics(
                operation_type=GeometryOperationType.DIFFERENCE,
                execution_time_ms=_elapsed_ms(start),
                input_complexity=input_complexity,
                output_complexity=input_complexity,
                had_errors=True,
                fallback_used=True,
            ),
        )

    minuend_check = validate_geometry(minuend, cfg)
    if not minuend_check.is_valid:
        errors.extend(f"Invalid minuend: {e}" for e in minuend_check.errors)
        return _fallback()
    if subtrahend is None:
        errors.append("Subtrahend is missing")
        return _fallback()
    subtrahend_check = validate_geometry(subtrahend, cfg)
    if not subtrahend_check.is_valid:
        errors.extend(f"Invalid subtrahend: {e}" for e in subtrahend_check.errors)
        return _fallback()

    try:
        base = to_shape(minuend)
        if not base.is_valid:
            base = make_valid(base)
        cut = to_shape(subtrahend)
        if not cut.is_valid:
            cut = make_valid(cut)
        output = base.difference(cut)
    except _GEOMETRY_ERRORS as exc:
        errors.append(f"Difference computation failed: {exc}")
        return _fallback()

    properties = _properties_of(minuend)
    polygonal = polygonal_part(output)
    if polygonal is None:
        result = empty_feature(properties)
    else:
        result = to_feature(polygonal, properties)
        output_check = validate_geometry(result, cfg)
        if not output_check.is_valid:
            errors.extend(f"Invalid difference output: {e}" for e in output_check.errors)
            return _fallback()

    record_geometry_operation("difference")
    return GeometryOperationResult(
        result=result,
        metrics=GeometryOperationMetrics(
            operation_type=GeometryOperationType.DIFFERENCE,
            execution_time_ms=_elapsed_ms(start),
            input_complexity=input_complexity,
            output_complexity=get_geometry_complexity(result, cfg),
        ),
    )


__all__ = [
    "EARTH_RADIUS_M",
    "WORLD_BOUNDS",
    "validate_geometry",
    "get_geometry_complexity",
    "sanitize_geometry",
    "buffer_point",
    "union_all",
    "difference",
    "polygonal_part",
    "to_shape",
    "to_feature",
    "empty_feature",
    "is_empty_feature",
    "feature_bbox",
    "create_viewport_polygon",
    "create_world_polygon",
]
