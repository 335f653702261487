"""Tests for the fog-of-war geometry primitives."""

import copy
import json
import math

import pytest
from shapely.geometry import shape

from cartographer.exceptions import InvalidBoundsError
from cartographer.fog_of_war.config import FogOfWarConfig
from cartographer.fog_of_war.geometry_operations import (
    buffer_point,
    create_viewport_polygon,
    create_world_polygon,
    difference,
    feature_bbox,
    get_geometry_complexity,
    is_empty_feature,
    sanitize_geometry,
    union_all,
    validate_geometry,
)
from cartographer.fog_of_war.models import ComplexityLevel, ViewportBounds

from tests.conftest import SF_BOUNDS, SF_POINT, square_feature


# ==============================================================================
# Bounds
# ==============================================================================

class TestViewportBounds:
    """Bounds validation rejects instead of clamping."""

    @pytest.mark.parametrize("bounds", [
        [-200, -100, 200, 100],
        [-122.5, 37.8, -122.5, 37.7],
        [-122.3, 37.7, -122.5, 37.8],
        [float("nan"), 37.7, -122.3, 37.8],
        [-122.5, 37.7, float("inf"), 37.8],
        [-122.5, 37.7, -122.3],
        "not bounds",
        None,
    ])
    def test_invalid_bounds_rejected(self, bounds):
        with pytest.raises(InvalidBoundsError):
            ViewportBounds.parse(bounds)

    def test_parse_sequence_and_mapping(self):
        from_list = ViewportBounds.parse(SF_BOUNDS)
        from_dict = ViewportBounds.parse(
            {"min_lon": -122.5, "min_lat": 37.7, "max_lon": -122.3, "max_lat": 37.8}
        )

        assert from_list == from_dict
        assert from_list.as_list() == SF_BOUNDS
        assert ViewportBounds.parse(from_list) is from_list

    def test_viewport_polygon_is_closed_rectangle(self):
        feature = create_viewport_polygon(SF_BOUNDS)
        ring = feature["geometry"]["coordinates"][0]

        assert len(ring) == 5
        assert ring[0] == ring[-1]
        assert shape(feature["geometry"]).exterior.is_ccw
        assert feature_bbox(feature) == (-122.5, 37.7, -122.3, 37.8)

    def test_viewport_polygon_rejects_invalid_bounds(self):
        with pytest.raises(InvalidBoundsError):
            create_viewport_polygon([-200, -100, 200, 100])

    def test_world_polygon(self):
        assert feature_bbox(create_world_polygon()) == (-180.0, -90.0, 180.0, 90.0)


# ==============================================================================
# Validation and sanitization
# ==============================================================================

class TestValidateGeometry:
    """Structural validation never raises."""

    def test_valid_feature(self):
        result = validate_geometry(square_feature(0.0, 0.0, 1.0))

        assert result.is_valid
        assert result.errors == []
        assert result.complexity.total_vertices == 5
        assert result.complexity.complexity_level == ComplexityLevel.LOW

    @pytest.mark.parametrize("geometry,fragment", [
        ({"type": "Point", "coordinates": [0, 0]}, "Unsupported geometry type"),
        ({"type": "Polygon", "coordinates": []}, "Empty coordinates"),
        ({"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}, "not closed"),
        ({"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [0, 0]]]}, "at least 4"),
        ({"type": "Polygon", "coordinates": [[[0, 0], [200, 0], [1, 1], [0, 0]]]}, "out of range"),
        ({"type": "Polygon", "coordinates": [[[0, 0], [math.nan, 0], [1, 1], [0, 0]]]}, "finite"),
        ("polygon", "GeoJSON"),
        ({"type": "Feature", "properties": {}}, "no geometry"),
    ])
    def test_invalid_inputs(self, geometry, fragment):
        result = validate_geometry(geometry)

        assert not result.is_valid
        assert any(fragment in e for e in result.errors)

    def test_high_complexity_warning(self):
        config = FogOfWarConfig(complexity_high_vertices=10)
        disc = buffer_point(SF_POINT, 50, config=config).result

        result = validate_geometry(disc, config)

        assert result.is_valid
        assert result.complexity.complexity_level == ComplexityLevel.HIGH
        assert any("consider simplification" in w for w in result.warnings)


class TestSanitizeGeometry:
    """Coercion of loosely-typed polygon input."""

    def test_closes_ring_and_drops_duplicates(self):
        raw = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 0], [1, 0], [1, 1], [0, 1]]],
        }

        feature = sanitize_geometry(raw)

        assert feature["geometry"]["coordinates"] == [
            [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [0.0, 0.0]]
        ]

    def test_rounds_coordinates(self):
        feature = sanitize_geometry([[0.12345678, 0], [1, 0], [1, 1], [0, 1]])

        assert feature["geometry"]["coordinates"][0][0] == [0.123457, 0.0]

    def test_accepts_json_string(self):
        raw = json.dumps(square_feature(0.0, 0.0, 1.0, name="park"))

        feature = sanitize_geometry(raw)

        assert feature["properties"] == {"name": "park"}
        assert feature["geometry"]["type"] == "Polygon"

    def test_repairs_bowtie(self):
        bowtie = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]]],
        }

        feature = sanitize_geometry(bowtie)

        assert feature is not None
        assert shape(feature["geometry"]).is_valid
        assert feature["geometry"]["type"] == "MultiPolygon"

    @pytest.mark.parametrize("value", [
        None,
        "not json",
        {"type": "Point", "coordinates": [0, 0]},
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]},
        [[0, 0], [1, 0], [float("inf"), 1]],
    ])
    def test_unusable_input_returns_none(self, value):
        assert sanitize_geometry(value) is None

    def test_does_not_mutate_input(self):
        raw = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}
        before = copy.deepcopy(raw)

        sanitize_geometry(raw)

        assert raw == before


# ==============================================================================
# Buffer
# ==============================================================================

class TestBufferPoint:
    """Geodesic circles around a point."""

    def test_fifty_meter_disc(self, config):
        result = buffer_point(SF_POINT, 50, config=config)
        feature = result.result
        ring = feature["geometry"]["coordinates"][0]

        assert result.errors == []
        assert feature["geometry"]["type"] == "Polygon"
        assert len(ring) == config.buffer_steps + 1
        assert ring[0] == ring[-1]
        assert feature["properties"]["kind"] == "revealed_area"
        assert feature["properties"]["radius_m"] == 50.0
        assert shape(feature["geometry"]).exterior.is_ccw
        for lon, lat in ring:
            # ~0.00045 deg of latitude, ~0.00057 deg of longitude at 37.77N
            assert abs(lat - SF_POINT[1]) < 0.0005
            assert abs(lon - SF_POINT[0]) < 0.0006

    def test_units(self, config):
        meters = buffer_point(SF_POINT, 1000, config=config).result
        kilometers = buffer_point(SF_POINT, 1, unit="kilometers", config=config).result

        assert kilometers["properties"]["radius_m"] == 1000.0
        assert shape(kilometers["geometry"]).area == pytest.approx(
            shape(meters["geometry"]).area
        )

    @pytest.mark.parametrize("point,distance,unit", [
        (SF_POINT, 0, "meters"),
        (SF_POINT, -5, "meters"),
        (SF_POINT, "far", "meters"),
        (SF_POINT, 50, "parsecs"),
        ((200.0, 37.0), 50, "meters"),
        (None, 50, "meters"),
        ({"type": "Polygon", "coordinates": []}, 50, "meters"),
    ])
    def test_rejected_input(self, point, distance, unit):
        result = buffer_point(point, distance, unit=unit)

        assert result.result is None
        assert result.errors
        assert result.metrics.had_errors

    def test_antimeridian_disc_is_clipped(self):
        feature = buffer_point((179.9999, 0.0), 1000).result

        min_lon, _, max_lon, _ = feature_bbox(feature)
        assert max_lon <= 180.0
        assert min_lon >= -180.0

    @pytest.mark.parametrize("latitude", [90.0, -90.0])
    def test_polar_center_gives_cap(self, config, latitude):
        result = buffer_point((10.0, latitude), 50, config=config)
        feature = result.result
        cap = math.degrees(50 / 6_371_008.8)

        assert result.errors == []
        assert feature["properties"]["center"] == [10.0, latitude]
        min_lon, min_lat, max_lon, max_lat = feature_bbox(feature)
        assert (min_lon, max_lon) == (-180.0, 180.0)
        if latitude > 0:
            assert max_lat == 90.0
            assert min_lat == pytest.approx(90.0 - cap)
        else:
            assert min_lat == -90.0
            assert max_lat == pytest.approx(-90.0 + cap)
        assert shape(feature["geometry"]).exterior.is_ccw

    def test_circle_over_pole_gives_cap(self, config):
        feature = buffer_point((0.0, 89.99999), 50, config=config).result

        min_lon, _, max_lon, max_lat = feature_bbox(feature)
        assert (min_lon, max_lon, max_lat) == (-180.0, 180.0, 90.0)


# ==============================================================================
# Union
# ==============================================================================

class TestUnionAll:
    """Union of revealed areas."""

    def test_overlapping_squares_merge(self):
        result = union_all([square_feature(0, 0, 1.0), square_feature(0.5, 0, 1.0)])

        assert result.result["geometry"]["type"] == "Polygon"
        assert shape(result.result["geometry"]).area == pytest.approx(1.5)
        assert result.result["properties"]["source_count"] == 2

    def test_disjoint_squares_give_multipolygon(self):
        result = union_all([square_feature(0, 0, 1.0), square_feature(5, 5, 1.0)])

        assert result.result["geometry"]["type"] == "MultiPolygon"

    def test_invalid_entries_are_skipped(self):
        broken = {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}

        result = union_all([square_feature(0, 0, 1.0), broken])

        assert result.result is not None
        assert result.metrics.fallback_used
        assert any("Feature 1 skipped" in e for e in result.errors)

    def test_empty_input(self):
        result = union_all([])

        assert result.result is None
        assert result.errors == []


# ==============================================================================
# Difference
# ==============================================================================

class TestDifference:
    """Viewport minus revealed areas."""

    def test_viewport_minus_disc_has_one_hole(self, sf_area):
        viewport = create_viewport_polygon(SF_BOUNDS)

        result = difference(viewport, sf_area)
        fog = result.result

        assert not result.metrics.fallback_used
        assert fog["geometry"]["type"] == "Polygon"
        assert len(fog["geometry"]["coordinates"]) == 2
        assert shape(fog["geometry"]).area < shape(viewport["geometry"]).area

    def test_difference_is_deterministic(self, sf_area):
        viewport = create_viewport_polygon(SF_BOUNDS)

        assert difference(viewport, sf_area).result == difference(viewport, sf_area).result

    def test_inputs_are_not_mutated(self, sf_area):
        viewport = create_viewport_polygon(SF_BOUNDS)
        before = (copy.deepcopy(viewport), copy.deepcopy(sf_area))

        result = difference(viewport, sf_area)
        result.result["properties"]["touched"] = True

        assert (viewport, sf_area) == before

    @pytest.mark.parametrize("subtrahend", [
        None,
        {},
        "garbage",
        {"type": "Point", "coordinates": [-122.4, 37.75]},
        {"type": "Polygon", "coordinates": [[[-122.4, 37.75], [-122.39, 37.75], [-122.39, 37.76]]]},
        {"type": "Polygon", "coordinates": [[[-122.4, math.nan], [-122.39, 37.75], [-122.39, 37.76], [-122.4, math.nan]]]},
    ])
    def test_malformed_subtrahend_returns_minuend(self, subtrahend):
        viewport = create_viewport_polygon(SF_BOUNDS)

        result = difference(viewport, subtrahend)

        assert result.result == viewport
        assert result.result is not viewport
        assert result.metrics.fallback_used
        assert result.metrics.had_errors

    def test_fully_revealed_viewport(self, sf_area):
        tiny = create_viewport_polygon([-122.4195, 37.7748, -122.4193, 37.7750])

        result = difference(tiny, sf_area)

        assert is_empty_feature(result.result)
        assert not result.metrics.fallback_used

    def test_complexity_reported(self, sf_area):
        complexity = get_geometry_complexity(sf_area)

        assert complexity.total_vertices == 65
        assert complexity.ring_count == 1
