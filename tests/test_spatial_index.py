"""Tests for the SpatialIndex."""

import logging

import pytest

from cartographer.fog_of_war.config import FogOfWarConfig
from cartographer.fog_of_war.geometry_operations import feature_bbox
from cartographer.fog_of_war.models import IndexState, MemoryRecommendation
from cartographer.fog_of_war.provenance import ProvenanceTracker
from cartographer.fog_of_war.spatial_index import SpatialIndex, stable_feature_id

from tests.conftest import SF_BOUNDS, SF_POINT, square_feature


def _brute_force_ids(features, rect):
    """Ids of features whose bbox intersects ``rect`` (boundary inclusive)."""
    min_lon, min_lat, max_lon, max_lat = rect
    hits = set()
    for feature in features:
        f_min_lon, f_min_lat, f_max_lon, f_max_lat = feature_bbox(feature)
        if (
            f_min_lon <= max_lon and f_max_lon >= min_lon
            and f_min_lat <= max_lat and f_max_lat >= min_lat
        ):
            hits.add(feature["properties"]["id"])
    return hits


class TestSpatialIndexMutation:
    """Insert, remove, clear and destroy."""

    def test_add_feature(self, index, sf_area):
        assert index.state == IndexState.EMPTY

        feature_id = index.add_feature(sf_area)

        assert feature_id is not None
        assert index.state == IndexState.POPULATED
        assert len(index) == 1
        assert index.get_feature(feature_id)["properties"]["id"] == feature_id

    def test_feature_id_is_stable_for_identical_geometry(self, config, sf_area):
        first = SpatialIndex(config=config).add_feature(sf_area)
        second = SpatialIndex(config=config).add_feature(sf_area)

        assert first == second == stable_feature_id(sf_area["geometry"])

    def test_explicit_id_is_kept(self, index):
        assert index.add_feature(square_feature(0, 0, id="park")) == "park"

    def test_invalid_feature_dropped(self, index):
        result = index.add_feature({"type": "Point", "coordinates": [0, 0]})

        assert result is None
        assert index.dropped_features == 1
        assert index.is_empty

    def test_dropped_feature_logs_validation_details(self, index, caplog):
        with caplog.at_level(logging.WARNING, logger="cartographer.fog_of_war.spatial_index"):
            index.add_feature({"type": "Polygon", "coordinates": [[[0, 0]]]})

        assert "Feature is not a usable polygon" in caplog.text

    def test_loosely_typed_feature_sanitized(self, index):
        unclosed = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]],
        }

        assert index.add_feature(unclosed) is not None

    def test_add_features_counts_inserted(self, index, grid_features):
        broken = {"type": "Polygon", "coordinates": [[[0, 0]]]}

        assert index.add_features(grid_features[:10] + [broken]) == 10
        assert index.dropped_features == 1

    def test_remove_and_clear(self, index, grid_features):
        index.add_features(grid_features[:3])

        assert index.remove_feature("grid-0-0") is True
        assert index.remove_feature("grid-0-0") is False
        assert len(index) == 2

        index.clear()
        assert index.state == IndexState.EMPTY

    def test_destroy_rejects_mutation(self, index, sf_area):
        index.destroy()

        with pytest.raises(RuntimeError):
            index.add_feature(sf_area)

    def test_stored_feature_is_not_aliased(self, index, sf_area):
        feature_id = index.add_feature(sf_area)
        sf_area["properties"]["kind"] = "changed"

        copy_out = index.get_feature(feature_id)
        copy_out["properties"]["kind"] = "changed again"

        assert index.get_feature(feature_id)["properties"]["kind"] == "revealed_area"


class TestSpatialIndexContentHash:
    """Content version advances on every mutation only."""

    def test_hash_changes_on_mutation(self, index, sf_area):
        empty_hash = index.content_hash

        feature_id = index.add_feature(sf_area)
        added_hash = index.content_hash
        index.query_viewport(SF_BOUNDS)
        queried_hash = index.content_hash
        index.remove_feature(feature_id)

        assert added_hash != empty_hash
        assert queried_hash == added_hash
        assert index.content_hash != added_hash

    def test_mutations_are_recorded_in_provenance(self, config, sf_area):
        tracker = ProvenanceTracker()
        index = SpatialIndex(config=config, provenance=tracker)

        index.add_feature(sf_area)
        index.clear()

        valid, chain = tracker.verify_chain(index.index_id)
        assert valid
        assert [e["action"] for e in chain] == ["insert", "clear"]

    def test_shared_tracker_does_not_change_other_index_hash(self, config, sf_area):
        tracker = ProvenanceTracker()
        first = SpatialIndex(config=config, provenance=tracker)
        second = SpatialIndex(config=config, provenance=tracker)
        before = first.content_hash

        second.add_feature(sf_area)

        assert first.content_hash == before


class TestSpatialIndexQueries:
    """Viewport and radius queries."""

    def test_viewport_query_returns_revealed_area(self, index, sf_area):
        feature_id = index.add_feature(sf_area)

        result = index.query_viewport(SF_BOUNDS)

        assert result.errors == []
        assert [f["properties"]["id"] for f in result.features] == [feature_id]
        assert result.total_candidates == 1
        assert not result.truncated

    def test_query_touches_exactly_five_of_thousand(self, index, grid_features):
        index.add_features(grid_features)

        result = index.query_viewport(
            [-123.0005, 37.0002, -122.9595, 37.0008], buffer_distance=0.0,
        )

        assert len(index) == 1000
        assert result.returned_features == 5
        assert result.query_time_ms < 100.0
        assert {f["properties"]["id"] for f in result.features} == {
            f"grid-0-{col}" for col in range(5)
        }

    @pytest.mark.parametrize("bounds", [
        [-122.9, 37.05, -122.75, 37.15],
        [-123.0, 37.0, -122.99, 37.01],
        [-122.655, 37.2, -122.6, 37.3],
        [-124.0, 36.0, -123.5, 36.5],
    ])
    def test_matches_brute_force(self, index, grid_features, bounds):
        index.add_features(grid_features)
        buffer = 0.001
        rect = (bounds[0] - buffer, bounds[1] - buffer, bounds[2] + buffer, bounds[3] + buffer)

        result = index.query_viewport(bounds, buffer_distance=buffer)

        assert {f["properties"]["id"] for f in result.features} == _brute_force_ids(
            grid_features, rect,
        )

    def test_truncation_keeps_largest(self, index):
        index.add_features([
            square_feature(0.0, 0.0, 0.1, id="big"),
            square_feature(0.2, 0.0, 0.05, id="medium"),
            square_feature(0.4, 0.0, 0.01, id="small"),
        ])

        result = index.query_viewport([-0.1, -0.1, 0.5, 0.2], max_results=2)

        assert result.truncated
        assert result.total_candidates == 3
        assert [f["properties"]["id"] for f in result.features] == ["big", "medium"]

    def test_invalid_bounds_return_errors(self, index, sf_area):
        index.add_feature(sf_area)

        result = index.query_viewport([-122.5, 37.8, -122.5, 37.7])

        assert result.features == []
        assert result.errors

    def test_query_results_are_copies(self, index, sf_area):
        index.add_feature(sf_area)

        first = index.query_viewport(SF_BOUNDS).features[0]
        first["geometry"]["coordinates"] = []

        assert index.query_viewport(SF_BOUNDS).features[0]["geometry"]["coordinates"]

    def test_radius_query(self, index, sf_area):
        feature_id = index.add_feature(sf_area)

        near = index.query_radius(SF_POINT, 10)
        far = index.query_radius((-122.3, 37.7), 10)

        assert [f["properties"]["id"] for f in near] == [feature_id]
        assert far == []

    def test_radius_query_rejects_bad_input(self, index, sf_area):
        index.add_feature(sf_area)

        assert index.query_radius(SF_POINT, -1) == []


class TestLevelOfDetail:
    """Zoom-dependent culling and simplification."""

    def test_full_detail_at_high_zoom(self, index, grid_features):
        index.add_features(grid_features)

        result = index.query_viewport([-123.0, 37.0, -122.9, 37.1], zoom_level=12)

        assert result.level_of_detail_applied
        assert result.culled_features == 0

    def test_small_features_culled_at_low_zoom(self, index, grid_features):
        index.add_features(grid_features)

        result = index.query_viewport([-123.0, 37.0, -122.9, 37.1], zoom_level=10)

        assert result.culled_features > 0
        assert result.returned_features + result.culled_features == result.total_candidates

    def test_feature_near_center_kept_at_low_zoom(self, index):
        index.add_feature(square_feature(-0.0005, -0.0005, 0.001, id="center"))

        result = index.query_viewport([-1.0, -1.0, 1.0, 1.0], zoom_level=6)

        assert [f["properties"]["id"] for f in result.features] == ["center"]

    def test_large_features_simplified(self, index):
        index.add_feature(square_feature(0.5, 0.5, 0.4, id="large"))

        result = index.query_viewport([-1.0, -1.0, 1.0, 1.0], zoom_level=6)

        assert result.simplified_features == 1
        assert result.features[0]["properties"]["lod_tolerance"] == 0.005

    def test_lod_disabled(self, index, grid_features):
        index.add_features(grid_features)

        result = index.query_viewport(
            [-123.0, 37.0, -122.9, 37.1], zoom_level=6, use_level_of_detail=False,
        )

        assert not result.level_of_detail_applied
        assert result.culled_features == 0


class TestMemoryManagement:
    """Memory estimation and optimization."""

    def test_recommendation_bands(self, provenance, grid_features):
        config = FogOfWarConfig(memory_threshold_bytes=10_000, memory_warning_ratio=0.5)
        index = SpatialIndex(config=config, provenance=provenance)

        assert index.get_memory_stats().recommendation == MemoryRecommendation.OPTIMAL
        index.add_features(grid_features[:5])
        assert index.get_memory_stats().recommendation == MemoryRecommendation.CONSIDER_CLEANUP
        index.add_features(grid_features[5:20])
        stats = index.get_memory_stats()
        assert stats.recommendation == MemoryRecommendation.CLEANUP_REQUIRED
        assert stats.feature_count == 20
        assert stats.total_vertices == 100

    def test_optimize_drops_least_recently_queried(self, index, grid_features):
        index.add_features(grid_features[:10])
        # queries the first five squares on row 0
        index.query_viewport([-123.0005, 37.0002, -122.9595, 37.0008], buffer_distance=0.0)

        result = index.optimize_memory(aggressive=True)

        assert set(result.removed_features) == {f"grid-0-{col}" for col in range(5, 10)}
        assert len(index) == 5
        assert result.bytes_after < result.bytes_before

    def test_optimize_keep_ratios(self, config, provenance, grid_features):
        gentle = SpatialIndex(config=config, provenance=provenance)
        gentle.add_features(grid_features[:10])
        aggressive = SpatialIndex(config=config, provenance=provenance)
        aggressive.add_features(grid_features[:10])

        assert len(gentle.optimize_memory().removed_features) == 3
        assert len(aggressive.optimize_memory(aggressive=True).removed_features) == 5
