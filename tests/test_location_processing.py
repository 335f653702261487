"""Tests for the LocationProcessor reveal flow."""

import pytest
from shapely.geometry import shape

from cartographer.fog_of_war.config import FogOfWarConfig
from cartographer.fog_of_war.geometry_operations import buffer_point
from cartographer.fog_of_war.location_processing import LocationProcessor
from cartographer.fog_of_war.models import LocationFix
from cartographer.fog_of_war.spatial_index import SpatialIndex

from tests.conftest import SF_POINT

SF_FIX = LocationFix(latitude=SF_POINT[1], longitude=SF_POINT[0])


@pytest.fixture
def processor(index, repository, config):
    return LocationProcessor(index, repository=repository, config=config)


class TestRevealLocation:
    """Buffer, index and persist."""

    @pytest.mark.asyncio
    async def test_reveal_inserts_and_persists(self, processor, index, repository):
        result = await processor.reveal_location(SF_FIX)

        assert result.accepted
        assert result.reveal_id.startswith("RVL-")
        assert index.get_feature(result.feature_id) is not None
        assert result.persisted
        assert result.repository_id.startswith("RA-")
        assert len(repository) == 1
        assert result.feature["properties"]["radius_m"] == 50.0

    @pytest.mark.asyncio
    async def test_custom_radius(self, processor):
        result = await processor.reveal_location(SF_FIX, radius_m=200)

        assert result.feature["properties"]["radius_m"] == 200.0

    @pytest.mark.asyncio
    async def test_invalid_radius_rejected(self, processor, index):
        result = await processor.reveal_location(SF_FIX, radius_m=0)

        assert not result.accepted
        assert result.errors
        assert index.is_empty

    @pytest.mark.asyncio
    async def test_repository_failure_does_not_undo_index_update(self, processor, index, repository):
        repository.fail_writes = 1

        result = await processor.reveal_location(SF_FIX)

        assert result.accepted
        assert not result.persisted
        assert result.errors
        assert len(index) == 1
        assert processor.get_statistics()["persist_failures"] == 1

    @pytest.mark.asyncio
    async def test_index_only_processor(self, index, config):
        processor = LocationProcessor(index, config=config)

        result = await processor.reveal_location(SF_FIX)

        assert result.accepted
        assert not result.persisted

    @pytest.mark.asyncio
    async def test_reveal_recorded_in_provenance(self, processor, provenance):
        result = await processor.reveal_location(SF_FIX)

        chain = provenance.get_chain(result.reveal_id)
        assert [e["entity_type"] for e in chain] == ["location_reveal"]


class TestDuplicateSuppression:
    """Fixes within tolerance of the last accepted fix."""

    @pytest.mark.asyncio
    async def test_repeat_fix_suppressed(self, processor, index, repository):
        await processor.reveal_location(SF_FIX)

        result = await processor.reveal_location(
            LocationFix(latitude=SF_POINT[1] + 0.000005, longitude=SF_POINT[0]),
        )

        assert result.duplicate
        assert not result.accepted
        assert len(index) == 1
        assert len(repository) == 1

    def test_first_fix_is_never_duplicate(self, processor):
        assert not processor.is_duplicate_location(SF_FIX)

    @pytest.mark.asyncio
    async def test_reset_forgets_last_fix(self, processor):
        await processor.reveal_location(SF_FIX)
        processor.reset()

        assert not processor.is_duplicate_location(SF_FIX)


class TestAdjacentMerge:
    """Overlapping reveals are merged in the index."""

    @pytest.mark.asyncio
    async def test_overlapping_reveals_merge(self, processor, index, config):
        first = await processor.reveal_location(SF_FIX)
        second = await processor.reveal_location(
            LocationFix(latitude=SF_POINT[1] + 0.0002, longitude=SF_POINT[0]),
        )

        single_disc = shape(buffer_point(SF_POINT, 50, config=config).result["geometry"])
        merged = shape(second.feature["geometry"])

        assert second.merged_ids == [first.feature_id]
        assert len(index) == 1
        assert index.get_feature(first.feature_id) is None
        assert merged.area > single_disc.area
        assert merged.geom_type == "Polygon"

    @pytest.mark.asyncio
    async def test_distant_reveals_stay_separate(self, processor, index):
        await processor.reveal_location(SF_FIX)
        result = await processor.reveal_location(LocationFix(latitude=37.8, longitude=-122.3))

        assert result.merged_ids == []
        assert len(index) == 2

    @pytest.mark.asyncio
    async def test_merge_disabled(self, provenance, repository):
        config = FogOfWarConfig(merge_adjacent_areas=False)
        index = SpatialIndex(config=config, provenance=provenance)
        processor = LocationProcessor(index, repository=repository, config=config)

        await processor.reveal_location(SF_FIX)
        await processor.reveal_location(
            LocationFix(latitude=SF_POINT[1] + 0.0002, longitude=SF_POINT[0]),
        )

        assert len(index) == 2

    @pytest.mark.asyncio
    async def test_repository_receives_raw_disc(self, processor, repository):
        await processor.reveal_location(SF_FIX)
        await processor.reveal_location(
            LocationFix(latitude=SF_POINT[1] + 0.0002, longitude=SF_POINT[0]),
        )

        assert {r["properties"]["kind"] for r in repository.records} == {"revealed_area"}
        assert len(repository) == 2
