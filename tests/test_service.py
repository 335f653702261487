"""Tests for the FogOfWarService facade."""

import logging

import pytest

from cartographer.fog_of_war import FogOfWarService
from cartographer.fog_of_war.config import FogOfWarConfig
from cartographer.fog_of_war.models import FogTier, IndexState
from cartographer.fog_of_war.repository import InMemoryRevealedAreaRepository

from tests.conftest import SF_BOUNDS, SF_POINT

DISTANT_POINTS = [(37.70, -122.45), (37.72, -122.40), (37.75, -122.35), (37.79, -122.32)]


@pytest.fixture
def service(repository, config):
    return FogOfWarService(config=config, repository=repository)


class TestServiceLifecycle:
    """Startup, clear and destroy."""

    @pytest.mark.asyncio
    async def test_startup_bulk_loads_once(self, config, sf_area):
        service = FogOfWarService(
            config=config, repository=InMemoryRevealedAreaRepository([sf_area]),
        )

        assert await service.startup() == 1
        assert await service.startup() == 0
        assert len(service.index) == 1
        assert service.get_statistics()["started"]

    @pytest.mark.asyncio
    async def test_startup_survives_repository_failure(self, service, repository):
        repository.fail_reads = 1

        assert await service.startup() == 0
        assert service.index.is_empty

    @pytest.mark.asyncio
    async def test_clear(self, service):
        await service.reveal_location(SF_POINT[1], SF_POINT[0])
        await service.calculate_fog(SF_BOUNDS)

        service.clear()

        assert service.index.state == IndexState.EMPTY
        assert len(service.cache) == 0
        assert service.processor.last_fix is None

    @pytest.mark.asyncio
    async def test_destroyed_service_rejects_calls(self, service):
        service.destroy()
        service.destroy()

        with pytest.raises(RuntimeError):
            await service.calculate_fog(SF_BOUNDS)
        with pytest.raises(RuntimeError):
            await service.reveal_location(SF_POINT[1], SF_POINT[0])

    @pytest.mark.parametrize("log_level,expected", [
        ("DEBUG", logging.DEBUG),
        ("warning", logging.WARNING),
    ])
    def test_log_level_applied(self, log_level, expected):
        package_logger = logging.getLogger("cartographer")
        previous = package_logger.level
        try:
            FogOfWarService(config=FogOfWarConfig(log_level=log_level))
            assert package_logger.level == expected
        finally:
            package_logger.setLevel(previous)

    def test_unknown_log_level_leaves_logging_unchanged(self):
        package_logger = logging.getLogger("cartographer")
        previous = package_logger.level

        FogOfWarService(config=FogOfWarConfig(log_level="CHATTY"))

        assert package_logger.level == previous


class TestServiceFlow:
    """Reveal then render."""

    @pytest.mark.asyncio
    async def test_reveal_cuts_hole_in_fog(self, service, repository):
        reveal = await service.reveal_location(SF_POINT[1], SF_POINT[0])
        result = await service.calculate_fog(SF_BOUNDS)

        assert reveal.accepted
        assert len(repository) == 1
        assert result.performance_metrics.operation_type == FogTier.SPATIAL
        assert len(result.fog_geojson["features"][0]["geometry"]["coordinates"]) == 2

    @pytest.mark.asyncio
    async def test_cached_until_next_reveal(self, service):
        await service.reveal_location(SF_POINT[1], SF_POINT[0])

        first = await service.calculate_fog(SF_BOUNDS)
        second = await service.calculate_fog(SF_BOUNDS)
        await service.reveal_location(37.79, -122.32)
        third = await service.calculate_fog(SF_BOUNDS)

        assert not first.from_cache
        assert second.from_cache
        assert not third.from_cache
        assert len(third.fog_geojson["features"][0]["geometry"]["coordinates"]) == 3

    @pytest.mark.asyncio
    async def test_cache_disabled(self, repository):
        service = FogOfWarService(
            config=FogOfWarConfig(cache_enabled=False), repository=repository,
        )

        await service.calculate_fog(SF_BOUNDS)
        result = await service.calculate_fog(SF_BOUNDS)

        assert not result.from_cache

    @pytest.mark.asyncio
    @pytest.mark.parametrize("latitude,longitude", [(91.0, 0.0), (0.0, -181.0)])
    async def test_out_of_range_fix_reported(self, service, latitude, longitude):
        result = await service.reveal_location(latitude, longitude)

        assert not result.accepted
        assert result.errors
        assert service.index.is_empty

    @pytest.mark.asyncio
    async def test_index_only_service(self, config):
        service = FogOfWarService(config=config)

        reveal = await service.reveal_location(SF_POINT[1], SF_POINT[0])
        result = await service.calculate_fog(SF_BOUNDS)

        assert reveal.accepted
        assert not reveal.persisted
        assert result.errors == []


class TestMemoryPressure:
    """Cleanup driven by the index memory estimate."""

    @pytest.mark.asyncio
    async def test_cleanup_when_over_budget(self, repository):
        config = FogOfWarConfig(memory_threshold_bytes=1, auto_optimize_memory=False)
        service = FogOfWarService(config=config, repository=repository)
        for latitude, longitude in DISTANT_POINTS:
            await service.reveal_location(latitude, longitude)

        result = service.check_memory_pressure()

        assert result is not None
        assert result.aggressive
        assert len(result.removed_features) == 2
        assert len(service.index) == 2

    @pytest.mark.asyncio
    async def test_no_cleanup_under_budget(self, service):
        await service.reveal_location(SF_POINT[1], SF_POINT[0])

        assert service.check_memory_pressure() is None
        assert len(service.index) == 1

    @pytest.mark.asyncio
    async def test_auto_optimize_after_reveal(self, repository):
        config = FogOfWarConfig(memory_threshold_bytes=1)
        service = FogOfWarService(config=config, repository=repository)
        for latitude, longitude in DISTANT_POINTS:
            await service.reveal_location(latitude, longitude)

        assert len(service.index) == 1
        assert len(repository) == 4


class TestServiceStatistics:
    """Aggregate statistics."""

    @pytest.mark.asyncio
    async def test_statistics_keys(self, service):
        await service.reveal_location(SF_POINT[1], SF_POINT[0])
        await service.calculate_fog(SF_BOUNDS)

        stats = service.get_statistics()

        assert set(stats) == {
            "prometheus_available", "started", "index", "index_state",
            "dropped_features", "cache", "calculator", "reveals", "repository",
            "provenance_entries",
        }
        assert stats["index"]["feature_count"] == 1
        assert stats["reveals"]["accepted"] == 1
        assert stats["calculator"]["calculations"] == 1
        assert stats["repository"]["state"] == "closed"
        assert stats["provenance_entries"] == 2

    def test_provenance_is_shared(self, service):
        assert service.get_provenance() is service.index.provenance
