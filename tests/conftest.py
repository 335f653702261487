# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures."""

from typing import Any, Dict, List

import pytest

from cartographer.fog_of_war.config import FogOfWarConfig, reset_config
from cartographer.fog_of_war.geometry_operations import buffer_point
from cartographer.fog_of_war.provenance import ProvenanceTracker
from cartographer.fog_of_war.repository import InMemoryRevealedAreaRepository
from cartographer.fog_of_war.spatial_index import SpatialIndex

# San Francisco, City Hall area
SF_POINT = (-122.4194, 37.7749)
SF_BOUNDS = [-122.5, 37.7, -122.3, 37.8]


def square_feature(
    min_lon: float, min_lat: float, size: float = 0.001, **properties: Any,
) -> Dict[str, Any]:
    """Axis-aligned square revealed area, wound counterclockwise."""
    ring = [
        [min_lon, min_lat],
        [min_lon + size, min_lat],
        [min_lon + size, min_lat + size],
        [min_lon, min_lat + size],
        [min_lon, min_lat],
    ]
    return {
        "type": "Feature",
        "properties": dict(properties),
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_default_config():
    """Keep the module-level default config from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config() -> FogOfWarConfig:
    return FogOfWarConfig()


@pytest.fixture
def provenance() -> ProvenanceTracker:
    return ProvenanceTracker()


@pytest.fixture
def index(config, provenance) -> SpatialIndex:
    return SpatialIndex(config=config, provenance=provenance)


@pytest.fixture
def sf_area(config) -> Dict[str, Any]:
    """50 m revealed disc around the San Francisco test point."""
    return buffer_point(SF_POINT, 50, config=config).result


@pytest.fixture
def repository() -> InMemoryRevealedAreaRepository:
    return InMemoryRevealedAreaRepository()


@pytest.fixture
def grid_features() -> List[Dict[str, Any]]:
    """1000 small squares on a 40 x 25 grid spaced 0.01 degrees apart."""
    features = []
    for row in range(25):
        for col in range(40):
            features.append(
                square_feature(
                    -123.0 + col * 0.01, 37.0 + row * 0.01, 0.001,
                    id=f"grid-{row}-{col}",
                )
            )
    return features


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
