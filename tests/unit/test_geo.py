"""Unit tests for distance helpers."""

from __future__ import annotations

import math

import pytest

from task_market_service.services.geo import haversine_km, is_valid_coordinate


@pytest.mark.unit
def test_same_point_is_zero() -> None:
    assert haversine_km(51.5, -0.12, 51.5, -0.12) == 0


@pytest.mark.unit
def test_london_to_paris() -> None:
    """London to Paris is roughly 344 km."""
    distance = haversine_km(51.5074, -0.1278, 48.8566, 2.3522)
    assert 340 < distance < 350


@pytest.mark.unit
def test_distance_is_symmetric() -> None:
    assert math.isclose(haversine_km(10, 20, -30, 40), haversine_km(-30, 40, 10, 20))


@pytest.mark.unit
@pytest.mark.parametrize(
    ("latitude", "longitude", "valid"),
    [
        (0, 0, True),
        (90, 180, True),
        (-90, -180, True),
        (90.1, 0, False),
        (0, -180.5, False),
        ("10", 10, False),
        (True, 10, False),
        (float("nan"), 10, False),
        (None, None, False),
    ],
)
def test_is_valid_coordinate(latitude: object, longitude: object, valid: bool) -> None:
    assert is_valid_coordinate(latitude, longitude) is valid
