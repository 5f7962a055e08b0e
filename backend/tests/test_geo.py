import math

import pytest

from domain.models import Coordinate, LocationReading
from services.geo import derive_search_radius_km, distance_km, offset_coordinate


POINTS = [
    Coordinate(0.0, 0.0),
    Coordinate(40.0, -74.0),
    Coordinate(-33.8688, 151.2093),
    Coordinate(89.9, 179.9),
]


@pytest.mark.parametrize("point", POINTS)
def test_distance_to_self_is_zero(point):
    assert distance_km(point, point) == 0.0


def test_distance_is_symmetric():
    for a in POINTS:
        for b in POINTS:
            assert distance_km(a, b) == pytest.approx(distance_km(b, a))


def test_distance_known_value():
    # New York -> London is roughly 5570 km
    nyc = Coordinate(40.7128, -74.0060)
    london = Coordinate(51.5074, -0.1278)
    assert distance_km(nyc, london) == pytest.approx(5570, rel=0.01)


def test_distance_one_hundredth_degree_at_equator():
    assert distance_km(Coordinate(0.0, 0.0), Coordinate(0.01, 0.0)) == pytest.approx(1.112, abs=0.01)


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
def test_distance_non_finite_is_infinity(bad):
    assert distance_km(Coordinate(bad, 0.0), Coordinate(0.0, 0.0)) == math.inf
    assert distance_km(Coordinate(0.0, 0.0), Coordinate(0.0, bad)) == math.inf


def _reading(accuracy):
    return LocationReading(position=Coordinate(40.0, -74.0), accuracy_m=accuracy)


def test_radius_default_without_accuracy():
    assert derive_search_radius_km(None) == 35.0
    assert derive_search_radius_km(_reading(None)) == 35.0


def test_radius_clamps_to_upper_band():
    assert derive_search_radius_km(_reading(20000)) == 80.0
    assert derive_search_radius_km(_reading(1_000_000)) == 80.0


def test_radius_is_monotonic_and_bounded():
    accuracies = [0, 5, 50, 150, 1000, 5000, 10000, 20000, 50000]
    radii = [derive_search_radius_km(_reading(a)) for a in accuracies]
    assert radii == sorted(radii)
    assert all(10.0 <= r <= 80.0 for r in radii)


def test_radius_respects_overrides():
    assert derive_search_radius_km(_reading(0), base_km=2.0, min_km=10.0) == 10.0
    assert derive_search_radius_km(None, default_km=12.0) == 12.0


def test_offset_wraps_longitude_across_antimeridian():
    center = Coordinate(0.0, 179.995)
    point = offset_coordinate(center, 0.0, 0.01)
    assert point.lng == pytest.approx(-179.995)
    assert point.is_valid
    assert distance_km(center, point) == pytest.approx(1.112, abs=0.01)


def test_offset_mirrors_latitude_at_pole():
    center = Coordinate(89.995, 10.0)
    point = offset_coordinate(center, 0.01, 0.0)
    assert point.lat == pytest.approx(89.985)
    assert point.is_valid


def test_offset_inside_range_is_plain_shift():
    point = offset_coordinate(Coordinate(10.0, 20.0), 0.006, -0.006)
    assert point == Coordinate(10.0 + 0.006, 20.0 - 0.006)
