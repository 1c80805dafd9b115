import math

import pytest

from ride_engine.exceptions import InvalidLocation
from ride_engine.schemas.ride import Location
from ride_engine.utils.geo import distance_km, interpolate, offset, validate_location


def test_distance_is_planar_degrees_times_111(pickup, dropoff):
    assert distance_km(pickup, dropoff) == pytest.approx(1.11, abs=1e-6)


def test_distance_is_symmetric():
    a = Location(latitude=10.0, longitude=20.0)
    b = Location(latitude=13.0, longitude=24.0)
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))
    # 3-4-5 triangle in degrees
    assert distance_km(a, b) == pytest.approx(5 * 111)


def test_distance_to_self_is_zero(pickup):
    assert distance_km(pickup, pickup) == 0


@pytest.mark.parametrize("latitude, longitude", [
    (float("nan"), 2.0),
    (48.0, float("inf")),
    (float("-inf"), float("nan")),
])
def test_non_finite_coordinates_are_rejected(pickup, latitude, longitude):
    bad = Location(latitude=latitude, longitude=longitude)
    with pytest.raises(InvalidLocation):
        distance_km(pickup, bad)
    with pytest.raises(InvalidLocation):
        distance_km(bad, pickup)


def test_missing_location_is_rejected(pickup):
    with pytest.raises(InvalidLocation):
        distance_km(pickup, None)


def test_validate_location_rejects_non_numbers():
    class Loose:
        latitude = "48.1"
        longitude = 2.0

    with pytest.raises(InvalidLocation):
        validate_location(Loose())


def test_interpolate_endpoints_and_midpoint(pickup, dropoff):
    assert interpolate(pickup, dropoff, 0.0).latitude == pytest.approx(pickup.latitude)
    assert interpolate(pickup, dropoff, 1.0).latitude == pytest.approx(dropoff.latitude)
    middle = interpolate(pickup, dropoff, 0.5)
    assert middle.latitude == pytest.approx(48.8616)
    assert middle.longitude == pytest.approx(2.3522)


def test_interpolate_stays_in_bounding_box():
    start = Location(latitude=-33.9, longitude=151.3)
    end = Location(latitude=-33.8, longitude=151.1)
    for step in range(-5, 16):
        point = interpolate(start, end, step / 10)
        assert min(start.latitude, end.latitude) <= point.latitude <= max(start.latitude, end.latitude)
        assert min(start.longitude, end.longitude) <= point.longitude <= max(start.longitude, end.longitude)


def test_offset_moves_both_axes(pickup):
    moved = offset(pickup, 0.01)
    assert moved.latitude == pytest.approx(pickup.latitude + 0.01)
    assert moved.longitude == pytest.approx(pickup.longitude + 0.01)
    assert math.isfinite(distance_km(pickup, moved))
