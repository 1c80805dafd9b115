"""Planar distance helpers shared by the fare calculator and the tracking simulator.

Distances are a flat approximation: the Euclidean distance in degrees scaled
by the length of one degree at the equator. Fares and displayed distances
both go through ``distance_km`` so they always agree.
"""

import math
from numbers import Real

from ..config import settings
from ..exceptions import InvalidLocation
from ..schemas.ride import Location


def validate_location(location, name: str = "location") -> Location:
    """Return the location if both coordinates are finite numbers."""
    if location is None:
        raise InvalidLocation(f"{name} is missing")

    for field in ("latitude", "longitude"):
        value = getattr(location, field, None)
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidLocation(f"{name}.{field} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise InvalidLocation(f"{name}.{field} must be finite, got {value!r}")

    return location


def distance_km(a: Location, b: Location) -> float:
    """Approximate distance between two locations in kilometres (unrounded)."""
    validate_location(a, "origin")
    validate_location(b, "destination")

    lat_diff = abs(a.latitude - b.latitude)
    lng_diff = abs(a.longitude - b.longitude)
    return math.sqrt(lat_diff * lat_diff + lng_diff * lng_diff) * settings.km_per_degree


def _clamp(value: float, bound_a: float, bound_b: float) -> float:
    return max(min(bound_a, bound_b), min(value, max(bound_a, bound_b)))


def interpolate(start: Location, end: Location, fraction: float) -> Location:
    """Point at ``fraction`` of the way from start to end.

    The result always lies inside the bounding box of the two endpoints.
    """
    validate_location(start, "start")
    validate_location(end, "end")
    fraction = min(1.0, max(0.0, fraction))

    latitude = start.latitude + (end.latitude - start.latitude) * fraction
    longitude = start.longitude + (end.longitude - start.longitude) * fraction
    return Location(
        latitude=_clamp(latitude, start.latitude, end.latitude),
        longitude=_clamp(longitude, start.longitude, end.longitude),
    )


def offset(location: Location, delta_deg: float) -> Location:
    """Shift a location north-east by ``delta_deg`` on both axes."""
    validate_location(location)
    return Location(
        latitude=location.latitude + delta_deg,
        longitude=location.longitude + delta_deg,
    )
