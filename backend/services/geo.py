from __future__ import annotations

import math
from typing import Optional

from domain.models import Coordinate, LocationReading
from settings import settings

EARTH_RADIUS_KM = 6371.0


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """
    Great-circle distance between two coordinates using the haversine formula.

    Returns infinity when either coordinate has a non-finite component so that
    distance filters reject it instead of propagating NaN.
    """
    if not all(math.isfinite(v) for v in (a.lat, a.lng, b.lat, b.lng)):
        return math.inf
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.lng - a.lng)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def derive_search_radius_km(
    reading: Optional[LocationReading],
    *,
    default_km: Optional[float] = None,
    base_km: Optional[float] = None,
    factor: Optional[float] = None,
    min_km: Optional[float] = None,
    max_km: Optional[float] = None,
) -> float:
    """
    Maximum distance a recommended place may be from the user.

    Unknown accuracy gets a generous default. Otherwise the radius grows with
    the accuracy error and is clamped to [min_km, max_km].
    """
    default_km = settings.DEFAULT_DISTANCE_KM if default_km is None else default_km
    base_km = settings.BASE_DISTANCE_KM if base_km is None else base_km
    factor = settings.ACCURACY_DISTANCE_FACTOR if factor is None else factor
    min_km = settings.MIN_DISTANCE_KM if min_km is None else min_km
    max_km = settings.MAX_DISTANCE_KM if max_km is None else max_km

    if reading is None or reading.accuracy_m is None or not math.isfinite(reading.accuracy_m):
        return default_km
    accuracy_km = max(0.0, reading.accuracy_m) / 1000.0
    radius = base_km + factor * accuracy_km
    return min(max_km, max(min_km, radius))


def offset_coordinate(center: Coordinate, d_lat: float, d_lng: float) -> Coordinate:
    """
    Shift `center` by degree offsets, staying inside the WGS84 range.

    A latitude offset that would cross a pole is mirrored back toward the
    equator; longitude wraps around the antimeridian.
    """
    lat = center.lat + d_lat
    if not -90.0 <= lat <= 90.0:
        lat = center.lat - d_lat
    lat = min(90.0, max(-90.0, lat))
    lng = center.lng + d_lng
    if not -180.0 <= lng <= 180.0:
        lng = ((lng + 180.0) % 360.0) - 180.0
    return Coordinate(lat=lat, lng=lng)
