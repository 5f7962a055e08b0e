"""
Builds Nominatim /search requests around a center point.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

from domain.models import Coordinate
from settings import settings

KM_PER_DEGREE_LAT = 111.0
MIN_BOX_RADIUS_KM = 0.5
# cos(lat) floor so boxes near the poles stay finite
_MIN_LNG_SCALE = 0.01


@dataclass(frozen=True)
class BoundingBox:
    west: float
    north: float
    east: float
    south: float

    @property
    def viewbox(self) -> str:
        """Nominatim viewbox order: x1,y1,x2,y2 = west,north,east,south."""
        return f"{self.west:.6f},{self.north:.6f},{self.east:.6f},{self.south:.6f}"

    @property
    def area_deg2(self) -> float:
        return (self.east - self.west) * (self.north - self.south)


@dataclass(frozen=True)
class SearchRequest:
    term: str
    center: Coordinate
    radius_km: float
    bounded: bool
    box: Optional[BoundingBox] = None
    params: Dict[str, str] = field(default_factory=dict, compare=False)


def bounding_box(center: Coordinate, radius_km: float) -> BoundingBox:
    """
    Box of roughly `radius_km` around `center`.

    Latitude is clamped to the poles and longitude to the antimeridian. The
    radius is floored at MIN_BOX_RADIUS_KM so the box always has an area.
    """
    if not math.isfinite(radius_km) or radius_km < MIN_BOX_RADIUS_KM:
        radius_km = MIN_BOX_RADIUS_KM
    lat_pad = radius_km / KM_PER_DEGREE_LAT
    lng_scale = max(_MIN_LNG_SCALE, math.cos(math.radians(center.lat)))
    lng_pad = min(180.0, lat_pad / lng_scale)

    north = min(90.0, center.lat + lat_pad)
    south = max(-90.0, center.lat - lat_pad)
    east = min(180.0, center.lng + lng_pad)
    west = max(-180.0, center.lng - lng_pad)
    return BoundingBox(west=west, north=north, east=east, south=south)


def _base_params(term: str, limit: int) -> Dict[str, str]:
    return {
        "q": term,
        "format": "jsonv2",
        "limit": str(limit),
        "addressdetails": "1",
        "extratags": "1",
    }


def build_query(
    term: str,
    center: Coordinate,
    radius_km: float,
    bounded: bool,
    limit: Optional[int] = None,
) -> SearchRequest:
    """
    Bounded requests only return hits inside the box. Unbounded requests send
    the same box with bounded=0, which Nominatim uses as a proximity bias only.
    """
    box = bounding_box(center, radius_km)
    params = _base_params(term, limit or settings.NOMINATIM_RESULT_LIMIT)
    params["viewbox"] = box.viewbox
    params["bounded"] = "1" if bounded else "0"
    return SearchRequest(
        term=term,
        center=center,
        radius_km=radius_km,
        bounded=bounded,
        box=box,
        params=params,
    )


def build_lookup_query(text: str) -> Dict[str, str]:
    """Params for resolving free text to a single best coordinate."""
    return {"q": text, "format": "jsonv2", "limit": "1"}

