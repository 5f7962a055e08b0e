"""
Places search client on top of Nominatim, sharing rate limiting and headers
with services.geocoding.
"""
from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

from domain.errors import MalformedRecord, TransportError
from domain.models import Place
from services import geocoding
from services.geo import distance_km
from services.query_builder import SearchRequest


def format_place_name(display_name: Any, fallback: str) -> str:
    """
    Short card-ready name: the first comma-separated segment of Nominatim's
    display_name, or `fallback` when that is empty.
    """
    if not isinstance(display_name, str) or not display_name:
        return fallback
    first = display_name.split(",", 1)[0].strip()
    return first or fallback


class PlacesClient:
    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or geocoding.NOMINATIM_SEARCH_URL
        self.logger = logging.getLogger(__name__)

    def _normalize_record(self, item: Any, index: int, request: SearchRequest, reason: str) -> Place:
        if not isinstance(item, dict):
            raise MalformedRecord(f"hit {index} is not an object")
        point = geocoding.parse_coordinate(item.get("lat"), item.get("lon"))
        if point is None:
            raise MalformedRecord(f"hit {index} has unusable coordinates")

        place_id = item.get("place_id")
        display_name = item.get("display_name")
        return Place(
            id=str(place_id) if place_id not in (None, "") else point.rounded_key(),
            name=format_place_name(display_name, f"{request.term} {index + 1}"),
            position=point,
            distance_km=distance_km(request.center, point),
            reason=reason,
            is_fallback=False,
            description=display_name if isinstance(display_name, str) else None,
            term=request.term,
        )

    def search(self, request: SearchRequest, reason: str = "") -> Iterator[Place]:
        """
        Lazily run `request` and yield normalized places.

        The HTTP call happens on first iteration. Transport failures and
        non-array bodies yield nothing; records without finite coordinates are
        skipped.
        """
        try:
            data = geocoding.search_json(request.params, url=self.base_url)
        except TransportError as exc:
            self.logger.warning("Nominatim search failed for %r: %s", request.term, exc)
            return
        if not isinstance(data, list):
            self.logger.warning(
                "Nominatim search for %r returned %s, expected a list",
                request.term,
                type(data).__name__,
            )
            return

        kept = 0
        for index, item in enumerate(data):
            try:
                place = self._normalize_record(item, index, request, reason)
            except MalformedRecord as exc:
                self.logger.debug("Dropping search hit: %s", exc)
                continue
            kept += 1
            yield place

        self.logger.debug(
            "PlacesClient.search: term=%r bounded=%s radius_km=%.1f got %d/%d results",
            request.term,
            request.bounded,
            request.radius_km,
            kept,
            len(data),
        )


_default_places_client: Optional[PlacesClient] = None


def get_default_places_client() -> PlacesClient:
    global _default_places_client
    if _default_places_client is None:
        _default_places_client = PlacesClient()
    return _default_places_client
