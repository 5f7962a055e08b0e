"""Lightweight forward geocoding helpers using OpenStreetMap Nominatim.

All traffic to Nominatim goes through `_throttled_get` so the whole process
shares one rate limit and one identifying User-Agent.
"""

from __future__ import annotations

import re
import threading
import time
import logging
from typing import Any, Optional

import requests

from domain.errors import ManualLookupNoMatch, TransportError
from domain.models import Coordinate
from services.query_builder import build_lookup_query
from settings import settings

NOMINATIM_SEARCH_URL = settings.NOMINATIM_SEARCH_URL
logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_MIN_INTERVAL_SEC = settings.NOMINATIM_MIN_INTERVAL
_logged_ua = False

FALLBACK_UA = "moodmap-backend/0.1 (contact: example@example.com)"
if settings.NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


_ua_value = settings.NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
    "Accept": "application/json",
}
if settings.NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = settings.NOMINATIM_REFERER


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def search_json(params: dict[str, str], url: Optional[str] = None) -> Any:
    """
    Run a Nominatim search and return the decoded JSON body.

    Raises TransportError on connection failures, non-2xx statuses and bodies
    that are not JSON.
    """
    global _logged_ua
    if not _logged_ua:
        logger.debug("Nominatim User-Agent: %s", _redact_email(_ua_value))
        _logged_ua = True

    try:
        resp = _throttled_get(
            url or NOMINATIM_SEARCH_URL,
            params=params,
            headers=NOMINATIM_HEADERS,
            timeout=settings.NOMINATIM_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise TransportError(f"Nominatim returned HTTP {status}", status_code=status) from exc
    except requests.RequestException as exc:
        raise TransportError(f"Nominatim request failed: {exc}") from exc

    try:
        return resp.json()
    except ValueError as exc:
        raise TransportError(f"Nominatim returned invalid JSON: {exc}") from exc


def parse_coordinate(lat: Any, lon: Any) -> Optional[Coordinate]:
    """Parse string/number lat/lon into a Coordinate, or None if unusable."""
    try:
        point = Coordinate(lat=float(lat), lng=float(lon))
    except (TypeError, ValueError):
        return None
    return point if point.is_valid else None


def lookup_coordinate(text: str) -> Coordinate:
    """
    Resolve free text (a city, address or landmark) to its best coordinate.

    Raises ManualLookupNoMatch when nothing usable comes back and
    TransportError when the service cannot be reached.
    """
    query = (text or "").strip()
    if not query:
        raise ManualLookupNoMatch("Type a city, address, or landmark.")

    data = search_json(build_lookup_query(query))
    if not isinstance(data, list) or not data:
        raise ManualLookupNoMatch("We could not find that place. Try a nearby city.")

    hit = data[0] if isinstance(data[0], dict) else {}
    point = parse_coordinate(hit.get("lat"), hit.get("lon"))
    if point is None:
        raise ManualLookupNoMatch("That result looked odd. Please try again.")
    logger.debug("Manual lookup %r -> %.5f,%.5f", query, point.lat, point.lng)
    return point

