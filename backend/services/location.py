"""
Location acquisition: continuous watch, one-shot refresh, manual text lookup,
accuracy classification and last-known-location caching.
"""
from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from domain.errors import LocationError, LocationTimeout, LocationUnavailable, TransportError
from domain.models import (
    AccuracyTier,
    Coordinate,
    LocationFailure,
    LocationReading,
    LocationState,
    PositionFix,
)
from services import geocoding
from services.session_cache_sqlite import LAST_LOCATION_KEY, SessionCache
from settings import settings

logger = logging.getLogger(__name__)

# below this, no accuracy note is shown at all
QUIET_ACCURACY_M = 75.0

FAILURE_MESSAGES: Dict[LocationFailure, str] = {
    LocationFailure.PERMISSION_DENIED: "Permission denied. Enable GPS or enter a location manually.",
    LocationFailure.POSITION_UNAVAILABLE: "Location unavailable. Move to an open area or enter a city manually.",
    LocationFailure.TIMEOUT: "Location lookup timed out. Tap retry or enter a city manually.",
    LocationFailure.UNSUPPORTED: "Geolocation unavailable. Enter a city below.",
    LocationFailure.MANUAL_NO_MATCH: "We could not find that place. Try a nearby city.",
    LocationFailure.MANUAL_TRANSPORT_ERROR: "We could not look up that place. Please try again.",
}

PositionCallback = Callable[[PositionFix], None]
ErrorCallback = Callable[[LocationError], None]


class LocationSource(Protocol):
    async def current_position(self, timeout: float) -> PositionFix:
        ...

    def watch(self, on_position: PositionCallback, on_error: ErrorCallback) -> int:
        ...

    def clear_watch(self, watch_id: int) -> None:
        ...


def classify_accuracy(accuracy_m: Optional[float]) -> AccuracyTier:
    if accuracy_m is None or not math.isfinite(accuracy_m):
        return AccuracyTier.UNKNOWN
    if accuracy_m <= settings.PRECISE_ACCURACY_M:
        return AccuracyTier.PRECISE
    if accuracy_m <= settings.APPROXIMATE_ACCURACY_M:
        return AccuracyTier.APPROXIMATE
    return AccuracyTier.ROUGH


def accuracy_label(reading: Optional[LocationReading]) -> Optional[str]:
    if reading is None or reading.accuracy_m is None:
        return None
    return f"±{max(1, round(reading.accuracy_m))} m"


def accuracy_note(reading: Optional[LocationReading], max_distance_km: float) -> Optional[str]:
    """Explains to the user how trustworthy the current spot is."""
    if reading is None:
        return None
    if reading.accuracy_m is None:
        if reading.manual:
            return "Use the map controls to fine-tune this manual spot if needed."
        return "Browser provided an approximate location via network lookup."
    if reading.accuracy_m <= QUIET_ACCURACY_M:
        return None
    if reading.accuracy_m <= settings.APPROXIMATE_ACCURACY_M:
        return f"Location within roughly ±{round(settings.APPROXIMATE_ACCURACY_M)} meters."
    return (
        f"Location is approximate. We widened search to ~{round(max_distance_km)} km. "
        "Retry GPS or enter a specific city for better results."
    )


def position_message(accuracy_m: Optional[float]) -> str:
    tier = classify_accuracy(accuracy_m)
    if tier is AccuracyTier.UNKNOWN:
        return "Location found. Waiting for improved accuracy…"
    if tier is AccuracyTier.PRECISE:
        return f"Precise location locked (±{round(settings.PRECISE_ACCURACY_M)} m)."
    if tier is AccuracyTier.APPROXIMATE:
        return f"Approximate location (±{round(accuracy_m)} m)."
    return "Location is rough. Try retrying GPS or enter a city manually."


def reading_from_fix(fix: PositionFix) -> LocationReading:
    """Validate a raw fix. Unusable accuracy becomes unknown; unusable coordinates raise."""
    try:
        point = Coordinate(lat=float(fix.latitude), lng=float(fix.longitude))
    except (TypeError, ValueError):
        point = Coordinate(lat=math.nan, lng=math.nan)
    if not point.is_valid:
        raise LocationUnavailable(
            "Fix has no usable coordinates", failure=LocationFailure.POSITION_UNAVAILABLE
        )
    accuracy = fix.accuracy
    if accuracy is not None:
        try:
            accuracy = float(accuracy)
        except (TypeError, ValueError):
            accuracy = None
    if accuracy is not None and (not math.isfinite(accuracy) or accuracy < 0):
        accuracy = None
    return LocationReading(
        position=point,
        accuracy_m=accuracy,
        timestamp=fix.timestamp or datetime.utcnow(),
    )


class PushLocationSource:
    """
    Geolocation source fed by a remote client (e.g. a browser posting
    navigator.geolocation fixes). Must be used from a single event loop.
    """

    def __init__(self) -> None:
        self._watchers: Dict[int, Tuple[PositionCallback, ErrorCallback]] = {}
        self._next_watch_id = 1
        self._pending: List[asyncio.Future] = []

    def watch(self, on_position: PositionCallback, on_error: ErrorCallback) -> int:
        watch_id = self._next_watch_id
        self._next_watch_id += 1
        self._watchers[watch_id] = (on_position, on_error)
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        self._watchers.pop(watch_id, None)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    async def current_position(self, timeout: float) -> PositionFix:
        """Wait for the next pushed fix."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise LocationTimeout("No position within %.1fs" % timeout) from exc
        finally:
            if future in self._pending:
                self._pending.remove(future)

    def push(self, fix: PositionFix) -> None:
        pending, self._pending = self._pending, []
        for future in pending:
            if not future.done():
                future.set_result(fix)
        for on_position, _ in list(self._watchers.values()):
            on_position(fix)

    def push_error(self, error: LocationError) -> None:
        pending, self._pending = self._pending, []
        for future in pending:
            if not future.done():
                future.set_exception(error)
        for _, on_error in list(self._watchers.values()):
            on_error(error)


class LocationTracker:
    """
    Single writer of the session's current LocationReading.

    `on_change` fires only when latitude, longitude or accuracy actually change.
    """

    def __init__(
        self,
        source: Optional[LocationSource],
        *,
        cache: Optional[SessionCache] = None,
        lookup: Optional[Callable[[str], Coordinate]] = None,
        on_change: Optional[Callable[[LocationReading], None]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.source = source
        self.cache = cache
        self.lookup_fn = lookup or geocoding.lookup_coordinate
        self.on_change = on_change
        self.timeout_seconds = timeout_seconds or settings.LOCATION_TIMEOUT_SECONDS
        self.reading: Optional[LocationReading] = None
        self.state = LocationState.AWAITING_PERMISSION
        self.failure: Optional[LocationFailure] = None
        self.status_message = "Requesting location…"
        self.last_update: Optional[datetime] = None
        self._watch_id: Optional[int] = None
        self._restored = False

    @property
    def accuracy_tier(self) -> AccuracyTier:
        return classify_accuracy(self.reading.accuracy_m if self.reading else None)

    def restore(self) -> Optional[LocationReading]:
        """Use the cached last-known reading until a fresh fix arrives."""
        if self.cache is None:
            return None
        data = self.cache.get(LAST_LOCATION_KEY)
        if not data:
            return None
        try:
            reading = LocationReading.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring unreadable cached location: %s", exc)
            return None
        if not reading.position.is_valid:
            return None
        self.reading = reading
        self._restored = True
        self.status_message = "Showing your last known location while we refresh GPS."
        return reading

    def _persist(self, reading: LocationReading) -> None:
        if self.cache is not None:
            self.cache.set(LAST_LOCATION_KEY, reading.to_dict())

    def _apply(self, reading: LocationReading) -> bool:
        changed = not reading.same_fix(self.reading)
        superseding = self._restored
        self._restored = False
        self.last_update = datetime.utcnow()
        if not changed and not superseding:
            return False
        self.reading = reading
        self._persist(reading)
        if changed and self.on_change:
            self.on_change(reading)
        return changed

    def start(self) -> Optional[asyncio.Task]:
        """
        Subscribe to continuous updates and kick off a one-shot refresh.
        Returns the refresh task, or None when geolocation is unsupported.
        """
        if self.source is None:
            self.handle_error(LocationUnavailable(failure=LocationFailure.UNSUPPORTED))
            return None
        if self._watch_id is None:
            self._watch_id = self.source.watch(self.handle_position, self.handle_error)
        self.state = LocationState.REFINING
        return asyncio.get_running_loop().create_task(self.refresh())

    def stop(self) -> None:
        if self.source is not None and self._watch_id is not None:
            self.source.clear_watch(self._watch_id)
        self._watch_id = None

    def handle_position(self, fix: PositionFix) -> bool:
        """Apply a fix from the source. Returns True if the reading changed."""
        try:
            reading = reading_from_fix(fix)
        except LocationError as exc:
            self.handle_error(exc)
            return False
        changed = self._apply(reading)
        self.state = LocationState.WATCHING
        self.failure = None
        self.status_message = position_message(reading.accuracy_m)
        return changed

    def handle_error(self, error: LocationError) -> None:
        """Surface a failure as status text; the last reading stays in place."""
        self.state = LocationState.ERROR
        self.failure = error.failure
        self.status_message = FAILURE_MESSAGES.get(error.failure, "We could not read GPS. Enter a location manually.")
        logger.info("Location failure: %s (%s)", error.failure.value, error)

    async def refresh(self) -> Optional[LocationReading]:
        """One-shot position request, e.g. for a "Retry GPS" action."""
        if self.source is None:
            self.handle_error(LocationUnavailable(failure=LocationFailure.UNSUPPORTED))
            return None
        self.state = LocationState.REFINING
        self.status_message = "Requesting location…"
        try:
            fix = await self.source.current_position(self.timeout_seconds)
        except LocationError as exc:
            self.handle_error(exc)
            return None
        self.handle_position(fix)
        return self.reading

    async def lookup(self, text: str) -> Optional[LocationReading]:
        """Resolve free text to a reading with unknown accuracy."""
        self.state = LocationState.MANUAL_LOOKUP_PENDING
        self.status_message = "Finding that spot…"
        try:
            point = await asyncio.to_thread(self.lookup_fn, text)
        except LocationError as exc:
            self.handle_error(exc)
            if exc.detail and exc.failure is LocationFailure.MANUAL_NO_MATCH:
                self.status_message = exc.detail
            return None
        except TransportError as exc:
            self.handle_error(LocationError(str(exc), failure=LocationFailure.MANUAL_TRANSPORT_ERROR))
            return None
        reading = LocationReading(position=point, accuracy_m=None, manual=True)
        self._apply(reading)
        self.state = LocationState.MANUAL_RESOLVED
        self.failure = None
        self.status_message = "Manual location applied."
        return reading
