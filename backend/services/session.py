"""
Per-user application state.

Location changes and mood/radius changes each start a fresh recommendation
cycle; nothing else writes the session's reading or result set.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Callable, Optional

from domain.models import AppState, Coordinate, LocationReading, Mood, ResultSet
from services.geo import derive_search_radius_km
from services.location import (
    LocationSource,
    LocationTracker,
    accuracy_label,
    accuracy_note,
)
from services.moods import normalize_mood, profile_for
from services.recommender import RecommendationEngine, SearchClient
from services.session_cache_sqlite import LAST_MOOD_KEY, LAST_RADIUS_KEY, SessionCache
from settings import settings

logger = logging.getLogger(__name__)

MIN_RADIUS_KM = 0.5
MAX_RADIUS_KM = 50.0


def clamp_radius(radius_km: Any) -> float:
    """Primary search radius picked by the user, kept within a sane range."""
    try:
        value = float(radius_km)
    except (TypeError, ValueError):
        return settings.PRIMARY_RADIUS_KM
    if not math.isfinite(value):
        return settings.PRIMARY_RADIUS_KM
    return min(MAX_RADIUS_KM, max(MIN_RADIUS_KM, value))


class MoodMapSession:
    def __init__(
        self,
        session_id: str,
        client: SearchClient,
        *,
        source: Optional[LocationSource] = None,
        cache: Optional[SessionCache] = None,
        lookup: Optional[Callable[[str], Coordinate]] = None,
        mood: Any = None,
        radius_km: Optional[float] = None,
    ):
        self.session_id = session_id
        self.source = source
        self.cache = cache
        self.engine = RecommendationEngine(client)
        self.tracker = LocationTracker(
            source,
            cache=cache,
            lookup=lookup,
            on_change=self._on_location_change,
        )
        cached_mood = cache.get(LAST_MOOD_KEY) if cache is not None else None
        cached_radius = cache.get(LAST_RADIUS_KEY) if cache is not None else None
        self.mood: Mood = normalize_mood(mood if mood is not None else cached_mood)
        if radius_km is not None:
            self.radius_km = clamp_radius(radius_km)
        elif cached_radius is not None:
            self.radius_km = clamp_radius(cached_radius)
        else:
            self.radius_km = settings.PRIMARY_RADIUS_KM
        self._remember_selection()
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def reading(self) -> Optional[LocationReading]:
        return self.tracker.reading

    @property
    def result_set(self) -> Optional[ResultSet]:
        return self.engine.result_set

    def _remember_selection(self) -> None:
        if self.cache is not None:
            self.cache.set(LAST_MOOD_KEY, self.mood.value)
            self.cache.set(LAST_RADIUS_KEY, self.radius_km)

    def _on_location_change(self, reading: LocationReading) -> None:
        self._start_cycle(reading)

    def _start_cycle(self, reading: Optional[LocationReading] = None) -> Optional[asyncio.Task]:
        reading = reading or self.tracker.reading
        if reading is None:
            return None
        return self.engine.start(reading, profile_for(self.mood), self.radius_km)

    def open(self) -> Optional[asyncio.Task]:
        """
        Warm-start from the cached reading, begin watching the location source
        and run a first cycle if a reading is already known.
        """
        self.tracker.restore()
        self._refresh_task = self.tracker.start()
        return self._start_cycle()

    def set_mood(self, mood: Any) -> Mood:
        new_mood = normalize_mood(mood)
        if new_mood != self.mood:
            self.mood = new_mood
            self._remember_selection()
            self._start_cycle()
        return self.mood

    def set_radius(self, radius_km: Any) -> float:
        new_radius = clamp_radius(radius_km)
        if new_radius != self.radius_km:
            self.radius_km = new_radius
            self._remember_selection()
            self._start_cycle()
        return self.radius_km

    def refresh_location(self) -> Optional[asyncio.Task]:
        """Retry GPS without blocking the caller."""
        if self._refresh_task is not None and not self._refresh_task.done():
            return self._refresh_task
        self._refresh_task = asyncio.get_running_loop().create_task(self.tracker.refresh())
        return self._refresh_task

    async def lookup_location(self, text: str) -> Optional[LocationReading]:
        return await self.tracker.lookup(text)

    async def wait_for_results(self) -> Optional[ResultSet]:
        return await self.engine.wait()

    def snapshot(self) -> AppState:
        reading = self.tracker.reading
        max_distance = derive_search_radius_km(reading)
        return AppState(
            session_id=self.session_id,
            mood=self.mood,
            radius_km=self.radius_km,
            reading=reading,
            location_state=self.tracker.state,
            location_failure=self.tracker.failure,
            status_message=self.tracker.status_message,
            accuracy_tier=self.tracker.accuracy_tier,
            accuracy_label=accuracy_label(reading),
            accuracy_note=accuracy_note(reading, max_distance),
            max_distance_km=max_distance,
            cycle_state=self.engine.state,
            result_set=self.engine.result_set,
        )

    def close(self, clear_cache: bool = True) -> None:
        """End the session: stop watching, abandon the active cycle, drop cached state."""
        self.tracker.stop()
        self.engine.cancel()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        if clear_cache and self.cache is not None:
            self.cache.clear()
        logger.debug("Session %s closed", self.session_id)
