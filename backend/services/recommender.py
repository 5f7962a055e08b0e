"""
Recommendation cycle: tiered keyword search, dedupe, distance filtering and
fallback synthesis.

A cycle turns (LocationReading, MoodProfile, primary radius) into one
ResultSet. Starting a new cycle cancels the previous one's token, and a
cancelled cycle never publishes.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from domain.models import (
    Coordinate,
    CycleState,
    LocationReading,
    MoodProfile,
    Place,
    ResultSet,
)
from services.geo import derive_search_radius_km, distance_km, offset_coordinate
from services.query_builder import SearchRequest, build_query
from settings import settings

logger = logging.getLogger(__name__)

DEDUPE_DECIMALS = 4
MAX_FALLBACK_PLACES = 6

# (label, lat offset, lng offset) in degrees; all within ~1.5 km of center
FALLBACK_OFFSETS = (
    ("North Hangout", 0.01, 0.0),
    ("East Hangout", 0.0, 0.01),
    ("South Hangout", -0.01, 0.0),
    ("West Hangout", 0.0, -0.01),
    ("Lakeside Retreat", 0.006, -0.006),
    ("Sunset Deck", -0.006, 0.006),
    ("Garden Nook", 0.008, 0.004),
    ("River Bend", -0.004, -0.008),
    ("Central Spot", 0.004, 0.004),
    ("Skyline Lookout", -0.008, 0.002),
)


class SearchClient(Protocol):
    def search(self, request: SearchRequest, reason: str = "") -> Iterable[Place]:
        ...


class CycleToken:
    """Liveness flag for one cycle; checked before every shared-state mutation."""

    _ids = itertools.count(1)

    def __init__(self) -> None:
        self.cycle_id = next(self._ids)
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def alive(self) -> bool:
        return not self._cancelled


@dataclass(frozen=True)
class CycleParams:
    max_results: int
    primary_radius_km: float
    city_radius_km: float
    max_distance_km: float


def cycle_params(
    reading: Optional[LocationReading],
    radius_km: Optional[float] = None,
    max_results: Optional[int] = None,
    city_radius_factor: Optional[float] = None,
) -> CycleParams:
    primary = radius_km if radius_km else settings.PRIMARY_RADIUS_KM
    factor = city_radius_factor if city_radius_factor else settings.CITY_RADIUS_FACTOR
    return CycleParams(
        max_results=max_results or settings.MAX_RESULTS,
        primary_radius_km=primary,
        city_radius_km=primary * factor,
        max_distance_km=derive_search_radius_km(reading),
    )


def _drain(client: SearchClient, request: SearchRequest, reason: str) -> List[Place]:
    return list(client.search(request, reason=reason))


async def collect_candidates(
    client: SearchClient,
    profile: MoodProfile,
    center: Coordinate,
    params: CycleParams,
    token: Optional[CycleToken] = None,
) -> Optional[List[Place]]:
    """
    Query each keyword in order: a bounded pass at the primary radius, then a
    city-wide pass at the wider radius if still short of max_results. Stops as
    soon as max_results raw hits are collected.

    Returns None when the token is cancelled part way through.
    """
    collected: List[Place] = []
    for term in profile.keywords:
        if token is not None and not token.alive:
            return None

        nearby = build_query(term, center, params.primary_radius_km, bounded=True)
        hits = await asyncio.to_thread(_drain, client, nearby, profile.reason)
        if token is not None and not token.alive:
            return None
        collected.extend(hits)
        if len(collected) >= params.max_results:
            break

        city_wide = build_query(term, center, params.city_radius_km, bounded=False)
        hits = await asyncio.to_thread(_drain, client, city_wide, profile.reason)
        if token is not None and not token.alive:
            return None
        collected.extend(hits)
        if len(collected) >= params.max_results:
            break
    return collected


def dedupe_by_location(places: Iterable[Place], decimals: int = DEDUPE_DECIMALS) -> List[Place]:
    """Keep the first place per rounded coordinate, preserving order."""
    seen: set[str] = set()
    unique: List[Place] = []
    for place in places:
        key = place.position.rounded_key(decimals)
        if key in seen:
            continue
        seen.add(key)
        unique.append(place)
    return unique


def filter_by_distance(places: Iterable[Place], max_km: float) -> List[Place]:
    return [p for p in places if p.distance_km <= max_km]


def synthesize_fallback(center: Coordinate, reason: str, count: int) -> List[Place]:
    """Placeholder places at fixed offsets around `center`."""
    count = max(0, min(count, MAX_FALLBACK_PLACES, len(FALLBACK_OFFSETS)))
    places: List[Place] = []
    for index, (label, d_lat, d_lng) in enumerate(FALLBACK_OFFSETS[:count]):
        point = offset_coordinate(center, d_lat, d_lng)
        places.append(
            Place(
                id=f"fallback-{index}",
                name=label,
                position=point,
                distance_km=distance_km(center, point),
                reason=reason,
                is_fallback=True,
                description=reason,
            )
        )
    return places


def aggregate(
    candidates: Sequence[Place],
    center: Coordinate,
    profile: MoodProfile,
    params: CycleParams,
    on_state: Optional[Callable[[CycleState], None]] = None,
) -> List[Place]:
    """Dedupe, distance-filter and truncate; fall back to placeholders if nothing survives."""
    if on_state:
        on_state(CycleState.FILTERING)
    places = filter_by_distance(dedupe_by_location(candidates), params.max_distance_km)
    if not places:
        if on_state:
            on_state(CycleState.EMPTY)
            on_state(CycleState.FALLBACK)
        places = synthesize_fallback(center, profile.reason, min(MAX_FALLBACK_PLACES, params.max_results))
    return places[: params.max_results]


async def run_cycle(
    client: SearchClient,
    reading: LocationReading,
    profile: MoodProfile,
    params: CycleParams,
    token: Optional[CycleToken] = None,
    on_state: Optional[Callable[[CycleState], None]] = None,
) -> Optional[ResultSet]:
    """One full cycle. Returns None if cancelled before completion."""
    center = reading.position
    if on_state:
        on_state(CycleState.SEARCHING)
    candidates = await collect_candidates(client, profile, center, params, token)
    if candidates is None or (token is not None and not token.alive):
        return None
    places = aggregate(candidates, center, profile, params, on_state)
    return ResultSet(
        places=tuple(places),
        center=center,
        mood=profile.mood,
        radius_km=params.primary_radius_km,
        max_distance_km=params.max_distance_km,
    )


class RecommendationEngine:
    """
    Owns the single active cycle and the currently published ResultSet.

    All mutation happens on the event loop thread; search calls are pushed to
    a worker thread so the loop stays responsive.
    """

    def __init__(
        self,
        client: SearchClient,
        *,
        max_results: Optional[int] = None,
        city_radius_factor: Optional[float] = None,
        on_publish: Optional[Callable[[ResultSet], None]] = None,
    ):
        self.client = client
        self.max_results = max_results
        self.city_radius_factor = city_radius_factor
        self.on_publish = on_publish
        self.state: CycleState = CycleState.IDLE
        self.result_set: Optional[ResultSet] = None
        self._token: Optional[CycleToken] = None
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        """Abandon the in-flight cycle, if any. Its results will be discarded."""
        if self._token is not None:
            self._token.cancel()

    def start(
        self,
        reading: LocationReading,
        profile: MoodProfile,
        radius_km: Optional[float] = None,
    ) -> asyncio.Task:
        """Start a new cycle, abandoning the previous one. Must run inside an event loop."""
        self.cancel()
        token = CycleToken()
        self._token = token
        self.state = CycleState.SEARCHING
        params = cycle_params(reading, radius_km, self.max_results, self.city_radius_factor)
        self._task = asyncio.get_running_loop().create_task(
            self._run(token, reading, profile, params)
        )
        return self._task

    async def wait(self) -> Optional[ResultSet]:
        """Wait for the active cycle, including any that replace it meanwhile."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)
        return self.result_set

    def _set_state(self, token: CycleToken, state: CycleState) -> None:
        if token.alive:
            self.state = state

    def _publish(self, token: CycleToken, result: ResultSet) -> None:
        self.result_set = result
        self.state = CycleState.DONE
        logger.info(
            "Cycle %d published %d places for %s (fallback=%s, max %.0f km)",
            token.cycle_id,
            len(result),
            result.mood.value,
            result.is_fallback,
            result.max_distance_km,
        )
        if self.on_publish:
            self.on_publish(result)

    async def _run(
        self,
        token: CycleToken,
        reading: LocationReading,
        profile: MoodProfile,
        params: CycleParams,
    ) -> Optional[ResultSet]:
        try:
            result = await run_cycle(
                self.client,
                reading,
                profile,
                params,
                token,
                on_state=lambda s: self._set_state(token, s),
            )
        except Exception:
            logger.exception("Cycle %d failed; publishing fallback places", token.cycle_id)
            if not token.alive:
                return None
            result = ResultSet(
                places=tuple(synthesize_fallback(reading.position, profile.reason, params.max_results)),
                center=reading.position,
                mood=profile.mood,
                radius_km=params.primary_radius_km,
                max_distance_km=params.max_distance_km,
            )
        if result is None or not token.alive:
            logger.debug("Cycle %d abandoned", token.cycle_id)
            return None
        self._publish(token, result)
        return result
