"""
Session API routes.

A browser client creates a session, pushes geolocation fixes (or a manual
search) and reads back the current recommendations.
"""
import logging
from datetime import datetime
from typing import List, Optional, Union
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from api.database import SessionRegistry
from domain.errors import LocationError
from domain.models import AppState, LocationFailure, LocationReading, PositionFix, ResultSet
from services.session import MoodMapSession

router = APIRouter()
registry = SessionRegistry()
logger = logging.getLogger(__name__)

# navigator.geolocation error codes
W3C_ERROR_CODES = {
    1: LocationFailure.PERMISSION_DENIED,
    2: LocationFailure.POSITION_UNAVAILABLE,
    3: LocationFailure.TIMEOUT,
}


class SessionCreate(BaseModel):
    session_id: Optional[str] = None
    mood: Optional[str] = None
    radius_km: Optional[float] = Field(default=None, gt=0)


class MoodUpdate(BaseModel):
    mood: str


class RadiusUpdate(BaseModel):
    radius_km: float = Field(gt=0)


class PositionPush(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


class LocationErrorPush(BaseModel):
    code: Union[int, str]
    message: Optional[str] = None


class ManualLookupRequest(BaseModel):
    query: str


class CoordinateResponse(BaseModel):
    lat: float
    lng: float


class ReadingResponse(BaseModel):
    lat: float
    lng: float
    accuracy: Optional[float] = None
    timestamp: str
    manual: bool = False


class PlaceResponse(BaseModel):
    id: str
    name: str
    lat: float
    lng: float
    distance_km: float
    reason: str
    is_fallback: bool
    description: Optional[str] = None


class ResultSetResponse(BaseModel):
    mood: str
    center: CoordinateResponse
    radius_km: float
    max_distance_km: float
    is_fallback: bool
    generated_at: str
    places: List[PlaceResponse]


class SessionResponse(BaseModel):
    session_id: str
    mood: str
    radius_km: float
    location: Optional[ReadingResponse] = None
    location_state: str
    location_failure: Optional[str] = None
    status_message: str
    accuracy_tier: str
    accuracy_label: Optional[str] = None
    accuracy_note: Optional[str] = None
    max_distance_km: float
    cycle_state: str
    results: Optional[ResultSetResponse] = None


def reading_to_response(reading: Optional[LocationReading]) -> Optional[ReadingResponse]:
    if reading is None:
        return None
    return ReadingResponse(
        lat=reading.position.lat,
        lng=reading.position.lng,
        accuracy=reading.accuracy_m,
        timestamp=reading.timestamp.isoformat(),
        manual=reading.manual,
    )


def result_set_to_response(result_set: Optional[ResultSet]) -> Optional[ResultSetResponse]:
    """Convert a ResultSet to its API shape; the snapshot is never mutated."""
    if result_set is None:
        return None
    return ResultSetResponse(
        mood=result_set.mood.value,
        center=CoordinateResponse(lat=result_set.center.lat, lng=result_set.center.lng),
        radius_km=result_set.radius_km,
        max_distance_km=result_set.max_distance_km,
        is_fallback=result_set.is_fallback,
        generated_at=result_set.generated_at.isoformat(),
        places=[
            PlaceResponse(
                id=p.id,
                name=p.name,
                lat=p.position.lat,
                lng=p.position.lng,
                distance_km=round(p.distance_km, 3),
                reason=p.reason,
                is_fallback=p.is_fallback,
                description=p.description,
            )
            for p in result_set.places
        ],
    )


def state_to_response(state: AppState) -> SessionResponse:
    return SessionResponse(
        session_id=state.session_id,
        mood=state.mood.value,
        radius_km=state.radius_km,
        location=reading_to_response(state.reading),
        location_state=state.location_state.value,
        location_failure=state.location_failure.value if state.location_failure else None,
        status_message=state.status_message,
        accuracy_tier=state.accuracy_tier.value,
        accuracy_label=state.accuracy_label,
        accuracy_note=state.accuracy_note,
        max_distance_km=state.max_distance_km,
        cycle_state=state.cycle_state.value,
        results=result_set_to_response(state.result_set),
    )


def _get_session(session_id: str) -> MoodMapSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _failure_from_code(code: Union[int, str]) -> LocationFailure:
    if isinstance(code, int) or (isinstance(code, str) and code.isdigit()):
        failure = W3C_ERROR_CODES.get(int(code))
    else:
        try:
            failure = LocationFailure(code.strip().lower())
        except ValueError:
            failure = None
    if failure is None:
        raise HTTPException(status_code=400, detail=f"Unknown location error code: {code}")
    return failure


@router.post("", response_model=SessionResponse)
async def create_session(payload: SessionCreate):
    """
    Create a session, or resume one by id.

    A resumed id picks up its cached location, mood and radius and starts a
    recommendation cycle straight away.
    """
    if payload.session_id:
        existing = registry.get(payload.session_id)
        if existing is not None:
            return state_to_response(existing.snapshot())
    session = registry.create(payload.session_id, mood=payload.mood, radius_km=payload.radius_km)
    session.open()
    return state_to_response(session.snapshot())


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str):
    return state_to_response(_get_session(session_id).snapshot())


@router.delete("/{session_id}")
async def delete_session(session_id: str):
    """End a session and clear its cached state."""
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True}


@router.put("/{session_id}/mood", response_model=SessionResponse)
async def update_mood(session_id: str, payload: MoodUpdate):
    session = _get_session(session_id)
    session.set_mood(payload.mood)
    return state_to_response(session.snapshot())


@router.put("/{session_id}/radius", response_model=SessionResponse)
async def update_radius(session_id: str, payload: RadiusUpdate):
    session = _get_session(session_id)
    session.set_radius(payload.radius_km)
    return state_to_response(session.snapshot())


@router.post("/{session_id}/location", response_model=SessionResponse)
async def push_location(session_id: str, payload: PositionPush):
    """Deliver a geolocation fix from the client's watch."""
    session = _get_session(session_id)
    session.source.push(
        PositionFix(
            latitude=payload.latitude,
            longitude=payload.longitude,
            accuracy=payload.accuracy,
            timestamp=payload.timestamp,
        )
    )
    return state_to_response(session.snapshot())


@router.post("/{session_id}/location/error", response_model=SessionResponse)
async def push_location_error(session_id: str, payload: LocationErrorPush):
    session = _get_session(session_id)
    failure = _failure_from_code(payload.code)
    session.source.push_error(LocationError(payload.message or "", failure=failure))
    return state_to_response(session.snapshot())


@router.post("/{session_id}/location/refresh", response_model=SessionResponse)
async def refresh_location(session_id: str):
    """Retry GPS; the next pushed fix (or a timeout) resolves it."""
    session = _get_session(session_id)
    session.refresh_location()
    return state_to_response(session.snapshot())


@router.post("/{session_id}/location/manual", response_model=SessionResponse)
async def manual_location(session_id: str, payload: ManualLookupRequest):
    session = _get_session(session_id)
    await session.lookup_location(payload.query)
    return state_to_response(session.snapshot())


@router.get("/{session_id}/recommendations", response_model=Optional[ResultSetResponse])
async def get_recommendations(session_id: str, wait: bool = False):
    """Current result set; with wait=true, block until the active cycle publishes."""
    session = _get_session(session_id)
    if wait:
        await session.wait_for_results()
    return result_set_to_response(session.result_set)
