"""
Core domain models for the mood-based place recommender.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import math


class Mood(str, Enum):
    """Moods a user can pick from."""
    HAPPY = "Happy"
    SAD = "Sad"
    ANGRY = "Angry"
    CALM = "Calm"


class AccuracyTier(str, Enum):
    """Human-facing confidence buckets for a GPS fix."""
    PRECISE = "precise"
    APPROXIMATE = "approximate"
    ROUGH = "rough"
    UNKNOWN = "unknown"


class CycleState(str, Enum):
    """
    Progress of one recommendation cycle.

    Idle -> Searching -> Filtering -> Done, or
    Idle -> Searching -> Empty -> Fallback -> Done.
    """
    IDLE = "idle"
    SEARCHING = "searching"
    FILTERING = "filtering"
    EMPTY = "empty"
    FALLBACK = "fallback"
    DONE = "done"


class LocationState(str, Enum):
    """State of location acquisition for a session."""
    AWAITING_PERMISSION = "awaiting_permission"
    WATCHING = "watching"
    REFINING = "refining"
    MANUAL_LOOKUP_PENDING = "manual_lookup_pending"
    MANUAL_RESOLVED = "manual_resolved"
    ERROR = "error"


class LocationFailure(str, Enum):
    """Reasons location acquisition can fail. None of them are fatal."""
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"
    MANUAL_NO_MATCH = "manual_no_match"
    MANUAL_TRANSPORT_ERROR = "manual_transport_error"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    @property
    def is_valid(self) -> bool:
        """True when both components are finite and inside the WGS84 range."""
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )

    def rounded_key(self, decimals: int = 4) -> str:
        """Key used to treat nearby coordinates as the same spot (~11 m at 4 decimals)."""
        return f"{self.lat:.{decimals}f},{self.lng:.{decimals}f}"

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True)
class PositionFix:
    """Raw payload delivered by a geolocation source."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class LocationReading:
    """
    A resolved location with optional accuracy (meters).

    Manual lookups never carry an accuracy value.
    """
    position: Coordinate
    accuracy_m: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    manual: bool = False

    def __post_init__(self) -> None:
        if self.accuracy_m is not None and self.accuracy_m < 0:
            raise ValueError(f"accuracy must be non-negative, got {self.accuracy_m}")

    def same_fix(self, other: Optional["LocationReading"]) -> bool:
        """True when lat, lng and accuracy all match `other`."""
        if other is None:
            return False
        return (
            self.position.lat == other.position.lat
            and self.position.lng == other.position.lng
            and self.accuracy_m == other.accuracy_m
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.position.lat,
            "lng": self.position.lng,
            "accuracy": self.accuracy_m,
            "timestamp": self.timestamp.isoformat(),
            "manual": self.manual,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocationReading":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        accuracy = data.get("accuracy")
        return cls(
            position=Coordinate(lat=float(data["lat"]), lng=float(data["lng"])),
            accuracy_m=float(accuracy) if accuracy is not None else None,
            timestamp=timestamp or datetime.utcnow(),
            manual=bool(data.get("manual", False)),
        )


@dataclass(frozen=True)
class MoodProfile:
    """Search terms and copy for one mood."""
    mood: Mood
    keywords: Tuple[str, ...]
    reason: str
    description: str = ""


@dataclass(frozen=True)
class Place:
    """
    A recommended point of interest.

    `id` is stable within a session: the provider's place id when available,
    otherwise the rounded coordinate key.
    """
    id: str
    name: str
    position: Coordinate
    distance_km: float
    reason: str
    is_fallback: bool = False
    description: Optional[str] = None  # full provider display name
    term: Optional[str] = None  # keyword that produced the hit


@dataclass(frozen=True)
class ResultSet:
    """
    Places published by one recommendation cycle.

    Always either all real places or all fallback places.
    """
    places: Tuple[Place, ...]
    center: Coordinate
    mood: Mood
    radius_km: float
    max_distance_km: float
    generated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_fallback(self) -> bool:
        return bool(self.places) and all(p.is_fallback for p in self.places)

    def __len__(self) -> int:
        return len(self.places)


@dataclass(frozen=True)
class AppState:
    """Read-only snapshot of a session handed to the presentation layer."""
    session_id: str
    mood: Mood
    radius_km: float
    reading: Optional[LocationReading]
    location_state: LocationState
    location_failure: Optional[LocationFailure]
    status_message: str
    accuracy_tier: AccuracyTier
    accuracy_label: Optional[str]
    accuracy_note: Optional[str]
    max_distance_km: float
    cycle_state: CycleState
    result_set: Optional[ResultSet] = None
