"""
Error taxonomy for location acquisition and place search.

Nothing here is fatal: search failures degrade the result set and location
failures become status text with a retry path.
"""
from typing import Optional

from domain.models import LocationFailure


class MoodMapError(Exception):
    """Base class for recoverable recommender errors."""


class LocationError(MoodMapError):
    """A location source or manual lookup could not produce a reading."""

    failure: LocationFailure = LocationFailure.POSITION_UNAVAILABLE

    def __init__(self, message: str = "", failure: Optional[LocationFailure] = None):
        if failure is not None:
            self.failure = failure
        self.detail = message or None
        super().__init__(message or self.failure.value)


class LocationUnavailable(LocationError):
    """Permission denied, no fix available, or geolocation unsupported."""


class LocationTimeout(LocationError):
    failure = LocationFailure.TIMEOUT


class ManualLookupNoMatch(LocationError):
    failure = LocationFailure.MANUAL_NO_MATCH


class TransportError(MoodMapError):
    """Network failure or non-2xx response from the geocoding service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedRecord(MoodMapError):
    """A single search hit that cannot be turned into a place. Always dropped."""
