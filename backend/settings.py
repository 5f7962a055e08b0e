import os
from pathlib import Path

# Basic settings helper to read environment configuration.

BASE_DIR = Path(__file__).resolve().parent


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


class Settings:
    def __init__(self) -> None:
        # Nominatim
        self.NOMINATIM_SEARCH_URL: str = os.getenv(
            "NOMINATIM_SEARCH_URL", "https://nominatim.openstreetmap.org/search"
        )
        self.NOMINATIM_USER_AGENT: str | None = os.getenv("NOMINATIM_USER_AGENT")
        self.NOMINATIM_REFERER: str | None = os.getenv("NOMINATIM_REFERER")
        self.NOMINATIM_MIN_INTERVAL: float = _as_float(os.getenv("NOMINATIM_MIN_INTERVAL"), 1.1)
        self.NOMINATIM_TIMEOUT_SECONDS: float = _as_float(os.getenv("NOMINATIM_TIMEOUT_SECONDS"), 8.0)
        self.NOMINATIM_RESULT_LIMIT: int = _as_int(os.getenv("NOMINATIM_RESULT_LIMIT"), 20)

        # Recommendation cycle
        self.MAX_RESULTS: int = _as_int(os.getenv("MOODMAP_MAX_RESULTS"), 20)
        self.PRIMARY_RADIUS_KM: float = _as_float(os.getenv("MOODMAP_PRIMARY_RADIUS_KM"), 6.0)
        self.CITY_RADIUS_FACTOR: float = _as_float(os.getenv("MOODMAP_CITY_RADIUS_FACTOR"), 5.0)

        # Acceptance radius derived from GPS accuracy
        self.DEFAULT_DISTANCE_KM: float = _as_float(os.getenv("MOODMAP_DEFAULT_DISTANCE_KM"), 35.0)
        self.BASE_DISTANCE_KM: float = _as_float(os.getenv("MOODMAP_BASE_DISTANCE_KM"), 20.0)
        self.ACCURACY_DISTANCE_FACTOR: float = _as_float(
            os.getenv("MOODMAP_ACCURACY_DISTANCE_FACTOR"), 3.0
        )
        self.MIN_DISTANCE_KM: float = _as_float(os.getenv("MOODMAP_MIN_DISTANCE_KM"), 10.0)
        self.MAX_DISTANCE_KM: float = _as_float(os.getenv("MOODMAP_MAX_DISTANCE_KM"), 80.0)

        # Location acquisition
        self.PRECISE_ACCURACY_M: float = _as_float(os.getenv("MOODMAP_PRECISE_ACCURACY_M"), 50.0)
        self.APPROXIMATE_ACCURACY_M: float = _as_float(
            os.getenv("MOODMAP_APPROXIMATE_ACCURACY_M"), 150.0
        )
        self.LOCATION_TIMEOUT_SECONDS: float = _as_float(
            os.getenv("MOODMAP_LOCATION_TIMEOUT_SECONDS"), 12.0
        )
        self.DEFAULT_MOOD: str = os.getenv("MOODMAP_DEFAULT_MOOD", "Calm")

        # Session cache
        self.SESSION_CACHE_PATH: str = os.getenv(
            "SESSION_CACHE_PATH", str(BASE_DIR / "data" / "session_cache.sqlite")
        )
        self.SESSION_CACHE_TTL_SECONDS: int = _as_int(os.getenv("SESSION_CACHE_TTL_SECONDS"), 12 * 3600)
        self.SESSION_CACHE_ENABLED: bool = _as_bool(os.getenv("SESSION_CACHE_ENABLED"), True)

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
