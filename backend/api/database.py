"""
In-memory session registry.

Sessions live only as long as the process; their warm-restart state is kept in
the session cache, not here. Sessions idle for longer than the cache TTL are
closed without clearing that cache, so their id can still warm-start later.
"""
import logging
import time
import uuid
from typing import Callable, Dict, Optional

from services.location import PushLocationSource
from services.places_client import get_default_places_client
from services.recommender import SearchClient
from services.session import MoodMapSession
from services.session_cache_sqlite import SessionCacheStore, get_default_session_cache_store
from settings import settings

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        client_factory: Callable[[], SearchClient] = get_default_places_client,
        cache_store: Optional[SessionCacheStore] = None,
        lookup=None,
        use_cache: Optional[bool] = None,
        idle_ttl_seconds: Optional[float] = None,
    ):
        self.client_factory = client_factory
        self._cache_store = cache_store
        self.lookup = lookup
        self.use_cache = settings.SESSION_CACHE_ENABLED if use_cache is None else use_cache
        self.idle_ttl_seconds = (
            idle_ttl_seconds if idle_ttl_seconds is not None else settings.SESSION_CACHE_TTL_SECONDS
        )
        self.sessions_db: Dict[str, MoodMapSession] = {}
        self._last_access: Dict[str, float] = {}

    @property
    def cache_store(self) -> Optional[SessionCacheStore]:
        if not self.use_cache:
            return None
        if self._cache_store is None:
            self._cache_store = get_default_session_cache_store()
        return self._cache_store

    def evict_idle(self) -> int:
        """Close sessions not touched within the idle TTL; returns how many were closed."""
        if self.idle_ttl_seconds <= 0:
            return 0
        cutoff = time.time() - self.idle_ttl_seconds
        idle = [sid for sid, seen in self._last_access.items() if seen < cutoff]
        for session_id in idle:
            logger.info("Evicting idle session %s", session_id)
            self.close(session_id, clear_cache=False)
        return len(idle)

    def _touch(self, session_id: str) -> None:
        self._last_access[session_id] = time.time()

    def create(self, session_id: Optional[str] = None, mood=None, radius_km=None) -> MoodMapSession:
        """Create a session, warm-starting from the cache when `session_id` was seen before."""
        self.evict_idle()
        session_id = session_id or str(uuid.uuid4())
        existing = self.sessions_db.get(session_id)
        if existing is not None:
            self._touch(session_id)
            return existing
        store = self.cache_store
        session = MoodMapSession(
            session_id,
            self.client_factory(),
            source=PushLocationSource(),
            cache=store.scoped(session_id) if store is not None else None,
            lookup=self.lookup,
            mood=mood,
            radius_km=radius_km,
        )
        self.sessions_db[session_id] = session
        self._touch(session_id)
        logger.debug("Session %s created", session_id)
        return session

    def get(self, session_id: str) -> Optional[MoodMapSession]:
        self.evict_idle()
        session = self.sessions_db.get(session_id)
        if session is not None:
            self._touch(session_id)
        return session

    def close(self, session_id: str, clear_cache: bool = True) -> bool:
        self._last_access.pop(session_id, None)
        session = self.sessions_db.pop(session_id, None)
        if session is None:
            return False
        session.close(clear_cache=clear_cache)
        return True
