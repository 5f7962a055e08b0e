"""
SQLite-backed session cache: last known location and mood/radius selection
for warm restarts. Entries are scoped to a session id, expire after a TTL and
are cleared when the session ends.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from typing import Any, Optional

from settings import settings

logger = logging.getLogger(__name__)

LAST_LOCATION_KEY = "moodmap:lastLocation"
LAST_MOOD_KEY = "moodmap:lastMood"
LAST_RADIUS_KEY = "moodmap:lastRadius"


class SessionCacheStore:
    def __init__(self, db_path: Optional[str] = None, default_ttl_seconds: Optional[int] = None):
        self.db_path = db_path or settings.SESSION_CACHE_PATH
        self.default_ttl_seconds = (
            default_ttl_seconds if default_ttl_seconds is not None else settings.SESSION_CACHE_TTL_SECONDS
        )
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS session_cache (
                    session_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value_json TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    ttl_seconds INTEGER NOT NULL,
                    PRIMARY KEY (session_id, key)
                )
                """
            )
            self._conn.commit()

    def get(self, session_id: str, key: str, default: Any = None) -> Any:
        """Return the cached value, or `default` if missing, expired or unreadable."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value_json, created_at, ttl_seconds FROM session_cache WHERE session_id=? AND key=?",
                    (session_id, key),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Session cache read failed for %s/%s: %s", session_id, key, exc)
            return default
        if not row:
            return default
        value_json, created_at, ttl_seconds = row
        if ttl_seconds > 0 and (time.time() - created_at) > ttl_seconds:
            logger.debug("Session cache expired %s/%s", session_id, key)
            return default
        try:
            return json.loads(value_json)
        except ValueError:
            logger.warning("Session cache entry %s/%s is not valid JSON", session_id, key)
            return default

    def set(self, session_id: str, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        try:
            payload = json.dumps(value)
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO session_cache (session_id, key, value_json, created_at, ttl_seconds)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (session_id, key, payload, int(time.time()), ttl),
                )
                self._conn.commit()
        except (TypeError, ValueError, sqlite3.Error) as exc:
            logger.warning("Session cache write failed for %s/%s: %s", session_id, key, exc)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM session_cache WHERE session_id=?", (session_id,))
            self._conn.commit()

    def scoped(self, session_id: str) -> "SessionCache":
        return SessionCache(self, session_id)


class SessionCache:
    """Key/value view of the store bound to one session."""

    def __init__(self, store: SessionCacheStore, session_id: str):
        self.store = store
        self.session_id = session_id

    def get(self, key: str, default: Any = None) -> Any:
        return self.store.get(self.session_id, key, default)

    def set(self, key: str, value: Any) -> None:
        self.store.set(self.session_id, key, value)

    def clear(self) -> None:
        self.store.clear(self.session_id)


_default_session_cache_store: Optional[SessionCacheStore] = None


def get_default_session_cache_store() -> SessionCacheStore:
    global _default_session_cache_store
    if _default_session_cache_store is None:
        _default_session_cache_store = SessionCacheStore()
    return _default_session_cache_store
