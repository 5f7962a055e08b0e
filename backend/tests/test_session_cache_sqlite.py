"""
Tests for the session-scoped cache.
"""
import tempfile
import shutil
from pathlib import Path

from services import session_cache_sqlite as scs
from services.session_cache_sqlite import SessionCacheStore


class TestSessionCacheStore:
    """Test the SessionCacheStore."""

    def setup_method(self):
        """Create a temporary database for each test."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = str(Path(self.temp_dir) / "test_session_cache.sqlite")

    def teardown_method(self):
        """Clean up the temporary database."""
        if Path(self.temp_dir).exists():
            shutil.rmtree(self.temp_dir)

    def test_set_and_get_json_values(self):
        store = SessionCacheStore(self.db_path)
        store.set("s1", scs.LAST_LOCATION_KEY, {"lat": 1.5, "lng": 2.5, "accuracy": None})
        store.set("s1", scs.LAST_MOOD_KEY, "Happy")

        assert store.get("s1", scs.LAST_LOCATION_KEY) == {"lat": 1.5, "lng": 2.5, "accuracy": None}
        assert store.get("s1", scs.LAST_MOOD_KEY) == "Happy"
        assert store.get("s1", "missing", default="x") == "x"

    def test_values_survive_reopen(self):
        SessionCacheStore(self.db_path).set("s1", scs.LAST_RADIUS_KEY, 4.0)
        assert SessionCacheStore(self.db_path).get("s1", scs.LAST_RADIUS_KEY) == 4.0

    def test_overwrite_replaces_value(self):
        store = SessionCacheStore(self.db_path)
        store.set("s1", scs.LAST_MOOD_KEY, "Sad")
        store.set("s1", scs.LAST_MOOD_KEY, "Calm")
        assert store.get("s1", scs.LAST_MOOD_KEY) == "Calm"

    def test_clear_only_touches_one_session(self):
        store = SessionCacheStore(self.db_path)
        store.set("s1", scs.LAST_MOOD_KEY, "Sad")
        store.set("s2", scs.LAST_MOOD_KEY, "Angry")

        store.scoped("s1").clear()

        assert store.get("s1", scs.LAST_MOOD_KEY) is None
        assert store.get("s2", scs.LAST_MOOD_KEY) == "Angry"

    def test_expired_entries_are_ignored(self, monkeypatch):
        store = SessionCacheStore(self.db_path, default_ttl_seconds=60)
        store.set("s1", scs.LAST_MOOD_KEY, "Happy")
        later = scs.time.time() + 120
        monkeypatch.setattr(scs.time, "time", lambda: later)
        assert store.get("s1", scs.LAST_MOOD_KEY) is None

    def test_unserializable_value_is_not_stored(self):
        store = SessionCacheStore(self.db_path)
        store.set("s1", "bad", object())
        assert store.get("s1", "bad") is None
