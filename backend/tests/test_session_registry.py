import asyncio

from api import database
from api.database import SessionRegistry
from domain.models import Coordinate, Mood, Place, PositionFix
from services.geo import distance_km
from services.session_cache_sqlite import LAST_LOCATION_KEY, SessionCacheStore


class StubClient:
    def search(self, request, reason=""):
        point = Coordinate(request.center.lat + 0.001, request.center.lng)
        yield Place(
            id=f"{request.term}-1",
            name=request.term,
            position=point,
            distance_km=distance_km(request.center, point),
            reason=reason,
        )


def _registry(tmp_path, idle_ttl_seconds=60):
    return SessionRegistry(
        client_factory=StubClient,
        cache_store=SessionCacheStore(str(tmp_path / "cache.sqlite")),
        use_cache=True,
        idle_ttl_seconds=idle_ttl_seconds,
    )


def test_create_returns_existing_session(tmp_path):
    registry = _registry(tmp_path)
    first = registry.create("abc", mood="Sad")
    assert registry.create("abc") is first
    assert registry.get("abc") is first
    assert registry.close("abc") is True
    assert registry.get("abc") is None


def test_idle_session_is_evicted_and_warm_restarts(tmp_path, monkeypatch):
    registry = _registry(tmp_path)
    now = [database.time.time()]
    monkeypatch.setattr(database.time, "time", lambda: now[0])

    async def first_visit():
        session = registry.create("abc", mood="Angry")
        session.open()
        session.source.push(PositionFix(48.8566, 2.3522, accuracy=20))
        await session.wait_for_results()
        return session

    async def return_visit():
        # an hour later the idle session has been dropped from memory
        now[0] += 3600
        assert registry.get("abc") is None
        assert "abc" not in registry.sessions_db
        session = registry.create("abc")
        session.open()
        result = await session.wait_for_results()
        session.close()
        return session, result

    old = asyncio.run(first_visit())
    session, result = asyncio.run(return_visit())

    assert session is not old
    assert session.mood == Mood.ANGRY
    assert session.reading.position == Coordinate(48.8566, 2.3522)
    assert result.center == Coordinate(48.8566, 2.3522)
    assert old.source.watcher_count == 0


def test_recently_used_session_is_kept(tmp_path, monkeypatch):
    registry = _registry(tmp_path)
    now = [database.time.time()]
    monkeypatch.setattr(database.time, "time", lambda: now[0])

    session = registry.create("abc")
    now[0] += 40
    assert registry.get("abc") is session
    now[0] += 40
    # last access was 40 s ago, inside the 60 s window
    assert registry.get("abc") is session
    assert registry.evict_idle() == 0


def test_eviction_keeps_cached_location(tmp_path, monkeypatch):
    registry = _registry(tmp_path)
    now = [database.time.time()]
    monkeypatch.setattr(database.time, "time", lambda: now[0])

    async def visit():
        session = registry.create("abc")
        session.open()
        session.source.push(PositionFix(1.0, 2.0, accuracy=10))
        await session.wait_for_results()

    asyncio.run(visit())
    now[0] += 120
    assert registry.evict_idle() == 1
    assert registry.cache_store.get("abc", LAST_LOCATION_KEY)["lat"] == 1.0
