import asyncio
import math

import pytest

from domain.errors import LocationError, ManualLookupNoMatch, TransportError
from domain.models import (
    AccuracyTier,
    Coordinate,
    LocationFailure,
    LocationReading,
    LocationState,
    PositionFix,
)
from services.location import (
    FAILURE_MESSAGES,
    LocationTracker,
    PushLocationSource,
    accuracy_label,
    accuracy_note,
    classify_accuracy,
    reading_from_fix,
)
from services.session_cache_sqlite import LAST_LOCATION_KEY, SessionCacheStore


def test_classify_accuracy_tiers():
    assert classify_accuracy(None) == AccuracyTier.UNKNOWN
    assert classify_accuracy(math.nan) == AccuracyTier.UNKNOWN
    assert classify_accuracy(12) == AccuracyTier.PRECISE
    assert classify_accuracy(50) == AccuracyTier.PRECISE
    assert classify_accuracy(50.5) == AccuracyTier.APPROXIMATE
    assert classify_accuracy(150) == AccuracyTier.APPROXIMATE
    assert classify_accuracy(151) == AccuracyTier.ROUGH


def test_accuracy_label_and_note():
    precise = LocationReading(Coordinate(1.0, 1.0), accuracy_m=0.2)
    assert accuracy_label(precise) == "±1 m"
    assert accuracy_note(precise, 20) is None

    approximate = LocationReading(Coordinate(1.0, 1.0), accuracy_m=120)
    assert accuracy_note(approximate, 20) == "Location within roughly ±150 meters."

    rough = LocationReading(Coordinate(1.0, 1.0), accuracy_m=4000)
    assert "~32 km" in accuracy_note(rough, 32.0)

    manual = LocationReading(Coordinate(1.0, 1.0), manual=True)
    assert accuracy_label(manual) is None
    assert "manual spot" in accuracy_note(manual, 35)


def test_reading_from_fix_drops_unusable_accuracy():
    assert reading_from_fix(PositionFix(1.0, 2.0, accuracy=-3)).accuracy_m is None
    assert reading_from_fix(PositionFix(1.0, 2.0, accuracy=math.inf)).accuracy_m is None
    assert reading_from_fix(PositionFix(1.0, 2.0, accuracy=8)).accuracy_m == 8.0


def test_reading_from_fix_rejects_bad_coordinates():
    with pytest.raises(LocationError) as excinfo:
        reading_from_fix(PositionFix(math.nan, 2.0))
    assert excinfo.value.failure == LocationFailure.POSITION_UNAVAILABLE


def test_negative_accuracy_is_rejected_by_reading():
    with pytest.raises(ValueError):
        LocationReading(Coordinate(0.0, 0.0), accuracy_m=-1.0)


def test_handle_position_only_reports_real_changes():
    changes = []
    tracker = LocationTracker(None, on_change=changes.append)

    assert tracker.handle_position(PositionFix(40.0, -74.0, accuracy=30)) is True
    assert tracker.handle_position(PositionFix(40.0, -74.0, accuracy=30)) is False
    assert tracker.handle_position(PositionFix(40.0, -74.0, accuracy=20)) is True
    assert tracker.handle_position(PositionFix(40.0001, -74.0, accuracy=20)) is True

    assert len(changes) == 3
    assert tracker.state == LocationState.WATCHING
    assert tracker.accuracy_tier == AccuracyTier.PRECISE
    assert tracker.status_message == "Precise location locked (±50 m)."


def test_status_messages_follow_accuracy():
    tracker = LocationTracker(None)
    tracker.handle_position(PositionFix(1.0, 1.0, accuracy=None))
    assert tracker.status_message.startswith("Location found.")
    tracker.handle_position(PositionFix(1.0, 1.0, accuracy=99.6))
    assert tracker.status_message == "Approximate location (±100 m)."
    tracker.handle_position(PositionFix(1.0, 1.0, accuracy=900))
    assert tracker.status_message.startswith("Location is rough.")


def test_errors_keep_last_reading():
    tracker = LocationTracker(None)
    tracker.handle_position(PositionFix(1.0, 1.0, accuracy=10))
    tracker.handle_error(LocationError(failure=LocationFailure.PERMISSION_DENIED))

    assert tracker.state == LocationState.ERROR
    assert tracker.failure == LocationFailure.PERMISSION_DENIED
    assert tracker.status_message == FAILURE_MESSAGES[LocationFailure.PERMISSION_DENIED]
    assert tracker.reading.position == Coordinate(1.0, 1.0)

    tracker.handle_position(PositionFix(math.nan, 1.0))
    assert tracker.failure == LocationFailure.POSITION_UNAVAILABLE
    assert tracker.reading.position == Coordinate(1.0, 1.0)


def test_start_without_source_is_unsupported():
    tracker = LocationTracker(None)
    assert tracker.start() is None
    assert tracker.failure == LocationFailure.UNSUPPORTED


def test_watch_and_refresh_with_push_source():
    source = PushLocationSource()
    changes = []
    tracker = LocationTracker(source, on_change=changes.append)

    async def scenario():
        refresh = tracker.start()
        await asyncio.sleep(0)
        assert tracker.state == LocationState.REFINING
        source.push(PositionFix(48.85, 2.35, accuracy=40))
        reading = await refresh
        source.push(PositionFix(48.86, 2.35, accuracy=40))
        source.push_error(LocationError(failure=LocationFailure.POSITION_UNAVAILABLE))
        return reading

    reading = asyncio.run(scenario())
    assert reading.position == Coordinate(48.85, 2.35)
    assert len(changes) == 2
    assert tracker.failure == LocationFailure.POSITION_UNAVAILABLE
    assert tracker.reading.position == Coordinate(48.86, 2.35)

    tracker.stop()
    assert source.watcher_count == 0


def test_refresh_times_out():
    tracker = LocationTracker(PushLocationSource(), timeout_seconds=0.01)
    assert asyncio.run(tracker.refresh()) is None
    assert tracker.state == LocationState.ERROR
    assert tracker.failure == LocationFailure.TIMEOUT


def test_manual_lookup_resolves_without_accuracy():
    changes = []
    tracker = LocationTracker(
        None,
        lookup=lambda text: Coordinate(40.7829, -73.9654),
        on_change=changes.append,
    )
    reading = asyncio.run(tracker.lookup("Central Park"))

    assert reading.accuracy_m is None
    assert reading.manual is True
    assert tracker.state == LocationState.MANUAL_RESOLVED
    assert tracker.status_message == "Manual location applied."
    assert changes == [reading]


def test_manual_lookup_failures():
    def no_match(text):
        raise ManualLookupNoMatch("We could not find that place. Try a nearby city.")

    def offline(text):
        raise TransportError("Nominatim returned HTTP 503", status_code=503)

    tracker = LocationTracker(None, lookup=no_match)
    tracker.handle_position(PositionFix(1.0, 1.0, accuracy=10))
    assert asyncio.run(tracker.lookup("Atlantis")) is None
    assert tracker.failure == LocationFailure.MANUAL_NO_MATCH

    tracker.lookup_fn = offline
    assert asyncio.run(tracker.lookup("Chicago")) is None
    assert tracker.failure == LocationFailure.MANUAL_TRANSPORT_ERROR
    assert tracker.status_message == FAILURE_MESSAGES[LocationFailure.MANUAL_TRANSPORT_ERROR]
    assert tracker.reading.position == Coordinate(1.0, 1.0)


def test_last_reading_is_cached_and_restored(tmp_path):
    store = SessionCacheStore(str(tmp_path / "session.sqlite"))
    first = LocationTracker(None, cache=store.scoped("s1"))
    first.handle_position(PositionFix(35.68, 139.76, accuracy=25))
    assert store.get("s1", LAST_LOCATION_KEY)["lat"] == 35.68

    changes = []
    second = LocationTracker(None, cache=store.scoped("s1"), on_change=changes.append)
    restored = second.restore()
    assert restored.position == Coordinate(35.68, 139.76)
    assert restored.accuracy_m == 25

    # an identical fresh fix supersedes the cached one without a new cycle
    assert second.handle_position(PositionFix(35.68, 139.76, accuracy=25)) is False
    assert second.reading is not restored
    assert changes == []

    assert LocationTracker(None, cache=store.scoped("other")).restore() is None
