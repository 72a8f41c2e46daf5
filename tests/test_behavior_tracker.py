from core.behavior_tracker import BehaviorTracker
from core.exceptions import StorageError
from core.kv_store import InMemoryKVStore


class BrokenStore:
    def load(self, key: str):
        raise StorageError("storage unavailable")

    def save(self, key: str, value) -> None:
        raise StorageError("storage unavailable")


class WriteOnlyFailingStore(InMemoryKVStore):
    def save(self, key: str, value) -> None:
        raise StorageError("quota exceeded")


def _visit(tracker: BehaviorTracker, fake_clock, routes: list[str], dwell_ms: float = 2000) -> None:
    for route in routes:
        tracker.on_route_change(route)
        fake_clock.advance(dwell_ms)


def test_visit_longer_than_min_dwell_is_recorded_with_interactions(fake_clock) -> None:
    tracker = BehaviorTracker(min_dwell_ms=1000)

    assert tracker.on_route_change("/archive") is None
    tracker.record_interaction("click", "issue-card")
    tracker.record_interaction("scroll")
    fake_clock.advance(1500)
    pattern = tracker.on_route_change("/issue/7")

    assert pattern is not None
    assert pattern.route == "/archive"
    assert pattern.duration_ms == 1500
    assert pattern.interactions == ["click:issue-card", "scroll"]
    assert tracker.current_route == "/issue/7"


def test_short_visits_are_not_recorded(fake_clock) -> None:
    tracker = BehaviorTracker(min_dwell_ms=1000)
    tracker.on_route_change("/a")
    fake_clock.advance(1000)

    assert tracker.on_route_change("/b") is None
    assert tracker.patterns == []


def test_same_route_does_not_close_the_visit(fake_clock) -> None:
    tracker = BehaviorTracker()
    tracker.on_route_change("/a")
    fake_clock.advance(600)
    assert tracker.on_route_change("/a") is None
    fake_clock.advance(600)

    pattern = tracker.on_route_change("/b")

    assert pattern is not None
    assert pattern.duration_ms == 1200


def test_history_keeps_only_the_newest_patterns(fake_clock) -> None:
    tracker = BehaviorTracker(max_stored_patterns=3)

    _visit(tracker, fake_clock, ["/1", "/2", "/3", "/4", "/5", "/6"])

    assert [p.route for p in tracker.patterns] == ["/3", "/4", "/5"]
    assert tracker.recorded_this_session == 5


def test_history_survives_across_sessions(fake_clock) -> None:
    store = InMemoryKVStore()
    first = BehaviorTracker(store)
    _visit(first, fake_clock, ["/a", "/b", "/c"])

    second = BehaviorTracker(store)

    assert [p.route for p in second.patterns] == ["/a", "/b"]
    assert second.recorded_this_session == 0


def test_malformed_stored_entries_are_skipped(fake_clock) -> None:
    store = InMemoryKVStore()
    store.save("behavior_patterns", [{"route": "/a", "timestamp": 1.0, "duration_ms": 2000}, {"bogus": True}])

    tracker = BehaviorTracker(store)

    assert [p.route for p in tracker.patterns] == ["/a"]


def test_unavailable_storage_falls_back_to_memory(fake_clock) -> None:
    tracker = BehaviorTracker(BrokenStore())

    assert tracker.persistence_enabled is False
    _visit(tracker, fake_clock, ["/a", "/b"])
    assert [p.route for p in tracker.patterns] == ["/a"]


def test_save_failure_disables_persistence_but_keeps_tracking(fake_clock) -> None:
    tracker = BehaviorTracker(WriteOnlyFailingStore())
    assert tracker.persistence_enabled is True

    _visit(tracker, fake_clock, ["/a", "/b", "/c"])

    assert tracker.persistence_enabled is False
    assert [p.route for p in tracker.patterns] == ["/a", "/b"]


def test_end_session_closes_the_current_visit(fake_clock) -> None:
    tracker = BehaviorTracker()
    tracker.on_route_change("/a")
    fake_clock.advance(3000)

    pattern = tracker.end_session()

    assert pattern is not None and pattern.route == "/a"
    assert tracker.current_route is None


def test_clear_drops_persisted_history(fake_clock) -> None:
    store = InMemoryKVStore()
    tracker = BehaviorTracker(store)
    _visit(tracker, fake_clock, ["/a", "/b"])

    tracker.clear()

    assert tracker.patterns == []
    assert store.load("behavior_patterns") == []
