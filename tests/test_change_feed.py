from core.change_feed import ChangeFeedBridge, ChangeFeedSource, InMemoryChangeFeed
from core.defaults import DEFAULT_CHANGE_FEED_RULES
from models.coordination_models import ChangeEvent


def _bridge() -> tuple[InMemoryChangeFeed, ChangeFeedBridge, list[tuple[str, dict]]]:
    feed = InMemoryChangeFeed()
    fired: list[tuple[str, dict]] = []
    bridge = ChangeFeedBridge(feed, DEFAULT_CHANGE_FEED_RULES, lambda trigger, record: fired.append((trigger, record)))
    bridge.start()
    return feed, bridge, fired


def test_in_memory_feed_satisfies_the_source_protocol() -> None:
    assert isinstance(InMemoryChangeFeed(), ChangeFeedSource)


def test_published_issue_insert_maps_to_issue_published() -> None:
    feed, _, fired = _bridge()

    feed.emit("issues", {"eventType": "INSERT", "new": {"id": 1, "published": True}})

    assert fired == [("issue-published", {"id": 1, "published": True})]


def test_draft_issue_insert_fires_nothing() -> None:
    feed, _, fired = _bridge()

    feed.emit("issues", {"eventType": "INSERT", "new": {"id": 2, "published": False}})

    assert fired == []


def test_updates_and_comment_events_map_to_their_triggers() -> None:
    feed, _, fired = _bridge()

    feed.emit("issues", {"type": "update", "record": {"id": 1}})
    feed.emit("comments", {"eventType": "INSERT", "new": {"id": 9}})
    feed.emit("comments", {"eventType": "UPDATE", "new": {"id": 9}})

    assert [trigger for trigger, _ in fired] == ["issue-updated", "comment-created", "comment-updated"]


def test_unmapped_and_malformed_events_are_ignored() -> None:
    feed, bridge, fired = _bridge()

    feed.emit("issues", {"eventType": "DELETE", "old": {"id": 1}})
    feed.emit("issues", {"eventType": "TRUNCATE"})
    feed.emit("users", {"eventType": "INSERT", "new": {"id": 3}})

    assert fired == []
    stats = bridge.get_stats()
    assert stats["events_received"] == 2
    assert stats["malformed_payloads"] == 1


def test_stop_unsubscribes_every_table() -> None:
    feed, bridge, fired = _bridge()

    bridge.stop()
    feed.emit("issues", {"eventType": "UPDATE", "new": {"id": 1}})

    assert fired == []
    assert feed.subscriber_count() == 0
    assert bridge.running is False


def test_start_is_idempotent() -> None:
    feed, bridge, _ = _bridge()

    bridge.start()

    assert feed.subscriber_count() == 2


def test_delete_event_carries_the_old_row() -> None:
    event = ChangeEvent.from_payload("issues", {"eventType": "DELETE", "new": {}, "old": {"id": 4}})

    assert event.type == "delete"
    assert event.record == {"id": 4}
