# core/change_feed.py
"""Turn table-level change notifications into invalidation triggers.

A `ChangeFeedSource` delivers raw payloads per table. `ChangeFeedBridge` subscribes to
every table its rules mention, normalises each payload into a `ChangeEvent` and reports
the trigger of every matching `ChangeFeedRule` to its `on_trigger` callback.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from functools import partial
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import ValidationError

from models.coordination_models import ChangeEvent, ChangeFeedRule
from utils.json_utils import truncate_for_log

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[Mapping[str, Any]], None]
Unsubscribe = Callable[[], None]
TriggerHandler = Callable[[str, dict[str, Any]], None]


@runtime_checkable
class ChangeFeedSource(Protocol):
    def subscribe(self, table: str, callback: ChangeCallback) -> Unsubscribe:
        """Deliver payloads for `table` to `callback` until the returned function is called."""
        ...


class InMemoryChangeFeed:
    """In-process change feed. `emit` delivers synchronously to current subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)

    def subscribe(self, table: str, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers[table].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(table, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, table: str, payload: Mapping[str, Any]) -> int:
        """Deliver `payload` to subscribers of `table`. Returns how many received it."""
        callbacks = list(self._subscribers.get(table, []))
        for callback in callbacks:
            callback(payload)
        return len(callbacks)

    def subscriber_count(self, table: str | None = None) -> int:
        if table is not None:
            return len(self._subscribers.get(table, []))
        return sum(len(callbacks) for callbacks in self._subscribers.values())


class ChangeFeedBridge:
    """Map change-feed payloads to trigger names."""

    def __init__(self, source: ChangeFeedSource, rules: Sequence[ChangeFeedRule], on_trigger: TriggerHandler) -> None:
        self._source = source
        self._rules = list(rules)
        self._on_trigger = on_trigger
        self._unsubscribers: list[Unsubscribe] = []
        self._stats = {"events_received": 0, "triggers_fired": 0, "malformed_payloads": 0}

    @property
    def running(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> None:
        if self._unsubscribers:
            return
        tables = sorted({rule.table for rule in self._rules})
        for table in tables:
            self._unsubscribers.append(self._source.subscribe(table, partial(self._handle, table)))
        logger.info("Change feed subscribed", tables=tables)

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        if self._unsubscribers:
            logger.info("Change feed unsubscribed", subscriptions=len(self._unsubscribers))
        self._unsubscribers = []

    def _handle(self, table: str, payload: Mapping[str, Any]) -> None:
        self._stats["events_received"] += 1
        try:
            event = ChangeEvent.from_payload(table, payload)
        except (ValidationError, TypeError, ValueError) as exc:
            self._stats["malformed_payloads"] += 1
            logger.warning("Ignoring malformed change-feed payload", table=table, error=truncate_for_log(str(exc)))
            return

        for rule in self._rules:
            if rule.matches(event):
                self._stats["triggers_fired"] += 1
                logger.debug("Change feed trigger", table=table, event_type=event.type, trigger=rule.trigger)
                self._on_trigger(rule.trigger, event.record)

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "running": self.running}
