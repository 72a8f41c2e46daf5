# models/coordination_models.py
"""Define the serializable records exchanged by the coordination layer.

These models cover data that either crosses a persistence boundary (behaviour history),
is configured statically (invalidation strategies, change-feed rules, route query tables)
or is derived and handed to callers for introspection (prefetch rules).

Notes:
- Internal bookkeeping records (cache entries, pending requests, rate-limit windows,
  batch requests) are plain dataclasses owned by the component that manages them.
- All durations are milliseconds.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.json_utils import stable_serialize

ChangeType = Literal["insert", "update", "delete"]


class QueryKey(BaseModel):
    """Identify one fetchable piece of data: a registered resource plus its params."""

    model_config = ConfigDict(frozen=True)

    resource: str
    params: Any = None

    @property
    def fingerprint(self) -> str:
        """Cache/deduplication key, `resource:stable(params)`."""
        return f"{self.resource}:{stable_serialize(self.params)}"


class BehaviorPattern(BaseModel):
    """One completed visit to a route."""

    route: str
    timestamp: float
    duration_ms: float = Field(ge=0)
    interactions: list[str] = Field(default_factory=list)


class PrefetchRule(BaseModel):
    """A derived route-transition rule. Rules are replaced wholesale, never edited."""

    model_config = ConfigDict(frozen=True)

    trigger_route: str
    target_route: str
    target_queries: tuple[QueryKey, ...]
    probability: float = Field(gt=0.0, le=1.0)
    priority: int = Field(ge=0)


class InvalidationStrategy(BaseModel):
    """Map domain trigger names to the cache-key patterns they make stale."""

    triggers: list[str]
    affected_query_patterns: list[str]
    immediate: bool = False
    batch_delay_ms: int = Field(default=1000, ge=0)


class ChangeEvent(BaseModel):
    """A normalised change-feed notification."""

    table: str
    type: ChangeType
    record: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @classmethod
    def from_payload(cls, table: str, payload: Mapping[str, Any]) -> ChangeEvent:
        """Build an event from a transport payload.

        Accepts both the normalised shape (`{"type": ..., "record": ...}`) and the
        Postgres-changes shape (`{"eventType": "INSERT", "new": {...}, "old": {...}}`).
        Deletes carry the old row as their record.
        """
        event_type = payload.get("type") or payload.get("eventType")
        record = payload.get("record")
        if record is None:
            record = payload.get("new") or payload.get("old") or {}
        return cls(table=table, type=event_type, record=dict(record))


class ChangeFeedRule(BaseModel):
    """Map a change-feed event on a table to a trigger name.

    When `require_field` is set the rule only fires if that field of the record is truthy
    (for example, only published issues count as `issue-published`).
    """

    table: str
    event_type: ChangeType
    trigger: str
    require_field: str | None = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type != self.event_type:
            return False
        if self.require_field is not None and not event.record.get(self.require_field):
            return False
        return True
