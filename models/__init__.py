"""Export the coordination layer's model types."""

from .coordination_models import (
    BehaviorPattern,
    ChangeEvent,
    ChangeFeedRule,
    ChangeType,
    InvalidationStrategy,
    PrefetchRule,
    QueryKey,
)

__all__ = [
    "BehaviorPattern",
    "ChangeEvent",
    "ChangeFeedRule",
    "ChangeType",
    "InvalidationStrategy",
    "PrefetchRule",
    "QueryKey",
]
