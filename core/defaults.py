# core/defaults.py
"""Static domain configuration for the review-journal client.

Cache keys are `resource:params` fingerprints, so an invalidation pattern such as
`archive-rpc` matches every cached page of the archive listing.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from models.coordination_models import ChangeFeedRule, InvalidationStrategy, QueryKey

ARCHIVE_PAGE_SIZE = 20
RELATED_ISSUES_LIMIT = 5

DEFAULT_INVALIDATION_STRATEGIES: tuple[InvalidationStrategy, ...] = (
    InvalidationStrategy(
        triggers=["issue-published", "issue-updated"],
        affected_query_patterns=["archive-rpc", "sidebar-stats", "featured-issue"],
        immediate=True,
    ),
    InvalidationStrategy(
        triggers=["comment-created", "comment-updated"],
        affected_query_patterns=["review-consolidated", "sidebar-stats"],
        immediate=False,
        batch_delay_ms=2000,
    ),
    InvalidationStrategy(
        triggers=["post-created", "post-voted"],
        affected_query_patterns=["posts-list", "sidebar-stats", "top-threads"],
        immediate=False,
        batch_delay_ms=1000,
    ),
    InvalidationStrategy(
        triggers=["user-login", "user-logout"],
        affected_query_patterns=["user-permissions", "user-reactions", "sidebar-stats"],
        immediate=True,
    ),
)

DEFAULT_CHANGE_FEED_RULES: tuple[ChangeFeedRule, ...] = (
    # Drafts are invisible to readers; only published inserts matter.
    ChangeFeedRule(table="issues", event_type="insert", trigger="issue-published", require_field="published"),
    ChangeFeedRule(table="issues", event_type="update", trigger="issue-updated"),
    ChangeFeedRule(table="comments", event_type="insert", trigger="comment-created"),
    ChangeFeedRule(table="comments", event_type="update", trigger="comment-updated"),
)

_HOMEPAGE_QUERIES = (
    QueryKey(resource="issues", params={"featured": True, "limit": 3}),
    QueryKey(resource="archive-preview"),
)

DEFAULT_ROUTE_QUERIES: dict[str, tuple[QueryKey, ...]] = {
    "/": _HOMEPAGE_QUERIES,
    "/homepage": _HOMEPAGE_QUERIES,
    "/archive": (QueryKey(resource="archive-rpc", params={"offset": 0, "limit": ARCHIVE_PAGE_SIZE}),),
    "/community": (QueryKey(resource="posts", params="trending"),),
}


def warm_issue_view(payload: Mapping[str, Any]) -> list[QueryKey]:
    """Related issues of the same specialty."""
    specialty = payload.get("specialty")
    if not specialty:
        return []
    return [QueryKey(resource="issues", params={"specialty": specialty, "limit": RELATED_ISSUES_LIMIT})]


def warm_archive_navigation(payload: Mapping[str, Any]) -> list[QueryKey]:
    """The next archive page."""
    next_page = payload.get("next_page")
    if not next_page:
        return []
    return [
        QueryKey(
            resource="archive-rpc",
            params={"offset": int(next_page) * ARCHIVE_PAGE_SIZE, "limit": ARCHIVE_PAGE_SIZE},
        )
    ]


DEFAULT_WARMERS = {
    "issue-view": warm_issue_view,
    "archive-navigation": warm_archive_navigation,
}
