# utils/json_utils.py
"""JSON helpers shared by the coordination layer.

Fingerprints and memory estimates both depend on a canonical serialization, so the
rules live in one place.
"""

from __future__ import annotations

import json
from typing import Any


def stable_serialize(params: Any) -> str:
    """Serialize request parameters into a deterministic string.

    Strings pass through unchanged so `"issues:123"` style fingerprints stay readable.
    Everything else is rendered as compact JSON with sorted keys; values JSON cannot
    express natively fall back to `str()`.
    """
    if isinstance(params, str):
        return params
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


def estimate_json_size(value: Any) -> int:
    """Return the length of the JSON rendering of `value` (0 if it cannot be rendered)."""
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return 0


def truncate_for_log(s: str, limit: int = 300) -> str:
    """Return a truncated string for logging purposes."""
    if not isinstance(s, str):
        return ""
    return s if len(s) <= limit else s[:limit] + "..."
