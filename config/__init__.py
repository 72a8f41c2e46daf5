"""Expose coordination-layer configuration as stable module-level constants.

This package provides a facade over the underlying Pydantic settings model defined in
[`config.settings`](config/settings.py:1). The primary API is the `settings` singleton plus
a set of module-level constants mirroring the tuning knobs.

Configuration precedence and lifecycle:
- On initial import, configuration is loaded by importing [`config.settings`](config/settings.py:1),
  which constructs the `settings` singleton.
- Values come from the process environment and may be sourced from a `.env` file.
- [`reload()`](config/__init__.py:60) re-reads `.env` with override enabled, then replaces this
  module's exported values (see [`config.loader.reload_settings()`](config/loader.py:30)).

Notes:
    Components never read these globals at call time; they receive their knobs when they
    are constructed, so tests can build independent instances with their own values.
"""

from typing import Any

from .settings import (
    CoordinatorSettings as CoordinatorSettings,
)
from .settings import (
    rich_formatter as rich_formatter,
)
from .settings import (
    settings as settings,
)
from .settings import (
    simple_formatter as simple_formatter,
)

CACHE_MAX_SIZE = settings.CACHE_MAX_SIZE
CACHE_TTL_MS = settings.CACHE_TTL_MS
CACHE_PATTERN_MATCH = settings.CACHE_PATTERN_MATCH
DEDUP_MAX_AGE_MS = settings.DEDUP_MAX_AGE_MS
CASCADE_THRESHOLD = settings.CASCADE_THRESHOLD
CASCADE_WINDOW_MS = settings.CASCADE_WINDOW_MS
REQUEST_TIMING_WINDOW_MS = settings.REQUEST_TIMING_WINDOW_MS
BATCH_DELAY_MS = settings.BATCH_DELAY_MS
BATCH_MAX_DELAY_MS = settings.BATCH_MAX_DELAY_MS
RATE_LIMIT_MAX_REQUESTS = settings.RATE_LIMIT_MAX_REQUESTS
RATE_LIMIT_WINDOW_MS = settings.RATE_LIMIT_WINDOW_MS
MAX_STORED_PATTERNS = settings.MAX_STORED_PATTERNS
MIN_DWELL_MS = settings.MIN_DWELL_MS
BEHAVIOR_STORAGE_KEY = settings.BEHAVIOR_STORAGE_KEY
BEHAVIOR_STORE_DIR = settings.BEHAVIOR_STORE_DIR
PREFETCH_MIN_SAMPLES = settings.PREFETCH_MIN_SAMPLES
PREFETCH_PROBABILITY_THRESHOLD = settings.PREFETCH_PROBABILITY_THRESHOLD
PREFETCH_PRIORITY_SCALE = settings.PREFETCH_PRIORITY_SCALE
PREFETCH_PRIORITY_THRESHOLD = settings.PREFETCH_PRIORITY_THRESHOLD
PREFETCH_MAX_REGENERATIONS = settings.PREFETCH_MAX_REGENERATIONS
PREFETCH_REGENERATION_INTERVAL = settings.PREFETCH_REGENERATION_INTERVAL
BACKGROUND_MAX_CONCURRENCY = settings.BACKGROUND_MAX_CONCURRENCY
BACKGROUND_MAX_PENDING = settings.BACKGROUND_MAX_PENDING
HTTP_BASE_URL = settings.HTTP_BASE_URL
HTTPX_TIMEOUT = settings.HTTPX_TIMEOUT
HTTP_RETRY_ATTEMPTS = settings.HTTP_RETRY_ATTEMPTS
HTTP_RETRY_DELAY_SECONDS = settings.HTTP_RETRY_DELAY_SECONDS
HTTP_MAX_CONCURRENCY = settings.HTTP_MAX_CONCURRENCY
LOG_LEVEL_STR = settings.LOG_LEVEL_STR
LOG_DATE_FORMAT = settings.LOG_DATE_FORMAT
LOG_FILE = settings.LOG_FILE
ENABLE_RICH_LOGGING = settings.ENABLE_RICH_LOGGING


def get(key: str) -> Any:
    """Return the value of a configuration attribute from `settings`.

    Raises:
        AttributeError: If `key` is not a valid attribute on `settings`.
    """
    return getattr(settings, key)


def reload() -> bool:
    """Reload configuration from the environment. Returns True on success."""
    from .loader import reload_settings

    return reload_settings()
