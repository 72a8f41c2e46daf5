"""
Configuration settings for the data-access coordination layer.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Literal

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class CoordinatorSettings(BaseSettings):
    """Full configuration for the coordination layer."""

    # Result cache
    CACHE_MAX_SIZE: int = 100
    CACHE_TTL_MS: int = 5 * 60 * 1000
    # How invalidation patterns are matched against cache keys.
    CACHE_PATTERN_MATCH: Literal["substring", "prefix", "exact"] = "substring"

    # Request deduplication and cascade protection
    DEDUP_MAX_AGE_MS: int = 5000
    CASCADE_THRESHOLD: int = 3
    CASCADE_WINDOW_MS: int = 1000
    REQUEST_TIMING_WINDOW_MS: int = 10_000

    # Request batching
    BATCH_DELAY_MS: int = 50
    BATCH_MAX_DELAY_MS: int | None = None

    # Default admission window for registered resources
    RATE_LIMIT_MAX_REQUESTS: int = 60
    RATE_LIMIT_WINDOW_MS: int = 60_000

    # Behaviour tracking
    MAX_STORED_PATTERNS: int = 50
    MIN_DWELL_MS: int = 1000
    BEHAVIOR_STORAGE_KEY: str = "behavior_patterns"
    BEHAVIOR_STORE_DIR: str | None = None

    # Prefetch rule derivation
    PREFETCH_MIN_SAMPLES: int = 5
    PREFETCH_PROBABILITY_THRESHOLD: float = 0.3
    PREFETCH_PRIORITY_SCALE: int = 10
    PREFETCH_PRIORITY_THRESHOLD: int = 7
    PREFETCH_MAX_REGENERATIONS: int = 3
    PREFETCH_REGENERATION_INTERVAL: int = 5

    # Background work (prefetch, cache warming)
    BACKGROUND_MAX_CONCURRENCY: int = 3
    BACKGROUND_MAX_PENDING: int = 100

    # HTTP fetch collaborator
    HTTP_BASE_URL: str = "http://127.0.0.1:8000/api"
    HTTPX_TIMEOUT: float = 30.0
    HTTP_RETRY_ATTEMPTS: int = 3
    HTTP_RETRY_DELAY_SECONDS: float = 0.5
    HTTP_MAX_CONCURRENCY: int = 6

    # Logging
    LOG_LEVEL_STR: str = Field("INFO", alias="LOG_LEVEL")
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = None
    ENABLE_RICH_LOGGING: bool = True

    @model_validator(mode="after")
    def validate_tuning_knobs(self) -> CoordinatorSettings:
        if self.CACHE_MAX_SIZE <= 0:
            raise ValueError("CACHE_MAX_SIZE must be positive")
        if self.CASCADE_THRESHOLD < 1:
            raise ValueError("CASCADE_THRESHOLD must be at least 1")
        if not 0.0 < self.PREFETCH_PROBABILITY_THRESHOLD < 1.0:
            raise ValueError("PREFETCH_PROBABILITY_THRESHOLD must be within (0, 1)")
        if self.BATCH_MAX_DELAY_MS is not None and self.BATCH_MAX_DELAY_MS < self.BATCH_DELAY_MS:
            raise ValueError("BATCH_MAX_DELAY_MS must not be shorter than BATCH_DELAY_MS")
        if self.BACKGROUND_MAX_CONCURRENCY < 1:
            raise ValueError("BACKGROUND_MAX_CONCURRENCY must be at least 1")
        return self

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore", populate_by_name=True)


settings = CoordinatorSettings()


# Update module level variables for backward compatibility
for _field in CoordinatorSettings.model_fields:
    globals()[_field] = getattr(settings, _field)


# Configure structlog to integrate with standard logging and output human‑readable messages
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%m/%d/%Y, %H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)


def filter_internal_keys(logger: Any, name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Remove internal structlog fields from event dict."""
    keys_to_remove = [k for k in event_dict.keys() if k.startswith("_")]
    for key in keys_to_remove:
        event_dict.pop(key, None)
    return event_dict


def _format_context(event_dict: MutableMapping[str, Any], markup: bool) -> str:
    context_parts = []
    for key, value in event_dict.items():
        if key.startswith("_"):
            continue
        if isinstance(value, str) and len(value) > 50:
            value_str = f"{value[:47]}..."
        else:
            value_str = str(value)
        context_parts.append(f"[dim]{key}[/dim]={value_str}" if markup else f"{key}={value_str}")
    return f"({', '.join(context_parts)})" if context_parts else ""


def simple_log_format_rich(logger: Any, name: str, event_dict: MutableMapping[str, Any]) -> str:
    """Simple human-readable log formatter with Rich markup for console output."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)

    level = event_dict.pop("level", "INFO").upper()
    timestamp = event_dict.pop("timestamp", "")
    logger_name = event_dict.pop("logger", "")
    event = event_dict.pop("event", "")

    parts = []
    if timestamp:
        parts.append(f"{timestamp}")
    if logger_name:
        # Shorten logger names for readability
        parts.append(f"[cyan]{logger_name.split('.')[-1]}[/cyan]")

    if level in ("ERROR", "CRITICAL"):
        parts.append(f"[red]{level}[/red]")
    elif level == "WARNING":
        parts.append(f"[yellow]{level}[/yellow]")
    elif level == "INFO":
        parts.append(f"[green]{level}[/green]")
    else:
        parts.append(level)

    parts.append(f"[bold]{event}[/bold]" if event else "")

    context = _format_context(event_dict, markup=True)
    if context:
        parts.append(context)

    return " ".join(parts)


def simple_log_format_plain(logger: Any, name: str, event_dict: MutableMapping[str, Any]) -> str:
    """Simple human-readable log formatter without markup for file output."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)

    level = event_dict.pop("level", "INFO")
    timestamp = event_dict.pop("timestamp", "")
    logger_name = event_dict.pop("logger", "")
    event = event_dict.pop("event", "")

    parts = []
    if timestamp:
        parts.append(f"{timestamp}")
    if logger_name:
        parts.append(f"[{logger_name.split('.')[-1]}]")
    parts.append(level.upper())
    parts.append(event if event else "")

    context = _format_context(event_dict, markup=False)
    if context:
        parts.append(context)

    return " ".join(parts)


# Formatter for file output (plain text, no Rich markup)
simple_formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%m/%d/%Y, %H:%M:%S"),
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ],
    processors=[
        filter_internal_keys,
        simple_log_format_plain,
    ],
)

# Formatter for Rich console output (with color markup)
rich_formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%m/%d/%Y, %H:%M:%S"),
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ],
    processors=[
        filter_internal_keys,
        simple_log_format_rich,
    ],
)
