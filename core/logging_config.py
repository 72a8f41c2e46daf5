# core/logging_config.py
"""Configure logging sinks and formatting for the coordination layer.

This module configures:
- Standard library logging handlers (console and optional rotating file).
- Rich console integration when enabled.
- Baseline log level overrides for noisy third-party libraries.

Notes:
    This module performs side-effectful logger configuration and should be called once at
    process startup via [`core.logging_config.setup_logging()`](core/logging_config.py:27).
    Library code only ever calls `structlog.get_logger(__name__)`.
"""

import logging as stdlib_logging
import logging.handlers
import os

import structlog
from rich.logging import RichHandler

import config
from config import rich_formatter, simple_formatter


def setup_logging(log_level: str | None = None, log_file: str | None = None) -> None:
    """Set up logging handlers and formatting.

    Args:
        log_level: Level name overriding `config.LOG_LEVEL_STR`.
        log_file: Path overriding `config.LOG_FILE`. When set, a rotating file handler is
            installed in addition to the console handler.

    Notes:
        This function replaces the root logger handler list.
    """
    level = (log_level or config.LOG_LEVEL_STR).upper()
    log_path = log_file or config.LOG_FILE

    root_logger = stdlib_logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    if log_path:
        try:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            file_handler = stdlib_logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                mode="a",
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(simple_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            console_handler_fallback = stdlib_logging.StreamHandler()
            console_handler_fallback.setFormatter(simple_formatter)
            root_logger.addHandler(console_handler_fallback)
            root_logger.error(
                f"Failed to configure file logging: {e}. Logging to console instead.",
                exc_info=True,
            )

    if config.ENABLE_RICH_LOGGING:
        rich_handler = RichHandler(
            level=level,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
            show_time=False,  # Timestamp already in our formatter
            show_level=False,  # Level already in our formatter
        )
        rich_handler.setFormatter(rich_formatter)
        root_logger.addHandler(rich_handler)
    elif not any(type(h) is stdlib_logging.StreamHandler for h in root_logger.handlers):
        stream_handler = stdlib_logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(simple_formatter)
        root_logger.addHandler(stream_handler)

    stdlib_logging.getLogger("httpx").setLevel(stdlib_logging.WARNING)
    stdlib_logging.getLogger("httpcore").setLevel(stdlib_logging.WARNING)
    stdlib_logging.getLogger("asyncio").setLevel(stdlib_logging.WARNING)

    structlog.get_logger(__name__).info(
        "Logging setup complete",
        level=level,
        log_file=log_path,
        rich=config.ENABLE_RICH_LOGGING,
    )
