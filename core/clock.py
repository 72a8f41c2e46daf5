# core/clock.py
"""Time sources used by the coordination layer.

Components read time through these functions instead of calling `time` directly, so
TTL, window and dwell behaviour can be tested by monkeypatching `core.clock.now_ms`.
"""

import time


def now_ms() -> float:
    """Monotonic milliseconds; used for TTLs, windows and dwell times."""
    return time.monotonic() * 1000.0


def wall_ms() -> float:
    """Wall-clock epoch milliseconds; used for timestamps persisted across sessions."""
    return time.time() * 1000.0
