"""Wall-clock helpers."""

import time


def now_ms() -> int:
    """Current time in milliseconds since epoch."""
    return int(time.time() * 1000)
