from __future__ import annotations

import time


def epoch_ms() -> int:
    """Return wall-clock time as epoch milliseconds; stamps message records."""
    return int(time.time() * 1000)


__all__ = ["epoch_ms"]
