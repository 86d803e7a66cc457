from __future__ import annotations
import math


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Restrict value to [min_val, max_val]."""
    return max(min_val, min(max_val, value))


def session_ts(now: float, epoch: float) -> int:
    """Milliseconds elapsed between `epoch` and `now` (both in seconds).

    Floored to an integer and never negative, so a clock that steps backwards
    cannot produce a timestamp before the session start.
    """
    return max(0, int(math.floor((now - epoch) * 1000.0)))


def ease_in_out_cubic(progress: float) -> float:
    """Cubic ease-in/out on [0, 1] (the curve renderers call "inOutCubic")."""
    p = clamp(progress, 0.0, 1.0)
    if p < 0.5:
        return 4.0 * p * p * p
    return 1.0 - math.pow(-2.0 * p + 2.0, 3) / 2.0
