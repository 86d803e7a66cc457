from __future__ import annotations
from typing import List, Sequence, Tuple
import math

from ..utils import clamp, ease_in_out_cubic
from .config import dcfg

Point = Tuple[float, float]


def clamp_point_to_viewport(
    x: float, y: float, viewport_width: float, viewport_height: float
) -> Point:
    """Clamp a point (x,y) into [0,viewport_width]×[0,viewport_height]."""
    return clamp(x, 0.0, viewport_width), clamp(y, 0.0, viewport_height)


def step_count(start: Point, end: Point) -> int:
    """Number of intermediate mouseMoved events for a straight move."""
    dist = math.hypot(end[0] - start[0], end[1] - start[1])
    steps = int(math.ceil(dist / max(1e-6, dcfg.MOVE_PX_PER_STEP)))
    return int(clamp(steps, dcfg.MOVE_MIN_STEPS, dcfg.MOVE_MAX_STEPS))


def eased_path(start: Point, end: Point, steps: int) -> List[Point]:
    """Points from start (exclusive) to end (inclusive) spaced by inOutCubic easing."""
    steps = max(1, int(steps))
    sx, sy = start
    dx, dy = end[0] - sx, end[1] - sy
    path: List[Point] = []
    for i in range(1, steps + 1):
        k = ease_in_out_cubic(i / steps)
        path.append((sx + dx * k, sy + dy * k))
    path[-1] = (float(end[0]), float(end[1]))
    return path


def rect_region(rect) -> List[float]:
    """{x, y, width, height} -> [x, y, width, height] (camera focus region)."""
    return [float(rect["x"]), float(rect["y"]), float(rect["width"]), float(rect["height"])]


def round_point(point: Sequence[float]) -> List[int]:
    return [int(round(point[0])), int(round(point[1]))]
