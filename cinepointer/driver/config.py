from __future__ import annotations
from typing import Tuple


class dcfg:
    """Journey driver tuning (cursor motion, CDP timing, element lookup)"""

    # --- Cursor motion ---
    EASE_NAME = "inOutCubic"  # easing renderers should use for cursor.move
    MOVE_DURATION_S = 0.6
    MOVE_MIN_STEPS = 8
    MOVE_MAX_STEPS = 60
    MOVE_PX_PER_STEP = 12.0
    CLICK_DOWN_UP_DELAY_S: Tuple[float, float] = (0.028, 0.065)

    # --- Scrolling ---
    DEFAULT_SCROLL_MS = 500

    # --- Input ---
    MASK_CHAR = "•"

    # --- CDP ---
    CDP_SEND_TIMEOUT_S = 0.35  # keep input sends from blocking the loop
    SELECTOR_TIMEOUT_S = 6.0
    SELECTOR_POLL_S = 0.15
