from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple, Union
import asyncio
import logging
import random

from zendriver import cdp

from ..errors import ValidationError
from .config import dcfg
from .geometry import (
    clamp_point_to_viewport,
    eased_path,
    rect_region,
    round_point,
    step_count,
)
from .primitives import (
    evaluate,
    get_element_rect,
    get_viewport,
    js_string,
    send_cdp_event,
)

logger = logging.getLogger(__name__)

ScrollTarget = Union[str, Dict[str, float]]

# key -> (code, windows virtual key code)
_KEY_CODES: Dict[str, Tuple[str, int]] = {
    "Enter": ("Enter", 13),
    "Tab": ("Tab", 9),
    "Backspace": ("Backspace", 8),
    "Escape": ("Escape", 27),
    "Delete": ("Delete", 46),
    "ArrowLeft": ("ArrowLeft", 37),
    "ArrowUp": ("ArrowUp", 38),
    "ArrowRight": ("ArrowRight", 39),
    "ArrowDown": ("ArrowDown", 40),
    "PageUp": ("PageUp", 33),
    "PageDown": ("PageDown", 34),
    "Home": ("Home", 36),
    "End": ("End", 35),
    "Space": ("Space", 32),
}

_JS_SCROLL_HEIGHT = "document.body.scrollHeight"

_JS_SMOOTH_SCROLL = """(async () => {
  const targetY = %f;
  const duration = %d;
  const startY = window.scrollY;
  const distance = targetY - startY;
  const startTime = performance.now();
  return new Promise((resolve) => {
    function step(now) {
      const p = Math.min((now - startTime) / Math.max(duration, 1), 1);
      const e = p < 0.5 ? 4 * p * p * p : 1 - Math.pow(-2 * p + 2, 3) / 2;
      window.scrollTo(0, startY + distance * e);
      if (p < 1) requestAnimationFrame(step); else resolve(window.scrollY);
    }
    requestAnimationFrame(step);
  });
})()"""

_JS_FOCUS_CLEAR = """(() => {
  const el = document.querySelector(%s);
  if (!el) return false;
  el.focus();
  if ('value' in el) { el.value = ''; el.dispatchEvent(new Event('input', {bubbles: true})); }
  return true;
})()"""


def css_selector(selector: str) -> Dict[str, str]:
    """Event-schema form of a CSS selector."""
    return {"by": "css", "value": selector}


def _mouse_button(name: str):
    try:
        return cdp.input_.MouseButton(name)
    except ValueError as exc:
        raise ValidationError(f"Unknown mouse button {name!r}", field="button") from exc


class JourneyDriver:
    """Drives one zendriver tab and marks every semantic action on the timeline.

    `recorder` is anything with `mark(event)` and `elapsed_ms()`; usually the
    RecordingController of the session, which stamps the timestamps. The
    cursor position is tracked here (viewport centre until the first move).
    """

    def __init__(self, tab, recorder):
        self.tab = tab
        self.recorder = recorder
        self.position: Optional[Tuple[float, float]] = None

    def _mark(self, kind: str, **payload: Any) -> None:
        event = {"t": kind}
        event.update({k: v for k, v in payload.items() if v is not None})
        self.recorder.mark(event)

    # --- run / step boundaries ---

    def start_run(self, data: Optional[Dict[str, Any]] = None) -> None:
        self._mark("run.start", data=dict(data or {}))

    def end_run(self) -> None:
        self._mark("run.end", data={"durationMs": self.recorder.elapsed_ms()})

    @asynccontextmanager
    async def step(
        self, index: int, action: str, comment: Optional[str] = None
    ) -> AsyncIterator["JourneyDriver"]:
        """Bracket one journey step with step.start / step.end (caption from comment)."""
        self._mark("step.start", data={"index": index, "action": action, "comment": comment})
        yield self
        if comment:
            self.caption(comment)
        self._mark("step.end", data={"index": index, "action": action})

    # --- navigation ---

    async def goto(self, url: str) -> None:
        self._mark("navigation.start", data={"url": url})
        await self.tab.get(url)
        self._mark("navigation.end", data={"url": url})

    # --- cursor ---

    async def move_cursor(self, x: float, y: float) -> Tuple[float, float]:
        """Glide the cursor to (x, y) with inOutCubic easing, dispatching mouseMoved."""
        viewport = await get_viewport(self.tab)
        width, height = viewport["w"] or float("inf"), viewport["h"] or float("inf")
        target = clamp_point_to_viewport(x, y, width, height)
        start = self.position
        if start is None:
            start = (viewport["w"] / 2.0, viewport["h"] / 2.0)

        self._mark("cursor.move", to=round_point(target), ease=dcfg.EASE_NAME)
        steps = step_count(start, target)
        interval = dcfg.MOVE_DURATION_S / steps
        for px, py in eased_path(start, target, steps):
            await send_cdp_event(
                self.tab,
                lambda px=px, py=py: self.tab.send(
                    cdp.input_.dispatch_mouse_event(type_="mouseMoved", x=px, y=py)
                ),
                label="mouseMoved",
            )
            await asyncio.sleep(interval)
        self.position = target
        return target

    async def _move_to_element(self, selector: str) -> Dict[str, float]:
        rect = await get_element_rect(self.tab, selector)
        await self.move_cursor(rect["cx"], rect["cy"])
        return rect

    async def hover(self, selector: str) -> None:
        await self._move_to_element(selector)
        self._mark("cursor.hover", selector=css_selector(selector))

    async def click(self, selector: str, button: str = "left") -> None:
        """Move to the element's centre and click it (press, short delay, release)."""
        cdp_button = _mouse_button(button)
        await self._move_to_element(selector)
        x, y = self.position
        for type_ in ("mousePressed", "mouseReleased"):
            await send_cdp_event(
                self.tab,
                lambda type_=type_: self.tab.send(
                    cdp.input_.dispatch_mouse_event(
                        type_=type_, x=x, y=y, button=cdp_button, click_count=1
                    )
                ),
                label=type_,
            )
            if type_ == "mousePressed":
                await asyncio.sleep(random.uniform(*dcfg.CLICK_DOWN_UP_DELAY_S))
        self._mark(
            "cursor.click",
            to=round_point((x, y)),
            button=button,
            target={"selector": css_selector(selector)},
        )

    # --- keyboard ---

    async def fill(self, selector: str, text: str, mask: bool = False) -> None:
        """Replace the element's value with `text`; masked text is never logged."""
        found = await evaluate(self.tab, _JS_FOCUS_CLEAR % js_string(selector))
        if not found:
            raise ValueError(f"Element not found for selector: {selector!r}")
        await send_cdp_event(
            self.tab,
            lambda: self.tab.send(cdp.input_.insert_text(text=text)),
            label="insertText",
        )
        self._mark(
            "input.fill",
            selector=css_selector(selector),
            text=dcfg.MASK_CHAR * len(text) if mask else text,
            masked=bool(mask),
        )

    async def press(self, key: str) -> None:
        kwargs: Dict[str, Any] = {"key": key}
        if key in _KEY_CODES:
            code, vk = _KEY_CODES[key]
            kwargs.update(code=code, windows_virtual_key_code=vk, native_virtual_key_code=vk)
        elif len(key) == 1:
            kwargs["text"] = key
        for type_ in ("keyDown", "keyUp"):
            await send_cdp_event(
                self.tab,
                lambda type_=type_: self.tab.send(
                    cdp.input_.dispatch_key_event(type_=type_, **kwargs)
                ),
                label=type_,
            )
        self._mark("key.press", key=key)

    # --- scrolling ---

    async def scroll(self, to: ScrollTarget, duration_ms: Optional[int] = None) -> float:
        """Smooth-scroll to "top" | "bottom" | "center" | {"x", "y"}; return target y."""
        if isinstance(to, dict):
            target_y = float(to.get("y", 0.0))
        elif to in ("top", "bottom", "center"):
            viewport = await get_viewport(self.tab)
            scroll_height = float(await evaluate(self.tab, _JS_SCROLL_HEIGHT) or 0.0)
            max_y = max(0.0, scroll_height - viewport["h"])
            target_y = {"top": 0.0, "bottom": max_y, "center": max_y / 2.0}[to]
        else:
            raise ValidationError(f"Unknown scroll target {to!r}", field="to")

        duration = dcfg.DEFAULT_SCROLL_MS if duration_ms is None else int(duration_ms)
        self._mark("scroll.start", to=to, targetY=target_y, ease=dcfg.EASE_NAME)
        await evaluate(self.tab, _JS_SMOOTH_SCROLL % (target_y, duration), await_promise=True)
        self._mark("scroll.end", to=to, targetY=target_y)
        return target_y

    # --- annotations ---

    def caption(self, text: str) -> None:
        self._mark("caption.set", text=text)

    def clear_caption(self) -> None:
        self._mark("caption.clear")

    async def camera_mark(
        self,
        selector: Optional[str] = None,
        *,
        zoom: float = 1.0,
        duration_ms: Optional[int] = None,
        desc: Optional[str] = None,
    ) -> None:
        """Framing hint for the renderer: zoom onto `selector`'s region."""
        focus = None
        if selector is not None:
            try:
                rect = await get_element_rect(self.tab, selector)
                focus = {"region": rect_region(rect)}
            except ValueError:
                logger.warning("camera.mark target %r not found; marking without focus", selector)
        data = {"durationMs": duration_ms} if duration_ms is not None else None
        self._mark("camera.mark", zoom=zoom, focus=focus, desc=desc, data=data)

    async def pause(self, duration_ms: int) -> None:
        await asyncio.sleep(max(0, duration_ms) / 1000.0)
