from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
import logging

from zendriver import cdp

from .config import dcfg

logger = logging.getLogger(__name__)

JS_RECT = """(() => {
  const el = document.querySelector(%s);
  if (!el) return null;
  const r = el.getBoundingClientRect();
  return {x: r.x, y: r.y, width: r.width, height: r.height};
})()"""

JS_VIEWPORT = "({w: window.innerWidth || 0, h: window.innerHeight || 0})"


async def send_cdp_event(tab, fn: Callable[[], Awaitable[Any]], *, label: str) -> None:
    """Send a CDP command with a short timeout; let stragglers finish in background."""
    task = asyncio.ensure_future(fn())
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=dcfg.CDP_SEND_TIMEOUT_S)
    except asyncio.TimeoutError:
        logger.warning(
            "CDP %s stalled >%.0f ms; continuing in background",
            label,
            dcfg.CDP_SEND_TIMEOUT_S * 1000.0,
        )
    except Exception:
        logger.warning("CDP %s failed (skipped this event)", label, exc_info=True)


async def evaluate(tab, expression: str, *, await_promise: bool = False) -> Any:
    """Runtime.evaluate returning the JSON value of the result.

    Raises:
        RuntimeError: the expression threw in the page.
    """
    resp = await tab.send(
        cdp.runtime.evaluate(
            expression=expression,
            return_by_value=True,
            await_promise=await_promise,
        )
    )
    remote, details = resp, None
    if isinstance(resp, tuple):
        remote = resp[0] if resp else None
        details = resp[1] if len(resp) > 1 else None
    if details is not None:
        text = getattr(details, "text", None) or str(details)
        raise RuntimeError(f"Page script failed: {text}")
    if isinstance(remote, dict):
        return remote.get("value")
    return getattr(remote, "value", None)


async def get_viewport(tab) -> Dict[str, float]:
    value = await evaluate(tab, JS_VIEWPORT)
    if not isinstance(value, dict):
        return {"w": 0.0, "h": 0.0}
    return {"w": float(value.get("w", 0)), "h": float(value.get("h", 0))}


async def get_element_rect(
    tab,
    selector: str,
    *,
    timeout_seconds: Optional[float] = None,
    poll_interval_seconds: Optional[float] = None,
) -> Dict[str, float]:
    """Return {x, y, width, height, cx, cy} for a CSS selector, polling until it exists."""
    timeout_seconds = dcfg.SELECTOR_TIMEOUT_S if timeout_seconds is None else timeout_seconds
    poll = dcfg.SELECTOR_POLL_S if poll_interval_seconds is None else poll_interval_seconds
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    expression = JS_RECT % js_string(selector)
    while True:
        value = await evaluate(tab, expression)
        if isinstance(value, dict) and value.get("width") is not None:
            rect = {k: float(value.get(k, 0.0)) for k in ("x", "y", "width", "height")}
            rect["cx"] = rect["x"] + rect["width"] / 2.0
            rect["cy"] = rect["y"] + rect["height"] / 2.0
            return rect
        if loop.time() >= deadline:
            raise ValueError(f"Element not found for selector: {selector!r}")
        await asyncio.sleep(poll)


def js_string(value: str) -> str:
    """Quote `value` as a JavaScript string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'
