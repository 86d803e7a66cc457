from __future__ import annotations
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple, Type, TypedDict
import numbers

from ..errors import ValidationError


class Selector(TypedDict, total=False):
    """Engine-independent element description (css, role, text, ...)."""

    by: str
    value: str
    name: str
    role: str
    placeholder: str
    text: str


class Target(TypedDict):
    selector: Selector


class Focus(TypedDict):
    region: List[float]  # [x, y, width, height]


class _EventBase(TypedDict):
    ts: int  # ms since the session epoch
    t: str


class _WithData(_EventBase, total=False):
    data: Dict[str, Any]


# --- One variant per kind; only the fields a renderer reads for that kind ---


class RunEvent(_WithData, total=False):
    pass


class RecordingEvent(_WithData, total=False):
    pass


class NavigationEvent(_WithData, total=False):
    pass


class StepEvent(_WithData, total=False):
    pass


class CursorMoveEvent(_WithData, total=False):
    to: List[float]
    ease: str


class CursorHoverEvent(_WithData, total=False):
    selector: Selector


class CursorClickEvent(_WithData, total=False):
    to: List[float]
    button: str
    target: Target


class InputFillEvent(_WithData, total=False):
    selector: Selector
    text: str
    masked: bool


class KeyPressEvent(_WithData, total=False):
    key: str


class ScrollEvent(_WithData, total=False):
    to: Any  # "top" | "bottom" | "center" | [x, y]
    targetY: float
    ease: str


class CaptionEvent(_WithData, total=False):
    text: str


class CameraMarkEvent(_WithData, total=False):
    zoom: float
    focus: Focus
    ease: str
    desc: str


EVENT_VARIANTS: Dict[str, Type[TypedDict]] = {
    "run.start": RunEvent,
    "run.end": RunEvent,
    "recording.start": RecordingEvent,
    "recording.end": RecordingEvent,
    "navigation.start": NavigationEvent,
    "navigation.end": NavigationEvent,
    "step.start": StepEvent,
    "step.end": StepEvent,
    "cursor.move": CursorMoveEvent,
    "cursor.hover": CursorHoverEvent,
    "cursor.click": CursorClickEvent,
    "input.fill": InputFillEvent,
    "key.press": KeyPressEvent,
    "scroll.start": ScrollEvent,
    "scroll.end": ScrollEvent,
    "caption.set": CaptionEvent,
    "caption.clear": CaptionEvent,
    "camera.mark": CameraMarkEvent,
}

KNOWN_KINDS = frozenset(EVENT_VARIANTS)

# Kinds whose `to` is a coordinate pair (scroll uses keywords as well)
_POINT_TO_KINDS = frozenset({"cursor.move", "cursor.click"})


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_number_seq(value: Any, length: int) -> bool:
    return (
        isinstance(value, Sequence)
        and not isinstance(value, (str, bytes))
        and len(value) == length
        and all(_is_number(v) for v in value)
    )


def _check_focus(value: Any) -> bool:
    return isinstance(value, Mapping) and _is_number_seq(value.get("region"), 4)


def _check_target(value: Any) -> bool:
    return isinstance(value, Mapping) and isinstance(value.get("selector"), Mapping)


# Shape checks for the payload fields the schema knows about. Values are not
# range-checked; unknown fields are left alone.
_FIELD_SHAPES: Dict[str, Tuple[Callable[[Any], bool], str]] = {
    "data": (lambda v: isinstance(v, Mapping), "a mapping"),
    "from": (lambda v: _is_number_seq(v, 2), "an [x, y] pair"),
    "button": (lambda v: isinstance(v, str), "a string"),
    "target": (_check_target, "a mapping with a 'selector' mapping"),
    "selector": (lambda v: isinstance(v, Mapping), "a mapping"),
    "text": (lambda v: isinstance(v, str), "a string"),
    "key": (lambda v: isinstance(v, str), "a string"),
    "zoom": (_is_number, "a number"),
    "focus": (_check_focus, "a mapping with a 4-number 'region'"),
    "ease": (lambda v: isinstance(v, str), "a string"),
    "desc": (lambda v: isinstance(v, str), "a string"),
    "masked": (lambda v: isinstance(v, bool), "a boolean"),
}


def validate_event(event: Any) -> str:
    """Check an event's kind and payload shapes; return its kind.

    Raises:
        ValidationError: not a mapping, unknown `t`, bad `ts` or a known
            payload field with the wrong shape.
    """
    if not isinstance(event, Mapping):
        raise ValidationError(
            f"event must be a mapping, got {type(event).__name__}", field="event"
        )

    kind = event.get("t")
    if kind not in KNOWN_KINDS:
        raise ValidationError(f"unknown event kind {kind!r}", field="t")

    ts = event.get("ts")
    if not isinstance(ts, int) or isinstance(ts, bool) or ts < 0:
        raise ValidationError(
            f"ts must be a non-negative integer, got {ts!r}", field="ts"
        )

    for name, value in event.items():
        if name == "to" and kind in _POINT_TO_KINDS:
            if not _is_number_seq(value, 2):
                raise ValidationError(
                    f"{kind}.to must be an [x, y] pair, got {value!r}", field="to"
                )
            continue
        shape = _FIELD_SHAPES.get(name)
        if shape is not None and not shape[0](value):
            raise ValidationError(
                f"{kind}.{name} must be {shape[1]}, got {value!r}", field=name
            )
    return kind
