from __future__ import annotations

import pytest

from cinepointer.errors import ValidationError
from cinepointer.timeline import EVENT_VARIANTS, KNOWN_KINDS, validate_event


def test_every_kind_has_a_variant() -> None:
    assert KNOWN_KINDS == frozenset(EVENT_VARIANTS)
    assert {"run.start", "cursor.click", "camera.mark", "caption.clear"} <= KNOWN_KINDS


def test_valid_events_return_their_kind() -> None:
    assert validate_event({"ts": 0, "t": "run.start"}) == "run.start"
    assert (
        validate_event(
            {
                "ts": 120,
                "t": "cursor.click",
                "to": [640, 360],
                "button": "left",
                "target": {"selector": {"by": "css", "value": "#go"}},
            }
        )
        == "cursor.click"
    )
    assert validate_event({"ts": 5, "t": "scroll.start", "to": "bottom", "targetY": 900}) == "scroll.start"
    assert (
        validate_event({"ts": 5, "t": "camera.mark", "zoom": 1.5, "focus": {"region": [0, 0, 100, 50]}})
        == "camera.mark"
    )


def test_unknown_payload_fields_are_accepted() -> None:
    assert validate_event({"ts": 1, "t": "key.press", "key": "Enter", "modifiers": ["Shift"]}) == "key.press"


@pytest.mark.parametrize(
    "event, field",
    [
        ({"ts": 0, "t": "page.explode"}, "t"),
        ({"ts": 0}, "t"),
        ({"ts": -1, "t": "run.start"}, "ts"),
        ({"ts": 1.5, "t": "run.start"}, "ts"),
        ({"ts": True, "t": "run.start"}, "ts"),
        ({"t": "run.start"}, "ts"),
        ({"ts": 0, "t": "cursor.move", "to": "somewhere"}, "to"),
        ({"ts": 0, "t": "cursor.move", "to": [1, 2, 3]}, "to"),
        ({"ts": 0, "t": "camera.mark", "focus": {"region": [0, 0]}}, "focus"),
        ({"ts": 0, "t": "input.fill", "masked": "yes"}, "masked"),
        ({"ts": 0, "t": "run.end", "data": [1, 2]}, "data"),
    ],
)
def test_malformed_events_are_rejected(event: dict, field: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_event(event)

    assert excinfo.value.field == field


def test_non_mapping_event_is_rejected() -> None:
    with pytest.raises(ValidationError):
        validate_event(["ts", 0])
