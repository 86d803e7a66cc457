from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union
import copy
import numbers

from ..errors import ValidationError
from .config import tcfg

# Raw keys consumed by the normalizer; everything else lands in `extra`.
_VIEWPORT_KEY = "viewport"
_ID_KEYS = {
    "journey_id": ("journeyId", "journey_id"),
    "run_id": ("runId", "run_id"),
}
_THEME_KEYS = ("brandTheme", "brand_theme")
_IGNORED_KEYS = ("canvas", "dpi")


@dataclass(frozen=True)
class Viewport:
    """Pixel size of the captured surface.

    Attributes:
        w (int|float): Width in CSS pixels.
        h (int|float): Height in CSS pixels.
        device_scale_factor (float|None): Optional DPR; None means "not given".
    """

    w: float
    h: float
    device_scale_factor: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"w": self.w, "h": self.h}
        if self.device_scale_factor is not None:
            out["deviceScaleFactor"] = self.device_scale_factor
        return out


@dataclass(frozen=True)
class CanonicalHeader:
    """Normalized, immutable description of one recording session.

    Built once by `normalize_meta()`; `to_dict()` gives the camelCase form
    downstream renderers read. Optional fields that were not supplied are
    omitted from that form rather than written as empty values.
    """

    viewport: Viewport
    journey_id: str
    run_id: str
    brand_theme: Optional[Any] = None
    canvas: str = tcfg.CANVAS
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Own copies only; nothing outside the header can reach its nested values
        object.__setattr__(self, "extra", MappingProxyType(copy.deepcopy(dict(self.extra))))
        object.__setattr__(self, "brand_theme", copy.deepcopy(self.brand_theme))

    @property
    def dpi(self) -> float:
        """Device scale factor, 1 when the viewport did not specify one."""
        dsf = self.viewport.device_scale_factor
        return dsf if dsf is not None else 1

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = copy.deepcopy(dict(self.extra))
        out.update(
            {
                "canvas": self.canvas,
                "viewport": self.viewport.to_dict(),
                "dpi": self.dpi,
                "journeyId": self.journey_id,
                "runId": self.run_id,
            }
        )
        if self.brand_theme is not None:
            out["brandTheme"] = copy.deepcopy(self.brand_theme)
        return out


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _positive_number(raw: Mapping[str, Any], key: str, field_name: str) -> float:
    if key not in raw or raw[key] is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    value = raw[key]
    if not _is_number(value) or value <= 0:
        raise ValidationError(
            f"{field_name} must be a positive number, got {value!r}",
            field=field_name,
        )
    return value


def normalize_viewport(raw: Any) -> Viewport:
    """Validate a raw `{w, h, deviceScaleFactor?}` mapping into a Viewport."""
    if raw is None:
        raise ValidationError("viewport is required", field="viewport")
    if isinstance(raw, Viewport):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(
            f"viewport must be a mapping, got {type(raw).__name__}", field="viewport"
        )
    w = _positive_number(raw, "w", "viewport.w")
    h = _positive_number(raw, "h", "viewport.h")
    dsf = raw.get("deviceScaleFactor", raw.get("device_scale_factor"))
    if dsf is not None and (not _is_number(dsf) or dsf <= 0):
        raise ValidationError(
            f"viewport.deviceScaleFactor must be a positive number, got {dsf!r}",
            field="viewport.deviceScaleFactor",
        )
    return Viewport(w=w, h=h, device_scale_factor=dsf)


def _required_id(raw: Mapping[str, Any], attr: str) -> str:
    keys = _ID_KEYS[attr]
    value = next((raw[k] for k in keys if raw.get(k) is not None), None)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{keys[0]} must be a non-empty string, got {value!r}", field=keys[0]
        )
    return value


def normalize_meta(raw: Union[Mapping[str, Any], CanonicalHeader]) -> CanonicalHeader:
    """Map loosely-shaped caller metadata onto a CanonicalHeader.

    Accepts camelCase (`journeyId`) or snake_case (`journey_id`) identifier
    keys. `viewport.w`/`viewport.h` and both identifiers are required; the
    canvas is always fixed; unknown keys pass through into `extra`.

    Raises:
        ValidationError: a required field is missing or has the wrong shape.
    """
    if isinstance(raw, CanonicalHeader):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(
            f"meta must be a mapping, got {type(raw).__name__}", field="meta"
        )

    viewport = normalize_viewport(raw.get(_VIEWPORT_KEY))
    journey_id = _required_id(raw, "journey_id")
    run_id = _required_id(raw, "run_id")
    brand_theme = next((raw[k] for k in _THEME_KEYS if k in raw), None)

    consumed = {_VIEWPORT_KEY, *_THEME_KEYS, *_IGNORED_KEYS}
    for keys in _ID_KEYS.values():
        consumed.update(keys)
    extra = {k: v for k, v in raw.items() if k not in consumed}

    return CanonicalHeader(
        viewport=viewport,
        journey_id=journey_id,
        run_id=run_id,
        brand_theme=brand_theme,
        extra=extra,
    )
