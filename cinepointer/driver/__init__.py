from .journey import JourneyDriver, css_selector
from .primitives import get_element_rect, get_viewport

__all__ = [
    "JourneyDriver",
    "css_selector",
    "get_element_rect",
    "get_viewport",
]
