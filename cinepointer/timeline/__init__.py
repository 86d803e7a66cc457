from .header import CanonicalHeader, Viewport, normalize_meta, normalize_viewport
from .events import EVENT_VARIANTS, KNOWN_KINDS, validate_event
from .store import TimelineStore, BufferedStore, DurableStore, open_store
from .ndjson import load_event_log, manifest_path_for, save_document

__all__ = [
    "CanonicalHeader",
    "Viewport",
    "normalize_meta",
    "normalize_viewport",
    "EVENT_VARIANTS",
    "KNOWN_KINDS",
    "validate_event",
    "TimelineStore",
    "BufferedStore",
    "DurableStore",
    "open_store",
    "load_event_log",
    "manifest_path_for",
    "save_document",
]
