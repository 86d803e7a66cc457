from __future__ import annotations
from .errors import (
    AlreadyInitializedError,
    ArtifactUnavailable,
    CinePointerError,
    DependencyError,
    DurabilityWarning,
    InitializationError,
    RecorderStateError,
    ValidationError,
)
from .timeline import (
    BufferedStore,
    CanonicalHeader,
    DurableStore,
    Viewport,
    load_event_log,
    normalize_meta,
    open_store,
)
from .recording import (
    RecordingArtifacts,
    RecordingController,
    ZendriverVideoSource,
    create_video_recording_options,
)
from .driver import JourneyDriver

__all__ = [
    "AlreadyInitializedError",
    "ArtifactUnavailable",
    "CinePointerError",
    "DependencyError",
    "DurabilityWarning",
    "InitializationError",
    "RecorderStateError",
    "ValidationError",
    "BufferedStore",
    "CanonicalHeader",
    "DurableStore",
    "Viewport",
    "load_event_log",
    "normalize_meta",
    "open_store",
    "RecordingArtifacts",
    "RecordingController",
    "ZendriverVideoSource",
    "create_video_recording_options",
    "JourneyDriver",
]
