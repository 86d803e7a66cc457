from .controller import (
    RecordingController,
    RecordingArtifacts,
    RecorderState,
    VideoOptions,
    collect_video_paths,
    create_video_recording_options,
)
from .screencast import ScreencastRecorder, ZendriverVideoSource

__all__ = [
    "RecordingController",
    "RecordingArtifacts",
    "RecorderState",
    "VideoOptions",
    "collect_video_paths",
    "create_video_recording_options",
    "ScreencastRecorder",
    "ZendriverVideoSource",
]
