from __future__ import annotations


class rcfg:
    """Recording lifecycle and capture tuning"""

    # --- Output layout ---
    RAW_VIDEO_DIRNAME = "raw"
    EVENTS_FILENAME = "events.ndjson"

    # --- Frame size bounds (resource cap for capture + encode) ---
    MAX_FRAME_WIDTH = 1920
    MAX_FRAME_HEIGHT = 1080

    # -------------------------------------------------------------------
    # Screencast capture (CDP Page.startScreencast)
    # -------------------------------------------------------------------
    SCREENCAST_FORMAT = "jpeg"
    SCREENCAST_QUALITY = 90
    EVERY_NTH_FRAME = 1
    FRAME_JPEG_QUALITY = 92  # re-encode quality for frames written to disk
    MIN_FRAME_DURATION_S = 1.0 / 60.0  # floor for identical/early timestamps
    LAST_FRAME_HOLD_S = 0.1  # how long the final frame stays on screen

    # --- Encoding the captured frames ---
    FFMPEG_BINARY = "ffmpeg"
    VIDEO_CODEC = "libvpx-vp9"
    VIDEO_EXT = ".webm"
    VIDEO_PIX_FMT = "yuv420p"
    OUTPUT_FPS = 25
    ENCODE_TIMEOUT_S = 300.0
    KEEP_FRAMES = False  # delete the per-tab JPEG frames once encoded
