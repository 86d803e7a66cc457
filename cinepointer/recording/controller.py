from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
import asyncio
import logging
import time

from ..errors import ArtifactUnavailable, RecorderStateError
from ..timeline.header import CanonicalHeader, normalize_meta, normalize_viewport
from ..timeline.store import TimelineStore, open_store
from ..utils import session_ts
from .config import rcfg

PathLike = Union[str, Path]
Meta = Union[Mapping[str, Any], CanonicalHeader]

logger = logging.getLogger(__name__)


class RecorderState(str, Enum):
    UNSTARTED = "unstarted"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class VideoOptions:
    """Where and at what pixel size the browser engine should capture video."""

    dir: Path
    width: int
    height: int

    @property
    def size(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}

    def to_dict(self) -> Dict[str, Any]:
        return {"dir": str(self.dir), "size": self.size}


@dataclass(frozen=True)
class RecordingArtifacts:
    """Output references of one finished session (plain data).

    Attributes:
        video_path: First video file found, None when no page produced one.
        video_paths: Every video file found, None when empty.
        events_path: Location of the persisted event log.
        screenshots_path: Screenshot directory of the caller's output layout.
        skipped_videos: Pages whose video lookup failed and was skipped.
    """

    events_path: str
    screenshots_path: Optional[str] = None
    video_path: Optional[str] = None
    video_paths: Optional[Tuple[str, ...]] = None
    skipped_videos: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"eventsPath": self.events_path}
        if self.video_path is not None:
            out["videoPath"] = self.video_path
        if self.video_paths:
            out["videoPaths"] = list(self.video_paths)
        if self.screenshots_path is not None:
            out["screenshotsPath"] = self.screenshots_path
        return out


def _frame_size(viewport_w: float, viewport_h: float, scale: float) -> Tuple[int, int]:
    max_w = int(getattr(rcfg, "MAX_FRAME_WIDTH", 1920))
    max_h = int(getattr(rcfg, "MAX_FRAME_HEIGHT", 1080))
    width = max(1, min(int(round(viewport_w * scale)), max_w))
    height = max(1, min(int(round(viewport_h * scale)), max_h))
    return width, height


def raw_video_dir(output_dir: PathLike) -> Path:
    return Path(output_dir) / rcfg.RAW_VIDEO_DIRNAME


def create_video_recording_options(output_dir: PathLike, meta: Any) -> VideoOptions:
    """Compute the capture directory and frame size for a session.

    Pure: touches no files and needs no controller. The frame is the viewport
    scaled by its deviceScaleFactor, clamped to rcfg.MAX_FRAME_WIDTH x
    rcfg.MAX_FRAME_HEIGHT. `meta` may be a CanonicalHeader or any mapping with
    a `viewport`.
    """
    if isinstance(meta, CanonicalHeader):
        viewport = meta.viewport
    else:
        viewport = normalize_viewport(meta.get("viewport") if isinstance(meta, Mapping) else None)
    scale = viewport.device_scale_factor if viewport.device_scale_factor is not None else 1
    width, height = _frame_size(viewport.w, viewport.h, scale)
    return VideoOptions(dir=raw_video_dir(output_dir), width=width, height=height)


async def collect_video_paths(video_source: Any) -> Tuple[List[str], int]:
    """Ask the video source for each open page's video; skip the ones that fail.

    Returns:
        (paths, skipped): paths found in page order, and how many lookups failed.
    """
    if video_source is None:
        return [], 0
    try:
        pages = list(video_source.pages())
    except Exception:
        logger.warning("Could not enumerate pages for video lookup", exc_info=True)
        return [], 0

    paths: List[str] = []
    skipped = 0
    for page in pages:
        try:
            path = await video_source.video_path(page)
        except ArtifactUnavailable as exc:
            logger.debug("Video unavailable for %r: %s", page, exc)
            skipped += 1
            continue
        except Exception:
            logger.warning("Video lookup failed for %r (skipped)", page, exc_info=True)
            skipped += 1
            continue
        if path:
            paths.append(str(path))
        else:
            skipped += 1
    return paths, skipped


class RecordingController:
    """Binds one browser session to one timeline store and one output layout.

    Owns the session epoch: every mark() is stamped `now - start_time`, the
    same origin the video capture starts from, so overlays line up with the
    recorded frames.

    States: UNSTARTED -> RUNNING -> STOPPED. mark() outside RUNNING is ignored
    with a warning (counted in `ignored_marks`); start() twice and stop()
    before start() raise RecorderStateError.
    """

    def __init__(
        self,
        output_dir: PathLike,
        *,
        video_size: Optional[Tuple[int, int]] = None,
        in_memory: bool = False,
        video_source: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self.output_dir = Path(output_dir)
        self.video_size = video_size
        self.in_memory = in_memory
        self.ignored_marks = 0
        self._video_source = video_source
        self._clock = clock
        self._state = RecorderState.UNSTARTED
        self._start_time: Optional[float] = None
        self._duration_ms: Optional[int] = None
        self._store: Optional[TimelineStore] = None
        self._meta: Optional[CanonicalHeader] = None

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def start_time(self) -> Optional[float]:
        """Epoch (clock seconds) recorded by start(); None before that."""
        return self._start_time

    @property
    def duration_ms(self) -> Optional[int]:
        return self._duration_ms

    @property
    def video_dir(self) -> Path:
        return raw_video_dir(self.output_dir)

    @property
    def events_path(self) -> Path:
        return self.output_dir / rcfg.EVENTS_FILENAME

    @property
    def store(self) -> Optional[TimelineStore]:
        return self._store

    def get_meta(self) -> Optional[CanonicalHeader]:
        return self._meta

    def attach_video_source(self, video_source: Any) -> None:
        """Set the collaborator queried for per-page videos at stop()."""
        self._video_source = video_source

    def get_context_options(self, meta: Any = None) -> VideoOptions:
        """Capture options for creating the browser context; no side effects."""
        if self.video_size is not None:
            width, height = _frame_size(self.video_size[0], self.video_size[1], 1)
            return VideoOptions(dir=self.video_dir, width=width, height=height)
        if meta is not None:
            return create_video_recording_options(self.output_dir, meta)
        return VideoOptions(
            dir=self.video_dir, width=rcfg.MAX_FRAME_WIDTH, height=rcfg.MAX_FRAME_HEIGHT
        )

    async def start(self, meta: Meta) -> CanonicalHeader:
        """Record the epoch, prepare the output layout and open the timeline.

        Raises:
            ValidationError: `meta` is malformed (raised before anything is created).
            RecorderStateError: the controller was already started.
        """
        header = normalize_meta(meta)
        if self._state is not RecorderState.UNSTARTED:
            raise RecorderStateError(
                f"start() called in state {self._state.value}",
                context={"output_dir": str(self.output_dir)},
            )

        self._start_time = self._clock()
        await asyncio.to_thread(self.video_dir.mkdir, parents=True, exist_ok=True)
        sync_epoch = getattr(self._video_source, "sync_epoch", None)
        if callable(sync_epoch):
            sync_epoch(self._start_time)

        store = open_store(self.events_path, in_memory=self.in_memory)
        await store.init(header)
        self._store = store
        self._meta = header
        self._state = RecorderState.RUNNING

        options = self.get_context_options(header)
        store.emit(
            {
                "ts": 0,
                "t": "recording.start",
                "data": {"videoDir": str(options.dir), "videoSize": options.size},
            }
        )
        logger.info(
            "Recording started: run=%s video=%s %dx%d",
            header.run_id,
            options.dir,
            options.width,
            options.height,
        )
        return header

    def elapsed_ms(self) -> int:
        """Milliseconds since start(); 0 before the session started."""
        if self._start_time is None:
            return 0
        return session_ts(self._clock(), self._start_time)

    def mark(self, event: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Stamp `event` with the session-relative ts and append it.

        Any `ts` on the incoming event is replaced. Returns the stored event,
        or None when the session is not running.
        """
        if self._state is not RecorderState.RUNNING or self._store is None:
            self.ignored_marks += 1
            logger.warning(
                "mark(%s) ignored: recorder is %s", event.get("t"), self._state.value
            )
            return None
        record = dict(event)
        record["ts"] = session_ts(self._clock(), self._start_time)
        return self._store.emit(record)

    async def stop(self) -> RecordingArtifacts:
        """End the session and report its artifacts (best effort for videos).

        Raises:
            RecorderStateError: stop() before start().
        """
        if self._state is RecorderState.UNSTARTED:
            raise RecorderStateError("stop() called before start()")

        first_stop = self._state is RecorderState.RUNNING
        if first_stop:
            duration = session_ts(self._clock(), self._start_time)
            self._duration_ms = duration
            self._store.emit(
                {"ts": duration, "t": "recording.end", "data": {"durationMs": duration}}
            )
            # recording.end stays last: later marks are refused from here on
            self._state = RecorderState.STOPPED
        else:
            logger.warning("stop() called again; re-querying videos only")

        paths, skipped = await collect_video_paths(self._video_source)

        if first_stop:
            await self._store.close()

        if not paths:
            logger.warning(
                "No video file available for run %s (%d page(s) skipped)",
                self._meta.run_id if self._meta else "?",
                skipped,
            )
        artifacts = RecordingArtifacts(
            events_path=str(self.events_path),
            screenshots_path=str(self.output_dir),
            video_path=paths[0] if paths else None,
            video_paths=tuple(paths) if paths else None,
            skipped_videos=skipped,
        )
        logger.info(
            "Recording stopped after %s ms: %d video(s), events at %s",
            self._duration_ms,
            len(paths),
            artifacts.events_path,
        )
        return artifacts
