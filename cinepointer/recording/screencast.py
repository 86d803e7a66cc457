"""Video capture for zendriver tabs via CDP `Page.startScreencast`.

Frames are decoded and normalized with Pillow, written to a per-tab frame
directory with their clock timestamps, and encoded into one video by ffmpeg
when the video is requested. Frame durations follow the real arrival times,
and the first frame is held from the session epoch, so the video timeline
matches the event timeline.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import base64
import io
import itertools
import logging
import shutil
import time

from PIL import Image
from zendriver import cdp

from ..errors import ArtifactUnavailable, DependencyError
from .config import rcfg

logger = logging.getLogger(__name__)

Frame = Tuple[float, Path]  # (clock seconds, jpeg path)


def _concat_quote(path: Path) -> str:
    return "'" + str(path.resolve()).replace("'", "'\\''") + "'"


def build_concat_list(frames: Sequence[Frame], *, epoch: Optional[float] = None) -> str:
    """ffmpeg concat-demuxer script giving each frame its real on-screen time.

    Each frame lasts until the next one arrived (floored at
    rcfg.MIN_FRAME_DURATION_S); the last one is held for rcfg.LAST_FRAME_HOLD_S.
    With `epoch`, the first frame also covers the gap since the epoch.
    """
    if not frames:
        return ""
    min_d = float(getattr(rcfg, "MIN_FRAME_DURATION_S", 1.0 / 60.0))
    hold = float(getattr(rcfg, "LAST_FRAME_HOLD_S", 0.1))
    lines: List[str] = []
    for i, (ts, path) in enumerate(frames):
        if i + 1 < len(frames):
            duration = max(min_d, frames[i + 1][0] - ts)
        else:
            duration = max(min_d, hold)
        if i == 0 and epoch is not None and ts > epoch:
            duration += ts - epoch
        lines.append(f"file {_concat_quote(path)}")
        lines.append(f"duration {duration:.6f}")
    # The demuxer ignores the last duration unless the file is listed again
    lines.append(f"file {_concat_quote(frames[-1][1])}")
    return "\n".join(lines) + "\n"


class ScreencastRecorder:
    """Records one zendriver tab into numbered JPEG frames, then one video file."""

    def __init__(
        self,
        tab,
        video_dir: Path,
        *,
        width: int,
        height: int,
        clock: Callable[[], float] = time.time,
        epoch: Optional[float] = None,
        name: str = "page-001",
    ):
        self.tab = tab
        self.video_dir = Path(video_dir)
        self.width = int(width)
        self.height = int(height)
        self.epoch = epoch
        self._clock = clock
        self._name = name
        self.frame_dir = self.video_dir / f"{self._name}-frames"
        self._frames: List[Optional[Frame]] = []
        self._running = False
        self._finalized = False
        self._video_path: Optional[Path] = None
        self._pending: List[asyncio.Task] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def frame_count(self) -> int:
        return sum(1 for f in self._frames if f is not None)

    @property
    def tab_closed(self) -> bool:
        return bool(getattr(self.tab, "closed", False))

    async def start(self) -> None:
        await asyncio.to_thread(self.frame_dir.mkdir, parents=True, exist_ok=True)
        self.tab.add_handler(cdp.page.ScreencastFrame, self._on_frame)
        await self.tab.send(
            cdp.page.start_screencast(
                format_=rcfg.SCREENCAST_FORMAT,
                quality=rcfg.SCREENCAST_QUALITY,
                max_width=self.width,
                max_height=self.height,
                every_nth_frame=rcfg.EVERY_NTH_FRAME,
            )
        )
        self._running = True
        logger.info(
            "Screencast started for %s (%dx%d) -> %s",
            self._name,
            self.width,
            self.height,
            self.frame_dir,
        )

    async def _on_frame(self, event, tab=None) -> None:
        if not self._running:
            return
        arrived = self._clock()
        # Chrome stops sending frames until the previous one is acknowledged
        try:
            await self.tab.send(cdp.page.screencast_frame_ack(session_id=event.session_id))
        except Exception:
            logger.debug("Screencast frame ack failed", exc_info=True)

        index = len(self._frames)
        path = self.frame_dir / f"frame_{index:06d}.jpg"
        self._frames.append((arrived, path))
        task = asyncio.ensure_future(asyncio.to_thread(self._write_frame, event.data, path))
        self._pending.append(task)
        try:
            await task
        except Exception:
            self._frames[index] = None
            logger.warning("Dropping screencast frame %d of %s", index, self._name, exc_info=True)
        finally:
            self._pending.remove(task)

    def _write_frame(self, data_b64: str, path: Path) -> None:
        with Image.open(io.BytesIO(base64.b64decode(data_b64))) as img:
            frame = img
            if frame.mode != "RGB":
                frame = frame.convert("RGB")
            if frame.size != (self.width, self.height):
                frame = frame.resize((self.width, self.height), Image.Resampling.BILINEAR)
            frame.save(path, format="JPEG", quality=rcfg.FRAME_JPEG_QUALITY)

    async def stop(self) -> None:
        """Stop receiving frames and wait for frames still being written."""
        if not self._running:
            return
        self._running = False
        try:
            self.tab.remove_handler(cdp.page.ScreencastFrame, self._on_frame)
        except Exception:
            logger.debug("Removing screencast handler failed", exc_info=True)
        if not self.tab_closed:
            try:
                await self.tab.send(cdp.page.stop_screencast())
            except Exception:
                logger.debug("stopScreencast failed (tab going away?)", exc_info=True)
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def finalize(self) -> Path:
        """Stop capture and encode the frames into one video; return its path.

        Raises:
            ArtifactUnavailable: no frame was captured or encoding failed.
            DependencyError: ffmpeg is not installed.
        """
        if self._finalized:
            if self._video_path is None:
                raise ArtifactUnavailable(f"No video for {self._name}")
            return self._video_path
        await self.stop()
        self._finalized = True

        frames = [f for f in self._frames if f is not None]
        if not frames:
            raise ArtifactUnavailable(
                f"No frames captured for {self._name}",
                context={"tab_closed": self.tab_closed},
            )

        out_path = self.video_dir / f"{self._name}{rcfg.VIDEO_EXT}"
        list_path = self.frame_dir / "frames.txt"
        await asyncio.to_thread(
            list_path.write_text, build_concat_list(frames, epoch=self.epoch), "utf-8"
        )
        try:
            await encode_frames(list_path, out_path)
        except DependencyError:
            raise
        except Exception as exc:
            raise ArtifactUnavailable(
                f"Encoding {self._name} failed: {exc}", context={"frames": len(frames)}
            ) from exc

        if not rcfg.KEEP_FRAMES:
            await asyncio.to_thread(shutil.rmtree, self.frame_dir, True)
        self._video_path = out_path
        logger.info("Encoded %d frames of %s into %s", len(frames), self._name, out_path)
        return out_path


async def encode_frames(list_path: Path, out_path: Path) -> None:
    """Run ffmpeg over a concat list, producing a constant-frame-rate video."""
    binary = shutil.which(rcfg.FFMPEG_BINARY)
    if binary is None:
        raise DependencyError("ffmpeg", "ffmpeg is required to encode screencast frames")
    args = [
        binary,
        "-y",
        "-loglevel",
        "error",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(list_path),
        "-r",
        str(rcfg.OUTPUT_FPS),
        "-c:v",
        rcfg.VIDEO_CODEC,
        "-pix_fmt",
        rcfg.VIDEO_PIX_FMT,
        str(out_path),
    ]
    proc = await asyncio.create_subprocess_exec(
        *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
    )
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=rcfg.ENCODE_TIMEOUT_S)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    if proc.returncode != 0:
        tail = stderr.decode("utf-8", "replace").strip().splitlines()[-3:]
        raise RuntimeError(f"ffmpeg exited with {proc.returncode}: {' | '.join(tail)}")


class ZendriverVideoSource:
    """Video collaborator for RecordingController backed by zendriver tabs.

    Typical flow:
      source = ZendriverVideoSource.from_options(controller.get_context_options(meta))
      controller.attach_video_source(source)
      await controller.start(meta)      # hands the epoch to the source
      await source.attach(tab)
      ...
      artifacts = await controller.stop()
    """

    def __init__(
        self,
        video_dir: Path,
        *,
        width: int,
        height: int,
        clock: Callable[[], float] = time.time,
    ):
        self.video_dir = Path(video_dir)
        self.width = width
        self.height = height
        self.epoch: Optional[float] = None
        self._clock = clock
        self._recorders: List[ScreencastRecorder] = []
        self._page_ids = itertools.count(1)

    @classmethod
    def from_options(cls, options: Any, **kwargs) -> "ZendriverVideoSource":
        """Build from a VideoOptions (dir/width/height)."""
        return cls(options.dir, width=options.width, height=options.height, **kwargs)

    def sync_epoch(self, epoch: float) -> None:
        """Align every recorder (current and future) to the session epoch."""
        self.epoch = epoch
        for rec in self._recorders:
            rec.epoch = epoch

    async def attach(self, tab) -> ScreencastRecorder:
        rec = ScreencastRecorder(
            tab,
            self.video_dir,
            width=self.width,
            height=self.height,
            clock=self._clock,
            epoch=self.epoch,
            name=f"page-{next(self._page_ids):03d}",
        )
        await rec.start()
        self._recorders.append(rec)
        return rec

    def pages(self) -> List[Any]:
        return [rec.tab for rec in self._recorders]

    def recorder_for(self, tab) -> Optional[ScreencastRecorder]:
        return next((rec for rec in self._recorders if rec.tab is tab), None)

    async def video_path(self, tab) -> Path:
        rec = self.recorder_for(tab)
        if rec is None:
            raise ArtifactUnavailable("Tab is not being recorded")
        return await rec.finalize()

    async def stop_all(self) -> Dict[str, int]:
        """Stop every screencast without encoding; return frame counts per recorder."""
        await asyncio.gather(*(rec.stop() for rec in self._recorders))
        return {rec.frame_dir.name: rec.frame_count for rec in self._recorders}
