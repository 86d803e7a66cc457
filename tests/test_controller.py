from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cinepointer.errors import ArtifactUnavailable, RecorderStateError, ValidationError
from cinepointer.recording import RecorderState, RecordingController, collect_video_paths
from cinepointer.timeline.ndjson import load_event_log


META = {
    "name": "Test Journey",
    "viewport": {"w": 1920, "h": 1080, "deviceScaleFactor": 2},
    "journeyId": "test-journey",
    "runId": "test-run-123",
    "brandTheme": "trailer",
}


class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class _StubVideoSource:
    def __init__(self, videos: dict) -> None:
        self.videos = videos
        self.epoch = None

    def sync_epoch(self, epoch: float) -> None:
        self.epoch = epoch

    def pages(self):
        return list(self.videos)

    async def video_path(self, page):
        outcome = self.videos[page]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_marks_are_stamped_relative_to_start(tmp_path: Path) -> None:
    clock = _Clock()
    controller = RecordingController(tmp_path, clock=clock)

    async def scenario():
        await controller.start(META)
        clock.advance(0.5)
        controller.mark({"t": "navigation.start", "data": {"url": "https://example.com"}})
        clock.advance(0.75)
        controller.mark({"ts": 99999, "t": "caption.set", "text": "Hello"})
        clock.advance(0.25)
        return await controller.stop()

    artifacts = asyncio.run(scenario())
    events = controller.store.get_events()

    assert controller.start_time == 1000.0
    assert [(e["t"], e["ts"]) for e in events] == [
        ("recording.start", 0),
        ("navigation.start", 500),
        ("caption.set", 1250),
        ("recording.end", 1500),
    ]
    assert events[-1]["data"] == {"durationMs": 1500}
    assert controller.duration_ms == 1500
    assert artifacts.events_path == str(tmp_path / "events.ndjson")
    assert controller.state is RecorderState.STOPPED


def test_recording_start_describes_capture(tmp_path: Path) -> None:
    controller = RecordingController(tmp_path, in_memory=True, clock=_Clock())

    asyncio.run(controller.start(META))
    first = controller.store.get_events()[0]

    assert first["t"] == "recording.start"
    assert first["data"]["videoDir"] == str(tmp_path / "raw")
    assert first["data"]["videoSize"] == {"width": 1920, "height": 1080}
    assert (tmp_path / "raw").is_dir()


def test_persisted_log_round_trips_with_manifest(tmp_path: Path) -> None:
    clock = _Clock()
    controller = RecordingController(tmp_path, clock=clock)

    async def scenario():
        await controller.start(META)
        clock.advance(1.0)
        controller.mark({"t": "key.press", "key": "Enter"})
        await controller.stop()

    asyncio.run(scenario())
    document = load_event_log(controller.events_path)

    assert document["meta"]["journeyId"] == "test-journey"
    assert document["meta"]["name"] == "Test Journey"
    assert document["events"] == controller.store.get_events()


def test_unavailable_video_still_returns_artifacts(tmp_path: Path) -> None:
    source = _StubVideoSource({"page-1": ArtifactUnavailable("page closed early")})
    controller = RecordingController(tmp_path, video_source=source, clock=_Clock())

    async def scenario():
        await controller.start(META)
        return await controller.stop()

    artifacts = asyncio.run(scenario())

    assert artifacts.video_path is None
    assert artifacts.video_paths is None
    assert artifacts.skipped_videos == 1
    assert artifacts.events_path
    assert artifacts.screenshots_path == str(tmp_path)
    payload = artifacts.to_dict()
    assert "videoPath" not in payload
    assert payload["eventsPath"] == str(tmp_path / "events.ndjson")


def test_video_paths_skip_failing_pages(tmp_path: Path) -> None:
    good = tmp_path / "raw" / "page-002.webm"
    source = _StubVideoSource(
        {
            "page-1": RuntimeError("target crashed"),
            "page-2": good,
            "page-3": None,
        }
    )

    paths, skipped = asyncio.run(collect_video_paths(source))

    assert paths == [str(good)]
    assert skipped == 2


def test_start_hands_epoch_to_video_source(tmp_path: Path) -> None:
    source = _StubVideoSource({})
    controller = RecordingController(tmp_path, in_memory=True, clock=_Clock(42.0))

    controller.attach_video_source(source)
    asyncio.run(controller.start(META))

    assert source.epoch == 42.0


def test_mark_outside_running_is_ignored(tmp_path: Path) -> None:
    controller = RecordingController(tmp_path, in_memory=True, clock=_Clock())

    assert controller.mark({"t": "run.start"}) is None

    async def scenario():
        await controller.start(META)
        await controller.stop()

    asyncio.run(scenario())

    assert controller.mark({"t": "run.end"}) is None
    assert controller.ignored_marks == 2
    assert [e["t"] for e in controller.store.get_events()] == ["recording.start", "recording.end"]


def test_lifecycle_misuse_raises(tmp_path: Path) -> None:
    controller = RecordingController(tmp_path, in_memory=True, clock=_Clock())

    with pytest.raises(RecorderStateError):
        asyncio.run(controller.stop())

    asyncio.run(controller.start(META))
    with pytest.raises(RecorderStateError):
        asyncio.run(controller.start(META))


def test_invalid_meta_fails_before_any_side_effect(tmp_path: Path) -> None:
    out = tmp_path / "out"
    controller = RecordingController(out, clock=_Clock())

    with pytest.raises(ValidationError):
        asyncio.run(controller.start({"viewport": {"w": 10, "h": 10}}))

    assert controller.state is RecorderState.UNSTARTED
    assert not out.exists()


def test_second_stop_does_not_append(tmp_path: Path) -> None:
    controller = RecordingController(tmp_path, in_memory=True, clock=_Clock())

    async def scenario():
        await controller.start(META)
        first = await controller.stop()
        second = await controller.stop()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.events_path == second.events_path
    assert [e["t"] for e in controller.store.get_events()].count("recording.end") == 1


def test_elapsed_ms_before_start_is_zero(tmp_path: Path) -> None:
    assert RecordingController(tmp_path, clock=_Clock()).elapsed_ms() == 0


class _SlowVideoSource(_StubVideoSource):
    async def video_path(self, page):
        await asyncio.sleep(0.05)
        return await super().video_path(page)


def test_recording_end_stays_last_while_videos_finalize(tmp_path: Path) -> None:
    source = _SlowVideoSource({"page-1": tmp_path / "raw" / "page-001.webm"})
    clock = _Clock()
    controller = RecordingController(tmp_path, video_source=source, clock=clock)
    late: list = []

    async def late_caption():
        await asyncio.sleep(0.01)
        late.append(controller.mark({"t": "caption.set", "text": "too late"}))

    async def scenario():
        await controller.start(META)
        clock.advance(0.5)
        marker = asyncio.create_task(late_caption())
        artifacts = await controller.stop()
        await marker
        return artifacts

    artifacts = asyncio.run(scenario())
    events = controller.store.get_events()

    assert events[-1]["t"] == "recording.end"
    assert late == [None]
    assert controller.ignored_marks == 1
    assert controller.store.durability_warnings == []
    assert load_event_log(controller.events_path)["events"] == events
    assert artifacts.video_path == str(tmp_path / "raw" / "page-001.webm")
