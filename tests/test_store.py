from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from cinepointer.errors import (
    AlreadyInitializedError,
    InitializationError,
    RecorderStateError,
    ValidationError,
)
from cinepointer.timeline import BufferedStore, DurableStore, open_store
from cinepointer.timeline import store as store_module
from cinepointer.timeline.config import tcfg
from cinepointer.timeline.ndjson import manifest_path_for, read_ndjson


META = {
    "viewport": {"w": 1920, "h": 1080, "deviceScaleFactor": 2},
    "journeyId": "test-journey",
    "runId": "test-run-123",
    "brandTheme": "trailer",
}


def test_open_store_picks_strategy(tmp_path: Path) -> None:
    assert isinstance(open_store(in_memory=True), BufferedStore)
    assert isinstance(open_store(tmp_path / "events.ndjson"), DurableStore)
    with pytest.raises(ValueError):
        open_store()


def test_buffered_store_document() -> None:
    async def scenario():
        store = BufferedStore()
        header = await store.init(META)
        store.emit({"ts": 0, "t": "run.start"})
        store.emit({"ts": 1000, "t": "run.end", "data": {"durationMs": 1000}})
        await store.close()
        return header, store.to_document()

    header, document = asyncio.run(scenario())

    assert header.dpi == 2
    assert document["meta"]["viewport"]["w"] == 1920
    assert len(document["events"]) == 2
    assert document["events"][1]["ts"] == 1000
    assert document["events"][1]["data"] == {"durationMs": 1000}


def test_emit_before_init_raises() -> None:
    store = BufferedStore()

    with pytest.raises(RecorderStateError):
        store.emit({"ts": 0, "t": "run.start"})
    assert store.to_document() == {"meta": None, "events": []}


def test_init_twice_raises() -> None:
    async def scenario():
        store = BufferedStore()
        await store.init(META)
        await store.init(META)

    with pytest.raises(AlreadyInitializedError):
        asyncio.run(scenario())


def test_init_with_bad_meta_raises_initialization_error() -> None:
    store = BufferedStore()

    with pytest.raises(InitializationError) as excinfo:
        asyncio.run(store.init({"viewport": {"w": 10, "h": 10}, "journeyId": "j"}))

    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.field == "runId"
    assert store.get_meta() is None


def test_unknown_kind_is_rejected_and_not_stored() -> None:
    async def scenario():
        store = BufferedStore()
        await store.init(META)
        with pytest.raises(ValidationError):
            store.emit({"ts": 5, "t": "nope"})
        return store.get_events()

    assert asyncio.run(scenario()) == []


def test_events_keep_call_order_even_when_ts_goes_backwards() -> None:
    async def scenario():
        store = BufferedStore()
        await store.init(META)
        store.emit({"ts": 50, "t": "caption.set", "text": "b"})
        store.emit({"ts": 10, "t": "caption.set", "text": "a"})
        return store.get_events()

    events = asyncio.run(scenario())

    assert [e["ts"] for e in events] == [50, 10]


def test_stored_events_are_copies() -> None:
    async def scenario():
        store = BufferedStore()
        await store.init(META)
        event = {"ts": 0, "t": "run.start", "data": {"n": 1}}
        returned = store.emit(event)
        event["data"]["n"] = 2
        returned["data"]["n"] = 3
        store.get_events()[0]["data"]["n"] = 4
        return store.get_events()

    assert asyncio.run(scenario())[0]["data"] == {"n": 1}


def test_durable_log_matches_memory(tmp_path: Path) -> None:
    path = tmp_path / "session" / "events.ndjson"

    async def scenario():
        store = DurableStore(path)
        await store.init(META)
        store.emit({"ts": 0, "t": "run.start"})
        store.emit({"ts": 250, "t": "cursor.move", "to": [10, 20], "ease": "inOutCubic"})
        await asyncio.sleep(0)
        store.emit({"ts": 900, "t": "caption.set", "text": "Café ✓"})
        store.emit({"ts": 1000, "t": "run.end", "data": {"durationMs": 1000}})
        await store.close()
        return store

    store = asyncio.run(scenario())

    assert read_ndjson(path) == store.get_events()
    assert store.pending_lines == 0
    assert store.durability_warnings == []
    manifest = json.loads(manifest_path_for(path).read_text(encoding="utf-8"))
    assert manifest["meta"]["runId"] == "test-run-123"
    assert store.manifest_path == manifest_path_for(path)


def test_log_lines_hold_events_only(tmp_path: Path) -> None:
    path = tmp_path / "events.ndjson"

    async def scenario():
        store = DurableStore(path)
        await store.init(META)
        store.emit({"ts": 0, "t": "run.start"})
        await store.close()

    asyncio.run(scenario())

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0]) == {"ts": 0, "t": "run.start"}


def test_close_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "events.ndjson"

    async def scenario():
        store = DurableStore(path)
        await store.init(META)
        store.emit({"ts": 0, "t": "run.start"})
        await store.close()
        await store.close()
        return store

    store = asyncio.run(scenario())

    assert store.closed
    assert len(read_ndjson(path)) == 1


def test_emit_after_close_warns_and_keeps_event_in_memory(tmp_path: Path) -> None:
    path = tmp_path / "events.ndjson"

    async def scenario():
        store = DurableStore(path)
        await store.init(META)
        await store.close()
        store.emit({"ts": 3, "t": "run.end"})
        return store

    store = asyncio.run(scenario())

    assert [e["t"] for e in store.get_events()] == ["run.end"]
    assert len(store.durability_warnings) == 1
    assert read_ndjson(path) == []


@pytest.mark.parametrize("in_memory", [True, False])
def test_unserializable_payload_is_rejected(tmp_path: Path, in_memory: bool) -> None:
    async def scenario():
        store = open_store(tmp_path / "events.ndjson", in_memory=in_memory)
        await store.init(META)
        try:
            with pytest.raises(ValidationError):
                store.emit({"ts": 0, "t": "run.start", "data": {"when": object()}})
            return store.get_events()
        finally:
            await store.close()

    assert asyncio.run(scenario()) == []


def test_failed_appends_are_retried_at_close(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(tcfg, "DURABLE_RETRY_DELAY_S", 0.0)
    path = tmp_path / "events.ndjson"
    calls = {"n": 0}

    async def scenario():
        store = DurableStore(path)
        await store.init(META)
        original = store._append_lines

        def flaky(lines, progress):
            calls["n"] += 1
            if calls["n"] <= tcfg.DURABLE_WRITE_RETRIES:
                raise OSError("disk hiccup")
            original(lines, progress)

        monkeypatch.setattr(store, "_append_lines", flaky)
        store.emit({"ts": 0, "t": "run.start"})
        store.emit({"ts": 10, "t": "run.end"})
        await store.close()
        return store

    store = asyncio.run(scenario())

    assert len(store.durability_warnings) == 1
    assert store.pending_lines == 0
    assert read_ndjson(path) == store.get_events()


def test_persistent_failure_keeps_memory_intact(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(tcfg, "DURABLE_RETRY_DELAY_S", 0.0)
    path = tmp_path / "events.ndjson"

    def broken(lines, progress):
        raise OSError("read-only file system")

    async def scenario():
        store = DurableStore(path)
        await store.init(META)
        monkeypatch.setattr(store, "_append_lines", broken)
        store.emit({"ts": 0, "t": "run.start"})
        store.emit({"ts": 10, "t": "run.end"})
        await store.close()
        return store

    store = asyncio.run(scenario())

    assert len(store.get_events()) == 2
    assert store.pending_lines == 2
    assert store.durability_warnings
    assert store.durability_warnings[0].line is not None
    assert read_ndjson(path) == []


def test_failed_manifest_write_leaves_no_open_log(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def refuse(events_path, header):
        raise PermissionError("read-only output directory")

    monkeypatch.setattr(store_module, "write_manifest", refuse)
    store = DurableStore(tmp_path / "events.ndjson")

    with pytest.raises(PermissionError):
        asyncio.run(store.init(META))

    assert store._handle is None
    assert store.get_meta() is None
    assert not (tmp_path / "events.ndjson").exists()
