from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
import asyncio
import copy
import logging

from ..errors import (
    AlreadyInitializedError,
    DurabilityWarning,
    InitializationError,
    RecorderStateError,
    ValidationError,
)
from .config import tcfg
from .events import validate_event
from .header import CanonicalHeader, normalize_meta
from .ndjson import dumps_line, write_manifest

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)

_CLOSE_SENTINEL = None


class TimelineStore:
    """Append-only, ordered event log for one session plus its canonical header.

    Responsibilities:
      - Builds the CanonicalHeader once, at init().
      - Keeps the in-memory sequence of events; it is the source of truth for
        get_events()/to_document() in every mode.
      - Hands each accepted event to the backing strategy (`_persist`).

    Typical flow:
      store = open_store("out/events.ndjson")
      await store.init(meta)
      store.emit({"ts": 0, "t": "run.start"})
      ...
      await store.close()

    emit() is synchronous and never waits on I/O. Events are kept in call
    order; `ts` values are not re-sorted.
    """

    in_memory = True

    def __init__(self, path: Optional[PathLike] = None):
        self.path: Optional[Path] = Path(path) if path is not None else None
        self.closed = False
        self.durability_warnings: List[DurabilityWarning] = []
        self._meta: Optional[CanonicalHeader] = None
        self._events: List[Dict[str, Any]] = []
        self._last_ts: Optional[int] = None

    async def init(self, raw_meta: Union[Mapping[str, Any], CanonicalHeader]) -> CanonicalHeader:
        """Normalize `raw_meta` into the session header and open the backing log.

        Raises:
            AlreadyInitializedError: init() already succeeded on this store.
            InitializationError: identifiers or viewport missing/malformed.
        """
        if self._meta is not None:
            raise AlreadyInitializedError(
                "Timeline store is already initialized",
                context={"run_id": self._meta.run_id},
            )
        try:
            header = normalize_meta(raw_meta)
        except ValidationError as exc:
            raise InitializationError(
                f"Cannot initialize timeline: {exc}", field=exc.field
            ) from exc

        await self._open(header)
        self._meta = header
        logger.info(
            "Timeline initialized (journey=%s run=%s, %s)",
            header.journey_id,
            header.run_id,
            "in-memory" if self.in_memory else self.path,
        )
        return header

    def emit(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        """Append one event; return a copy of what was stored.

        Raises:
            RecorderStateError: the store has not been initialized.
            ValidationError: unknown kind, bad `ts`, malformed payload field.
        """
        if self._meta is None:
            raise RecorderStateError("emit() called before init()")
        kind = validate_event(event)
        record = copy.deepcopy(dict(event))
        line = self._encode(record)

        if self._last_ts is not None and record["ts"] < self._last_ts:
            logger.debug(
                "Out-of-order %s event (ts=%d after ts=%d); kept as emitted",
                kind,
                record["ts"],
                self._last_ts,
            )
        self._last_ts = record["ts"]
        self._events.append(record)
        self._persist(line)
        return copy.deepcopy(record)

    def get_events(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._events)

    def get_meta(self) -> Optional[CanonicalHeader]:
        return self._meta

    def to_document(self) -> Dict[str, Any]:
        """Snapshot `{"meta": header-or-None, "events": [...]}` of the current state."""
        return {
            "meta": self._meta.to_dict() if self._meta is not None else None,
            "events": self.get_events(),
        }

    async def close(self) -> None:
        """Flush pending durable writes and release the backing resource (idempotent)."""
        if self.closed:
            return
        self.closed = True
        await self._close()

    def _record_warning(self, message: str, *, line: Optional[str] = None) -> None:
        warning = DurabilityWarning(message, line=line)
        self.durability_warnings.append(warning)
        logger.warning("%s", message)

    # --- strategy hooks ---

    async def _open(self, header: CanonicalHeader) -> None:
        pass

    def _encode(self, record: Dict[str, Any]) -> str:
        try:
            return dumps_line(record)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"{record.get('t')} event is not JSON-serializable: {exc}",
                field="event",
            ) from exc

    def _persist(self, line: Optional[str]) -> None:
        pass

    async def _close(self) -> None:
        pass


class BufferedStore(TimelineStore):
    """In-memory only; for ephemeral and test sessions. close() is a no-op."""

    in_memory = True


class DurableStore(TimelineStore):
    """File-backed store: every event is also appended as one NDJSON line.

    A single writer task drains a queue in emit order, so the file never sees
    events out of sequence. Each write is retried; lines that still fail are
    kept in a backlog (and everything after them queues behind it) and retried
    on the next write and once more at close().
    """

    in_memory = False

    def __init__(self, path: PathLike):
        super().__init__(path)
        self.manifest_path: Optional[Path] = None
        self._handle = None
        self._queue: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._backlog: List[str] = []

    @property
    def pending_lines(self) -> int:
        """Lines accepted by emit() but not yet on disk."""
        queued = self._queue.qsize() if self._queue is not None else 0
        return queued + len(self._backlog)

    async def _open(self, header: CanonicalHeader) -> None:
        await asyncio.to_thread(self._open_files, header)
        self._queue = asyncio.Queue()
        self._writer = asyncio.create_task(self._write_loop())

    def _open_files(self, header: CanonicalHeader) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Manifest first: a failed init leaves no open log handle behind
        self.manifest_path = write_manifest(self.path, header)
        self._handle = open(self.path, "w", encoding=tcfg.LOG_ENCODING)

    def _persist(self, line: Optional[str]) -> None:
        if self.closed or self._queue is None:
            self._record_warning(
                f"Event appended after {self.path} was closed; kept in memory only",
                line=line,
            )
            return
        self._queue.put_nowait(line)

    async def _write_loop(self) -> None:
        while True:
            line = await self._queue.get()
            if line is _CLOSE_SENTINEL:
                return
            batch = [line]
            stop = False
            while not self._queue.empty():
                nxt = self._queue.get_nowait()
                if nxt is _CLOSE_SENTINEL:
                    stop = True
                    break
                batch.append(nxt)
            await self._write_batch(batch)
            if stop:
                return

    def _append_lines(self, lines: List[str], progress: List[int]) -> None:
        # Runs in a worker thread; progress[0] counts lines known to be on disk
        for line in lines[progress[0]:]:
            self._handle.write(line)
            self._handle.flush()
            progress[0] += 1

    async def _write_batch(self, lines: List[str]) -> bool:
        """Write backlog + `lines` in order; return True when nothing is left over."""
        pending = self._backlog + lines
        self._backlog = []
        if not pending:
            return True

        retries = max(1, int(getattr(tcfg, "DURABLE_WRITE_RETRIES", 3)))
        delay = float(getattr(tcfg, "DURABLE_RETRY_DELAY_S", 0.05))
        progress = [0]
        last_error: Optional[BaseException] = None
        for attempt in range(retries):
            try:
                await asyncio.to_thread(self._append_lines, pending, progress)
                return True
            except Exception as exc:
                last_error = exc
                logger.debug(
                    "Append to %s failed (attempt %d/%d)",
                    self.path,
                    attempt + 1,
                    retries,
                    exc_info=True,
                )
                if attempt + 1 < retries:
                    await asyncio.sleep(delay)

        self._backlog = pending[progress[0]:]
        self._record_warning(
            f"Could not append {len(self._backlog)} event line(s) to {self.path}: "
            f"{last_error!r}; events remain in memory",
            line=self._backlog[0] if self._backlog else None,
        )
        return False

    async def _close(self) -> None:
        if self._queue is not None and self._writer is not None:
            self._queue.put_nowait(_CLOSE_SENTINEL)
            await self._writer
        if self._backlog and self._handle is not None:
            await self._write_batch([])
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                await asyncio.to_thread(handle.close)
            except OSError as exc:
                self._record_warning(f"Closing {self.path} failed: {exc!r}")
        logger.info(
            "Timeline log closed: %s (%d events, %d unwritten)",
            self.path,
            len(self._events),
            len(self._backlog),
        )


def open_store(path: Optional[PathLike] = None, *, in_memory: bool = False) -> TimelineStore:
    """Pick the store strategy: BufferedStore when `in_memory`, else DurableStore."""
    if in_memory:
        return BufferedStore(path)
    if path is None:
        raise ValueError("A durable timeline store needs a file path")
    return DurableStore(path)
