"""Newline-delimited JSON helpers and the on-disk layout of an event log.

An event log is `events.ndjson` (one event per line, events only) plus a
header manifest next to it (`events.meta.json`). Readers that only have the
log file must be handed the manifest, or the header, some other way.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
import json
import logging

from ..errors import ValidationError
from .config import tcfg
from .header import CanonicalHeader, normalize_meta

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def dumps_line(item: Any) -> str:
    """Serialize one record as a single NDJSON line (with trailing newline)."""
    return json.dumps(item, ensure_ascii=False, separators=(",", ":")) + "\n"


def serialize_ndjson(items: Iterable[Any]) -> str:
    return "".join(dumps_line(item) for item in items)


def parse_ndjson_string(content: str) -> List[Any]:
    """Parse NDJSON text, skipping blank lines."""
    return [json.loads(line) for line in content.splitlines() if line.strip()]


def read_ndjson(path: PathLike) -> List[Any]:
    return parse_ndjson_string(Path(path).read_text(encoding=tcfg.LOG_ENCODING))


def write_ndjson(path: PathLike, items: Iterable[Any]) -> None:
    Path(path).write_text(serialize_ndjson(items), encoding=tcfg.LOG_ENCODING)


def manifest_path_for(events_path: PathLike) -> Path:
    """events.ndjson -> events.meta.json (same directory)."""
    p = Path(events_path)
    return p.with_name(p.stem + tcfg.MANIFEST_SUFFIX)


def write_manifest(events_path: PathLike, header: CanonicalHeader) -> Path:
    """Write the canonical header sidecar for an event log; return its path."""
    target = manifest_path_for(events_path)
    target.write_text(
        json.dumps({"meta": header.to_dict()}, ensure_ascii=False, indent=2) + "\n",
        encoding=tcfg.LOG_ENCODING,
    )
    return target


def read_manifest(manifest_path: PathLike) -> CanonicalHeader:
    raw = json.loads(Path(manifest_path).read_text(encoding=tcfg.LOG_ENCODING))
    meta = raw.get("meta", raw) if isinstance(raw, dict) else raw
    return normalize_meta(meta)


def load_event_log(
    events_path: PathLike, manifest_path: Optional[PathLike] = None
) -> Dict[str, Any]:
    """Rebuild a `{"meta", "events"}` document from a persisted log.

    The header comes from `manifest_path` (default: the sidecar next to the
    log). Logs written with the header as a leading `{"meta": ...}` line are
    accepted too.

    Raises:
        ValidationError: no header could be found.
    """
    meta: Optional[CanonicalHeader] = None
    events: List[Dict[str, Any]] = []

    for record in read_ndjson(events_path):
        if isinstance(record, dict) and set(record) == {"meta"}:
            meta = normalize_meta(record["meta"])
        elif isinstance(record, dict) and "t" in record:
            events.append(record)
        else:
            logger.debug("Skipping unrecognized record in %s: %r", events_path, record)

    sidecar = Path(manifest_path) if manifest_path else manifest_path_for(events_path)
    if sidecar.exists():
        meta = read_manifest(sidecar)

    if meta is None:
        raise ValidationError(
            f"No canonical header found for {events_path} (expected {sidecar})",
            field="meta",
        )
    return {"meta": meta.to_dict(), "events": events}


def save_document(path: PathLike, document: Dict[str, Any]) -> Path:
    """Write a whole `{"meta", "events"}` document as one JSON file."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(
        json.dumps(document, ensure_ascii=False) + "\n", encoding=tcfg.LOG_ENCODING
    )
    return target
