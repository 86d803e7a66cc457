"""Environment health checks for recording sessions (ffmpeg, browser, disk, memory)."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import re
import shutil
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from zendriver.core import config as zendriver_config

from .recording.config import rcfg

logger = logging.getLogger(__name__)

OK, WARN, ERROR = "ok", "warn", "error"

MIN_FFMPEG_MAJOR = 6
MIN_PYTHON = (3, 9)
DISK_WARN_PERCENT = 85.0
DISK_ERROR_PERCENT = 95.0
MEMINFO_PATH = "/proc/meminfo"
COMMAND_TIMEOUT_S = 10.0

_VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)?)")
_CHROME_NAMES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
)


@dataclass
class HealthCheckResult:
    name: str
    status: str  # ok | warn | error
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SystemHealth:
    overall: str  # healthy | degraded | unhealthy
    checks: List[HealthCheckResult]
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def _run_version_command(command: str) -> Dict[str, Any]:
    """Run `<command> -version`; return {available, version?, error?}."""
    binary = shutil.which(command)
    if binary is None:
        return {"available": False, "error": f"{command} not found in PATH"}
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        return {"available": False, "error": str(exc) or type(exc).__name__}
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=COMMAND_TIMEOUT_S)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return {"available": False, "error": f"{command} -version timed out"}
    if proc.returncode != 0:
        error = stderr.decode("utf-8", "replace").strip() or f"Exit code: {proc.returncode}"
        return {"available": False, "error": error}
    match = _VERSION_RE.search(stdout.decode("utf-8", "replace"))
    return {"available": True, "version": match.group(1) if match else None}


async def check_ffmpeg(command: Optional[str] = None) -> HealthCheckResult:
    result = await _run_version_command(command or rcfg.FFMPEG_BINARY)
    if not result["available"]:
        return HealthCheckResult(
            "FFmpeg", ERROR, "FFmpeg is not installed or not in PATH", {"error": result["error"]}
        )
    version = result.get("version")
    if version and int(version.split(".")[0]) < MIN_FFMPEG_MAJOR:
        return HealthCheckResult(
            "FFmpeg",
            WARN,
            f"FFmpeg {version} found, but version {MIN_FFMPEG_MAJOR}.0+ is recommended",
            {"version": version},
        )
    return HealthCheckResult(
        "FFmpeg", OK, f"FFmpeg {version or 'unknown version'} available", {"version": version}
    )


async def check_ffprobe(command: str = "ffprobe") -> HealthCheckResult:
    result = await _run_version_command(command)
    if not result["available"]:
        return HealthCheckResult(
            "ffprobe",
            ERROR,
            "ffprobe is not installed (usually comes with FFmpeg)",
            {"error": result["error"]},
        )
    version = result.get("version")
    message = f"ffprobe {version} available" if version else "ffprobe available"
    return HealthCheckResult("ffprobe", OK, message, {"version": version})


def check_python_version(version_info: Sequence[int] = sys.version_info) -> HealthCheckResult:
    version = ".".join(str(part) for part in tuple(version_info)[:3])
    if tuple(version_info)[:2] < MIN_PYTHON:
        wanted = ".".join(str(part) for part in MIN_PYTHON)
        return HealthCheckResult(
            "Python",
            WARN,
            f"Python {version} detected, version {wanted}+ is recommended",
            {"version": version},
        )
    return HealthCheckResult("Python", OK, f"Python {version}", {"version": version})


def _find_browser_executable() -> Optional[str]:
    """Ask zendriver where Chrome lives, then fall back to a PATH lookup."""
    for attr in ("find_executable", "find_chrome_executable"):
        finder = getattr(zendriver_config, attr, None)
        if finder is None:
            continue
        try:
            found = finder()
        except Exception:  # finder raises when nothing is installed
            logger.debug("zendriver %s() found no browser", attr, exc_info=True)
            continue
        if found:
            return os.fspath(found)
    for name in _CHROME_NAMES:
        found = shutil.which(name)
        if found:
            return found
    return None


def check_browser(finder: Optional[Callable[[], Optional[str]]] = None) -> HealthCheckResult:
    try:
        path = (finder or _find_browser_executable)()
    except Exception as exc:
        return HealthCheckResult(
            "Browser", ERROR, "Could not check for a Chrome browser", {"error": str(exc)}
        )
    if not path or not os.path.exists(path):
        return HealthCheckResult(
            "Browser",
            ERROR,
            "No Chrome/Chromium executable found for zendriver",
            {"executablePath": path},
        )
    return HealthCheckResult("Browser", OK, "Chrome browser available", {"executablePath": path})


def check_disk_space(path: str = ".") -> HealthCheckResult:
    try:
        usage = shutil.disk_usage(path)
    except OSError as exc:
        return HealthCheckResult("Disk Space", WARN, "Could not check disk space", {"error": str(exc)})
    used_percent = (usage.used / usage.total) * 100.0 if usage.total else 0.0
    details = {
        "path": os.path.abspath(path),
        "availableBytes": usage.free,
        "usedPercent": round(used_percent, 1),
    }
    available_gb = usage.free / (1024 ** 3)
    if used_percent > DISK_ERROR_PERCENT:
        return HealthCheckResult(
            "Disk Space", ERROR, f"Disk almost full: {used_percent:.0f}% used", details
        )
    if used_percent > DISK_WARN_PERCENT:
        return HealthCheckResult(
            "Disk Space", WARN, f"Disk space low: {available_gb:.1f} GB available", details
        )
    return HealthCheckResult(
        "Disk Space", OK, f"{available_gb:.1f} GB available ({used_percent:.0f}% used)", details
    )


def _read_meminfo(path: str) -> Dict[str, int]:
    """Return /proc/meminfo values in kB."""
    values: Dict[str, int] = {}
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            key, _, rest = line.partition(":")
            parts = rest.split()
            if parts:
                try:
                    values[key.strip()] = int(parts[0])
                except ValueError:
                    continue
    return values


def check_memory(path: str = MEMINFO_PATH) -> HealthCheckResult:
    try:
        info = _read_meminfo(path)
    except OSError as exc:
        return HealthCheckResult("Memory", WARN, "Could not check memory", {"error": str(exc)})
    total = info.get("MemTotal")
    available = info.get("MemAvailable", info.get("MemFree"))
    if not total or available is None:
        return HealthCheckResult("Memory", WARN, "Could not check memory", {"path": path})
    total_mb = total // 1024
    available_mb = available // 1024
    return HealthCheckResult(
        "Memory",
        OK,
        f"{available_mb} MB free of {total_mb} MB",
        {"totalMB": total_mb, "freeMB": available_mb},
    )


def summarise_overall(checks: Sequence[HealthCheckResult]) -> str:
    statuses = {check.status for check in checks}
    if ERROR in statuses:
        return "unhealthy"
    if WARN in statuses:
        return "degraded"
    return "healthy"


async def run_health_checks(path: str = ".") -> SystemHealth:
    """Run every check and fold the statuses into an overall verdict."""
    checks = [
        await check_ffmpeg(),
        await check_ffprobe(),
        check_python_version(),
        check_browser(),
        check_disk_space(path),
        check_memory(),
    ]
    return SystemHealth(
        overall=summarise_overall(checks),
        checks=checks,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def format_health(health: SystemHealth) -> str:
    icons = {OK: "[ok]  ", WARN: "[warn]", ERROR: "[fail]"}
    lines = [f"System health: {health.overall.upper()}", ""]
    for check in health.checks:
        lines.append(f"{icons.get(check.status, '[?]   ')} {check.name}: {check.message}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the diagnostics CLI."""

    parser = argparse.ArgumentParser(
        prog="cinepointer-doctor",
        description="Check that this machine can record journeys",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit results as JSON for scripting.",
    )
    parser.add_argument(
        "--path",
        default=".",
        help="Directory whose disk space is checked (the output root).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug details of each check.",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    health = asyncio.run(run_health_checks(args.path))
    if args.json:
        print(json.dumps(health.to_dict(), indent=2))
    else:
        print(format_health(health))
    return 1 if health.overall == "unhealthy" else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
