"""
metrics_extractor.py - Resource usage and GC log parsing

Turns the raw output of /usr/bin/time (BSD `-l` or GNU `-v` format) and the
Gradle daemon's GC log into wall time, peak RSS and GC pause overhead.

Parsers never raise on malformed input: usage-report formats differ across
OS versions, so a missing field degrades to zero instead of aborting a sweep.
"""

import logging
import platform
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from tuner_errors import PreflightError

logger = logging.getLogger(__name__)

BSD = "bsd"
# macOS time -l: same layout as BSD, but RSS is reported in bytes
DARWIN = "darwin"
GNU = "gnu"

# BSD time -l
_BSD_REAL_RE = re.compile(r"(\d+(?:\.\d+)?)\s+real")
_BSD_RSS_RE = re.compile(r"(\d+)\s+maximum resident set size", re.IGNORECASE)
_BSD_RSS_SUFFIX_RE = re.compile(r"maximum resident set size[^0-9\n]*(\d+)", re.IGNORECASE)

# GNU time -v
_GNU_ELAPSED_RE = re.compile(r"Elapsed \(wall clock\) time.*?:\s*(\d[0-9:.]*)\s*$", re.MULTILINE)
_GNU_RSS_RE = re.compile(r"Maximum resident set size[^:]*:\s*(\d+)")

# Unified logging (JDK 9+): "[1.234s][info][gc] GC(3) Pause Young ... 4.567ms"
_UPTIME_RE = re.compile(r"\[(\d+\.\d+)s\]")
_PAUSE_MS_RE = re.compile(r"(\d+(?:\.\d+)?)ms\b")

# Legacy logging (JDK 8 -XX:+PrintGCTimeStamps): "1.234: [GC pause ... , 0.0045 secs]"
_LEGACY_UPTIME_RE = re.compile(r"^(?:\S+:\s+)?(\d+\.\d+):\s")
_PAUSE_SECS_RE = re.compile(r",\s*(\d+\.\d+)\s+secs\]")


class UsageSample(NamedTuple):
    wall_seconds: float
    peak_rss_kb: int


class GcWindow(NamedTuple):
    pause_percent: float
    reliable: bool


# ============================================================================
# Usage Reports
# ============================================================================

def _parse_clock(value: str) -> float:
    """Convert GNU time's "h:mm:ss" / "m:ss.ss" to seconds."""
    parts = value.split(":")
    try:
        numbers = [float(p) for p in parts]
    except ValueError:
        return 0.0
    if len(numbers) == 3:
        return numbers[0] * 3600 + numbers[1] * 60 + numbers[2]
    if len(numbers) == 2:
        return numbers[0] * 60 + numbers[1]
    return numbers[0]


def parse_usage(raw_output: str, flavor: str) -> UsageSample:
    """
    Extract wall time and maximum RSS from a time(1) report.

    Args:
        raw_output: stderr captured from `time -l` or `time -v`
        flavor: "bsd", "darwin" or "gnu"

    Returns:
        UsageSample; fields not found are 0
    """
    wall = 0.0
    rss = 0

    if flavor in (BSD, DARWIN):
        match = _BSD_REAL_RE.search(raw_output)
        if match:
            wall = float(match.group(1))
        match = _BSD_RSS_RE.search(raw_output) or _BSD_RSS_SUFFIX_RE.search(raw_output)
        if match:
            rss = int(match.group(1))
            if flavor == DARWIN:
                rss //= 1024
    else:
        match = _GNU_ELAPSED_RE.search(raw_output)
        if match:
            wall = _parse_clock(match.group(1))
        match = _GNU_RSS_RE.search(raw_output)
        if match:
            rss = int(match.group(1))

    if wall == 0.0:
        logger.debug(f"No wall-clock time found in {flavor} usage report")
    if rss == 0:
        logger.debug(f"No maximum RSS found in {flavor} usage report")

    return UsageSample(wall_seconds=wall, peak_rss_kb=rss)


def detect_time_command() -> Tuple[str, str]:
    """
    Find a time(1) that reports maximum RSS.

    Returns:
        (path, flavor) where flavor is "bsd" or "darwin" (-l), or "gnu" (-v)

    Raises:
        PreflightError: if no suitable time command exists
    """
    candidates: List[Tuple[str, str]] = [
        ("/usr/bin/time", BSD),
        ("/usr/bin/time", GNU),
    ]
    gtime = shutil.which("gtime")
    if gtime:
        candidates.append((gtime, GNU))
    time_path = shutil.which("time")
    if time_path and time_path != "/usr/bin/time":
        candidates.extend([(time_path, BSD), (time_path, GNU)])

    for path, flavor in candidates:
        if _time_supports(path, flavor):
            if flavor == BSD and platform.system() == "Darwin":
                flavor = DARWIN
            logger.info(f"Usage instrument: {path} ({flavor})")
            return path, flavor

    raise PreflightError("need /usr/bin/time supporting -l (macOS) or -v (GNU).")


def _time_supports(path: str, flavor: str) -> bool:
    flag = time_flag(flavor)
    try:
        result = subprocess.run(
            [path, flag, "true"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def time_flag(flavor: str) -> str:
    return "-v" if flavor == GNU else "-l"


# ============================================================================
# GC Logs
# ============================================================================

def _line_timestamp(line: str) -> Optional[float]:
    match = _UPTIME_RE.search(line)
    if match:
        return float(match.group(1))
    match = _LEGACY_UPTIME_RE.search(line)
    if match:
        return float(match.group(1))
    return None


def _pause_ms(line: str) -> float:
    """Duration of a pause event line in ms; the last duration token wins."""
    ms_values = _PAUSE_MS_RE.findall(line)
    if ms_values:
        return float(ms_values[-1])
    secs_values = _PAUSE_SECS_RE.findall(line)
    if secs_values:
        return float(secs_values[-1]) * 1000.0
    return 0.0


def summarize_gc_lines(lines: List[str]) -> GcWindow:
    """
    Compute pause overhead over the window spanned by the first and last line.

    pause_percent = pause_sum_ms / window_ms * 100, with window_ms floored
    to 1. The window is reliable only when last > first.
    """
    lines = [line for line in lines if line.strip()]
    pause_sum = sum(_pause_ms(line) for line in lines if "Pause" in line)

    first = _line_timestamp(lines[0]) if lines else None
    last = _line_timestamp(lines[-1]) if lines else None
    first = first if first is not None else 0.0
    last = last if last is not None else 0.0

    window_ms = int((last - first) * 1000.0)
    if window_ms <= 0:
        window_ms = 1

    return GcWindow(
        pause_percent=round(pause_sum / window_ms * 100.0, 2),
        reliable=last > first,
    )


def parse_gc_log(path: Path) -> GcWindow:
    """
    Parse a Gradle daemon GC log written with -Xlog:gc* or -Xloggc.

    A missing or unreadable log yields GcWindow(0.0, False).
    """
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            lines = f.readlines()
    except OSError as e:
        logger.warning(f"GC log unavailable ({path}): {e}")
        return GcWindow(pause_percent=0.0, reliable=False)

    window = summarize_gc_lines(lines)
    if not window.reliable:
        logger.info(f"GC window in {path} is degenerate; pause percentage is not meaningful")
    return window
