"""
host_profiler.py - Host Detection for the build-helium tuner

Reads CPU core count and RAM size from the OS, plus the Gradle and JVM
versions of the project being tuned.

Supports:
- BSD-style probing via sysctl (hw.ncpu, hw.memsize) - macOS / FreeBSD
- Linux-style probing via os.cpu_count() and /proc/meminfo
- Gradle version key detection via ./gradlew -v
- JVM major version detection (./gradlew -v, then java -version)
"""

import logging
import os
import platform
import re
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from tuner_errors import EnvironmentDetectionError
from tuner_models import HostProfile

logger = logging.getLogger(__name__)

PROC_MEMINFO = Path("/proc/meminfo")

DEFAULT_JAVA_MAJOR = 11


# ============================================================================
# CPU / Memory Probes
# ============================================================================

def _sysctl(key: str) -> Optional[str]:
    """Run `sysctl -n <key>`, returning None when sysctl is unavailable or fails."""
    if not shutil.which("sysctl"):
        return None
    try:
        result = subprocess.run(
            ["sysctl", "-n", key],
            capture_output=True,
            text=True,
            timeout=5
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"sysctl {key} failed: {e}")
        return None
    if result.returncode != 0 or not result.stdout.strip():
        return None
    return result.stdout.strip()


def probe_bsd() -> Optional[Tuple[int, int]]:
    """
    BSD-style probe: sysctl hw.ncpu and hw.memsize.

    Returns:
        (cpu_cores, ram_gb) or None if sysctl cannot answer both keys
    """
    ncpu = _sysctl("hw.ncpu")
    memsize = _sysctl("hw.memsize")
    if ncpu is None or memsize is None:
        return None
    try:
        return int(ncpu), int(memsize) // 1024 // 1024 // 1024
    except ValueError:
        logger.debug(f"Unexpected sysctl output: hw.ncpu={ncpu!r} hw.memsize={memsize!r}")
        return None


def probe_linux(meminfo_path: Path = PROC_MEMINFO) -> Optional[Tuple[int, int]]:
    """
    Linux-style probe: logical CPU count and MemTotal from /proc/meminfo.

    Returns:
        (cpu_cores, ram_gb) or None if /proc/meminfo is missing or unparseable
    """
    cores = os.cpu_count()
    if not cores:
        return None
    try:
        text = meminfo_path.read_text()
    except OSError:
        return None

    match = re.search(r"^MemTotal:\s+(\d+)", text, re.MULTILINE)
    if not match:
        return None
    # MemTotal is reported in kB
    return cores, int(match.group(1)) // 1024 // 1024


def profile() -> HostProfile:
    """
    Detect the host's CPU cores and RAM.

    Returns:
        HostProfile for the current machine

    Raises:
        EnvironmentDetectionError: if neither probe is available
    """
    for method, probe in (("sysctl", probe_bsd), ("procfs", probe_linux)):
        found = probe()
        if found is None:
            continue
        cores, ram_gb = found
        host = HostProfile(
            cpu_cores=max(1, cores),
            ram_gb=ram_gb,
            os=platform.system(),
            arch=platform.machine(),
        )
        logger.info(f"Host detected via {method}: {host.cpu_cores} cores, {host.ram_gb} GB RAM "
                    f"({host.os}/{host.arch})")
        return host

    raise EnvironmentDetectionError(
        "Cannot detect CPU/RAM: neither sysctl nor /proc/meminfo is available"
    )


# ============================================================================
# Gradle / JVM Detection
# ============================================================================

def _gradlew_version_output(gradlew: str = "./gradlew") -> str:
    try:
        result = subprocess.run(
            [gradlew, "-v"],
            capture_output=True,
            text=True,
            timeout=120
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"'{gradlew} -v' failed: {e}")
        return ""
    return result.stdout or ""


def parse_gradle_version(version_output: str) -> str:
    """Extract "8.7" from the "Gradle 8.7" line of `gradlew -v`; empty if absent."""
    match = re.search(r"^Gradle\s+(\S+)", version_output, re.MULTILINE)
    return match.group(1) if match else ""


def parse_java_major(version_text: str) -> Optional[int]:
    """
    Extract the JVM major version from `gradlew -v` or `java -version` output.

    "1.8.0_392" maps to 8, "17.0.9" to 17.
    """
    match = re.search(r"^JVM:\s+\"?(\d+(?:\.\d+)?)", version_text, re.MULTILINE)
    if not match:
        match = re.search(r"version\s+\"(\d+(?:\.\d+)?)", version_text)
    if not match:
        return None

    version = match.group(1)
    if version.startswith("1."):
        return 8
    return int(version.split(".")[0])


def detect_gradle_version(gradlew: str = "./gradlew") -> str:
    version = parse_gradle_version(_gradlew_version_output(gradlew))
    if version:
        logger.info(f"Gradle version: {version}")
    else:
        logger.warning("Could not determine Gradle version")
    return version


def detect_java_major(gradlew: str = "./gradlew") -> int:
    """Best-effort JVM major version; falls back to 11 when undetectable."""
    major = parse_java_major(_gradlew_version_output(gradlew))
    if major is None and shutil.which("java"):
        try:
            result = subprocess.run(
                ["java", "-version"],
                capture_output=True,
                text=True,
                timeout=30
            )
            # java -version prints to stderr
            major = parse_java_major(result.stderr or "")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"java -version failed: {e}")

    if major is None:
        logger.warning(f"Could not determine JVM version, assuming {DEFAULT_JAVA_MAJOR}")
        return DEFAULT_JAVA_MAJOR

    logger.info(f"JVM major version: {major}")
    return major
