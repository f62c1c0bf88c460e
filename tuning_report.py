"""
tuning_report.py - Canonical JSON report and the persisted tuner config

The report is written once per sweep as report-<stamp><tag>.json and
mirrored to latest.json. The winner's settings are merged into
~/.gradle/gradle-tuner.json, which the gradle-tuner init hook reads on every
build; keys not owned by the tuner are preserved across updates.
"""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from tuner_models import (
    CandidateRow,
    GradleTarget,
    HostProfile,
    RunCounts,
    ScoredCandidate,
    TuningReport,
    TuningWeights,
    WinnerFlags,
    WinnerRow,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".gradle" / "gradle-tuner.json"


def utc_stamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%dT%H%M%SZ")


# ============================================================================
# Report
# ============================================================================

def build_report(
    stamp: str,
    host: HostProfile,
    gradle_version: str,
    task: str,
    warmups: int,
    measured: int,
    weights: TuningWeights,
    scored: List[ScoredCandidate],
    winner: ScoredCandidate,
) -> TuningReport:
    """Assemble the report document for a completed sweep."""
    row = CandidateRow.from_scored(winner)
    flags = WinnerFlags(
        gradle_jvm_args=winner.candidate.gradle_jvm_args,
        kotlin_daemon_jvm_args=winner.candidate.kotlin_jvm_args,
        workers_max=winner.candidate.workers,
        use_compressed_oops=winner.candidate.compressed_oops,
    )
    return TuningReport(
        generated_at=stamp,
        host=host,
        gradle=GradleTarget(version=gradle_version, task=task),
        runs=RunCounts(warmups=warmups, measured=measured),
        weights=weights,
        candidates=[CandidateRow.from_scored(s) for s in scored],
        winner=WinnerRow(**row.model_dump(), flags=flags),
    )


def write_report(report: TuningReport, report_dir: Path, stamp: str, tag: str = "") -> Path:
    """
    Write report-<stamp><tag>.json and copy it to latest.json.

    Returns:
        Path of the timestamped report
    """
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)

    out_path = report_dir / f"report-{stamp}{tag}.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(report.to_document(), f, indent=2)

    shutil.copyfile(out_path, report_dir / "latest.json")
    logger.info(f"Report written to {out_path}")
    return out_path


# ============================================================================
# Persisted Config
# ============================================================================

def load_persisted_config(path: Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load the tuner config object.

    Returns:
        The JSON object, or {} if the file is missing, invalid or not an object
    """
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable tuner config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring tuner config {path}: not a JSON object")
        return {}
    return data


def persist_config(report: TuningReport, path: Path = DEFAULT_CONFIG_PATH) -> Path:
    """
    Merge the winner's settings into the tuner config.

    The previous file is copied to <path>.bak before being replaced.

    Returns:
        Path of the updated config
    """
    path = Path(path)
    existing = load_persisted_config(path)

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        shutil.copyfile(path, path.with_name(path.name + ".bak"))

    existing.update({
        "gradleVersionKey": report.gradle.version,
        "gradleJvmArgs": report.winner.flags.gradle_jvm_args,
        "kotlinDaemonJvmArgs": report.winner.flags.kotlin_daemon_jvm_args,
        "workersMax": report.winner.flags.workers_max,
    })

    with open(path, "w", encoding="utf-8") as f:
        json.dump(existing, f, indent=2)

    logger.info(f"Tuned config persisted to {path}")
    return path
