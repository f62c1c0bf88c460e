"""
tuner_models.py - Typed values passed between the tuning stages

Host profile, candidates, per-candidate metrics and the canonical report.
Report-facing models serialize with the camelCase keys consumed by the
report renderers and the Gradle init hook.
"""

import re
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Heap ceiling that keeps CompressedOops enabled on HotSpot
COMPRESSED_OOPS_LIMIT_GB = 32

# Sentinel values for a candidate whose build failed
SENTINEL_WALL_SECONDS = 99999.0
SENTINEL_RSS_KB = 99999999
SENTINEL_GC_PERCENT = 100.0

_HEAP_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kKmMgG]?)\s*$")


def heap_size_gb(value: str) -> float:
    """
    Convert a JVM heap size string ("4g", "512m") to gigabytes.

    Raises:
        ValueError: if the string is not a JVM size literal
    """
    match = _HEAP_SIZE_RE.match(value)
    if not match:
        raise ValueError(f"Not a JVM heap size: {value!r}")
    amount = int(match.group(1))
    unit = match.group(2).lower()
    if unit == "g":
        return float(amount)
    if unit == "m":
        return amount / 1024
    if unit == "k":
        return amount / (1024 ** 2)
    return amount / (1024 ** 3)


class HostProfile(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cpu_cores: int = Field(alias="cpuCores", ge=1)
    ram_gb: int = Field(alias="ramGB", ge=0)
    os: str
    arch: str


class Candidate(BaseModel):
    """One point of the sweep: Gradle daemon heap, Kotlin daemon heap, workers."""

    model_config = ConfigDict(frozen=True)

    gradle_xmx: str
    kotlin_xmx: str
    workers: int = Field(ge=1)

    @field_validator("gradle_xmx")
    @classmethod
    def _keep_compressed_oops(cls, value: str) -> str:
        if heap_size_gb(value) >= COMPRESSED_OOPS_LIMIT_GB:
            raise ValueError(
                f"Gradle heap {value} disables CompressedOops (must stay below "
                f"{COMPRESSED_OOPS_LIMIT_GB}g)"
            )
        return value

    @field_validator("kotlin_xmx")
    @classmethod
    def _valid_heap(cls, value: str) -> str:
        heap_size_gb(value)
        return value

    @property
    def name(self) -> str:
        return f"G{self.gradle_xmx}_K{self.kotlin_xmx}_W{self.workers}"

    @property
    def gradle_jvm_args(self) -> str:
        return f"-Xms512m -Xmx{self.gradle_xmx} -XX:+UseG1GC -Dfile.encoding=UTF-8"

    @property
    def kotlin_jvm_args(self) -> str:
        return f"-Xms256m -Xmx{self.kotlin_xmx} -XX:+UseG1GC"

    @property
    def compressed_oops(self) -> bool:
        return heap_size_gb(self.gradle_xmx) < COMPRESSED_OOPS_LIMIT_GB


class RunMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    wall_seconds: float
    peak_rss_kb: int
    gc_pause_percent: float
    gc_window_reliable: bool = False

    @classmethod
    def failed(cls) -> "RunMetrics":
        return cls(
            wall_seconds=SENTINEL_WALL_SECONDS,
            peak_rss_kb=SENTINEL_RSS_KB,
            gc_pause_percent=SENTINEL_GC_PERCENT,
            gc_window_reliable=False,
        )

    @property
    def succeeded(self) -> bool:
        return self.wall_seconds < SENTINEL_WALL_SECONDS


class TuningWeights(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    time: float = Field(default=1.0, alias="W_T")
    rss: float = Field(default=0.00001, alias="W_R")
    gc: float = Field(default=5.0, alias="W_G")


class ScoredCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: Candidate
    metrics: RunMetrics
    score: float


# ============================================================================
# Report document
# ============================================================================

class CandidateRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    gradle_xmx: str = Field(alias="gradleXmx")
    kotlin_xmx: str = Field(alias="kotlinXmx")
    workers: int
    wall_sec: float = Field(alias="wallSec")
    rss_kb: int = Field(alias="rssKB")
    gc_pct: float = Field(alias="gcPct")
    score: float
    gc_reliable: bool = Field(alias="gcReliable")

    @classmethod
    def from_scored(cls, scored: ScoredCandidate) -> "CandidateRow":
        return cls(
            name=scored.candidate.name,
            gradle_xmx=scored.candidate.gradle_xmx,
            kotlin_xmx=scored.candidate.kotlin_xmx,
            workers=scored.candidate.workers,
            wall_sec=scored.metrics.wall_seconds,
            rss_kb=scored.metrics.peak_rss_kb,
            gc_pct=scored.metrics.gc_pause_percent,
            score=scored.score,
            gc_reliable=scored.metrics.gc_window_reliable,
        )


class WinnerFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gradle_jvm_args: str = Field(alias="gradleJvmArgs")
    kotlin_daemon_jvm_args: str = Field(alias="kotlinDaemonJvmArgs")
    workers_max: int = Field(alias="workersMax")
    use_compressed_oops: bool = Field(alias="useCompressedOops")


class WinnerRow(CandidateRow):
    flags: WinnerFlags


class GradleTarget(BaseModel):
    version: str
    task: str


class RunCounts(BaseModel):
    warmups: int
    measured: int


class TuningReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: str = "1"
    generated_at: str = Field(alias="generatedAt")
    host: HostProfile
    gradle: GradleTarget
    runs: RunCounts
    weights: TuningWeights
    candidates: List[CandidateRow]
    winner: WinnerRow

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)
