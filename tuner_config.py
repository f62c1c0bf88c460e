"""
tuner_config.py - Configuration for the build-helium tuner

Configuration priority:
1. Environment variables (highest priority)
2. ~/.gradle/build-helium/config.yaml
3. Hardcoded defaults (fallback)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from tuner_errors import PreconditionError
from tuner_models import TuningWeights

logger = logging.getLogger(__name__)

# ============================================================================
# Defaults
# ============================================================================

HELIUM_HOME = Path.home() / ".gradle" / "build-helium"
CONFIG_FILE = HELIUM_HOME / "config.yaml"

DEFAULT_REPORT_DIR = HELIUM_HOME / "reports"
DEFAULT_GCLOG_BASE = Path("/tmp/build-helium-gclogs")
DEFAULT_TUNER_CONFIG = Path.home() / ".gradle" / "gradle-tuner.json"

DEFAULT_TASK = "heliumBenchmark"
BIG_TASK = "heliumBenchmarkBig"

DEFAULT_WARMUP_RUNS = 1
DEFAULT_MEASURED_RUNS = 2

TRUTHY = ("1", "true", "on", "yes")


@dataclass
class TunerSettings:
    warmup_runs: int = DEFAULT_WARMUP_RUNS
    measured_runs: int = DEFAULT_MEASURED_RUNS
    weights: TuningWeights = field(default_factory=TuningWeights)
    report_dir: Path = DEFAULT_REPORT_DIR
    gclog_base: Path = DEFAULT_GCLOG_BASE
    tuner_config_path: Path = DEFAULT_TUNER_CONFIG
    keep_gclogs: bool = False
    aggressive_daemon_clean: bool = False


def load_config_file(path: Path = CONFIG_FILE) -> Dict[str, Any]:
    """Read the optional YAML config; invalid files are ignored with a warning."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring invalid config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}
    logger.info(f"Loaded tuner settings from {path}")
    return data


def _number(name: str, raw: Any, kind):
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise PreconditionError(f"{name} must be a number (got {raw!r})")


def load_settings(env: Optional[Dict[str, str]] = None,
                  config_path: Path = CONFIG_FILE) -> TunerSettings:
    """
    Resolve settings from env > config.yaml > defaults and validate run counts.

    Raises:
        PreconditionError: MEASURED_RUNS < 1 or a non-numeric override
    """
    env = os.environ if env is None else env
    file_config = load_config_file(config_path)

    def pick(env_key: str, file_key: str, default: Any) -> Any:
        if env.get(env_key):
            logger.info(f"Environment override: {env_key}={env[env_key]}")
            return env[env_key]
        return file_config.get(file_key, default)

    warmups = _number("WARMUP_RUNS", pick("WARMUP_RUNS", "warmup_runs", DEFAULT_WARMUP_RUNS), int)
    measured = _number("MEASURED_RUNS", pick("MEASURED_RUNS", "measured_runs", DEFAULT_MEASURED_RUNS), int)

    if measured < 1:
        raise PreconditionError(f"MEASURED_RUNS must be >= 1 (got {measured}).")
    if warmups < 0:
        warmups = 0

    defaults = TuningWeights()
    file_weights = file_config.get("weights") or {}
    if not isinstance(file_weights, dict):
        raise PreconditionError(
            f"weights in {config_path} must be a mapping of time/rss/gc (got {file_weights!r})"
        )
    weights = TuningWeights(
        time=_number("W_T", env.get("W_T") or file_weights.get("time", defaults.time), float),
        rss=_number("W_R", env.get("W_R") or file_weights.get("rss", defaults.rss), float),
        gc=_number("W_G", env.get("W_G") or file_weights.get("gc", defaults.gc), float),
    )

    settings = TunerSettings(
        warmup_runs=warmups,
        measured_runs=measured,
        weights=weights,
        report_dir=Path(file_config.get("report_dir", DEFAULT_REPORT_DIR)).expanduser(),
        gclog_base=Path(file_config.get("gclog_dir", DEFAULT_GCLOG_BASE)).expanduser(),
        tuner_config_path=Path(file_config.get("tuner_config", DEFAULT_TUNER_CONFIG)).expanduser(),
        keep_gclogs=str(pick("KEEP_GCLOGS", "keep_gclogs", "0")).lower() in TRUTHY,
        aggressive_daemon_clean=str(
            pick("HELIUM_AGGRESSIVE_DAEMON_CLEAN", "aggressive_daemon_clean", "0")
        ).lower() in TRUTHY,
    )
    return settings
