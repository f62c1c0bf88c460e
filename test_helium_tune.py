"""
test_helium_tune.py - End-to-end tests for the helium-tune command

Gradle, time(1) and host probes are mocked; only the CLI wiring, exit codes
and written artifacts are exercised.

Usage:
    python test_helium_tune.py
"""

import json
import os
import shutil
import signal
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent))

from typer.testing import CliRunner

import helium_tune
from cancellation import restore_signal_handlers
from tuner_config import TunerSettings
from tuner_models import HostProfile, RunMetrics

cli = CliRunner()

MOCK_HOST = HostProfile(cpu_cores=8, ram_gb=16, os="Linux", arch="x86_64")


def _settings(tmp: Path) -> TunerSettings:
    return TunerSettings(
        report_dir=tmp / "reports",
        gclog_base=tmp / "gclogs",
        tuner_config_path=tmp / "gradle-tuner.json",
    )


def _invoke(tmp: Path, measure_results, args=None):
    with patch("helium_tune.load_settings", return_value=_settings(tmp)), \
            patch("helium_tune.require_gradle_root"), \
            patch("helium_tune.metrics_extractor.detect_time_command", return_value=("/usr/bin/time", "gnu")), \
            patch("helium_tune.host_profiler.profile", return_value=MOCK_HOST), \
            patch("helium_tune.host_profiler.detect_gradle_version", return_value="8.7"), \
            patch("helium_tune.host_profiler.detect_java_major", return_value=17), \
            patch("helium_tune.install_signal_handlers", return_value={}), \
            patch("helium_tune.BenchmarkRunner.measure", side_effect=measure_results):
        return cli.invoke(helium_tune.app, args or ["--no-progress"])


# ============================================================================
# Test Functions
# ============================================================================

def test_help_exits_zero():
    result = cli.invoke(helium_tune.app, ["--help"])
    assert result.exit_code == 0
    assert "--report-dir" in result.output


def test_missing_gradlew_exit_code():
    """Running outside a Gradle project root exits 2"""
    print("\n=== Test: Missing gradlew ===")

    tmp = tempfile.mkdtemp()
    cwd = os.getcwd()
    try:
        os.chdir(tmp)
        result = cli.invoke(helium_tune.app, ["--no-progress"], env={"MEASURED_RUNS": "2"})
        print(result.output)
        assert result.exit_code == 2
    finally:
        os.chdir(cwd)
        shutil.rmtree(tmp, ignore_errors=True)

    print("✓ Missing gradlew passed")


def test_invalid_measured_runs_exit_code():
    result = cli.invoke(helium_tune.app, ["--no-progress"], env={"MEASURED_RUNS": "0"})
    assert result.exit_code == 2


def test_all_candidates_failed_exit_code():
    """Every candidate failing exits 3 and persists nothing"""
    print("\n=== Test: All Failed ===")

    tmp = Path(tempfile.mkdtemp())
    try:
        result = _invoke(tmp, [RunMetrics.failed(), RunMetrics.failed()])
        print(result.output)
        assert result.exit_code == 3
        assert not (tmp / "gradle-tuner.json").exists()
        assert not (tmp / "gclogs").exists() or not any((tmp / "gclogs").iterdir())
    finally:
        shutil.rmtree(tmp, ignore_errors=True)

    print("✓ All failed passed")


def test_successful_sweep_writes_artifacts():
    """Winner lands in the report, latest.json and the tuner config"""
    print("\n=== Test: Successful Sweep ===")

    tmp = Path(tempfile.mkdtemp())
    try:
        slow = RunMetrics(wall_seconds=20.0, peak_rss_kb=600000, gc_pause_percent=3.0, gc_window_reliable=True)
        fast = RunMetrics(wall_seconds=12.0, peak_rss_kb=700000, gc_pause_percent=2.0, gc_window_reliable=True)
        result = _invoke(tmp, [slow, fast], ["--no-progress", "--json-only", "--tag", "ci"])
        print(result.output)

        assert result.exit_code == 0, result.output
        reports = list((tmp / "reports").glob("report-*-ci.json"))
        assert len(reports) == 1

        doc = json.loads((tmp / "reports" / "latest.json").read_text())
        # 16GB / 8 cores -> 3g/2g and 4g/2g with 4 workers
        assert [c["name"] for c in doc["candidates"]] == ["G3g_K2g_W4", "G4g_K2g_W4"]
        assert doc["winner"]["name"] == "G4g_K2g_W4"
        assert doc["gradle"]["task"] == "heliumBenchmark"

        cfg = json.loads((tmp / "gradle-tuner.json").read_text())
        assert cfg["workersMax"] == 4
        assert cfg["gradleJvmArgs"].startswith("-Xms512m -Xmx4g")
    finally:
        shutil.rmtree(tmp, ignore_errors=True)

    print("✓ Successful sweep passed")


def test_big_flag_selects_big_task():
    tmp = Path(tempfile.mkdtemp())
    try:
        ok = RunMetrics(wall_seconds=5.0, peak_rss_kb=1000, gc_pause_percent=0.0)
        result = _invoke(tmp, [ok, ok], ["--no-progress", "--big", "--json-only"])
        assert result.exit_code == 0, result.output
        doc = json.loads((tmp / "reports" / "latest.json").read_text())
        assert doc["gradle"]["task"] == "heliumBenchmarkBig"
        assert list((tmp / "reports").glob("report-*-heliumBenchmarkBig.json"))
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_tune_restores_signal_handlers():
    """Ctrl-C behaves normally again once a sweep has finished"""
    tmp = Path(tempfile.mkdtemp())
    before_int = signal.getsignal(signal.SIGINT)
    before_term = signal.getsignal(signal.SIGTERM)
    try:
        ok = RunMetrics(wall_seconds=5.0, peak_rss_kb=1000, gc_pause_percent=0.0)
        with patch("helium_tune.require_gradle_root"), \
                patch("helium_tune.metrics_extractor.detect_time_command", return_value=("/usr/bin/time", "gnu")), \
                patch("helium_tune.host_profiler.profile", return_value=MOCK_HOST), \
                patch("helium_tune.host_profiler.detect_gradle_version", return_value="8.7"), \
                patch("helium_tune.host_profiler.detect_java_major", return_value=17), \
                patch("helium_tune.BenchmarkRunner.measure", side_effect=[ok, ok]):
            code = helium_tune.tune("heliumBenchmark", _settings(tmp), tag="-t",
                                    write_md=False, write_html=False, show_progress=False)

        assert code == 0
        assert signal.getsignal(signal.SIGINT) == before_int
        assert signal.getsignal(signal.SIGTERM) == before_term
    finally:
        restore_signal_handlers({signal.SIGINT: before_int, signal.SIGTERM: before_term})
        shutil.rmtree(tmp, ignore_errors=True)


# ============================================================================
# Test Runner
# ============================================================================

def run_all_tests():
    print("=" * 60)
    print("helium-tune CLI Test Suite")
    print("=" * 60)

    tests = [
        ("Help", test_help_exits_zero),
        ("Missing gradlew", test_missing_gradlew_exit_code),
        ("Invalid Measured Runs", test_invalid_measured_runs_exit_code),
        ("All Failed", test_all_candidates_failed_exit_code),
        ("Successful Sweep", test_successful_sweep_writes_artifacts),
        ("Big Task", test_big_flag_selects_big_task),
        ("Signal Handlers Restored", test_tune_restores_signal_handlers),
    ]

    passed = 0
    failed = 0
    for test_name, test_func in tests:
        try:
            test_func()
            passed += 1
        except AssertionError as e:
            print(f"\n✗ {test_name} FAILED: {e}")
            failed += 1
        except Exception as e:
            print(f"\n✗ {test_name} ERROR: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"Passed: {passed}/{len(tests)}")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
