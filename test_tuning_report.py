"""
test_tuning_report.py - Tests for the JSON report and persisted tuner config

Usage:
    python test_tuning_report.py
"""

import json
import shutil
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

import tuning_report
from tuner_models import Candidate, HostProfile, RunMetrics, ScoredCandidate, TuningWeights

MOCK_HOST = HostProfile(cpu_cores=12, ram_gb=64, os="Darwin", arch="arm64")


def _scored(gradle_xmx, kotlin_xmx, workers, wall, score, reliable=True):
    return ScoredCandidate(
        candidate=Candidate(gradle_xmx=gradle_xmx, kotlin_xmx=kotlin_xmx, workers=workers),
        metrics=RunMetrics(wall_seconds=wall, peak_rss_kb=812344, gc_pause_percent=1.5,
                           gc_window_reliable=reliable),
        score=score,
    )


def _report(winner, scored, gradle_version="8.7"):
    return tuning_report.build_report(
        stamp="20250101T120000Z",
        host=MOCK_HOST,
        gradle_version=gradle_version,
        task="heliumBenchmark",
        warmups=1,
        measured=2,
        weights=TuningWeights(),
        scored=scored,
        winner=winner,
    )


# ============================================================================
# Test Functions
# ============================================================================

def test_report_document_shape():
    """Report keys match what the renderers and init hook expect"""
    print("\n=== Test: Report Shape ===")

    a = _scored("4g", "2g", 6, 10.0, 18.2)
    b = _scored("6g", "3g", 6, 9.0, 17.2)
    doc = _report(b, [a, b]).to_document()

    assert doc["version"] == "1"
    assert doc["generatedAt"] == "20250101T120000Z"
    assert doc["host"] == {"cpuCores": 12, "ramGB": 64, "os": "Darwin", "arch": "arm64"}
    assert doc["gradle"] == {"version": "8.7", "task": "heliumBenchmark"}
    assert doc["runs"] == {"warmups": 1, "measured": 2}
    assert doc["weights"] == {"W_T": 1.0, "W_R": 0.00001, "W_G": 5.0}

    assert [c["name"] for c in doc["candidates"]] == ["G4g_K2g_W6", "G6g_K3g_W6"]
    first = doc["candidates"][0]
    assert first["gradleXmx"] == "4g"
    assert first["kotlinXmx"] == "2g"
    assert first["rssKB"] == 812344
    assert first["gcReliable"] is True

    winner = doc["winner"]
    assert winner["name"] == "G6g_K3g_W6"
    assert winner["score"] == 17.2
    assert winner["flags"] == {
        "gradleJvmArgs": "-Xms512m -Xmx6g -XX:+UseG1GC -Dfile.encoding=UTF-8",
        "kotlinDaemonJvmArgs": "-Xms256m -Xmx3g -XX:+UseG1GC",
        "workersMax": 6,
        "useCompressedOops": True,
    }

    print("✓ Report shape passed")


def test_write_report_and_latest():
    print("\n=== Test: Write Report ===")

    report_dir = Path(tempfile.mkdtemp())
    try:
        winner = _scored("4g", "2g", 4, 10.0, 11.1)
        out = tuning_report.write_report(_report(winner, [winner]), report_dir / "reports",
                                         "20250101T120000Z", "-heliumBenchmark")

        assert out.name == "report-20250101T120000Z-heliumBenchmark.json"
        latest = report_dir / "reports" / "latest.json"
        assert latest.exists()
        assert json.loads(latest.read_text()) == json.loads(out.read_text())

        print(f"✓ Report written to {out}")
    finally:
        shutil.rmtree(report_dir, ignore_errors=True)


def test_persist_config_merges_and_backs_up():
    """Unrelated keys survive two persists; .bak holds the previous version"""
    print("\n=== Test: Persist Config ===")

    tmp = Path(tempfile.mkdtemp())
    cfg_path = tmp / ".gradle" / "gradle-tuner.json"
    try:
        first = _scored("4g", "2g", 6, 10.0, 11.1)
        tuning_report.persist_config(_report(first, [first]), cfg_path)

        saved = tuning_report.load_persisted_config(cfg_path)
        assert saved["workersMax"] == 6
        assert saved["gradleVersionKey"] == "8.7"
        assert not cfg_path.with_name("gradle-tuner.json.bak").exists()

        # Manual edit between runs
        saved["myTeamNote"] = "keep me"
        cfg_path.write_text(json.dumps(saved, indent=2))
        before_second = cfg_path.read_text()

        second = _scored("8g", "4g", 4, 9.0, 10.0)
        tuning_report.persist_config(_report(second, [second], gradle_version="8.8"), cfg_path)

        saved = tuning_report.load_persisted_config(cfg_path)
        assert saved["myTeamNote"] == "keep me"
        assert saved["gradleJvmArgs"] == "-Xms512m -Xmx8g -XX:+UseG1GC -Dfile.encoding=UTF-8"
        assert saved["kotlinDaemonJvmArgs"] == "-Xms256m -Xmx4g -XX:+UseG1GC"
        assert saved["workersMax"] == 4
        assert saved["gradleVersionKey"] == "8.8"

        backup = cfg_path.with_name("gradle-tuner.json.bak")
        assert backup.read_text() == before_second

        print("✓ Persist config passed")
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_persist_over_invalid_config():
    tmp = Path(tempfile.mkdtemp())
    cfg_path = tmp / "gradle-tuner.json"
    try:
        cfg_path.write_text("{not json")
        assert tuning_report.load_persisted_config(cfg_path) == {}

        winner = _scored("3g", "2g", 2, 10.0, 11.1)
        tuning_report.persist_config(_report(winner, [winner]), cfg_path)

        assert tuning_report.load_persisted_config(cfg_path)["workersMax"] == 2
        assert (tmp / "gradle-tuner.json.bak").read_text() == "{not json"
        assert tuning_report.load_persisted_config(tmp / "missing.json") == {}
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_utc_stamp_format():
    stamp = tuning_report.utc_stamp()
    assert len(stamp) == 16
    assert stamp[8] == "T" and stamp.endswith("Z")


# ============================================================================
# Test Runner
# ============================================================================

def run_all_tests():
    print("=" * 60)
    print("Report & Persistence Test Suite")
    print("=" * 60)

    tests = [
        ("Report Shape", test_report_document_shape),
        ("Write Report", test_write_report_and_latest),
        ("Persist Config", test_persist_config_merges_and_backs_up),
        ("Invalid Config", test_persist_over_invalid_config),
        ("UTC Stamp", test_utc_stamp_format),
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
