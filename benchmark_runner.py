"""
benchmark_runner.py - Measures one candidate configuration against a Gradle task

Per candidate: stop the Gradle daemon, apply the candidate's heap/worker
settings through a throwaway init script, run warmups, run measured
iterations under time(1), then read the daemon's GC log.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Tuple

import psutil
from rich.console import Console

import metrics_extractor
from cancellation import CancellationToken, ProgressIndicator
from tuner_errors import CandidateMeasurementFailure
from tuner_models import Candidate, RunMetrics

logger = logging.getLogger(__name__)

# Seconds a cancelled build gets to exit after SIGINT before it is killed
CANCEL_GRACE_SECONDS = 30


class GradleInvoker:
    """Runs ./gradlew in the current project, optionally under time(1)."""

    def __init__(self, time_cmd: str, time_flavor: str, gradlew: str = "./gradlew"):
        self.time_cmd = time_cmd
        self.time_flavor = time_flavor
        self.gradlew = gradlew

    def stop_daemon(self) -> None:
        try:
            subprocess.run(
                [self.gradlew, "--stop"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        except OSError as e:
            logger.warning(f"Could not stop Gradle daemon: {e}")

    def run_warmup(self, task: str, init_script: Path) -> int:
        """Quiet run with output discarded. Exit status is informational only."""
        try:
            result = subprocess.run(
                [self.gradlew, "-I", str(init_script), "-q", task],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        except OSError as e:
            logger.warning(f"Warmup could not start: {e}")
            return -1
        return result.returncode

    def run_measured(self, task: str, init_script: Path,
                     token: CancellationToken) -> Tuple[int, str]:
        """
        Run the task under time(1).

        Returns:
            (exit status, usage report captured from stderr)
        """
        cmd = [
            self.time_cmd,
            metrics_extractor.time_flag(self.time_flavor),
            self.gradlew, "-I", str(init_script), task,
        ]
        logger.debug(f"Measured run: {' '.join(cmd)}")

        process = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace"
        )
        token.attach(process)
        cancelled_at: Optional[float] = None
        try:
            while True:
                try:
                    _, stderr = process.communicate(timeout=1)
                    return process.returncode, stderr or ""
                except subprocess.TimeoutExpired:
                    if not token.cancelled:
                        continue
                    if cancelled_at is None:
                        cancelled_at = time.time()
                    elif time.time() - cancelled_at > CANCEL_GRACE_SECONDS:
                        logger.warning(f"Build did not exit after interrupt, killing PID {process.pid}")
                        kill_process_tree(process.pid)
        finally:
            token.detach()


def kill_process_tree(pid: int) -> None:
    """
    Kill a process and all its children using psutil.

    Args:
        pid: Process ID of the root process to kill
    """
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)

        # Terminate children first, then parent
        for child in children:
            try:
                child.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        try:
            parent.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

        gone, alive = psutil.wait_procs(children + [parent], timeout=10)

        # Force kill any survivors
        for proc in alive:
            try:
                logger.warning(f"Force killing process {proc.pid}")
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} already exited")


def gc_logging_flag(java_major: int, log_file: Path) -> str:
    """JVM flag that writes GC pauses with uptime stamps to log_file."""
    if java_major >= 9:
        return f"-Xlog:gc*:file={log_file}:tags,uptime,level"
    return f"-XX:+PrintGC -XX:+PrintGCDetails -XX:+PrintGCTimeStamps -Xloggc:{log_file}"


def _kts_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")
    return f'"{escaped}"'


def render_init_script(gradle_jvm_args: str, kotlin_jvm_args: str, workers: int) -> str:
    """
    Gradle init script forcing the daemon settings for one invocation.

    System properties set in beforeSettings take precedence over the
    project's gradle.properties, so no project file is modified.
    """
    return (
        "gradle.beforeSettings {\n"
        f"  System.setProperty(\"org.gradle.jvmargs\", {_kts_string(gradle_jvm_args)})\n"
        f"  System.setProperty(\"kotlin.daemon.jvmargs\", {_kts_string(kotlin_jvm_args)})\n"
        f"  System.setProperty(\"org.gradle.workers.max\", \"{workers}\")\n"
        "}\n"
    )


class BenchmarkRunner:
    """Runs the warmup/measured protocol for one candidate at a time."""

    def __init__(
        self,
        invoker: GradleInvoker,
        gclog_dir: Path,
        token: CancellationToken,
        java_major: int = 11,
        indicator: Optional[ProgressIndicator] = None,
        console: Optional[Console] = None,
        gradle_version_key: str = "",
        aggressive_clean: bool = False,
        gradle_user_home: Optional[Path] = None,
    ):
        self.invoker = invoker
        self.gclog_dir = Path(gclog_dir)
        self.token = token
        self.java_major = java_major
        self.indicator = indicator
        self.console = console or Console(stderr=True)
        self.gradle_version_key = gradle_version_key
        self.aggressive_clean = aggressive_clean
        self.gradle_user_home = gradle_user_home or Path.home() / ".gradle"

        if self.indicator is not None:
            token.add_callback(self.indicator.stop)

    def gc_log_path(self, candidate: Candidate, daemon: str = "gradle") -> Path:
        return self.gclog_dir / f"{daemon}-gc-{candidate.name}.log"

    def reset_daemon(self) -> None:
        """Stop the Gradle daemon so the next candidate starts cold with its own settings."""
        self.invoker.stop_daemon()
        if self.aggressive_clean and self.gradle_version_key:
            daemon_dir = self.gradle_user_home / "daemon" / self.gradle_version_key
            logger.info(f"Removing daemon directory {daemon_dir}")
            shutil.rmtree(daemon_dir, ignore_errors=True)

    def _write_init_script(self, candidate: Candidate) -> Path:
        gradle_args = (f"{candidate.gradle_jvm_args} "
                       f"{gc_logging_flag(self.java_major, self.gc_log_path(candidate, 'gradle'))}")
        kotlin_args = (f"{candidate.kotlin_jvm_args} "
                       f"{gc_logging_flag(self.java_major, self.gc_log_path(candidate, 'kotlin'))}")

        fd, path = tempfile.mkstemp(prefix="helium-init-", suffix=".gradle.kts")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(render_init_script(gradle_args, kotlin_args, candidate.workers))
        return Path(path)

    def measure(self, candidate: Candidate, task: str, warmups: int, measured: int,
                token: Optional[CancellationToken] = None) -> RunMetrics:
        """
        Measure one candidate.

        Args:
            candidate: Heap/worker configuration under test
            task: Gradle task to run
            warmups: Discarded iterations before measuring
            measured: Iterations contributing to the metrics (>= 1)
            token: Session cancellation token; defaults to the runner's own

        Returns:
            RunMetrics, or sentinel metrics if any measured iteration failed
        """
        if token is None:
            token = self.token
        elif token is not self.token and self.indicator is not None:
            token.add_callback(self.indicator.stop)

        self.gclog_dir.mkdir(parents=True, exist_ok=True)
        init_script = self._write_init_script(candidate)
        try:
            self.reset_daemon()
            token.raise_if_cancelled()

            self.console.print(f"  ~ warmup x{warmups}")
            for i in range(warmups):
                token.raise_if_cancelled()
                rc = self.invoker.run_warmup(task, init_script)
                if rc != 0:
                    logger.info(f"{candidate.name}: warmup {i + 1} exited with {rc} (ignored)")

            try:
                walls, peak_rss = self._measured_iterations(candidate, task, init_script,
                                                            measured, token)
            except CandidateMeasurementFailure as e:
                logger.warning(str(e))
                return RunMetrics.failed()

            gc = metrics_extractor.parse_gc_log(self.gc_log_path(candidate, "gradle"))
            return RunMetrics(
                wall_seconds=round(sum(walls) / measured, 3),
                peak_rss_kb=peak_rss,
                gc_pause_percent=gc.pause_percent,
                gc_window_reliable=gc.reliable,
            )
        finally:
            init_script.unlink(missing_ok=True)

    def _measured_iterations(self, candidate: Candidate, task: str, init_script: Path,
                             measured: int, token: CancellationToken) -> Tuple[List[float], int]:
        walls: List[float] = []
        peak_rss = 0

        if self.indicator is not None:
            self.indicator.start()
        try:
            for i in range(1, measured + 1):
                token.raise_if_cancelled()
                rc, report = self.invoker.run_measured(task, init_script, token)
                token.raise_if_cancelled()
                if rc != 0:
                    raise CandidateMeasurementFailure(candidate.name, i, rc)

                usage = metrics_extractor.parse_usage(report, self.invoker.time_flavor)
                walls.append(usage.wall_seconds)
                peak_rss = max(peak_rss, usage.peak_rss_kb)
        finally:
            # Spinner must be gone before timings are aggregated
            if self.indicator is not None:
                self.indicator.stop()

        return walls, peak_rss
