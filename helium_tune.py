"""
helium_tune.py - build-helium command line

Auto-tunes Gradle/Kotlin daemon heap and Gradle workers for this machine.

Usage:
    helium-tune                     # tune using the synthetic heliumBenchmark
    helium-tune :app:assembleDebug  # tune against a real task
    helium-tune --help

Exit codes: 0 success, 1 missing OS capability, 2 precondition not met,
3 every candidate failed, 130 interrupted.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

import candidates as candidate_matrix
import host_profiler
import metrics_extractor
import scorer
import tuning_report
from benchmark_runner import BenchmarkRunner, GradleInvoker
from cancellation import (
    CancellationToken,
    ProgressIndicator,
    install_signal_handlers,
    restore_signal_handlers,
)
from tuner_config import BIG_TASK, DEFAULT_TASK, TunerSettings, load_settings
from tuner_errors import AllCandidatesFailedError, PreconditionError, SessionCancelled, TunerError
from tuning_session import SessionResult, TuningSession

logger = logging.getLogger(__name__)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

GRADLEW = "./gradlew"

app = typer.Typer(
    name="helium-tune",
    help="Auto-tune Gradle/Kotlin daemon heap & workers and persist the winner.",
    add_completion=False,
)

clean_app = typer.Typer(
    name="helium-clean",
    help="Delete build/helium benchmark outputs across all projects.",
    add_completion=False,
)


# ============================================================================
# Helpers
# ============================================================================

def require_gradle_root(gradlew: str = GRADLEW) -> None:
    if not (os.path.isfile(gradlew) and os.access(gradlew, os.X_OK)):
        raise PreconditionError(f"{gradlew} not found. Run from a Gradle project root.")


def print_summary(result: SessionResult) -> None:
    table = Table(title="Candidates", box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Wall (s)", justify="right")
    table.add_column("Peak RSS (KB)", justify="right")
    table.add_column("GC %", justify="right")
    table.add_column("Score", justify="right")

    for scored in result.all_scored:
        is_winner = scored is result.winner
        gc_text = f"{scored.metrics.gc_pause_percent}"
        if not scored.metrics.gc_window_reliable:
            gc_text += "*"
        table.add_row(
            ("★ " if is_winner else "") + scored.candidate.name,
            f"{scored.metrics.wall_seconds}",
            f"{scored.metrics.peak_rss_kb}",
            gc_text,
            f"{scored.score}",
            style="green" if is_winner else ("red" if not scored.metrics.succeeded else None),
        )
    console.print(table)
    console.print("[dim]* GC window too short to be meaningful[/dim]")


def render_secondary(json_out: Path, report_dir: Path, fmt: str) -> None:
    """Hand the JSON report to an installed build-helium renderer, if any."""
    renderer = shutil.which(f"build-helium-render-{fmt}")
    if not renderer:
        logger.info(f"build-helium-render-{fmt} not installed; skipping {fmt.upper()} report")
        return

    out_path = json_out.with_suffix(f".{fmt}")
    result = subprocess.run([renderer, str(json_out), str(out_path)])
    if result.returncode != 0 or not out_path.exists():
        logger.warning(f"{fmt.upper()} renderer failed (exit {result.returncode})")
        return
    shutil.copyfile(out_path, report_dir / f"latest.{fmt}")


# ============================================================================
# Tuning
# ============================================================================

def tune(
    task: str,
    settings: TunerSettings,
    tag: str,
    write_md: bool = True,
    write_html: bool = True,
    show_progress: bool = True,
) -> int:
    """
    Run one full sweep and persist the winner.

    Raises:
        TunerError subclasses for preflight/precondition failures, an all-failed
        sweep, or cancellation
    """
    require_gradle_root()
    time_cmd, time_flavor = metrics_extractor.detect_time_command()

    stamp = tuning_report.utc_stamp()
    gclog_dir = settings.gclog_base / stamp
    gclog_dir.mkdir(parents=True, exist_ok=True)

    token = CancellationToken()
    previous_handlers = install_signal_handlers(token)

    try:
        host = host_profiler.profile()
        gradle_version = host_profiler.detect_gradle_version(GRADLEW)
        java_major = host_profiler.detect_java_major(GRADLEW)

        console.print(f"build-helium: {host.cpu_cores} cores, {host.ram_gb} GB RAM")
        console.print(f"Task: {task}")

        matrix = candidate_matrix.generate(host.ram_gb, host.cpu_cores)
        console.print("Candidates:")
        for candidate in matrix:
            console.print(f"  {candidate.gradle_xmx} {candidate.kotlin_xmx} {candidate.workers}")

        scorer.check_weights(settings.weights)

        indicator = ProgressIndicator(err_console, enabled=show_progress)

        runner = BenchmarkRunner(
            GradleInvoker(time_cmd, time_flavor, GRADLEW),
            gclog_dir=gclog_dir,
            token=token,
            java_major=java_major,
            indicator=indicator,
            console=err_console,
            gradle_version_key=gradle_version,
            aggressive_clean=settings.aggressive_daemon_clean,
        )
        session = TuningSession(runner, settings.warmup_runs, settings.measured_runs,
                                token=token, console=console)
        result = session.run(matrix, task, settings.weights)

        if not result.any_succeeded:
            raise AllCandidatesFailedError(
                "All candidate runs failed. Check your Gradle task or increase heap."
            )

        winner = result.winner
        console.print("")
        print_summary(result)
        console.print(f"Winner: [bold]{winner.candidate.name}[/bold] (score={winner.score})")
        console.print(f"  wall={winner.metrics.wall_seconds}s rss={winner.metrics.peak_rss_kb}KB "
                      f"gc={winner.metrics.gc_pause_percent}%")
        console.print(f"  gradleXmx={winner.candidate.gradle_xmx} "
                      f"kotlinXmx={winner.candidate.kotlin_xmx} workers={winner.candidate.workers}")

        report = tuning_report.build_report(
            stamp=stamp,
            host=host,
            gradle_version=gradle_version,
            task=task,
            warmups=settings.warmup_runs,
            measured=settings.measured_runs,
            weights=settings.weights,
            scored=result.all_scored,
            winner=winner,
        )

        json_out: Optional[Path] = None
        try:
            json_out = tuning_report.write_report(report, settings.report_dir, stamp, tag)
            console.print(f"Wrote JSON: {json_out}")
        except OSError as e:
            # Winner is still valid; fall back to console-only reporting
            logger.error(f"Failed to write report to {settings.report_dir}: {e}")
            err_console.print(f"[yellow]Could not write report ({e}); winner shown above only.[/yellow]")

        try:
            cfg_path = tuning_report.persist_config(report, settings.tuner_config_path)
        except OSError as e:
            raise TunerError(f"Failed to persist tuned config to {settings.tuner_config_path}: {e}")
        console.print(f"Persisted tuned config to: {cfg_path}")

        if json_out is not None:
            if write_md:
                render_secondary(json_out, settings.report_dir, "md")
            if write_html:
                render_secondary(json_out, settings.report_dir, "html")
            console.print(f"Reports in: {settings.report_dir}")

        console.print("Tip: run 'helium-tune :app:assembleDebug' to tune against your real build.")
        return 0

    finally:
        restore_signal_handlers(previous_handlers)
        # An interrupted sweep leaves its partial artifacts in place
        if settings.keep_gclogs or token.cancelled:
            logger.info(f"GC logs kept in {gclog_dir}")
        else:
            shutil.rmtree(gclog_dir, ignore_errors=True)


# ============================================================================
# CLI Entry Points
# ============================================================================

def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@app.command()
def main(
    task: Annotated[
        str,
        typer.Argument(help="Gradle task to tune against (e.g. :app:assembleDebug)"),
    ] = DEFAULT_TASK,
    big: Annotated[
        bool,
        typer.Option("--big", help=f'Use "{BIG_TASK}"'),
    ] = False,
    report_dir: Annotated[
        Optional[Path],
        typer.Option("--report-dir", help="Where to write reports (default ~/.gradle/build-helium/reports)"),
    ] = None,
    no_md: Annotated[
        bool,
        typer.Option("--no-md", help="Skip Markdown report"),
    ] = False,
    no_html: Annotated[
        bool,
        typer.Option("--no-html", help="Skip HTML report"),
    ] = False,
    json_only: Annotated[
        bool,
        typer.Option("--json-only", help="Only write JSON"),
    ] = False,
    tag: Annotated[
        Optional[str],
        typer.Option("--tag", help="Suffix for report filenames"),
    ] = None,
    progress: Annotated[
        bool,
        typer.Option("--progress/--no-progress", help="Show spinner while benchmarking"),
    ] = True,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log detection and measurement details"),
    ] = False,
) -> None:
    """
    Tune using "heliumBenchmark" (synthetic heavy task) unless TASK is given.

    Env overrides: W_T W_R W_G (score weights), WARMUP_RUNS (default 1),
    MEASURED_RUNS (default 2), KEEP_GCLOGS, HELIUM_AGGRESSIVE_DAEMON_CLEAN.
    """
    _configure_logging(verbose)

    if big:
        task = BIG_TASK
    suffix = f"-{tag}" if tag else f"-{task}".replace("/", "_")

    try:
        settings = load_settings()
        if report_dir is not None:
            settings.report_dir = report_dir.expanduser()
        code = tune(
            task,
            settings,
            tag=suffix,
            write_md=not (no_md or json_only),
            write_html=not (no_html or json_only),
            show_progress=progress,
        )
    except SessionCancelled as e:
        err_console.print(f"\n{e}")
        raise typer.Exit(code=e.exit_code)
    except TunerError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=e.exit_code)

    raise typer.Exit(code=code)


@clean_app.command()
def clean() -> None:
    """Run the heliumClean task from a Gradle project root."""
    try:
        require_gradle_root()
    except PreconditionError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=e.exit_code)

    result = subprocess.run([GRADLEW, "-q", "heliumClean"])
    if result.returncode != 0:
        result = subprocess.run([GRADLEW, "heliumClean"])
    if result.returncode != 0:
        raise typer.Exit(code=result.returncode)
    console.print("build-helium: cleaned build/helium across all projects.")


def run() -> None:
    app()


def run_clean() -> None:
    clean_app()


if __name__ == "__main__":
    run()
