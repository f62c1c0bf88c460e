"""
tuning_session.py - Sequential sweep over the candidate matrix

Candidates are measured one after another, never concurrently: parallel
candidates would compete for the same CPU, memory and disk and invalidate
the comparison.
"""

import logging
from typing import List, NamedTuple, Optional, Protocol

from rich.console import Console

import scorer
from cancellation import CancellationToken
from tuner_models import Candidate, RunMetrics, ScoredCandidate, TuningWeights

logger = logging.getLogger(__name__)


class Measurer(Protocol):
    def measure(self, candidate: Candidate, task: str, warmups: int, measured: int,
                token: Optional[CancellationToken] = None) -> RunMetrics:
        ...


class SessionResult(NamedTuple):
    all_scored: List[ScoredCandidate]
    winner: Optional[ScoredCandidate]
    any_succeeded: bool


class TuningSession:
    """Measures and scores each candidate, keeping the running best."""

    def __init__(
        self,
        runner: Measurer,
        warmups: int,
        measured: int,
        token: Optional[CancellationToken] = None,
        console: Optional[Console] = None,
    ):
        self.runner = runner
        self.warmups = warmups
        self.measured = measured
        self.token = token or CancellationToken()
        self.console = console or Console()

    def run(self, candidates: List[Candidate], task: str, weights: TuningWeights) -> SessionResult:
        """
        Sweep all candidates.

        The winner is the lowest score; ties keep the first-seen candidate.
        any_succeeded is False when every candidate returned sentinel metrics.
        """
        result = SessionResult(all_scored=[], winner=None, any_succeeded=False)
        for candidate in candidates:
            self.token.raise_if_cancelled()
            result = self._step(result, candidate, task, weights)
        return result

    def _step(self, acc: SessionResult, candidate: Candidate, task: str,
              weights: TuningWeights) -> SessionResult:
        self.console.print(f"== {candidate.name} ==")

        metrics = self.runner.measure(candidate, task, self.warmups, self.measured, token=self.token)
        self.console.print(
            f"  -> wall={metrics.wall_seconds}s rss={metrics.peak_rss_kb}KB "
            f"gc={metrics.gc_pause_percent}%"
            + ("" if metrics.gc_window_reliable else " (gc window unreliable)")
        )
        if not metrics.succeeded:
            self.console.print("  -> [red]build failed[/red]")

        value = scorer.score(metrics, weights)
        self.console.print(f"  -> score={value}")

        scored = ScoredCandidate(candidate=candidate, metrics=metrics, score=value)
        winner = acc.winner
        if winner is None or scored.score < winner.score:
            winner = scored

        return SessionResult(
            all_scored=acc.all_scored + [scored],
            winner=winner,
            any_succeeded=acc.any_succeeded or metrics.succeeded,
        )
