"""
scorer.py - Weighted score for a candidate's metrics (lower is better)
"""

import logging

from tuner_models import RunMetrics, TuningWeights

logger = logging.getLogger(__name__)


def score(metrics: RunMetrics, weights: TuningWeights) -> float:
    """
    time * wall_seconds + rss * peak_rss_kb + gc * (gc_pause_percent / 100)

    With the default weights, sentinel metrics of a failed candidate always
    outscore any real measurement.
    """
    return round(
        weights.time * metrics.wall_seconds
        + weights.rss * metrics.peak_rss_kb
        + weights.gc * (metrics.gc_pause_percent / 100.0),
        4,
    )


def check_weights(weights: TuningWeights) -> None:
    """Warn about negative weights; they invert the preference order and are unsupported."""
    for label, value in (("W_T", weights.time), ("W_R", weights.rss), ("W_G", weights.gc)):
        if value < 0:
            logger.warning(f"Negative score weight {label}={value}: winner selection is undefined")
