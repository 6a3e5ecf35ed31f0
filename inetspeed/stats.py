"""Summary statistics over latency samples."""

from __future__ import annotations

from typing import Sequence

from inetspeed.models import LatencyStats


def compute_stats(values: Sequence[float]) -> LatencyStats:
    """Summarise latency samples in milliseconds; empty input gives n=0."""
    if not values:
        return LatencyStats()

    sorted_vals = sorted(values)
    n = len(sorted_vals)

    avg = sum(sorted_vals) / n
    mid = n // 2
    if n % 2 == 1:
        median = sorted_vals[mid]
    else:
        median = (sorted_vals[mid - 1] + sorted_vals[mid]) / 2

    jitter = _compute_jitter(sorted_vals)

    return LatencyStats(
        min=round(sorted_vals[0], 2),
        avg=round(avg, 2),
        median=round(median, 2),
        max=round(sorted_vals[-1], 2),
        jitter=round(jitter, 2),
        n=n,
    )


def _compute_jitter(sorted_vals: Sequence[float]) -> float:
    """Average absolute difference between neighbouring sorted samples."""
    if len(sorted_vals) < 2:
        return 0.0
    diffs = [abs(sorted_vals[i] - sorted_vals[i - 1]) for i in range(1, len(sorted_vals))]
    return sum(diffs) / len(diffs)
