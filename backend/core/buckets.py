"""Fixed-width probability buckets with Wilson score intervals.

Every function here is **pure**: no I/O, no logging, no side effects.

A bucket summarises the forecasts whose probability falls in
``[i / N, (i + 1) / N)``.  ``p = 1.0`` is folded into the last bucket instead
of spilling into an out-of-range ``N``-th one.

Design decisions
----------------
* The Wilson interval is used instead of the normal approximation
  ``p̂ ± z·sqrt(p̂(1 − p̂)/n)``.  The normal interval collapses to zero width
  at ``p̂ = 0`` or ``1`` and leaves ``[0, 1]`` at small ``n``.  Both are
  routine in the outer buckets, where engines rarely forecast.
* Buckets under ``min_samples`` are dropped entirely.  A 3-sample bucket
  with a huge interval reads as signal on a calibration chart; no bucket
  does not.
* Bucket bounds are rounded to 10 decimals so they compare equal across
  runs when used as natural-key columns.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from backend.core.calibration_config import WILSON_Z_95
from backend.core.outcome_interface import PredictionRecord

#: Decimal places kept on bucket bounds.
_BOUND_DECIMALS = 10


@dataclass(slots=True, frozen=True)
class BucketStat:
    """Summary of one probability bucket.

    ``confidence_lower <= actual_avg <= confidence_upper`` always holds.
    """

    bucket_start: float
    bucket_end: float
    predicted_avg: float
    actual_avg: float
    count: int
    confidence_lower: float
    confidence_upper: float

    @property
    def gap(self) -> float:
        """Absolute calibration gap ``|predicted_avg − actual_avg|``."""
        return abs(self.predicted_avg - self.actual_avg)

    def to_dict(self) -> dict:
        return {
            "bucket_start": self.bucket_start,
            "bucket_end": self.bucket_end,
            "predicted_avg": round(self.predicted_avg, 6),
            "actual_avg": round(self.actual_avg, 6),
            "count": self.count,
            "confidence_lower": round(self.confidence_lower, 6),
            "confidence_upper": round(self.confidence_upper, 6),
        }


# ---------------------------------------------------------------------------
# Wilson interval
# ---------------------------------------------------------------------------


def wilson_interval(p_hat: float, n: int, z: float = WILSON_Z_95) -> tuple[float, float]:
    """Wilson score interval for a binomial proportion.

    ::

        center = (p̂ + z²/2n) / (1 + z²/n)
        margin = z·sqrt(p̂(1 − p̂)/n + z²/4n²) / (1 + z²/n)

    Args:
        p_hat: Observed success rate in [0, 1].
        n: Number of trials, ≥ 1.
        z: Normal quantile (1.96 for 95%).

    Returns:
        ``(lower, upper)`` clipped to [0, 1] and guaranteed to bracket
        ``p_hat`` (the bracket can otherwise miss by one ulp at p̂ = 0 or 1).

    Raises:
        ValueError: If ``n < 1`` or ``p_hat`` is outside [0, 1].
    """
    if n < 1:
        raise ValueError(f"Wilson interval needs n >= 1, got {n}")
    if not 0.0 <= p_hat <= 1.0:
        raise ValueError(f"p_hat must be in [0, 1], got {p_hat!r}")

    z2 = z * z
    denom = 1.0 + z2 / n
    center = (p_hat + z2 / (2.0 * n)) / denom
    margin = z * math.sqrt(p_hat * (1.0 - p_hat) / n + z2 / (4.0 * n * n)) / denom

    lower = max(0.0, center - margin)
    upper = min(1.0, center + margin)
    return min(lower, p_hat), max(upper, p_hat)


# ---------------------------------------------------------------------------
# Bucketing
# ---------------------------------------------------------------------------


def bucket_indices(predicted: np.ndarray, bucket_count: int) -> np.ndarray:
    """``floor(p · N)`` clamped to ``[0, N − 1]``."""
    idx = np.floor(np.asarray(predicted, dtype=float) * bucket_count).astype(int)
    return np.clip(idx, 0, bucket_count - 1)


def bucket_bounds(index: int, bucket_count: int) -> tuple[float, float]:
    return (
        round(index / bucket_count, _BOUND_DECIMALS),
        round((index + 1) / bucket_count, _BOUND_DECIMALS),
    )


def build_buckets(
    records: Sequence[PredictionRecord],
    bucket_count: int = 10,
    min_samples: int = 5,
    z: float = WILSON_Z_95,
) -> List[BucketStat]:
    """Partition records into fixed-width buckets.

    Args:
        records: Settled predictions.  May be empty.
        bucket_count: Number of buckets over [0, 1].
        min_samples: Buckets with fewer records are omitted.  Pass 1 to keep
            every non-empty bucket (the Brier decomposition does this).
        z: Wilson interval quantile.

    Returns:
        Buckets ordered by ``bucket_start``.
    """
    if not records:
        return []

    predicted = np.fromiter((r.predicted_probability for r in records), dtype=float)
    actual = np.fromiter((r.actual_outcome for r in records), dtype=float)
    return build_buckets_from_arrays(predicted, actual, bucket_count, min_samples, z)


def build_buckets_from_arrays(
    predicted: np.ndarray,
    actual: np.ndarray,
    bucket_count: int = 10,
    min_samples: int = 5,
    z: float = WILSON_Z_95,
) -> List[BucketStat]:
    """Array form of :func:`build_buckets`."""
    if bucket_count < 1:
        raise ValueError(f"bucket_count must be >= 1, got {bucket_count}")
    if predicted.size == 0:
        return []

    idx = bucket_indices(predicted, bucket_count)
    buckets: List[BucketStat] = []

    for i in range(bucket_count):
        mask = idx == i
        n = int(mask.sum())
        if n == 0 or n < min_samples:
            continue

        predicted_avg = float(predicted[mask].mean())
        actual_avg = float(actual[mask].mean())
        lower, upper = wilson_interval(actual_avg, n, z)
        start, end = bucket_bounds(i, bucket_count)

        buckets.append(BucketStat(
            bucket_start=start,
            bucket_end=end,
            predicted_avg=predicted_avg,
            actual_avg=actual_avg,
            count=n,
            confidence_lower=lower,
            confidence_upper=upper,
        ))

    return buckets
