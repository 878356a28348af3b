"""Proper scoring rules for binary probability forecasts.

Every function here is **pure**: no I/O, no logging, no side effects.

Exposed:

1. **Brier score** — mean squared error between forecast and outcome.
   0 is perfect, 0.25 is the always-0.5 baseline, 1 is maximally wrong.
2. **Log loss** — mean negative log-likelihood, with forecasts clamped to
   ``[ε, 1 − ε]`` so one 0-or-1 forecast cannot produce an infinite score.
3. **Murphy decomposition** — ``BS ≈ reliability − resolution + uncertainty``
   computed over fixed-width buckets.
4. **Bucket summaries** — expected / maximum calibration error and a letter
   grade.

Design decisions
----------------
* The decomposition uses *every* non-empty bucket, with no minimum count, so
  bucket weights sum to 1 and the identity holds.  The minimum-count filter
  applies only to the buckets that are persisted for display.
* The identity is exact when forecasts are constant within each bucket.
  Otherwise the within-bucket variance terms make it approximate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from backend.core.buckets import BucketStat, build_buckets_from_arrays
from backend.core.calibration_config import LOG_LOSS_EPSILON
from backend.core.outcome_interface import PredictionRecord


# ---------------------------------------------------------------------------
# Result object
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class BrierDecomposition:
    """Scores for one grouping of settled predictions.

    Attributes:
        brier_score: ``mean((p − y)²)``.
        log_loss: ε-clamped mean negative log-likelihood.
        reliability: ``Σ w_b (predicted_avg_b − actual_avg_b)²``.  Lower is
            better calibrated.
        resolution: ``Σ w_b (actual_avg_b − base_rate)²``.  Higher is more
            discriminating.
        uncertainty: ``base_rate · (1 − base_rate)``.
        calibration_error: ``sqrt(reliability)``.
        base_rate: Overall hit rate.
        sample_size: Records scored.
    """

    brier_score: float
    log_loss: float
    reliability: float
    resolution: float
    uncertainty: float
    calibration_error: float
    base_rate: float
    sample_size: int

    @property
    def decomposition_residual(self) -> float:
        """``brier − (reliability − resolution + uncertainty)``."""
        return self.brier_score - (self.reliability - self.resolution + self.uncertainty)

    def to_dict(self) -> dict:
        return {
            "brier_score": round(self.brier_score, 6),
            "log_loss": round(self.log_loss, 6),
            "reliability": round(self.reliability, 6),
            "resolution": round(self.resolution, 6),
            "uncertainty": round(self.uncertainty, 6),
            "calibration_error": round(self.calibration_error, 6),
            "base_rate": round(self.base_rate, 6),
            "sample_size": self.sample_size,
        }


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------


def _as_arrays(records: Sequence[PredictionRecord]) -> Tuple[np.ndarray, np.ndarray]:
    if not records:
        raise ValueError("Scoring requires at least one settled prediction")
    predicted = np.fromiter((r.predicted_probability for r in records), dtype=float)
    actual = np.fromiter((r.actual_outcome for r in records), dtype=float)
    return predicted, actual


# ---------------------------------------------------------------------------
# Scoring rules
# ---------------------------------------------------------------------------


def brier_score(predicted: np.ndarray, actual: np.ndarray) -> float:
    """Mean squared error between forecast probability and binary outcome."""
    predicted = np.asarray(predicted, dtype=float)
    actual = np.asarray(actual, dtype=float)
    if predicted.size == 0:
        raise ValueError("brier_score of an empty sample is undefined")
    return float(np.mean((predicted - actual) ** 2))


def log_loss(
    predicted: np.ndarray,
    actual: np.ndarray,
    epsilon: float = LOG_LOSS_EPSILON,
) -> float:
    """Mean negative log-likelihood with forecasts clamped to ``[ε, 1 − ε]``.

    A forecast of exactly 1.0 that loses contributes ``−ln(ε) ≈ 34.5``
    rather than infinity.
    """
    predicted = np.asarray(predicted, dtype=float)
    actual = np.asarray(actual, dtype=float)
    if predicted.size == 0:
        raise ValueError("log_loss of an empty sample is undefined")
    p = np.clip(predicted, epsilon, 1.0 - epsilon)
    return float(-np.mean(actual * np.log(p) + (1.0 - actual) * np.log(1.0 - p)))


def decompose(
    records: Sequence[PredictionRecord],
    bucket_count: int = 10,
    epsilon: float = LOG_LOSS_EPSILON,
) -> BrierDecomposition:
    """Score a grouping and split its Brier score into Murphy components.

    Args:
        records: Non-empty list of settled predictions from one grouping.
            Minimum-sample checks are the caller's job.
        bucket_count: Buckets used for reliability / resolution.
        epsilon: Log-loss clamp.

    Raises:
        ValueError: If ``records`` is empty.
    """
    predicted, actual = _as_arrays(records)
    total = predicted.size
    base_rate = float(actual.mean())

    buckets = build_buckets_from_arrays(predicted, actual, bucket_count, min_samples=1)
    reliability = 0.0
    resolution = 0.0
    for b in buckets:
        weight = b.count / total
        reliability += weight * (b.predicted_avg - b.actual_avg) ** 2
        resolution += weight * (b.actual_avg - base_rate) ** 2

    return BrierDecomposition(
        brier_score=brier_score(predicted, actual),
        log_loss=log_loss(predicted, actual, epsilon),
        reliability=reliability,
        resolution=resolution,
        uncertainty=base_rate * (1.0 - base_rate),
        calibration_error=math.sqrt(reliability),
        base_rate=base_rate,
        sample_size=total,
    )


# ---------------------------------------------------------------------------
# Bucket summaries
# ---------------------------------------------------------------------------


def expected_calibration_error(buckets: Sequence[BucketStat]) -> float:
    """Count-weighted mean of ``|predicted_avg − actual_avg|``.  0.0 if empty."""
    total = sum(b.count for b in buckets)
    if total == 0:
        return 0.0
    return sum(b.count / total * b.gap for b in buckets)


def maximum_calibration_error(buckets: Sequence[BucketStat]) -> float:
    """Largest ``|predicted_avg − actual_avg|`` over the buckets.  0.0 if empty."""
    return max((b.gap for b in buckets), default=0.0)


#: (upper Brier bound, grade, label), checked in order.
_GRADE_TABLE: List[Tuple[float, str, str]] = [
    (0.10, "A+", "Excellent"),
    (0.15, "A", "Very Good"),
    (0.20, "B", "Good"),
    (0.25, "C", "Average"),
    (0.30, "D", "Below Average"),
]


def calibration_grade(brier: float) -> Tuple[str, str]:
    """Letter grade for a Brier score.  Anything above 0.30 is ``("F", "Poor")``."""
    for bound, grade, label in _GRADE_TABLE:
        if brier <= bound:
            return grade, label
    return "F", "Poor"
