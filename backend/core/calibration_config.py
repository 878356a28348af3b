"""Calibration pipeline configuration — every tunable threshold in one place.

This module is the **registry** for the constants that shape a calibration
run.  Nowhere else in the codebase should bucket counts, minimum sample sizes,
or window lengths be hard-coded.

Architecture
------------
:class:`CalibrationConfig` is a frozen dataclass passed explicitly into each
pipeline stage (collector, scorer, bucketer, isotonic calibrator, sink).
Named constructors return pre-populated instances:

* :meth:`CalibrationConfig.default` — the historical thresholds.
* :meth:`CalibrationConfig.from_env` — defaults overridden by environment
  variables (``.env`` is loaded by ``backend.models`` at startup).

The sample thresholds (5 overall, 10 per sport, 20 for isotonic fits) are
empirical rather than derived.  They are kept configurable so they can be
tuned downstream without a code change.

Typical usage::

    from backend.core.calibration_config import CalibrationConfig

    cfg = CalibrationConfig.from_env()

    # Override a single constant for a one-off backfill:
    from dataclasses import replace
    wide_cfg = replace(cfg, window_days=90)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Final


# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Two-sided 95% normal quantile used for Wilson score intervals.
WILSON_Z_95: Final[float] = 1.96

#: Log-loss clamp.  Keeps ``ln(p)`` and ``ln(1 - p)`` finite when an engine
#: emits an exact 0 or 1.
LOG_LOSS_EPSILON: Final[float] = 1e-15

#: Engine names known to write into ``prediction_outcomes``.  Used for seeding
#: development data; the SQL source discovers engines from the table itself.
KNOWN_ENGINES: Final[tuple[str, ...]] = (
    "juiced_props",
    "hitrate_parlays",
    "god_mode_upsets",
    "sharp_money",
    "ai_parlay_generator",
)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class CalibrationConfig:
    """Immutable configuration bundle for one calibration run.

    Attributes:
        bucket_count: Number of fixed-width probability buckets over [0, 1].
            10 gives width 0.1.
        min_bucket_samples: Buckets holding fewer records are dropped from
            the persisted output (never stored with a wide interval).
        min_engine_samples: Minimum records for a per-engine overall Brier
            score.
        min_sport_samples: Minimum records for a per-sport slice (and the
            per-sport bet-type slices inside it).
        min_isotonic_samples: Minimum records for an isotonic fit.  PAVA on
            fewer points is mostly noise.
        large_sample_threshold: Slices at or above this size are pre-pooled
            into contiguous chunks before PAVA.
        window_days: Trailing analysis window in days.
        wilson_z: Normal quantile for the bucket confidence interval.
        log_loss_epsilon: Probability clamp for log loss.
    """

    bucket_count: int = 10
    min_bucket_samples: int = 5
    min_engine_samples: int = 5
    min_sport_samples: int = 10
    min_isotonic_samples: int = 20
    large_sample_threshold: int = 200
    window_days: int = 30
    wilson_z: float = WILSON_Z_95
    log_loss_epsilon: float = LOG_LOSS_EPSILON

    def __post_init__(self) -> None:
        if self.bucket_count < 1:
            raise ValueError(f"bucket_count must be >= 1, got {self.bucket_count}")
        if self.window_days < 1:
            raise ValueError(f"window_days must be >= 1, got {self.window_days}")
        if not 0.0 < self.log_loss_epsilon < 0.5:
            raise ValueError(
                f"log_loss_epsilon must be in (0, 0.5), got {self.log_loss_epsilon}"
            )

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def default(cls) -> CalibrationConfig:
        """Return the historical thresholds (10 buckets, 5/10/20 samples, 30 days)."""
        return cls()

    @classmethod
    def from_env(cls) -> CalibrationConfig:
        """Return the default config with environment overrides applied.

        Recognised variables: ``CALIBRATION_BUCKETS``,
        ``CALIBRATION_MIN_BUCKET_SAMPLES``, ``CALIBRATION_MIN_ENGINE_SAMPLES``,
        ``CALIBRATION_MIN_SPORT_SAMPLES``, ``CALIBRATION_MIN_ISOTONIC_SAMPLES``,
        ``CALIBRATION_LARGE_SAMPLE_THRESHOLD``, ``CALIBRATION_WINDOW_DAYS``.
        """
        base = cls.default()
        return cls(
            bucket_count=_env_int("CALIBRATION_BUCKETS", base.bucket_count),
            min_bucket_samples=_env_int(
                "CALIBRATION_MIN_BUCKET_SAMPLES", base.min_bucket_samples
            ),
            min_engine_samples=_env_int(
                "CALIBRATION_MIN_ENGINE_SAMPLES", base.min_engine_samples
            ),
            min_sport_samples=_env_int(
                "CALIBRATION_MIN_SPORT_SAMPLES", base.min_sport_samples
            ),
            min_isotonic_samples=_env_int(
                "CALIBRATION_MIN_ISOTONIC_SAMPLES", base.min_isotonic_samples
            ),
            large_sample_threshold=_env_int(
                "CALIBRATION_LARGE_SAMPLE_THRESHOLD", base.large_sample_threshold
            ),
            window_days=_env_int("CALIBRATION_WINDOW_DAYS", base.window_days),
        )

    # ------------------------------------------------------------------ #
    #  Convenience accessors                                               #
    # ------------------------------------------------------------------ #

    @property
    def bucket_width(self) -> float:
        return 1.0 / self.bucket_count

    def pool_chunk_size(self, n: int) -> int:
        """Chunk size for the large-sample isotonic variant: ``max(5, n // 10)``."""
        return max(5, n // 10)

    def with_window(self, window_days: int | None) -> CalibrationConfig:
        """Return a copy with ``window_days`` replaced, or ``self`` if None."""
        if window_days is None:
            return self
        return replace(self, window_days=window_days)

    def __repr__(self) -> str:
        return (
            f"CalibrationConfig(buckets={self.bucket_count}, "
            f"min_samples={self.min_engine_samples}/{self.min_sport_samples}/"
            f"{self.min_isotonic_samples}, window={self.window_days}d)"
        )
