"""Tests for scoring.py — Brier score, log loss and Murphy decomposition."""

import math

import numpy as np
import pytest

from backend.core.buckets import BucketStat
from backend.core.outcome_interface import PredictionRecord
from backend.core.scoring import (
    brier_score,
    calibration_grade,
    decompose,
    expected_calibration_error,
    log_loss,
    maximum_calibration_error,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _rec(p, y, engine="sharp_money"):
    return PredictionRecord(predicted_probability=p, actual_outcome=y, engine_name=engine)


def _bucket(predicted_avg, actual_avg, count):
    return BucketStat(
        bucket_start=0.0,
        bucket_end=0.1,
        predicted_avg=predicted_avg,
        actual_avg=actual_avg,
        count=count,
        confidence_lower=0.0,
        confidence_upper=1.0,
    )


# ---------------------------------------------------------------------------
# brier_score
# ---------------------------------------------------------------------------

def test_brier_perfect_forecast():
    assert brier_score(np.array([1.0, 0.0]), np.array([1.0, 0.0])) == pytest.approx(0.0)


def test_brier_maximally_wrong():
    assert brier_score(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(1.0)


def test_brier_coin_flip_baseline():
    predicted = np.full(10, 0.5)
    actual = np.array([1, 0] * 5, dtype=float)
    assert brier_score(predicted, actual) == pytest.approx(0.25)


def test_brier_empty_raises():
    with pytest.raises(ValueError):
        brier_score(np.array([]), np.array([]))


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_brier_always_in_unit_interval(seed):
    rng = np.random.default_rng(seed)
    predicted = rng.random(200)
    actual = (rng.random(200) < 0.5).astype(float)
    assert 0.0 <= brier_score(predicted, actual) <= 1.0


# ---------------------------------------------------------------------------
# log_loss
# ---------------------------------------------------------------------------

def test_log_loss_coin_flip():
    predicted = np.full(4, 0.5)
    actual = np.array([1.0, 0.0, 1.0, 0.0])
    assert log_loss(predicted, actual) == pytest.approx(math.log(2))


def test_log_loss_certain_and_wrong_is_finite():
    # p=1.0 with outcome 0 would be -log(0); the clamp keeps it finite
    value = log_loss(np.array([1.0]), np.array([0.0]))
    assert math.isfinite(value)
    assert value == pytest.approx(-math.log(1e-15))


def test_log_loss_certain_and_right_near_zero():
    value = log_loss(np.array([1.0, 0.0]), np.array([1.0, 0.0]))
    assert math.isfinite(value)
    assert value == pytest.approx(0.0, abs=1e-12)


def test_log_loss_custom_epsilon():
    value = log_loss(np.array([0.0]), np.array([1.0]), epsilon=0.01)
    assert value == pytest.approx(-math.log(0.01))


def test_log_loss_empty_raises():
    with pytest.raises(ValueError):
        log_loss(np.array([]), np.array([]))


# ---------------------------------------------------------------------------
# decompose
# ---------------------------------------------------------------------------

def test_decompose_ten_coin_flips():
    records = [_rec(0.5, y) for y in [1, 0] * 5]
    d = decompose(records)
    assert d.brier_score == pytest.approx(0.25)
    assert d.log_loss == pytest.approx(0.693147, abs=1e-6)
    assert d.reliability == pytest.approx(0.0)
    assert d.resolution == pytest.approx(0.0)
    assert d.uncertainty == pytest.approx(0.25)
    assert d.base_rate == pytest.approx(0.5)
    assert d.sample_size == 10


def test_decompose_identity_exact_with_constant_buckets():
    # 0.25 hits 1 of 4, 0.75 hits 3 of 4: perfectly calibrated, some resolution
    records = (
        [_rec(0.25, 1)] + [_rec(0.25, 0)] * 3
        + [_rec(0.75, 1)] * 3 + [_rec(0.75, 0)]
    )
    d = decompose(records)
    assert d.brier_score == pytest.approx(0.1875)
    assert d.reliability == pytest.approx(0.0)
    assert d.resolution == pytest.approx(0.0625)
    assert d.uncertainty == pytest.approx(0.25)
    assert d.decomposition_residual == pytest.approx(0.0, abs=1e-12)


def test_decompose_overconfident_engine():
    # Always says 0.9, hits half the time
    records = [_rec(0.9, y) for y in [1, 0] * 5]
    d = decompose(records)
    assert d.brier_score == pytest.approx(0.41)
    assert d.reliability == pytest.approx(0.16)
    assert d.calibration_error == pytest.approx(0.4)
    assert d.reliability - d.resolution + d.uncertainty == pytest.approx(d.brier_score)


def test_decompose_calibration_error_is_sqrt_reliability():
    records = [_rec(0.15, 0)] * 6 + [_rec(0.15, 1)] * 4 + [_rec(0.85, 1)] * 7 + [_rec(0.85, 0)] * 3
    d = decompose(records)
    assert d.calibration_error == pytest.approx(math.sqrt(d.reliability))


def test_decompose_identity_approximate_with_spread_predictions():
    rng = np.random.default_rng(3)
    probs = rng.random(500)
    outcomes = (rng.random(500) < probs).astype(int)
    d = decompose([_rec(float(p), int(y)) for p, y in zip(probs, outcomes)])
    # Within-bucket variance keeps it from being exact; 10 buckets keep it close
    assert abs(d.decomposition_residual) < 0.02


def test_decompose_probability_one_lands_in_last_bucket():
    records = [_rec(1.0, 1)] * 5 + [_rec(0.95, 0)] * 5
    d = decompose(records)
    # One bucket [0.9, 1.0]: predicted 0.975 vs actual 0.5
    assert d.reliability == pytest.approx((0.975 - 0.5) ** 2)


def test_decompose_empty_raises():
    with pytest.raises(ValueError):
        decompose([])


def test_decompose_to_dict_rounds():
    d = decompose([_rec(1 / 3, 1), _rec(1 / 3, 0), _rec(1 / 3, 0)])
    out = d.to_dict()
    assert out["sample_size"] == 3
    assert out["base_rate"] == pytest.approx(0.333333)


# ---------------------------------------------------------------------------
# ECE / MCE
# ---------------------------------------------------------------------------

def test_ece_weighted_by_count():
    buckets = [_bucket(0.2, 0.3, 30), _bucket(0.8, 0.6, 10)]
    # 0.75 * 0.1 + 0.25 * 0.2
    assert expected_calibration_error(buckets) == pytest.approx(0.125)


def test_mce_largest_gap():
    buckets = [_bucket(0.2, 0.3, 30), _bucket(0.8, 0.6, 10)]
    assert maximum_calibration_error(buckets) == pytest.approx(0.2)


def test_ece_mce_empty():
    assert expected_calibration_error([]) == 0.0
    assert maximum_calibration_error([]) == 0.0


# ---------------------------------------------------------------------------
# calibration_grade
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("brier,grade", [
    (0.05, "A+"),
    (0.10, "A+"),
    (0.12, "A"),
    (0.18, "B"),
    (0.25, "C"),
    (0.28, "D"),
    (0.31, "F"),
    (0.90, "F"),
])
def test_calibration_grade(brier, grade):
    assert calibration_grade(brier)[0] == grade


def test_calibration_grade_label():
    assert calibration_grade(0.5) == ("F", "Poor")
