"""Tests for buckets.py — fixed-width bucketing and Wilson intervals."""

import numpy as np
import pytest

from backend.core.buckets import (
    bucket_bounds,
    bucket_indices,
    build_buckets,
    wilson_interval,
)
from backend.core.outcome_interface import PredictionRecord


def _rec(p, y):
    return PredictionRecord(predicted_probability=p, actual_outcome=y, engine_name="line_movement")


# ---------------------------------------------------------------------------
# wilson_interval
# ---------------------------------------------------------------------------

def test_wilson_symmetric_at_half():
    lower, upper = wilson_interval(0.5, 10)
    assert lower == pytest.approx(1.0 - upper)
    assert lower < 0.5 < upper


def test_wilson_known_value():
    # 8/10 successes: standard Wilson 95% bounds
    lower, upper = wilson_interval(0.8, 10)
    assert lower == pytest.approx(0.4902, abs=1e-4)
    assert upper == pytest.approx(0.9433, abs=1e-4)


def test_wilson_zero_rate_has_width():
    lower, upper = wilson_interval(0.0, 5)
    assert lower == 0.0
    assert upper > 0.0


def test_wilson_full_rate_has_width():
    lower, upper = wilson_interval(1.0, 5)
    assert upper == 1.0
    assert lower < 1.0


@pytest.mark.parametrize("p_hat,n", [(0.0, 1), (1.0, 1), (0.3, 3), (0.5, 7), (0.99, 200)])
def test_wilson_brackets_rate_and_stays_in_unit_interval(p_hat, n):
    lower, upper = wilson_interval(p_hat, n)
    assert 0.0 <= lower <= p_hat <= upper <= 1.0


def test_wilson_narrows_with_more_samples():
    small = wilson_interval(0.6, 10)
    large = wilson_interval(0.6, 1000)
    assert (large[1] - large[0]) < (small[1] - small[0])


def test_wilson_zero_samples_raises():
    with pytest.raises(ValueError):
        wilson_interval(0.5, 0)


def test_wilson_rate_out_of_range_raises():
    with pytest.raises(ValueError):
        wilson_interval(1.2, 10)


# ---------------------------------------------------------------------------
# bucket_indices / bucket_bounds
# ---------------------------------------------------------------------------

def test_bucket_indices_clamps_top_edge():
    idx = bucket_indices(np.array([0.0, 0.05, 0.1, 0.55, 0.999, 1.0]), 10)
    assert idx.tolist() == [0, 0, 1, 5, 9, 9]


def test_bucket_bounds_rounded():
    assert bucket_bounds(2, 10) == (0.2, 0.3)
    assert bucket_bounds(9, 10) == (0.9, 1.0)


def test_bucket_bounds_twenty_buckets():
    assert bucket_bounds(19, 20) == (0.95, 1.0)


# ---------------------------------------------------------------------------
# build_buckets
# ---------------------------------------------------------------------------

def test_build_buckets_empty():
    assert build_buckets([]) == []


def test_probability_one_goes_to_last_bucket():
    buckets = build_buckets([_rec(1.0, 1)] * 5)
    assert len(buckets) == 1
    b = buckets[0]
    assert (b.bucket_start, b.bucket_end) == (0.9, 1.0)
    assert b.predicted_avg == pytest.approx(1.0)
    assert b.actual_avg == pytest.approx(1.0)


def test_sparse_bucket_dropped():
    records = [_rec(0.62, 1)] * 3 + [_rec(0.12, 0)] * 6
    buckets = build_buckets(records, min_samples=5)
    assert [(b.bucket_start, b.count) for b in buckets] == [(0.1, 6)]


def test_min_samples_one_keeps_every_bucket():
    records = [_rec(0.62, 1)] * 3 + [_rec(0.12, 0)] * 6
    assert len(build_buckets(records, min_samples=1)) == 2


def test_buckets_ordered_and_averaged():
    records = (
        [_rec(0.71, 1), _rec(0.73, 1), _rec(0.75, 0), _rec(0.77, 1), _rec(0.79, 1)]
        + [_rec(0.31, 0), _rec(0.33, 1), _rec(0.35, 0), _rec(0.37, 0), _rec(0.39, 0)]
    )
    buckets = build_buckets(records)
    assert [b.bucket_start for b in buckets] == [0.3, 0.7]
    low, high = buckets
    assert low.predicted_avg == pytest.approx(0.35)
    assert low.actual_avg == pytest.approx(0.2)
    assert high.predicted_avg == pytest.approx(0.75)
    assert high.actual_avg == pytest.approx(0.8)
    assert high.gap == pytest.approx(0.05)


def test_bucket_interval_contains_actual_rate():
    rng = np.random.default_rng(11)
    probs = rng.random(400)
    outcomes = (rng.random(400) < probs).astype(int)
    buckets = build_buckets([_rec(float(p), int(y)) for p, y in zip(probs, outcomes)])
    assert buckets
    for b in buckets:
        assert 0.0 <= b.confidence_lower <= b.actual_avg <= b.confidence_upper <= 1.0
        assert b.count >= 5


def test_bucket_count_validated():
    with pytest.raises(ValueError):
        build_buckets([_rec(0.5, 1)], bucket_count=0)


def test_bucket_to_dict_keys():
    b = build_buckets([_rec(0.45, 1)] * 5)[0]
    assert set(b.to_dict()) == {
        "bucket_start", "bucket_end", "predicted_avg", "actual_avg",
        "count", "confidence_lower", "confidence_upper",
    }
