"""Isotonic calibration via Pool Adjacent Violators (PAVA).

Every function here is **pure**: no I/O, no logging, no side effects.

Isotonic regression maps a raw forecast to the empirical hit rate under one
constraint: the calibrated probability never decreases as the raw
probability increases.  Unlike Platt scaling it assumes no link function,
which matters because nothing is known about the shape of an engine's
calibration curve.

Algorithm (weighted merge):

1. Sort by predicted probability.  Tied predictions start as one block whose
   value is their mean outcome.  This makes the fit independent of input
   order and keeps ``raw_probability`` unique per block.
2. Scan adjacent blocks.  Whenever ``block[i].value > block[i + 1].value``,
   merge the pair into one block (weighted mean value, summed weight,
   concatenated members) and step back one block, since the merged value
   may now violate against its left neighbour.
3. Stop when the block values are non-decreasing.

The step-back scan reaches the same fixed point as restarting from the
first block after every merge, because the isotonic solution is unique.  It
does so in linear time.

Large-sample variant: :func:`fit_isotonic_pooled` first pools the sorted
blocks into contiguous chunks of at least ``max(5, n // 10)`` records.  This
gives up a little resolution for stability on noisy tails.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from itertools import groupby
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(slots=True, frozen=True)
class IsotonicPoint:
    """One step of a fitted calibration map."""

    raw_probability: float
    calibrated_probability: float
    sample_size: int

    def to_dict(self) -> dict:
        return {
            "raw_probability": round(self.raw_probability, 6),
            "calibrated_probability": round(self.calibrated_probability, 6),
            "sample_size": self.sample_size,
        }


@dataclass(slots=True)
class _Block:
    members: List[float] = field(default_factory=list)
    outcome_sum: float = 0.0
    weight: int = 0

    @property
    def value(self) -> float:
        return self.outcome_sum / self.weight

    def absorb(self, other: _Block) -> None:
        self.members.extend(other.members)
        self.outcome_sum += other.outcome_sum
        self.weight += other.weight


# ---------------------------------------------------------------------------
# Block construction
# ---------------------------------------------------------------------------


def _initial_blocks(pairs: Iterable[Tuple[float, int]]) -> List[_Block]:
    """Sorted blocks, one per distinct predicted value."""
    ordered = sorted((float(p), int(a)) for p, a in pairs)
    blocks: List[_Block] = []
    for predicted, group in groupby(ordered, key=lambda pa: pa[0]):
        outcomes = [a for _, a in group]
        blocks.append(_Block(
            members=[predicted] * len(outcomes),
            outcome_sum=float(sum(outcomes)),
            weight=len(outcomes),
        ))
    return blocks


def _pool_chunks(blocks: List[_Block], chunk_size: int) -> List[_Block]:
    """Greedily combine adjacent blocks until each holds ``chunk_size`` records.

    The trailing chunk may be smaller.
    """
    pooled: List[_Block] = []
    current: Optional[_Block] = None
    for block in blocks:
        if current is None:
            current = _Block()
        current.absorb(block)
        if current.weight >= chunk_size:
            pooled.append(current)
            current = None
    if current is not None:
        pooled.append(current)
    return pooled


def _pool_adjacent_violators(blocks: List[_Block]) -> List[_Block]:
    i = 0
    while i < len(blocks) - 1:
        if blocks[i].value > blocks[i + 1].value:
            blocks[i].absorb(blocks.pop(i + 1))
            if i > 0:
                i -= 1
        else:
            i += 1
    return blocks


def _to_points(blocks: Sequence[_Block]) -> List[IsotonicPoint]:
    return [
        IsotonicPoint(
            raw_probability=math.fsum(b.members) / len(b.members),
            calibrated_probability=b.value,
            sample_size=b.weight,
        )
        for b in blocks
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def fit_isotonic(pairs: Iterable[Tuple[float, int]]) -> List[IsotonicPoint]:
    """Fit a monotone calibration map to ``(predicted, actual)`` pairs.

    Args:
        pairs: Any order, any size.  Practically useful above ~20 pairs.

    Returns:
        Points ordered by ascending ``raw_probability`` with non-decreasing
        ``calibrated_probability``.  Empty input gives an empty map.
    """
    blocks = _initial_blocks(pairs)
    return _to_points(_pool_adjacent_violators(blocks))


def fit_isotonic_pooled(
    pairs: Iterable[Tuple[float, int]],
    chunk_size: Optional[int] = None,
) -> List[IsotonicPoint]:
    """Large-sample PAVA: pre-pool into contiguous chunks, then merge.

    Args:
        pairs: ``(predicted, actual)`` pairs.
        chunk_size: Minimum records per initial chunk.  Defaults to
            ``max(5, n // 10)``.
    """
    blocks = _initial_blocks(pairs)
    n = sum(b.weight for b in blocks)
    if n == 0:
        return []
    size = chunk_size if chunk_size is not None else max(5, n // 10)
    return _to_points(_pool_adjacent_violators(_pool_chunks(blocks, size)))


def is_monotone(points: Sequence[IsotonicPoint]) -> bool:
    """True if calibrated values are non-decreasing in raw-probability order."""
    ordered = sorted(points, key=lambda pt: pt.raw_probability)
    return all(
        a.calibrated_probability <= b.calibrated_probability
        for a, b in zip(ordered, ordered[1:])
    )


def apply_calibration(raw_probability: float, points: Sequence[IsotonicPoint]) -> float:
    """Map a raw probability through a fitted calibration map.

    Linear interpolation between neighbouring points; raw values outside the
    fitted range take the nearest end point's calibrated value.  An empty
    map returns ``raw_probability`` unchanged.
    """
    if not points:
        return raw_probability
    ordered = sorted(points, key=lambda pt: pt.raw_probability)
    xp = np.array([pt.raw_probability for pt in ordered], dtype=float)
    fp = np.array([pt.calibrated_probability for pt in ordered], dtype=float)
    return float(np.interp(raw_probability, xp, fp))
