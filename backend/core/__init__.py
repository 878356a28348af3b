"""Core mathematics and configuration for the calibration pipeline.

This package contains pure, engine-agnostic building blocks:

- ``calibration_config`` — thresholds, window length, clamps
- ``outcome_interface``  — ``PredictionRecord`` DTO and outcome-source ABC
- ``scoring``            — Brier score, log loss, Murphy decomposition
- ``buckets``            — fixed-width buckets and Wilson intervals
- ``isotonic``           — PAVA calibration maps and interpolation
- ``errors``             — exceptions raised at the I/O edges

Nothing in this package imports from ``backend.services`` or ``backend.models``.
All modules are side-effect-free and unit-testable in isolation.
"""
