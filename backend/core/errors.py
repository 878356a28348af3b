"""Exceptions raised at the I/O edges of the calibration pipeline.

Insufficient samples and degenerate probabilities are *not*
exceptions: the first is a silent skip, the second is clamped away.
"""


class CalibrationError(Exception):
    """Base class for calibration pipeline failures."""


class DataSourceUnavailable(CalibrationError):
    """The settled-outcomes source could not be queried for an engine."""

    def __init__(self, engine_name: str, reason: str):
        self.engine_name = engine_name
        self.reason = reason
        super().__init__(f"Outcome source unavailable for {engine_name!r}: {reason}")


class PersistenceFailure(CalibrationError):
    """An upsert batch failed and was rolled back."""

    def __init__(self, artifact: str, key: str, reason: str):
        self.artifact = artifact
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to persist {artifact} for {key}: {reason}")
