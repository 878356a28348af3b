"""Dependency-injection interfaces for settled-outcome sources.

The calibration pipeline never queries a table directly.  It accepts a
:class:`BaseOutcomeSource` at construction time, so that:

* **Unit testing** — inject an :class:`InMemoryOutcomeSource` holding fixed
  records instead of standing up a database.
* **Source extension** — a new prediction store only needs a new source
  class; scoring, bucketing and isotonic fitting are untouched.

Design choices
--------------
* :class:`BaseOutcomeSource` is an ABC rather than a ``typing.Protocol`` so
  the orchestrator can ``isinstance``-check what it was handed.
* :class:`PredictionRecord` is frozen and slotted.  Records are immutable
  once verified, and the same list is fed to three independent stages.
* "Settled" is the source's responsibility.  Pending predictions (null
  outcome) must never be returned; the math does not re-check.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional


# ---------------------------------------------------------------------------
# Data transfer objects
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PredictionRecord:
    """One settled forecast.

    Attributes:
        predicted_probability: Forecast confidence at decision time, in [0, 1].
        actual_outcome: 1 if the predicted event happened, else 0.
        engine_name: Producing subsystem (``"sharp_money"``, ...).
        sport: Optional sport tag (``"nba"``, ``"nfl"``, ...).
        bet_type: Optional market tag (``"moneyline"``, ``"pick"``, ...).
        observed_at: When the prediction was made or verified.  Bounds the
            trailing analysis window.
    """

    predicted_probability: float
    actual_outcome: int
    engine_name: str
    sport: Optional[str] = None
    bet_type: Optional[str] = None
    observed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.predicted_probability <= 1.0:
            raise ValueError(
                f"predicted_probability must be in [0, 1], "
                f"got {self.predicted_probability!r} (engine={self.engine_name!r})"
            )
        if self.actual_outcome not in (0, 1):
            raise ValueError(
                f"actual_outcome must be 0 or 1, got {self.actual_outcome!r}"
            )


# ---------------------------------------------------------------------------
# Abstract outcome source
# ---------------------------------------------------------------------------


class BaseOutcomeSource(ABC):
    """Contract for anything that can supply settled predictions.

    Implementations raise
    :class:`~backend.core.errors.DataSourceUnavailable` when the backing
    store cannot be reached.  The orchestrator catches it per engine.
    """

    #: Short identifier used in logs.
    source_name: str = "BaseOutcomeSource"

    @abstractmethod
    def list_engines(self, period_start: datetime, period_end: datetime) -> List[str]:
        """Return engine names with at least one settled record in the window."""

    @abstractmethod
    def fetch(
        self,
        engine_name: str,
        period_start: datetime,
        period_end: datetime,
        sport: Optional[str] = None,
    ) -> List[PredictionRecord]:
        """Return settled records with ``period_start <= observed_at < period_end``."""


# ---------------------------------------------------------------------------
# In-memory source (tests and offline backfills)
# ---------------------------------------------------------------------------


class InMemoryOutcomeSource(BaseOutcomeSource):
    """Serves records from a list.  Records without ``observed_at`` always match."""

    source_name = "in_memory"

    def __init__(self, records: Iterable[PredictionRecord]):
        self._records = list(records)

    def _in_window(self, r: PredictionRecord, start: datetime, end: datetime) -> bool:
        return r.observed_at is None or start <= r.observed_at < end

    def list_engines(self, period_start: datetime, period_end: datetime) -> List[str]:
        return sorted({
            r.engine_name for r in self._records
            if self._in_window(r, period_start, period_end)
        })

    def fetch(
        self,
        engine_name: str,
        period_start: datetime,
        period_end: datetime,
        sport: Optional[str] = None,
    ) -> List[PredictionRecord]:
        return [
            r for r in self._records
            if r.engine_name == engine_name
            and (sport is None or r.sport == sport)
            and self._in_window(r, period_start, period_end)
        ]
