"""
Outcome collection — settled predictions for the trailing window.

Pure data access.  "Settled" is enforced by the query (outcome IS NOT NULL);
everything downstream assumes it.  Rows whose probability or outcome is out
of range are skipped with a warning rather than failing the engine.

The window is anchored to UTC day boundaries so that every run on the same
day scores the same period and upserts onto the same natural key.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.errors import DataSourceUnavailable
from backend.core.outcome_interface import BaseOutcomeSource, PredictionRecord
from backend.models import PredictionOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Window helpers
# ---------------------------------------------------------------------------

def trailing_window(window_days: int, as_of: Optional[date] = None) -> Tuple[datetime, datetime]:
    """
    Return (period_start, period_end) for a trailing window ending with as_of.

    period_end is midnight UTC at the start of the day after as_of, so
    everything observed on as_of is included.
    """
    day = as_of or datetime.utcnow().date()
    period_end = datetime(day.year, day.month, day.day) + timedelta(days=1)
    return period_end - timedelta(days=window_days), period_end


# ---------------------------------------------------------------------------
# SQL source
# ---------------------------------------------------------------------------

class SqlOutcomeSource(BaseOutcomeSource):
    """Reads settled rows from prediction_outcomes."""

    source_name = "prediction_outcomes"

    def __init__(self, db: Session):
        self.db = db

    def list_engines(self, period_start: datetime, period_end: datetime) -> List[str]:
        try:
            rows = (
                self.db.query(PredictionOutcome.engine_name)
                .filter(
                    PredictionOutcome.outcome.isnot(None),
                    PredictionOutcome.observed_at >= period_start,
                    PredictionOutcome.observed_at < period_end,
                )
                .distinct()
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DataSourceUnavailable("*", str(exc)) from exc
        return sorted(name for (name,) in rows)

    def fetch(
        self,
        engine_name: str,
        period_start: datetime,
        period_end: datetime,
        sport: Optional[str] = None,
    ) -> List[PredictionRecord]:
        try:
            q = (
                self.db.query(PredictionOutcome)
                .filter(
                    PredictionOutcome.engine_name == engine_name,
                    PredictionOutcome.outcome.isnot(None),
                    PredictionOutcome.observed_at >= period_start,
                    PredictionOutcome.observed_at < period_end,
                )
            )
            if sport:
                q = q.filter(PredictionOutcome.sport == sport)
            rows = q.order_by(PredictionOutcome.observed_at.asc()).all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DataSourceUnavailable(engine_name, str(exc)) from exc

        records = []
        invalid = 0
        for row in rows:
            try:
                records.append(PredictionRecord(
                    predicted_probability=row.predicted_probability,
                    actual_outcome=int(row.outcome),
                    engine_name=row.engine_name,
                    sport=row.sport,
                    bet_type=row.bet_type,
                    observed_at=row.observed_at,
                ))
            except ValueError as exc:
                invalid += 1
                logger.warning("Skipping prediction_outcomes row %s: %s", row.id, exc)

        if invalid:
            logger.warning("%s: skipped %d malformed rows of %d", engine_name, invalid, len(rows))

        logger.debug(
            "Fetched %d settled %s predictions (%s → %s)",
            len(records), engine_name, period_start.date(), period_end.date(),
        )
        return records
