"""
Persistence sink and read side for calibration artifacts.

Write side:
  upsert_brier_score(db, ...)     → EngineBrierScore
  replace_buckets(db, ...)        → int   (rows written for the scope)
  replace_isotonic_map(db, ...)   → int
  purge_unproduced_scopes(db, ...) → int  (stale rows removed)
  record_run(db, ...)             → CalibrationRun

Read side:
  list_brier_scores(db, ...)      → List[EngineBrierScore]
  list_buckets(db, ...)           → List[CalibrationBucket]
  get_isotonic_map(db, ...)       → List[IsotonicPoint]
  list_runs(db, ...)              → List[CalibrationRun]

Every artifact row is keyed by its natural key and upserted, so reruns
replace rather than accumulate.  Each batch commits on its own; there is
no transaction spanning artifact types.  A failed batch is rolled back and
re-raised as PersistenceFailure, leaving earlier commits in place.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.buckets import BucketStat
from backend.core.errors import PersistenceFailure
from backend.core.isotonic import IsotonicPoint
from backend.core.scoring import BrierDecomposition
from backend.models import (
    CalibrationBucket,
    CalibrationRun,
    EngineBrierScore,
    IsotonicCalibration,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _scope_query(db: Session, model, key: Dict):
    """Query filtered on every key column; None compares with IS NULL."""
    q = db.query(model)
    for col, val in key.items():
        column = getattr(model, col)
        q = q.filter(column.is_(None) if val is None else column == val)
    return q


def _upsert(db: Session, model, key: Dict, values: Dict):
    existing = _scope_query(db, model, key).first()
    if existing:
        for attr, val in values.items():
            setattr(existing, attr, val)
        existing.updated_at = datetime.utcnow()
        return existing
    row = model(**key, **values)
    db.add(row)
    return row


def _key_label(engine_name: str, sport: Optional[str], bet_type: Optional[str] = None) -> str:
    return f"{engine_name}/{sport or '*'}/{bet_type or '*'}"


# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------

def upsert_brier_score(
    db: Session,
    engine_name: str,
    sport: Optional[str],
    bet_type: Optional[str],
    scores: BrierDecomposition,
    period_start: datetime,
    period_end: datetime,
) -> EngineBrierScore:
    """Upsert one Brier row keyed by (engine, sport, bet_type, period)."""
    key = {
        "engine_name": engine_name,
        "sport": sport,
        "bet_type": bet_type,
        "period_start": period_start,
        "period_end": period_end,
    }
    values = {
        "brier_score": scores.brier_score,
        "log_loss": scores.log_loss,
        "reliability_score": scores.reliability,
        "resolution_score": scores.resolution,
        "uncertainty_score": scores.uncertainty,
        "calibration_error": scores.calibration_error,
        "base_rate": scores.base_rate,
        "sample_size": scores.sample_size,
    }
    try:
        row = _upsert(db, EngineBrierScore, key, values)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(
            "brier_score", _key_label(engine_name, sport, bet_type), str(exc)
        ) from exc
    return row


def replace_buckets(
    db: Session,
    engine_name: str,
    sport: Optional[str],
    buckets: Sequence[BucketStat],
) -> int:
    """
    Replace the bucket set for (engine, sport).

    Buckets in the new set are upserted by their bounds; stored buckets for
    the same scope that are not in the new set are deleted.
    """
    scope = {"engine_name": engine_name, "sport": sport}
    fresh = {(b.bucket_start, b.bucket_end) for b in buckets}
    try:
        for b in buckets:
            _upsert(
                db,
                CalibrationBucket,
                {**scope, "bucket_start": b.bucket_start, "bucket_end": b.bucket_end},
                {
                    "predicted_avg": b.predicted_avg,
                    "actual_avg": b.actual_avg,
                    "sample_count": b.count,
                    "confidence_lower": b.confidence_lower,
                    "confidence_upper": b.confidence_upper,
                },
            )
        stale = [
            row for row in _scope_query(db, CalibrationBucket, scope).all()
            if (row.bucket_start, row.bucket_end) not in fresh
        ]
        for row in stale:
            db.delete(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("buckets", _key_label(engine_name, sport), str(exc)) from exc

    if stale:
        logger.debug("Removed %d stale buckets for %s", len(stale), _key_label(engine_name, sport))
    return len(buckets)


def replace_isotonic_map(
    db: Session,
    engine_name: str,
    sport: Optional[str],
    bet_type: Optional[str],
    points: Sequence[IsotonicPoint],
) -> int:
    """
    Replace the calibration map for (engine, sport, bet_type).

    Raw probabilities shift whenever the data does, so stale points must go
    or the stored map would stop being monotone.
    """
    scope = {"engine_name": engine_name, "sport": sport, "bet_type": bet_type}
    fresh = {p.raw_probability for p in points}
    try:
        for p in points:
            _upsert(
                db,
                IsotonicCalibration,
                {**scope, "raw_probability": p.raw_probability},
                {
                    "calibrated_probability": p.calibrated_probability,
                    "sample_size": p.sample_size,
                },
            )
        for row in _scope_query(db, IsotonicCalibration, scope).all():
            if row.raw_probability not in fresh:
                db.delete(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure(
            "isotonic_map", _key_label(engine_name, sport, bet_type), str(exc)
        ) from exc
    return len(points)


def purge_unproduced_scopes(
    db: Session,
    engine_name: str,
    produced: Set[Tuple[Optional[str], Optional[str]]],
    period_start: datetime,
    period_end: datetime,
) -> int:
    """
    Delete artifacts for (sport, bet_type) scopes this run did not produce.

    A grouping that fell below its sample minimum must read as missing, not
    as whatever an earlier run stored.  Brier rows are only removed for the
    current period; buckets and isotonic maps carry no period and are
    removed outright.  Buckets exist per sport only, so a bucket scope is
    kept when ``(sport, None)`` was produced.
    """
    bucket_sports = {sport for sport, bet_type in produced if bet_type is None}
    stale = []
    try:
        stale.extend(
            row for row in db.query(EngineBrierScore).filter(
                EngineBrierScore.engine_name == engine_name,
                EngineBrierScore.period_start == period_start,
                EngineBrierScore.period_end == period_end,
            ).all()
            if (row.sport, row.bet_type) not in produced
        )
        stale.extend(
            row for row in db.query(IsotonicCalibration).filter(
                IsotonicCalibration.engine_name == engine_name
            ).all()
            if (row.sport, row.bet_type) not in produced
        )
        stale.extend(
            row for row in db.query(CalibrationBucket).filter(
                CalibrationBucket.engine_name == engine_name
            ).all()
            if row.sport not in bucket_sports
        )
        for row in stale:
            db.delete(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("stale_scopes", _key_label(engine_name, None), str(exc)) from exc

    if stale:
        logger.info("Removed %d stale artifact rows for %s", len(stale), engine_name)
    return len(stale)


def record_run(
    db: Session,
    started_at: datetime,
    status: str,
    triggered_by: str,
    window_days: int,
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    summary: Dict,
    error_message: Optional[str] = None,
) -> Optional[CalibrationRun]:
    """Append a run-history row.  Best effort: failures are logged, not raised."""
    run = CalibrationRun(
        started_at=started_at,
        completed_at=datetime.utcnow(),
        status=status,
        triggered_by=triggered_by,
        window_days=window_days,
        period_start=period_start,
        period_end=period_end,
        summary=summary,
        error_message=error_message,
    )
    try:
        db.add(run)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not record calibration run: %s", exc)
        return None
    return run


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def list_brier_scores(
    db: Session,
    engine_name: Optional[str] = None,
    sport: Optional[str] = None,
    limit: int = 200,
) -> List[EngineBrierScore]:
    """Latest Brier rows, best-scored first."""
    q = db.query(EngineBrierScore)
    if engine_name:
        q = q.filter(EngineBrierScore.engine_name == engine_name)
    if sport:
        q = q.filter(EngineBrierScore.sport == sport)
    return q.order_by(EngineBrierScore.brier_score.asc()).limit(limit).all()


def list_buckets(
    db: Session,
    engine_name: Optional[str] = None,
    sport: Optional[str] = None,
) -> List[CalibrationBucket]:
    q = db.query(CalibrationBucket)
    if engine_name:
        q = q.filter(CalibrationBucket.engine_name == engine_name)
    if sport:
        q = q.filter(CalibrationBucket.sport == sport)
    return q.order_by(
        CalibrationBucket.engine_name.asc(),
        CalibrationBucket.bucket_start.asc(),
    ).all()


def get_isotonic_map(
    db: Session,
    engine_name: str,
    sport: Optional[str] = None,
    bet_type: Optional[str] = None,
) -> List[IsotonicPoint]:
    """
    Stored map for exactly one scope.  sport/bet_type None selects the
    aggregate map, not a union of every slice.
    """
    rows = (
        _scope_query(
            db,
            IsotonicCalibration,
            {"engine_name": engine_name, "sport": sport, "bet_type": bet_type},
        )
        .order_by(IsotonicCalibration.raw_probability.asc())
        .all()
    )
    return [
        IsotonicPoint(
            raw_probability=row.raw_probability,
            calibrated_probability=row.calibrated_probability,
            sample_size=row.sample_size,
        )
        for row in rows
    ]


def list_runs(db: Session, limit: int = 20) -> List[CalibrationRun]:
    return (
        db.query(CalibrationRun)
        .order_by(CalibrationRun.started_at.desc())
        .limit(limit)
        .all()
    )
