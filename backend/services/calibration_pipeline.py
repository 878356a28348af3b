"""
Calibration pipeline orchestration.

Public API:
  run_calibration_pipeline(db, ...)   → Dict  (JSON-serialisable summary)
  run_scheduled_calibration()         → Dict  (entry point for the scheduler)

Flow per engine:

    collect → score + bucket + isotonic fit → upsert

Groupings per engine (when no sport filter is given):
    overall              sport=None,  bet_type=None   min_engine_samples
    per sport            sport=S,     bet_type=None   min_sport_samples
    per sport × bet type sport=S,     bet_type=B      min_engine_samples,
                                                      only inside sports that
                                                      passed min_sport_samples

Buckets are stored for the overall and per-sport groupings; isotonic maps
for any grouping with at least min_isotonic_samples records.

Every engine is an independent unit of work.  A fetch failure abandons that
engine; a write failure loses only that artifact batch.  Both are logged and
reported in the summary, and the run still returns.  Only a failure to list
engines at all is raised to the caller.
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from backend.core.buckets import build_buckets
from backend.core.calibration_config import CalibrationConfig
from backend.core.errors import DataSourceUnavailable, PersistenceFailure
from backend.core.isotonic import fit_isotonic, fit_isotonic_pooled
from backend.core.outcome_interface import BaseOutcomeSource, PredictionRecord
from backend.core.scoring import (
    calibration_grade,
    decompose,
    expected_calibration_error,
    maximum_calibration_error,
)
from backend.models import SessionLocal
from backend.services.calibration_store import (
    purge_unproduced_scopes,
    record_run,
    replace_buckets,
    replace_isotonic_map,
    upsert_brier_score,
)
from backend.services.outcome_collector import SqlOutcomeSource, trailing_window

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def _group_by(records: Sequence[PredictionRecord], attr: str) -> Dict[str, List[PredictionRecord]]:
    """Group on a tag; records without the tag only count toward the aggregate."""
    groups: Dict[str, List[PredictionRecord]] = defaultdict(list)
    for r in records:
        value = getattr(r, attr)
        if value:
            groups[value].append(r)
    return dict(sorted(groups.items()))


# ---------------------------------------------------------------------------
# One grouping
# ---------------------------------------------------------------------------

def _calibrate_slice(
    db: Session,
    engine_name: str,
    sport: Optional[str],
    bet_type: Optional[str],
    records: Sequence[PredictionRecord],
    cfg: CalibrationConfig,
    period_start: datetime,
    period_end: datetime,
    persist: bool,
    errors: List[Dict],
) -> Dict:
    """Score, bucket and fit one grouping; persist each artifact independently."""
    scores = decompose(records, cfg.bucket_count, cfg.log_loss_epsilon)
    grade, _ = calibration_grade(scores.brier_score)

    # Bet-type slices get summary metrics from their buckets but store none
    buckets = build_buckets(
        records, cfg.bucket_count, cfg.min_bucket_samples, cfg.wilson_z
    )
    stores_buckets = bet_type is None

    points = []
    if len(records) >= cfg.min_isotonic_samples:
        pairs = [(r.predicted_probability, r.actual_outcome) for r in records]
        if len(records) >= cfg.large_sample_threshold:
            points = fit_isotonic_pooled(pairs, cfg.pool_chunk_size(len(records)))
        else:
            points = fit_isotonic(pairs)

    result = {
        "sport": sport,
        "bet_type": bet_type,
        "sample_size": scores.sample_size,
        "brier_score": round(scores.brier_score, 6),
        "log_loss": round(scores.log_loss, 6),
        "calibration_error": round(scores.calibration_error, 6),
        "reliability": round(scores.reliability, 6),
        "resolution": round(scores.resolution, 6),
        "grade": grade,
        "expected_calibration_error": round(expected_calibration_error(buckets), 6),
        "maximum_calibration_error": round(maximum_calibration_error(buckets), 6),
        "buckets_written": 0,
        "isotonic_points_written": 0,
    }
    if not persist:
        result["buckets"] = len(buckets) if stores_buckets else 0
        result["isotonic_points"] = len(points)
        return result

    try:
        upsert_brier_score(
            db, engine_name, sport, bet_type, scores, period_start, period_end
        )
    except PersistenceFailure as exc:
        logger.error("%s", exc)
        errors.append({"engine": engine_name, "stage": "brier_score", "message": str(exc)})

    if stores_buckets:
        try:
            result["buckets_written"] = replace_buckets(db, engine_name, sport, buckets)
        except PersistenceFailure as exc:
            logger.error("%s", exc)
            errors.append({"engine": engine_name, "stage": "buckets", "message": str(exc)})

    # An empty fit still replaces, so a slice below the isotonic minimum has no map
    try:
        result["isotonic_points_written"] = replace_isotonic_map(
            db, engine_name, sport, bet_type, points
        )
    except PersistenceFailure as exc:
        logger.error("%s", exc)
        errors.append({"engine": engine_name, "stage": "isotonic_map", "message": str(exc)})

    return result


# ---------------------------------------------------------------------------
# One engine
# ---------------------------------------------------------------------------

def _calibrate_engine(
    db: Session,
    engine_name: str,
    records: Sequence[PredictionRecord],
    cfg: CalibrationConfig,
    period_start: datetime,
    period_end: datetime,
    sport_filter: Optional[str],
    persist: bool,
    skipped: List[Dict],
    errors: List[Dict],
) -> Optional[Dict]:
    """
    Calibrate every grouping for one engine.

    Returns the headline result (overall grouping, or the filtered sport
    when a sport filter was given) with per-slice results nested under it,
    or None if the headline grouping had too few records.

    On a full persisted run, stored artifacts for groupings that were not
    produced this time (now below their minimum) are removed.
    """
    def _skip(sport, bet_type, n, required):
        skipped.append({
            "engine": engine_name,
            "sport": sport,
            "bet_type": bet_type,
            "sample_size": n,
            "min_required": required,
        })

    produced = set()

    def _slice(sport, bet_type, recs):
        produced.add((sport, bet_type))
        return _calibrate_slice(
            db, engine_name, sport, bet_type, recs, cfg,
            period_start, period_end, persist, errors,
        )

    def _purge_unproduced():
        # A sport filter sees only part of the engine, so nothing else is stale
        if not persist or sport_filter:
            return
        try:
            purge_unproduced_scopes(db, engine_name, produced, period_start, period_end)
        except PersistenceFailure as exc:
            logger.error("%s", exc)
            errors.append({"engine": engine_name, "stage": "stale_scopes", "message": str(exc)})

    if sport_filter:
        sport_groups = {sport_filter: list(records)}
        headline = None
    else:
        if len(records) < cfg.min_engine_samples:
            _skip(None, None, len(records), cfg.min_engine_samples)
            _purge_unproduced()
            return None
        headline = _slice(None, None, records)
        sport_groups = _group_by(records, "sport")

    slices = []
    for sport, sport_recs in sport_groups.items():
        if len(sport_recs) < cfg.min_sport_samples:
            _skip(sport, None, len(sport_recs), cfg.min_sport_samples)
            continue
        sport_result = _slice(sport, None, sport_recs)
        slices.append(sport_result)

        for bet_type, bt_recs in _group_by(sport_recs, "bet_type").items():
            if len(bt_recs) < cfg.min_engine_samples:
                _skip(sport, bet_type, len(bt_recs), cfg.min_engine_samples)
                continue
            slices.append(_slice(sport, bet_type, bt_recs))

    _purge_unproduced()

    if headline is None:
        if not slices:
            return None
        headline = dict(slices[0])
        slices = slices[1:]

    headline["engine"] = engine_name
    headline["sport_slices"] = slices
    logger.info(
        "%s: Brier=%.4f LogLoss=%.4f n=%d (%d slices)",
        engine_name, headline["brier_score"], headline["log_loss"],
        headline["sample_size"], len(slices),
    )
    return headline


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def run_calibration_pipeline(
    db: Session,
    source: Optional[BaseOutcomeSource] = None,
    config: Optional[CalibrationConfig] = None,
    engine_name: Optional[str] = None,
    sport: Optional[str] = None,
    window_days: Optional[int] = None,
    as_of: Optional[date] = None,
    triggered_by: str = "auto",
    persist: bool = True,
) -> Dict:
    """
    Score, bucket and isotonic-calibrate every engine over the trailing window.

    Args:
        db:            SQLAlchemy session used by the sink (and by the default
                       source).
        source:        Outcome source.  Defaults to SqlOutcomeSource(db).
        config:        Thresholds.  Defaults to CalibrationConfig.from_env().
        engine_name:   Restrict to one engine.
        sport:         Restrict to one sport; only that slice is scored.
        window_days:   Override the configured trailing window.
        as_of:         Last day of the window (default: today, UTC).
        triggered_by:  "auto", "scheduler" or a user identifier.
        persist:       If False, compute and return the summary without
                       writing artifacts (dry run).

    Returns:
        dict with keys:
            status               "ok" | "partial"
            total_predictions    int
            engines_scored       int
            results              list of per-engine headline results
            skipped              groupings below their sample minimum
            errors               per-engine fetch / write failures
            period               {start, end}
            window_days          int
            timestamp            ISO string

    Raises:
        DataSourceUnavailable: If the engine list cannot be read.  The run is
            still recorded with status "error".
    """
    cfg = (config or CalibrationConfig.from_env()).with_window(window_days)
    source = source or SqlOutcomeSource(db)
    if not isinstance(source, BaseOutcomeSource):
        raise TypeError(f"source must be a BaseOutcomeSource, got {type(source).__name__}")

    started_at = datetime.utcnow()
    period_start, period_end = trailing_window(cfg.window_days, as_of)
    logger.info(
        "Starting calibration run (%s) %s → %s, engine=%s sport=%s",
        cfg, period_start.date(), period_end.date(), engine_name or "all", sport or "all",
    )

    try:
        engines = [engine_name] if engine_name else source.list_engines(period_start, period_end)
    except DataSourceUnavailable as exc:
        logger.error("Calibration run aborted: %s", exc)
        if persist:
            record_run(
                db, started_at, "error", triggered_by, cfg.window_days,
                period_start, period_end, summary={}, error_message=str(exc),
            )
        raise

    results: List[Dict] = []
    skipped: List[Dict] = []
    errors: List[Dict] = []
    total_predictions = 0

    for name in engines:
        try:
            records = source.fetch(name, period_start, period_end, sport=sport)
        except DataSourceUnavailable as exc:
            logger.error("Skipping %s: %s", name, exc)
            errors.append({"engine": name, "stage": "fetch", "message": str(exc)})
            continue

        total_predictions += len(records)
        try:
            result = _calibrate_engine(
                db, name, records, cfg, period_start, period_end,
                sport, persist, skipped, errors,
            )
        except Exception as exc:
            logger.error("Calibration failed for %s: %s", name, exc, exc_info=True)
            errors.append({"engine": name, "stage": "compute", "message": str(exc)})
            continue

        if result is not None:
            results.append(result)

    summary = {
        "status": "partial" if errors else "ok",
        "total_predictions": total_predictions,
        "engines_scored": len(results),
        "results": results,
        "skipped": skipped,
        "errors": errors,
        "period": {
            "start": period_start.isoformat(),
            "end": period_end.isoformat(),
        },
        "window_days": cfg.window_days,
        "applied": persist,
        "timestamp": datetime.utcnow().isoformat(),
    }

    if persist:
        record_run(
            db, started_at, summary["status"], triggered_by, cfg.window_days,
            period_start, period_end, summary=summary,
        )

    logger.info(
        "Calibration run complete: %d predictions, %d engines scored, "
        "%d skipped groupings, %d errors",
        total_predictions, len(results), len(skipped), len(errors),
    )
    return summary


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------

def run_scheduled_calibration() -> Dict:
    """Nightly job: full run over every engine with a fresh session."""
    db = SessionLocal()
    try:
        return run_calibration_pipeline(db, triggered_by="scheduler")
    finally:
        db.close()
