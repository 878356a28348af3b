"""
FastAPI application for the probability calibration service
Includes REST API, the nightly calibration job, and health monitoring
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging
import os

from backend.models import get_db
from backend.auth import verify_api_key, verify_admin_api_key
from backend.core.errors import DataSourceUnavailable
from backend.core.isotonic import apply_calibration
from backend.services.calibration_pipeline import (
    run_calibration_pipeline,
    run_scheduled_calibration,
)
from backend.services.calibration_store import (
    get_isotonic_map,
    list_brier_scores,
    list_buckets,
    list_runs,
)
from backend.schemas import (
    BrierScoreResponse,
    BucketResponse,
    CalibratedProbabilityResponse,
    CalibrationRunRecord,
    CalibrationRunRequest,
    CalibrationRunResponse,
    IsotonicMapResponse,
    IsotonicPointResponse,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting calibration service")

    cron_hour = int(os.getenv("CALIBRATION_CRON_HOUR", "5"))
    timezone = os.getenv("CALIBRATION_CRON_TIMEZONE", "America/New_York")

    scheduler.add_job(
        nightly_calibration_job,
        CronTrigger(hour=cron_hour, minute=0, timezone=timezone),
        id="nightly_calibration",
        name="Nightly Calibration Pipeline",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: calibration@%02d:00 %s", cron_hour, timezone)

    yield

    logger.info("Shutting down calibration service")
    scheduler.shutdown()


app = FastAPI(
    title="Calibration Service",
    description="Brier scoring, reliability buckets and isotonic calibration for prediction engines",
    version="1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def nightly_calibration_job():
    """Full calibration run over every engine — runs at 5 AM ET by default."""
    logger.info("Starting nightly calibration job")
    try:
        summary = run_scheduled_calibration()
        logger.info(
            "Nightly calibration complete: status=%s engines=%d errors=%d",
            summary["status"], summary["engines_scored"], len(summary["errors"]),
        )
    except Exception as exc:
        logger.error("Nightly calibration job failed: %s", exc, exc_info=True)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check"""
    return {
        "app": "Calibration Service",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - CALIBRATION ARTIFACTS
# ============================================================================

@app.get("/api/calibration/brier-scores", response_model=List[BrierScoreResponse])
async def get_brier_scores(
    engine: Optional[str] = Query(None, description="Filter by engine name"),
    sport: Optional[str] = Query(None, description="Filter by sport"),
    limit: int = Query(200, ge=1, le=1000),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Stored Brier scores, best first."""
    return list_brier_scores(db, engine_name=engine, sport=sport, limit=limit)


@app.get("/api/calibration/buckets", response_model=List[BucketResponse])
async def get_calibration_buckets(
    engine: Optional[str] = Query(None),
    sport: Optional[str] = Query(None),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Reliability-diagram buckets ordered by bucket_start."""
    return list_buckets(db, engine_name=engine, sport=sport)


@app.get("/api/calibration/isotonic/{engine}", response_model=IsotonicMapResponse)
async def get_isotonic_calibration(
    engine: str,
    sport: Optional[str] = Query(None, description="Omit for the all-sports map"),
    bet_type: Optional[str] = Query(None, description="Omit for the all-bet-types map"),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Stored isotonic map for one (engine, sport, bet_type) scope."""
    points = get_isotonic_map(db, engine, sport=sport, bet_type=bet_type)
    if not points:
        raise HTTPException(status_code=404, detail="No calibration map for this scope")
    return IsotonicMapResponse(
        engine_name=engine,
        sport=sport,
        bet_type=bet_type,
        points=[IsotonicPointResponse(**p.to_dict()) for p in points],
    )


@app.get("/api/calibration/apply", response_model=CalibratedProbabilityResponse)
async def calibrate_probability(
    engine: str = Query(..., description="Engine whose map to use"),
    raw_probability: float = Query(..., ge=0.0, le=1.0),
    sport: Optional[str] = Query(None),
    bet_type: Optional[str] = Query(None),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """
    Map a raw engine probability through the stored isotonic calibration.

    Without a stored map the raw probability is echoed back with
    calibrated=false.
    """
    points = get_isotonic_map(db, engine, sport=sport, bet_type=bet_type)
    return CalibratedProbabilityResponse(
        engine_name=engine,
        sport=sport,
        bet_type=bet_type,
        raw_probability=raw_probability,
        calibrated_probability=round(apply_calibration(raw_probability, points), 6),
        map_points=len(points),
        calibrated=bool(points),
    )


@app.get("/api/calibration/runs", response_model=List[CalibrationRunRecord])
async def get_calibration_runs(
    limit: int = Query(20, ge=1, le=200),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Most recent pipeline invocations."""
    return list_runs(db, limit=limit)


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/calibration/run", response_model=CalibrationRunResponse)
async def trigger_calibration(
    payload: Optional[CalibrationRunRequest] = None,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """
    Run the calibration pipeline now (admin only).

    Partial results (some engines skipped or failed) return 200 with
    status="partial".  Only an unreachable outcome store returns 500.
    """
    payload = payload or CalibrationRunRequest()
    logger.info(
        "Calibration triggered by %s (engine=%s sport=%s window=%s dry_run=%s)",
        user, payload.engine, payload.sport, payload.window_days, payload.dry_run,
    )
    try:
        return run_calibration_pipeline(
            db,
            engine_name=payload.engine,
            sport=payload.sport,
            window_days=payload.window_days,
            as_of=payload.as_of,
            triggered_by=user,
            persist=not payload.dry_run,
        )
    except DataSourceUnavailable as exc:
        logger.error("Calibration run failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    except Exception as exc:
        logger.error("Calibration run failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail=str(exc))
