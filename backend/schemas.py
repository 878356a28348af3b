"""
Pydantic request/response schemas for the calibration API.

Explicit schemas keep ORM rows from leaking straight into responses and
generate accurate OpenAPI docs.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Pipeline trigger
# ---------------------------------------------------------------------------

class CalibrationRunRequest(BaseModel):
    """
    Payload for POST /admin/calibration/run.

    Every field is optional; an empty body runs every engine over the
    configured trailing window.
    """

    engine: Optional[str] = Field(None, min_length=1, max_length=64, description="Restrict to one engine")
    sport: Optional[str] = Field(None, min_length=1, max_length=32, description="Restrict to one sport")
    window_days: Optional[int] = Field(None, ge=1, le=365, description="Trailing window override")
    as_of: Optional[date] = Field(None, description="Last day of the window (UTC); default today")
    dry_run: bool = Field(False, description="Compute without writing artifacts")

    @field_validator("engine", "sport")
    @classmethod
    def normalise_tag(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v in ("all", ""):
            return None
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "engine": "sharp_money",
                "sport": "nba",
                "window_days": 30,
            }
        }
    }


class SliceResult(BaseModel):
    sport: Optional[str]
    bet_type: Optional[str]
    sample_size: int
    brier_score: float
    log_loss: float
    calibration_error: float
    reliability: float
    resolution: float
    grade: str
    expected_calibration_error: float
    maximum_calibration_error: float
    buckets_written: int
    isotonic_points_written: int


class EngineResult(SliceResult):
    engine: str
    sport_slices: list[SliceResult]


class CalibrationRunResponse(BaseModel):
    """Summary returned by POST /admin/calibration/run."""
    status: Literal["ok", "partial"]
    total_predictions: int
    engines_scored: int
    results: list[EngineResult]
    skipped: list[dict]
    errors: list[dict]
    period: dict[str, str]
    window_days: int
    applied: bool
    timestamp: str


# ---------------------------------------------------------------------------
# Stored artifacts
# ---------------------------------------------------------------------------

class BrierScoreResponse(BaseModel):
    engine_name: str
    sport: Optional[str]
    bet_type: Optional[str]
    brier_score: float
    log_loss: Optional[float]
    reliability_score: Optional[float]
    resolution_score: Optional[float]
    uncertainty_score: Optional[float]
    calibration_error: Optional[float]
    base_rate: Optional[float]
    sample_size: int
    period_start: datetime
    period_end: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class BucketResponse(BaseModel):
    engine_name: str
    sport: Optional[str]
    bucket_start: float
    bucket_end: float
    predicted_avg: float
    actual_avg: float
    sample_count: int
    confidence_lower: Optional[float]
    confidence_upper: Optional[float]

    model_config = {"from_attributes": True}


class IsotonicPointResponse(BaseModel):
    raw_probability: float
    calibrated_probability: float
    sample_size: int

    model_config = {"from_attributes": True}


class IsotonicMapResponse(BaseModel):
    engine_name: str
    sport: Optional[str]
    bet_type: Optional[str]
    points: list[IsotonicPointResponse]


class CalibratedProbabilityResponse(BaseModel):
    """Response for GET /api/calibration/apply."""
    engine_name: str
    sport: Optional[str]
    bet_type: Optional[str]
    raw_probability: float
    calibrated_probability: float
    map_points: int
    calibrated: bool = Field(..., description="False when no stored map exists (raw value echoed)")


class CalibrationRunRecord(BaseModel):
    id: int
    started_at: datetime
    completed_at: Optional[datetime]
    status: str
    triggered_by: Optional[str]
    window_days: Optional[int]
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    error_message: Optional[str]

    model_config = {"from_attributes": True}
