"""
Database models for the probability calibration service
SQLAlchemy ORM with PostgreSQL
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    JSON,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
import os
from dotenv import load_dotenv

# Load .env before reading DATABASE_URL or any CALIBRATION_* override
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://postgres@127.0.0.1:5432/calibration")

# pool_pre_ping keeps long-lived scheduler connections healthy
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class PredictionOutcome(Base):
    """Forecasts written by the prediction engines; outcome filled once settled"""

    __tablename__ = "prediction_outcomes"

    id = Column(Integer, primary_key=True, index=True)
    engine_name = Column(String(64), nullable=False, index=True)
    sport = Column(String(32), index=True)
    bet_type = Column(String(64))

    predicted_probability = Column(Float, nullable=False)
    outcome = Column(Integer)  # 1=hit, 0=miss, null=pending
    observed_at = Column(DateTime, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_prediction_outcomes_engine_observed", "engine_name", "observed_at"),
    )


class EngineBrierScore(Base):
    """Brier score + Murphy decomposition per engine/sport/bet_type/period"""

    __tablename__ = "engine_brier_scores"

    id = Column(Integer, primary_key=True, index=True)
    engine_name = Column(String(64), nullable=False, index=True)
    sport = Column(String(32))     # null = all sports
    bet_type = Column(String(64))  # null = all bet types

    brier_score = Column(Float, nullable=False)
    log_loss = Column(Float)
    reliability_score = Column(Float)
    resolution_score = Column(Float)
    uncertainty_score = Column(Float)
    calibration_error = Column(Float)  # sqrt(reliability)
    base_rate = Column(Float)
    sample_size = Column(Integer, nullable=False)

    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "engine_name", "sport", "bet_type", "period_start", "period_end",
            name="_brier_natural_key_uc",
        ),
    )


class CalibrationBucket(Base):
    """Fixed-width reliability-diagram bucket with a 95% Wilson interval"""

    __tablename__ = "calibration_buckets"

    id = Column(Integer, primary_key=True, index=True)
    engine_name = Column(String(64), nullable=False, index=True)
    sport = Column(String(32))  # null = all sports

    bucket_start = Column(Float, nullable=False)
    bucket_end = Column(Float, nullable=False)
    predicted_avg = Column(Float, nullable=False)
    actual_avg = Column(Float, nullable=False)
    sample_count = Column(Integer, nullable=False)
    confidence_lower = Column(Float)
    confidence_upper = Column(Float)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "engine_name", "sport", "bucket_start", "bucket_end",
            name="_bucket_natural_key_uc",
        ),
    )


class IsotonicCalibration(Base):
    """One point of a PAVA calibration map (raw -> calibrated probability)"""

    __tablename__ = "isotonic_calibration"

    id = Column(Integer, primary_key=True, index=True)
    engine_name = Column(String(64), nullable=False, index=True)
    sport = Column(String(32))
    bet_type = Column(String(64))

    raw_probability = Column(Float, nullable=False)
    calibrated_probability = Column(Float, nullable=False)
    sample_size = Column(Integer, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "engine_name", "sport", "bet_type", "raw_probability",
            name="_isotonic_natural_key_uc",
        ),
    )


class CalibrationRun(Base):
    """History of pipeline invocations (appended, never upserted)"""

    __tablename__ = "calibration_runs"

    id = Column(Integer, primary_key=True, index=True)
    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime)
    status = Column(String(20), nullable=False)  # ok | partial | error
    triggered_by = Column(String(64))  # "scheduler" or user identifier
    window_days = Column(Integer)
    period_start = Column(DateTime)
    period_end = Column(DateTime)
    summary = Column(JSON)
    error_message = Column(Text)


# Create all tables
def init_db():
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine)
    print("✅ Database tables created")


if __name__ == "__main__":
    init_db()
