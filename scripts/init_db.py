#!/usr/bin/env python3
"""
Database initialization script
Creates the calibration tables and optionally seeds synthetic outcomes
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from backend.models import Base, engine, SessionLocal, PredictionOutcome
from backend.core.calibration_config import KNOWN_ENGINES
from datetime import datetime, timedelta
import logging
import random
from sqlalchemy import text, inspect

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SEED_SPORTS = ("nba", "nfl", "nhl", "mlb")
SEED_BET_TYPES = ("moneyline", "spread", "total", "prop")


def init_database(drop_existing: bool = False):
    """
    Initialize database tables

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("🔧 Initializing calibration database...")

    if drop_existing:
        logger.warning("⚠️  Dropping all existing tables!")
        response = input("Are you sure? This will delete all data. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return

        Base.metadata.drop_all(bind=engine)
        logger.info("✅ Existing tables dropped")

    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables created successfully")

    inspector = inspect(engine)
    tables = inspector.get_table_names()
    logger.info(f"📋 Tables: {', '.join(tables)}")

    return True


def seed_test_data(per_engine: int = 300, days: int = 30, seed: int = 7):
    """
    Write synthetic settled predictions for every known engine.

    Each engine gets a different distortion of the true probability so the
    calibration output differs between engines: some overconfident, some
    underconfident.  About 10% of rows are left pending (outcome NULL).
    """
    logger.info("🌱 Seeding synthetic prediction outcomes...")

    rng = random.Random(seed)
    now = datetime.utcnow()
    db = SessionLocal()

    try:
        rows = []
        for idx, engine_name in enumerate(KNOWN_ENGINES):
            stretch = 0.7 + 0.15 * idx  # <1 underconfident, >1 overconfident
            for _ in range(per_engine):
                true_p = rng.uniform(0.1, 0.9)
                predicted = min(1.0, max(0.0, 0.5 + (true_p - 0.5) * stretch))
                pending = rng.random() < 0.1
                rows.append(PredictionOutcome(
                    engine_name=engine_name,
                    sport=rng.choice(SEED_SPORTS),
                    bet_type=rng.choice(SEED_BET_TYPES),
                    predicted_probability=round(predicted, 4),
                    outcome=None if pending else int(rng.random() < true_p),
                    observed_at=now - timedelta(minutes=rng.randint(0, days * 24 * 60)),
                ))

        db.add_all(rows)
        db.commit()

        logger.info(f"✅ Seeded {len(rows)} outcomes across {len(KNOWN_ENGINES)} engines")

    except Exception as e:
        logger.error(f"❌ Error seeding data: {e}")
        db.rollback()

    finally:
        db.close()


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("✅ Database connection successful")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize calibration database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--seed", action="store_true", help="Seed synthetic prediction outcomes")
    parser.add_argument("--per-engine", type=int, default=300, help="Seeded rows per engine")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        check_connection()
    else:
        if check_connection():
            init_database(drop_existing=args.drop)

            if args.seed:
                seed_test_data(per_engine=args.per_engine)

            logger.info("🎉 Database initialization complete!")
        else:
            logger.error("Cannot initialize database - connection failed")
            sys.exit(1)
