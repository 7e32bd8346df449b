#!/usr/bin/env python3
"""
Initialize a demo database for the consolidator.

Creates the PromoCode / OfferTracking / PromoCodeSubmission tables and can
seed them with duplicate promo codes, so the consolidate and guard commands
have something to work on.

Usage:
    python scripts/init_db.py [--drop] [--seed]
    DATABASE_URL=sqlite:///demo.db python scripts/init_db.py --seed
"""

import sys
import argparse
from datetime import datetime, timedelta
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger
from sqlalchemy import inspect

from consolidator.database import get_engine, get_session
from consolidator.models import Base, OfferTracking, PromoCode, PromoCodeSubmission


def seed_duplicates(session) -> int:
    """
    Insert promo codes with duplicated (whopId, code) pairs plus references.

    Returns:
        Number of promo code rows added.
    """
    base = datetime(2025, 10, 24, 12, 0, 0)
    promos = [
        PromoCode(whopId="whop-1", code="SAVE10", title="10% off", createdAt=base),
        PromoCode(whopId="whop-1", code="SAVE10", title="10% off", createdAt=base + timedelta(hours=1)),
        PromoCode(whopId="whop-1", code="SAVE10", title="10% off (copy)", createdAt=base + timedelta(hours=2)),
        PromoCode(whopId="whop-1", code="save10", title="lowercase variant", createdAt=base + timedelta(hours=3)),
        PromoCode(whopId="whop-2", code="WELCOME", title="Welcome", createdAt=base),
        PromoCode(whopId="whop-2", code="WELCOME", title="Welcome", createdAt=base + timedelta(days=1)),
        PromoCode(whopId="whop-3", code="UNIQUE", title="Only one", createdAt=base),
        PromoCode(whopId=None, code="ORPHAN", title="No whop", createdAt=base),
        PromoCode(whopId=None, code="ORPHAN", title="No whop", createdAt=base),
    ]
    session.add_all(promos)
    session.flush()

    for promo in promos:
        session.add(OfferTracking(promoCodeId=promo.id, action="click"))
    session.add(PromoCodeSubmission(promoCodeId=promos[2].id, submittedCode="SAVE10"))
    session.add(PromoCodeSubmission(promoCodeId=promos[5].id, submittedCode="WELCOME"))

    return len(promos)


def main():
    parser = argparse.ArgumentParser(description="Initialize the consolidator demo database")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing demo tables before creating (USE WITH CAUTION!)",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Insert duplicate promo codes and references",
    )
    args = parser.parse_args()

    engine = get_engine()

    logger.info("=" * 60)
    logger.info("Consolidator - Demo Database Initialization")
    logger.info("=" * 60)

    if args.drop:
        logger.warning("Dropping demo tables...")
        confirm = input("Are you sure you want to drop the demo tables? (yes/no): ")
        if confirm.lower() == "yes":
            Base.metadata.drop_all(engine)
            logger.info("Tables dropped.")
        else:
            logger.info("Drop cancelled.")
            sys.exit(0)

    logger.info("Creating database tables...")
    Base.metadata.create_all(engine)
    logger.info(f"Tables in database: {inspect(engine).get_table_names()}")

    if args.seed:
        with get_session(engine) as session:
            count = seed_duplicates(session)
        logger.info(f"Seeded {count} promo codes.")

    logger.info("=" * 60)
    logger.info("Database initialization complete!")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
