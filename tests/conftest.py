# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for consolidator tests."""

import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import insert, select

# Set test environment variables before importing the package
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DISABLE_LOGGING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from consolidator.config import ConsolidationSettings, Settings  # noqa: E402
from consolidator.database import create_db_engine  # noqa: E402
from consolidator.deduplication.types import EntitySpec, ReferrerSpec  # noqa: E402
from consolidator.models import Base, OfferTracking, PromoCode, PromoCodeSubmission  # noqa: E402

T0 = datetime(2025, 10, 24, 12, 0, 0)


def at(minutes: int) -> datetime:
    """Timestamp ``minutes`` after the fixed test epoch."""
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def db_url(tmp_path) -> str:
    """File-backed SQLite URL (in-memory databases are per-connection)."""
    return f"sqlite:///{tmp_path / 'consolidator.db'}"


@pytest.fixture
def db_engine(db_url):
    """Engine with the promo-code demo schema and enforced foreign keys."""
    engine = create_db_engine(db_url)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no retry backoff and a tiny batch size to exercise chunking."""
    return Settings(consolidation=ConsolidationSettings(retry_delay=0, batch_size=2, max_retries=3))


@pytest.fixture
def promo_spec() -> EntitySpec:
    """Promo codes keyed by (whopId, code) with both referrers registered."""
    return EntitySpec(
        name="promo_codes",
        table="PromoCode",
        natural_key=("whopId", "code"),
        referrers=(
            ReferrerSpec("OfferTracking", "promoCodeId"),
            ReferrerSpec("PromoCodeSubmission", "promoCodeId"),
        ),
        created_column="createdAt",
        index_name="promo_unique_whop_code",
    )


def add_promos(engine, *rows: dict) -> None:
    with engine.begin() as conn:
        conn.execute(insert(PromoCode), list(rows))


def add_trackings(engine, *promo_ids) -> None:
    with engine.begin() as conn:
        conn.execute(
            insert(OfferTracking),
            [{"id": i, "promoCodeId": pid, "action": "click"} for i, pid in enumerate(promo_ids, start=1)],
        )


def add_submissions(engine, *promo_ids) -> None:
    with engine.begin() as conn:
        conn.execute(
            insert(PromoCodeSubmission),
            [{"id": i, "promoCodeId": pid} for i, pid in enumerate(promo_ids, start=1)],
        )


def snapshot(engine) -> dict:
    """All rows of the demo tables, ordered by id."""
    with engine.connect() as conn:
        return {
            model.__tablename__: [tuple(r) for r in conn.execute(select(model.__table__).order_by(model.id))]
            for model in (PromoCode, OfferTracking, PromoCodeSubmission)
        }


def promo_ids(engine) -> list:
    with engine.connect() as conn:
        return list(conn.execute(select(PromoCode.id).order_by(PromoCode.id)).scalars())


def tracking_targets(engine) -> dict:
    with engine.connect() as conn:
        return dict(conn.execute(select(OfferTracking.id, OfferTracking.promoCodeId)).all())


def submission_targets(engine) -> dict:
    with engine.connect() as conn:
        return dict(conn.execute(select(PromoCodeSubmission.id, PromoCodeSubmission.promoCodeId)).all())


@pytest.fixture
def three_way_duplicates(db_engine):
    """
    The reference scenario: three rows share key ("w", "A").

    id 1 at t=10, ids 2 and 3 at t=5; trackings point at 1 and 3.
    """
    add_promos(
        db_engine,
        {"id": 1, "whopId": "w", "code": "A", "createdAt": at(10)},
        {"id": 2, "whopId": "w", "code": "A", "createdAt": at(5)},
        {"id": 3, "whopId": "w", "code": "A", "createdAt": at(5)},
    )
    add_trackings(db_engine, 1, 3)
    return db_engine
