"""
Demo schema: promo codes and the tables that reference them.

Mirrors the tables the consolidator was first written for. Used by
scripts/init_db.py and by the test suite; the consolidation engine itself
works on reflected tables and does not import these models.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PromoCode(Base):
    """
    A promo code offered by a whop.

    Intended to be unique on (whopId, code); that is the natural key the
    consolidator enforces.
    """
    __tablename__ = "PromoCode"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    whopId: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class OfferTracking(Base):
    """Click/offer tracking rows pointing at a promo code."""
    __tablename__ = "OfferTracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    promoCodeId: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("PromoCode.id"), nullable=True, index=True
    )
    action: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class PromoCodeSubmission(Base):
    """User-submitted promo codes, optionally linked to an existing one."""
    __tablename__ = "PromoCodeSubmission"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    promoCodeId: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("PromoCode.id"), nullable=True, index=True
    )
    submittedCode: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
