"""Append-only price facts. The newest row per slab is its current price."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from slabtracker.models.base import Base, JSONType

CONFIDENCE_TIERS = ("high", "medium", "low")


class Price(Base):
    __tablename__ = "prices"
    __table_args__ = (
        Index("ix_prices_slab_retrieved", "slab_id", "retrieved_at"),
        CheckConstraint(
            "confidence IN (" + ", ".join(f"'{tier}'" for tier in CONFIDENCE_TIERS) + ")",
            name="ck_prices_confidence",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    slab_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("slabs.id", ondelete="CASCADE"),
        nullable=False,
    )

    source: Mapped[str] = mapped_column(String(32), nullable=False)

    market_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")

    confidence: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
    )

    retrieved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    raw_response: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
