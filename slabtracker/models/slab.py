"""Parsed slab, one-to-one with a RawAsset and replaced in place on re-parse."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from slabtracker.models.base import Base


class Slab(Base):
    __tablename__ = "slabs"
    __table_args__ = (
        Index("ix_slabs_set_name", "set_name"),
        Index("ix_slabs_card_name", "card_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    raw_asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assets_raw.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    platform: Mapped[str] = mapped_column(String(32), nullable=False, default="courtyard")
    cert_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    grader: Mapped[str | None] = mapped_column(String(16), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(16), nullable=True)
    set_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    variant: Mapped[str | None] = mapped_column(String(64), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    fingerprint_text: Mapped[str | None] = mapped_column(String, nullable=True)

    parse_status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,  # ok | partial | fail
    )

    # Upstream catalog card id when the identity matcher resolved one
    catalog_card_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
