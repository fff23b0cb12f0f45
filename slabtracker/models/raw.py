"""Raw token snapshots as returned by the ownership source, one row per token."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from slabtracker.models.base import Base, JSONType

class RawAsset(Base):
    __tablename__ = "assets_raw"
    __table_args__ = (
        UniqueConstraint("contract_address", "token_id", name="uq_assets_raw_contract_token"),
        Index("ix_assets_raw_owner_contract", "owner_address", "contract_address"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    chain: Mapped[str] = mapped_column(String(32), nullable=False, default="polygon")
    contract_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    owner_address: Mapped[str] = mapped_column(String(64), nullable=False)
    token_uri: Mapped[str | None] = mapped_column(String, nullable=True)

    raw_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    last_indexed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
