"""Last successful ownership sync per owner and collection."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from slabtracker.models.base import Base


class SyncCheckpoint(Base):
    __tablename__ = "sync_checkpoints"

    owner_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    contract_address: Mapped[str] = mapped_column(String(64), primary_key=True)

    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
