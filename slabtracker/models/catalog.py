"""Reference catalog: sets and cards from the upstream card database.

Read-only to everything except CatalogSync and the set-name cleanup jobs.
"""

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from slabtracker.models.base import Base


class CatalogSet(Base):
    __tablename__ = "catalog_sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    set_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Null for placeholder rows synthesized from slab set names
    upstream_set_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    series: Mapped[str | None] = mapped_column(String(128), nullable=True)
    release_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_cards: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    logo_url: Mapped[str | None] = mapped_column(String, nullable=True)
    symbol_url: Mapped[str | None] = mapped_column(String, nullable=True)


class CatalogCard(Base):
    __tablename__ = "catalog_cards"
    __table_args__ = (
        Index("ix_catalog_cards_name_number", "card_name", "number_key"),
        Index("ix_catalog_cards_set_name", "set_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    upstream_card_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    card_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # As printed ("029"), and normalized for matching ("29")
    card_number: Mapped[str] = mapped_column(String(32), nullable=False)
    number_key: Mapped[str] = mapped_column(String(32), nullable=False)

    catalog_set_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("catalog_sets.id", ondelete="CASCADE"),
        nullable=False,
    )
    set_name: Mapped[str] = mapped_column(String(255), nullable=False)

    image_small: Mapped[str | None] = mapped_column(String, nullable=True)
    image_large: Mapped[str | None] = mapped_column(String, nullable=True)
