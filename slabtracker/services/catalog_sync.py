"""Catalog sync: reference sets and cards from the upstream card database.

A partial catalog is an acceptable degraded state. A set whose cards cannot be
fetched is logged and skipped; the next sync picks it up again because its
stored card count is still below the declared total. A source that stays
rate limited after its retries ends the card pass; the sets left over are
picked up the same way.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from slabtracker.core.config import settings
from slabtracker.core.errors import RateLimitedError, UpstreamError
from slabtracker.core.logging import get_logger
from slabtracker.identity.card_matcher import normalize_card_number
from slabtracker.ingestion.base import CardSummary, CatalogSource, SetSummary
from slabtracker.models.base import utcnow
from slabtracker.models.catalog import CatalogCard, CatalogSet
from slabtracker.models.runs import SyncRun
from slabtracker.models.slab import Slab

log = get_logger("catalog_sync")

JOB_NAME = "catalog_sync"
CARD_CHUNK = 50

PTCG_IMAGE_BASE = "https://images.pokemontcg.io"


@dataclass(frozen=True)
class JapaneseSet:
    total_cards: int
    release_year: int
    series: str


# The upstream catalog only covers English sets; print counts include secret rares
JP_SETS: Mapping[str, JapaneseSet] = MappingProxyType(
    {
        "Shiny Treasure EX": JapaneseSet(360, 2023, "Scarlet & Violet"),
        "Ruler of the Black Flame": JapaneseSet(141, 2023, "Scarlet & Violet"),
        "The Town on No Map": JapaneseSet(92, 2002, "e-Card"),
        "Vstar Universe": JapaneseSet(262, 2022, "Sword & Shield"),
        "Trading Card Game Classic - CLF, CLL, CLK": JapaneseSet(101, 2023, "Classic"),
        "P Promo": JapaneseSet(47, 2023, "Promo"),
        "Promo Card Pack 25th Anniversary Edition": JapaneseSet(25, 2021, "25th Anniversary"),
        "Gym Booster 1: Leaders' Stadium": JapaneseSet(96, 1998, "Gym"),
        "Neo": JapaneseSet(96, 1999, "Neo"),
        "Battle Academy": JapaneseSet(66, 2024, "Scarlet & Violet"),
    }
)

# Keyed by lower-cased set name
JP_SET_LOGOS: Mapping[str, str] = MappingProxyType(
    {
        "vstar universe": "https://den-media.pokellector.com/logos/VSTAR-Universe.logo.357.png",
        "shiny treasure ex": "https://den-media.pokellector.com/logos/Shiny-Treasure-ex.logo.375.png",
        "ruler of the black flame": "https://den-media.pokellector.com/logos/Ruler-of-the-Black-Flame.logo.368.png",
        "the town on no map": "https://den-media.pokellector.com/logos/The-Town-on-No-Map.logo.390.png",
        "neo": "https://den-media.pokellector.com/logos/Gold-Silver-to-a-New-World.logo.324.png",
        "gym booster 1: leaders' stadium": "https://den-media.pokellector.com/logos/Leaders-Stadium.logo.316.png",
        "promo card pack 25th anniversary edition": (
            "https://den-media.pokellector.com/logos/25th-Anniversary-Promo-Pack.logo.328.png"
        ),
    }
)


@dataclass
class CatalogSyncResult:
    skipped: bool = False
    sets_upserted: int = 0
    sets_skipped: int = 0
    sets_failed: int = 0
    cards_upserted: int = 0
    rate_limited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BackfillResult:
    images_fixed: int = 0
    placeholders_created: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def complete_asset_url(url: Optional[str]) -> Optional[str]:
    """Some asset hosts hand out extension-less image URLs; browsers need the file."""
    if not url:
        return url
    parsed = urlparse(url)
    last_segment = parsed.path.rsplit("/", 1)[-1]
    if last_segment and "." not in last_segment:
        return urlunparse(parsed._replace(path=f"{parsed.path}.png"))
    return url


def synthesized_images(upstream_set_id: str) -> Tuple[str, str]:
    return (
        f"{PTCG_IMAGE_BASE}/{upstream_set_id}/logo.png",
        f"{PTCG_IMAGE_BASE}/{upstream_set_id}/symbol.png",
    )


class CatalogSync:
    """Populates CatalogSet/CatalogCard from a CatalogSource."""

    def __init__(self, db: Session, source: CatalogSource, min_sets: Optional[int] = None):
        self.db = db
        self.source = source
        self.min_sets = settings.CATALOG_MIN_SETS if min_sets is None else min_sets

    def is_seeded(self) -> bool:
        """Approximate freshness: enough upstream sets and at least one card."""
        set_count = self.db.execute(
            select(func.count()).select_from(CatalogSet).where(CatalogSet.upstream_set_id.is_not(None))
        ).scalar_one()
        has_cards = self.db.execute(select(CatalogCard.id).limit(1)).first() is not None
        return has_cards and set_count > self.min_sets

    async def sync(self, force: bool = False) -> CatalogSyncResult:
        result = CatalogSyncResult()

        if not force and self.is_seeded():
            log.info("Catalog already seeded; skipping sync")
            result.skipped = True
            return result

        run = SyncRun(job_name=JOB_NAME, status="running", records_processed=0)
        self.db.add(run)
        self.db.commit()

        try:
            log.info(f"Seeding catalog from {self.source.name}")
            sets = await self.source.list_sets()
            if not sets:
                log.warning(f"{self.source.name} returned no sets; nothing to sync")

            set_rows = self._upsert_sets(sets, result)
            self.db.commit()

            for index, summary in enumerate(sets, start=1):
                row = set_rows.get(summary.id)
                if row is None:
                    continue
                try:
                    await self._sync_set_cards(summary, row, result)
                except RateLimitedError as exc:
                    # Remaining sets stay below their totals and are picked up next sync
                    log.warning(f"Stopping card sync at set {summary.name} ({summary.id}): {exc}")
                    result.rate_limited = True
                    result.sets_failed += 1
                    break
                if index % 25 == 0:
                    log.info(f"  ... {index}/{len(sets)} sets, {result.cards_upserted} cards")

            run.status = "success"
            run.records_processed = result.cards_upserted
            run.meta = result.to_dict()
            run.ended_at = utcnow()
            self.db.commit()

            log.info(
                f"Catalog sync complete: sets={result.sets_upserted} cards={result.cards_upserted} "
                f"skipped_sets={result.sets_skipped} failed_sets={result.sets_failed}"
            )
            return result

        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            run.status = "failure"
            run.error_message = str(exc)
            run.ended_at = utcnow()
            self.db.add(run)
            self.db.commit()
            log.bind(job=JOB_NAME, source=self.source.name).error(f"Catalog sync failed: {exc}")
            raise

    # -------------------------------------------------------------------------
    # Sets
    # -------------------------------------------------------------------------
    def _upsert_sets(self, sets: List[SetSummary], result: CatalogSyncResult) -> Dict[str, CatalogSet]:
        existing = {row.set_name: row for row in self.db.execute(select(CatalogSet)).scalars()}
        rows: Dict[str, CatalogSet] = {}

        for summary in sets:
            values = {
                "upstream_set_id": summary.id,
                "series": summary.series,
                "total_cards": summary.total_cards,
                "release_year": summary.release_year,
                "logo_url": summary.logo_url,
                "symbol_url": summary.symbol_url,
            }
            row = existing.get(summary.name)
            if row is None:
                row = CatalogSet(set_name=summary.name, **values)
                self.db.add(row)
                existing[summary.name] = row
            else:
                for key, value in values.items():
                    # Keep images a backfill already fixed when upstream has none
                    if value is None and key in ("logo_url", "symbol_url"):
                        continue
                    if getattr(row, key) != value:
                        setattr(row, key, value)
            rows[summary.id] = row
            result.sets_upserted += 1

        self.db.flush()
        log.info(f"Upserted {result.sets_upserted} sets")
        return rows

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------
    async def _sync_set_cards(self, summary: SetSummary, row: CatalogSet, result: CatalogSyncResult) -> None:
        existing_count = self.db.execute(
            select(func.count()).select_from(CatalogCard).where(CatalogCard.catalog_set_id == row.id)
        ).scalar_one()
        if existing_count and existing_count >= summary.total_cards:
            result.sets_skipped += 1
            return

        try:
            cards = await self.source.list_cards_for_set(summary.id)
        except RateLimitedError:
            raise
        except UpstreamError as exc:
            log.warning(f"Skipping set {summary.name} ({summary.id}): {exc}")
            result.sets_failed += 1
            return

        if not cards:
            log.debug(f"No cards returned for set {summary.name} ({summary.id})")
            return

        for start in range(0, len(cards), CARD_CHUNK):
            self._upsert_cards(cards[start:start + CARD_CHUNK], row)
            self.db.commit()
        result.cards_upserted += len(cards)

    def _upsert_cards(self, cards: List[CardSummary], row: CatalogSet) -> None:
        ids = [card.id for card in cards]
        existing = {
            card.upstream_card_id: card
            for card in self.db.execute(
                select(CatalogCard).where(CatalogCard.upstream_card_id.in_(ids))
            ).scalars()
        }

        for card in cards:
            values = {
                "card_name": card.name,
                "card_number": card.number,
                "number_key": normalize_card_number(card.number) or card.number,
                "catalog_set_id": row.id,
                "set_name": row.set_name,
                "image_small": card.image_small,
                "image_large": card.image_large,
            }
            stored = existing.get(card.id)
            if stored is None:
                stored = CatalogCard(upstream_card_id=card.id, **values)
                self.db.add(stored)
                existing[card.id] = stored
                continue
            for key, value in values.items():
                if getattr(stored, key) != value:
                    setattr(stored, key, value)

    # -------------------------------------------------------------------------
    # Backfill
    # -------------------------------------------------------------------------
    def backfill(self) -> BackfillResult:
        """Fix set image URLs and add placeholder sets for slab set names the catalog lacks."""
        result = BackfillResult()

        for row in self.db.execute(select(CatalogSet)).scalars():
            if self._fix_images(row):
                result.images_fixed += 1

        known = {name.lower() for name in self.db.execute(select(CatalogSet.set_name)).scalars()}
        slab_sets = self.db.execute(
            select(Slab.set_name).where(Slab.set_name.is_not(None)).distinct().order_by(Slab.set_name)
        ).scalars()

        for set_name in slab_sets:
            if not set_name.strip() or set_name.lower() in known:
                continue
            jp = JP_SETS.get(set_name)
            self.db.add(
                CatalogSet(
                    set_name=set_name,
                    upstream_set_id=None,
                    series=jp.series if jp else None,
                    release_year=jp.release_year if jp else None,
                    total_cards=jp.total_cards if jp else 0,
                    logo_url=JP_SET_LOGOS.get(set_name.lower()),
                )
            )
            known.add(set_name.lower())
            result.placeholders_created += 1
            log.info(f"Added placeholder catalog set {set_name!r} (total={jp.total_cards if jp else 0})")

        self.db.commit()
        log.info(f"Catalog backfill: images_fixed={result.images_fixed} placeholders={result.placeholders_created}")
        return result

    @staticmethod
    def _fix_images(row: CatalogSet) -> bool:
        logo, symbol = row.logo_url, row.symbol_url
        if row.upstream_set_id:
            default_logo, default_symbol = synthesized_images(row.upstream_set_id)
            logo = logo or default_logo
            symbol = symbol or default_symbol
        elif not logo:
            logo = JP_SET_LOGOS.get(row.set_name.lower())

        logo, symbol = complete_asset_url(logo), complete_asset_url(symbol)
        if (logo, symbol) == (row.logo_url, row.symbol_url):
            return False
        row.logo_url, row.symbol_url = logo, symbol
        return True
