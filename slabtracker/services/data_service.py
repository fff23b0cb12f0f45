"""Data Service - read accessors for slabs, sets and prices. Reads only, no writes."""

from __future__ import annotations

import math
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Literal, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from slabtracker.core.logging import get_logger
from slabtracker.identity.card_matcher import normalize_card_number
from slabtracker.models.catalog import CatalogCard, CatalogSet
from slabtracker.models.checkpoints import SyncCheckpoint
from slabtracker.models.price import Price
from slabtracker.models.raw import RawAsset
from slabtracker.models.runs import SyncRun
from slabtracker.models.slab import Slab

log = get_logger("data_service")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SlabSort = Literal["newest", "price_asc", "price_desc"]


def completion_pct(owned: int, total: int) -> float:
    """Percentage rounded half-up to 2 decimals; 0 when the set size is unknown."""
    if total <= 0:
        return 0.0
    return math.floor(owned / total * 10000 + 0.5) / 100


def _slab_dict(slab: Slab, price: Optional[Price]) -> Dict[str, Any]:
    return {
        "id": slab.id,
        "cert_number": slab.cert_number,
        "grader": slab.grader,
        "grade": slab.grade,
        "set_name": slab.set_name,
        "card_name": slab.card_name,
        "card_number": slab.card_number,
        "variant": slab.variant,
        "image_url": slab.image_url,
        "parse_status": slab.parse_status,
        "platform": slab.platform,
        "market_price": float(price.market_price) if price else None,
        "price_currency": price.currency if price else None,
        "price_confidence": price.confidence if price else None,
        "price_source": price.source if price else None,
        "price_retrieved_at": price.retrieved_at if price else None,
    }


class DataService:
    """Handles all read operations for the public and ops endpoints."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Query building
    # -------------------------------------------------------------------------
    @staticmethod
    def _latest_price_join():
        """Newest retrieved_at per slab, and the condition joining it back to Price."""
        newest = (
            select(Price.slab_id, func.max(Price.retrieved_at).label("retrieved_at"))
            .group_by(Price.slab_id)
            .subquery()
        )
        condition = and_(Price.slab_id == newest.c.slab_id, Price.retrieved_at == newest.c.retrieved_at)
        return newest, condition

    def _owned_slabs_stmt(self, owner: str):
        newest, condition = self._latest_price_join()
        return (
            select(Slab, Price)
            .join(RawAsset, RawAsset.id == Slab.raw_asset_id)
            .outerjoin(newest, newest.c.slab_id == Slab.id)
            .outerjoin(Price, condition)
            .where(RawAsset.owner_address == owner.lower())
        )

    def _rows(self, stmt) -> List[Tuple[Slab, Optional[Price]]]:
        return [(slab, price) for slab, price in self.db.execute(stmt).all()]

    # -------------------------------------------------------------------------
    # Slabs
    # -------------------------------------------------------------------------
    def get_slabs_by_owner(
        self,
        owner: str,
        set_name: Optional[str] = None,
        q: Optional[str] = None,
        grade: Optional[str] = None,
        sort: SlabSort = "newest",
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """Paginated slabs for an owner with their latest price."""
        page = max(1, page)
        page_size = max(1, min(MAX_PAGE_SIZE, page_size or DEFAULT_PAGE_SIZE))

        filters = [RawAsset.owner_address == owner.lower()]
        if set_name:
            filters.append(Slab.set_name == set_name)
        if grade:
            filters.append(Slab.grade == grade)
        if q:
            pattern = f"%{q}%"
            filters.append(
                or_(
                    Slab.card_name.ilike(pattern),
                    Slab.cert_number.ilike(pattern),
                    Slab.set_name.ilike(pattern),
                )
            )

        stmt = self._owned_slabs_stmt(owner).where(*filters)
        if sort == "price_asc":
            stmt = stmt.order_by(Price.market_price.asc().nullslast(), Slab.id)
        elif sort == "price_desc":
            stmt = stmt.order_by(Price.market_price.desc().nullslast(), Slab.id)
        else:
            stmt = stmt.order_by(Slab.created_at.desc(), Slab.id)
        stmt = stmt.limit(page_size).offset((page - 1) * page_size)

        count_stmt = (
            select(func.count())
            .select_from(Slab)
            .join(RawAsset, RawAsset.id == Slab.raw_asset_id)
            .where(*filters)
        )
        total = self.db.execute(count_stmt).scalar() or 0

        return {
            "data": [_slab_dict(slab, price) for slab, price in self._rows(stmt)],
            "pagination": {
                "page": page,
                "page_size": page_size,
                "total": total,
                "total_pages": math.ceil(total / page_size),
            },
        }

    def get_slabs_grouped_by_set(self, owner: str) -> List[Dict[str, Any]]:
        """Completed sets first, then by completion; slabs without a set last."""
        stmt = self._owned_slabs_stmt(owner).order_by(Slab.set_name, Slab.card_number, Slab.id)
        grouped: "OrderedDict[Optional[str], List[Tuple[Slab, Optional[Price]]]]" = OrderedDict()
        for slab, price in self._rows(stmt):
            grouped.setdefault(slab.set_name, []).append((slab, price))

        totals = self._set_totals([name for name in grouped if name is not None])
        groups: List[Dict[str, Any]] = []
        for set_name, rows in grouped.items():
            if set_name is None:
                continue
            owned = self._owned_count([slab for slab, _ in rows])
            total = totals.get(set_name, 0)
            groups.append(
                {
                    "set_name": set_name,
                    "owned_count": owned,
                    "total_cards": total,
                    "completion_pct": completion_pct(owned, total),
                    "slabs": [_slab_dict(slab, price) for slab, price in rows],
                }
            )

        groups.sort(key=lambda g: (g["completion_pct"] < 100, -g["completion_pct"]))

        uncategorized = grouped.get(None)
        if uncategorized:
            groups.append(
                {
                    "set_name": None,
                    "owned_count": len(uncategorized),
                    "total_cards": 0,
                    "completion_pct": 0.0,
                    "slabs": [_slab_dict(slab, price) for slab, price in uncategorized],
                }
            )
        return groups

    def get_slab(self, slab_id: uuid.UUID) -> Optional[Dict[str, Any]]:
        """One slab with its token identity, latest price and price history."""
        row = self.db.execute(
            select(Slab, RawAsset).join(RawAsset, RawAsset.id == Slab.raw_asset_id).where(Slab.id == slab_id)
        ).first()
        if row is None:
            return None

        slab, asset = row
        history = self.get_price_history(slab_id)
        detail = _slab_dict(slab, history[0] if history else None)
        detail.update(
            {
                "owner_address": asset.owner_address,
                "contract_address": asset.contract_address,
                "token_id": asset.token_id,
                "catalog_card_id": slab.catalog_card_id,
                "fingerprint_text": slab.fingerprint_text,
                "price_history": history,
            }
        )
        return detail

    def get_price_history(self, slab_id: uuid.UUID, limit: int = 50) -> List[Price]:
        stmt = select(Price).where(Price.slab_id == slab_id).order_by(Price.retrieved_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Sets
    # -------------------------------------------------------------------------
    def _set_totals(self, set_names: List[str]) -> Dict[str, int]:
        if not set_names:
            return {}
        stmt = select(CatalogSet.set_name, CatalogSet.total_cards).where(CatalogSet.set_name.in_(set_names))
        return {name: total or 0 for name, total in self.db.execute(stmt).all()}

    @staticmethod
    def _owned_count(slabs: List[Slab]) -> int:
        """Unique card numbers; duplicate graded copies do not inflate completion."""
        numbers = {normalize_card_number(s.card_number) for s in slabs if s.card_number}
        numbers.discard(None)
        return len(numbers) if numbers else len(slabs)

    def get_set_progress(self, owner: str) -> List[Dict[str, Any]]:
        stmt = (
            select(Slab)
            .join(RawAsset, RawAsset.id == Slab.raw_asset_id)
            .where(RawAsset.owner_address == owner.lower(), Slab.set_name.is_not(None))
            .order_by(Slab.set_name, Slab.card_number, Slab.id)
        )
        by_set: "OrderedDict[str, List[Slab]]" = OrderedDict()
        for slab in self.db.execute(stmt).scalars():
            by_set.setdefault(slab.set_name, []).append(slab)
        if not by_set:
            return []

        refs = {
            ref.set_name: ref
            for ref in self.db.execute(select(CatalogSet).where(CatalogSet.set_name.in_(list(by_set)))).scalars()
        }

        progress = []
        for set_name, slabs in by_set.items():
            ref = refs.get(set_name)
            owned = self._owned_count(slabs)
            total = ref.total_cards if ref else 0
            first_image = next((s.image_url for s in slabs if s.image_url), None)
            progress.append(
                {
                    "set_name": set_name,
                    "owned_count": owned,
                    "total_cards": total,
                    "completion_pct": completion_pct(owned, total),
                    "release_year": ref.release_year if ref else None,
                    "series": ref.series if ref else None,
                    "logo_url": ref.logo_url if ref else None,
                    "symbol_url": ref.symbol_url if ref else None,
                    "preview_image_url": None if ref and ref.logo_url else first_image,
                }
            )
        return progress

    def get_set_detail(self, owner: str, set_name: str) -> Optional[Dict[str, Any]]:
        """Owned slabs of one set plus the catalog cards the owner still needs."""
        ref = self.db.execute(select(CatalogSet).where(CatalogSet.set_name == set_name)).scalar_one_or_none()
        if ref is None:
            return None

        stmt = self._owned_slabs_stmt(owner).where(Slab.set_name == set_name).order_by(Slab.card_number, Slab.id)
        rows = self._rows(stmt)
        owned_numbers = {normalize_card_number(slab.card_number) for slab, _ in rows if slab.card_number}
        owned_numbers.discard(None)

        cards = self.db.execute(
            select(CatalogCard).where(CatalogCard.catalog_set_id == ref.id).order_by(CatalogCard.card_number)
        ).scalars()
        needed = [
            {
                "upstream_card_id": card.upstream_card_id,
                "card_name": card.card_name,
                "card_number": card.card_number,
                "image_small": card.image_small,
                "image_large": card.image_large,
            }
            for card in cards
            if card.number_key not in owned_numbers
        ]

        return {
            "set_name": ref.set_name,
            "series": ref.series,
            "total_cards": ref.total_cards,
            "release_year": ref.release_year,
            "logo_url": ref.logo_url,
            "symbol_url": ref.symbol_url,
            "owned_count": len(owned_numbers),
            "completion_pct": completion_pct(len(owned_numbers), ref.total_cards),
            "owned_cards": [_slab_dict(slab, price) for slab, price in rows],
            "needed_cards": needed,
        }

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------
    def get_address_summary(self, owner: str) -> Dict[str, Any]:
        owner = owner.lower()
        rows = self._rows(self._owned_slabs_stmt(owner))
        estimated = sum(float(price.market_price) for _, price in rows if price is not None)
        sets = self.get_set_progress(owner)
        checkpoint = self.db.execute(
            select(SyncCheckpoint.last_synced_at)
            .where(SyncCheckpoint.owner_address == owner)
            .order_by(SyncCheckpoint.last_synced_at.desc())
            .limit(1)
        ).scalar_one_or_none()

        return {
            "address": owner,
            "total_slabs": len(rows),
            "priced_slabs": sum(1 for _, price in rows if price is not None),
            "total_sets": len(sets),
            "estimated_value_usd": round(estimated, 2),
            "last_synced_at": checkpoint,
            "sets": sets,
        }

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------
    def get_sync_runs(
        self,
        job_name: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[SyncRun]:
        stmt = select(SyncRun)
        if job_name:
            stmt = stmt.where(SyncRun.job_name == job_name)
        if status:
            stmt = stmt.where(SyncRun.status == status)
        stmt = stmt.order_by(SyncRun.started_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_table_counts(self) -> Dict[str, int]:
        counts = {}
        for label, model in (
            ("assets_raw", RawAsset),
            ("slabs", Slab),
            ("catalog_sets", CatalogSet),
            ("catalog_cards", CatalogCard),
            ("prices", Price),
            ("sync_runs", SyncRun),
        ):
            counts[label] = self.db.execute(select(func.count()).select_from(model)).scalar() or 0
        return counts
