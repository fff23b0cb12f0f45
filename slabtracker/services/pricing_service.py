"""Price waterfall: attach a best-effort market price to every priceable slab.

Slabs are grouped by (card name, set name) before any external call, so a
wallet holding several grades of one card costs one search per source. Each
source is a phase; a phase only sees slabs that no earlier phase priced.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, insert, select
from sqlalchemy.orm import Session

from slabtracker.core.config import settings
from slabtracker.core.errors import RateLimitedError, UpstreamError
from slabtracker.core.logging import get_logger
from slabtracker.identity.card_matcher import normalize_card_number
from slabtracker.ingestion.base import PricingSource, SourceCard
from slabtracker.ingestion.pricing.justtcg import JustTcgSource
from slabtracker.ingestion.pricing.pokemon_api import PokemonApiSource
from slabtracker.ingestion.pricing.price_tracker import PriceTrackerSource
from slabtracker.ingestion.pricing.tcgdex import TcgdexSource
from slabtracker.models.base import as_utc, utcnow
from slabtracker.models.catalog import CatalogCard
from slabtracker.models.price import Price
from slabtracker.models.raw import RawAsset
from slabtracker.models.runs import SyncRun
from slabtracker.models.slab import Slab
from slabtracker.pricing.grade_multiplier import (
    derived_confidence,
    grade_multiplier,
    grade_number,
    parse_grader,
    to_cents,
)
from slabtracker.pricing.matching import select_candidate
from slabtracker.pricing.variants import pick_raw_price

log = get_logger("pricing_service")

JOB_NAME = "price_refresh"
_IN_CHUNK = 500

GroupKey = Tuple[str, str]


def default_pricing_sources() -> List[PricingSource]:
    """Phase order: graded sales, graded market, raw multi-language, raw catalog-linked."""
    return [PriceTrackerSource(), PokemonApiSource(), JustTcgSource(), TcgdexSource()]


def group_key(slab: Slab) -> GroupKey:
    return (
        " ".join((slab.card_name or "").split()).lower(),
        " ".join((slab.set_name or "").split()).lower(),
    )


@dataclass
class PriceQuote:
    market_price: Decimal
    confidence: str
    currency: str
    detail: Dict[str, Any]


@dataclass
class PriceRunResult:
    considered: int = 0
    fresh: int = 0
    groups: int = 0
    priced: int = 0
    unpriced: int = 0
    calls: Dict[str, int] = field(default_factory=dict)
    priced_by_source: Dict[str, int] = field(default_factory=dict)
    rate_limited: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def quote_for_slab(card: SourceCard, slab: Slab) -> Optional[PriceQuote]:
    """Observed graded quote when the source has one for this grade, else raw x multiplier."""
    grader = parse_grader(slab.grader)
    number = grade_number(slab.grade)
    if grader is not None and number is not None:
        graded = card.graded_prices.get((grader.value, number))
        if graded and graded.price > 0:
            return PriceQuote(
                market_price=to_cents(graded.price),
                confidence=graded.confidence,
                currency=graded.currency,
                detail={"method": graded.method or "graded", "grader": grader.value, "grade": number},
            )

    picked = pick_raw_price(card.raw_prices, slab.variant)
    if picked is None:
        return None
    variant, raw_price = picked
    multiplier = grade_multiplier(slab.grader, slab.grade)
    price = to_cents(raw_price * multiplier)
    if price <= 0:
        return None
    return PriceQuote(
        market_price=price,
        confidence=derived_confidence(multiplier),
        currency=card.currency,
        detail={"method": "raw_x_multiplier", "variant": variant, "raw_price": raw_price, "multiplier": multiplier},
    )


class PriceWaterfall:
    """Runs the pricing phases in order over a set of slabs."""

    def __init__(
        self,
        db: Session,
        sources: Optional[Sequence[PricingSource]] = None,
        batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.sources = list(sources) if sources is not None else default_pricing_sources()
        self.batch_size = settings.PRICE_BATCH_SIZE if batch_size is None else batch_size
        self.clock = clock
        self._buffer: List[Dict[str, Any]] = []

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------
    async def get_or_refresh_prices(self, owner: str) -> int:
        """Price an owner's stale slabs. Returns the number of slabs newly priced."""
        owner = owner.lower()
        stmt = (
            select(Slab)
            .join(RawAsset, RawAsset.id == Slab.raw_asset_id)
            .where(RawAsset.owner_address == owner)
        )
        slabs = list(self.db.execute(stmt).scalars())
        result = await self._tracked(slabs, settings.PRICE_TTL_OWNER_SECONDS, {"owner": owner})
        return result.priced

    async def refresh_all_prices(self) -> int:
        """Scheduled refresh over every slab. Returns the number of slabs newly priced."""
        slabs = list(self.db.execute(select(Slab)).scalars())
        result = await self._tracked(slabs, settings.PRICE_TTL_SCHEDULED_SECONDS, {"scope": "all"})
        return result.priced

    def latest_price(self, slab_id: uuid.UUID) -> Optional[Price]:
        stmt = select(Price).where(Price.slab_id == slab_id).order_by(Price.retrieved_at.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    async def _tracked(self, slabs: List[Slab], ttl_seconds: int, meta: Dict[str, Any]) -> PriceRunResult:
        run = SyncRun(job_name=JOB_NAME, status="running", records_processed=0, meta=meta)
        self.db.add(run)
        self.db.commit()

        try:
            result = await self.price_slabs(slabs, ttl_seconds)

            run.status = "success"
            run.records_processed = result.priced
            run.meta = {**meta, **result.to_dict()}
            run.ended_at = utcnow()
            self.db.commit()
            return result

        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            run.status = "failure"
            run.error_message = str(exc)
            run.ended_at = utcnow()
            self.db.add(run)
            self.db.commit()
            log.bind(job=JOB_NAME, owner=meta.get("owner")).error(f"Price refresh failed ({meta}): {exc}")
            raise

    # -------------------------------------------------------------------------
    # Waterfall
    # -------------------------------------------------------------------------
    async def price_slabs(self, slabs: Sequence[Slab], ttl_seconds: int) -> PriceRunResult:
        result = PriceRunResult()
        priceable = [slab for slab in slabs if slab.card_name and slab.card_name.strip()]
        result.considered = len(priceable)

        fresh_ids = self._fresh_slab_ids([slab.id for slab in priceable], ttl_seconds)
        stale = [slab for slab in priceable if slab.id not in fresh_ids]
        result.fresh = len(priceable) - len(stale)

        groups: "OrderedDict[GroupKey, List[Slab]]" = OrderedDict()
        for slab in stale:
            groups.setdefault(group_key(slab), []).append(slab)
        result.groups = len(groups)

        if not groups:
            log.info(f"No slabs need pricing (considered={result.considered} fresh={result.fresh})")
            return result

        log.info(f"Pricing {len(stale)} slabs in {len(groups)} groups (fresh={result.fresh})")
        priced: Dict[uuid.UUID, str] = {}

        for source in self.sources:
            if not source.is_available():
                log.info(f"Pricing source {source.name} not configured; skipping phase")
                continue
            if all(slab.id in priced for slab in stale):
                break

            try:
                await self._run_phase(source, groups, priced, result)
            except RateLimitedError as exc:
                log.warning(f"{source.name} rate limited; aborting phase: {exc}")
                result.rate_limited.append(source.name)
            except Exception as exc:  # noqa: BLE001
                phase_log = log.bind(job=JOB_NAME, source=source.name)
                phase_log.exception(f"Pricing phase {source.name} failed: {exc}")
                result.failed.append(source.name)

        self._flush()

        result.priced = len(priced)
        result.unpriced = len(stale) - len(priced)
        log.info(
            f"Pricing done: priced={result.priced} unpriced={result.unpriced} "
            f"calls={result.calls} by_source={result.priced_by_source}"
        )
        return result

    async def _run_phase(
        self,
        source: PricingSource,
        groups: "OrderedDict[GroupKey, List[Slab]]",
        priced: Dict[uuid.UUID, str],
        result: PriceRunResult,
    ) -> None:
        result.calls.setdefault(source.name, 0)

        for key, members in groups.items():
            pending = [slab for slab in members if slab.id not in priced]
            if not pending:
                continue

            for lookup_key, slabs in self._work_units(source, pending):
                if result.calls[source.name] >= source.call_budget:
                    log.info(f"{source.name} call budget ({source.call_budget}) exhausted; stopping phase")
                    return
                remaining = source.calls_remaining()
                if remaining is not None and remaining <= 0:
                    log.warning(f"{source.name} reports no credits left; stopping phase")
                    return
                if result.calls[source.name]:
                    await source.pause()
                result.calls[source.name] += 1

                try:
                    card = await self._lookup(source, lookup_key, slabs[0])
                except RateLimitedError:
                    raise
                except UpstreamError as exc:
                    log.warning(f"{source.name} lookup failed for {key}: {exc}")
                    continue

                if card is None:
                    log.debug(f"{source.name}: no confident match for {key}")
                    continue

                for slab in slabs:
                    quote = quote_for_slab(card, slab)
                    if quote is None:
                        continue
                    self._stage(slab, source.name, quote, card)
                    priced[slab.id] = source.name
                    result.priced_by_source[source.name] = result.priced_by_source.get(source.name, 0) + 1

                if len(self._buffer) >= self.batch_size:
                    self._flush()

    def _work_units(self, source: PricingSource, pending: List[Slab]) -> List[Tuple[Optional[str], List[Slab]]]:
        """One search per group; catalog-linked sources need one lookup per resolved card id."""
        if not source.catalog_linked:
            return [(None, pending)]

        units: "OrderedDict[str, List[Slab]]" = OrderedDict()
        for slab in pending:
            card_id = self._catalog_card_id(slab)
            if card_id:
                units.setdefault(card_id, []).append(slab)
        return list(units.items())

    async def _lookup(self, source: PricingSource, card_id: Optional[str], slab: Slab) -> Optional[SourceCard]:
        if source.catalog_linked:
            return await source.get_card(card_id) if card_id else None
        results = await source.search(slab.card_name, slab.set_name)
        return select_candidate(results, slab.card_name, slab.set_name, slab.card_number)

    def _catalog_card_id(self, slab: Slab) -> Optional[str]:
        """Matcher result first, then a unique name in the set, then a unique number in the set."""
        if slab.catalog_card_id:
            return slab.catalog_card_id
        if not slab.set_name:
            return None

        in_set = select(CatalogCard.upstream_card_id).where(CatalogCard.set_name == slab.set_name)
        by_name = self.db.execute(
            in_set.where(func.lower(CatalogCard.card_name) == slab.card_name.strip().lower()).limit(2)
        ).scalars().all()
        if len(by_name) == 1:
            return by_name[0]

        number_key = normalize_card_number(slab.card_number)
        if number_key:
            by_number = self.db.execute(in_set.where(CatalogCard.number_key == number_key).limit(2)).scalars().all()
            if len(by_number) == 1:
                return by_number[0]
        return None

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    def _fresh_slab_ids(self, slab_ids: List[uuid.UUID], ttl_seconds: int) -> set:
        cutoff = self.clock() - timedelta(seconds=ttl_seconds)
        fresh = set()
        for start in range(0, len(slab_ids), _IN_CHUNK):
            chunk = slab_ids[start:start + _IN_CHUNK]
            stmt = (
                select(Price.slab_id, func.max(Price.retrieved_at))
                .where(Price.slab_id.in_(chunk))
                .group_by(Price.slab_id)
            )
            for slab_id, newest in self.db.execute(stmt):
                if newest is not None and as_utc(newest) > cutoff:
                    fresh.add(slab_id)
        return fresh

    def _stage(self, slab: Slab, source_name: str, quote: PriceQuote, card: SourceCard) -> None:
        self._buffer.append(
            {
                "id": uuid.uuid4(),
                "slab_id": slab.id,
                "source": source_name,
                "market_price": quote.market_price,
                "currency": quote.currency,
                "confidence": quote.confidence,
                "retrieved_at": self.clock(),
                "raw_response": {
                    **quote.detail,
                    "source_card_id": card.source_id,
                    "matched_name": card.name,
                    "matched_set": card.set_name,
                    "payload": card.payload,
                },
            }
        )

    def _flush(self) -> None:
        if not self._buffer:
            return
        while self._buffer:
            chunk = self._buffer[: self.batch_size]
            self.db.execute(insert(Price), chunk)
            self.db.commit()
            del self._buffer[: len(chunk)]
        log.debug("Flushed staged price rows")
