"""TCGdex: catalog-linked, variant-aware raw prices looked up by card id."""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from slabtracker.core.config import settings
from slabtracker.core.errors import UpstreamError
from slabtracker.ingestion.base import PricingSource, SourceCard
from slabtracker.ingestion.http import JsonHttpClient
from slabtracker.pricing import variants

API_BASE = "https://api.tcgdex.net/v2/en"

TCGPLAYER_VARIANTS = (
    variants.NORMAL,
    variants.HOLOFOIL,
    variants.REVERSE_HOLOFOIL,
    variants.FIRST_EDITION,
    variants.FIRST_EDITION_HOLOFOIL,
)


class TcgdexSource(PricingSource):
    name = "tcgdex"
    catalog_linked = True

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        call_budget: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        eur_to_usd: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        self.enabled = settings.TCGDEX_ENABLED if enabled is None else enabled
        self.call_budget = settings.TCGDEX_CALL_BUDGET if call_budget is None else call_budget
        self.delay_seconds = settings.TCGDEX_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.eur_to_usd = settings.EUR_TO_USD if eur_to_usd is None else eur_to_usd
        self.client = JsonHttpClient(self.name, base_url=API_BASE, transport=transport)

    def is_available(self) -> bool:
        return self.enabled

    async def get_card(self, card_id: str) -> Optional[SourceCard]:
        try:
            data, _ = await self.client.get_json(f"/cards/{quote(card_id, safe='')}")
        except UpstreamError as exc:
            if exc.status_code == 404:
                return None
            raise
        if not isinstance(data, dict):
            return None
        return self.parse_card(data, card_id)

    def parse_card(self, item: Dict[str, Any], card_id: str) -> SourceCard:
        pricing = item.get("pricing") or {}
        raw_prices: Dict[str, float] = {}

        tcgplayer = pricing.get("tcgplayer") or {}
        for key in TCGPLAYER_VARIANTS:
            entry = tcgplayer.get(key)
            if not isinstance(entry, dict):
                continue
            price = entry.get("marketPrice") or entry.get("midPrice")
            if isinstance(price, (int, float)) and price > 0:
                raw_prices[key] = float(price)

        cardmarket = pricing.get("cardmarket") or {}
        eur = cardmarket.get("trend") or cardmarket.get("avg")
        if isinstance(eur, (int, float)) and eur > 0:
            raw_prices[variants.CARDMARKET] = round(float(eur) * self.eur_to_usd, 2)

        set_info = item.get("set") or {}
        return SourceCard(
            source_id=str(item.get("id") or card_id),
            name=str(item.get("name") or ""),
            set_name=set_info.get("name"),
            number=str(item["localId"]) if item.get("localId") else None,
            raw_prices=raw_prices,
            payload={"tcgdexCardId": item.get("id") or card_id},
        )
