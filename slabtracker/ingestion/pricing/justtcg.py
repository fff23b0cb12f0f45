"""JustTCG: ungraded condition/printing prices, no graded data."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from slabtracker.core.config import settings
from slabtracker.ingestion.base import PricingSource, SourceCard
from slabtracker.ingestion.http import JsonHttpClient
from slabtracker.pricing import variants

API_BASE = "https://api.justtcg.com/v1"
NEAR_MINT = "Near Mint"


class JustTcgSource(PricingSource):
    name = "justtcg"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        call_budget: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        game: str = "pokemon",
    ):
        self.api_key = api_key if api_key is not None else settings.JUSTTCG_API_KEY
        self.call_budget = settings.JUSTTCG_CALL_BUDGET if call_budget is None else call_budget
        self.delay_seconds = settings.JUSTTCG_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.game = game
        self.client = JsonHttpClient(
            self.name,
            base_url=API_BASE,
            headers={"x-api-key": self.api_key} if self.api_key else {},
            transport=transport,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def search(self, card_name: str, set_name: Optional[str] = None) -> List[SourceCard]:
        query = f"{card_name} {set_name}" if set_name else card_name
        data, _ = await self.client.get_json("/cards", params={"q": query, "game": self.game})
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [self.parse_card(item) for item in items if isinstance(item, dict)]

    @staticmethod
    def parse_card(item: Dict[str, Any]) -> SourceCard:
        """Near Mint prices keyed by printing; any priced variant when none is Near Mint."""
        raw_prices: Dict[str, float] = {}
        fallback: Optional[float] = None

        for variant in item.get("variants") or []:
            if not isinstance(variant, dict):
                continue
            try:
                price = float(variant.get("price") or 0)
            except (TypeError, ValueError):
                continue
            if price <= 0:
                continue
            if variant.get("condition") == NEAR_MINT:
                key = variants.variant_key(variant.get("printing")) or variants.MARKET
                raw_prices.setdefault(key, price)
            elif fallback is None:
                fallback = price

        if not raw_prices and fallback is not None:
            raw_prices[variants.LOW] = fallback

        return SourceCard(
            source_id=str(item.get("id") or ""),
            name=str(item.get("name") or ""),
            set_name=item.get("set_name") or item.get("set"),
            number=str(item["number"]) if item.get("number") else None,
            raw_prices=raw_prices,
            payload={"justTcgId": item.get("id"), "game": item.get("game")},
        )
