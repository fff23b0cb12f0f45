"""PokemonPriceTracker: graded eBay sold-price aggregates keyed by grade."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from slabtracker.core.config import settings
from slabtracker.core.logging import get_logger
from slabtracker.ingestion.base import GradedQuote, PricingSource, SourceCard
from slabtracker.ingestion.http import JsonHttpClient
from slabtracker.parsing.fingerprint import Grader
from slabtracker.pricing import variants

log = get_logger("ingestion.price_tracker")

API_BASE = "https://www.pokemonpricetracker.com"

# "10", "9.5", "psa10", "cgc9"
GRADE_KEY_RE = re.compile(r"^([a-z]+)?\s*(\d+(?:\.\d+)?)$", re.IGNORECASE)


def _positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _grade_key(key: str) -> Optional[Tuple[str, int]]:
    match = GRADE_KEY_RE.match(key.strip())
    if not match:
        return None
    grader = (match.group(1) or Grader.PSA.value).upper()
    # Bare grade keys are eBay aggregates, which are PSA-dominated
    return grader, int(float(match.group(2)) + 0.5)


def _sales_quote(entry: Dict[str, Any], label: str) -> Optional[GradedQuote]:
    """smartMarketPrice > medianPrice > averagePrice."""
    smart = entry.get("smartMarketPrice") or {}
    price = _positive(smart.get("price")) if isinstance(smart, dict) else None
    if price:
        confidence = "medium" if smart.get("confidence") == "low" else "high"
        return GradedQuote(price=round(price, 2), confidence=confidence, method=f"ebay:{label}:smart")

    for field, method in (("medianPrice", "median"), ("averagePrice", "average")):
        price = _positive(entry.get(field))
        if price:
            return GradedQuote(price=round(price, 2), confidence="medium", method=f"ebay:{label}:{method}")
    return None


class PriceTrackerSource(PricingSource):
    name = "price-tracker"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        call_budget: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.POKEMON_PRICE_TRACKER_API_KEY
        self.call_budget = settings.PRICE_TRACKER_CALL_BUDGET if call_budget is None else call_budget
        self.delay_seconds = settings.PRICE_TRACKER_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.credits_remaining: Optional[int] = None
        self.client = JsonHttpClient(
            self.name,
            base_url=API_BASE,
            headers={"Authorization": f"Bearer {self.api_key}"} if self.api_key else {},
            transport=transport,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    def calls_remaining(self) -> Optional[int]:
        return self.credits_remaining

    async def search(self, card_name: str, set_name: Optional[str] = None) -> List[SourceCard]:
        query = f"{card_name} {set_name}" if set_name else card_name
        data, resp = await self.client.get_json(
            "/api/v2/cards",
            params={"search": query, "includeEbay": "true", "limit": 5},
        )

        remaining = resp.headers.get("x-ratelimit-daily-remaining")
        if remaining and remaining.isdigit():
            self.credits_remaining = int(remaining)
            log.debug(f"PriceTracker daily credits remaining: {self.credits_remaining}")

        items = data.get("data") if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []
        return [self.parse_card(item) for item in items if isinstance(item, dict)]

    @staticmethod
    def parse_card(item: Dict[str, Any]) -> SourceCard:
        prices = item.get("prices") or {}
        raw_prices: Dict[str, float] = {}
        for field, key in (("market", variants.MARKET), ("low", variants.LOW)):
            price = _positive(prices.get(field))
            if price:
                raw_prices[key] = price

        graded: Dict[Tuple[str, int], GradedQuote] = {}
        sales = ((item.get("ebay") or {}).get("salesByGrade")) or {}
        for key, entry in sales.items():
            grade_key = _grade_key(str(key))
            if grade_key is None or not isinstance(entry, dict):
                continue
            quote = _sales_quote(entry, f"{grade_key[0].lower()}{grade_key[1]}")
            if quote:
                graded[grade_key] = quote

        return SourceCard(
            source_id=str(item.get("tcgPlayerId") or item.get("id") or item.get("name") or ""),
            name=str(item.get("name") or ""),
            set_name=item.get("setName"),
            number=str(item["cardNumber"]) if item.get("cardNumber") else None,
            raw_prices=raw_prices,
            graded_prices=graded,
            payload={"tcgPlayerId": item.get("tcgPlayerId"), "totalSales": (item.get("ebay") or {}).get("totalSales")},
        )
