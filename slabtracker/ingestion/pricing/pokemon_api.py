"""Pokemon-API (RapidAPI): Cardmarket graded prices plus TCGplayer raw prices."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from slabtracker.core.config import settings
from slabtracker.ingestion.base import GradedQuote, PricingSource, SourceCard
from slabtracker.ingestion.http import JsonHttpClient
from slabtracker.pricing import variants

RAPIDAPI_HOST = "pokemon-tcg-api.p.rapidapi.com"

# "psa10", "cgc9", "bgs9.5"
GRADED_KEY_RE = re.compile(r"^([a-z]+)(\d+(?:\.\d+)?)$", re.IGNORECASE)


def _positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class PokemonApiSource(PricingSource):
    name = "pokemon-api"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        call_budget: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        eur_to_usd: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RAPIDAPI_KEY
        self.call_budget = settings.POKEMON_API_CALL_BUDGET if call_budget is None else call_budget
        self.delay_seconds = settings.POKEMON_API_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.eur_to_usd = settings.EUR_TO_USD if eur_to_usd is None else eur_to_usd
        self.client = JsonHttpClient(
            self.name,
            base_url=f"https://{RAPIDAPI_HOST}",
            headers={"X-RapidAPI-Key": self.api_key or "", "X-RapidAPI-Host": RAPIDAPI_HOST},
            transport=transport,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def search(self, card_name: str, set_name: Optional[str] = None) -> List[SourceCard]:
        query = f"{card_name} {set_name}" if set_name else card_name
        data, _ = await self.client.get_json("/cards", params={"search": query})
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [self.parse_card(item) for item in items if isinstance(item, dict)]

    def _usd(self, eur: float) -> float:
        return round(eur * self.eur_to_usd, 2)

    def parse_card(self, item: Dict[str, Any]) -> SourceCard:
        prices = item.get("prices") or {}
        cardmarket = prices.get("cardmarket") or {}
        tcg_player = prices.get("tcg_player") or {}

        graded: Dict[Tuple[str, int], GradedQuote] = {}
        for grader_prices in (cardmarket.get("graded") or {}).values():
            if not isinstance(grader_prices, dict):
                continue
            for key, value in grader_prices.items():
                match = GRADED_KEY_RE.match(str(key))
                price = _positive(value)
                if not match or not price:
                    continue
                grade = int(float(match.group(2)) + 0.5)
                graded[(match.group(1).upper(), grade)] = GradedQuote(
                    price=self._usd(price),
                    confidence="high",
                    method=f"cardmarket:{key.lower()}",
                )

        raw_prices: Dict[str, float] = {}
        market = _positive(tcg_player.get("market_price"))
        mid = _positive(tcg_player.get("mid_price"))
        if market:
            raw_prices[variants.MARKET] = market
        if mid:
            raw_prices[variants.MID] = mid
        eur = next(
            (p for p in (_positive(cardmarket.get(k)) for k in ("30d_average", "7d_average", "lowest_near_mint")) if p),
            None,
        )
        if eur:
            raw_prices[variants.CARDMARKET] = self._usd(eur)

        episode = item.get("episode") or {}
        return SourceCard(
            source_id=str(item.get("id") or ""),
            name=str(item.get("name") or ""),
            set_name=episode.get("name"),
            number=str(item["card_number"]) if item.get("card_number") else None,
            raw_prices=raw_prices,
            graded_prices=graded,
            payload={"pokemonApiCardId": item.get("id"), "episodeCode": episode.get("code")},
        )
