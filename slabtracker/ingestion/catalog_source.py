"""pokemontcg.io v2 catalog source."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from slabtracker.core.config import settings
from slabtracker.core.errors import UpstreamError
from slabtracker.core.logging import get_logger
from .base import CardSummary, CatalogSource, SetSummary
from .http import JsonHttpClient

log = get_logger("ingestion.pokemontcg")

POKEMON_TCG_BASE = "https://api.pokemontcg.io/v2"
SETS_PAGE_SIZE = 500
CARDS_PAGE_SIZE = 250


def release_year(release_date: Optional[str]) -> Optional[int]:
    """'2023/03/31' -> 2023."""
    if not release_date:
        return None
    head = str(release_date).replace("-", "/").split("/")[0]
    return int(head) if head.isdigit() else None


class PokemonTcgCatalogSource(CatalogSource):
    name = "pokemontcg"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_delay_seconds: Optional[float] = None,
        retry_delay_seconds: Optional[float] = None,
    ):
        api_key = api_key if api_key is not None else settings.POKEMON_TCG_API_KEY
        headers = {"X-Api-Key": api_key} if api_key else {}
        self.page_delay_seconds = (
            settings.CATALOG_PAGE_DELAY_SECONDS if page_delay_seconds is None else page_delay_seconds
        )
        self.client = JsonHttpClient(
            self.name,
            base_url=POKEMON_TCG_BASE,
            headers=headers,
            timeout=30.0,
            max_attempts=settings.CATALOG_MAX_RETRIES,
            backoff_seconds=(
                settings.CATALOG_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
            ),
            transport=transport,
            retry_rate_limited=True,
        )

    async def list_sets(self) -> List[SetSummary]:
        data, _ = await self.client.get_json(
            "/sets", params={"pageSize": SETS_PAGE_SIZE, "orderBy": "releaseDate"}
        )
        items = self._items(data)
        sets = [self._parse_set(item) for item in items if item.get("id") and item.get("name")]
        log.info(f"Fetched {len(sets)} sets from pokemontcg.io")
        return sets

    async def list_cards_for_set(self, set_id: str) -> List[CardSummary]:
        cards: List[CardSummary] = []
        page = 1
        total_count: Optional[int] = None

        while total_count is None or (page - 1) * CARDS_PAGE_SIZE < total_count:
            if page > 1:
                await asyncio.sleep(self.page_delay_seconds)
            data, _ = await self.client.get_json(
                "/cards",
                params={"q": f"set.id:{set_id}", "pageSize": CARDS_PAGE_SIZE, "page": page},
            )
            items = self._items(data)
            total_count = int(data.get("totalCount") or 0)
            if not items:
                break
            cards.extend(self._parse_card(item) for item in items if item.get("id"))
            page += 1

        return cards

    def _items(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise UpstreamError(self.name, "unexpected response payload")
        return [item for item in data["data"] if isinstance(item, dict)]

    @staticmethod
    def _parse_set(item: Dict[str, Any]) -> SetSummary:
        images = item.get("images") or {}
        return SetSummary(
            id=str(item["id"]),
            name=str(item["name"]).strip(),
            series=item.get("series"),
            total_cards=int(item.get("total") or item.get("printedTotal") or 0),
            release_year=release_year(item.get("releaseDate")),
            logo_url=images.get("logo"),
            symbol_url=images.get("symbol"),
        )

    @staticmethod
    def _parse_card(item: Dict[str, Any]) -> CardSummary:
        images = item.get("images") or {}
        return CardSummary(
            id=str(item["id"]),
            name=str(item.get("name") or "").strip(),
            number=str(item.get("number") or "").strip(),
            image_small=images.get("small"),
            image_large=images.get("large"),
        )
