"""Abstract collaborator interfaces for ingestion.

Three kinds of upstream feed the pipeline: an ownership source (who holds which
token), a catalog source (reference sets and cards) and pricing sources. The
services only talk to these interfaces, so tests swap in in-memory fakes.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from slabtracker.core.errors import UpstreamError


# -----------------------------------------------------------------------------
# Ownership
# -----------------------------------------------------------------------------
@dataclass
class OwnedToken:
    token_id: str
    contract_address: str
    token_uri: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class OwnedTokenPage:
    tokens: List[OwnedToken]
    next_cursor: Optional[str] = None


class OwnershipSource(ABC):
    """Current token holdings for an owner, one page at a time."""

    name: str = "ownership"
    max_pages: int = 500

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def fetch_page(self, owner: str, contract: str, cursor: Optional[str] = None) -> OwnedTokenPage:
        """Fetch one page of tokens; raise UpstreamError when the page cannot be read."""

    @abstractmethod
    async def fetch_token_metadata(self, token_uri: str) -> Optional[Dict[str, Any]]:
        """Fetch off-chain metadata from a token URI; raise UpstreamError when it cannot be read."""

    async def list_owned_tokens(self, owner: str, contract: str) -> List[OwnedToken]:
        """Follow the cursor to exhaustion. A failed page propagates: a partial list is not a snapshot."""
        tokens: List[OwnedToken] = []
        cursor: Optional[str] = None
        seen_cursors = set()

        for _ in range(self.max_pages):
            page = await self.fetch_page(owner, contract, cursor)
            tokens.extend(page.tokens)
            cursor = page.next_cursor
            if not cursor:
                return tokens
            if cursor in seen_cursors:
                raise UpstreamError(self.name, f"pagination cursor repeated: {cursor}")
            seen_cursors.add(cursor)

        raise UpstreamError(self.name, f"pagination exceeded {self.max_pages} pages")


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------
@dataclass
class SetSummary:
    id: str
    name: str
    series: Optional[str] = None
    total_cards: int = 0
    release_year: Optional[int] = None
    logo_url: Optional[str] = None
    symbol_url: Optional[str] = None


@dataclass
class CardSummary:
    id: str
    name: str
    number: str
    image_small: Optional[str] = None
    image_large: Optional[str] = None


class CatalogSource(ABC):
    """Upstream card database. Safe to retry; eventually consistent."""

    name: str = "catalog"

    @abstractmethod
    async def list_sets(self) -> List[SetSummary]:
        """All sets known upstream."""

    @abstractmethod
    async def list_cards_for_set(self, set_id: str) -> List[CardSummary]:
        """Every card of one set, across all pages."""


# -----------------------------------------------------------------------------
# Pricing
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class GradedQuote:
    price: float
    currency: str = "USD"
    confidence: str = "high"
    method: str = ""


@dataclass
class SourceCard:
    """One search result from a pricing source, reduced to what pricing needs.

    ``raw_prices`` maps a variant key (normal, holofoil, reverse-holofoil,
    1st-edition, 1st-edition-holofoil, market) to an ungraded USD price.
    ``graded_prices`` maps (grader, integer grade) to an observed graded quote.
    """

    source_id: str
    name: str
    set_name: Optional[str] = None
    number: Optional[str] = None
    raw_prices: Dict[str, float] = field(default_factory=dict)
    graded_prices: Dict[Tuple[str, int], GradedQuote] = field(default_factory=dict)
    currency: str = "USD"
    payload: Dict[str, Any] = field(default_factory=dict)


class PricingSource(ABC):
    """A pricing provider with its own call budget and pacing.

    Search sources implement ``search``; catalog-linked sources (keyed by the
    catalog card id) set ``catalog_linked`` and implement ``get_card``.
    Implementations raise RateLimitedError on 429 and UpstreamError once
    transient failures exhaust their retries. An empty result means "no result".
    """

    name: str
    call_budget: int = 100
    delay_seconds: float = 0.0
    catalog_linked: bool = False

    def is_available(self) -> bool:
        return True

    async def search(self, card_name: str, set_name: Optional[str] = None) -> List[SourceCard]:
        """Search by card name (and set name when known)."""
        raise NotImplementedError(f"{self.name} does not support search")

    async def get_card(self, card_id: str) -> Optional[SourceCard]:
        """Direct lookup by catalog card id."""
        raise NotImplementedError(f"{self.name} does not support lookup by card id")

    def calls_remaining(self) -> Optional[int]:
        """Quota the upstream last reported, or None when it reports none."""
        return None

    async def pause(self) -> None:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
