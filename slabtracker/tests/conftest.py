"""Shared fixtures: in-memory database and in-memory collaborators."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CATALOG_SYNC_ON_STARTUP", "false")
os.environ.setdefault("PRICE_REFRESH_ENABLED", "false")

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from slabtracker.core.errors import RateLimitedError, UpstreamError
from slabtracker.ingestion.base import (
    CardSummary,
    CatalogSource,
    OwnedToken,
    OwnedTokenPage,
    OwnershipSource,
    PricingSource,
    SetSummary,
    SourceCard,
)
from slabtracker.models import Base, RawAsset, Slab

CONTRACT = "0x251be3a17af4892035c37ebf5890f4a4d889dcad"
OWNER_A = "0x" + "a" * 40
OWNER_B = "0x" + "b" * 40


def fingerprint_metadata(fingerprint: str, category: str = "Pokemon", **extra) -> Dict:
    metadata = {
        "attributes": [{"trait_type": "Category", "value": category}],
        "token_info": {"proof_of_integrity": {"fingerprint": fingerprint}},
    }
    metadata.update(extra)
    return metadata


def slab_token(token_id: str, fingerprint: str, **extra) -> OwnedToken:
    return OwnedToken(
        token_id=token_id,
        contract_address=CONTRACT,
        metadata=fingerprint_metadata(fingerprint, **extra),
    )


def add_slab(db, owner: str = OWNER_A, token_id: Optional[str] = None, **fields) -> Slab:
    """Insert a RawAsset + Slab pair directly, bypassing reconciliation."""
    token_id = token_id or uuid.uuid4().hex
    asset = RawAsset(
        id=uuid.uuid4(),
        contract_address=CONTRACT,
        token_id=token_id,
        owner_address=owner,
        last_indexed_at=datetime.now(timezone.utc),
    )
    db.add(asset)
    fields.setdefault("parse_status", "ok")
    slab = Slab(id=uuid.uuid4(), raw_asset_id=asset.id, **fields)
    db.add(slab)
    db.flush()
    return slab


# -----------------------------------------------------------------------------
# Fake collaborators
# -----------------------------------------------------------------------------
class FakeOwnershipSource(OwnershipSource):
    """Serves holdings page by page; cursors are page indexes."""

    name = "fake-chain"

    def __init__(
        self,
        holdings: Optional[Dict[str, List[OwnedToken]]] = None,
        page_size: int = 2,
        fail_page: Optional[int] = None,
        token_metadata: Optional[Dict[str, Dict]] = None,
        available: bool = True,
    ):
        self.holdings = holdings or {}
        self.page_size = page_size
        self.fail_page = fail_page
        self.token_metadata = token_metadata or {}
        self.available = available
        self.page_calls = 0

    def is_available(self) -> bool:
        return self.available

    async def fetch_page(self, owner, contract, cursor=None):
        self.page_calls += 1
        index = int(cursor or 0)
        if self.fail_page is not None and index == self.fail_page:
            raise UpstreamError(self.name, f"page {index} unavailable", 503)

        tokens = self.holdings.get(owner, [])
        start = index * self.page_size
        has_more = start + self.page_size < len(tokens)
        return OwnedTokenPage(
            tokens=list(tokens[start:start + self.page_size]),
            next_cursor=str(index + 1) if has_more else None,
        )

    async def fetch_token_metadata(self, token_uri):
        if token_uri not in self.token_metadata:
            raise UpstreamError(self.name, f"no metadata at {token_uri}", 404)
        return self.token_metadata[token_uri]


class FakeCatalogSource(CatalogSource):
    name = "fake-catalog"

    def __init__(
        self,
        sets: Optional[List[SetSummary]] = None,
        cards: Optional[Dict[str, List[CardSummary]]] = None,
        failing_sets: tuple = (),
        rate_limited_sets: tuple = (),
    ):
        self.sets = sets or []
        self.cards = cards or {}
        self.failing_sets = set(failing_sets)
        self.rate_limited_sets = set(rate_limited_sets)
        self.card_calls: List[str] = []

    async def list_sets(self):
        return list(self.sets)

    async def list_cards_for_set(self, set_id):
        self.card_calls.append(set_id)
        if set_id in self.rate_limited_sets:
            raise RateLimitedError(self.name)
        if set_id in self.failing_sets:
            raise UpstreamError(self.name, f"cards for {set_id} unavailable", 502)
        return list(self.cards.get(set_id, []))


class FakePricingSource(PricingSource):
    """Search source answering from a fixed result list; records every call."""

    def __init__(
        self,
        name: str,
        results: Optional[Dict[str, List[SourceCard]]] = None,
        call_budget: int = 100,
        rate_limit_after: Optional[int] = None,
        fail_with: Optional[Exception] = None,
        available: bool = True,
        credits: Optional[int] = None,
    ):
        self.name = name
        self.results = results or {}
        self.call_budget = call_budget
        self.rate_limit_after = rate_limit_after
        self.fail_with = fail_with
        self.available = available
        self.credits = credits
        self.calls: List[tuple] = []

    def is_available(self) -> bool:
        return self.available

    def calls_remaining(self):
        return self.credits

    async def search(self, card_name, set_name=None):
        self.calls.append((card_name, set_name))
        if self.credits is not None:
            self.credits -= 1
        if self.rate_limit_after is not None and len(self.calls) > self.rate_limit_after:
            raise RateLimitedError(self.name)
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.results.get(card_name.lower(), []))


class FakeCatalogLinkedSource(PricingSource):
    catalog_linked = True

    def __init__(self, name: str = "fake-linked", cards: Optional[Dict[str, SourceCard]] = None):
        self.name = name
        self.cards = cards or {}
        self.calls: List[str] = []

    async def get_card(self, card_id):
        self.calls.append(card_id)
        return self.cards.get(card_id)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
