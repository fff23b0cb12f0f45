"""Ownership reconciliation tests"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from slabtracker.core.errors import InvariantViolation, UpstreamError
from slabtracker.identity.card_matcher import normalize_card_number
from slabtracker.ingestion.base import OwnedToken
from slabtracker.models import CatalogCard, CatalogSet, Price, RawAsset, Slab, SyncRun
from slabtracker.models.base import as_utc
from slabtracker.parsing.fingerprint import ParsedSlab
from slabtracker.services.reconciler import OwnershipReconciler

from conftest import CONTRACT, OWNER_A, OWNER_B, FakeOwnershipSource, fingerprint_metadata, slab_token

PIKACHU = "Pokemon | PSA 80543183 | 2023 151 #173 Pikachu | 10 GEM MINT"
CHARIZARD = "Pokemon | CGC 4412345 | 1999 Base Set #4 Charizard | 9 MINT"
MEWTWO = "Pokemon | PSA 55512345 | 1999 Base Set #10 Mewtwo | 8 NM-MT"
MANTLE = "Baseball | PSA 1111111 | 1952 Topps #311 Mickey Mantle | 8 NM-MT"


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


def reconciler(db, source, clock, stale_seconds=3600):
    return OwnershipReconciler(db, source, contract_address=CONTRACT, stale_seconds=stale_seconds, clock=clock)


def slabs_for(db, owner):
    stmt = (
        select(Slab)
        .join(RawAsset, RawAsset.id == Slab.raw_asset_id)
        .where(RawAsset.owner_address == owner)
        .order_by(RawAsset.token_id)
    )
    return list(db.execute(stmt).scalars())


def count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


class TestReconcile:
    """Test snapshot application"""

    @pytest.mark.asyncio
    async def test_indexes_tracked_slabs(self, db, clock):
        """Test parsed slabs are stored and ghosts and other categories skipped"""
        ghost = OwnedToken(token_id="4", contract_address=CONTRACT)
        source = FakeOwnershipSource(
            {
                OWNER_A: [
                    slab_token("1", PIKACHU),
                    slab_token("2", CHARIZARD),
                    slab_token("3", MANTLE, category="Baseball"),
                    ghost,
                ]
            }
        )

        result = await reconciler(db, source, clock).reconcile(OWNER_A)

        assert result.fetched == 4
        assert result.indexed == 2
        assert result.ghosts == 1
        assert result.non_category == 1
        assert source.page_calls == 2

        slabs = slabs_for(db, OWNER_A)
        assert [s.card_name for s in slabs] == ["Pikachu", "Charizard"]
        pikachu = slabs[0]
        assert pikachu.cert_number == "80543183"
        assert pikachu.grader == "PSA"
        assert pikachu.grade == "10"
        assert pikachu.set_name == "151"
        assert pikachu.card_number == "173"
        assert pikachu.parse_status == "ok"
        assert count(db, RawAsset) == 2

        run = db.execute(select(SyncRun).where(SyncRun.job_name == "ownership_sync")).scalar_one()
        assert run.status == "success"
        assert run.records_processed == 2

    @pytest.mark.asyncio
    async def test_owner_is_case_insensitive(self, db, clock):
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU)]})
        await reconciler(db, source, clock).reconcile(OWNER_A.upper().replace("0X", "0x"))
        assert len(slabs_for(db, OWNER_A)) == 1

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, session_factory, clock):
        """Test an unchanged snapshot writes and deletes nothing"""
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU), slab_token("2", CHARIZARD)]})

        with session_factory() as db:
            await reconciler(db, source, clock).reconcile(OWNER_A)

        clock.now += timedelta(hours=2)
        with session_factory() as db:
            before = {a.token_id: as_utc(a.last_indexed_at) for a in db.execute(select(RawAsset)).scalars()}
            result = await reconciler(db, source, clock).reconcile(OWNER_A)
            after = {a.token_id: as_utc(a.last_indexed_at) for a in db.execute(select(RawAsset)).scalars()}

            assert result.indexed == 0
            assert result.unchanged == 2
            assert result.deleted == 0
            assert before == after
            assert count(db, Slab) == 2
            assert count(db, Price) == 0
            # Only bookkeeping: one audit row per run
            assert count(db, SyncRun) == 2

    @pytest.mark.asyncio
    async def test_changed_metadata_updates_slab_in_place(self, db, clock):
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU)]})
        await reconciler(db, source, clock).reconcile(OWNER_A)
        slab_id = slabs_for(db, OWNER_A)[0].id

        source.holdings[OWNER_A] = [slab_token("1", PIKACHU.replace("10 GEM MINT", "9 MINT"))]
        result = await reconciler(db, source, clock).reconcile(OWNER_A, force=True)

        slabs = slabs_for(db, OWNER_A)
        assert result.indexed == 1
        assert len(slabs) == 1
        assert slabs[0].id == slab_id
        assert slabs[0].grade == "9"

    @pytest.mark.asyncio
    async def test_metadata_follow_up_fetch(self, db, clock):
        """Test tokens without inline metadata are resolved through their URI"""
        token = OwnedToken(token_id="7", contract_address=CONTRACT, token_uri="ipfs://Qm7")
        source = FakeOwnershipSource(
            {OWNER_A: [token]},
            token_metadata={"ipfs://Qm7": fingerprint_metadata(MEWTWO)},
        )

        result = await reconciler(db, source, clock).reconcile(OWNER_A)

        assert result.indexed == 1
        assert slabs_for(db, OWNER_A)[0].card_name == "Mewtwo"

    @pytest.mark.asyncio
    async def test_unreadable_metadata_is_a_ghost(self, db, clock):
        token = OwnedToken(token_id="8", contract_address=CONTRACT, token_uri="ipfs://missing")
        result = await reconciler(db, FakeOwnershipSource({OWNER_A: [token]}), clock).reconcile(OWNER_A)
        assert result.ghosts == 1
        assert count(db, RawAsset) == 0

    @pytest.mark.asyncio
    async def test_unidentifiable_token_is_dropped(self, db, clock):
        """Test no card name and no cert means no slab, but the raw token is kept"""
        token = OwnedToken(
            token_id="9",
            contract_address=CONTRACT,
            metadata={"attributes": [{"trait_type": "Category", "value": "Pokemon"}]},
            name="Courtyard.io Asset",
        )
        result = await reconciler(db, FakeOwnershipSource({OWNER_A: [token]}), clock).reconcile(OWNER_A)

        assert result.dropped == 1
        assert count(db, Slab) == 0
        assert count(db, RawAsset) == 1

    @pytest.mark.asyncio
    async def test_duplicate_tokens_in_snapshot(self, db, clock):
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU), slab_token("1", PIKACHU)]})
        result = await reconciler(db, source, clock).reconcile(OWNER_A)
        assert result.fetched == 1
        assert count(db, Slab) == 1

    def test_slab_without_identity_is_rejected(self, db, clock):
        """Test the storage invariant is enforced before any write"""
        service = reconciler(db, FakeOwnershipSource(), clock)
        asset = RawAsset(contract_address=CONTRACT, token_id="x", owner_address=OWNER_A, last_indexed_at=clock())
        with pytest.raises(InvariantViolation):
            service._upsert_slab(asset, ParsedSlab(), OwnedToken(token_id="x", contract_address=CONTRACT), None)
        assert count(db, Slab) == 0


class TestIdentityResolution:
    """Test catalog matching and set-name normalization during reconcile"""

    @pytest.fixture
    def catalog(self, db):
        row = CatalogSet(set_name="Burning Shadows", upstream_set_id="sm3", total_cards=177)
        db.add(row)
        db.flush()
        db.add(
            CatalogCard(
                upstream_card_id="sm3-150",
                card_name="Charizard GX",
                card_number="150",
                number_key=normalize_card_number("150"),
                catalog_set_id=row.id,
                set_name=row.set_name,
            )
        )
        db.commit()

    @pytest.mark.asyncio
    async def test_matched_card_takes_catalog_identity(self, db, clock, catalog):
        fingerprint = "Pokemon | PSA 22233344 | 2017 Pokemon Sun & Moon Burning Shadows #150 Charizard GX | 10 GEM MINT"
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", fingerprint)]})

        await reconciler(db, source, clock).reconcile(OWNER_A)

        slab = slabs_for(db, OWNER_A)[0]
        assert slab.catalog_card_id == "sm3-150"
        assert slab.set_name == "Burning Shadows"

    @pytest.mark.asyncio
    async def test_unmatched_card_gets_normalized_set(self, db, clock, catalog):
        fingerprint = "Pokemon | PSA 22233345 | 2017 Pokémon Sun & Moon Burning Shadows #2 Caterpie | 9 MINT"
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", fingerprint)]})

        await reconciler(db, source, clock).reconcile(OWNER_A)

        slab = slabs_for(db, OWNER_A)[0]
        assert slab.catalog_card_id is None
        assert slab.set_name == "Burning Shadows"


class TestDeletion:
    """Test tokens missing from the snapshot are removed, and only those"""

    @pytest.mark.asyncio
    async def test_missing_token_loses_slab_and_prices(self, db, clock):
        source = FakeOwnershipSource(
            {
                OWNER_A: [slab_token("1", PIKACHU), slab_token("2", CHARIZARD)],
                OWNER_B: [slab_token("5", MEWTWO)],
            }
        )
        await reconciler(db, source, clock).reconcile(OWNER_A)
        await reconciler(db, source, clock).reconcile(OWNER_B)

        sold = slabs_for(db, OWNER_A)[1]
        kept_b = slabs_for(db, OWNER_B)[0]
        for slab in (sold, kept_b):
            db.add(
                Price(
                    slab_id=slab.id,
                    source="tcgdex",
                    market_price=Decimal("10.00"),
                    currency="USD",
                    confidence="medium",
                    retrieved_at=clock(),
                )
            )
        db.commit()

        source.holdings[OWNER_A] = [slab_token("1", PIKACHU)]
        result = await reconciler(db, source, clock).reconcile(OWNER_A, force=True)

        assert result.deleted == 1
        assert [s.card_name for s in slabs_for(db, OWNER_A)] == ["Pikachu"]
        assert db.execute(select(Price).where(Price.slab_id == sold.id)).first() is None
        assert db.execute(select(Price).where(Price.slab_id == kept_b.id)).first() is not None
        assert [s.card_name for s in slabs_for(db, OWNER_B)] == ["Mewtwo"]

    @pytest.mark.asyncio
    async def test_transfer_between_owners(self, db, clock):
        """Test a token moving to another owner is kept under the new owner"""
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU)]})
        await reconciler(db, source, clock).reconcile(OWNER_A)

        source.holdings = {OWNER_A: [], OWNER_B: [slab_token("1", PIKACHU)]}
        await reconciler(db, source, clock).reconcile(OWNER_B)
        result = await reconciler(db, source, clock).reconcile(OWNER_A, force=True)

        assert result.deleted == 0
        assert slabs_for(db, OWNER_A) == []
        assert [s.card_name for s in slabs_for(db, OWNER_B)] == ["Pikachu"]

    @pytest.mark.asyncio
    async def test_page_failure_deletes_nothing(self, db, clock):
        """Test a partial snapshot never removes anything"""
        source = FakeOwnershipSource(
            {OWNER_A: [slab_token("1", PIKACHU), slab_token("2", CHARIZARD), slab_token("3", MEWTWO)]},
            page_size=1,
        )
        await reconciler(db, source, clock).reconcile(OWNER_A)

        source.holdings[OWNER_A] = [slab_token("1", PIKACHU), slab_token("2", CHARIZARD)]
        source.fail_page = 1
        with pytest.raises(UpstreamError):
            await reconciler(db, source, clock).reconcile(OWNER_A, force=True)

        assert len(slabs_for(db, OWNER_A)) == 3
        failed = db.execute(select(SyncRun).where(SyncRun.status == "failure")).scalar_one()
        assert "page 1 unavailable" in failed.error_message


class TestFreshness:
    """Test the staleness window and availability checks"""

    @pytest.mark.asyncio
    async def test_recent_sync_is_skipped(self, db, clock):
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU)]})
        service = reconciler(db, source, clock, stale_seconds=600)

        await service.reconcile(OWNER_A)
        calls = source.page_calls

        result = await service.reconcile(OWNER_A)
        assert result.skipped
        assert result.reason == "fresh"
        assert source.page_calls == calls

        clock.now += timedelta(seconds=601)
        result = await service.reconcile(OWNER_A)
        assert not result.skipped
        assert source.page_calls == calls + 1

    @pytest.mark.asyncio
    async def test_force_ignores_freshness(self, db, clock):
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU)]})
        service = reconciler(db, source, clock)
        await service.reconcile(OWNER_A)
        result = await service.reconcile(OWNER_A, force=True)
        assert not result.skipped

    @pytest.mark.asyncio
    async def test_unavailable_source(self, db, clock):
        source = FakeOwnershipSource({OWNER_A: [slab_token("1", PIKACHU)]}, available=False)
        result = await reconciler(db, source, clock).reconcile(OWNER_A)
        assert result.skipped
        assert result.reason == "source_unavailable"
        assert count(db, SyncRun) == 0
