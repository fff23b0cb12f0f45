"""Catalog sync and backfill tests"""

import httpx
import pytest
from sqlalchemy import func, select

from slabtracker.ingestion.base import CardSummary, SetSummary
from slabtracker.ingestion.catalog_source import PokemonTcgCatalogSource
from slabtracker.models import CatalogCard, CatalogSet, SyncRun
from slabtracker.services.catalog_sync import CatalogSync, complete_asset_url

from conftest import FakeCatalogSource, add_slab


def catalog_source(**overrides):
    sets = [
        SetSummary(id="sv3pt5", name="151", series="Scarlet & Violet", total_cards=3, release_year=2023),
        SetSummary(
            id="base1",
            name="Base Set",
            series="Base",
            total_cards=2,
            release_year=1999,
            logo_url="https://images.pokemontcg.io/base1/logo",
        ),
        SetSummary(id="broken", name="Broken Set", total_cards=5),
    ]
    cards = {
        "sv3pt5": [
            CardSummary(id="sv3pt5-1", name="Bulbasaur", number="001"),
            CardSummary(id="sv3pt5-2", name="Ivysaur", number="2"),
            CardSummary(id="sv3pt5-173", name="Pikachu", number="173"),
        ],
        "base1": [
            CardSummary(id="base1-4", name="Charizard", number="4"),
            CardSummary(id="base1-10", name="Mewtwo", number="10"),
        ],
    }
    return FakeCatalogSource(
        sets=overrides.get("sets", sets),
        cards=overrides.get("cards", cards),
        failing_sets=overrides.get("failing_sets", ("broken",)),
    )


def card_count(db):
    return db.execute(select(func.count()).select_from(CatalogCard)).scalar_one()


class TestCatalogSync:
    """Test set and card seeding"""

    @pytest.mark.asyncio
    async def test_seeds_sets_and_cards(self, db):
        result = await CatalogSync(db, catalog_source(), min_sets=1).sync()

        assert result.sets_upserted == 3
        assert result.cards_upserted == 5
        assert result.sets_failed == 1
        assert card_count(db) == 5

        bulbasaur = db.execute(select(CatalogCard).where(CatalogCard.upstream_card_id == "sv3pt5-1")).scalar_one()
        assert bulbasaur.card_number == "001"
        assert bulbasaur.number_key == "1"
        assert bulbasaur.set_name == "151"

        run = db.execute(select(SyncRun).where(SyncRun.job_name == "catalog_sync")).scalar_one()
        assert run.status == "success"
        assert run.records_processed == 5

    @pytest.mark.asyncio
    async def test_seeded_catalog_is_skipped(self, db):
        source = catalog_source()
        await CatalogSync(db, source, min_sets=1).sync()
        calls = list(source.card_calls)

        result = await CatalogSync(db, source, min_sets=1).sync()
        assert result.skipped
        assert source.card_calls == calls

    @pytest.mark.asyncio
    async def test_unseeded_below_minimum(self, db):
        source = catalog_source()
        await CatalogSync(db, source, min_sets=1).sync()
        assert not CatalogSync(db, source, min_sets=400).is_seeded()

    @pytest.mark.asyncio
    async def test_complete_sets_are_skipped_on_forced_sync(self, db):
        """Test only sets below their declared total are fetched again"""
        source = catalog_source()
        await CatalogSync(db, source, min_sets=1).sync()
        source.card_calls.clear()

        result = await CatalogSync(db, source, min_sets=1).sync(force=True)

        assert result.sets_skipped == 2
        assert result.sets_failed == 1
        assert source.card_calls == ["broken"]
        assert card_count(db) == 5

    @pytest.mark.asyncio
    async def test_failed_set_is_retried_next_time(self, db):
        source = catalog_source()
        await CatalogSync(db, source, min_sets=1).sync()

        source.failing_sets.clear()
        source.cards["broken"] = [CardSummary(id="broken-1", name="Missingno", number="1")]
        result = await CatalogSync(db, source, min_sets=1).sync(force=True)

        assert result.sets_failed == 0
        assert result.cards_upserted == 1

    @pytest.mark.asyncio
    async def test_rate_limit_ends_the_card_pass(self, db):
        """Test a source that stays rate limited is not asked for further sets"""
        source = catalog_source()
        source.rate_limited_sets.add("sv3pt5")

        result = await CatalogSync(db, source, min_sets=1).sync()

        assert result.rate_limited
        assert result.sets_failed == 1
        assert source.card_calls == ["sv3pt5"]
        assert card_count(db) == 0

        source.rate_limited_sets.clear()
        result = await CatalogSync(db, source, min_sets=1).sync(force=True)
        assert not result.rate_limited
        assert result.cards_upserted == 5

    @pytest.mark.asyncio
    async def test_throttled_card_page_is_retried(self, db):
        """Test one 429 from the catalog API is retried instead of dropping the set"""
        card_requests = []

        def handler(request):
            if request.url.path.endswith("/sets"):
                return httpx.Response(200, json={"data": [{"id": "sv3pt5", "name": "151", "total": 1}]})
            card_requests.append(request)
            if len(card_requests) == 1:
                return httpx.Response(429)
            items = [{"id": "sv3pt5-173", "name": "Pikachu", "number": "173"}]
            return httpx.Response(200, json={"data": items, "totalCount": 1})

        source = PokemonTcgCatalogSource(
            api_key="k", transport=httpx.MockTransport(handler), page_delay_seconds=0, retry_delay_seconds=0
        )
        result = await CatalogSync(db, source, min_sets=1).sync()

        assert len(card_requests) == 2
        assert result.sets_failed == 0
        assert not result.rate_limited
        assert result.cards_upserted == 1
        assert card_count(db) == 1

    @pytest.mark.asyncio
    async def test_upstream_without_images_keeps_stored_images(self, db):
        source = catalog_source()
        await CatalogSync(db, source, min_sets=1).sync()

        source.sets[1].logo_url = None
        await CatalogSync(db, source, min_sets=1).sync(force=True)

        base = db.execute(select(CatalogSet).where(CatalogSet.set_name == "Base Set")).scalar_one()
        assert base.logo_url == "https://images.pokemontcg.io/base1/logo"

    @pytest.mark.asyncio
    async def test_set_listing_failure_is_recorded(self, db):
        source = catalog_source()

        async def broken_list_sets():
            raise RuntimeError("catalog offline")

        source.list_sets = broken_list_sets
        with pytest.raises(RuntimeError):
            await CatalogSync(db, source, min_sets=1).sync()

        run = db.execute(select(SyncRun).where(SyncRun.job_name == "catalog_sync")).scalar_one()
        assert run.status == "failure"
        assert run.error_message == "catalog offline"


class TestBackfill:
    """Test image fixes and placeholder sets"""

    @pytest.mark.asyncio
    async def test_images_are_completed(self, db):
        service = CatalogSync(db, catalog_source(), min_sets=1)
        await service.sync()

        result = service.backfill()

        sets = {row.set_name: row for row in db.execute(select(CatalogSet)).scalars()}
        assert sets["151"].logo_url == "https://images.pokemontcg.io/sv3pt5/logo.png"
        assert sets["151"].symbol_url == "https://images.pokemontcg.io/sv3pt5/symbol.png"
        assert sets["Base Set"].logo_url == "https://images.pokemontcg.io/base1/logo.png"
        assert result.images_fixed == 3

        assert service.backfill().images_fixed == 0

    @pytest.mark.asyncio
    async def test_placeholders_for_unknown_slab_sets(self, db):
        service = CatalogSync(db, catalog_source(), min_sets=1)
        await service.sync()
        add_slab(db, card_name="Pikachu", set_name="Shiny Treasure EX")
        add_slab(db, card_name="Mew", set_name="Mystery Set")
        add_slab(db, card_name="Charizard", set_name="base set")
        db.commit()

        result = service.backfill()

        assert result.placeholders_created == 2
        shiny = db.execute(select(CatalogSet).where(CatalogSet.set_name == "Shiny Treasure EX")).scalar_one()
        assert shiny.upstream_set_id is None
        assert shiny.total_cards == 360
        assert shiny.release_year == 2023
        assert shiny.logo_url.startswith("https://den-media.pokellector.com/")
        mystery = db.execute(select(CatalogSet).where(CatalogSet.set_name == "Mystery Set")).scalar_one()
        assert mystery.total_cards == 0

        assert service.backfill().placeholders_created == 0

    def test_complete_asset_url(self):
        assert complete_asset_url("https://img.test/logo") == "https://img.test/logo.png"
        assert complete_asset_url("https://img.test/logo.png") == "https://img.test/logo.png"
        assert complete_asset_url("https://img.test/set.v2/logo?x=1") == "https://img.test/set.v2/logo.png?x=1"
        assert complete_asset_url(None) is None
