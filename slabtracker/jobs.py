"""Job entrypoint - Standalone script for running pipeline jobs.

Usage:
    python -m slabtracker.jobs catalog                 # Sync reference catalog (forced) + backfill
    python -m slabtracker.jobs backfill                # Fix set images, add placeholder sets
    python -m slabtracker.jobs reconcile <address>     # Reconcile one wallet with the chain
    python -m slabtracker.jobs prices [address]        # Price one wallet, or every slab
    python -m slabtracker.jobs normalize-sets          # Re-normalize and case-merge slab set names
    python -m slabtracker.jobs rematch                 # Re-run catalog card matching
"""

import asyncio
import sys
from typing import Any, Dict, List

from slabtracker.core.db import SessionLocal
from slabtracker.core.logging import get_logger
from slabtracker.ingestion.catalog_source import PokemonTcgCatalogSource
from slabtracker.ingestion.ownership_source import AlchemyOwnershipSource
from slabtracker.services.catalog_sync import CatalogSync
from slabtracker.services.price_scheduler import full_refresh_guard
from slabtracker.services.pricing_service import PriceWaterfall
from slabtracker.services.reconciler import OwnershipReconciler
from slabtracker.services.set_cleanup import SetNameCleanupService

logger = get_logger("jobs")

JOBS = ("catalog", "backfill", "reconcile", "prices", "normalize-sets", "rematch")


async def run_catalog() -> Dict[str, Any]:
    with SessionLocal() as db:
        service = CatalogSync(db, PokemonTcgCatalogSource())
        result = await service.sync(force=True)
        backfill = service.backfill()
        return {"success": True, **result.to_dict(), **backfill.to_dict()}


def run_backfill() -> Dict[str, Any]:
    with SessionLocal() as db:
        result = CatalogSync(db, PokemonTcgCatalogSource()).backfill()
        return {"success": True, **result.to_dict()}


async def run_reconcile(address: str) -> Dict[str, Any]:
    with SessionLocal() as db:
        result = await OwnershipReconciler(db, AlchemyOwnershipSource()).reconcile(address, force=True)
        return {"success": result.reason != "source_unavailable", **result.to_dict()}


async def run_prices(address: str | None) -> Dict[str, Any]:
    with SessionLocal() as db:
        waterfall = PriceWaterfall(db)
        if address:
            return {"success": True, "priced": await waterfall.get_or_refresh_prices(address)}

        if not full_refresh_guard.start():
            return {"success": False, "error": "full refresh already running"}
        try:
            return {"success": True, "priced": await waterfall.refresh_all_prices()}
        finally:
            full_refresh_guard.finish()


def run_job(job: str, args: List[str]) -> Dict[str, Any]:
    if job == "catalog":
        return asyncio.run(run_catalog())
    if job == "backfill":
        return run_backfill()
    if job == "reconcile":
        if not args:
            raise ValueError("reconcile requires an address")
        return asyncio.run(run_reconcile(args[0]))
    if job == "prices":
        return asyncio.run(run_prices(args[0] if args else None))
    if job == "normalize-sets":
        with SessionLocal() as db:
            return SetNameCleanupService(db).normalize_slab_set_names()
    if job == "rematch":
        with SessionLocal() as db:
            return SetNameCleanupService(db).rematch_slabs()
    raise ValueError(f"Unsupported job: {job}")


def main():
    """Main entry point for pipeline jobs."""
    if len(sys.argv) < 2 or sys.argv[1] not in JOBS:
        logger.error(f"Usage: python -m slabtracker.jobs <job> [args]; job is one of: {', '.join(JOBS)}")
        sys.exit(1)

    job, args = sys.argv[1], sys.argv[2:]
    logger.info(f"Job {job} starting...")

    try:
        result = run_job(job, args)
    except Exception as exc:
        logger.exception(f"Job {job} failed: {exc}")
        sys.exit(1)

    logger.info(f"Job {job} completed: {result}")

    # Exit with error code if the job reported failure
    if not result.get("success", True):
        sys.exit(1)

    return result


if __name__ == "__main__":
    main()
