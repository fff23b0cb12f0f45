"""Ops routes - Trigger catalog sync, set cleanup and price refresh."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from slabtracker.api.deps import get_catalog_source, get_coordinator, get_db
from slabtracker.core.logging import get_logger
from slabtracker.ingestion.base import CatalogSource
from slabtracker.schemas.api import TriggerResponse
from slabtracker.services.catalog_sync import CatalogSync
from slabtracker.services.price_scheduler import PriceRefreshCoordinator
from slabtracker.services.set_cleanup import SetNameCleanupService

router = APIRouter(prefix="/ops", tags=["ops"])
log = get_logger("ops_routes")


@router.post("/prices/refresh", response_model=TriggerResponse)
async def trigger_price_refresh(
    address: Optional[str] = Query(None, pattern=r"^0x[0-9a-fA-F]{40}$", description="Refresh one wallet only"),
    coordinator: PriceRefreshCoordinator = Depends(get_coordinator),
):
    """
    Trigger a price refresh in the background (non-blocking).

    Without an address every slab is refreshed; a second trigger while a full
    refresh is running is ignored. Check /stats for completion.
    """
    if address:
        coordinator.schedule_owner_refresh(address)
        log.info(f"Price refresh queued for {address.lower()}")
        return TriggerResponse(success=True, job="price_refresh", status="queued")

    task = coordinator.schedule_full_refresh()
    if task is None:
        return TriggerResponse(success=False, job="price_refresh", status="already_running")
    log.info("Full price refresh queued")
    return TriggerResponse(success=True, job="price_refresh", status="queued")


@router.post("/catalog/sync", response_model=TriggerResponse)
async def trigger_catalog_sync(
    force: bool = Query(False, description="Reseed even when the catalog looks complete"),
    db: Session = Depends(get_db),
    source: CatalogSource = Depends(get_catalog_source),
):
    """
    Sync the reference catalog, then backfill set images and placeholder sets.

    Runs inline; a full reseed takes several minutes because of upstream paging limits.
    """
    service = CatalogSync(db, source)
    try:
        result = await service.sync(force=force)
        service.backfill()
    except Exception as exc:
        log.error(f"Catalog sync failed: {exc}")
        return TriggerResponse(success=False, job="catalog_sync", status="failure", error=str(exc))

    return TriggerResponse(
        success=True,
        job="catalog_sync",
        status="skipped" if result.skipped else "success",
        records_processed=result.cards_upserted,
    )


@router.post("/sets/normalize", response_model=TriggerResponse)
def trigger_set_normalize(db: Session = Depends(get_db)):
    """Re-normalize stored slab set names and merge case-only duplicates."""
    try:
        result = SetNameCleanupService(db).normalize_slab_set_names()
    except Exception as exc:
        return TriggerResponse(success=False, job="set_cleanup", status="failure", error=str(exc))
    return TriggerResponse(
        success=True,
        job="set_cleanup",
        status="success",
        records_processed=result["renamed"] + result["merged"],
    )


@router.post("/slabs/rematch", response_model=TriggerResponse)
def trigger_rematch(db: Session = Depends(get_db)):
    """Re-run catalog card matching over every stored slab."""
    result = SetNameCleanupService(db).rematch_slabs()
    return TriggerResponse(
        success=result["success"],
        job="rematch",
        status="success" if result["success"] else "skipped",
        records_processed=result["changed"],
    )
