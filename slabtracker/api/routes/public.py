"""Public routes - wallet summary, slabs and set progress for an address."""

import time
import uuid
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from slabtracker.api.deps import get_coordinator, get_db, get_ownership_source
from slabtracker.core.errors import UpstreamError
from slabtracker.core.logging import get_logger
from slabtracker.ingestion.base import OwnershipSource
from slabtracker.schemas.api import (
    AddressSummaryOut,
    Pagination,
    SetDetailOut,
    SetGroupOut,
    SetProgressOut,
    SlabDetailOut,
    SlabOut,
    SlabsResponse,
)
from slabtracker.services.data_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, DataService
from slabtracker.services.price_scheduler import PriceRefreshCoordinator
from slabtracker.services.reconciler import OwnershipReconciler

router = APIRouter(prefix="/public", tags=["public"])
log = get_logger("public_routes")

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
Address = Annotated[str, Path(pattern=ADDRESS_PATTERN, description="Wallet address (0x + 40 hex chars)")]


# -----------------------------------------------------------------------------
# Address Endpoints
# -----------------------------------------------------------------------------


@router.get("/address/{address}/summary", response_model=AddressSummaryOut)
async def get_address_summary(
    address: Address,
    db: Session = Depends(get_db),
    source: OwnershipSource = Depends(get_ownership_source),
    coordinator: PriceRefreshCoordinator = Depends(get_coordinator),
):
    """
    Wallet overview.

    1. Reconcile ownership with the chain (skipped when synced recently)
    2. Schedule background pricing for the wallet (never awaited here)
    3. Return totals, estimated value and per-set progress

    A failed ownership fetch is a soft failure: stored data is returned with
    sync_status="failed".
    """
    address = address.lower()

    try:
        result = await OwnershipReconciler(db, source).reconcile(address)
        sync_status = result.reason if result.skipped else "synced"
    except UpstreamError as exc:
        log.warning(f"Could not refresh ownership for {address}: {exc}")
        sync_status = "failed"

    coordinator.schedule_owner_refresh(address)

    summary = DataService(db).get_address_summary(address)
    return AddressSummaryOut(**summary, sync_status=sync_status, pricing_scheduled=True)


@router.get("/address/{address}/slabs", response_model=SlabsResponse)
def get_address_slabs(
    address: Address,
    set: Optional[str] = Query(None, description="Filter by exact set name"),
    q: Optional[str] = Query(None, description="Search card name, cert number or set name"),
    grade: Optional[str] = Query(None, description="Filter by grade"),
    sort: Literal["newest", "price_asc", "price_desc"] = Query("newest", description="Sort order"),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    """Paginated slabs owned by an address, each with its latest price."""
    start = time.perf_counter()
    request_id = str(uuid.uuid4())

    result = DataService(db).get_slabs_by_owner(
        address, set_name=set, q=q, grade=grade, sort=sort, page=page, page_size=page_size
    )

    latency_ms = int((time.perf_counter() - start) * 1000)
    return SlabsResponse(
        request_id=request_id,
        api_latency_ms=latency_ms,
        data=[SlabOut(**row) for row in result["data"]],
        pagination=Pagination(**result["pagination"]),
    )


@router.get("/address/{address}/slabs-by-set", response_model=list[SetGroupOut])
def get_address_slabs_by_set(address: Address, db: Session = Depends(get_db)):
    """Slabs grouped by set: completed sets first, uncategorized last."""
    return DataService(db).get_slabs_grouped_by_set(address)


@router.get("/address/{address}/sets", response_model=list[SetProgressOut])
def get_address_sets(address: Address, db: Session = Depends(get_db)):
    """Set completion progress for an address."""
    return DataService(db).get_set_progress(address)


@router.get("/address/{address}/sets/{set_name}", response_model=SetDetailOut)
def get_address_set_detail(
    address: Address,
    set_name: str,
    db: Session = Depends(get_db),
):
    """Owned and still-needed cards of one set."""
    detail = DataService(db).get_set_detail(address, set_name)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Set '{set_name}' not found")
    return detail


# -----------------------------------------------------------------------------
# Slab Endpoints
# -----------------------------------------------------------------------------


@router.get("/slabs/{slab_id}", response_model=SlabDetailOut)
def get_slab(slab_id: uuid.UUID, db: Session = Depends(get_db)):
    """A single slab with token identity and price history."""
    detail = DataService(db).get_slab(slab_id)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Slab '{slab_id}' not found")
    return detail
