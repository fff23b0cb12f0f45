"""Stats routes - pipeline observability."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from slabtracker.api.deps import get_db
from slabtracker.schemas.api import SyncRunOut
from slabtracker.services.data_service import DataService

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=list[SyncRunOut])
def get_sync_stats(
    job: Optional[str] = Query(None, description="Filter by job (catalog_sync, ownership_sync, price_refresh, set_cleanup)"),
    status: Optional[str] = Query(None, description="Filter by status (running, success, failure)"),
    limit: int = Query(10, ge=1, le=50, description="Number of runs to return"),
    db: Session = Depends(get_db),
):
    """
    Get recent pipeline runs.

    Shows records processed, duration, status, and error messages.
    """
    runs = DataService(db).get_sync_runs(job_name=job, status=status, limit=limit)
    return [SyncRunOut.model_validate(run) for run in runs]


@router.get("/counts")
def get_table_counts(db: Session = Depends(get_db)):
    """Row counts per table, for debugging."""
    return DataService(db).get_table_counts()
