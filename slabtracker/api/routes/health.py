"""Health routes - database, catalog and last pipeline run."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slabtracker.api.deps import get_db
from slabtracker.core.config import settings
from slabtracker.models.catalog import CatalogSet
from slabtracker.models.runs import SyncRun
from slabtracker.schemas.api import HealthResponse

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(response: Response, db: Session = Depends(get_db)):
    """
    Health check endpoint for load balancer and Docker health checks.

    Reports database connectivity, how much of the reference catalog is
    loaded (set progress is meaningless without it) and the most recent
    pipeline run. Returns 503 if the database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        response.status_code = 503
        return HealthResponse(database=f"down: {e}")

    catalog_sets = db.execute(
        select(func.count()).select_from(CatalogSet).where(CatalogSet.upstream_set_id.is_not(None))
    ).scalar_one()
    last_run = db.execute(select(SyncRun).order_by(SyncRun.started_at.desc()).limit(1)).scalar_one_or_none()

    return HealthResponse(
        database="ok",
        catalog_sets=catalog_sets,
        catalog_seeded=catalog_sets > settings.CATALOG_MIN_SETS,
        last_sync_status=last_run.status if last_run else None,
        last_sync_job=last_run.job_name if last_run else None,
    )


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)):
    """
    Readiness probe. An unseeded catalog still serves traffic; only the
    database gates readiness.
    """
    now = datetime.now(timezone.utc).isoformat()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e), "timestamp": now}
    return {"status": "ready", "timestamp": now}
