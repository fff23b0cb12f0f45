from pathlib import Path
from contextlib import asynccontextmanager
import asyncio
from typing import Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from slabtracker.api.routes import health, ops, public, stats
from slabtracker.core.config import settings
from slabtracker.core.db import SessionLocal
from slabtracker.core.logging import get_logger
from slabtracker.ingestion.catalog_source import PokemonTcgCatalogSource
from slabtracker.services.catalog_sync import CatalogSync
from slabtracker.services.price_scheduler import (
    PriceRefreshCoordinator,
    init_price_coordinator,
    shutdown_price_coordinator,
)


log = get_logger("app")

# Background task handles
_catalog_task: Optional[asyncio.Task] = None
_price_task: Optional[asyncio.Task] = None


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


async def run_catalog_sync() -> None:
    """Seed the reference catalog (skipped when already seeded), then backfill."""
    log.info("Starting catalog sync...")
    db = SessionLocal()
    try:
        service = CatalogSync(db, PokemonTcgCatalogSource())
        result = await service.sync()
        backfill = service.backfill()
        log.info(f"Catalog sync completed: {result.to_dict()} backfill={backfill.to_dict()}")
    except Exception as exc:
        log.exception(f"Catalog sync failed: {exc}")
    finally:
        db.close()


async def scheduled_price_refresh(coordinator: PriceRefreshCoordinator) -> None:
    """Background task that refreshes every slab's price at the configured interval."""
    interval = settings.PRICE_REFRESH_INTERVAL_SECONDS
    log.info(f"Scheduled price refresh started (interval: {interval}s)")

    while True:
        try:
            await asyncio.sleep(interval)
            await coordinator.refresh_all()
        except asyncio.CancelledError:
            log.info("Scheduled price refresh cancelled")
            break
        except Exception as exc:
            log.exception(f"Scheduled price refresh error: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _catalog_task, _price_task

    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    coordinator = init_price_coordinator()

    if settings.CATALOG_SYNC_ON_STARTUP:
        log.info("Starting catalog sync background task...")
        _catalog_task = asyncio.create_task(run_catalog_sync())
    else:
        log.info("Catalog sync on startup is disabled (CATALOG_SYNC_ON_STARTUP=false)")

    if settings.PRICE_REFRESH_ENABLED:
        log.info("Starting scheduled price refresh background task...")
        _price_task = asyncio.create_task(scheduled_price_refresh(coordinator))
    else:
        log.info("Scheduled price refresh is disabled (PRICE_REFRESH_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down services...")

    for task in (_price_task, _catalog_task):
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    await shutdown_price_coordinator()

    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="Slab Tracker",
    description="Ownership, set completion and price estimates for tokenized graded Pokémon cards",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    # Debug mode only in development
    debug=settings.debug_enabled,
)


app.include_router(health.router)
app.include_router(public.router)
app.include_router(ops.router)
app.include_router(stats.router)
