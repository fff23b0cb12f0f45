"""API dependencies"""

from typing import Generator

from sqlalchemy.orm import Session

from slabtracker.core.db import SessionLocal
from slabtracker.ingestion.base import CatalogSource, OwnershipSource
from slabtracker.ingestion.catalog_source import PokemonTcgCatalogSource
from slabtracker.ingestion.ownership_source import AlchemyOwnershipSource
from slabtracker.services.price_scheduler import PriceRefreshCoordinator, get_price_coordinator


def get_db() -> Generator[Session, None, None]:
    """Database dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_ownership_source() -> OwnershipSource:
    return AlchemyOwnershipSource()


def get_catalog_source() -> CatalogSource:
    return PokemonTcgCatalogSource()


def get_coordinator() -> PriceRefreshCoordinator:
    return get_price_coordinator()
