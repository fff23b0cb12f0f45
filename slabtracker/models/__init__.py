from slabtracker.models.base import Base
from slabtracker.models.raw import RawAsset
from slabtracker.models.slab import Slab
from slabtracker.models.catalog import CatalogCard, CatalogSet
from slabtracker.models.price import CONFIDENCE_TIERS, Price
from slabtracker.models.checkpoints import SyncCheckpoint
from slabtracker.models.runs import SyncRun

__all__ = [
    "Base",
    "RawAsset",
    "Slab",
    "CatalogSet",
    "CatalogCard",
    "Price",
    "CONFIDENCE_TIERS",
    "SyncCheckpoint",
    "SyncRun",
]
