from slabtracker.api.routes.health import router as health_router
from slabtracker.api.routes.ops import router as ops_router
from slabtracker.api.routes.public import router as public_router
from slabtracker.api.routes.stats import router as stats_router

__all__ = ["health_router", "ops_router", "public_router", "stats_router"]
