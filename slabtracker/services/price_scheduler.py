"""Background price refresh: per-owner tasks and the single full-refresh guard.

Read paths schedule pricing and return immediately; the task reports its
outcome through its result. Tests await ``wait_for_pending()``.
"""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from slabtracker.core.db import SessionLocal
from slabtracker.core.logging import get_logger
from slabtracker.ingestion.base import PricingSource
from slabtracker.services.pricing_service import PriceWaterfall

log = get_logger("price_scheduler")


class RefreshState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RefreshGuard:
    """idle -> running on start(); start() while running is a no-op returning False."""

    def __init__(self):
        self._state = RefreshState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> RefreshState:
        return self._state

    def start(self) -> bool:
        with self._lock:
            if self._state is RefreshState.RUNNING:
                return False
            self._state = RefreshState.RUNNING
            return True

    def finish(self) -> None:
        with self._lock:
            self._state = RefreshState.IDLE


full_refresh_guard = RefreshGuard()

SourcesFactory = Callable[[], Optional[Sequence[PricingSource]]]


class PriceRefreshCoordinator:
    """Spawns pricing tasks, each with its own DB session."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sources_factory: Optional[SourcesFactory] = None,
        guard: Optional[RefreshGuard] = None,
    ):
        self.session_factory = session_factory
        self.sources_factory = sources_factory or (lambda: None)
        self.guard = guard or full_refresh_guard
        self._owner_tasks: Dict[str, asyncio.Task] = {}
        self._full_task: Optional[asyncio.Task] = None

    def schedule_owner_refresh(self, owner: str) -> asyncio.Task:
        """Start pricing an owner's slabs; returns the in-flight task if one exists."""
        owner = owner.lower()
        existing = self._owner_tasks.get(owner)
        if existing is not None and not existing.done():
            log.debug(f"Price refresh already in flight for {owner}")
            return existing

        task = asyncio.create_task(self._refresh_owner(owner), name=f"price-refresh:{owner}")
        self._owner_tasks[owner] = task
        task.add_done_callback(lambda t, key=owner: self._forget(key, t))
        return task

    def schedule_full_refresh(self) -> Optional[asyncio.Task]:
        """Start a full refresh in the background; None when one is already running."""
        if self.guard.state is RefreshState.RUNNING:
            return None
        self._full_task = asyncio.create_task(self._refresh_all_logged(), name="price-refresh:all")
        return self._full_task

    def _tasks(self) -> List[asyncio.Task]:
        tasks = list(self._owner_tasks.values())
        if self._full_task is not None:
            tasks.append(self._full_task)
        return tasks

    def pending(self) -> int:
        return sum(1 for task in self._tasks() if not task.done())

    async def wait_for_pending(self) -> None:
        tasks = [task for task in self._tasks() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def refresh_all(self) -> Optional[int]:
        """Full refresh of every slab. Returns None when another one is already running."""
        if not self.guard.start():
            log.info("Full price refresh already running; ignoring trigger")
            return None

        db = self.session_factory()
        try:
            priced = await PriceWaterfall(db, self.sources_factory()).refresh_all_prices()
            log.info(f"Full price refresh finished: {priced} slabs priced")
            return priced
        finally:
            db.close()
            self.guard.finish()

    async def _refresh_all_logged(self) -> Optional[int]:
        try:
            return await self.refresh_all()
        except Exception as exc:  # noqa: BLE001
            log.error(f"Background full price refresh failed: {exc}")
            return None

    async def shutdown(self) -> None:
        for task in self._tasks():
            task.cancel()
        await self.wait_for_pending()

    async def _refresh_owner(self, owner: str) -> int:
        db = self.session_factory()
        try:
            priced = await PriceWaterfall(db, self.sources_factory()).get_or_refresh_prices(owner)
            log.info(f"Background price refresh for {owner}: {priced} slabs priced")
            return priced
        except Exception as exc:  # noqa: BLE001
            log.bind(owner=owner).error(f"Background price refresh failed for {owner}: {exc}")
            return 0
        finally:
            db.close()

    def _forget(self, owner: str, task: asyncio.Task) -> None:
        if self._owner_tasks.get(owner) is task:
            del self._owner_tasks[owner]


# -----------------------------------------------------------------------------
# Global instance
# -----------------------------------------------------------------------------
_coordinator: Optional[PriceRefreshCoordinator] = None


def init_price_coordinator(**kwargs) -> PriceRefreshCoordinator:
    global _coordinator
    _coordinator = PriceRefreshCoordinator(**kwargs)
    return _coordinator


def get_price_coordinator() -> PriceRefreshCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = PriceRefreshCoordinator()
    return _coordinator


async def shutdown_price_coordinator() -> None:
    global _coordinator
    if _coordinator is not None:
        await _coordinator.shutdown()
        _coordinator = None
