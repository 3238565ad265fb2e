import asyncio
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.models import get_utc_now
from app.services.container import Services
from app.services.context import ServiceContext
from app.services.effects import SideEffects
from app.services.gateway import ApiGateway

logger = structlog.get_logger(__name__)


class OverdueSweeper:
    """
    Periodically moves past-due tasks into Overdue for every user.

    Each pass uses a fresh session and service graph; a pass that fails is
    logged and the loop carries on with the next interval. Overlapping
    passes are harmless because reconciliation only notifies for tasks that
    were not already overdue.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheLayer,
        effects: SideEffects,
        gateway: ApiGateway,
        settings: Settings,
        clock: Callable = get_utc_now,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.effects = effects
        self.gateway = gateway
        self.settings = settings
        self.clock = clock
        self._task: asyncio.Task | None = None

    async def sweep(self) -> int:
        """One pass over all users; returns the number of tasks moved."""
        async with self.session_factory() as session:
            services = Services(
                ServiceContext(
                    session=session,
                    session_factory=self.session_factory,
                    cache=self.cache,
                    effects=self.effects,
                    gateway=self.gateway,
                    settings=self.settings,
                    clock=self.clock,
                )
            )
            updated = 0
            for user_id in await services.tasks.users_with_overdue_candidates():
                updated += await services.tasks.reconcile_for_user(user_id)
        if updated:
            logger.info("overdue_sweep_finished", updated=updated)
        return updated

    async def _run(self) -> None:
        interval = self.settings.overdue_sweep_interval_seconds
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("overdue_sweep_failed")
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="overdue_sweeper")
            logger.info(
                "overdue_sweeper_started",
                interval=self.settings.overdue_sweep_interval_seconds,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("overdue_sweeper_stopped")
