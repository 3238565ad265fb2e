import uuid
from datetime import datetime, timedelta

import structlog
from sqlmodel import select

from app.cache.decorators import cached
from app.cache.keys import CacheKeys
from app.core.errors import InvalidInputError
from app.models import (
    ChangeType,
    DateDimension,
    StatusName,
    Task,
    TaskChangeLog,
    TaskLogEntry,
    ensure_aware,
)
from app.services import metrics
from app.services.category_service import ReferenceDataService
from app.services.context import ServiceContext
from app.services.gateway import ANALYTICS, service_operation
from app.services.identity import IdentityBridge

logger = structlog.get_logger(__name__)

COMPLETION_KINDS = (ChangeType.COMPLETED.value, ChangeType.DATE_CHANGED.value)
GRANULARITIES = ("day", "week", "month")
DEFAULT_PRODUCTIVITY_DAYS = 30


def _analytics_key(name: str):
    return lambda self, user_id, *parts: CacheKeys.analytics(user_id, name, *parts)


class AnalyticsService:
    """
    Read-only dashboard figures for the current user.

    Rows are fetched with plain filters and aggregated in ``metrics``;
    results are cached per user and range, and every task mutation clears
    the user's analytics keys.
    """

    def __init__(
        self,
        ctx: ServiceContext,
        users: IdentityBridge,
        reference: ReferenceDataService,
    ):
        self.ctx = ctx
        self.cache = ctx.cache
        self.settings = ctx.settings
        self.users = users
        self.reference = reference

    # ------------------------------------------------------------------
    # Row fetching
    # ------------------------------------------------------------------

    async def _tasks(
        self, user_id: uuid.UUID, start: datetime | None, end: datetime | None
    ) -> list[Task]:
        query = select(Task).where(Task.user_id == user_id)
        if start is not None:
            query = query.where(Task.created_at >= start)
        if end is not None:
            query = query.where(Task.created_at <= end)
        result = await self.ctx.session.exec(query)
        return list(result.all())

    async def _completion_entries(
        self, user_id: uuid.UUID, start: datetime | None, end: datetime | None
    ) -> list[TaskLogEntry]:
        """Completion log rows joined with their completion date, newest first."""
        query = (
            select(TaskChangeLog, DateDimension)
            .outerjoin(DateDimension, DateDimension.date_id == TaskChangeLog.completed_date_id)
            .where(TaskChangeLog.user_id == user_id)
            .where(TaskChangeLog.change_type.in_(COMPLETION_KINDS))
            .where(TaskChangeLog.completed_at.is_not(None))
        )
        if start is not None:
            query = query.where(TaskChangeLog.created_at >= start)
        if end is not None:
            query = query.where(TaskChangeLog.created_at <= end)
        query = query.order_by(TaskChangeLog.completed_at.desc())

        result = await self.ctx.session.exec(query)
        entries = []
        for log, day in result.all():
            entries.append(
                TaskLogEntry(
                    task_id=log.task_id,
                    change_type=log.change_type,
                    completed_at=ensure_aware(log.completed_at),
                    completed_date_id=log.completed_date_id,
                    log_date_id=log.log_date_id,
                    created_at=ensure_aware(log.created_at),
                    completed_date=day.date if day else None,
                    day_of_week=day.day_of_week if day else None,
                    day_name=day.day_name if day else None,
                    month_name=day.month_name if day else None,
                )
            )
        return entries

    async def _category_names(self, tasks: list[Task]) -> dict[int, str]:
        refs = await self.reference.categories_by_id(t.category_id for t in tasks)
        return {category_id: ref.category_name for category_id, ref in refs.items()}

    @staticmethod
    def _range(start, end) -> tuple[datetime | None, datetime | None]:
        start, end = ensure_aware(start), ensure_aware(end)
        if start is not None and end is not None and start > end:
            raise InvalidInputError(
                "Start of range is after its end",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        return start, end

    # ------------------------------------------------------------------
    # Cached computations, keyed by user and range
    # ------------------------------------------------------------------

    @cached(
        lambda self, user_id, start=None, end=None: CacheKeys.dashboard_stats(
            user_id, start, end
        ),
        "dashboard_stats_ttl_seconds",
    )
    async def _completion_stats(self, user_id, start=None, end=None) -> dict:
        tasks = await self._tasks(user_id, start, end)
        return metrics.completion_stats(
            tasks,
            pending_status_id=await self.reference.status_id_by_name(StatusName.PENDING),
            in_progress_status_id=await self.reference.status_id_by_name(
                StatusName.IN_PROGRESS
            ),
        )

    @cached(_analytics_key("day_of_week"), "analytics_ttl_seconds")
    async def _by_day_of_week(self, user_id, start=None, end=None) -> list[dict]:
        return metrics.completion_by_day_of_week(
            await self._completion_entries(user_id, start, end)
        )

    @cached(_analytics_key("on_time"), "analytics_ttl_seconds")
    async def _on_time(self, user_id, start=None, end=None) -> dict:
        return metrics.on_time_stats(
            await self._tasks(user_id, start, end),
            default_window_hours=self.settings.default_completion_window_hours,
        )

    @cached(_analytics_key("category_time"), "analytics_ttl_seconds")
    async def _category_time(self, user_id, start=None, end=None) -> list[dict]:
        tasks = await self._tasks(user_id, start, end)
        return metrics.category_completion_time(tasks, await self._category_names(tasks))

    @cached(_analytics_key("productivity"), "analytics_ttl_seconds")
    async def _productivity(self, user_id, start=None, end=None) -> dict:
        end = end or self.ctx.now()
        start = start or end - timedelta(days=DEFAULT_PRODUCTIVITY_DAYS)
        return metrics.productivity(
            await self._tasks(user_id, start, end),
            await self._completion_entries(user_id, start, end),
            start,
            end,
        )

    @cached(_analytics_key("time_series"), "analytics_ttl_seconds")
    async def _time_series(self, user_id, start=None, end=None, granularity="day") -> list:
        return metrics.time_series(
            await self._tasks(user_id, start, end),
            await self._completion_entries(user_id, start, end),
            granularity=granularity,
            in_progress_status_id=await self.reference.status_id_by_name(
                StatusName.IN_PROGRESS
            ),
        )

    @cached(_analytics_key("categories"), "analytics_ttl_seconds")
    async def _category_stats(self, user_id, start=None, end=None) -> list[dict]:
        tasks = await self._tasks(user_id, start, end)
        return metrics.category_stats(tasks, await self._category_names(tasks))

    @cached(_analytics_key("priorities"), "analytics_ttl_seconds")
    async def _priority_stats(self, user_id, start=None, end=None) -> list[dict]:
        return metrics.priority_stats(await self._tasks(user_id, start, end))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @service_operation(ANALYTICS)
    async def completion_stats(self, start=None, end=None, refresh: bool = False) -> dict:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._completion_stats(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def completion_by_day_of_week(
        self, start=None, end=None, refresh: bool = False
    ) -> list[dict]:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._by_day_of_week(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def on_time_completion_stats(
        self, start=None, end=None, refresh: bool = False
    ) -> dict:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._on_time(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def category_completion_time(
        self, start=None, end=None, refresh: bool = False
    ) -> list[dict]:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._category_time(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def productivity_metrics(
        self, start=None, end=None, refresh: bool = False
    ) -> dict:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._productivity(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def time_series(
        self, start=None, end=None, granularity: str = "day", refresh: bool = False
    ) -> list[dict]:
        if granularity not in GRANULARITIES:
            raise InvalidInputError(
                f"Unknown granularity {granularity!r}",
                details={"allowed": list(GRANULARITIES)},
            )
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._time_series(user_id, start, end, granularity, refresh=refresh)

    @service_operation(ANALYTICS)
    async def category_stats(self, start=None, end=None, refresh: bool = False) -> list[dict]:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._category_stats(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def priority_stats(self, start=None, end=None, refresh: bool = False) -> list[dict]:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        return await self._priority_stats(user_id, start, end, refresh=refresh)

    @service_operation(ANALYTICS)
    async def completion_logs(self, start=None, end=None) -> list[TaskLogEntry]:
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        entries = await self._completion_entries(user_id, start, end)
        return [e for e in entries if e.completed_date_id is not None]

    @service_operation(ANALYTICS)
    async def report(self, start=None, end=None, refresh: bool = False) -> dict:
        """Every dashboard figure for one period in a single envelope."""
        start, end = self._range(start, end)
        user_id = await self.users.current_user_id()
        logger.debug("analytics_report", user_id=str(user_id))
        return {
            "period": {
                "start": start.isoformat() if start else None,
                "end": end.isoformat() if end else None,
            },
            "completion_stats": await self._completion_stats(
                user_id, start, end, refresh=refresh
            ),
            "completion_by_day_of_week": await self._by_day_of_week(
                user_id, start, end, refresh=refresh
            ),
            "on_time": await self._on_time(user_id, start, end, refresh=refresh),
            "category_completion_time": await self._category_time(
                user_id, start, end, refresh=refresh
            ),
            "time_series": await self._time_series(
                user_id, start, end, "day", refresh=refresh
            ),
            "category_stats": await self._category_stats(user_id, start, end, refresh=refresh),
            "priority_stats": await self._priority_stats(user_id, start, end, refresh=refresh),
            "productivity_metrics": await self._productivity(
                user_id, start, end, refresh=refresh
            ),
        }
