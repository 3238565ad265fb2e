import uuid
from datetime import datetime

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import func, select

from app.cache.keys import CacheKeys, user_scoped_patterns
from app.core.errors import (
    InvalidInputError,
    NotFoundError,
    OwnershipError,
    parse_input,
    parse_uuid,
)
from app.models import (
    ChangeLogResponse,
    ChangeType,
    NotificationType,
    PaginatedTasks,
    Pagination,
    StatusName,
    Task,
    TaskCreate,
    TaskFilter,
    TaskResponse,
    TaskUpdate,
    ensure_aware,
)
from app.services.calendar import CalendarResolver
from app.services.change_log import ChangeLogRecorder
from app.services.category_service import ReferenceDataService
from app.services.context import ServiceContext
from app.services.gateway import TASK, service_operation
from app.services.identity import IdentityBridge
from app.services.notification_service import (
    NotificationService,
    format_due,
    overdue_message,
)

logger = structlog.get_logger(__name__)

# Plain attribute updates; completion and status are handled separately
_PLAIN_FIELDS = (
    "title",
    "description",
    "category_id",
    "priority",
    "estimated_hours",
    "actual_hours",
    "due_date",
)


def _iso(value: datetime | None) -> str | None:
    return ensure_aware(value).isoformat() if value is not None else None


class TaskService:
    """
    Create / read / update / delete of a user's tasks.

    Keeps ``is_completed``, ``completed_at`` and ``completed_date_id`` in
    lockstep, records change-log entries for completion and status
    transitions, and raises lifecycle notifications. Logs and notifications
    are spawned as side effects after the task row is committed.
    """

    def __init__(
        self,
        ctx: ServiceContext,
        users: IdentityBridge,
        calendar: CalendarResolver,
        change_log: ChangeLogRecorder,
        notifications: NotificationService,
        reference: ReferenceDataService,
    ):
        self.ctx = ctx
        self.cache = ctx.cache
        self.settings = ctx.settings
        self.users = users
        self.calendar = calendar
        self.change_log = change_log
        self.notifications = notifications
        self.reference = reference

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invalidate_user(self, user_id: uuid.UUID) -> None:
        for pattern in user_scoped_patterns(user_id):
            self.cache.delete_pattern(pattern)

    async def _owned(self, task_id, user_id: uuid.UUID) -> Task:
        task_id = parse_uuid(task_id, "task id")
        task = await self.ctx.session.get(Task, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if task.user_id != user_id:
            raise OwnershipError(f"Task {task_id} belongs to another user")
        return task

    async def _enrich(self, tasks: list[Task]) -> list[TaskResponse]:
        """Join a page of tasks with status, category and date display data."""
        statuses = await self.reference.statuses_by_id(t.status_id for t in tasks)
        categories = await self.reference.categories_by_id(t.category_id for t in tasks)
        dates = await self.calendar.date_refs(
            [t.created_date_id for t in tasks] + [t.completed_date_id for t in tasks]
        )

        items = []
        for task in tasks:
            data = task.model_dump()
            for field in ("completed_at", "due_date", "created_at", "updated_at"):
                data[field] = ensure_aware(data[field])
            items.append(
                TaskResponse(
                    **data,
                    status=statuses[task.status_id],
                    category=categories.get(task.category_id),
                    created_date=dates.get(task.created_date_id),
                    completed_date=dates.get(task.completed_date_id),
                )
            )
        return items

    def _spawn_log(self, task: Task, kind: ChangeType, **fields) -> None:
        self.ctx.effects.spawn(
            f"change_log:{kind.value}",
            self.change_log.record(task.task_id, task.user_id, kind, **fields),
        )

    def _spawn_notification(
        self, task: Task, kind: NotificationType, title: str, message: str, dedupe=True
    ) -> None:
        self.ctx.effects.spawn(
            f"notification:{kind.value}",
            self.notifications.emit(
                task.user_id, task.task_id, kind, title, message, dedupe=dedupe
            ),
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @service_operation(TASK)
    async def create(self, data: TaskCreate | dict) -> TaskResponse:
        data = parse_input(TaskCreate, data)
        title = data.title.strip()
        if not title:
            raise InvalidInputError("Task title is required")

        user_id = await self.users.current_user_id()
        if data.status_id is not None:
            await self.reference.ensure_status(data.status_id)
            status_id = data.status_id
        else:
            status_id = await self.reference.default_status_id()
        await self.reference.ensure_category(data.category_id)

        now = self.ctx.now()
        created_date_id = await self.calendar.resolve(now.date())

        task = Task(
            user_id=user_id,
            category_id=data.category_id,
            status_id=status_id,
            created_date_id=created_date_id,
            title=title,
            description=data.description,
            priority=data.priority,
            estimated_hours=data.estimated_hours,
            is_completed=False,
            due_date=ensure_aware(data.due_date),
            created_at=now,
            updated_at=now,
        )
        self.ctx.session.add(task)
        await self.ctx.session.commit()
        await self.ctx.session.refresh(task)

        self._invalidate_user(user_id)
        logger.info("task_created", task_id=str(task.task_id), user_id=str(user_id))

        message = f'Task "{task.title}" has been created'
        if task.due_date is not None:
            message += f". Due date: {format_due(task.due_date)}"
        self._spawn_notification(
            task, NotificationType.REMINDER, "New Task Created", message + "."
        )
        return (await self._enrich([task]))[0]

    @service_operation(TASK)
    async def get(self, task_id) -> TaskResponse:
        user_id = await self.users.current_user_id()
        task = await self._owned(task_id, user_id)
        return (await self._enrich([task]))[0]

    @service_operation(TASK)
    async def list_tasks(
        self,
        filters: TaskFilter | dict | None = None,
        pagination: Pagination | dict | None = None,
        refresh: bool = False,
    ) -> PaginatedTasks:
        filters = parse_input(TaskFilter, filters or {})
        pagination = parse_input(Pagination, pagination or {})
        user_id = await self.users.current_user_id()

        try:
            await self.reconcile_for_user(user_id)
        except SQLAlchemyError as e:
            # A failed sweep must not block reading the list
            await self.ctx.session.rollback()
            logger.warning("overdue_reconcile_failed", user_id=str(user_id), error=str(e))

        key = CacheKeys.tasks_list(
            user_id,
            filters.status_id,
            filters.category_id,
            filters.is_completed,
            filters.priority,
            filters.date_from,
            filters.date_to,
            pagination.start,
            pagination.limit,
        )
        return await self.cache.get_or_load(
            key,
            lambda: self._load_page(user_id, filters, pagination),
            ttl=self.settings.tasks_list_ttl_seconds,
            refresh=refresh,
        )

    async def _load_page(
        self, user_id: uuid.UUID, filters: TaskFilter, pagination: Pagination
    ) -> PaginatedTasks:
        conditions = [Task.user_id == user_id]
        if filters.status_id is not None:
            conditions.append(Task.status_id == filters.status_id)
        if filters.category_id is not None:
            conditions.append(Task.category_id == filters.category_id)
        if filters.is_completed is not None:
            conditions.append(Task.is_completed == filters.is_completed)
        if filters.priority is not None:
            conditions.append(Task.priority == filters.priority)
        if filters.date_from is not None:
            conditions.append(Task.created_at >= ensure_aware(filters.date_from))
        if filters.date_to is not None:
            conditions.append(Task.created_at <= ensure_aware(filters.date_to))

        count = await self.ctx.session.exec(
            select(func.count()).select_from(Task).where(*conditions)
        )
        total = count.one()

        result = await self.ctx.session.exec(
            select(Task)
            .where(*conditions)
            .order_by(Task.created_at.desc())
            .offset(pagination.start)
            .limit(pagination.limit)
        )
        tasks = list(result.all())

        return PaginatedTasks(
            items=await self._enrich(tasks),
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            has_more=pagination.start + len(tasks) < total,
        )

    @service_operation(TASK)
    async def update(self, task_id, changes: TaskUpdate | dict) -> TaskResponse:
        changes = parse_input(TaskUpdate, changes)
        data = changes.model_dump(exclude_unset=True)
        if "title" in data:
            data["title"] = (data["title"] or "").strip()
            if not data["title"]:
                raise InvalidInputError("Task title is required")

        user_id = await self.users.current_user_id()
        task = await self._owned(task_id, user_id)
        if data.get("status_id") is not None:
            await self.reference.ensure_status(data["status_id"])
        if data.get("category_id") is not None:
            await self.reference.ensure_category(data["category_id"])

        now = self.ctx.now()
        was_completed = task.is_completed
        previous_completed_at = task.completed_at
        previous_status_id = task.status_id
        logs = []
        completed_now = False

        completing = data.get("is_completed")
        if completing is True:
            # Dimension row first: its insert commits in another session
            completed_date_id = await self.calendar.resolve(now.date())
            task.is_completed = True
            task.completed_at = now
            task.completed_date_id = completed_date_id
            logs.append(
                (
                    ChangeType.DATE_CHANGED if was_completed else ChangeType.COMPLETED,
                    dict(
                        field_name="completed_at",
                        old_value=_iso(previous_completed_at),
                        new_value=_iso(now),
                        completed_at=now,
                        completed_date_id=completed_date_id,
                    ),
                )
            )
            completed_now = not was_completed
        elif completing is False and was_completed:
            task.is_completed = False
            task.completed_at = None
            task.completed_date_id = None
            logs.append(
                (
                    ChangeType.UNCOMPLETED,
                    dict(
                        field_name="completed_at",
                        old_value=_iso(previous_completed_at),
                        new_value=None,
                    ),
                )
            )

        new_status_id = data.get("status_id")
        if new_status_id is not None and new_status_id != previous_status_id:
            task.status_id = new_status_id
            logs.append(
                (
                    ChangeType.STATUS_CHANGED,
                    dict(
                        field_name="status_id",
                        old_value=str(previous_status_id),
                        new_value=str(new_status_id),
                    ),
                )
            )

        plain = {k: v for k, v in data.items() if k in _PLAIN_FIELDS}
        if "due_date" in plain:
            plain["due_date"] = ensure_aware(plain["due_date"])
        task.sqlmodel_update(plain)
        task.updated_at = now

        await self.ctx.session.commit()
        await self.ctx.session.refresh(task)
        self._invalidate_user(user_id)

        for kind, fields in logs:
            self._spawn_log(task, kind, **fields)
        if completed_now:
            message = f'Task "{task.title}" has been completed.'
            if task.due_date is not None:
                message += f" Due date was: {format_due(task.due_date)}."
            self._spawn_notification(
                task,
                NotificationType.COMPLETED,
                "Task Completed",
                message + " Great job!",
                dedupe=False,
            )

        logger.info(
            "task_updated",
            task_id=str(task.task_id),
            fields=sorted(data),
            completed_now=completed_now,
        )
        return (await self._enrich([task]))[0]

    @service_operation(TASK)
    async def delete(self, task_id) -> None:
        """Hard delete; change logs and notifications for the task are kept."""
        user_id = await self.users.current_user_id()
        task = await self._owned(task_id, user_id)
        await self.ctx.session.delete(task)
        await self.ctx.session.commit()
        self._invalidate_user(user_id)
        logger.info("task_deleted", task_id=str(task.task_id), user_id=str(user_id))

    @service_operation(TASK)
    async def history(self, task_id) -> list[ChangeLogResponse]:
        user_id = await self.users.current_user_id()
        task_id = parse_uuid(task_id, "task id")
        task = await self.ctx.session.get(Task, task_id)
        if task is not None and task.user_id != user_id:
            raise OwnershipError(f"Task {task_id} belongs to another user")
        # History outlives the task, so an absent row is not an error
        return await self.change_log.list_for_task(task_id, user_id)

    @service_operation(TASK)
    async def reconcile_overdue(self) -> dict:
        user_id = await self.users.current_user_id()
        return {"updated_count": await self.reconcile_for_user(user_id)}

    # ------------------------------------------------------------------
    # Overdue reconciliation
    # ------------------------------------------------------------------

    def _overdue_conditions(self, now: datetime) -> list:
        return [
            Task.is_completed == False,  # noqa: E712
            Task.due_date.is_not(None),
            Task.due_date < now,
        ]

    async def _overdue_ids(self, user_id: uuid.UUID, overdue_id: int, now: datetime) -> set:
        result = await self.ctx.session.exec(
            select(Task.task_id)
            .where(Task.user_id == user_id)
            .where(Task.status_id == overdue_id)
            .where(*self._overdue_conditions(now))
        )
        return set(result.all())

    async def reconcile_for_user(self, user_id: uuid.UUID) -> int:
        """
        Move the user's incomplete, past-due tasks into Overdue in one bulk
        update, then notify only for tasks that were not overdue before.
        Running it twice in a row notifies nothing the second time.
        """
        overdue_id = await self.reference.status_id_by_name(StatusName.OVERDUE)
        if overdue_id is None:
            logger.warning("overdue_status_missing")
            return 0

        session = self.ctx.session
        now = self.ctx.now()
        before = await self._overdue_ids(user_id, overdue_id, now)

        result = await session.execute(
            update(Task)
            .where(Task.user_id == user_id)
            .where(Task.status_id != overdue_id)
            .where(*self._overdue_conditions(now))
            .values(status_id=overdue_id, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        updated = result.rowcount or 0
        await session.commit()
        if not updated:
            return 0

        self._invalidate_user(user_id)
        newly = await self._overdue_ids(user_id, overdue_id, now) - before
        if newly:
            rows = await session.exec(select(Task).where(Task.task_id.in_(newly)))
            for task in rows.all():
                self._spawn_notification(
                    task,
                    NotificationType.OVERDUE,
                    "Task Overdue",
                    overdue_message(task.title, task.due_date),
                )

        logger.info(
            "overdue_reconciled",
            user_id=str(user_id),
            updated=updated,
            newly_overdue=len(newly),
        )
        return updated

    async def users_with_overdue_candidates(self) -> list[uuid.UUID]:
        """Users owning at least one past-due task not yet marked Overdue."""
        overdue_id = await self.reference.status_id_by_name(StatusName.OVERDUE)
        if overdue_id is None:
            return []
        result = await self.ctx.session.exec(
            select(Task.user_id)
            .where(Task.status_id != overdue_id)
            .where(*self._overdue_conditions(self.ctx.now()))
            .distinct()
        )
        return list(result.all())
