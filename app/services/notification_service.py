"""Derives reminder notifications from task due dates."""

import math
import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, update
from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import NotFoundError, OwnershipError, parse_uuid
from app.models import (
    Notification,
    NotificationResponse,
    NotificationType,
    Task,
    TaskReminder,
    ensure_aware,
)
from app.services.context import ServiceContext
from app.services.gateway import NOTIFICATION, service_operation
from app.services.identity import IdentityBridge

logger = structlog.get_logger(__name__)

FALLBACK_DUE_WINDOW = timedelta(days=7)


def effective_due(task: Task) -> datetime:
    """Explicit due date, else creation + estimated hours, else creation + 7 days."""
    if task.due_date is not None:
        return ensure_aware(task.due_date)
    created = ensure_aware(task.created_at)
    if task.estimated_hours:
        return created + timedelta(hours=task.estimated_hours)
    return created + FALLBACK_DUE_WINDOW


def days_until(due: datetime, now: datetime) -> int:
    return math.ceil((due - now).total_seconds() / 86400)


def format_due(value: datetime) -> str:
    value = ensure_aware(value)
    return f"{value:%b} {value.day}, {value:%Y, %I:%M %p} UTC"


def overdue_message(title: str, due_date: datetime | None) -> str:
    message = f'Task "{title}" is now overdue.'
    if due_date is not None:
        message += f" It was due {format_due(due_date)}."
    return message + " Please complete it soon."


def upcoming_message(title: str, days: int) -> str:
    if days <= 0:
        when = "today"
    elif days == 1:
        when = "tomorrow"
    else:
        when = f"in {days} days"
    return f'Task "{title}" is due {when}.'


class NotificationService:
    def __init__(self, ctx: ServiceContext, users: IdentityBridge):
        self.ctx = ctx
        self.users = users
        self.settings = ctx.settings

    async def _create_in(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        task_id: uuid.UUID | None,
        kind: NotificationType,
        title: str,
        message: str,
        dedupe: bool = True,
    ) -> Notification | None:
        """Stage a notification unless one for the same task and type is recent."""
        now = self.ctx.now()
        if dedupe and task_id is not None:
            since = now - timedelta(hours=self.settings.notification_dedup_hours)
            result = await session.exec(
                select(Notification.notification_id)
                .where(Notification.user_id == user_id)
                .where(Notification.task_id == task_id)
                .where(Notification.type == kind.value)
                .where(Notification.created_at >= since)
            )
            if result.first() is not None:
                return None

        notification = Notification(
            user_id=user_id,
            task_id=task_id,
            type=kind.value,
            title=title,
            message=message,
            created_at=now,
        )
        session.add(notification)
        return notification

    async def emit(
        self,
        user_id: uuid.UUID,
        task_id: uuid.UUID | None,
        kind: NotificationType,
        title: str,
        message: str,
        dedupe: bool = True,
    ) -> bool:
        """
        Best-effort creation used by task lifecycle side effects. Runs in its
        own session; failures are logged and reported as False.
        """
        try:
            async with self.ctx.session_factory() as session:
                created = await self._create_in(
                    session, user_id, task_id, kind, title, message, dedupe=dedupe
                )
                if created is None:
                    logger.debug(
                        "notification_deduplicated",
                        task_id=str(task_id),
                        type=kind.value,
                    )
                    return False
                await session.commit()
            return True
        except Exception as e:
            logger.error(
                "notification_emit_failed",
                task_id=str(task_id),
                type=kind.value,
                error=str(e),
            )
            return False

    async def _open_tasks(self, user_id: uuid.UUID) -> list[Task]:
        result = await self.ctx.session.exec(
            select(Task)
            .where(Task.user_id == user_id)
            .where(Task.is_completed == False)  # noqa: E712
        )
        return list(result.all())

    @service_operation(NOTIFICATION)
    async def scan(self) -> int:
        """Classify open tasks as overdue or upcoming and notify once per window."""
        session = self.ctx.session
        user_id = await self.users.current_user_id()
        now = self.ctx.now()

        since = now - timedelta(hours=self.settings.notification_dedup_hours)
        result = await session.exec(
            select(Notification.task_id, Notification.type)
            .where(Notification.user_id == user_id)
            .where(Notification.created_at >= since)
        )
        recent = {(task_id, kind) for task_id, kind in result.all()}

        created = 0
        for task in await self._open_tasks(user_id):
            days = days_until(effective_due(task), now)
            if days < 0:
                kind = NotificationType.OVERDUE
                title = "Task Overdue"
                message = overdue_message(task.title, task.due_date)
            elif days <= self.settings.upcoming_threshold_days:
                kind = NotificationType.UPCOMING
                title = "Task Due Soon"
                message = upcoming_message(task.title, days)
            else:
                continue

            if (task.task_id, kind.value) in recent:
                continue
            await self._create_in(
                session, user_id, task.task_id, kind, title, message, dedupe=False
            )
            recent.add((task.task_id, kind.value))
            created += 1

        if created:
            await session.commit()
        logger.info("notification_scan_finished", user_id=str(user_id), created=created)
        return created

    @service_operation(NOTIFICATION)
    async def list_notifications(
        self, unread_only: bool = False, limit: int = 50
    ) -> list[NotificationResponse]:
        user_id = await self.users.current_user_id()
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        query = query.order_by(Notification.created_at.desc()).limit(limit)
        result = await self.ctx.session.exec(query)
        return [NotificationResponse.model_validate(row) for row in result.all()]

    @service_operation(NOTIFICATION)
    async def unread_count(self) -> int:
        user_id = await self.users.current_user_id()
        result = await self.ctx.session.exec(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id)
            .where(Notification.is_read == False)  # noqa: E712
        )
        return result.one()

    @service_operation(NOTIFICATION)
    async def mark_read(self, notification_id) -> NotificationResponse:
        notification_id = parse_uuid(notification_id, "notification id")
        user_id = await self.users.current_user_id()
        notification = await self.ctx.session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.user_id != user_id:
            raise OwnershipError(f"Notification {notification_id} belongs to another user")

        if not notification.is_read:
            notification.is_read = True
            await self.ctx.session.commit()
            await self.ctx.session.refresh(notification)
        return NotificationResponse.model_validate(notification)

    @service_operation(NOTIFICATION)
    async def mark_all_read(self) -> dict:
        user_id = await self.users.current_user_id()
        result = await self.ctx.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id)
            .where(Notification.is_read == False)  # noqa: E712
            .values(is_read=True)
        )
        await self.ctx.session.commit()
        return {"updated_count": result.rowcount}

    @service_operation(NOTIFICATION)
    async def remove_duplicates(self) -> dict:
        """Keep only the newest unread notification per (task, type)."""
        user_id = await self.users.current_user_id()
        result = await self.ctx.session.exec(
            select(Notification)
            .where(Notification.user_id == user_id)
            .where(Notification.is_read == False)  # noqa: E712
            .where(Notification.task_id.is_not(None))
            .order_by(Notification.created_at.desc())
        )

        seen = set()
        duplicates = []
        for row in result.all():
            key = (row.task_id, row.type)
            if key in seen:
                duplicates.append(row.notification_id)
            else:
                seen.add(key)

        if duplicates:
            await self.ctx.session.execute(
                delete(Notification).where(Notification.notification_id.in_(duplicates))
            )
            await self.ctx.session.commit()
            logger.info(
                "duplicate_notifications_removed",
                user_id=str(user_id),
                removed=len(duplicates),
            )
        return {"removed_count": len(duplicates)}

    @service_operation(NOTIFICATION)
    async def upcoming_reminders(self, days_ahead: int = 7) -> list[TaskReminder]:
        user_id = await self.users.current_user_id()
        now = self.ctx.now()
        horizon = now + timedelta(days=days_ahead)

        reminders = []
        for task in await self._open_tasks(user_id):
            due = effective_due(task)
            if now <= due <= horizon:
                reminders.append(self._reminder(task, due, now))
        return sorted(reminders, key=lambda r: r.due_date)

    @service_operation(NOTIFICATION)
    async def overdue_tasks(self) -> list[TaskReminder]:
        user_id = await self.users.current_user_id()
        now = self.ctx.now()

        reminders = []
        for task in await self._open_tasks(user_id):
            due = effective_due(task)
            if due < now:
                reminders.append(self._reminder(task, due, now, is_overdue=True))
        return sorted(reminders, key=lambda r: r.due_date)

    @staticmethod
    def _reminder(task: Task, due: datetime, now: datetime, is_overdue=None) -> TaskReminder:
        days = days_until(due, now)
        return TaskReminder(
            task_id=task.task_id,
            title=task.title,
            due_date=due,
            is_overdue=days < 0 if is_overdue is None else is_overdue,
            days_until_due=days,
        )
