import uuid
from datetime import datetime

import structlog
from sqlmodel import select

from app.models import ChangeLogResponse, ChangeType, TaskChangeLog
from app.services.calendar import CalendarResolver
from app.services.context import ServiceContext

logger = structlog.get_logger(__name__)


class ChangeLogRecorder:
    """
    Append-only history of task field transitions.

    ``record`` is best-effort: it writes through its own session, and a
    failed append is logged and dropped rather than surfaced to the task
    mutation that triggered it.
    """

    def __init__(self, ctx: ServiceContext, calendar: CalendarResolver):
        self.ctx = ctx
        self.calendar = calendar

    async def record(
        self,
        task_id: uuid.UUID,
        user_id: uuid.UUID,
        change_kind: ChangeType | str,
        field_name: str | None = None,
        old_value: str | None = None,
        new_value: str | None = None,
        completed_at: datetime | None = None,
        completed_date_id: int | None = None,
    ) -> None:
        try:
            kind = ChangeType(change_kind)
            log_date_id = await self.calendar.today()
            entry = TaskChangeLog(
                task_id=task_id,
                user_id=user_id,
                change_type=kind.value,
                field_name=field_name,
                old_value=old_value,
                new_value=new_value,
                completed_at=completed_at,
                completed_date_id=completed_date_id,
                log_date_id=log_date_id,
                created_at=self.ctx.now(),
            )
            async with self.ctx.session_factory() as session:
                session.add(entry)
                await session.commit()
            logger.debug(
                "task_change_logged",
                task_id=str(task_id),
                change_type=kind.value,
                field_name=field_name,
            )
        except Exception as e:
            logger.error(
                "task_change_log_failed",
                task_id=str(task_id),
                change_type=change_kind,
                error=str(e),
            )

    async def list_for_task(
        self, task_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[ChangeLogResponse]:
        result = await self.ctx.session.exec(
            select(TaskChangeLog)
            .where(TaskChangeLog.task_id == task_id)
            .where(TaskChangeLog.user_id == user_id)
            .order_by(TaskChangeLog.created_at)
        )
        return [ChangeLogResponse.model_validate(row) for row in result.all()]
