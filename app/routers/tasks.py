from datetime import datetime

from fastapi import APIRouter, Query, status

from app.dependencies import ServicesDep, respond
from app.models import Pagination, TaskCreate, TaskFilter, TaskUpdate

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_task(task_data: TaskCreate, services: ServicesDep):
    """Create a new task"""
    return respond(await services.tasks.create(task_data), status.HTTP_201_CREATED)


@router.get("/")
async def get_tasks(
    services: ServicesDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int | None = Query(default=None, ge=0),
    status_id: int | None = None,
    category_id: int | None = None,
    is_completed: bool | None = None,
    priority: int | None = Query(default=None, ge=1, le=5),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    refresh: bool = False,
):
    filters = TaskFilter(
        status_id=status_id,
        category_id=category_id,
        is_completed=is_completed,
        priority=priority,
        date_from=date_from,
        date_to=date_to,
    )
    pagination = Pagination(page=page, limit=limit, offset=offset)
    return respond(await services.tasks.list_tasks(filters, pagination, refresh=refresh))


@router.post("/reconcile-overdue")
async def reconcile_overdue(services: ServicesDep):
    """Move past-due tasks into Overdue; called on focus regain."""
    return respond(await services.tasks.reconcile_overdue())


@router.get("/{task_id}")
async def get_task(task_id: str, services: ServicesDep):
    """Get a specific task by ID"""
    return respond(await services.tasks.get(task_id))


@router.get("/{task_id}/history")
async def get_task_history(task_id: str, services: ServicesDep):
    return respond(await services.tasks.history(task_id))


@router.patch("/{task_id}")
async def update_task(task_id: str, task_data: TaskUpdate, services: ServicesDep):
    return respond(await services.tasks.update(task_id, task_data))


@router.post("/{task_id}/complete")
async def mark_task_complete(task_id: str, services: ServicesDep):
    """Mark a task as completed"""
    return respond(await services.tasks.update(task_id, {"is_completed": True}))


@router.delete("/{task_id}")
async def delete_task(task_id: str, services: ServicesDep):
    """Delete a task"""
    return respond(await services.tasks.delete(task_id))
