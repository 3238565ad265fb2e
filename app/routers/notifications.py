from fastapi import APIRouter, Query

from app.dependencies import ServicesDep, respond

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/")
async def list_notifications(
    services: ServicesDep,
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
):
    return respond(await services.notifications.list_notifications(unread_only, limit))


@router.get("/unread-count")
async def unread_count(services: ServicesDep):
    return respond(await services.notifications.unread_count())


@router.post("/scan")
async def scan(services: ServicesDep):
    """Create overdue / upcoming notifications for open tasks."""
    return respond(await services.notifications.scan())


@router.post("/read-all")
async def mark_all_read(services: ServicesDep):
    return respond(await services.notifications.mark_all_read())


@router.post("/dedupe")
async def remove_duplicates(services: ServicesDep):
    return respond(await services.notifications.remove_duplicates())


@router.get("/reminders/upcoming")
async def upcoming_reminders(
    services: ServicesDep, days_ahead: int = Query(default=7, ge=0, le=365)
):
    return respond(await services.notifications.upcoming_reminders(days_ahead))


@router.get("/reminders/overdue")
async def overdue_tasks(services: ServicesDep):
    return respond(await services.notifications.overdue_tasks())


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, services: ServicesDep):
    return respond(await services.notifications.mark_read(notification_id))
