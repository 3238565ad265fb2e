from datetime import datetime
from typing import Literal

from fastapi import APIRouter

from app.dependencies import ServicesDep, respond

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/completion")
async def completion_stats(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(await services.analytics.completion_stats(start, end, refresh=refresh))


@router.get("/day-of-week")
async def completion_by_day_of_week(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(
        await services.analytics.completion_by_day_of_week(start, end, refresh=refresh)
    )


@router.get("/on-time")
async def on_time_completion_stats(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(
        await services.analytics.on_time_completion_stats(start, end, refresh=refresh)
    )


@router.get("/category-time")
async def category_completion_time(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(
        await services.analytics.category_completion_time(start, end, refresh=refresh)
    )


@router.get("/productivity")
async def productivity_metrics(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(
        await services.analytics.productivity_metrics(start, end, refresh=refresh)
    )


@router.get("/time-series")
async def time_series(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    granularity: Literal["day", "week", "month"] = "day",
    refresh: bool = False,
):
    return respond(
        await services.analytics.time_series(start, end, granularity, refresh=refresh)
    )


@router.get("/categories")
async def category_stats(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(await services.analytics.category_stats(start, end, refresh=refresh))


@router.get("/priorities")
async def priority_stats(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    return respond(await services.analytics.priority_stats(start, end, refresh=refresh))


@router.get("/completion-logs")
async def completion_logs(
    services: ServicesDep, start: datetime | None = None, end: datetime | None = None
):
    return respond(await services.analytics.completion_logs(start, end))


@router.get("/report")
async def report(
    services: ServicesDep,
    start: datetime | None = None,
    end: datetime | None = None,
    refresh: bool = False,
):
    """All dashboard figures for one period."""
    return respond(await services.analytics.report(start, end, refresh=refresh))
