"""Calendar date -> date dimension row."""

import calendar as _calendar
from datetime import date, timedelta

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.cache.keys import CacheKeys
from app.cache.lookups import lookup_many
from app.models import DateDimension, DateRef
from app.services.context import ServiceContext

logger = structlog.get_logger(__name__)

DAY_NAMES = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]
MONTH_NAMES = list(_calendar.month_name)  # index 0 is ""


def iso_week(day: date) -> int:
    """Week number anchored on the Thursday of the same week."""
    thursday = day + timedelta(days=4 - day.isoweekday())
    year_start = date(thursday.year, 1, 1)
    return (thursday - year_start).days // 7 + 1


def describe(day: date) -> dict:
    """Derived attributes of a calendar date; Monday=1 .. Sunday=7."""
    day_of_week = day.isoweekday()
    return {
        "date": day,
        "year": day.year,
        "quarter": (day.month - 1) // 3 + 1,
        "month": day.month,
        "month_name": MONTH_NAMES[day.month],
        "week": iso_week(day),
        "day_of_month": day.day,
        "day_of_week": day_of_week,
        "day_name": DAY_NAMES[day_of_week - 1],
        "is_weekend": day_of_week in (6, 7),
        "is_holiday": False,
    }


class CalendarResolver:
    """
    Lookup-or-insert of date dimension rows, memoised in the cache layer.

    Concurrent first references to one date are serialised by a per-date
    lock, and the unique constraint on ``date`` catches anything that slips
    past it (another process); the loser re-reads the winner's row. The
    insert runs in its own session so it never commits or rolls back the
    caller's unit of work.
    """

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.cache = ctx.cache
        self.settings = ctx.settings

    async def resolve(self, day: date) -> int:
        key = CacheKeys.dim_date(day)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        async with self.cache.lock_for(key):
            cached = self.cache.get(key)
            if cached is not None:
                return cached

            date_id = await self._lookup_or_insert(day)
            self.cache.set(key, date_id, self.settings.calendar_ttl_seconds)
            return date_id

    async def today(self) -> int:
        return await self.resolve(self.ctx.now().date())

    async def _lookup_or_insert(self, day: date) -> int:
        async with self.ctx.session_factory() as session:
            result = await session.exec(
                select(DateDimension.date_id).where(DateDimension.date == day)
            )
            existing = result.first()
            if existing is not None:
                return existing

            row = DateDimension(**describe(day))
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("date_dimension_insert_raced", date=day.isoformat())
                result = await session.exec(
                    select(DateDimension.date_id).where(DateDimension.date == day)
                )
                return result.one()

            await session.refresh(row)
            logger.debug("date_dimension_created", date=day.isoformat(), date_id=row.date_id)
            return row.date_id

    async def get_many(self, date_ids) -> dict[int, DateDimension]:
        """Fetch dimension rows by id in one round trip."""
        ids = list(set(date_ids))
        if not ids:
            return {}
        result = await self.ctx.session.exec(
            select(DateDimension).where(DateDimension.date_id.in_(ids))
        )
        return {row.date_id: row for row in result.all()}

    async def date_refs(self, date_ids) -> dict[int, DateRef]:
        """Display attributes for dimension ids, served from the cache when possible."""
        return await lookup_many(
            self.cache,
            CacheKeys.LOOKUP_DATE,
            date_ids,
            self._fetch_refs,
            self.settings.calendar_ttl_seconds,
        )

    async def _fetch_refs(self, ids: list[int]) -> dict[int, DateRef]:
        rows = await self.get_many(ids)
        return {
            date_id: DateRef(
                date=row.date, year=row.year, month=row.month, month_name=row.month_name
            )
            for date_id, row in rows.items()
        }
