"""Category and status reference data, with cached lookups for enrichment."""

import structlog
from sqlmodel import func, select

from app.cache.decorators import invalidates
from app.cache.keys import CacheKeys
from app.cache.lookups import lookup_many
from app.core.errors import InvalidInputError, NotFoundError, parse_input
from app.models import (
    Category,
    CategoryCreate,
    CategoryRef,
    CategoryResponse,
    Status,
    StatusName,
    StatusRef,
    StatusResponse,
)
from app.services.context import ServiceContext
from app.services.gateway import TASK, service_operation

logger = structlog.get_logger(__name__)


class ReferenceDataService:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.cache = ctx.cache
        self.settings = ctx.settings

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @service_operation(TASK)
    async def list_categories(self, refresh: bool = False) -> list[CategoryResponse]:
        return await self.cache.get_or_load(
            CacheKeys.TASKS_CATEGORIES,
            self._load_categories,
            ttl=self.settings.categories_ttl_seconds,
            refresh=refresh,
        )

    @service_operation(TASK)
    @invalidates(
        lambda self, data: [CacheKeys.TASKS_CATEGORIES, f"{CacheKeys.LOOKUP_CATEGORY}:*"]
    )
    async def create_category(self, data: CategoryCreate | dict) -> CategoryResponse:
        data = parse_input(CategoryCreate, data)
        name = data.category_name.strip().upper()
        if not name:
            raise InvalidInputError("Category name is required")

        # Names are unique case-insensitively; the store does not enforce it
        result = await self.ctx.session.exec(
            select(Category.category_id).where(func.upper(Category.category_name) == name)
        )
        if result.first() is not None:
            raise InvalidInputError(
                f'Category "{name}" already exists', details={"category_name": name}
            )

        category = Category(
            category_name=name,
            description=data.description,
            color=data.color,
            created_at=self.ctx.now(),
        )
        self.ctx.session.add(category)
        await self.ctx.session.commit()
        await self.ctx.session.refresh(category)

        logger.info("category_created", category_id=category.category_id, name=name)
        return CategoryResponse.model_validate(category)

    @service_operation(TASK)
    async def list_statuses(self, refresh: bool = False) -> list[StatusResponse]:
        return await self.cache.get_or_load(
            CacheKeys.TASKS_STATUSES,
            self._load_statuses,
            ttl=self.settings.lookup_ttl_seconds,
            refresh=refresh,
        )

    # ------------------------------------------------------------------
    # Lookups used by other services
    # ------------------------------------------------------------------

    async def _load_categories(self) -> list[CategoryResponse]:
        result = await self.ctx.session.exec(
            select(Category).order_by(Category.category_name)
        )
        return [CategoryResponse.model_validate(row) for row in result.all()]

    async def _load_statuses(self) -> list[StatusResponse]:
        result = await self.ctx.session.exec(select(Status).order_by(Status.status_order))
        return [StatusResponse.model_validate(row) for row in result.all()]

    async def default_status_id(self) -> int:
        """The status with the lowest display order (Pending when seeded)."""
        statuses = await self.cache.get_or_load(
            CacheKeys.TASKS_STATUSES,
            self._load_statuses,
            ttl=self.settings.lookup_ttl_seconds,
        )
        if not statuses:
            raise NotFoundError("No task statuses are configured")
        return statuses[0].status_id

    async def status_id_by_name(self, name: StatusName | str) -> int | None:
        name = name.value if isinstance(name, StatusName) else name
        key = CacheKeys.lookup(CacheKeys.LOOKUP_STATUS_NAME, name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        result = await self.ctx.session.exec(
            select(Status.status_id).where(Status.status_name == name)
        )
        status_id = result.first()
        if status_id is not None:
            self.cache.set(key, status_id, self.settings.lookup_ttl_seconds)
        return status_id

    async def ensure_status(self, status_id: int) -> None:
        if (await self.statuses_by_id([status_id])).get(status_id) is None:
            raise InvalidInputError(f"Unknown status {status_id}")

    async def ensure_category(self, category_id: int | None) -> None:
        if category_id is None:
            return
        if (await self.categories_by_id([category_id])).get(category_id) is None:
            raise InvalidInputError(f"Unknown category {category_id}")

    async def statuses_by_id(self, ids) -> dict[int, StatusRef]:
        return await lookup_many(
            self.cache,
            CacheKeys.LOOKUP_STATUS,
            ids,
            self._fetch_statuses,
            self.settings.lookup_ttl_seconds,
        )

    async def categories_by_id(self, ids) -> dict[int, CategoryRef]:
        return await lookup_many(
            self.cache,
            CacheKeys.LOOKUP_CATEGORY,
            ids,
            self._fetch_categories,
            self.settings.lookup_ttl_seconds,
        )

    async def _fetch_statuses(self, ids: list[int]) -> dict[int, StatusRef]:
        result = await self.ctx.session.exec(select(Status).where(Status.status_id.in_(ids)))
        return {
            row.status_id: StatusRef(
                status_id=row.status_id,
                status_name=row.status_name,
                status_order=row.status_order,
            )
            for row in result.all()
        }

    async def _fetch_categories(self, ids: list[int]) -> dict[int, CategoryRef]:
        result = await self.ctx.session.exec(
            select(Category).where(Category.category_id.in_(ids))
        )
        return {
            row.category_id: CategoryRef(
                category_id=row.category_id,
                category_name=row.category_name,
                color=row.color,
            )
            for row in result.all()
        }
