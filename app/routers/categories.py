from fastapi import APIRouter, status

from app.dependencies import ServicesDep, respond
from app.models import CategoryCreate

router = APIRouter(tags=["reference"])


@router.get("/categories")
async def list_categories(services: ServicesDep, refresh: bool = False):
    return respond(await services.reference.list_categories(refresh=refresh))


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(category: CategoryCreate, services: ServicesDep):
    """Create a category; names are stored upper-cased and must be unique."""
    return respond(
        await services.reference.create_category(category), status.HTTP_201_CREATED
    )


@router.get("/statuses")
async def list_statuses(services: ServicesDep, refresh: bool = False):
    return respond(await services.reference.list_statuses(refresh=refresh))
