from fastapi import APIRouter

from app.dependencies import ServicesDep, respond
from app.models import UserUpdate

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
async def get_profile(services: ServicesDep):
    return respond(await services.users.profile())


@router.post("/me/sync")
async def sync_profile(services: ServicesDep):
    """Sign-in hook: create the user or refresh e-mail and name from the identity."""
    return respond(await services.users.sync_profile())


@router.patch("/me")
async def update_profile(changes: UserUpdate, services: ServicesDep):
    return respond(await services.users.update_profile(changes))
