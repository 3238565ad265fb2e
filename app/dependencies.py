from typing import Annotated

from fastapi import Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import ApiResponse
from app.database import get_db
from app.services.container import Services
from app.services.context import AuthIdentity, ServiceContext


def get_identity(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_email: Annotated[str | None, Header()] = None,
    x_user_name: Annotated[str | None, Header()] = None,
) -> AuthIdentity | None:
    """Identity asserted by the authenticating proxy in front of the API."""
    if not x_user_id:
        return None
    return AuthIdentity(external_id=x_user_id, email=x_user_email, name=x_user_name)


async def get_services(
    request: Request,
    session: AsyncSession = Depends(get_db),
    identity: AuthIdentity | None = Depends(get_identity),
) -> Services:
    state = request.app.state
    return Services(
        ServiceContext(
            session=session,
            session_factory=state.session_factory,
            cache=state.cache,
            effects=state.effects,
            gateway=state.gateway,
            settings=state.settings,
            identity=identity,
            clock=state.clock,
        )
    )


ServicesDep = Annotated[Services, Depends(get_services)]


def respond(env: ApiResponse, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render an envelope with the HTTP status that matches its outcome."""
    code = success_status if env.success else env.status_code
    return JSONResponse(status_code=code, content=env.model_dump(mode="json"))
