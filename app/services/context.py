from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.models import ensure_aware, get_utc_now
from app.services.effects import SideEffects
from app.services.gateway import ApiGateway


@dataclass(frozen=True)
class AuthIdentity:
    """What the identity provider tells us about the caller."""

    external_id: str
    email: str | None = None
    name: str | None = None


@dataclass
class ServiceContext:
    """
    Everything one request (or one background sweep) needs.

    ``session`` serves the operation itself; best-effort side effects open
    their own sessions from ``session_factory`` because they may outlive it.
    """

    session: AsyncSession
    session_factory: async_sessionmaker
    cache: CacheLayer
    effects: SideEffects
    gateway: ApiGateway
    settings: Settings
    identity: AuthIdentity | None = None
    clock: Callable[[], datetime] = field(default=get_utc_now)

    def now(self) -> datetime:
        return ensure_aware(self.clock())
