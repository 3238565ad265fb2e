"""Maps an authenticated external identity onto an internal user row."""

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.cache.keys import CacheKeys
from app.core.errors import InvalidInputError, UnauthorizedError, parse_input
from app.models import User, UserProfile, UserUpdate
from app.services.context import AuthIdentity, ServiceContext
from app.services.gateway import USER, service_operation

logger = structlog.get_logger(__name__)


def default_name(identity: AuthIdentity) -> str:
    if identity.name:
        return identity.name
    if identity.email:
        return identity.email.split("@")[0]
    return identity.external_id


class IdentityBridge:
    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.cache = ctx.cache
        self.settings = ctx.settings

    async def current_user(self) -> User:
        """The caller's user row, provisioned on first access."""
        if self.ctx.identity is None:
            raise UnauthorizedError("Authentication required")
        return await self.resolve(self.ctx.identity)

    async def current_user_id(self):
        key = CacheKeys.user(self.ctx.identity.external_id) if self.ctx.identity else None
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        user = await self.current_user()
        return user.user_id

    async def resolve(self, identity: AuthIdentity) -> User:
        session = self.ctx.session
        result = await session.exec(
            select(User).where(User.external_id == identity.external_id)
        )
        user = result.first()
        if user is None:
            user = await self._provision(identity)
        self.cache.set(
            CacheKeys.user(identity.external_id), user.user_id, self.settings.user_ttl_seconds
        )
        return user

    async def _provision(self, identity: AuthIdentity) -> User:
        session = self.ctx.session
        user = User(
            external_id=identity.external_id,
            email=identity.email,
            name=default_name(identity),
            created_at=self.ctx.now(),
        )
        session.add(user)
        try:
            await session.commit()
        except IntegrityError:
            # Another request provisioned the same identity first
            await session.rollback()
            result = await session.exec(
                select(User).where(User.external_id == identity.external_id)
            )
            return result.one()
        await session.refresh(user)
        logger.info("user_provisioned", user_id=str(user.user_id))
        return user

    async def sync(self, identity: AuthIdentity) -> User:
        """Sign-up / sign-in path: create or refresh the user's e-mail and name."""
        user = await self.resolve(identity)
        changed = False
        if identity.email and identity.email != user.email:
            user.email = identity.email
            changed = True
        name = default_name(identity)
        if identity.name and name != user.name:
            user.name = name
            changed = True
        if changed:
            user.updated_at = self.ctx.now()
            await self.ctx.session.commit()
            await self.ctx.session.refresh(user)
        return user

    @service_operation(USER)
    async def sync_profile(self) -> UserProfile:
        return UserProfile.model_validate(await self.sync(self.ctx.identity))

    @service_operation(USER)
    async def profile(self) -> UserProfile:
        return UserProfile.model_validate(await self.current_user())

    @service_operation(USER)
    async def update_profile(self, changes: UserUpdate | dict) -> UserProfile:
        changes = parse_input(UserUpdate, changes)
        data = changes.model_dump(exclude_unset=True)
        if "name" in data and not (data["name"] or "").strip():
            raise InvalidInputError("Name must not be empty")

        user = await self.current_user()
        for field, value in data.items():
            setattr(user, field, value.strip() if isinstance(value, str) else value)
        user.updated_at = self.ctx.now()
        await self.ctx.session.commit()
        await self.ctx.session.refresh(user)
        return UserProfile.model_validate(user)
