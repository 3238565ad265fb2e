"""Authentication and rate-limit bookkeeping in front of every service operation."""

import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable

import structlog
from cachetools import TTLCache
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings
from app.core.errors import (
    ApiResponse,
    AppError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)

logger = structlog.get_logger(__name__)

TASK = "TASK"
ANALYTICS = "ANALYTICS"
NOTIFICATION = "NOTIFICATION"
USER = "USER"


@dataclass
class RateWindow:
    count: int
    reset_at: float


class ApiGateway:
    """Advisory fixed-window request counter per user and service class."""

    def __init__(self, settings: Settings, timer: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.timer = timer
        # A window is dropped once it has run its course
        self._windows: TTLCache = TTLCache(
            maxsize=10_000, ttl=settings.rate_limit_window_seconds, timer=timer
        )

    def limit_for(self, service: str) -> int:
        limits = {
            TASK: self.settings.rate_limit_task,
            ANALYTICS: self.settings.rate_limit_analytics,
        }
        return limits.get(service, self.settings.rate_limit_default)

    def check_rate_limit(self, service: str, user_key: str) -> dict:
        key = f"{user_key}:{service}"
        limit = self.limit_for(service)
        now = self.timer()
        window = self._windows.get(key)

        if window is None:
            window = RateWindow(count=1, reset_at=now + self.settings.rate_limit_window_seconds)
            self._windows[key] = window
            return {"limit": limit, "remaining": limit - 1, "reset": window.reset_at}

        if window.count >= limit:
            raise RateLimitedError(
                "Too many requests. Please try again later.",
                details={"limit": limit, "remaining": 0, "reset": window.reset_at},
            )

        window.count += 1
        return {"limit": limit, "remaining": limit - window.count, "reset": window.reset_at}

    def authorize(self, identity, service: str) -> None:
        if identity is None:
            raise UnauthorizedError("Authentication required")
        self.check_rate_limit(service, identity.external_id)


def service_operation(service: str):
    """
    Run a service method behind the gateway and wrap the outcome in an
    ApiResponse. Nothing raised inside the method escapes to the caller.
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs) -> ApiResponse:
            ctx = self.ctx
            try:
                ctx.gateway.authorize(ctx.identity, service)
                return ApiResponse.ok(await fn(self, *args, **kwargs))
            except AppError as exc:
                logger.info(
                    "operation_rejected",
                    operation=fn.__qualname__,
                    code=exc.code,
                    message=exc.message,
                )
                await ctx.session.rollback()
                return ApiResponse.fail(exc)
            except SQLAlchemyError as exc:
                logger.error("operation_store_error", operation=fn.__qualname__, error=str(exc))
                await ctx.session.rollback()
                return ApiResponse.fail(
                    UpstreamError(str(exc), details={"operation": fn.__name__})
                )
            except Exception as exc:
                logger.exception("operation_failed", operation=fn.__qualname__)
                await ctx.session.rollback()
                return ApiResponse.fail(
                    UpstreamError(
                        str(exc) or "Unexpected error",
                        details={"operation": fn.__name__},
                    )
                )

        return wrapper

    return decorator
