from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from app.cache.layer import CacheLayer
from app.core.config import Settings, get_settings
from app.core.errors import ApiResponse, InvalidInputError
from app.core.logging import configure_logging
from app.database import (
    build_engine,
    build_session_factory,
    create_db_and_tables,
    seed_reference_data,
)
from app.dependencies import respond
from app.middleware import RequestLoggingMiddleware
from app.models import get_utc_now
from app.routers import analytics, categories, notifications, tasks, users
from app.services.effects import SideEffects
from app.services.gateway import ApiGateway
from app.services.scheduler import OverdueSweeper

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings)

    engine = build_engine(settings.database_url, echo=settings.database_echo)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    await create_db_and_tables(engine)
    seeded = await seed_reference_data(app.state.session_factory)

    sweeper = OverdueSweeper(
        app.state.session_factory,
        app.state.cache,
        app.state.effects,
        app.state.gateway,
        settings,
        clock=lambda: app.state.clock(),
    )
    app.state.sweeper = sweeper
    if settings.overdue_sweep_enabled:
        sweeper.start()

    logger.info("app_started", version=settings.app_version, statuses_seeded=seeded)
    yield

    await sweeper.stop()
    await app.state.effects.drain()
    await engine.dispose()
    logger.info("app_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Personal task tracker with change history, reminders and analytics",
        swagger_ui_parameters={"displayRequestDuration": True},
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Process-wide collaborators shared by every request
    app.state.settings = settings
    app.state.cache = CacheLayer.from_settings(settings)
    app.state.effects = SideEffects()
    app.state.gateway = ApiGateway(settings)
    app.state.clock = get_utc_now

    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = InvalidInputError("Invalid request", details=jsonable_errors(exc))
        return respond(ApiResponse.fail(error))

    app.include_router(tasks.router)
    app.include_router(categories.router)
    app.include_router(notifications.router)
    app.include_router(analytics.router)
    app.include_router(users.router)

    @app.get("/")
    async def root():
        return {
            "message": f"Welcome to {settings.app_name}",
            "docs": "/docs",
            "version": settings.app_version,
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.get("/cache/stats")
    async def cache_stats():
        return respond(ApiResponse.ok(app.state.cache.get_stats()))

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


app = create_app()
