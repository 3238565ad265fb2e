import os

from dotenv import load_dotenv
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models import DEFAULT_STATUSES, Status

load_dotenv()


def build_engine(database_url: str | None = None, echo: bool = False) -> AsyncEngine:
    url = database_url or os.getenv("DATABASE_URL")
    kwargs = {"echo": echo, "future": True}
    if not url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Dependency for getting DB session
async def get_db(request: Request):
    async with request.app.state.session_factory() as session:
        yield session
        await session.close()


async def create_db_and_tables(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def seed_reference_data(session_factory: async_sessionmaker) -> int:
    """Insert the fixed status vocabulary; returns the number of rows added."""
    async with session_factory() as session:
        result = await session.exec(select(Status.status_name))
        existing = set(result.all())
        added = 0
        for name, description, order in DEFAULT_STATUSES:
            if name.value in existing:
                continue
            session.add(
                Status(
                    status_name=name.value,
                    status_description=description,
                    status_order=order,
                )
            )
            added += 1
        if added:
            await session.commit()
        return added
