"""Engines and session factories for the API process and the Celery worker."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from bookrank.core.config import settings
from bookrank.infrastructure.database.models import Base


def _session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services keep returning entities built from models after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# API: one long-lived event loop, so pooled connections are reused across requests
engine = create_async_engine(settings.database_url, echo=False, future=True)
async_session_maker = _session_factory(engine)

# Worker: the nightly popularity.recompute task wraps each run in asyncio.run(),
# which builds and then closes its own loop. A pooled asyncpg connection would
# outlive that loop and fail on the next beat tick, so every run connects afresh.
worker_engine = create_async_engine(settings.database_url, echo=False, future=True, poolclass=NullPool)
worker_session_maker = _session_factory(worker_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for FastAPI dependencies."""
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
