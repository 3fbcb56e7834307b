"""Async SQLAlchemy engine and session factory for the on-device cache."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from inspection_sync.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create an engine for the local cache database."""
    return create_async_engine(url or settings.LOCAL_DATABASE_URL, echo=False)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False)


engine = build_engine()


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create the cache tables if they do not exist yet."""
    # Register all tables on Base.metadata
    import inspection_sync.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
