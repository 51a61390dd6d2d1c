"""Database engine and session management."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.services.change_feed import ChangeFeed


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; SQLite connections are not pooled across event loops."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, poolclass=NullPool, connect_args={"check_same_thread": False})
    return create_async_engine(database_url)


def build_session_factory(bind: AsyncEngine, feed: ChangeFeed | None = None) -> async_sessionmaker[AsyncSession]:
    """Sessions created here hand committed row changes to ``feed``."""
    info: dict = {"change_feed": feed} if feed is not None else {}
    return async_sessionmaker(bind=bind, expire_on_commit=False, autoflush=False, info=info)


change_feed: ChangeFeed = ChangeFeed()
engine: AsyncEngine = build_engine(settings.database_url)
SessionLocal: async_sessionmaker[AsyncSession] = build_session_factory(engine, change_feed)
