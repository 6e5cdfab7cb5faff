"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from tasker.app.core.config import settings


def build_engine(database_url: str = settings.database_url):
    """
    Create the async engine for the task store.

    Pool sizing only applies to server databases; SQLite uses its own pool.
    """
    engine_kwargs = {"echo": settings.db_echo, "future": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow
    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(bind) -> async_sessionmaker:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine()

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)

# Create declarative base for models
Base = declarative_base()


async def get_session_factory() -> async_sessionmaker:
    """
    FastAPI dependency for the session factory.

    The task store opens one transaction per operation, so it needs the
    factory rather than a single request-scoped session.
    """
    return AsyncSessionLocal
