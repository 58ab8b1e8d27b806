"""Async SQLAlchemy engine and session management.

The engine is created on application startup (``init_db``) and disposed on
shutdown. Request handlers receive a session through ``get_db``; services own
the transaction boundary (commit on success, rollback and re-raise otherwise).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import BigInteger, Integer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from loyalty.core.config import settings


class Base(DeclarativeBase):
    pass


# BIGINT keys on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY.
BigId = BigInteger().with_variant(Integer, "sqlite")


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    global _engine, _session_factory

    url = settings.async_database_url
    kwargs: dict = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)

    _engine = create_async_engine(url, **kwargs)
    _session_factory = make_session_factory(_engine)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def create_tables() -> None:
    """Create all tables (development / tests only; production uses migrations)."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        yield session


def is_unique_violation(exc: IntegrityError, constraint: str, *columns: str) -> bool:
    """
    True when ``exc`` was raised by the given unique constraint.

    PostgreSQL reports the constraint name; SQLite only reports the
    ``table.column`` list, so both spellings are checked.
    """
    message = str(getattr(exc, "orig", exc))
    if constraint in message:
        return True
    return bool(columns) and all(col in message for col in columns)
