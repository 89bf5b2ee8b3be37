"""
Team Pulse Database Layer — SQLAlchemy async engine and session handling.

The relational store is the single source of truth for messages, sentiment
and channel state. ``Database`` is constructed explicitly by the composition
root and handed to whoever needs sessions.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Database:
    """Owns one async engine and its session factory."""

    def __init__(self, url: str, echo: bool = False, pool_size: Optional[int] = None):
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if pool_size and not url.startswith("sqlite"):
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["pool_pre_ping"] = True
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def init_db(self) -> None:
        """Create all tables (schema migrations are managed outside this service)."""
        import pulse.models.models  # noqa: F401  register mappers

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connection closed")


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session from the app's container."""
    async with request.app.state.container.database.session() as db:
        yield db


def upsert(
    db: AsyncSession,
    model,
    values: Dict[str, Any],
    index_elements: Iterable[str],
    update_fields: Optional[Iterable[str]] = None,
):
    """
    Build an INSERT ... ON CONFLICT statement for the session's dialect.

    With ``update_fields`` the conflicting row is overwritten with those
    columns; without it the insert is ignored on conflict.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    index_elements = list(index_elements)
    if update_fields is None:
        return stmt.on_conflict_do_nothing(index_elements=index_elements)
    return stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={name: stmt.excluded[name] for name in update_fields},
    )
