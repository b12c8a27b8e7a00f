"""Declarative base and async engine setup for the record store.

The API process shares one engine. Each Celery task builds its own,
because an asyncpg pool is bound to the event loop that created it.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from walletwars.config import Settings, get_settings


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        echo=settings.debug,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Store methods read attributes after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = get_engine()
async_session_factory = get_session_factory(engine)


@asynccontextmanager
async def get_task_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory on a fresh engine, disposed when the task is done."""
    task_engine = get_engine()
    try:
        yield get_session_factory(task_engine)
    finally:
        await task_engine.dispose()


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """created_at / updated_at maintained by the database."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
