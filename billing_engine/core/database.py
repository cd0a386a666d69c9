"""Database engine, session factories and declarative base."""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from billing_engine.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        yield session


def create_task_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory for Celery tasks.

    Each task runs its own event loop via ``asyncio.run``, so pooled
    connections cannot be shared between tasks. ``NullPool`` opens and closes
    a connection per session instead.
    """
    task_engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    return async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
