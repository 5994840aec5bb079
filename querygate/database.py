"""Async SQLAlchemy engine, session factory, and declarative base."""

import enum
from collections.abc import AsyncIterator

from sqlalchemy import Enum
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from querygate.config import settings


class Base(DeclarativeBase):
    # Enum columns are stored as VARCHAR holding the member name.
    type_annotation_map = {
        enum.Enum: Enum(enum.Enum, native_enum=False, length=50),
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a request-scoped session, committing on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
