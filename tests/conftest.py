"""Shared fixtures for the querygate test suite."""

import os

# Settings are read at import time; point them at throwaway backends first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")

import uuid  # noqa: E402
from collections.abc import AsyncIterator  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from querygate.blueprints import register_all  # noqa: E402
from querygate.models import Base  # noqa: E402
from querygate.models.enums import UserRole  # noqa: E402
from querygate.models.user import User  # noqa: E402
from querygate.services.blueprint import BlueprintRegistry  # noqa: E402


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` covering the commands we use.

    Set ``fail = True`` to make every command raise a connection error.
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False
        self.gets = 0

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("cache unavailable")

    async def get(self, key: str) -> str | None:
        self._check()
        self.gets += 1
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self) -> bool:
        self._check()
        return True


@pytest.fixture
def cache() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def blueprints() -> BlueprintRegistry:
    """A frozen registry holding the application's declared blueprints."""
    reg = BlueprintRegistry()
    register_all(reg)
    reg.freeze()
    return reg


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    # File-backed so that separate sessions really are separate connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'querygate.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


async def _add_user(session: AsyncSession, email: str, role: UserRole) -> User:
    user = User(id=uuid.uuid4(), email=email, full_name=email.split("@")[0], role=role, is_active=True)
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def admin(db: AsyncSession) -> User:
    return await _add_user(db, "admin@example.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def analyst(db: AsyncSession) -> User:
    return await _add_user(db, "analyst@example.com", UserRole.ANALYST)


@pytest_asyncio.fixture
async def other_analyst(db: AsyncSession) -> User:
    return await _add_user(db, "other@example.com", UserRole.ANALYST)
