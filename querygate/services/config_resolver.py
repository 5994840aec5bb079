"""Two-level configuration resolver: user override, then system default.

Lookups go through a Redis read-through cache backed by the ``query_config``
table. Cache slots are keyed ``{prefix}{key}:{user_id or 'system'}`` and are
evicted explicitly by the write path.
"""

import json
import logging
import uuid

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from querygate.config import settings
from querygate.core.exceptions import ConfigNotFoundError
from querygate.models.query_config import QueryConfig

logger = logging.getLogger(__name__)

SYSTEM_SLOT = "system"


def cache_key(key: str, user_id: uuid.UUID | str | None, prefix: str | None = None) -> str:
    """Build the cache key for a (key, user) slot. NULL user means the system slot."""
    if prefix is None:
        prefix = settings.QUERY_CONFIG_CACHE_PREFIX
    return f"{prefix}{key}:{user_id if user_id is not None else SYSTEM_SLOT}"


def _as_uuid(user_id: uuid.UUID | str | None) -> uuid.UUID | None:
    if user_id is None or isinstance(user_id, uuid.UUID):
        return user_id
    return uuid.UUID(str(user_id))


class ConfigResolver:
    """Resolve a named configuration for a caller with user-over-system precedence.

    Cache errors are logged and treated as misses, so an unreachable cache
    sends every lookup to storage. Storage errors propagate.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Redis,
        *,
        prefix: str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.db = db
        self.cache = cache
        self.prefix = settings.QUERY_CONFIG_CACHE_PREFIX if prefix is None else prefix
        self.ttl_seconds = (
            settings.QUERY_CONFIG_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        )

    def cache_key(self, key: str, user_id: uuid.UUID | str | None) -> str:
        return cache_key(key, user_id, self.prefix)

    async def resolve(self, key: str, caller_id: uuid.UUID | str | None = None) -> dict:
        """Return the effective configuration value for ``key`` and ``caller_id``.

        Raises ConfigNotFoundError when neither storage nor cache has a value.
        """
        caller_id = _as_uuid(caller_id)
        user_slot = self.cache_key(key, caller_id)
        system_slot = self.cache_key(key, None)

        # 1. User-specific cache slot
        if caller_id is not None:
            cached = await self._cache_get(user_slot)
            if cached is not None:
                logger.debug("Config cache hit for %s", user_slot)
                return cached

        # 2. System-default cache slot
        cached_system = await self._cache_get(system_slot)
        if cached_system is not None and caller_id is None:
            logger.debug("Config cache hit for %s", system_slot)
            return cached_system

        # 3. One storage round trip for the user row and the system row
        rows = await self._load_rows(key, caller_id)
        user_row = next((r for r in rows if r.user_id is not None), None)
        system_row = next((r for r in rows if r.user_id is None), None)

        # 4. Populate the slot of whichever row won
        if user_row is not None:
            await self._cache_set(user_slot, user_row.value)
            return user_row.value
        if system_row is not None:
            await self._cache_set(system_slot, system_row.value)
            return system_row.value

        # 5. Storage is empty but a system value is still cached
        if cached_system is not None:
            logger.warning("Serving cached system config for %s absent from storage", key)
            return cached_system

        # 6. Nothing anywhere
        raise ConfigNotFoundError(
            f"Configuration with key '{key}' not found.",
            key=key,
        )

    async def invalidate(self, key: str, user_id: uuid.UUID | str | None = None) -> bool:
        """Evict one cache slot. Returns False if the cache was unreachable."""
        slot = self.cache_key(key, _as_uuid(user_id))
        try:
            await self.cache.delete(slot)
        except RedisError:
            logger.warning("Failed to invalidate config cache slot %s", slot, exc_info=True)
            return False
        logger.debug("Invalidated config cache slot %s", slot)
        return True

    async def _load_rows(self, key: str, caller_id: uuid.UUID | None) -> list[QueryConfig]:
        owner = QueryConfig.user_id.is_(None)
        if caller_id is not None:
            owner = or_(QueryConfig.user_id == caller_id, owner)
        result = await self.db.execute(
            select(QueryConfig).where(QueryConfig.key == key, owner)
        )
        return list(result.scalars().all())

    async def _cache_get(self, slot: str) -> dict | None:
        try:
            raw = await self.cache.get(slot)
        except RedisError:
            logger.warning("Config cache unavailable reading %s; falling back to storage", slot)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding undecodable config cache entry %s", slot)
            return None

    async def _cache_set(self, slot: str, value: dict) -> None:
        try:
            await self.cache.set(slot, json.dumps(value), ex=self.ttl_seconds or None)
        except RedisError:
            logger.warning("Config cache unavailable writing %s", slot)
