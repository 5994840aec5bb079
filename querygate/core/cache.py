"""Shared async Redis client for the configuration cache."""

import logging

import redis.asyncio as aioredis

from querygate.config import settings

logger = logging.getLogger(__name__)

_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """Return the process-wide Redis client, creating it on first use.

    Creating the client does not connect; connection errors surface on the
    first command and are handled by the callers.
    """
    global _client
    if _client is None:
        _client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.debug("Redis client closed")
