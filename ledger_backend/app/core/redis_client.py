"""
Redis client for the token revocation lists.

The identity service owns these keys; the ledger only reads them, so the
client is tuned for short lookups that never hold up a ledger write.
"""

import logging
import redis.asyncio as redis
from ledger_backend.app.core.config import settings

logger = logging.getLogger("ledger")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
    socket_timeout=settings.redis_socket_timeout,
    socket_connect_timeout=settings.redis_socket_timeout,
)


async def ping_redis() -> bool:
    """Report whether the revocation store answers."""
    try:
        return await redis_client.ping()
    except (redis.RedisError, OSError) as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
