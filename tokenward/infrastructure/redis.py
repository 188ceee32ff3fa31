"""
Redis connection helpers.

The Redis-backed stores share one asynchronous client created from the
application settings. Responses are decoded to ``str`` so the stores work
with plain strings throughout.

**Security Note**: Use ``rediss://`` (REDIS_SSL) on untrusted networks and
never log the connection URL, which may embed the password.
"""

from redis.asyncio import Redis
from structlog import get_logger

logger = get_logger(__name__)


def create_redis_client(settings) -> Redis:
    """Create an asynchronous Redis client from ``settings.REDIS_URL``."""
    client = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    logger.debug("Redis client created", host=settings.REDIS_HOST, db=settings.REDIS_DB)
    return client


async def close_redis_client(client: Redis) -> None:
    await client.aclose()
    logger.debug("Redis client closed")
