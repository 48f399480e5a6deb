"""
Redis client wrapper.

Holds the shared connection used by the redis feed cache backend:
  • Smart feeds — STRING (JSON) keyed by smart_feed:{user_id}:{options digest}
                  expiring after the feed cache TTL.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis(host: str, port: int, socket_timeout: float = 0.5) -> aioredis.Redis:
    global _redis
    _redis = aioredis.Redis(
        host=host,
        port=port,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", host, port)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis
