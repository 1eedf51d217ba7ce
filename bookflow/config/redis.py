# bookflow/config/redis.py
"""Shared async Redis pool (broker host reachability for health checks)"""
from typing import Optional

import redis.asyncio as redis

from bookflow.config.settings import get_settings

_pool: Optional[redis.ConnectionPool] = None


def _shared_pool() -> redis.ConnectionPool:
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=2,
            retry_on_timeout=True,
        )
    return _pool


async def get_redis() -> redis.Redis:
    """Client bound to the shared pool; callers close it with ``aclose()``"""
    return redis.Redis(connection_pool=_shared_pool())


async def redis_status() -> str:
    """'healthy' or a short description of why Redis cannot be reached"""
    client = await get_redis()
    try:
        await client.ping()
        return "healthy"
    except redis.RedisError as e:
        return f"unhealthy: {str(e)[:200]}"
    finally:
        await client.aclose()
