# ruff: noqa: PLW0603
"""Redis connection management.

Provides async Redis client for:
- Distributed per-key locks (serializing purchases per user)
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from src.config import get_settings
from src.core.logging import get_logger


logger = get_logger(__name__)

# Global Redis client
_redis_client: redis.Redis | None = None


class LockNotAcquiredError(Exception):
    """Lock is held by someone else past the wait budget."""


async def init_redis() -> redis.Redis:
    """Initialize Redis connection pool."""
    global _redis_client

    settings = get_settings()

    _redis_client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
        decode_responses=True,
    )

    # Test connection
    try:
        await _redis_client.ping()
        logger.info("redis_connected", url=settings.redis_url)
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", error=str(e))
        _redis_client = None
        raise

    return _redis_client


async def shutdown_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


def get_redis() -> redis.Redis | None:
    """Get Redis client instance."""
    return _redis_client


@asynccontextmanager
async def redis_lock(
    client: redis.Redis | None,
    name: str,
    timeout: float,
    blocking_timeout: float | None = None,
) -> AsyncIterator[bool]:
    """Hold a Redis lock for the duration of the block.

    Yields True when the lock is held, False when running without one
    (no client configured, or Redis unreachable).

    Raises:
        LockNotAcquiredError: The lock stayed busy for `blocking_timeout`
    """
    if client is None:
        yield False
        return

    lock = client.lock(name, timeout=timeout)
    acquired: bool | None = None
    try:
        acquired = await lock.acquire(
            blocking_timeout=timeout if blocking_timeout is None else blocking_timeout
        )
    except RedisError as e:
        logger.warning("redis_lock_unavailable", lock=name, error=str(e))

    if acquired is None:
        yield False
        return

    if not acquired:
        raise LockNotAcquiredError(name)

    try:
        yield True
    finally:
        try:
            await lock.release()
        except LockError:
            logger.warning("redis_lock_expired_before_release", lock=name)


def purchase_lock_name(user_id: str) -> str:
    """Lock serializing purchases of one user."""
    return f"membership:purchase:{user_id}"


SWEEP_LOCK_NAME = "membership:sweep"
