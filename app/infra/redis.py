"""
Redis Connection Management

Redis connection with graceful degradation, used for the per-patient turn
lock. When Redis is unavailable the lock fails open: turns still run, just
without cross-worker serialization.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, LockError, RedisError, TimeoutError

from app.config import settings

logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "clinic-scheduler:v1:"


class RedisClient:
    """
    Manages Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """Redis client, or None in degraded mode."""
    return await RedisClient.get_client()


def turn_lock_key(clinic_id: str, patient_id: str) -> str:
    return f"{APP_PREFIX}turn:{clinic_id}:{patient_id}"


@asynccontextmanager
async def turn_lock(
    clinic_id: str,
    patient_id: str,
    ttl: Optional[int] = None,
) -> AsyncGenerator[bool, None]:
    """
    Serialize conversation turns of one patient across workers.

    Waits up to `ttl` seconds for a turn already in progress. The lock
    expires after `ttl` seconds so a crashed worker cannot hold it forever.

    FAILS OPEN: without Redis, or if the lock cannot be taken, the turn runs
    unlocked.

    Yields:
        True when the lock is held
    """
    ttl = ttl or settings.turn_lock_ttl
    client = await get_redis()
    if client is None:
        logger.warning("Redis unavailable - turn runs without lock")
        yield False
        return

    lock = client.lock(
        turn_lock_key(clinic_id, patient_id),
        timeout=ttl,
        blocking_timeout=ttl,
    )
    try:
        acquired = await lock.acquire()
    except (LockError, RedisError) as e:
        logger.warning(f"Turn lock unavailable for patient {patient_id}: {e}")
        acquired = False

    if not acquired:
        logger.warning(f"Turn lock not acquired for patient {patient_id} - running unlocked")

    try:
        yield acquired
    finally:
        if acquired:
            try:
                await lock.release()
            except (LockError, RedisError) as e:
                # Expired while the turn ran
                logger.warning(f"Turn lock release failed for patient {patient_id}: {e}")


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
