"""
Redis client singleton for pub/sub messaging.

The scheduling core only publishes: notification events (booking created,
booking cancelled, invoice paid, ...) are pushed to a channel consumed by the
email worker, which lives outside this service.
"""

import json
import logging
from functools import lru_cache
from typing import Any

import redis.asyncio as redis
from redis import ConnectionError as RedisConnectionError

from shared.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Get cached Redis client instance.

    Connection pooling, retry on timeout and periodic health checks are
    configured once; the pool is shared by every publisher in the process.
    """
    settings = get_settings()

    client = redis.from_url(
        settings.REDIS_URL,
        max_connections=20,
        decode_responses=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )

    logger.info(
        f"Redis client initialized: {settings.REDIS_URL} "
        f"(max_connections=20, retry_on_timeout=True, health_check_interval=30s)"
    )
    return client


async def publish_to_channel(channel: str, message: dict[str, Any]) -> None:
    """
    Publish a message to a Redis pub/sub channel.

    Args:
        channel: Channel name
        message: Message dict to publish (will be JSON-serialized)

    Raises:
        RedisConnectionError: If Redis is unreachable
    """
    client = get_redis_client()

    json_message = json.dumps(message, default=str)

    try:
        await client.publish(channel, json_message)
    except RedisConnectionError as e:
        logger.error(f"Redis connection error while publishing to '{channel}': {e}")
        raise

    logger.debug(f"Message published to channel '{channel}': {json_message[:100]}")


async def close_redis_client() -> None:
    """
    Close Redis connection gracefully.

    Note:
        Should be called during application shutdown.
    """
    try:
        client = get_redis_client()
        await client.close()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")
