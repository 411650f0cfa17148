"""
Redis client and JSON cache helpers.

The cache is optional: without REDIS_URL every lookup is a miss and
writes are dropped.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Optional

import redis

from booking.core import config

logger = logging.getLogger(__name__)


def _mask_url(url: str) -> str:
    if "@" not in url:
        return url
    scheme = url.split(":", 1)[0]
    return f"{scheme}://****@{url.rsplit('@', 1)[1]}"


@lru_cache(maxsize=1)
def get_redis_client() -> Optional[redis.Redis]:
    """Build the shared Redis client, or return None when Redis is not configured."""
    if not config.REDIS_URL:
        logger.info("REDIS_URL not set; cache and shared rate-limit counters disabled")
        return None

    logger.info("Connecting to Redis at %s", _mask_url(config.REDIS_URL))
    return redis.from_url(
        config.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )


class Cache:
    """Redis cache wrapper with JSON serialization"""

    def __init__(self, client_factory=get_redis_client):
        self._client_factory = client_factory

    def _get_client(self) -> Optional[redis.Redis]:
        return self._client_factory()

    @property
    def enabled(self) -> bool:
        return self._get_client() is not None

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if client is None:
            return None

        try:
            value = client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None

        if value is None:
            logger.debug("Cache miss: %s", key)
            return None
        try:
            decoded = json.loads(value)
        except ValueError as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            self.delete(key)
            return None
        logger.debug("Cache hit: %s", key)
        return decoded

    def set(self, key: str, value: Any, ttl: int = config.CACHE_TTL_SECONDS) -> bool:
        client = self._get_client()
        if client is None:
            return False

        try:
            client.setex(key, ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return False
        return True

    def delete(self, key: str) -> bool:
        client = self._get_client()
        if client is None:
            return False

        try:
            client.delete(key)
        except redis.RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)
            return False
        return True

    def ping(self) -> bool:
        """Raises ``redis.RedisError`` when the server does not answer."""
        client = self._get_client()
        if client is None:
            return False
        return bool(client.ping())


cache = Cache()
