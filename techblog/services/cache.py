"""
Optional Redis cache used for public settings and dashboard statistics.
"""

import json
import logging
from typing import Any, Optional

import redis

from techblog.config import CACHE_TTL_SECONDS, ENABLE_REDIS_CACHE, REDIS_URL

logger = logging.getLogger(__name__)


class RedisCache:
    """Thin JSON cache over redis that degrades to a no-op when unavailable."""

    def __init__(self, url: str = REDIS_URL, enabled: bool = ENABLE_REDIS_CACHE, prefix: str = "techblog:"):
        self._enabled = enabled
        self._prefix = prefix
        self._client: Optional[redis.Redis] = None
        if enabled:
            try:
                self._client = redis.Redis.from_url(url, socket_timeout=2, decode_responses=True)
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"Redis cache disabled, could not create client: {e}")
                self._client = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_available(self) -> bool:
        return self._enabled and self._client is not None

    def ping(self) -> bool:
        if not self.is_available:
            return False
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis PING failed: {e}")
            return False

    def get(self, key: str) -> Optional[str]:
        if not self.is_available:
            return None
        try:
            return self._client.get(self._prefix + key)
        except redis.RedisError as e:
            logger.warning(f"Redis GET {key} failed: {e}")
            return None

    def set(self, key: str, value: str, ttl: int = CACHE_TTL_SECONDS) -> bool:
        if not self.is_available:
            return False
        try:
            return bool(self._client.set(self._prefix + key, value, ex=ttl))
        except redis.RedisError as e:
            logger.warning(f"Redis SET {key} failed: {e}")
            return False

    def delete(self, key: str) -> bool:
        if not self.is_available:
            return False
        try:
            return bool(self._client.delete(self._prefix + key))
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE {key} failed: {e}")
            return False

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: int = CACHE_TTL_SECONDS) -> bool:
        return self.set(key, json.dumps(value, default=str), ttl)


redis_client = RedisCache()
