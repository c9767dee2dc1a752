"""
Best-effort Redis response cache used by the catalog read path (cache-aside).

Failures never reach the caller: a read error is a miss and a write error is
dropped, both logged at WARNING.
"""
import json
import logging
from typing import Optional

import redis

from config import REDIS_URL

logger = logging.getLogger(__name__)

PRODUCTS_PREFIX = "products:"
FEATURED_KEY = "products:featured"
CATEGORIES_KEY = "categories:list"


class ResponseCache:
    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client

    @classmethod
    def from_url(cls, url: Optional[str]) -> "ResponseCache":
        if not url:
            logger.info("REDIS_URL is not set, response caching is disabled")
            return cls(None)
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=2))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[dict]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Dropping undecodable cache entry %s", key)
            self.delete(key)
            return None

    def set(self, key: str, value: dict, ttl: int) -> None:
        if not self.enabled:
            return
        try:
            self.client.set(key, json.dumps(value), ex=ttl)
        except redis.RedisError as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    def delete(self, *keys: str) -> None:
        if not self.enabled or not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as exc:
            logger.warning("Cache delete failed for %s: %s", keys, exc)

    def delete_prefix(self, prefix: str) -> int:
        if not self.enabled:
            return 0
        try:
            keys = list(self.client.scan_iter(match=f"{prefix}*"))
            if keys:
                self.client.delete(*keys)
            return len(keys)
        except redis.RedisError as exc:
            logger.warning("Cache invalidation failed for %s*: %s", prefix, exc)
            return 0

    def invalidate_catalog(self) -> None:
        removed = self.delete_prefix(PRODUCTS_PREFIX)
        self.delete(CATEGORIES_KEY)
        logger.debug("Invalidated %d catalog cache entries", removed)


response_cache = ResponseCache.from_url(REDIS_URL)


def get_cache() -> ResponseCache:
    return response_cache
