"""Read cache in front of short code resolution.

Mappings are immutable, so a cached entry can only go stale if a row is
deleted by an administrative path outside the store; such a path should call
``invalidate``. Every successful create is written through, and resolve
misses fill the cache. Redis failures never fail a request: the store falls
back to the database and the error is logged.
"""

import logging
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from shortlinks.core.config import settings
from shortlinks.core.redis import RedisClientManager
from shortlinks.models.url import UrlMappingRead

logger = logging.getLogger(__name__)


class MappingCache:
    """Redis-backed cache of short code -> mapping."""

    def __init__(
        self,
        redis_manager: RedisClientManager,
        ttl_seconds: int = settings.CACHE_TIMEOUT,
        key_prefix: str = settings.CACHE_KEY_PREFIX,
    ):
        self.redis_manager = redis_manager
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def key_for(self, short_code: str) -> str:
        return f"{self.key_prefix}{short_code}"

    async def get(self, short_code: str) -> Optional[UrlMappingRead]:
        """Return the cached mapping for ``short_code``, or None on miss or error."""
        try:
            client = await self.redis_manager.get_client()
            payload = await client.get(self.key_for(short_code))
        except RedisError as e:
            logger.warning(f"Cache read failed for '{short_code}': {e}")
            return None

        if payload is None:
            return None

        try:
            return UrlMappingRead.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Discarding malformed cache entry for '{short_code}': {e}")
            await self.invalidate(short_code)
            return None

    async def put(self, mapping: UrlMappingRead) -> None:
        """Store ``mapping`` under its short code."""
        try:
            client = await self.redis_manager.get_client()
            await client.set(
                self.key_for(mapping.short_code),
                mapping.model_dump_json(),
                ex=self.ttl_seconds,
            )
        except RedisError as e:
            logger.warning(f"Cache write failed for '{mapping.short_code}': {e}")

    async def invalidate(self, short_code: str) -> None:
        """Drop any cached entry for ``short_code``."""
        try:
            client = await self.redis_manager.get_client()
            await client.delete(self.key_for(short_code))
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for '{short_code}': {e}")
