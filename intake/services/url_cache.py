from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from intake.core.config import get_settings
from intake.core.urls import cache_key

CACHE_TTL = timedelta(days=30)

logger = logging.getLogger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the backing key-value store cannot be reached."""


class URLCache:
    """Maps a normalized URL hash to the record id of a completed run.

    Store failures are surfaced as ``CacheUnavailableError``; a miss is only
    ever reported when the store answered.
    """

    def __init__(self, client: Any, *, ttl: timedelta = CACHE_TTL) -> None:
        self.client = client
        self.ttl_seconds = int(ttl.total_seconds())

    async def get(self, url: str) -> str | None:
        key = cache_key(url)
        try:
            value = await self.client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"failed to get cache entry: {exc}") from exc
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value or None

    async def set(self, url: str, result_id: str) -> None:
        key = cache_key(url)
        try:
            await self.client.set(key, result_id, ex=self.ttl_seconds)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"failed to set cache entry: {exc}") from exc

    async def delete(self, url: str) -> None:
        key = cache_key(url)
        try:
            await self.client.delete(key)
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"failed to delete cache entry: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as exc:
            raise CacheUnavailableError(f"cache ping failed: {exc}") from exc

    async def close(self) -> None:
        await self.client.aclose()


@lru_cache
def get_url_cache() -> URLCache | None:
    settings = get_settings()
    if not settings.redis_url:
        logger.info("INTAKE_REDIS_URL not set; url cache disabled")
        return None
    client = redis.from_url(settings.redis_url, decode_responses=True)
    return URLCache(client, ttl=timedelta(days=settings.url_cache_ttl_days))
