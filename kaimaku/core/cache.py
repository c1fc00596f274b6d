"""Redis cache for normalized catalog search results."""

import hashlib
import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from kaimaku.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

KEY_PREFIX = "catalog:search:v1:"


def search_key(query: str) -> str:
    # Queries are user text; hash to keep keys bounded
    digest = hashlib.sha1(query.strip().lower().encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}{digest}"


class SearchCache:
    """
    Search results keyed by normalized query.

    A Redis outage or an unreadable entry counts as a miss. Searching then
    goes to the catalog, so the cache can never fail a request.
    """

    def __init__(self, url: str | None = None, ttl_seconds: int | None = None):
        self._url = url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.cache_ttl_seconds
        self._redis: redis.Redis | None = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self._url, encoding="utf-8", decode_responses=True)
        return self._redis

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def get_results(self, query: str) -> list[dict[str, Any]] | None:
        key = search_key(query)
        try:
            raw = await self._client().get(key)
        except RedisError as e:
            logger.warning(f"Search cache read failed for '{query}': {e}")
            return None
        if not raw:
            return None
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping unreadable search cache entry {key}")
            return None
        return items if isinstance(items, list) else None

    async def store_results(self, query: str, items: list[dict[str, Any]]) -> None:
        try:
            await self._client().setex(search_key(query), self.ttl_seconds, json.dumps(items))
        except RedisError as e:
            logger.warning(f"Search cache write failed for '{query}': {e}")


_cache: SearchCache | None = None


def get_cache() -> SearchCache:
    """Process-wide search cache."""
    global _cache
    if _cache is None:
        _cache = SearchCache()
    return _cache
