"""
Rate-limited client for the AnimeThemes catalog API.

The catalog is the ONLY source of anime, theme and video metadata. Payloads
are returned raw; use ``kaimaku.catalog.normalizer`` to turn them into
``Anime`` records, since the envelope differs between endpoints.
"""

import asyncio
import logging
from collections import deque
from time import time
from typing import Any

import httpx

from kaimaku.config import get_settings
from kaimaku.core.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)
settings = get_settings()

# Relationship includes needed to render and play openings
FULL_INCLUDES = (
    "animethemes.animethemeentries.videos,"
    "animethemes.song,"
    "animethemes.song.artists,"
    "animesynonyms"
)
INCLUDES_WITHOUT_VIDEOS = "animethemes.song,animethemes.song.artists,animesynonyms"
SYNONYM_INCLUDES = "animesynonyms"

SEARCH_PAGE_LIMIT = 50
ANIME_PAGE_SIZE = 100
MAX_IDS_PER_LOOKUP = 50


class RateLimiter:
    """Sliding window rate limiter for the catalog API."""

    def __init__(self, max_requests: int = 90, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window = window_seconds
        self.requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made within rate limits."""
        async with self._lock:
            while True:
                now = time()

                while self.requests and self.requests[0] < now - self.window:
                    self.requests.popleft()

                if len(self.requests) < self.max_requests:
                    self.requests.append(now)
                    break

                sleep_time = self.requests[0] + self.window - now
                if sleep_time > 0:
                    logger.info(f"Catalog rate limit reached, waiting {sleep_time:.2f}s")
                    await asyncio.sleep(sleep_time)


class AnimeThemesClient:
    """Async client for the AnimeThemes API."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.base_url = base_url or settings.catalog_api_url
        self.rate_limiter = RateLimiter(
            max_requests=settings.catalog_rate_limit_requests,
            window_seconds=settings.catalog_rate_limit_window,
        )
        self.retry_policy = retry_policy or RetryPolicy(
            attempts=settings.max_retry_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=settings.http_request_timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """
        Rate-limited GET with automatic retry of transient failures.

        Raises httpx.HTTPError once retries are exhausted, or immediately for
        non-retryable statuses (4xx, including 422 for bad page sizes).
        """

        async def do_request() -> Any:
            await self.rate_limiter.acquire()
            client = await self._get_client()
            response = await client.get(endpoint, params=params)
            if response.is_error:
                logger.warning(
                    f"Catalog API error: {response.status_code} for {endpoint} - {response.text[:200]}"
                )
            response.raise_for_status()
            return response.json()

        return await call_with_retry(do_request, self.retry_policy, label=f"GET {endpoint}")

    async def global_search(self, query: str, include_videos: bool = True) -> Any:
        """``/search/`` across resource types; anime are under ``search.anime``."""
        includes = FULL_INCLUDES if include_videos else INCLUDES_WITHOUT_VIDEOS
        return await self.get_json("/search/", {
            "q": query,
            "include[anime]": includes,
            "page[limit]": SEARCH_PAGE_LIMIT,
        })

    async def search_anime(self, query: str) -> Any:
        return await self.get_json("/anime/", {
            "q": query,
            "include": FULL_INCLUDES,
            "page[size]": ANIME_PAGE_SIZE,
        })

    async def filter_anime_by_name(self, name: str) -> Any:
        return await self.get_json("/anime/", {
            "filter[name]": name,
            "include": FULL_INCLUDES,
            "page[size]": ANIME_PAGE_SIZE,
        })

    async def get_anime_by_ids(self, anime_ids: list[Any], includes: str = FULL_INCLUDES) -> Any:
        """Fetch anime by id with relationship includes (max 50 ids)."""
        ids = [str(anime_id) for anime_id in anime_ids[:MAX_IDS_PER_LOOKUP]]
        return await self.get_json("/anime/", {
            "filter[id]": ",".join(ids),
            "include": includes,
            "page[size]": len(ids),
        })

    async def list_anime(self, page: int, page_size: int | None = None) -> Any:
        """One page of the full catalog, with includes."""
        return await self.get_json("/anime/", {
            "include": FULL_INCLUDES,
            "page[number]": page,
            "page[size]": page_size or settings.catalog_page_size,
        })


# Singleton client instance
_client: AnimeThemesClient | None = None


def get_catalog_client() -> AnimeThemesClient:
    """Get the singleton catalog client."""
    global _client
    if _client is None:
        _client = AnimeThemesClient()
    return _client
