"""
Anime search against the AnimeThemes catalog.

The catalog's own search misses English titles and partial names, and some
endpoints return results without the relationships we need. Searching is
therefore a fallback chain, each step re-filtered locally with
``filter_anime``:

1. ``/search/`` with video includes
2. ``/search/`` without video includes
3. ``/anime/?q=``
4. ``/anime/?filter[name]=``
5. paging through the whole catalog (bounded) until something matches

The first step that yields a non-empty filtered list wins.
"""

import logging
import random
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable

import httpx

from kaimaku.catalog.discovery import (
    DAILY_FALLBACK_QUERY,
    POPULAR_QUERIES,
    TRENDING_QUERY_COUNT,
    dedupe_anime,
    pick_daily_featured,
    pick_random_opening,
)
from kaimaku.catalog.matcher import filter_anime
from kaimaku.catalog.models import Anime, Theme, anime_from_dict
from kaimaku.catalog.normalizer import merge_synonyms, normalize_response
from kaimaku.catalog.results import OpeningResult, collect_openings
from kaimaku.config import get_settings
from kaimaku.core.animethemes_client import (
    SYNONYM_INCLUDES,
    AnimeThemesClient,
    get_catalog_client,
)
from kaimaku.core.cache import SearchCache
from kaimaku.core.errors import NoResultsError, UpstreamUnavailable, ValidationError

logger = logging.getLogger(__name__)
settings = get_settings()

# Transport failures, HTTP errors after retries, and non-JSON bodies
UPSTREAM_ERRORS = (httpx.HTTPError, ValueError)


@dataclass
class _SearchStep:
    label: str
    fetch: Callable[[], Awaitable[Any]]
    global_search: bool


class SearchService:
    """Search the catalog with local re-filtering and fallbacks."""

    def __init__(
        self,
        client: AnimeThemesClient | None = None,
        cache: SearchCache | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        no_match_threshold: int | None = None,
    ):
        self.client = client or get_catalog_client()
        self.cache = cache
        self.page_size = page_size or settings.catalog_page_size
        self.max_pages = max_pages or settings.catalog_max_pages
        self.no_match_threshold = no_match_threshold or settings.catalog_no_match_threshold

    async def search(self, query: str) -> list[Anime]:
        """
        Find anime whose name, slug or synonyms match ``query``.

        Raises:
            ValidationError: blank query
            NoResultsError: the catalog answered but nothing matched
            UpstreamUnavailable: no catalog request succeeded at all
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Please enter a search term")

        if self.cache is not None:
            cached = await self.cache.get_results(query)
            if cached:
                logger.debug(f"Search cache hit for '{query}'")
                return [anime_from_dict(item) for item in cached]

        results = await self._search_uncached(query)

        if self.cache is not None:
            await self.cache.store_results(query, [anime.to_dict() for anime in results])
        return results

    async def find_openings(self, query: str) -> list[OpeningResult]:
        """Search, then keep only anime with playable openings."""
        anime_list = await self.search(query)
        results = collect_openings(anime_list)
        if not results:
            raise NoResultsError("No opening themes found. Try searching for a different anime.")
        return results

    def _steps(self, query: str) -> list[_SearchStep]:
        return [
            _SearchStep("search+videos", lambda: self.client.global_search(query, include_videos=True), True),
            _SearchStep("search", lambda: self.client.global_search(query, include_videos=False), True),
            _SearchStep("anime?q", lambda: self.client.search_anime(query), False),
            _SearchStep("anime?filter[name]", lambda: self.client.filter_anime_by_name(query), False),
        ]

    async def _search_uncached(self, query: str) -> list[Anime]:
        reached_upstream = False

        for step in self._steps(query):
            try:
                payload = await step.fetch()
            except UPSTREAM_ERRORS as e:
                logger.warning(f"Search step {step.label} failed for '{query}': {e}")
                continue

            reached_upstream = True
            anime_list = normalize_response(payload, step.label)
            if not anime_list:
                continue

            if step.global_search and not anime_list[0].themes:
                # Global search sometimes ignores includes; refetch by id
                detailed = await self._fetch_with_includes(anime_list)
                filtered = filter_anime(detailed, query)
                if filtered:
                    logger.info(f"Search '{query}': {len(filtered)} results via {step.label} + id lookup")
                    return filtered
                continue

            if not step.global_search and any(not anime.synonyms for anime in anime_list):
                anime_list = await self._enhance_synonyms(anime_list)

            filtered = filter_anime(anime_list, query)
            if filtered:
                logger.info(f"Search '{query}': {len(filtered)} results via {step.label}")
                return filtered

        logger.info(f"Search endpoints found nothing for '{query}', paging through catalog")
        return await self._paginated_search(query, reached_upstream)

    async def _fetch_with_includes(self, anime_list: list[Anime]) -> list[Anime]:
        anime_ids = [anime.id for anime in anime_list if anime.id is not None]
        if not anime_ids:
            return []
        try:
            payload = await self.client.get_anime_by_ids(anime_ids)
        except UPSTREAM_ERRORS as e:
            logger.warning(f"Error fetching anime details: {e}")
            return []
        return normalize_response(payload, "anime?filter[id]")

    async def _enhance_synonyms(self, anime_list: list[Anime]) -> list[Anime]:
        missing = [anime.id for anime in anime_list if not anime.synonyms and anime.id is not None]
        if not missing:
            return anime_list
        try:
            payload = await self.client.get_anime_by_ids(missing, includes=SYNONYM_INCLUDES)
        except UPSTREAM_ERRORS as e:
            logger.warning(f"Error enhancing with synonyms: {e}")
            return anime_list
        return merge_synonyms(anime_list, normalize_response(payload, "anime?filter[id] synonyms"))

    async def _paginated_search(self, query: str, reached_upstream: bool) -> list[Anime]:
        scanned: list[Anime] = []
        no_results = NoResultsError(f'No results found for "{query}". Try a different search term.')

        for page in range(1, self.max_pages + 1):
            try:
                payload = await self.client.list_anime(page, self.page_size)
            except UPSTREAM_ERRORS as e:
                logger.warning(f"Error fetching catalog page {page}: {e}")
                break

            reached_upstream = True
            page_items = normalize_response(payload, f"anime?page={page}")
            if not page_items:
                break

            scanned.extend(page_items)
            logger.debug(f"Fetched catalog page {page}: {len(page_items)} anime (total: {len(scanned)})")

            filtered = filter_anime(scanned, query)
            if filtered:
                logger.info(f"Search '{query}': {len(filtered)} results after {page} catalog pages")
                return filtered

            if len(scanned) >= self.no_match_threshold:
                raise no_results

            if len(page_items) < self.page_size:
                break

        if not reached_upstream:
            raise UpstreamUnavailable()
        raise no_results

    async def random_opening(self, rng: random.Random | None = None) -> tuple[Anime, Theme]:
        rng = rng or random.Random()
        query = rng.choice(POPULAR_QUERIES)
        pick = pick_random_opening(await self.search(query), rng)
        if pick is None:
            raise NoResultsError("No openings found. Try searching manually.")
        return pick

    async def trending(self) -> list[Anime]:
        """Merge results of several popular queries, first occurrence wins."""
        batches = []
        for query in POPULAR_QUERIES[:TRENDING_QUERY_COUNT]:
            try:
                batches.append(await self.search(query))
            except (NoResultsError, UpstreamUnavailable) as e:
                logger.warning(f"Trending query '{query}' failed: {e}")
        anime_list = dedupe_anime(batches)
        if not anime_list:
            raise NoResultsError("No trending openings found. Try searching manually.")
        return anime_list

    async def daily_featured(self, today: date | None = None) -> tuple[Anime, Theme]:
        pick = pick_daily_featured(await self.find_openings(DAILY_FALLBACK_QUERY), today)
        if pick is None:
            raise NoResultsError("Could not load daily featured opening.")
        return pick
