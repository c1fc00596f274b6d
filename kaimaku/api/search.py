"""Search and discovery endpoints."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.catalog.models import Anime, Theme, theme_id
from kaimaku.catalog.results import (
    RatingLookup,
    ResultFilters,
    SortMode,
    apply_filters,
    collect_openings,
    paginate,
    sort_results,
)
from kaimaku.catalog.video import select_best_video
from kaimaku.config import get_settings
from kaimaku.core.animethemes_client import get_catalog_client
from kaimaku.core.cache import get_cache
from kaimaku.core.cooldown import CooldownGate, get_search_gate
from kaimaku.core.errors import StoreError
from kaimaku.db import schemas
from kaimaku.db.database import get_db
from kaimaku.services.rating_service import RatingService
from kaimaku.services.search_service import SearchService
from kaimaku.services.session_service import get_session

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


def get_search_service() -> SearchService:
    return SearchService(client=get_catalog_client(), cache=get_cache())


async def get_rating_lookup(request: Request, db: AsyncSession = Depends(get_db)) -> RatingLookup:
    """
    Public aggregates, plus the viewer's own ratings when logged in.

    Catalog views work without ratings, so a store failure leaves every
    opening unrated instead of failing the request.
    """
    service = RatingService(db)
    try:
        personal = {}
        session = await get_session(db, request.cookies.get(settings.session_cookie_name))
        if session is not None and not session.expired:
            user_ratings = await service.get_user_ratings(session.username)
            personal = {key: row["rating"] for key, row in user_ratings.items()}
        return RatingLookup(personal=personal, public=await service.get_ratings())
    except StoreError as e:
        logger.warning(f"Ratings unavailable, serving catalog results unrated: {e}")
        return RatingLookup()


def opening_view(anime: Anime, theme: Theme, ratings: RatingLookup) -> schemas.OpeningResponse:
    key = theme_id(anime, theme)
    song = None
    if theme.song:
        song = schemas.SongResponse(title=theme.song.title, artists=theme.song.artists)
    return schemas.OpeningResponse(
        theme_id=key,
        type=theme.type,
        sequence=theme.sequence,
        slug=theme.slug,
        display_slug=theme.display_slug,
        song=song,
        video_url=select_best_video(theme, settings.media_base_url),
        rating=ratings.rating_for(key),
        rating_count=ratings.count_for(key),
    )


def anime_view(anime: Anime, themes: list[Theme], ratings: RatingLookup) -> schemas.AnimeResponse:
    return schemas.AnimeResponse(
        id=anime.id,
        name=anime.name,
        english_name=anime.english_name,
        slug=anime.slug,
        year=anime.year,
        season=anime.season,
        media_format=anime.media_format,
        synopsis=anime.synopsis,
        openings=[opening_view(anime, theme, ratings) for theme in themes],
    )


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_search_cooldown(request: Request, gate: CooldownGate = Depends(get_search_gate)) -> None:
    gate.attempt(_client_key(request))


@router.get(
    "/search",
    response_model=schemas.SearchResponse,
    # Route dependencies resolve first: rejected searches never touch the database
    dependencies=[Depends(enforce_search_cooldown)],
)
async def search(
    q: str = Query(..., description="Anime name, English title or synonym"),
    year_min: int | None = Query(None, alias="yearMin"),
    year_max: int | None = Query(None, alias="yearMax"),
    seasons: list[str] = Query([], description="Repeatable, e.g. seasons=Winter&seasons=Fall"),
    rating_min: float | None = Query(None, alias="ratingMin", ge=0, le=10),
    rating_max: float | None = Query(None, alias="ratingMax", ge=0, le=10),
    sort: SortMode = Query(SortMode.RELEVANCE),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: SearchService = Depends(get_search_service),
    ratings: RatingLookup = Depends(get_rating_lookup),
):
    """
    Search openings, then filter, sort and paginate them.

    Each opening carries the ``videoUrl`` of its best video variant, or null
    when no playable video exists.
    """
    results = await service.find_openings(q)
    filters = ResultFilters(
        year_min=year_min,
        year_max=year_max,
        seasons=seasons,
        rating_min=rating_min,
        rating_max=rating_max,
    )
    results = sort_results(apply_filters(results, filters, ratings), sort, ratings)
    result_page = paginate(results, page, limit)

    return schemas.SearchResponse(
        items=[anime_view(result.anime, result.themes, ratings) for result in result_page.items],
        total=result_page.total,
        page=result_page.page,
        limit=result_page.limit,
        has_more=result_page.has_more,
        active_filters=filters.active_count,
    )


@router.get("/discover/random", response_model=schemas.FeaturedOpeningResponse)
async def random_opening(
    service: SearchService = Depends(get_search_service),
    ratings: RatingLookup = Depends(get_rating_lookup),
):
    anime, theme = await service.random_opening()
    return schemas.FeaturedOpeningResponse(
        anime=anime_view(anime, [], ratings),
        opening=opening_view(anime, theme, ratings),
    )


@router.get("/discover/trending", response_model=schemas.TrendingResponse)
async def trending(
    service: SearchService = Depends(get_search_service),
    ratings: RatingLookup = Depends(get_rating_lookup),
):
    """Openings from several popular searches, most rated first."""
    results = collect_openings(await service.trending())
    results = sort_results(results, SortMode.POPULARITY, ratings)
    return schemas.TrendingResponse(
        items=[anime_view(result.anime, result.themes, ratings) for result in results],
        total=len(results),
    )


@router.get("/discover/daily", response_model=schemas.FeaturedOpeningResponse)
async def daily_featured(
    service: SearchService = Depends(get_search_service),
    ratings: RatingLookup = Depends(get_rating_lookup),
):
    anime, theme = await service.daily_featured()
    return schemas.FeaturedOpeningResponse(
        anime=anime_view(anime, [], ratings),
        opening=opening_view(anime, theme, ratings),
    )
