"""Opening result views: filtering, sorting and pagination."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from kaimaku.catalog.models import Anime, Theme, theme_id

T = TypeVar("T")


@dataclass
class OpeningResult:
    """An anime together with its playable openings."""

    anime: Anime
    themes: list[Theme]


@dataclass
class ResultFilters:
    year_min: int | None = None
    year_max: int | None = None
    seasons: list[str] = field(default_factory=list)
    rating_min: float | None = None
    rating_max: float | None = None

    @property
    def active_count(self) -> int:
        count = 0
        if self.year_min is not None or self.year_max is not None:
            count += 1
        if self.seasons:
            count += 1
        if self.rating_min is not None or self.rating_max is not None:
            count += 1
        return count


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    RATING_DESC = "rating-desc"
    RATING_ASC = "rating-asc"
    YEAR_DESC = "year-desc"
    YEAR_ASC = "year-asc"
    ALPHABETICAL = "alphabetical"
    POPULARITY = "popularity"


@dataclass
class RatingLookup:
    """
    Resolve the rating shown for a theme.

    ``personal`` maps ThemeId to the viewer's own rating, ``public`` maps
    ThemeId to server aggregates ({"average": ..., "count": ...}). The
    viewer's own rating wins when present.
    """

    personal: dict[str, float] = field(default_factory=dict)
    public: dict[str, dict] = field(default_factory=dict)

    def rating_for(self, key: str) -> float | None:
        rating = self.personal.get(key)
        if rating:
            return rating
        aggregate = self.public.get(key)
        if aggregate and aggregate.get("average") is not None:
            return aggregate["average"]
        return rating

    def count_for(self, key: str) -> int:
        aggregate = self.public.get(key)
        if not aggregate:
            return 0
        return aggregate.get("count") or 0


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total


def collect_openings(anime_list: list[Anime]) -> list[OpeningResult]:
    """Keep opening themes that have at least one video; drop anime without any."""
    results = []
    for anime in anime_list:
        openings = [theme for theme in anime.themes if theme.is_opening and theme.has_videos]
        if openings:
            results.append(OpeningResult(anime=anime, themes=openings))
    return results


def max_rating(result: OpeningResult, ratings: RatingLookup) -> float:
    best = 0.0
    for theme in result.themes:
        rating = ratings.rating_for(theme_id(result.anime, theme))
        if rating and rating > best:
            best = rating
    return best


def total_rating_count(result: OpeningResult, ratings: RatingLookup) -> int:
    return sum(ratings.count_for(theme_id(result.anime, theme)) for theme in result.themes)


def _within_rating_bounds(result: OpeningResult, filters: ResultFilters, ratings: RatingLookup) -> bool:
    for theme in result.themes:
        rating = ratings.rating_for(theme_id(result.anime, theme))
        if rating is None:
            continue
        if filters.rating_min is not None and rating < filters.rating_min:
            continue
        if filters.rating_max is not None and rating > filters.rating_max:
            continue
        return True
    return False


def apply_filters(
    results: list[OpeningResult],
    filters: ResultFilters,
    ratings: RatingLookup | None = None,
) -> list[OpeningResult]:
    """Apply year, season and rating filters. Unknown years pass year bounds."""
    ratings = ratings or RatingLookup()
    filtered = []
    for result in results:
        year = result.anime.year
        if filters.year_min is not None and year and year < filters.year_min:
            continue
        if filters.year_max is not None and year and year > filters.year_max:
            continue

        if filters.seasons:
            season = result.anime.season or ""
            if not any(wanted in season for wanted in filters.seasons):
                continue

        if filters.rating_min is not None or filters.rating_max is not None:
            if not _within_rating_bounds(result, filters, ratings):
                continue

        filtered.append(result)
    return filtered


def sort_results(
    results: list[OpeningResult],
    mode: SortMode | str = SortMode.RELEVANCE,
    ratings: RatingLookup | None = None,
) -> list[OpeningResult]:
    """Return a sorted copy; ``relevance`` keeps the catalog order."""
    mode = SortMode(mode)
    ratings = ratings or RatingLookup()

    if mode == SortMode.RELEVANCE:
        return list(results)
    if mode == SortMode.RATING_DESC:
        return sorted(results, key=lambda r: max_rating(r, ratings), reverse=True)
    if mode == SortMode.RATING_ASC:
        return sorted(results, key=lambda r: max_rating(r, ratings))
    if mode == SortMode.YEAR_DESC:
        return sorted(results, key=lambda r: r.anime.year or 0, reverse=True)
    if mode == SortMode.YEAR_ASC:
        return sorted(results, key=lambda r: r.anime.year or 0)
    if mode == SortMode.ALPHABETICAL:
        return sorted(results, key=lambda r: (r.anime.name or "").lower())
    return sorted(results, key=lambda r: total_rating_count(r, ratings), reverse=True)


def paginate(items: list[T], page: int = 1, limit: int = 20) -> Page[T]:
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return Page(items=items[start:start + limit], total=len(items), page=page, limit=limit)
