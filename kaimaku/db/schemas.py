"""Pydantic schemas for API request/response validation.

The browser build speaks camelCase JSON, so every schema accepts and emits
camelCase aliases while Python code uses snake_case field names.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Auth Schemas ============

class RegisterRequest(CamelModel):
    username: str
    password: str
    captcha_id: str | None = None
    captcha_answer: int | str | None = None


class LoginRequest(CamelModel):
    username: str
    password: str


class AuthResponse(CamelModel):
    success: bool = True
    username: str


class SuccessResponse(CamelModel):
    success: bool = True


class MeResponse(CamelModel):
    username: str


class CaptchaResponse(CamelModel):
    id: str
    question: str


# ============ Rating Schemas ============

class RatingMetadata(CamelModel):
    """Snapshot of catalog fields stored alongside a rating."""
    anime_name: str | None = None
    anime_slug: str | None = None
    theme_sequence: int | None = None


class RatingRequest(CamelModel):
    theme_id: str
    rating: float  # Range is checked by RatingService for a friendlier message
    metadata: RatingMetadata | None = None


class AggregatedRating(CamelModel):
    count: int
    average: float


class ThemeRatingResponse(CamelModel):
    theme_id: str
    user_id: str
    rating: float
    timestamp: datetime
    aggregated: AggregatedRating


class SaveRatingResponse(CamelModel):
    success: bool = True
    theme_rating: ThemeRatingResponse


class UserRatingsResponse(CamelModel):
    ratings: dict[str, dict]


class LeaderboardEntryResponse(CamelModel):
    rank: int
    theme_id: str
    anime_name: str
    theme_label: str
    rating: float
    rating_count: int | None = None


class LeaderboardResponse(CamelModel):
    entries: list[LeaderboardEntryResponse]


# ============ Catalog Schemas ============

class SongResponse(CamelModel):
    title: str | None = None
    artists: list[str] = []


class OpeningResponse(CamelModel):
    theme_id: str
    type: str
    sequence: int | None = None
    slug: str | None = None
    display_slug: str = ""
    song: SongResponse | None = None
    video_url: str | None = None
    rating: float | None = None
    rating_count: int = 0


class AnimeResponse(CamelModel):
    id: int | str | None = None
    name: str
    english_name: str | None = None
    slug: str | None = None
    year: int | None = None
    season: str | None = None
    media_format: str | None = None
    synopsis: str | None = None
    openings: list[OpeningResponse] = []


class SearchResponse(CamelModel):
    items: list[AnimeResponse]
    total: int
    page: int
    limit: int
    has_more: bool
    active_filters: int = 0


class FeaturedOpeningResponse(CamelModel):
    anime: AnimeResponse
    opening: OpeningResponse


class TrendingResponse(CamelModel):
    items: list[AnimeResponse]
    total: int = Field(ge=0)
