"""
Client application state.

Everything the client remembers between actions lives in one ``AppState``
value. The helpers below return updated copies instead of mutating shared
globals, and persistence goes through ``dump_local_store`` /
``load_local_store`` only.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from kaimaku.catalog.results import ResultFilters, SortMode

# Local store keys kept compatible with the browser build
RATINGS_KEY = "kaimaku"
METADATA_KEY = "themeMetadata"


@dataclass(frozen=True)
class AppState:
    search_results: tuple[dict, ...] = ()  # items of the last search page, as served
    filters: ResultFilters = field(default_factory=ResultFilters)
    sort: SortMode = SortMode.RELEVANCE
    ratings: dict[str, float] = field(default_factory=dict)
    theme_metadata: dict[str, dict] = field(default_factory=dict)
    public_ratings: dict[str, dict] = field(default_factory=dict)
    current_theme_id: str | None = None


def record_rating(
    state: AppState,
    key: str,
    rating: float,
    metadata: dict[str, Any] | None = None,
) -> AppState:
    ratings = {**state.ratings, key: float(rating)}
    theme_metadata = dict(state.theme_metadata)
    if metadata:
        theme_metadata[key] = {**theme_metadata.get(key, {}), **metadata}
    return replace(state, ratings=ratings, theme_metadata=theme_metadata)


def merge_user_ratings(state: AppState, user_ratings: dict[str, dict]) -> AppState:
    """
    Fold the server's copy of the user's ratings into the local cache.

    Server values win. Metadata is only overwritten when the server row
    actually carries an anime name.
    """
    ratings = dict(state.ratings)
    theme_metadata = dict(state.theme_metadata)
    for key, row in user_ratings.items():
        if row.get("rating") is None:
            continue
        ratings[key] = float(row["rating"])
        if row.get("animeName"):
            theme_metadata[key] = {
                **theme_metadata.get(key, {}),
                "animeName": row.get("animeName"),
                "animeSlug": row.get("animeSlug"),
                "themeSequence": row.get("themeSequence"),
            }
    return replace(state, ratings=ratings, theme_metadata=theme_metadata)


def with_public_ratings(state: AppState, public_ratings: dict[str, dict]) -> AppState:
    return replace(state, public_ratings=dict(public_ratings))


def with_search_results(state: AppState, results: list[dict]) -> AppState:
    return replace(state, search_results=tuple(results))


def with_view(
    state: AppState,
    filters: ResultFilters | None = None,
    sort: SortMode | str | None = None,
) -> AppState:
    """Change the active filters and/or sort mode, keeping everything else."""
    return replace(
        state,
        filters=filters if filters is not None else state.filters,
        sort=SortMode(sort) if sort is not None else state.sort,
    )


def with_current_theme(state: AppState, key: str | None) -> AppState:
    return replace(state, current_theme_id=key)


def dump_local_store(state: AppState) -> dict[str, Any]:
    """The JSON-serializable part of the state that survives restarts."""
    return {
        RATINGS_KEY: dict(state.ratings),
        METADATA_KEY: dict(state.theme_metadata),
    }


def load_local_store(data: dict[str, Any] | None) -> AppState:
    """Rebuild state from ``dump_local_store`` output; bad values are skipped."""
    data = data or {}
    ratings = {}
    raw_ratings = data.get(RATINGS_KEY)
    if isinstance(raw_ratings, dict):
        for key, value in raw_ratings.items():
            try:
                ratings[str(key)] = float(value)
            except (TypeError, ValueError):
                continue

    metadata = {}
    raw_metadata = data.get(METADATA_KEY)
    if isinstance(raw_metadata, dict):
        metadata = {str(key): value for key, value in raw_metadata.items() if isinstance(value, dict)}

    return AppState(ratings=ratings, theme_metadata=metadata)
