"""Top rated openings."""

from dataclasses import dataclass

LEADERBOARD_SIZE = 10


@dataclass
class LeaderboardEntry:
    rank: int
    theme_id: str
    anime_name: str
    theme_label: str
    rating: float
    rating_count: int | None = None


def anime_name_from_theme_id(key: str) -> str:
    """Best-effort anime name: everything before the first underscore."""
    return key.split("_")[0] or "Unknown"


def build_leaderboard(
    public_ratings: dict[str, dict] | None,
    local_ratings: dict[str, float] | None = None,
    local_metadata: dict[str, dict] | None = None,
    limit: int = LEADERBOARD_SIZE,
) -> list[LeaderboardEntry]:
    """
    Rank openings by rating, highest first.

    Server averages are used whenever any are available; otherwise the
    viewer's locally cached ratings. Ratings of 0 or below are placeholders
    and never ranked. Ties keep the input order.
    """
    public_ratings = public_ratings or {}
    local_metadata = local_metadata or {}

    if public_ratings:
        scores = {
            key: aggregate.get("average") or 0
            for key, aggregate in public_ratings.items()
        }
    else:
        scores = dict(local_ratings or {})

    ranked = [(key, rating) for key, rating in scores.items() if rating and rating > 0]
    ranked.sort(key=lambda item: item[1], reverse=True)

    entries = []
    for index, (key, rating) in enumerate(ranked[:limit]):
        metadata = local_metadata.get(key) or {}
        public = public_ratings.get(key) or {}

        anime_name = (
            public.get("animeName")
            or metadata.get("animeName")
            or anime_name_from_theme_id(key)
        )
        sequence = metadata.get("themeSequence") or public.get("themeSequence") or 1
        label = metadata.get("themeSlug") or f"OP{sequence}"

        entries.append(LeaderboardEntry(
            rank=index + 1,
            theme_id=key,
            anime_name=anime_name,
            theme_label=label,
            rating=float(rating),
            rating_count=public.get("count"),
        ))
    return entries
