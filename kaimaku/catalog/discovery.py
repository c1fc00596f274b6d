"""Discovery helpers: random, trending and daily featured openings."""

import random
from datetime import date

from kaimaku.catalog.models import Anime, Theme
from kaimaku.catalog.results import OpeningResult, collect_openings

POPULAR_QUERIES = [
    "naruto", "one piece", "attack on titan", "demon slayer", "jujutsu kaisen",
    "my hero academia", "death note", "fullmetal alchemist", "dragon ball", "bleach",
    "tokyo ghoul", "hunter x hunter", "one punch man", "mob psycho", "spy x family",
]

TRENDING_QUERY_COUNT = 5
DAILY_FALLBACK_QUERY = "attack on titan"


def dedupe_anime(anime_lists: list[list[Anime]]) -> list[Anime]:
    """Concatenate result lists, keeping the first occurrence of each anime."""
    seen = set()
    unique = []
    for anime_list in anime_lists:
        for anime in anime_list:
            if anime.key in seen:
                continue
            seen.add(anime.key)
            unique.append(anime)
    return unique


def pick_random_opening(anime_list: list[Anime], rng: random.Random | None = None) -> tuple[Anime, Theme] | None:
    rng = rng or random.Random()
    openings = [
        (result.anime, theme)
        for result in collect_openings(anime_list)
        for theme in result.themes
    ]
    if not openings:
        return None
    return rng.choice(openings)


def pick_daily_featured(results: list[OpeningResult], today: date | None = None) -> tuple[Anime, Theme] | None:
    """Same pick for everyone on a given day: day-of-year modulo result count."""
    if not results:
        return None
    today = today or date.today()
    featured = results[today.timetuple().tm_yday % len(results)]
    if not featured.themes:
        return None
    return featured.anime, featured.themes[0]
