"""Client-side text matching over catalog results.

The upstream search is unreliable (it misses English titles and partial
names), so results are re-filtered here with a permissive, recall-biased
matcher: substring of the whole query first, then AND-of-words.
"""

from kaimaku.catalog.models import Anime


def searchable_fields(anime: Anime) -> list[str]:
    """Lower-cased name, slug and synonym texts, empty values dropped."""
    fields = [(anime.name or "").lower(), (anime.slug or "").lower()]
    fields.extend((synonym.text or "").lower() for synonym in anime.synonyms)
    return [text for text in fields if text]


def matches_query(anime: Anime, query: str) -> bool:
    query_lower = query.lower().strip()
    if not query_lower:
        return True

    fields = searchable_fields(anime)
    if any(query_lower in text for text in fields):
        return True

    words = query_lower.split()
    if len(words) > 1:
        # Words may be satisfied by different fields
        return all(any(word in text for text in fields) for word in words)

    return False


def filter_anime(anime_list: list[Anime], query: str) -> list[Anime]:
    """Keep the anime whose name, slug or any synonym matches ``query``.

    Order is preserved; a blank query returns the input unchanged.
    """
    if not query or not query.strip():
        return anime_list
    return [anime for anime in anime_list if matches_query(anime, query)]
