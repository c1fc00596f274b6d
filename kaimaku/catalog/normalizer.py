"""
Normalization of AnimeThemes API payloads.

The catalog answers with a different envelope depending on the endpoint:

    /search/   -> {"search": {"anime": [...], "animethemes": [...], ...}}
    /anime/    -> {"anime": [...], "links": {...}, "meta": {...}}
    JSON:API   -> {"data": [...], "included": [...]}
    proxies    -> [...]

``classify_response`` maps a payload onto one of these known shapes (or
``UnrecognizedResponse``) and ``normalize_response`` turns it into a flat
list of ``Anime`` records. Nothing in this module raises on bad input:
an unknown shape or a malformed item simply contributes nothing.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Union

from kaimaku.catalog.models import Anime, Entry, Song, Synonym, Theme, Video, OPENING

logger = logging.getLogger(__name__)

# Relationship nesting in the catalog is anime -> theme -> entry -> video
MAX_RELATIONSHIP_DEPTH = 4


@dataclass
class GlobalSearchResponse:
    items: list[Any]
    kind: str = "global_search"


@dataclass
class ResourceCollectionResponse:
    items: list[Any]
    meta: dict = field(default_factory=dict)
    links: dict = field(default_factory=dict)
    kind: str = "resource_collection"


@dataclass
class DataWrapperResponse:
    items: list[Any]
    included: list[Any] = field(default_factory=list)
    kind: str = "data_wrapper"


@dataclass
class BareListResponse:
    items: list[Any]
    kind: str = "bare_list"


@dataclass
class UnrecognizedResponse:
    keys: list[str] = field(default_factory=list)
    items: list[Any] = field(default_factory=list)
    kind: str = "unrecognized"


CatalogResponse = Union[
    GlobalSearchResponse,
    ResourceCollectionResponse,
    DataWrapperResponse,
    BareListResponse,
    UnrecognizedResponse,
]


def classify_response(payload: Any) -> CatalogResponse:
    """Identify which envelope a payload uses, in priority order."""
    if isinstance(payload, dict):
        search = payload.get("search")
        if isinstance(search, dict) and isinstance(search.get("anime"), list):
            return GlobalSearchResponse(items=search["anime"])

        if isinstance(payload.get("anime"), list):
            meta = payload.get("meta")
            links = payload.get("links")
            return ResourceCollectionResponse(
                items=payload["anime"],
                meta=meta if isinstance(meta, dict) else {},
                links=links if isinstance(links, dict) else {},
            )

        if isinstance(payload.get("data"), list):
            included = payload.get("included")
            return DataWrapperResponse(
                items=payload["data"],
                included=included if isinstance(included, list) else [],
            )

        return UnrecognizedResponse(keys=sorted(str(key) for key in payload.keys()))

    if isinstance(payload, list):
        return BareListResponse(items=payload)

    return UnrecognizedResponse()


def normalize_response(payload: Any, url: str = "") -> list[Anime]:
    """Extract a uniform anime list from any supported payload shape."""
    response = classify_response(payload)

    if isinstance(response, UnrecognizedResponse):
        logger.warning(f"Unexpected catalog response structure from {url}: keys={response.keys}")
        return []

    logger.debug(f"Catalog response from {url} is {response.kind} with {len(response.items)} items")

    included = response.included if isinstance(response, DataWrapperResponse) else []
    included_map = _index_included(included)

    anime_list = []
    for raw in response.items:
        flat = flatten_resource(raw, included_map)
        anime = parse_anime(flat)
        if anime is not None:
            anime_list.append(anime)
    return anime_list


def _index_included(included: Iterable[Any]) -> dict[tuple[str, str], dict]:
    index = {}
    for resource in included:
        if isinstance(resource, dict) and resource.get("type") and resource.get("id") is not None:
            index[(str(resource["type"]), str(resource["id"]))] = resource
    return index


def flatten_resource(
    resource: Any,
    included_map: dict[tuple[str, str], dict] | None = None,
    depth: int = 0,
) -> Any:
    """
    Turn a JSON:API resource into the flat dict shape the catalog uses natively.

    Attributes are lifted to the top level, and relationship references are
    replaced by the matching ``included`` resources (flattened in turn).
    References that are not in ``included`` are dropped. Resources without
    ``attributes`` are already flat and returned untouched.
    """
    if not isinstance(resource, dict) or not isinstance(resource.get("attributes"), dict):
        return resource

    flat = dict(resource["attributes"])
    flat["id"] = resource.get("id")
    # The resource type must not clobber a theme's own "type" attribute (OP/ED)
    flat["resource_type"] = resource.get("type")

    relationships = resource.get("relationships")
    if not isinstance(relationships, dict) or depth >= MAX_RELATIONSHIP_DEPTH:
        return flat

    included_map = included_map or {}
    for name, relationship in relationships.items():
        data = relationship.get("data") if isinstance(relationship, dict) else None
        if isinstance(data, list):
            resolved = [_resolve_reference(ref, included_map, depth) for ref in data]
            flat[name] = [item for item in resolved if item is not None]
        elif isinstance(data, dict):
            flat[name] = _resolve_reference(data, included_map, depth)
    return flat


def _resolve_reference(ref: Any, included_map: dict, depth: int) -> dict | None:
    if not isinstance(ref, dict):
        return None
    if "attributes" in ref:
        return flatten_resource(ref, included_map, depth + 1)
    if not ref.get("type") or ref.get("id") is None:
        return None
    resource = included_map.get((str(ref["type"]), str(ref["id"])))
    if resource is None:
        return None
    return flatten_resource(resource, included_map, depth + 1)


def _as_int(value: Any, default: int | None = 0) -> int | None:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _dict_list(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def parse_video(raw: dict) -> Video:
    return Video(
        link=_as_str(raw.get("link")),
        basename=_as_str(raw.get("basename")),
        mime=_as_str(raw.get("mimetype") or raw.get("mime")) or "",
        resolution=_as_int(raw.get("resolution")) or 0,
        size=_as_int(raw.get("size")) or 0,
    )


def parse_theme(raw: dict) -> Theme:
    song = None
    raw_song = raw.get("song")
    if isinstance(raw_song, dict):
        artists = []
        for artist in raw_song.get("artists") or []:
            name = artist.get("name") if isinstance(artist, dict) else artist
            if isinstance(name, str) and name:
                artists.append(name)
        song = Song(title=_as_str(raw_song.get("title")), artists=artists)

    entries = [
        Entry(
            videos=[parse_video(video) for video in _dict_list(entry.get("videos"))],
            version=_as_int(entry.get("version"), default=None),
            episodes=_as_str(entry.get("episodes")),
        )
        for entry in _dict_list(raw.get("animethemeentries"))
    ]

    return Theme(
        type=_as_str(raw.get("type")) or OPENING,
        sequence=_as_int(raw.get("sequence"), default=None),
        slug=_as_str(raw.get("slug")),
        song=song,
        entries=entries,
        id=_as_int(raw.get("id"), default=None),
    )


def parse_anime(raw: Any) -> Anime | None:
    """Parse one flat anime dict; ``None`` for anything that is not an anime."""
    if not isinstance(raw, dict):
        return None

    name = raw.get("name") or raw.get("title")
    if not isinstance(name, str):
        name = ""

    synonyms = [
        Synonym(type=_as_str(synonym.get("type")), text=_as_str(synonym.get("text")) or "")
        for synonym in _dict_list(raw.get("animesynonyms"))
    ]

    return Anime(
        name=name,
        id=raw.get("id"),
        slug=_as_str(raw.get("slug")),
        year=_as_int(raw.get("year"), default=None),
        season=_as_str(raw.get("season")),
        media_format=_as_str(raw.get("media_format")),
        synopsis=_as_str(raw.get("synopsis")),
        synonyms=synonyms,
        themes=[parse_theme(theme) for theme in _dict_list(raw.get("animethemes"))],
    )


def merge_synonyms(anime_list: list[Anime], synonym_source: list[Anime]) -> list[Anime]:
    """
    Fill in missing synonyms from a second fetch of the same anime.

    Anime that already carry synonyms, or that the second fetch does not
    know about, are left as they are.
    """
    by_id = {
        str(anime.id): anime.synonyms
        for anime in synonym_source
        if anime.id is not None and anime.synonyms
    }
    merged = []
    for anime in anime_list:
        if not anime.synonyms and str(anime.id) in by_id:
            anime = replace(anime, synonyms=by_id[str(anime.id)])
        merged.append(anime)
    return merged
