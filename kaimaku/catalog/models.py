"""Catalog records as returned by the AnimeThemes API, after normalization."""

import re
from dataclasses import dataclass, field, asdict
from typing import Any

OPENING = "OP"
ENDING = "ED"

_LATIN_TEXT = re.compile(r"^[a-zA-Z\s]+$")


@dataclass
class Video:
    """One encoding of a theme clip."""

    link: str | None = None
    basename: str | None = None
    mime: str = ""
    resolution: int = 0  # 0 = unknown
    size: int = 0  # bytes, 0 = unknown

    @property
    def locator(self) -> str:
        return self.link or self.basename or ""


@dataclass
class Entry:
    """A version of a theme (e.g. TV cut, later episodes)."""

    videos: list[Video] = field(default_factory=list)
    version: int | None = None
    episodes: str | None = None

    @property
    def has_videos(self) -> bool:
        return bool(self.videos)


@dataclass
class Song:
    title: str | None = None
    artists: list[str] = field(default_factory=list)


@dataclass
class Theme:
    type: str = OPENING
    sequence: int | None = None
    slug: str | None = None
    song: Song | None = None
    entries: list[Entry] = field(default_factory=list)
    id: int | None = None

    @property
    def is_opening(self) -> bool:
        return self.type == OPENING

    @property
    def has_videos(self) -> bool:
        return any(entry.has_videos for entry in self.entries)

    @property
    def display_slug(self) -> str:
        """Slug shown next to the title, empty when it only repeats ``OPn``."""
        number = self.sequence or 1
        if not self.slug:
            return ""
        if self.slug.lower() in (f"op{number}", f"op {number}"):
            return ""
        return self.slug


@dataclass
class Synonym:
    type: str | None = None  # e.g. "English", "English Short", "Native", "Other"
    text: str = ""


@dataclass
class Anime:
    name: str = ""
    id: int | str | None = None
    slug: str | None = None
    year: int | None = None
    season: str | None = None
    media_format: str | None = None
    synopsis: str | None = None
    synonyms: list[Synonym] = field(default_factory=list)
    themes: list[Theme] = field(default_factory=list)

    @property
    def english_name(self) -> str | None:
        """Best-effort English title from the synonym list."""
        for synonym in self.synonyms:
            if synonym.type == "English Short" or (
                synonym.type == "Other" and _LATIN_TEXT.match(synonym.text or "")
            ):
                return synonym.text or None
        for synonym in self.synonyms:
            if synonym.type == "Other":
                return synonym.text or None
        return None

    @property
    def key(self) -> int | str:
        """Identity used for de-duplication."""
        return self.id if self.id is not None else self.name

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def theme_id(anime: Anime, theme: Theme) -> str:
    """
    Build the rating key for an (anime, theme) pair.

    The key is made of display strings, so a rename upstream starts a new
    rating history. Callers must not change this format: existing rows in
    the ratings table are keyed by it.
    """
    anime_name = anime.name or "Unknown"
    theme_type = theme.type or OPENING
    sequence = theme.sequence or 0
    slug = theme.slug or ""
    return f"{anime_name}_{theme_type}_{sequence}_{slug}"


def anime_from_dict(data: dict[str, Any]) -> Anime:
    """Rebuild an ``Anime`` from ``Anime.to_dict`` output (cache round trip)."""
    themes = []
    for raw_theme in data.get("themes") or []:
        song = raw_theme.get("song")
        themes.append(Theme(
            type=raw_theme.get("type") or OPENING,
            sequence=raw_theme.get("sequence"),
            slug=raw_theme.get("slug"),
            song=Song(title=song.get("title"), artists=list(song.get("artists") or [])) if song else None,
            entries=[
                Entry(
                    videos=[Video(**video) for video in raw_entry.get("videos") or []],
                    version=raw_entry.get("version"),
                    episodes=raw_entry.get("episodes"),
                )
                for raw_entry in raw_theme.get("entries") or []
            ],
            id=raw_theme.get("id"),
        ))
    return Anime(
        name=data.get("name") or "",
        id=data.get("id"),
        slug=data.get("slug"),
        year=data.get("year"),
        season=data.get("season"),
        media_format=data.get("media_format"),
        synopsis=data.get("synopsis"),
        synonyms=[Synonym(**synonym) for synonym in data.get("synonyms") or []],
        themes=themes,
    )
