"""Builders for catalog records used across tests."""

from kaimaku.catalog.models import Anime, Entry, Song, Synonym, Theme, Video


def make_theme(sequence=1, slug=None, videos=None, type="OP", title="Song"):
    if videos is None:
        videos = [Video(link=f"https://v.animethemes.moe/Show-OP{sequence}.webm", mime="video/webm", resolution=720, size=1000)]
    return Theme(
        type=type,
        sequence=sequence,
        slug=slug if slug is not None else f"OP{sequence}",
        song=Song(title=title, artists=["Artist"]),
        entries=[Entry(videos=videos)],
    )


def make_anime(name, id=None, slug=None, synonyms=(), themes=None, year=None, season=None):
    return Anime(
        name=name,
        id=id,
        slug=slug,
        year=year,
        season=season,
        synonyms=[Synonym(type="Other", text=text) for text in synonyms],
        themes=themes if themes is not None else [make_theme()],
    )
