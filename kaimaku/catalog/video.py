"""Pick the video variant that starts playing fastest."""

import functools
from dataclasses import dataclass
from urllib.parse import urljoin

from kaimaku.catalog.models import Theme, Video

DEFAULT_MEDIA_BASE = "https://animethemes.moe"


@dataclass
class VideoCandidate:
    video: Video
    url: str
    mime: str
    resolution: int
    size: int

    @property
    def is_webm(self) -> bool:
        return "webm" in self.mime


def resolve_locator(locator: str, media_base_url: str = DEFAULT_MEDIA_BASE) -> str:
    if locator.startswith(("http://", "https://")):
        return locator
    return urljoin(media_base_url.rstrip("/") + "/", locator.lstrip("/"))


def collect_candidates(theme: Theme, media_base_url: str = DEFAULT_MEDIA_BASE) -> list[VideoCandidate]:
    """All videos of all entries that have a usable locator, in encounter order."""
    candidates = []
    for entry in theme.entries:
        for video in entry.videos:
            locator = video.locator
            if not locator:
                continue
            candidates.append(VideoCandidate(
                video=video,
                url=resolve_locator(locator, media_base_url),
                mime=video.mime or "",
                resolution=video.resolution or 0,
                size=video.size or 0,
            ))
    return candidates


def _compare(a: VideoCandidate, b: VideoCandidate) -> int:
    # WebM compresses better than MP4 at the same quality
    if a.is_webm and not b.is_webm:
        return -1
    if b.is_webm and not a.is_webm:
        return 1

    if a.size > 0 and b.size > 0:
        return a.size - b.size

    if a.resolution > 0 and b.resolution > 0:
        return a.resolution - b.resolution

    return 0


def rank_candidates(candidates: list[VideoCandidate]) -> list[VideoCandidate]:
    # sorted() is stable, so ties keep encounter order
    return sorted(candidates, key=functools.cmp_to_key(_compare))


def select_best_video(theme: Theme, media_base_url: str = DEFAULT_MEDIA_BASE) -> str | None:
    """
    Return the URL of the best video for ``theme``.

    Returns None when no entry has a playable video.
    """
    candidates = collect_candidates(theme, media_base_url)
    if not candidates:
        return None
    return rank_candidates(candidates)[0].url
