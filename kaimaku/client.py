"""
Async client for the Kaimaku API.

Holds what a browser session would: the login cookie, the local rating
cache (``AppState``) and one ``Player``. Ratings are written locally first
and then to the server, so the local cache keeps the user's rating even
when the server write fails.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

import httpx

from kaimaku.catalog.leaderboard import LeaderboardEntry, build_leaderboard
from kaimaku.catalog.models import Anime, Theme, theme_id
from kaimaku.catalog.playback import PlaybackState, Player
from kaimaku.catalog.state import (
    AppState,
    dump_local_store,
    load_local_store,
    merge_user_ratings,
    record_rating,
    with_current_theme,
    with_public_ratings,
    with_search_results,
)
from kaimaku.catalog.video import select_best_video
from kaimaku.config import get_settings
from kaimaku.core.captcha import new_challenge
from kaimaku.core.cooldown import CooldownGate
from kaimaku.core.errors import (
    AuthenticationRequired,
    AuthError,
    CooldownActive,
    InvalidCredentials,
    KaimakuError,
    NoResultsError,
    SessionExpired,
    StoreError,
    StoreUnavailable,
    UpstreamUnavailable,
    ValidationError,
)
from kaimaku.services.rating_service import validate_rating

logger = logging.getLogger(__name__)
settings = get_settings()

_ERRORS_BY_STATUS: dict[int, type[KaimakuError]] = {
    400: ValidationError,
    404: NoResultsError,
    500: StoreError,
}

# 401 bodies differ only by message
_AUTH_ERRORS_BY_MESSAGE: dict[str, type[AuthError]] = {
    cls.default_message: cls for cls in (AuthenticationRequired, SessionExpired, InvalidCredentials)
}


def raise_for_error(response: httpx.Response) -> None:
    """Turn an ``{"error": message}`` response back into a KaimakuError."""
    if response.is_success:
        return
    try:
        message = response.json().get("error")
    except (ValueError, AttributeError):
        message = None

    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        raise CooldownActive(float(retry_after) if retry_after else 0.0)
    if response.status_code == 503:
        path = response.request.url.path
        if "rating" in path or "leaderboard" in path:
            raise StoreUnavailable(message)
        raise UpstreamUnavailable(message)
    if response.status_code == 401:
        raise _AUTH_ERRORS_BY_MESSAGE.get(message, AuthError)(message)

    raise _ERRORS_BY_STATUS.get(response.status_code, KaimakuError)(message)


class KaimakuClient:
    """
    Usage:
        async with KaimakuClient("http://localhost:8000") as client:
            await client.login("alice", "secret123")
            page = await client.search("naruto")
            await client.rate(anime, theme, 8.5)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        transport: httpx.AsyncBaseTransport | None = None,
        state: AppState | None = None,
        rating_cooldown_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=settings.http_request_timeout,
        )
        self.state = state or AppState()
        self.player = Player()
        self.username: str | None = None
        cooldown = (
            rating_cooldown_seconds
            if rating_cooldown_seconds is not None
            else settings.rating_cooldown_seconds
        )
        self.rating_gate = CooldownGate(cooldown, action="rating again", clock=clock)

    async def __aenter__(self) -> "KaimakuClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._http.request(method, path, **kwargs)
        raise_for_error(response)
        return response.json()

    # ============ Auth ============

    async def register(self, username: str, password: str) -> str:
        """Register, answering the CAPTCHA with the shared generator."""
        challenge = new_challenge()
        data = await self._request("POST", "/api/register", json={
            "username": username,
            "password": password,
            "captchaId": challenge.id,
            "captchaAnswer": challenge.answer,
        })
        self.username = data["username"]
        await self.load_user_ratings()
        return self.username

    async def login(self, username: str, password: str) -> str:
        data = await self._request("POST", "/api/login", json={
            "username": username,
            "password": password,
        })
        self.username = data["username"]
        await self.load_user_ratings()
        return self.username

    async def logout(self) -> None:
        await self._request("POST", "/api/logout")
        self.username = None
        self._http.cookies.clear()

    async def me(self) -> str:
        data = await self._request("GET", "/api/me")
        return data["username"]

    # ============ Catalog ============

    async def search(self, query: str, page: int = 1, limit: int = 20) -> dict[str, Any]:
        """Search with the state's active filters and sort mode."""
        filters = self.state.filters
        params: dict[str, Any] = {
            "q": query,
            "sort": self.state.sort.value,
            "page": page,
            "limit": limit,
        }
        optional = {
            "yearMin": filters.year_min,
            "yearMax": filters.year_max,
            "ratingMin": filters.rating_min,
            "ratingMax": filters.rating_max,
        }
        params.update({key: value for key, value in optional.items() if value is not None})
        if filters.seasons:
            params["seasons"] = list(filters.seasons)

        data = await self._request("GET", "/api/search", params=params)
        self.state = with_search_results(self.state, data["items"])
        return data

    # ============ Ratings ============

    async def load_public_ratings(self) -> dict[str, dict]:
        ratings = await self._request("GET", "/api/ratings")
        self.state = with_public_ratings(self.state, ratings)
        return ratings

    async def load_user_ratings(self) -> dict[str, dict]:
        """Merge the server copy of the user's ratings into the local cache."""
        data = await self._request("GET", "/api/my-ratings")
        self.state = merge_user_ratings(self.state, data["ratings"])
        return data["ratings"]

    async def rate(self, anime: Anime, theme: Theme, rating: float) -> dict[str, Any]:
        """
        Rate an opening.

        Raises CooldownActive when the same opening was rated too recently,
        AuthenticationRequired when nobody is logged in, and SessionExpired
        when the server rejects a login that has run out.
        """
        value = validate_rating(rating)
        key = theme_id(anime, theme)
        self.rating_gate.attempt(key)

        metadata = {
            "animeName": anime.name,
            "animeSlug": anime.slug,
            "themeSequence": theme.sequence,
        }
        self.state = record_rating(
            self.state, key, value, {**metadata, "themeSlug": theme.slug or f"OP{theme.sequence or 1}"}
        )

        try:
            data = await self._request("POST", "/api/ratings", json={
                "themeId": key,
                "rating": value,
                "metadata": metadata,
            })
        except SessionExpired:
            self.username = None
            raise
        except AuthError:
            # A pruned session looks anonymous to the server
            if self.username is not None and await self._session_expired():
                self.username = None
                raise SessionExpired()
            raise

        aggregated = data["themeRating"]["aggregated"]
        public = {**self.state.public_ratings, key: {**self.state.public_ratings.get(key, {}), **aggregated}}
        self.state = with_public_ratings(self.state, public)
        return data["themeRating"]

    async def _session_expired(self) -> bool:
        try:
            await self.me()
        except AuthError:
            return True
        return False

    async def leaderboard(self) -> list[LeaderboardEntry]:
        """Top openings from server averages, falling back to local ratings."""
        try:
            await self.load_public_ratings()
        except (KaimakuError, httpx.HTTPError) as e:
            logger.warning(f"Could not load public ratings, using local ratings: {e}")
        return build_leaderboard(self.state.public_ratings, self.state.ratings, self.state.theme_metadata)

    # ============ Playback ============

    def play(self, opening: Theme | dict[str, Any], anime: Anime | None = None) -> PlaybackState:
        """
        Load an opening into the player.

        ``opening`` is either a catalog ``Theme`` (best video picked here) or
        an opening item from a search response (its ``videoUrl`` is used).
        Without a playable video the player moves to the error state.
        """
        if isinstance(opening, Theme):
            url = select_best_video(opening, settings.media_base_url)
            key = theme_id(anime, opening) if anime is not None else None
        else:
            url = opening.get("videoUrl")
            key = opening.get("themeId")

        self.state = with_current_theme(self.state, key)
        if not url:
            return self.player.fail("No video available")
        return self.player.load(url)

    # ============ Local store ============

    def save_state(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(dump_local_store(self.state)), encoding="utf-8")

    def load_state(self, path: str | Path) -> AppState:
        """Restore the local rating cache; a missing or corrupt file starts empty."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            data = None
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt state file {path}: {e}")
            data = None
        self.state = load_local_store(data)
        return self.state
