import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import delete, update

from kaimaku.catalog.models import theme_id
from kaimaku.catalog.playback import PlaybackState
from kaimaku.catalog.state import AppState
from kaimaku.client import KaimakuClient
from kaimaku.core.errors import AuthenticationRequired, CooldownActive, SessionExpired, ValidationError
from kaimaku.db.models import UserSession, utcnow

from tests.factories import make_anime, make_theme


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_client(app, clock=None):
    return KaimakuClient(
        base_url="http://testserver",
        transport=httpx.ASGITransport(app=app),
        clock=clock or FakeClock(),
    )


def test_register_rate_and_leaderboard(app_overrides):
    anime = make_anime("Naruto", slug="naruto")
    theme = make_theme(sequence=1)
    key = theme_id(anime, theme)

    async def scenario():
        async with make_client(app_overrides) as client:
            assert await client.register("alice", "secret123") == "alice"
            saved = await client.rate(anime, theme, 8.5)
            assert saved["aggregated"] == {"count": 1, "average": 8.5}
            assert client.state.ratings == {key: 8.5}
            assert client.state.theme_metadata[key]["themeSlug"] == "OP1"
            entries = await client.leaderboard()
            return entries, await client.me()

    entries, username = asyncio.run(scenario())
    assert username == "alice"
    assert entries[0].theme_id == key
    assert entries[0].anime_name == "Naruto"


def test_login_merges_server_ratings(app_overrides):
    anime = make_anime("Bleach")
    theme = make_theme(sequence=2)

    async def scenario():
        async with make_client(app_overrides) as client:
            await client.register("alice", "secret123")
            await client.rate(anime, theme, 7)
            await client.logout()

        async with make_client(app_overrides) as fresh:
            await fresh.login("alice", "secret123")
            return fresh.state

    state = asyncio.run(scenario())
    key = theme_id(anime, theme)
    assert state.ratings == {key: 7.0}
    assert state.theme_metadata[key]["animeName"] == "Bleach"


def test_local_cooldown_per_opening(app_overrides):
    clock = FakeClock()
    anime = make_anime("Naruto")
    first, second = make_theme(sequence=1), make_theme(sequence=2)

    async def scenario():
        async with make_client(app_overrides, clock) as client:
            await client.register("alice", "secret123")
            await client.rate(anime, first, 5)
            with pytest.raises(CooldownActive):
                await client.rate(anime, first, 6)
            await client.rate(anime, second, 6)
            clock.now += 1
            await client.rate(anime, first, 9)
            return client.state.ratings

    ratings = asyncio.run(scenario())
    assert ratings[theme_id(anime, first)] == 9.0


def test_invalid_rating_is_rejected_locally(app_overrides):
    async def scenario():
        async with make_client(app_overrides) as client:
            with pytest.raises(ValidationError):
                await client.rate(make_anime("A"), make_theme(), 11)
            return client.state.ratings

    assert asyncio.run(scenario()) == {}


def test_expired_session_is_reported(app_overrides, session_factory):
    anime = make_anime("Naruto")
    theme = make_theme()

    async def scenario():
        async with make_client(app_overrides) as client:
            await client.register("alice", "secret123")
            async with session_factory() as db:
                await db.execute(update(UserSession).values(expire=utcnow() - timedelta(minutes=1)))
                await db.commit()
            with pytest.raises(SessionExpired):
                await client.rate(anime, theme, 4)
            return client

    client = asyncio.run(scenario())
    # The local cache keeps the rating even though the server refused it
    assert client.state.ratings == {theme_id(anime, theme): 4.0}
    assert client.username is None


def test_anonymous_rating_needs_login(app_overrides):
    async def scenario():
        async with make_client(app_overrides) as client:
            with pytest.raises(AuthenticationRequired) as exc:
                await client.rate(make_anime("Naruto"), make_theme(sequence=1), 5)
            return exc.value

    error = asyncio.run(scenario())
    assert not isinstance(error, SessionExpired)


def test_pruned_session_is_reported_as_expired(app_overrides, session_factory):
    async def scenario():
        async with make_client(app_overrides) as client:
            await client.register("alice", "secret123")
            async with session_factory() as db:
                await db.execute(delete(UserSession))
                await db.commit()
            with pytest.raises(SessionExpired):
                await client.rate(make_anime("Naruto"), make_theme(), 6)
            return client.username

    assert asyncio.run(scenario()) is None


def test_leaderboard_falls_back_to_local_ratings():
    def unreachable(request):
        raise httpx.ConnectError("down", request=request)

    client = KaimakuClient(base_url="http://testserver", transport=httpx.MockTransport(unreachable))
    client.state = AppState(
        ratings={"Naruto_OP_1_OP1": 9.0, "Bleach_OP_1_OP1": 0},
        theme_metadata={"Naruto_OP_1_OP1": {"animeName": "Naruto", "themeSlug": "OP1"}},
    )

    entries = asyncio.run(client.leaderboard())
    assert [e.theme_id for e in entries] == ["Naruto_OP_1_OP1"]
    assert entries[0].theme_label == "OP1"
    asyncio.run(client.close())


def test_search_uses_state_filters(app_overrides):
    async def scenario():
        async with make_client(app_overrides) as client:
            return await client.search("naruto"), client.state

    data, state = asyncio.run(scenario())
    assert data["total"] == 2
    assert len(state.search_results) == 2


def test_play_theme_and_search_item():
    client = KaimakuClient()
    anime = make_anime("Naruto")

    assert client.play(make_theme(), anime) == PlaybackState.LOADING
    assert client.player.source == "https://v.animethemes.moe/Show-OP1.webm"
    assert client.state.current_theme_id == "Naruto_OP_1_OP1"

    assert client.play({"themeId": "X_OP_1_", "videoUrl": None}) == PlaybackState.ERROR
    assert client.player.error == "No video available"


def test_state_file_round_trip(tmp_path):
    path = tmp_path / "state.json"
    client = KaimakuClient()
    client.state = AppState(ratings={"A_OP_1_": 7.5}, theme_metadata={"A_OP_1_": {"animeName": "A"}})
    client.save_state(path)

    restored = KaimakuClient()
    state = restored.load_state(path)
    assert state.ratings == {"A_OP_1_": 7.5}
    assert state.theme_metadata == {"A_OP_1_": {"animeName": "A"}}

    path.write_text("{not json", encoding="utf-8")
    assert restored.load_state(path).ratings == {}
    assert restored.load_state(tmp_path / "missing.json").ratings == {}
