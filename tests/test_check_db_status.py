import asyncio

from kaimaku.core.errors import StoreUnavailable
from kaimaku.services.rating_service import RatingService
from scripts import check_db_status


async def _no_init():
    return None


def _use_test_db(monkeypatch, session_factory):
    monkeypatch.setattr(check_db_status, "init_db", _no_init)
    monkeypatch.setattr(check_db_status, "async_session", session_factory)


def test_prints_status(monkeypatch, session_factory, capsys):
    _use_test_db(monkeypatch, session_factory)

    assert asyncio.run(check_db_status.main()) == 0
    out = capsys.readouterr().out
    assert "KAIMAKU DATABASE STATUS" in out
    assert "Users:          0" in out


def test_store_failure_is_reported_without_traceback(monkeypatch, session_factory, capsys):
    _use_test_db(monkeypatch, session_factory)

    async def store_down(self, include_metadata=False):
        raise StoreUnavailable()

    monkeypatch.setattr(RatingService, "get_ratings", store_down)

    assert asyncio.run(check_db_status.main()) == 1
    assert "Database error: Database is busy" in capsys.readouterr().out
