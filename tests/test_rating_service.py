import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from kaimaku.core.errors import (
    AuthenticationRequired,
    SessionExpired,
    StoreUnavailable,
    ValidationError,
)
from kaimaku.db.models import Rating, User, utcnow
from kaimaku.services.rating_service import RatingService, validate_rating

THEME = "Naruto_OP_1_OP1"


def _add_users(*names):
    async def add(db):
        for name in names:
            db.add(User(username=name, password_hash="x"))
        await db.commit()

    return add


def test_repeated_saves_keep_one_row_with_last_value(run_db):
    run_db(_add_users("alice"))

    async def save_twice(db):
        service = RatingService(db)
        await service.save_rating(THEME, "alice", 4, {"animeName": "Naruto"})
        return await service.save_rating(THEME, "alice", 8.5, {"animeName": "NARUTO", "themeSequence": 1})

    result = run_db(save_twice)
    assert result["rating"] == 8.5
    assert result["aggregated"] == {"count": 1, "average": 8.5}

    rows = run_db(lambda db: _all_rows(db))
    assert len(rows) == 1
    assert rows[0].rating == 8.5
    assert rows[0].anime_name == "NARUTO"


async def _all_rows(db):
    return (await db.execute(select(Rating))).scalars().all()


def test_concurrent_saves_keep_one_row(run_db, session_factory):
    run_db(_add_users("alice"))
    values = [2, 4, 6, 8, 9.5]

    async def save(value):
        # Each submission on its own session and connection
        async with session_factory() as db:
            return await RatingService(db).save_rating(THEME, "alice", value)

    async def race():
        return await asyncio.gather(*(save(value) for value in values))

    results = asyncio.run(race())
    assert all(result["aggregated"]["count"] == 1 for result in results)

    rows = run_db(_all_rows)
    assert len(rows) == 1
    assert rows[0].rating in values

    aggregate = run_db(lambda db: RatingService(db).get_ratings())[THEME]
    assert aggregate["count"] == 1
    assert aggregate["average"] == rows[0].rating


def test_aggregates_across_users(run_db):
    run_db(_add_users("alice", "bob"))

    async def scenario(db):
        service = RatingService(db)
        await service.save_rating(THEME, "alice", 6)
        result = await service.save_rating(THEME, "bob", 9)
        await service.save_rating("Bleach_OP_1_OP1", "bob", 3)
        return result, await service.get_ratings()

    result, ratings = run_db(scenario)
    assert result["aggregated"] == {"count": 2, "average": 7.5}
    assert ratings[THEME] == {"count": 2, "average": 7.5, "min": 6.0, "max": 9.0}
    assert ratings["Bleach_OP_1_OP1"]["count"] == 1


def test_ratings_with_metadata_use_latest_row(run_db):
    run_db(_add_users("alice", "bob"))

    async def scenario(db):
        service = RatingService(db)
        await service.save_rating(THEME, "alice", 6, {"animeName": "Old Name"})
        await service.save_rating(THEME, "bob", 7, {"animeName": "Naruto", "animeSlug": "naruto", "themeSequence": 1})
        return await service.get_ratings(include_metadata=True)

    ratings = run_db(scenario)
    assert ratings[THEME]["animeName"] == "Naruto"
    assert ratings[THEME]["animeSlug"] == "naruto"
    assert ratings[THEME]["themeSequence"] == 1


@pytest.mark.parametrize("bad", [-0.1, 10.1, float("nan"), "7", None, True])
def test_out_of_range_or_non_numeric_rejected(run_db, bad):
    run_db(_add_users("alice"))

    with pytest.raises(ValidationError):
        run_db(lambda db: RatingService(db).save_rating(THEME, "alice", bad))

    assert run_db(lambda db: db.scalar(select(func.count()).select_from(Rating))) == 0


def test_bounds_are_inclusive_and_rounded(run_db):
    run_db(_add_users("alice"))

    async def scenario(db):
        service = RatingService(db)
        low = await service.save_rating("A_OP_1_", "alice", 0)
        high = await service.save_rating("B_OP_1_", "alice", 10)
        rounded = await service.save_rating("C_OP_1_", "alice", 7.26)
        return low["rating"], high["rating"], rounded["rating"]

    assert run_db(scenario) == (0.0, 10.0, 7.3)


def test_rounding_is_half_up():
    assert validate_rating(0.25) == 0.3
    assert validate_rating(2.45) == 2.5
    assert validate_rating(9.95) == 10.0
    assert validate_rating(7.24) == 7.2


def test_missing_user_or_theme(run_db):
    with pytest.raises(AuthenticationRequired):
        run_db(lambda db: RatingService(db).save_rating(THEME, None, 5))
    with pytest.raises(ValidationError):
        run_db(lambda db: RatingService(db).save_rating("  ", "alice", 5))


def test_expired_session_writes_nothing(run_db):
    run_db(_add_users("alice"))
    expired_at = utcnow() - timedelta(seconds=1)

    with pytest.raises(SessionExpired):
        run_db(lambda db: RatingService(db).save_rating(THEME, "alice", 5, session_expires_at=expired_at))

    assert run_db(lambda db: db.scalar(select(func.count()).select_from(Rating))) == 0


def test_user_ratings(run_db):
    run_db(_add_users("alice", "bob"))

    async def scenario(db):
        service = RatingService(db)
        await service.save_rating(THEME, "alice", 8, {"animeName": "Naruto", "animeSlug": "naruto", "themeSequence": 1})
        await service.save_rating(THEME, "bob", 2)
        return await service.get_user_ratings("alice")

    ratings = run_db(scenario)
    assert list(ratings) == [THEME]
    assert ratings[THEME]["rating"] == 8.0
    assert ratings[THEME]["animeName"] == "Naruto"
    assert "T" in ratings[THEME]["timestamp"]


def test_connection_failure_maps_to_store_unavailable(run_db, monkeypatch):
    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("could not connect"))

    async def scenario(db):
        monkeypatch.setattr(db, "execute", broken_execute)
        return await RatingService(db).get_ratings()

    with pytest.raises(StoreUnavailable):
        run_db(scenario)


def test_long_anime_slug_is_kept(run_db):
    assert Rating.__table__.c.anime_slug.type.length == 500
    run_db(_add_users("alice"))
    slug = "s" * 400

    async def scenario(db):
        service = RatingService(db)
        await service.save_rating(THEME, "alice", 6, {"animeSlug": slug})
        return await service.get_ratings(include_metadata=True)

    assert run_db(scenario)[THEME]["animeSlug"] == slug
