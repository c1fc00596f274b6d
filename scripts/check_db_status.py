#!/usr/bin/env python
"""Quick CLI tool to check database status.

Prints row counts, session health and the current top rated openings.

Usage:
    python scripts/check_db_status.py
"""

import asyncio
import sys

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from kaimaku.catalog.leaderboard import build_leaderboard
from kaimaku.db.database import async_session, init_db
from kaimaku.db.models import Rating, User, UserSession, utcnow
from kaimaku.core.errors import StoreError
from kaimaku.services.rating_service import RatingService


async def main():
    """Check and print database status."""
    try:
        await init_db()
        async with async_session() as db:
            users = await db.scalar(select(func.count()).select_from(User)) or 0
            ratings = await db.scalar(select(func.count()).select_from(Rating)) or 0
            sessions = await db.scalar(select(func.count()).select_from(UserSession)) or 0
            expired = await db.scalar(
                select(func.count()).select_from(UserSession).where(UserSession.expire <= utcnow())
            ) or 0
            public_ratings = await RatingService(db).get_ratings(include_metadata=True)
    except (SQLAlchemyError, StoreError) as e:
        print(f"Database error: {e}")
        return 1

    print("=" * 50)
    print("KAIMAKU DATABASE STATUS")
    print("=" * 50)
    print(f"Users:          {users}")
    print(f"Ratings:        {ratings}")
    print(f"Rated openings: {len(public_ratings)}")
    print(f"Sessions:       {sessions} ({expired} expired, pruned hourly)")

    entries = build_leaderboard(public_ratings)
    if entries:
        print("\nTop rated:")
        for entry in entries:
            print(f"  {entry.rank:>2}. {entry.anime_name} {entry.theme_label} - "
                  f"{entry.rating:.2f} ({entry.rating_count} ratings)")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
