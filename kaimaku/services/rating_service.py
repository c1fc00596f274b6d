"""
Rating storage and aggregation.

One row per (theme_id, user_id). Saving is a single
INSERT ... ON CONFLICT DO UPDATE so two concurrent submissions from the same
user can never produce two rows; the later statement wins. Aggregates are
computed on read, never stored.
"""

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.core.errors import (
    AuthenticationRequired,
    SessionExpired,
    StoreError,
    StoreUnavailable,
    ValidationError,
)
from kaimaku.db.models import Rating, utcnow

logger = logging.getLogger(__name__)

MIN_RATING = 0.0
MAX_RATING = 10.0


@asynccontextmanager
async def store_errors(db: AsyncSession, action: str):
    """Translate SQLAlchemy failures into StoreUnavailable / StoreError."""
    try:
        yield
    except (PoolTimeoutError, OperationalError, InterfaceError) as e:
        logger.error(f"Database unavailable while {action}: {e}")
        await db.rollback()
        raise StoreUnavailable() from e
    except SQLAlchemyError as e:
        logger.error(f"Database error while {action}: {e}")
        await db.rollback()
        raise StoreError() from e


def validate_rating(rating: Any) -> float:
    """Return ``rating`` as a float in [0, 10] rounded to one decimal."""
    if isinstance(rating, bool) or not isinstance(rating, (int, float)) or math.isnan(rating):
        raise ValidationError("Rating must be a number between 0 and 10")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError("Rating must be between 0 and 10")
    # Half-up like a DECIMAL(3,1) column; round() would give 0.2 for 0.25
    return float(Decimal(str(rating)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class RatingService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        if self.db.bind.dialect.name == "sqlite":
            return sqlite.insert(Rating)
        return postgresql.insert(Rating)

    async def save_rating(
        self,
        theme_id: str,
        user_id: str | None,
        rating: Any,
        metadata: dict[str, Any] | None = None,
        session_expires_at: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Create or overwrite ``user_id``'s rating for ``theme_id``.

        ``metadata`` may carry animeName, animeSlug and themeSequence; they
        replace whatever the previous submission stored. Nothing is written
        when validation fails or the session has already expired.

        Returns the stored rating plus the fresh aggregate for the theme.
        """
        if not user_id:
            raise AuthenticationRequired()
        if not isinstance(theme_id, str) or not theme_id.strip():
            raise ValidationError("Missing themeId")
        value = validate_rating(rating)

        now = utcnow()
        if session_expires_at is not None and session_expires_at <= now:
            raise SessionExpired()

        metadata = metadata or {}
        stmt = self._insert().values(
            theme_id=theme_id,
            user_id=user_id,
            rating=value,
            timestamp=now,
            anime_name=metadata.get("animeName"),
            anime_slug=metadata.get("animeSlug"),
            theme_sequence=metadata.get("themeSequence"),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["theme_id", "user_id"],
            set_={
                "rating": stmt.excluded.rating,
                "timestamp": stmt.excluded.timestamp,
                "anime_name": stmt.excluded.anime_name,
                "anime_slug": stmt.excluded.anime_slug,
                "theme_sequence": stmt.excluded.theme_sequence,
            },
        )

        async with store_errors(self.db, "saving rating"):
            await self.db.execute(stmt)
            await self.db.commit()
            aggregated = await self._aggregate(theme_id)

        logger.info(f"Saved rating {value} for {theme_id} by {user_id}")
        return {
            "themeId": theme_id,
            "userId": user_id,
            "rating": value,
            "timestamp": now,
            "aggregated": aggregated,
        }

    async def _aggregate(self, theme_id: str) -> dict[str, Any]:
        result = await self.db.execute(
            select(func.count(Rating.id), func.avg(Rating.rating))
            .where(Rating.theme_id == theme_id)
        )
        count, average = result.one()
        return {"count": count or 0, "average": float(average or 0)}

    async def get_ratings(self, include_metadata: bool = False) -> dict[str, dict[str, Any]]:
        """Aggregate (count, average, min, max) for every rated theme."""
        async with store_errors(self.db, "loading ratings"):
            result = await self.db.execute(
                select(
                    Rating.theme_id,
                    func.count(Rating.id),
                    func.avg(Rating.rating),
                    func.min(Rating.rating),
                    func.max(Rating.rating),
                ).group_by(Rating.theme_id)
            )
            ratings = {
                theme_id: {
                    "count": count,
                    "average": float(average),
                    "min": float(minimum),
                    "max": float(maximum),
                }
                for theme_id, count, average, minimum, maximum in result.all()
            }

            if include_metadata and ratings:
                # Ascending by time so the latest row per theme wins
                rows = await self.db.execute(
                    select(
                        Rating.theme_id,
                        Rating.anime_name,
                        Rating.anime_slug,
                        Rating.theme_sequence,
                    ).order_by(Rating.timestamp, Rating.id)
                )
                for theme_id, anime_name, anime_slug, theme_sequence in rows.all():
                    ratings[theme_id].update({
                        "animeName": anime_name,
                        "animeSlug": anime_slug,
                        "themeSequence": theme_sequence,
                    })

        return ratings

    async def get_user_ratings(self, user_id: str) -> dict[str, dict[str, Any]]:
        """All of one user's ratings keyed by ThemeId."""
        if not user_id:
            raise AuthenticationRequired()

        async with store_errors(self.db, "loading user ratings"):
            result = await self.db.execute(
                select(Rating).where(Rating.user_id == user_id).order_by(Rating.timestamp)
            )
            rows = result.scalars().all()

        return {
            row.theme_id: {
                "rating": row.rating,
                "timestamp": row.timestamp.isoformat(),
                "animeName": row.anime_name,
                "animeSlug": row.anime_slug,
                "themeSequence": row.theme_sequence,
            }
            for row in rows
        }
