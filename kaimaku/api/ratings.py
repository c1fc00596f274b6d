"""Rating endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.catalog.leaderboard import build_leaderboard
from kaimaku.core.auth import require_user
from kaimaku.core.cooldown import CooldownGate, get_rating_gate
from kaimaku.db import schemas
from kaimaku.db.database import get_db
from kaimaku.services.rating_service import RatingService
from kaimaku.services.session_service import SessionRecord

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/ratings")
async def get_ratings(db: AsyncSession = Depends(get_db)) -> dict[str, dict]:
    """Public aggregates keyed by ThemeId: {count, average, min, max}."""
    return await RatingService(db).get_ratings()


@router.get("/my-ratings", response_model=schemas.UserRatingsResponse)
async def get_my_ratings(
    session: SessionRecord = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    ratings = await RatingService(db).get_user_ratings(session.username)
    return schemas.UserRatingsResponse(ratings=ratings)


@router.post("/ratings", response_model=schemas.SaveRatingResponse)
async def save_rating(
    body: schemas.RatingRequest,
    session: SessionRecord = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    gate: CooldownGate = Depends(get_rating_gate),
):
    """
    Create or replace the caller's rating of one opening.

    Submissions for the same opening inside the cooldown window are
    rejected with 429, not queued.
    """
    gate.attempt((session.username, body.theme_id))

    metadata = body.metadata.model_dump(by_alias=True) if body.metadata else None
    result = await RatingService(db).save_rating(
        body.theme_id,
        session.username,
        body.rating,
        metadata,
        session_expires_at=session.expires_at,
    )
    return schemas.SaveRatingResponse(theme_rating=schemas.ThemeRatingResponse(**result))


@router.get("/leaderboard", response_model=schemas.LeaderboardResponse)
async def leaderboard(db: AsyncSession = Depends(get_db)):
    """Top ten openings by average rating."""
    public_ratings = await RatingService(db).get_ratings(include_metadata=True)
    entries = build_leaderboard(public_ratings)
    return schemas.LeaderboardResponse(
        entries=[schemas.LeaderboardEntryResponse(**vars(entry)) for entry in entries]
    )
