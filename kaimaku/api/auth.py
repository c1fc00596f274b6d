"""Registration, login and session endpoints."""

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.config import get_settings
from kaimaku.core.auth import clear_session_cookie, require_user, set_session_cookie
from kaimaku.core.captcha import generate_challenge, new_challenge
from kaimaku.core.errors import ValidationError
from kaimaku.core.limiter import limiter
from kaimaku.db import schemas
from kaimaku.db.database import get_db
from kaimaku.services.session_service import SessionRecord, create_session, destroy_session
from kaimaku.services.user_service import authenticate_user, register_user

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter()


@router.post("/register", response_model=schemas.AuthResponse)
@limiter.limit("10/minute")
async def register(
    request: Request,
    body: schemas.RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Create an account (CAPTCHA required) and log it in."""
    user = await register_user(db, body.username, body.password, body.captcha_id, body.captcha_answer)
    session = await create_session(db, user.username)
    set_session_cookie(response, session)
    return schemas.AuthResponse(username=user.username)


@router.post("/login", response_model=schemas.AuthResponse)
@limiter.limit("20/minute")
async def login(
    request: Request,
    body: schemas.LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate_user(db, body.username, body.password)
    session = await create_session(db, user.username)
    set_session_cookie(response, session)
    logger.info(f"User {user.username} logged in")
    return schemas.AuthResponse(username=user.username)


@router.post("/logout", response_model=schemas.SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Always succeeds; an unknown or missing session is simply cleared."""
    await destroy_session(db, request.cookies.get(settings.session_cookie_name))
    clear_session_cookie(response)
    return schemas.SuccessResponse()


@router.get("/me", response_model=schemas.MeResponse)
async def me(session: SessionRecord = Depends(require_user)):
    return schemas.MeResponse(username=session.username)


@router.get("/captcha", response_model=schemas.CaptchaResponse)
async def captcha(id: str | None = Query(None, description="Challenge id (ms timestamp)")):
    """
    Issue a challenge question.

    Without ``id`` a fresh challenge is minted from the current time. The
    answer is never returned; the server re-derives it from the id.
    """
    if id is not None and not id.isdigit():
        raise ValidationError("Invalid challenge id")
    challenge = generate_challenge(id) if id else new_challenge()
    return schemas.CaptchaResponse(id=challenge.id, question=challenge.question)
