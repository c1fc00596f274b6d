"""Session cookie authentication dependencies."""

import logging

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.config import get_settings
from kaimaku.core.errors import AuthenticationRequired, SessionExpired
from kaimaku.db.database import get_db
from kaimaku.services.session_service import SessionRecord, get_session

logger = logging.getLogger(__name__)
settings = get_settings()


def set_session_cookie(response: Response, session: SessionRecord) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.sid,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


async def get_current_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SessionRecord | None:
    """The session named by the cookie, expired or not; None without one."""
    return await get_session(db, request.cookies.get(settings.session_cookie_name))


async def require_user(
    session: SessionRecord | None = Depends(get_current_session),
) -> SessionRecord:
    """
    Dependency that requires a live session.

    Usage:
        @router.post("/ratings")
        async def rate(session: SessionRecord = Depends(require_user)):
            ...

    Raises AuthenticationRequired without a (known) session cookie and
    SessionExpired when the session exists but has run out.
    """
    if session is None:
        raise AuthenticationRequired()
    if session.expired:
        logger.info(f"Expired session used by {session.username}")
        raise SessionExpired()
    return session
