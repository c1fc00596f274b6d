"""Server-side login sessions stored in the ``user_sessions`` table."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.config import get_settings
from kaimaku.db.models import UserSession, utcnow
from kaimaku.services.rating_service import store_errors

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class SessionRecord:
    sid: str
    username: str
    expires_at: datetime

    @property
    def expired(self) -> bool:
        return self.expires_at <= utcnow()


async def create_session(db: AsyncSession, username: str, ttl_seconds: int | None = None) -> SessionRecord:
    ttl = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
    record = SessionRecord(
        sid=secrets.token_urlsafe(32),
        username=username,
        expires_at=utcnow() + timedelta(seconds=ttl),
    )
    async with store_errors(db, "creating session"):
        db.add(UserSession(sid=record.sid, sess={"userId": username}, expire=record.expires_at))
        await db.commit()
    return record


async def get_session(db: AsyncSession, sid: str | None) -> SessionRecord | None:
    """Look up a session, expired or not. Unknown or malformed → None."""
    if not sid:
        return None
    async with store_errors(db, "loading session"):
        row = await db.scalar(select(UserSession).where(UserSession.sid == sid))
    if row is None:
        return None
    username = (row.sess or {}).get("userId")
    if not username:
        return None
    return SessionRecord(sid=row.sid, username=username, expires_at=row.expire)


async def destroy_session(db: AsyncSession, sid: str | None) -> None:
    if not sid:
        return
    async with store_errors(db, "destroying session"):
        await db.execute(delete(UserSession).where(UserSession.sid == sid))
        await db.commit()


async def prune_expired_sessions(db: AsyncSession) -> int:
    """Delete expired sessions, returning how many were removed."""
    async with store_errors(db, "pruning sessions"):
        result = await db.execute(delete(UserSession).where(UserSession.expire <= utcnow()))
        await db.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info(f"Pruned {removed} expired sessions")
    return removed
