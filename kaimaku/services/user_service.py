"""User registration and login."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.config import get_settings
from kaimaku.core.captcha import verify_challenge
from kaimaku.core.errors import InvalidCredentials, ValidationError
from kaimaku.core.passwords import MAX_PASSWORD_BYTES, hash_password, verify_password
from kaimaku.db.models import User
from kaimaku.services.rating_service import store_errors

logger = logging.getLogger(__name__)
settings = get_settings()

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 6


def validate_credentials(username: str, password: str) -> None:
    if not username or not password:
        raise ValidationError("Username and password required")
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters"
        )
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")


async def register_user(
    db: AsyncSession,
    username: str,
    password: str,
    captcha_id: str | None,
    captcha_answer: int | str | None,
    now_ms: int | None = None,
) -> User:
    """
    Create a user after checking the CAPTCHA and credential rules.

    Raises ValidationError (or a CAPTCHA subclass of it) on bad input and
    when the username is taken.
    """
    verify_challenge(
        captcha_id,
        captcha_answer,
        now_ms=now_ms,
        max_age_ms=settings.captcha_max_age_seconds * 1000,
    )
    validate_credentials(username, password)

    async with store_errors(db, "checking username"):
        existing = await db.scalar(select(User.username).where(User.username == username))
    if existing is not None:
        raise ValidationError("Username already exists")

    password_hash = await hash_password(password)
    user = User(username=username, password_hash=password_hash)
    db.add(user)
    async with store_errors(db, "creating user"):
        try:
            await db.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent registration of the same name
            await db.rollback()
            raise ValidationError("Username already exists") from e

    logger.info(f"Registered user {username}")
    return user


async def authenticate_user(db: AsyncSession, username: str, password: str) -> User:
    if not username or not password:
        raise ValidationError("Username and password required")

    async with store_errors(db, "loading user"):
        user = await db.scalar(select(User).where(User.username == username))

    if user is None or not await verify_password(password, user.password_hash):
        logger.info(f"Failed login for {username}")
        raise InvalidCredentials()
    return user
