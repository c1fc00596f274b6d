"""bcrypt password hashing, run off the event loop."""

import asyncio

import bcrypt

from kaimaku.config import get_settings

settings = get_settings()

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def _hash(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _check(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


async def hash_password(password: str, rounds: int | None = None) -> str:
    return await asyncio.to_thread(_hash, password, rounds or settings.password_hash_rounds)


async def verify_password(password: str, password_hash: str) -> bool:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    return await asyncio.to_thread(_check, password, password_hash)
