"""
SQLAlchemy ORM models.

============================================================================
LOCAL DATABASE = USERS, RATINGS AND SESSIONS ONLY
============================================================================
Anime and theme metadata lives in the AnimeThemes catalog. Ratings are keyed
by ThemeId (see ``kaimaku.catalog.models.theme_id``), and each row carries a
snapshot of the anime name, slug and theme sequence taken at rating time so
the leaderboard can label entries without calling the catalog.

Constraints enforced here, not just in application code:
- one rating per (theme_id, user_id)
- rating between 0 and 10 inclusive
- deleting a user deletes their ratings
============================================================================
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
)

from kaimaku.db.database import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (columns are timezone-naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """Registered user. Usernames are case-sensitive and immutable."""

    __tablename__ = "users"

    username = Column(String(255), primary_key=True)
    password_hash = Column(String(255), nullable=False)  # bcrypt
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Rating(Base):
    """A user's rating of one opening theme."""

    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    theme_id = Column(String(255), nullable=False)
    user_id = Column(String(255), ForeignKey("users.username", ondelete="CASCADE"), nullable=False)
    rating = Column(Float, nullable=False)  # 0.0-10.0, one decimal place
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    # Metadata snapshot for leaderboard labels
    anime_name = Column(String(500))
    anime_slug = Column(String(500))
    theme_sequence = Column(Integer)

    __table_args__ = (
        UniqueConstraint("theme_id", "user_id", name="uq_ratings_theme_user"),
        CheckConstraint("rating >= 0 AND rating <= 10", name="ck_ratings_range"),
        Index("idx_ratings_theme_id", "theme_id"),
        Index("idx_ratings_user_id", "user_id"),
    )


class UserSession(Base):
    """Server-side login session; the cookie holds only ``sid``."""

    __tablename__ = "user_sessions"

    sid = Column(String(255), primary_key=True)
    sess = Column(JSON, nullable=False)  # {"userId": username}
    expire = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_user_sessions_expire", "expire"),
    )
