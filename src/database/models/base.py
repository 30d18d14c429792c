"""
Base module for database models.

Contains the SQLAlchemy declarative base, the classification source values and
the timestamp helper used by every model module. Timestamps are stored as naive UTC.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base


Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ClassificationSource:
    """Values of Content.classification_source."""
    KEYWORD_FALLBACK = "keyword_fallback"

    @classmethod
    def is_fallback(cls, value) -> bool:
        return value is None or value == cls.KEYWORD_FALLBACK
