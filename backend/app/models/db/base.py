"""Re-export Base and provide common mixins and column types for ORM models."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

__all__ = ["Base", "JSONDocument", "TimestampMixin", "utcnow"]

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current UTC time used for all lifecycle timestamps."""
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Mixin that adds ``created_at`` and ``updated_at`` columns.

    Both are stamped client-side so the values are available right after a
    flush without a refresh round-trip; the server default covers raw SQL
    inserts.  ``updated_at`` is also refreshed on every UPDATE.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )
