"""SQLAlchemy 2.0 ORM models for the SSC review service.

Import all models here so Alembic's ``env.py`` can discover them via::

    from app.models.db import Base  # noqa: F401

Every model must be imported at module level to register with the
``DeclarativeBase`` metadata.
"""

from app.models.db.base import Base, TimestampMixin  # noqa: F401

# Core domain models
from app.models.db.scholarship_application import ScholarshipApplication  # noqa: F401
from app.models.db.ssc_review import (  # noqa: F401
    SscMemberAssignment,
    SscStageDecision,
    SscStageStatus,
)

# Supporting tables
from app.models.db.status_history import ApplicationStatusHistory  # noqa: F401

__all__ = [
    "Base",
    "TimestampMixin",
    # Core
    "ScholarshipApplication",
    "SscStageStatus",
    "SscStageDecision",
    "SscMemberAssignment",
    # Supporting
    "ApplicationStatusHistory",
]
