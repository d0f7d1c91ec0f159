"""Shared dependencies for all SSC review API routers.

Centralises the database session, authentication dependency, rate-limiter
reference, review collaborators (directory, document storage, event
publisher) and small utility helpers so that every router module can
``from app.deps import …`` without pulling in ``main``.
"""

import logging
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Request, status

from app.auth import get_current_user_hardcoded
from app.database import get_db
from app.security import get_rate_limiter, log_security_event
from app.services.directory import Directory, build_directory
from app.services.review_errors import ReviewError
from app.services.review_events import EventPublisher, LoggingEventPublisher
from app.storage import DocumentStorage, document_storage

load_dotenv()

logger = logging.getLogger(__name__)

__all__ = [
    "get_db",
    "get_current_user_hardcoded",
    "get_directory",
    "get_document_storage",
    "get_event_publisher",
    "limiter",
    "require_admin",
    "review_http_error",
    "_safe_error",
]

# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------
limiter = get_rate_limiter()


# ---------------------------------------------------------------------------
# Review collaborators
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_directory() -> Directory:
    return build_directory()


def get_document_storage() -> DocumentStorage:
    return document_storage


_event_publisher = LoggingEventPublisher()


def get_event_publisher() -> EventPublisher:
    return _event_publisher


# ---------------------------------------------------------------------------
# Small utility helpers
# ---------------------------------------------------------------------------


def _safe_error(operation: str, e: Exception) -> str:
    """Log the full exception but return a safe message without internal details.

    This prevents leaking stack traces, file paths, or database internals
    to API consumers while preserving full diagnostics in server logs.
    """
    logger.exception("Error during %s", operation)
    return f"{operation} failed. Please try again or contact support."


def review_http_error(operation: str, exc: ReviewError) -> HTTPException:
    """Translate a workflow error into an HTTPException.

    Expected failures keep their code and details so reviewers see which
    precondition failed; persistence failures get the safe 500 message.
    """
    if exc.status_code >= 500:
        return HTTPException(
            status_code=exc.status_code,
            detail={
                "code": exc.code,
                "message": _safe_error(operation, exc),
                "details": {},
            },
        )
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


# ---------------------------------------------------------------------------
# Authorization dependency
# ---------------------------------------------------------------------------


async def require_admin(
    request: Request,
    current_user: dict = Depends(get_current_user_hardcoded),
) -> dict[str, Any]:
    """Allow only administrators through."""
    if current_user.get("role") != "admin":
        log_security_event(
            "admin_required", request, {"user_id": current_user.get("id")}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return current_user
