"""Applications router for scholarship application intake.

Create a draft, endorse it to the SSC, withdraw it, and read its status
history.  Review decisions themselves live in ``app.routers.ssc``.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.deps import (
    _safe_error,
    get_current_user_hardcoded,
    get_db,
    get_event_publisher,
    review_http_error,
)
from app.models.application_models import (
    ApplicationCreate,
    ApplicationResponse,
    StatusHistoryListResponse,
    StatusHistoryResponse,
    WithdrawRequest,
)
from app.services.application_service import ApplicationService
from app.services.review_errors import ReviewError
from app.services.review_events import EventPublisher

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["applications"])


# ---------------------------------------------------------------------------
# POST  /applications
# ---------------------------------------------------------------------------


@router.post(
    "/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_application(
    body: ApplicationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """Create a draft scholarship application.

    Args:
        body: Student, school, category and requested amount.
        db: Async database session (injected).
        current_user: Authenticated user (injected).

    Returns:
        The created application.
    """
    try:
        application = await ApplicationService.create_application(
            db, body, created_by=current_user["id"]
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("creating application", e),
        ) from e

    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# GET  /applications/{application_id}
# ---------------------------------------------------------------------------


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """Get a single application."""
    try:
        application = await ApplicationService.get_application(db, application_id)
    except ReviewError as e:
        raise review_http_error("fetching application", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("fetching application", e),
        ) from e

    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# POST  /applications/{application_id}/submit
# ---------------------------------------------------------------------------


@router.post(
    "/applications/{application_id}/submit", response_model=ApplicationResponse
)
async def submit_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """Endorse a draft to the Scholarship Screening Committee."""
    try:
        application = await ApplicationService.submit_application(
            db, application_id, submitted_by=current_user["id"]
        )
    except ReviewError as e:
        raise review_http_error("submitting application", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("submitting application", e),
        ) from e

    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# POST  /applications/{application_id}/withdraw
# ---------------------------------------------------------------------------


@router.post(
    "/applications/{application_id}/withdraw", response_model=ApplicationResponse
)
async def withdraw_application(
    application_id: UUID,
    body: WithdrawRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Withdraw an application that has not been decided."""
    try:
        application = await ApplicationService.withdraw_application(
            db,
            application_id,
            withdrawn_by=current_user["id"],
            reason=body.reason,
            publisher=publisher,
        )
    except ReviewError as e:
        raise review_http_error("withdrawing application", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("withdrawing application", e),
        ) from e

    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# GET  /applications/{application_id}/status-history
# ---------------------------------------------------------------------------


@router.get(
    "/applications/{application_id}/status-history",
    response_model=StatusHistoryListResponse,
)
async def get_status_history(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """Every overall status change of an application, oldest first."""
    try:
        history = await ApplicationService.get_status_history(db, application_id)
    except ReviewError as e:
        raise review_http_error("fetching status history", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("fetching status history", e),
        ) from e

    return StatusHistoryListResponse(
        history=[StatusHistoryResponse.model_validate(h) for h in history],
        total=len(history),
    )
