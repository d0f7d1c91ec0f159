"""Business logic for scholarship application intake.

Creates drafts, endorses them to the SSC (``draft -> submitted``) and
handles withdrawal.  Status changes go through the review workflow's
transition table and per-application lock, so intake never races a stage
decision on the same application.
"""

import logging
import uuid
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.application_models import ApplicationCreate
from app.models.db.base import utcnow
from app.models.db.scholarship_application import ScholarshipApplication
from app.models.db.status_history import ApplicationStatusHistory
from app.models.ssc_models import TERMINAL_APPLICATION_STATUSES, ApplicationStatus
from app.services.review_errors import (
    ApplicationClosed,
    NotFound,
    PersistenceError,
    ReviewError,
)
from app.services.review_events import (
    ApplicationWithdrawn,
    EventPublisher,
    publish_all,
)
from app.services.review_workflow import ReviewWorkflow, application_lock

logger = logging.getLogger(__name__)


def generate_application_number() -> str:
    """Human-readable application number, e.g. ``SCH-2026-4F1C09AB``."""
    return f"SCH-{utcnow().year}-{uuid.uuid4().hex[:8].upper()}"


class ApplicationService:
    """Service layer for scholarship application operations."""

    # ------------------------------------------------------------------
    # create_application
    # ------------------------------------------------------------------

    @staticmethod
    async def create_application(
        db: AsyncSession,
        data: ApplicationCreate,
        created_by: str,
    ) -> ScholarshipApplication:
        """Create a draft application.

        Args:
            db: Async database session.
            data: Validated request body.
            created_by: Id of the user creating the draft.

        Returns:
            The newly created ScholarshipApplication.
        """
        application = ScholarshipApplication(
            application_number=generate_application_number(),
            student_id=data.student_id,
            school_id=data.school_id,
            category_id=data.category_id,
            subcategory_id=data.subcategory_id,
            requested_amount=(
                Decimal(str(data.requested_amount))
                if data.requested_amount is not None
                else None
            ),
            status=ApplicationStatus.DRAFT.value,
        )
        db.add(application)
        await db.flush()

        db.add(
            ApplicationStatusHistory(
                application_id=application.id,
                old_status=None,
                new_status=ApplicationStatus.DRAFT.value,
                changed_by=created_by,
                reason="Application created",
            )
        )
        await db.flush()
        logger.info(
            "Created draft application %s for student %s",
            application.application_number,
            application.student_id,
        )
        return application

    # ------------------------------------------------------------------
    # get_application
    # ------------------------------------------------------------------

    @staticmethod
    async def get_application(
        db: AsyncSession, application_id: UUID
    ) -> ScholarshipApplication:
        result = await db.execute(
            select(ScholarshipApplication).where(
                ScholarshipApplication.id == application_id
            )
        )
        application = result.scalar_one_or_none()
        if application is None:
            raise NotFound("Application not found", application_id=str(application_id))
        return application

    # ------------------------------------------------------------------
    # submit / withdraw
    # ------------------------------------------------------------------

    @staticmethod
    async def _change_status(
        db: AsyncSession,
        application_id: UUID,
        new_status: ApplicationStatus,
        changed_by: str,
        reason: str | None,
    ) -> tuple[ScholarshipApplication, str]:
        async with application_lock(application_id):
            try:
                application = await ReviewWorkflow.load_for_update(db, application_id)
                old_status = application.status
                if ApplicationStatus(old_status) in TERMINAL_APPLICATION_STATUSES:
                    raise ApplicationClosed(
                        f"Application is already {old_status}",
                        application_status=old_status,
                    )
                ReviewWorkflow.transition(
                    db, application, new_status, changed_by, reason=reason
                )
                await db.commit()
            except ReviewError:
                await db.rollback()
                raise
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error(
                    "Database error moving application %s to %s: %s",
                    application_id,
                    new_status.value,
                    exc,
                )
                raise PersistenceError(
                    "Could not update the application status",
                    application_id=str(application_id),
                ) from exc
        return application, old_status

    @staticmethod
    async def submit_application(
        db: AsyncSession, application_id: UUID, submitted_by: str
    ) -> ScholarshipApplication:
        """Endorse a draft to the SSC, placing it in the review queues.

        Raises:
            NotFound: If the application does not exist.
            ApplicationClosed: If the application is terminal.
            InvalidTransition: If the application is not a draft.
        """
        application, _ = await ApplicationService._change_status(
            db,
            application_id,
            ApplicationStatus.SUBMITTED,
            submitted_by,
            reason="Endorsed to the Scholarship Screening Committee",
        )
        return application

    @staticmethod
    async def withdraw_application(
        db: AsyncSession,
        application_id: UUID,
        withdrawn_by: str,
        reason: str | None = None,
        publisher: EventPublisher | None = None,
    ) -> ScholarshipApplication:
        """Withdraw a non-terminal application.

        Raises:
            NotFound: If the application does not exist.
            ApplicationClosed: If the application is already terminal.
        """
        application, _ = await ApplicationService._change_status(
            db,
            application_id,
            ApplicationStatus.WITHDRAWN,
            withdrawn_by,
            reason=reason,
        )
        await publish_all(
            publisher,
            [
                ApplicationWithdrawn(
                    application_id=application.id,
                    application_number=application.application_number,
                    reason=reason,
                    withdrawn_by=withdrawn_by,
                )
            ],
        )
        return application

    # ------------------------------------------------------------------
    # get_status_history
    # ------------------------------------------------------------------

    @staticmethod
    async def get_status_history(
        db: AsyncSession, application_id: UUID
    ) -> list[ApplicationStatusHistory]:
        """Return every overall status change, oldest first.

        Raises:
            NotFound: If the application does not exist.
        """
        await ApplicationService.get_application(db, application_id)
        result = await db.execute(
            select(ApplicationStatusHistory)
            .where(ApplicationStatusHistory.application_id == application_id)
            .order_by(
                ApplicationStatusHistory.created_at.asc(),
                ApplicationStatusHistory.id.asc(),
            )
        )
        return list(result.scalars().all())
