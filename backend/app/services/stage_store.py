"""Current per-stage status of each application.

``ssc_stage_statuses`` holds at most one row per (application, stage).  A
missing row means the stage is still ``pending``; reads fill the gaps with
transient defaults that are never added to the session.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db.ssc_review import SscStageDecision, SscStageStatus
from app.models.ssc_models import ReviewStage, StageState

logger = logging.getLogger(__name__)


def _pending(application_id: UUID, stage: ReviewStage) -> SscStageStatus:
    return SscStageStatus(
        application_id=application_id,
        stage=stage.value,
        status=StageState.PENDING.value,
        review_data={},
    )


class StageStore:
    """Service layer for stage status rows."""

    @staticmethod
    async def get_status(
        db: AsyncSession, application_id: UUID, stage: ReviewStage
    ) -> SscStageStatus:
        result = await db.execute(
            select(SscStageStatus).where(
                SscStageStatus.application_id == application_id,
                SscStageStatus.stage == stage.value,
            )
        )
        row = result.scalar_one_or_none()
        return row if row is not None else _pending(application_id, stage)

    @staticmethod
    async def get_statuses(
        db: AsyncSession, application_id: UUID
    ) -> dict[ReviewStage, SscStageStatus]:
        """Return all four stage statuses keyed by stage, defaults filled."""
        result = await db.execute(
            select(SscStageStatus).where(SscStageStatus.application_id == application_id)
        )
        stored = {row.stage: row for row in result.scalars().all()}
        return {
            stage: stored.get(stage.value) or _pending(application_id, stage)
            for stage in ReviewStage
        }

    @staticmethod
    async def apply_decision(
        db: AsyncSession, decision: SscStageDecision
    ) -> SscStageStatus:
        """Overwrite the stage's current status with a ledger entry.

        Only the row for ``decision.stage`` is touched.  Applying the same
        entry twice leaves the row unchanged.

        Args:
            db: Async database session.
            decision: A flushed ledger entry.

        Returns:
            The persisted SscStageStatus row.
        """
        result = await db.execute(
            select(SscStageStatus).where(
                SscStageStatus.application_id == decision.application_id,
                SscStageStatus.stage == decision.stage,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = SscStageStatus(
                application_id=decision.application_id,
                stage=decision.stage,
            )
            db.add(row)

        row.status = decision.outcome
        row.reviewer_id = decision.reviewer_id
        row.reviewed_at = decision.created_at
        row.notes = decision.notes
        row.review_data = dict(decision.review_data or {})
        row.decision_id = decision.id

        await db.flush()
        logger.debug(
            "Stage %s of application %s is now %s",
            decision.stage,
            decision.application_id,
            decision.outcome,
        )
        return row
