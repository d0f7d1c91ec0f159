"""Append-only ledger of SSC stage decisions.

Every reviewer action (and every administrative reopen) becomes one
``SscStageDecision`` row.  Rows are never updated or deleted; the ledger
exposes no API to do so.  Within an application, ``sequence`` gives a
strict, gap-free order that does not depend on clock resolution.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db.ssc_review import SscStageDecision
from app.services.review_errors import PersistenceError
from app.services.stage_evaluator import StageDecision

logger = logging.getLogger(__name__)


@dataclass
class DecisionFilters:
    """SQL-side filters for ledger queries."""

    application_id: UUID | None = None
    stage: str | None = None
    outcome: str | None = None
    reviewer_id: str | None = None
    decision_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    newest_first: bool = False
    limit: int | None = None
    offset: int = 0


class DecisionLedger:
    """Service layer for the decision ledger."""

    @staticmethod
    async def next_sequence(db: AsyncSession, application_id: UUID) -> int:
        result = await db.execute(
            select(func.coalesce(func.max(SscStageDecision.sequence), 0)).where(
                SscStageDecision.application_id == application_id
            )
        )
        return int(result.scalar_one()) + 1

    # ------------------------------------------------------------------
    # append
    # ------------------------------------------------------------------

    @staticmethod
    async def append(
        db: AsyncSession,
        application_id: UUID,
        decision: StageDecision,
    ) -> SscStageDecision:
        """Add a decision to the ledger and flush it.

        Callers must hold the application's lock so the sequence number
        cannot be claimed twice.

        Args:
            db: Async database session.
            application_id: UUID of the application decided on.
            decision: Validated decision from the stage evaluator.

        Returns:
            The persisted SscStageDecision row.

        Raises:
            PersistenceError: If the row cannot be written.
        """
        try:
            sequence = await DecisionLedger.next_sequence(db, application_id)
            entry = SscStageDecision(
                application_id=application_id,
                sequence=sequence,
                stage=decision.stage.value,
                decision_type=decision.decision_type.value,
                outcome=decision.outcome.value,
                review_data=dict(decision.review_data),
                notes=decision.notes,
                reviewer_id=decision.reviewer_id,
                reviewer_role=decision.reviewer_role,
            )
            db.add(entry)
            await db.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to append %s decision for application %s: %s",
                decision.stage.value,
                application_id,
                exc,
            )
            raise PersistenceError(
                "Could not record the stage decision",
                application_id=str(application_id),
                stage=decision.stage.value,
            ) from exc

        logger.info(
            "Ledger #%s for application %s: %s %s by %s",
            sequence,
            application_id,
            decision.stage.value,
            decision.outcome.value,
            decision.reviewer_id,
        )
        return entry

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def list_for(db: AsyncSession, application_id: UUID) -> list[SscStageDecision]:
        """Return every ledger entry for one application, oldest first."""
        result = await db.execute(
            select(SscStageDecision)
            .where(SscStageDecision.application_id == application_id)
            .order_by(SscStageDecision.sequence.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def latest_for(
        db: AsyncSession, application_id: UUID, stage: str
    ) -> SscStageDecision | None:
        """Return the newest ledger entry for (application, stage), if any."""
        result = await db.execute(
            select(SscStageDecision)
            .where(
                SscStageDecision.application_id == application_id,
                SscStageDecision.stage == stage,
            )
            .order_by(SscStageDecision.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def build_query(filters: DecisionFilters):
        stmt = select(SscStageDecision)
        if filters.application_id is not None:
            stmt = stmt.where(SscStageDecision.application_id == filters.application_id)
        if filters.stage:
            stmt = stmt.where(SscStageDecision.stage == filters.stage)
        if filters.outcome:
            stmt = stmt.where(SscStageDecision.outcome == filters.outcome)
        if filters.reviewer_id:
            stmt = stmt.where(SscStageDecision.reviewer_id == filters.reviewer_id)
        if filters.decision_type:
            stmt = stmt.where(SscStageDecision.decision_type == filters.decision_type)
        if filters.date_from is not None:
            stmt = stmt.where(SscStageDecision.created_at >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(SscStageDecision.created_at <= filters.date_to)

        if filters.newest_first:
            stmt = stmt.order_by(
                SscStageDecision.created_at.desc(),
                SscStageDecision.application_id.asc(),
                SscStageDecision.sequence.desc(),
            )
        else:
            stmt = stmt.order_by(
                SscStageDecision.created_at.asc(),
                SscStageDecision.application_id.asc(),
                SscStageDecision.sequence.asc(),
            )

        if filters.offset:
            stmt = stmt.offset(filters.offset)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return stmt

    @staticmethod
    async def count(db: AsyncSession, filters: DecisionFilters) -> int:
        unpaged = DecisionFilters(**{**filters.__dict__, "limit": None, "offset": 0})
        subquery = DecisionLedger.build_query(unpaged).order_by(None).subquery()
        result = await db.execute(select(func.count()).select_from(subquery))
        return int(result.scalar_one())

    @staticmethod
    async def list_all(
        db: AsyncSession, filters: DecisionFilters | None = None
    ) -> AsyncIterator[SscStageDecision]:
        """Stream ledger entries matching *filters*.

        Rows are fetched through a server-side cursor in batches, so
        reporting over the whole ledger does not load it into memory.
        """
        stmt = DecisionLedger.build_query(filters or DecisionFilters())
        result = await db.stream_scalars(stmt.execution_options(yield_per=200))
        async for entry in result:
            yield entry
