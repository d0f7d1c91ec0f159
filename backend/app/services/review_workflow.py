"""Application state machine for the SSC parallel review workflow.

Document verification, financial review and academic review run in
parallel and in any order.  Final approval is gated on all three having
an outcome, and its outcome decides the application.  A rejected parallel
stage is advisory: the application stays ``under_review`` until the
chairperson decides.  A reviewer may instead send a parallel stage back
for revision; the request is ledgered and the stage stays pending.

Each decision is one transaction: validate, append to the ledger, update
the stage status, recompute the overall status and write status history.
Work on one application is serialised by a row lock (``SELECT ... FOR
UPDATE``) and, within this process, by a per-application ``asyncio.Lock``.
Events go out after commit.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db.base import utcnow
from app.models.db.scholarship_application import ScholarshipApplication
from app.models.db.ssc_review import SscStageDecision, SscStageStatus
from app.models.db.status_history import ApplicationStatusHistory
from app.models.ssc_models import (
    PARALLEL_STAGES,
    TERMINAL_APPLICATION_STATUSES,
    TERMINAL_STAGE_STATES,
    ApplicationStatus,
    DecisionType,
    ReviewStage,
    StageOutcome,
    StageState,
)
from app.services.decision_ledger import DecisionLedger
from app.services.review_errors import (
    InvalidTransition,
    MissingReason,
    NotFound,
    PersistenceError,
    PrerequisiteStagesIncomplete,
    ReviewError,
    StageAlreadyDecided,
    StageNotDecided,
)
from app.services.review_events import (
    ApplicationApproved,
    ApplicationRejected,
    ApplicationUnderReview,
    EventPublisher,
    ReviewEvent,
    StageDecided,
    StageReopened,
    StageRevisionRequested,
    publish_all,
)
from app.services.stage_evaluator import (
    StageDecision,
    check_amount,
    ensure_open,
    evaluate_submission,
    parse_stage,
)
from app.services.stage_store import StageStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Allowed overall status transitions
# ---------------------------------------------------------------------------
ALLOWED_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["submitted", "withdrawn"],
    "submitted": ["under_review", "withdrawn"],
    "under_review": ["approved", "rejected", "withdrawn"],
    # Terminal states -- no outgoing transitions
    "approved": [],
    "rejected": [],
    "withdrawn": [],
}

# ---------------------------------------------------------------------------
# Per-application locks
# ---------------------------------------------------------------------------
_application_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def application_lock(application_id: UUID) -> asyncio.Lock:
    """Return the in-process lock serialising work on one application."""
    lock = _application_locks.get(application_id)
    if lock is None:
        lock = asyncio.Lock()
        _application_locks[application_id] = lock
    return lock


@dataclass
class SubmissionResult:
    """Authoritative state after a decision or reopen has committed."""

    stage_status: SscStageStatus
    application: ScholarshipApplication
    decision: SscStageDecision
    events: list[ReviewEvent]


@dataclass
class BulkDecisionOutcome:
    """Result for one application in a bulk final decision."""

    application_id: UUID
    application_status: str | None = None
    decision_id: UUID | None = None
    error: ReviewError | None = None


def pending_prerequisites(statuses: dict[ReviewStage, Any]) -> list[ReviewStage]:
    """Parallel stages that still have no outcome."""
    return [
        stage
        for stage in PARALLEL_STAGES
        if StageState(statuses[stage].status) not in TERMINAL_STAGE_STATES
    ]


def derive_overall_status(
    current_status: str, statuses: dict[ReviewStage, Any]
) -> ApplicationStatus:
    """Compute the overall status implied by the current stage statuses.

    Terminal statuses are absorbing.  Final approval decides the
    application; any other stage outcome only moves it under review.
    """
    current = ApplicationStatus(current_status)
    if current in TERMINAL_APPLICATION_STATUSES or current == ApplicationStatus.DRAFT:
        return current

    final = StageState(statuses[ReviewStage.FINAL_APPROVAL].status)
    if final == StageState.APPROVED:
        return ApplicationStatus.APPROVED
    if final == StageState.REJECTED:
        return ApplicationStatus.REJECTED

    if any(StageState(s.status) in TERMINAL_STAGE_STATES for s in statuses.values()):
        return ApplicationStatus.UNDER_REVIEW
    return current


def _to_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _final_amount(
    decision: StageDecision, statuses: dict[ReviewStage, Any]
) -> tuple[str, Any]:
    """Amount awarded on final approval and the field it came from.

    Defaults to the financial review's recommendation when the chairperson
    gives no explicit amount.
    """
    amount = decision.review_data.get("approved_amount")
    if amount is not None:
        return "approved_amount", amount
    financial = statuses[ReviewStage.FINANCIAL_REVIEW].review_data or {}
    return "financial_review.recommended_amount", financial.get("recommended_amount")


class ReviewWorkflow:
    """Service layer for SSC stage decisions and overall status."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def load_for_update(
        db: AsyncSession, application_id: UUID
    ) -> ScholarshipApplication:
        """Load and row-lock an application, raising NotFound if absent."""
        result = await db.execute(
            select(ScholarshipApplication)
            .where(ScholarshipApplication.id == application_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        application = result.scalar_one_or_none()
        if application is None:
            raise NotFound(
                "Application not found", application_id=str(application_id)
            )
        return application

    @staticmethod
    def transition(
        db: AsyncSession,
        application: ScholarshipApplication,
        new_status: ApplicationStatus,
        changed_by: str,
        reason: str | None = None,
    ) -> None:
        """Move an application to *new_status* and record the change.

        Raises:
            InvalidTransition: If the transition table does not allow it.
        """
        old_status = application.status or ApplicationStatus.DRAFT.value
        allowed = ALLOWED_TRANSITIONS.get(old_status, [])
        if new_status.value not in allowed:
            raise InvalidTransition(
                f"Cannot transition from '{old_status}' to '{new_status.value}'. "
                f"Allowed transitions: {', '.join(allowed) if allowed else 'none (terminal state)'}",
                from_status=old_status,
                to_status=new_status.value,
                allowed=allowed,
            )

        db.add(
            ApplicationStatusHistory(
                application_id=application.id,
                old_status=old_status,
                new_status=new_status.value,
                changed_by=changed_by,
                reason=reason,
            )
        )

        application.status = new_status.value
        now = utcnow()
        if new_status == ApplicationStatus.SUBMITTED:
            application.submitted_at = now
        elif new_status == ApplicationStatus.APPROVED:
            application.approved_at = now
        elif new_status == ApplicationStatus.REJECTED:
            application.rejected_at = now
            application.rejection_reason = reason
        elif new_status == ApplicationStatus.WITHDRAWN:
            application.withdrawn_at = now

        logger.info(
            "Application %s: %s -> %s by %s",
            application.application_number,
            old_status,
            new_status.value,
            changed_by,
        )

    @staticmethod
    async def _rollback(db: AsyncSession, application_id: UUID, exc: Exception) -> None:
        await db.rollback()
        if isinstance(exc, ReviewError):
            logger.info(
                "Rejected operation on application %s: %s (%s)",
                application_id,
                exc.code,
                exc.message,
            )

    # ------------------------------------------------------------------
    # submit_stage_decision
    # ------------------------------------------------------------------

    @staticmethod
    async def submit_stage_decision(
        db: AsyncSession,
        application_id: UUID,
        stage: str | ReviewStage,
        outcome: str | StageOutcome,
        review_data: dict[str, Any] | None,
        notes: str | None,
        reviewer_id: str,
        reviewer_role: str | None = None,
        publisher: EventPublisher | None = None,
    ) -> SubmissionResult:
        """Record a reviewer's decision on one stage of an application.

        Args:
            db: Async database session; committed on success, rolled back
                on any failure.
            application_id: UUID of the application.
            stage: Review stage being decided.
            outcome: ``approved`` or ``rejected``.
            review_data: Stage-specific structured payload.
            notes: Reviewer notes; required for a rejection.
            reviewer_id: Identity of the reviewer.
            reviewer_role: SSC role the reviewer acted under.
            publisher: Receives review events after commit.

        Returns:
            SubmissionResult with the new stage status, the application and
            the ledger entry.

        Raises:
            ReviewError: A subclass naming the failed precondition.
            PersistenceError: If the database write fails.
        """
        review_stage = parse_stage(stage)

        async with application_lock(application_id):
            try:
                application = await ReviewWorkflow.load_for_update(db, application_id)
                decision = evaluate_submission(
                    application_status=application.status,
                    stage=review_stage,
                    outcome=outcome,
                    review_data=review_data,
                    notes=notes,
                    reviewer_id=reviewer_id,
                    reviewer_role=reviewer_role,
                )

                statuses = await StageStore.get_statuses(db, application.id)
                current = statuses[review_stage]
                if StageState(current.status) in TERMINAL_STAGE_STATES:
                    raise StageAlreadyDecided(
                        f"{review_stage.value} has already been {current.status}; "
                        "reopen it before deciding again",
                        stage=review_stage.value,
                        status=current.status,
                        decision_id=str(current.decision_id) if current.decision_id else None,
                    )

                if review_stage == ReviewStage.FINAL_APPROVAL:
                    pending = pending_prerequisites(statuses)
                    if pending:
                        raise PrerequisiteStagesIncomplete(
                            "Final approval requires document verification, "
                            "financial review and academic review to be decided",
                            pending_stages=[s.value for s in pending],
                        )
                    if decision.outcome == StageOutcome.APPROVED:
                        check_amount(*_final_amount(decision, statuses))

                entry = await DecisionLedger.append(db, application.id, decision)
                stage_status = await StageStore.apply_decision(db, entry)
                statuses[review_stage] = stage_status

                events: list[ReviewEvent] = []
                if decision.decision_type == DecisionType.REVISION_REQUESTED:
                    events.append(
                        StageRevisionRequested(
                            application_id=application.id,
                            stage=entry.stage,
                            reviewer_id=entry.reviewer_id,
                            notes=entry.notes or "",
                            decision_id=entry.id,
                        )
                    )
                else:
                    events.append(
                        StageDecided(
                            application_id=application.id,
                            stage=entry.stage,
                            outcome=entry.outcome,
                            reviewer_id=entry.reviewer_id,
                            decision_id=entry.id,
                        )
                    )
                events.extend(
                    ReviewWorkflow._apply_overall_status(
                        db, application, statuses, decision
                    )
                )

                await db.commit()
            except ReviewError as exc:
                await ReviewWorkflow._rollback(db, application_id, exc)
                raise
            except SQLAlchemyError as exc:
                await ReviewWorkflow._rollback(db, application_id, exc)
                logger.error(
                    "Database error recording %s decision for application %s: %s",
                    review_stage.value,
                    application_id,
                    exc,
                )
                raise PersistenceError(
                    "Could not record the stage decision",
                    application_id=str(application_id),
                    stage=review_stage.value,
                ) from exc

        await publish_all(publisher, events)
        return SubmissionResult(
            stage_status=stage_status,
            application=application,
            decision=entry,
            events=events,
        )

    @staticmethod
    def _apply_overall_status(
        db: AsyncSession,
        application: ScholarshipApplication,
        statuses: dict[ReviewStage, SscStageStatus],
        decision: StageDecision,
    ) -> list[ReviewEvent]:
        events: list[ReviewEvent] = []
        target = derive_overall_status(application.status, statuses)
        if (
            decision.decision_type == DecisionType.REVISION_REQUESTED
            and target == ApplicationStatus.SUBMITTED
        ):
            # A revision request is committee action even though no stage closed.
            target = ApplicationStatus.UNDER_REVIEW
        if target.value == application.status:
            return events

        if application.status == ApplicationStatus.SUBMITTED.value:
            ReviewWorkflow.transition(
                db,
                application,
                ApplicationStatus.UNDER_REVIEW,
                decision.reviewer_id,
                reason=f"First SSC decision recorded ({decision.stage.value})",
            )
            events.append(
                ApplicationUnderReview(
                    application_id=application.id,
                    application_number=application.application_number,
                )
            )
            if target == ApplicationStatus.UNDER_REVIEW:
                return events

        if target == ApplicationStatus.APPROVED:
            _, amount = _final_amount(decision, statuses)
            application.approved_amount = _to_amount(amount)
            application.decided_by = decision.reviewer_id
            ReviewWorkflow.transition(
                db,
                application,
                ApplicationStatus.APPROVED,
                decision.reviewer_id,
                reason=decision.notes,
            )
            events.append(
                ApplicationApproved(
                    application_id=application.id,
                    application_number=application.application_number,
                    approved_amount=application.approved_amount,
                    decided_by=decision.reviewer_id,
                )
            )
        elif target == ApplicationStatus.REJECTED:
            application.decided_by = decision.reviewer_id
            ReviewWorkflow.transition(
                db,
                application,
                ApplicationStatus.REJECTED,
                decision.reviewer_id,
                reason=decision.notes,
            )
            events.append(
                ApplicationRejected(
                    application_id=application.id,
                    application_number=application.application_number,
                    reason=decision.notes or "",
                    decided_by=decision.reviewer_id,
                )
            )
        return events

    # ------------------------------------------------------------------
    # reopen_stage
    # ------------------------------------------------------------------

    @staticmethod
    async def reopen_stage(
        db: AsyncSession,
        application_id: UUID,
        stage: str | ReviewStage,
        reason: str | None,
        admin_id: str,
        publisher: EventPublisher | None = None,
    ) -> SubmissionResult:
        """Return a decided parallel stage to ``pending``.

        The reopen is itself a ledger entry (``decision_type = reopen``,
        outcome ``pending``) so the history keeps both the original decision
        and the reason it was undone.  The overall status is unchanged.

        Raises:
            NotFound: Unknown application or stage.
            ApplicationClosed: The application is terminal.
            MissingReason: No reason given.
            InvalidTransition: The stage is final approval.
            StageNotDecided: The stage is already pending.
        """
        review_stage = parse_stage(stage)

        async with application_lock(application_id):
            try:
                application = await ReviewWorkflow.load_for_update(db, application_id)
                ensure_open(application.status)

                cleaned = reason.strip() if reason else ""
                if not cleaned:
                    raise MissingReason(
                        "A reason is required to reopen a stage",
                        stage=review_stage.value,
                    )
                if review_stage not in PARALLEL_STAGES:
                    raise InvalidTransition(
                        "Only document verification, financial review and "
                        "academic review can be reopened",
                        stage=review_stage.value,
                    )

                current = await StageStore.get_status(db, application.id, review_stage)
                if StageState(current.status) not in TERMINAL_STAGE_STATES:
                    raise StageNotDecided(
                        f"{review_stage.value} is still pending",
                        stage=review_stage.value,
                    )

                decision = StageDecision(
                    stage=review_stage,
                    outcome=StageState.PENDING,
                    reviewer_id=admin_id,
                    review_data={
                        "reopened_decision_id": (
                            str(current.decision_id) if current.decision_id else None
                        ),
                        "previous_status": current.status,
                    },
                    notes=cleaned,
                    reviewer_role="admin",
                    decision_type=DecisionType.REOPEN,
                )
                entry = await DecisionLedger.append(db, application.id, decision)
                stage_status = await StageStore.apply_decision(db, entry)
                await db.commit()
            except ReviewError as exc:
                await ReviewWorkflow._rollback(db, application_id, exc)
                raise
            except SQLAlchemyError as exc:
                await ReviewWorkflow._rollback(db, application_id, exc)
                logger.error(
                    "Database error reopening %s for application %s: %s",
                    review_stage.value,
                    application_id,
                    exc,
                )
                raise PersistenceError(
                    "Could not reopen the stage",
                    application_id=str(application_id),
                    stage=review_stage.value,
                ) from exc

        events: list[ReviewEvent] = [
            StageReopened(
                application_id=application.id,
                stage=entry.stage,
                reviewer_id=admin_id,
                reason=cleaned,
                decision_id=entry.id,
            )
        ]
        await publish_all(publisher, events)
        return SubmissionResult(
            stage_status=stage_status,
            application=application,
            decision=entry,
            events=events,
        )

    # ------------------------------------------------------------------
    # bulk_final_decision
    # ------------------------------------------------------------------

    @staticmethod
    async def bulk_final_decision(
        db: AsyncSession,
        application_ids: list[UUID],
        outcome: str | StageOutcome,
        notes: str | None,
        reviewer_id: str,
        reviewer_role: str | None = None,
        publisher: EventPublisher | None = None,
    ) -> list[BulkDecisionOutcome]:
        """Decide final approval for several applications, one at a time.

        Each application goes through ``submit_stage_decision`` in its own
        transaction, so the prerequisite gate applies to every one of them
        and a failure leaves the others untouched.  Duplicate ids are
        decided once.

        Returns:
            One BulkDecisionOutcome per distinct application, in request
            order.
        """
        results: list[BulkDecisionOutcome] = []
        for application_id in dict.fromkeys(application_ids):
            try:
                result = await ReviewWorkflow.submit_stage_decision(
                    db,
                    application_id=application_id,
                    stage=ReviewStage.FINAL_APPROVAL,
                    outcome=outcome,
                    review_data={},
                    notes=notes,
                    reviewer_id=reviewer_id,
                    reviewer_role=reviewer_role,
                    publisher=publisher,
                )
            except ReviewError as exc:
                results.append(BulkDecisionOutcome(application_id=application_id, error=exc))
                continue
            # Read now: a later rollback expires these instances.
            results.append(
                BulkDecisionOutcome(
                    application_id=application_id,
                    application_status=result.application.status,
                    decision_id=result.decision.id,
                )
            )

        failed = sum(1 for r in results if r.error is not None)
        logger.info(
            "Bulk final %s by %s: %s decided, %s failed",
            getattr(outcome, "value", outcome),
            reviewer_id,
            len(results) - failed,
            failed,
        )
        return results
