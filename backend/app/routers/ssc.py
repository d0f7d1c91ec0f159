"""SSC review router.

Endpoints for committee members to decide review stages, see their queues,
and read decision history and per-application stage views.  Which stages a
member may decide is resolved from their SSC role assignments through the
queue router's capability table; administrators manage those assignments
through the ``/members`` endpoints.
"""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.deps import (
    _safe_error,
    get_current_user_hardcoded,
    get_db,
    get_directory,
    get_document_storage,
    get_event_publisher,
    require_admin,
    review_http_error,
)
from app.models.ssc_models import (
    ROLE_LABELS,
    STAGE_LABELS,
    ApplicationStageView,
    BulkDecisionResponse,
    BulkDecisionResult,
    BulkFinalDecisionRequest,
    DecisionHistoryResponse,
    DecisionSubmissionResponse,
    DecisionType,
    MemberAssignmentResponse,
    MemberAssignRequest,
    MemberListResponse,
    MyQueueResponse,
    MyRolesResponse,
    QueueResponse,
    ReviewStage,
    SscRole,
    StageChecklistResponse,
    StageDecisionRequest,
    StageDecisionResponse,
    StageReopenRequest,
    StageState,
    StageStatusResponse,
)
from app.security import rate_limit_sensitive
from app.services.application_service import ApplicationService
from app.services.decision_ledger import DecisionFilters, DecisionLedger
from app.services.directory import Directory
from app.services.queue_router import (
    ROLE_STAGES,
    QueueRouter,
    parse_role,
    stage_for_role,
    stages_for_roles,
)
from app.services.reporting_projector import ReportingProjector
from app.services.review_errors import ReviewError
from app.services.review_events import EventPublisher
from app.services.review_workflow import ReviewWorkflow, SubmissionResult
from app.services.stage_evaluator import parse_stage
from app.storage import DocumentStorage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/ssc", tags=["ssc-review"])


def _submission_response(result: SubmissionResult) -> DecisionSubmissionResponse:
    return DecisionSubmissionResponse(
        stage_status=StageStatusResponse.model_validate(result.stage_status),
        application_status=result.application.status,
        decision_id=result.decision.id,
    )


def _is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def _forbidden(message: str, roles: list[SscRole]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "code": "forbidden",
            "message": message,
            "details": {"roles": [r.value for r in roles]},
        },
    )


def _member_response(assignment) -> MemberAssignmentResponse:
    ssc_role = SscRole(assignment.ssc_role)
    stage = ROLE_STAGES[ssc_role]
    return MemberAssignmentResponse(
        id=assignment.id,
        user_id=assignment.user_id,
        ssc_role=ssc_role,
        role_label=ROLE_LABELS[ssc_role],
        review_stage=stage,
        stage_label=STAGE_LABELS[stage],
        is_active=assignment.is_active,
        assigned_at=assignment.assigned_at,
    )


# ---------------------------------------------------------------------------
# POST  /ssc/applications/{application_id}/stages/{stage}/decision
# ---------------------------------------------------------------------------


@router.post(
    "/applications/{application_id}/stages/{stage}/decision",
    response_model=DecisionSubmissionResponse,
)
@rate_limit_sensitive()
async def submit_stage_decision(
    request: Request,
    application_id: UUID,
    stage: str,
    body: StageDecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Record an approval, rejection or revision request for one review stage.

    The caller must hold the SSC role that owns *stage*.

    Args:
        request: Incoming request (used by the rate limiter).
        application_id: UUID of the application.
        stage: Review stage being decided.
        body: Outcome, stage payload and notes.
        db: Async database session (injected).
        current_user: Authenticated user (injected).
        publisher: Review event publisher (injected).

    Returns:
        DecisionSubmissionResponse with the authoritative stage and
        application status.
    """
    try:
        review_stage = parse_stage(stage)
        roles = await QueueRouter.roles_for_user(db, current_user["id"])
        if review_stage not in stages_for_roles(roles):
            raise _forbidden(
                f"Your SSC roles do not permit deciding {review_stage.value}", roles
            )

        acting_role = next(r for r in roles if ROLE_STAGES[r] == review_stage)

        result = await ReviewWorkflow.submit_stage_decision(
            db,
            application_id=application_id,
            stage=review_stage,
            outcome=body.outcome,
            review_data=body.review_data,
            notes=body.notes,
            reviewer_id=current_user["id"],
            reviewer_role=acting_role.value,
            publisher=publisher,
        )
    except HTTPException:
        raise
    except ReviewError as e:
        raise review_http_error("recording stage decision", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("recording stage decision", e),
        ) from e

    return _submission_response(result)


# ---------------------------------------------------------------------------
# POST  /ssc/applications/{application_id}/stages/{stage}/reopen
# ---------------------------------------------------------------------------


@router.post(
    "/applications/{application_id}/stages/{stage}/reopen",
    response_model=DecisionSubmissionResponse,
)
async def reopen_stage(
    application_id: UUID,
    stage: str,
    body: StageReopenRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Administratively return a decided parallel stage to pending."""
    try:
        result = await ReviewWorkflow.reopen_stage(
            db,
            application_id=application_id,
            stage=stage,
            reason=body.reason,
            admin_id=current_user["id"],
            publisher=publisher,
        )
    except ReviewError as e:
        raise review_http_error("reopening stage", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("reopening stage", e),
        ) from e

    return _submission_response(result)


# ---------------------------------------------------------------------------
# POST  /ssc/bulk/final-decision
# ---------------------------------------------------------------------------


@router.post("/bulk/final-decision", response_model=BulkDecisionResponse)
@rate_limit_sensitive()
async def bulk_final_decision(
    request: Request,
    body: BulkFinalDecisionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Approve or reject several applications at the final approval stage.

    Each application is decided on its own; one that has not cleared the
    parallel stages (or is otherwise ineligible) is reported as failed
    without affecting the rest.
    """
    roles = await QueueRouter.roles_for_user(db, current_user["id"])
    if ReviewStage.FINAL_APPROVAL not in stages_for_roles(roles):
        raise _forbidden("Only the SSC chairperson can decide final approval", roles)

    try:
        outcomes = await ReviewWorkflow.bulk_final_decision(
            db,
            application_ids=body.application_ids,
            outcome=body.outcome,
            notes=body.notes,
            reviewer_id=current_user["id"],
            reviewer_role=SscRole.CHAIRPERSON.value,
            publisher=publisher,
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("bulk final decision", e),
        ) from e

    results = []
    for outcome in outcomes:
        error = None
        if outcome.error is not None:
            error = review_http_error("bulk final decision", outcome.error).detail
        results.append(
            BulkDecisionResult(
                application_id=outcome.application_id,
                success=outcome.error is None,
                application_status=outcome.application_status,
                decision_id=outcome.decision_id,
                error=error,
            )
        )
    succeeded = sum(1 for r in results if r.success)
    return BulkDecisionResponse(
        results=results, succeeded=succeeded, failed=len(results) - succeeded
    )


# ---------------------------------------------------------------------------
# GET  /ssc/queues/{role}
# ---------------------------------------------------------------------------


@router.get("/queues/{role}", response_model=QueueResponse)
async def get_role_queue(
    role: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """List applications awaiting action from an SSC role.

    Members see the queues of roles they hold; administrators see all.
    """
    try:
        ssc_role = parse_role(role)
        if not _is_admin(current_user):
            held = await QueueRouter.roles_for_user(db, current_user["id"])
            if ssc_role not in held:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"You do not hold the {ssc_role.value} role",
                )
        items = await QueueRouter.get_applications_for_role(db, ssc_role)
    except HTTPException:
        raise
    except ReviewError as e:
        raise review_http_error("loading review queue", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading review queue", e),
        ) from e

    return QueueResponse(
        role=ssc_role,
        stage=stage_for_role(ssc_role),
        applications=items,
        total=len(items),
    )


# ---------------------------------------------------------------------------
# GET  /ssc/me/queue
# ---------------------------------------------------------------------------


@router.get("/me/queue", response_model=MyQueueResponse)
async def get_my_queue(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """List everything awaiting the current user across their SSC roles."""
    try:
        roles, items = await QueueRouter.get_my_queue(db, current_user["id"])
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading my review queue", e),
        ) from e

    return MyQueueResponse(roles=roles, applications=items, total=len(items))


# ---------------------------------------------------------------------------
# GET  /ssc/decisions
# ---------------------------------------------------------------------------


@router.get("/decisions", response_model=DecisionHistoryResponse)
async def get_decision_history(
    stage: ReviewStage | None = Query(None, description="Filter by stage"),
    outcome: StageState | None = Query(None, description="Filter by outcome"),
    reviewer_id: str | None = Query(None, description="Filter by reviewer"),
    decision_type: DecisionType | None = Query(None, description="review or reopen"),
    date_from: datetime | None = Query(None, description="Decisions on or after"),
    date_to: datetime | None = Query(None, description="Decisions on or before"),
    limit: int = Query(50, ge=1, le=500, description="Max results"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
    directory: Directory = Depends(get_directory),
):
    """Decision history across all applications, newest first."""
    filters = DecisionFilters(
        stage=stage.value if stage else None,
        outcome=outcome.value if outcome else None,
        reviewer_id=reviewer_id,
        decision_type=decision_type.value if decision_type else None,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    try:
        items, total = await ReportingProjector.decision_history(db, filters, directory)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading decision history", e),
        ) from e

    return DecisionHistoryResponse(decisions=items, total=total)


# ---------------------------------------------------------------------------
# GET  /ssc/applications/{application_id}/decisions
# ---------------------------------------------------------------------------


@router.get(
    "/applications/{application_id}/decisions",
    response_model=list[StageDecisionResponse],
)
async def get_application_decisions(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """The full ledger for one application, oldest first."""
    try:
        await ApplicationService.get_application(db, application_id)
        entries = await DecisionLedger.list_for(db, application_id)
    except ReviewError as e:
        raise review_http_error("loading application decisions", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading application decisions", e),
        ) from e

    return [StageDecisionResponse.model_validate(entry) for entry in entries]


# ---------------------------------------------------------------------------
# GET  /ssc/applications/{application_id}/stages
# ---------------------------------------------------------------------------


@router.get(
    "/applications/{application_id}/stages",
    response_model=ApplicationStageView,
)
async def get_application_stage_view(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
    storage: DocumentStorage = Depends(get_document_storage),
):
    """All four stages of an application with document links."""
    try:
        view = await ReportingProjector.application_stage_view(
            db, application_id, storage
        )
    except ReviewError as e:
        raise review_http_error("loading stage view", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading stage view", e),
        ) from e

    return view


# ---------------------------------------------------------------------------
# GET  /ssc/applications/{application_id}/checklist
# ---------------------------------------------------------------------------


@router.get(
    "/applications/{application_id}/checklist",
    response_model=StageChecklistResponse,
)
async def get_stage_checklist(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """Completed/pending summary of the four review stages."""
    try:
        checklist = await ReportingProjector.stage_checklist(db, application_id)
    except ReviewError as e:
        raise review_http_error("loading stage checklist", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading stage checklist", e),
        ) from e

    return checklist


# ---------------------------------------------------------------------------
# GET  /ssc/me/roles
# ---------------------------------------------------------------------------


@router.get("/me/roles", response_model=MyRolesResponse)
async def get_my_roles(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user_hardcoded),
):
    """The current user's active SSC roles and the stages they may decide."""
    try:
        roles = await QueueRouter.roles_for_user(db, current_user["id"])
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("loading SSC roles", e),
        ) from e

    allowed = stages_for_roles(roles)
    return MyRolesResponse(
        user_id=current_user["id"],
        has_ssc_role=bool(roles),
        roles=roles,
        stages=[stage for stage in ReviewStage if stage in allowed],
        is_chairperson=SscRole.CHAIRPERSON in roles,
        role_labels=[ROLE_LABELS[role] for role in roles],
    )


# ---------------------------------------------------------------------------
# Committee membership (admin only)
# ---------------------------------------------------------------------------


@router.get("/members", response_model=MemberListResponse)
async def list_members(
    include_inactive: bool = Query(True, description="Include withdrawn roles"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
):
    """All committee role assignments with each member's review activity."""
    try:
        members = await QueueRouter.list_members(db, include_inactive=include_inactive)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("listing SSC members", e),
        ) from e

    return MemberListResponse(members=members, total=len(members))


@router.post(
    "/members",
    response_model=MemberAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_member(
    body: MemberAssignRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
):
    """Give a staff user an SSC role, reactivating it if previously withdrawn."""
    try:
        assignment = await QueueRouter.assign_role(db, body.user_id, body.ssc_role)
    except ReviewError as e:
        raise review_http_error("assigning SSC role", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("assigning SSC role", e),
        ) from e

    logger.info(
        "Admin %s assigned %s to %s", current_user["id"], body.ssc_role.value, body.user_id
    )
    return _member_response(assignment)


@router.delete("/members/{user_id}/roles/{role}", response_model=MemberAssignmentResponse)
async def deactivate_member(
    user_id: str,
    role: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
):
    """Withdraw an SSC role from a staff user."""
    try:
        assignment = await QueueRouter.deactivate_role(db, user_id, role)
    except ReviewError as e:
        raise review_http_error("withdrawing SSC role", e) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("withdrawing SSC role", e),
        ) from e

    logger.info("Admin %s withdrew %s from %s", current_user["id"], role, user_id)
    return _member_response(assignment)

