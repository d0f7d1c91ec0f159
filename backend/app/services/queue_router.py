"""Per-role "requires action" queues for SSC members.

Roles are resolved to stages through one capability table, ``ROLE_STAGES``;
both the queues and the HTTP layer's permission checks go through it.

An application is in a role's queue when it is submitted or under review,
its status for the role's stage is still pending, and, for the
chairperson, all three parallel stages have an outcome.  Queues are
ordered oldest submission first, ties broken by application id.

Committee membership (which staff user holds which role) is managed here
too, since it is the input to every queue and permission lookup.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import and_, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db.scholarship_application import ScholarshipApplication
from app.models.db.ssc_review import (
    SscMemberAssignment,
    SscStageDecision,
    SscStageStatus,
)
from app.models.ssc_models import (
    PARALLEL_STAGES,
    ROLE_LABELS,
    STAGE_LABELS,
    TERMINAL_STAGE_STATES,
    ApplicationStatus,
    DecisionType,
    MemberAssignmentResponse,
    QueueItem,
    ReviewStage,
    SscRole,
)
from app.services.review_errors import NotFound

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Capability table
# ---------------------------------------------------------------------------
ROLE_STAGES: dict[SscRole, ReviewStage] = {
    SscRole.CITY_COUNCIL: ReviewStage.DOCUMENT_VERIFICATION,
    SscRole.BUDGET_DEPT: ReviewStage.FINANCIAL_REVIEW,
    SscRole.EDUCATION_AFFAIRS: ReviewStage.ACADEMIC_REVIEW,
    SscRole.CHAIRPERSON: ReviewStage.FINAL_APPROVAL,
}

QUEUE_STATUSES = (ApplicationStatus.SUBMITTED.value, ApplicationStatus.UNDER_REVIEW.value)

_DECIDED = [state.value for state in TERMINAL_STAGE_STATES]


def parse_role(role: str | SscRole) -> SscRole:
    try:
        return SscRole(role)
    except ValueError:
        raise NotFound(
            f"Unknown SSC role '{role}'",
            role=str(role),
            valid_roles=[r.value for r in SscRole],
        ) from None


def stage_for_role(role: str | SscRole) -> ReviewStage:
    """Return the stage an SSC role reviews."""
    return ROLE_STAGES[parse_role(role)]


def stages_for_roles(roles: Iterable[str | SscRole]) -> set[ReviewStage]:
    """Return every stage the given roles may decide; unknown roles are ignored."""
    stages: set[ReviewStage] = set()
    for role in roles:
        try:
            stages.add(stage_for_role(role))
        except NotFound:
            logger.debug("Ignoring unknown SSC role %s", role)
    return stages


def _stage_decided(stage: ReviewStage):
    return exists().where(
        and_(
            SscStageStatus.application_id == ScholarshipApplication.id,
            SscStageStatus.stage == stage.value,
            SscStageStatus.status.in_(_DECIDED),
        )
    )


def _naive_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.max
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _queue_item(application: ScholarshipApplication, stage: ReviewStage) -> QueueItem:
    return QueueItem(
        application_id=application.id,
        application_number=application.application_number,
        stage=stage,
        application_status=application.status,
        requested_amount=(
            float(application.requested_amount)
            if application.requested_amount is not None
            else None
        ),
        submitted_at=application.submitted_at,
        student_id=application.student_id,
        school_id=application.school_id,
        category_id=application.category_id,
    )


class QueueRouter:
    """Read-only queue queries."""

    @staticmethod
    async def get_applications_for_role(
        db: AsyncSession, role: str | SscRole
    ) -> list[QueueItem]:
        """Return the applications awaiting action from *role*.

        Args:
            db: Async database session.
            role: SSC role name.

        Returns:
            Queue items ordered by ``submitted_at`` then application id.

        Raises:
            NotFound: If the role is unknown.
        """
        stage = stage_for_role(role)

        stmt = select(ScholarshipApplication).where(
            ScholarshipApplication.status.in_(QUEUE_STATUSES),
            ~_stage_decided(stage),
        )
        if stage == ReviewStage.FINAL_APPROVAL:
            for prerequisite in PARALLEL_STAGES:
                stmt = stmt.where(_stage_decided(prerequisite))

        stmt = stmt.order_by(
            ScholarshipApplication.submitted_at.asc(),
            ScholarshipApplication.id.asc(),
        )
        result = await db.execute(stmt)
        return [_queue_item(app, stage) for app in result.scalars().all()]

    @staticmethod
    async def roles_for_user(db: AsyncSession, user_id: str) -> list[SscRole]:
        """Return the active SSC roles assigned to a user."""
        result = await db.execute(
            select(SscMemberAssignment.ssc_role)
            .where(
                SscMemberAssignment.user_id == user_id,
                SscMemberAssignment.is_active.is_(True),
            )
            .order_by(SscMemberAssignment.ssc_role.asc())
        )
        roles: list[SscRole] = []
        for value in result.scalars().all():
            try:
                roles.append(SscRole(value))
            except ValueError:
                logger.warning("User %s has unknown SSC role %s", user_id, value)
        return roles

    @staticmethod
    async def get_my_queue(
        db: AsyncSession, user_id: str
    ) -> tuple[list[SscRole], list[QueueItem]]:
        """Merge the queues of every active role held by *user_id*.

        Returns:
            ``(roles, items)``; items keep queue order across roles and are
            tagged with the stage they await.
        """
        roles = await QueueRouter.roles_for_user(db, user_id)
        items: list[QueueItem] = []
        for role in roles:
            items.extend(await QueueRouter.get_applications_for_role(db, role))

        stage_order = {stage: index for index, stage in enumerate(ReviewStage)}
        items.sort(
            key=lambda item: (
                _naive_utc(item.submitted_at),
                str(item.application_id),
                stage_order[item.stage],
            )
        )
        return roles, items

    @staticmethod
    async def assign_role(
        db: AsyncSession, user_id: str, role: str | SscRole
    ) -> SscMemberAssignment:
        """Give *user_id* an SSC role, reactivating a previous assignment."""
        ssc_role = parse_role(role)
        result = await db.execute(
            select(SscMemberAssignment).where(
                SscMemberAssignment.user_id == user_id,
                SscMemberAssignment.ssc_role == ssc_role.value,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            assignment = SscMemberAssignment(user_id=user_id, ssc_role=ssc_role.value)
            db.add(assignment)
        assignment.is_active = True
        await db.flush()
        logger.info("Assigned SSC role %s to user %s", ssc_role.value, user_id)
        return assignment

    @staticmethod
    async def deactivate_role(
        db: AsyncSession, user_id: str, role: str | SscRole
    ) -> SscMemberAssignment:
        """Withdraw an SSC role; the assignment row is kept for history.

        Raises:
            NotFound: If the user does not actively hold the role.
        """
        ssc_role = parse_role(role)
        result = await db.execute(
            select(SscMemberAssignment).where(
                SscMemberAssignment.user_id == user_id,
                SscMemberAssignment.ssc_role == ssc_role.value,
                SscMemberAssignment.is_active.is_(True),
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFound(
                f"User {user_id} does not hold the {ssc_role.value} role",
                user_id=user_id,
                role=ssc_role.value,
            )
        assignment.is_active = False
        await db.flush()
        logger.info("Deactivated SSC role %s for user %s", ssc_role.value, user_id)
        return assignment

    @staticmethod
    async def list_members(
        db: AsyncSession, include_inactive: bool = True
    ) -> list[MemberAssignmentResponse]:
        """Every committee assignment with its reviewer's activity on that stage.

        Ordered by role, active assignments first, then user id.
        """
        stmt = select(SscMemberAssignment).order_by(
            SscMemberAssignment.ssc_role.asc(),
            SscMemberAssignment.is_active.desc(),
            SscMemberAssignment.user_id.asc(),
        )
        if not include_inactive:
            stmt = stmt.where(SscMemberAssignment.is_active.is_(True))
        assignments = (await db.execute(stmt)).scalars().all()

        activity_rows = await db.execute(
            select(
                SscStageDecision.reviewer_id,
                SscStageDecision.stage,
                func.count(SscStageDecision.id),
                func.max(SscStageDecision.created_at),
            )
            .where(SscStageDecision.decision_type != DecisionType.REOPEN.value)
            .group_by(SscStageDecision.reviewer_id, SscStageDecision.stage)
        )
        activity = {
            (reviewer_id, stage): (count, last)
            for reviewer_id, stage, count, last in activity_rows.all()
        }

        members: list[MemberAssignmentResponse] = []
        for assignment in assignments:
            try:
                ssc_role = SscRole(assignment.ssc_role)
            except ValueError:
                logger.warning(
                    "Skipping assignment %s with unknown SSC role %s",
                    assignment.id,
                    assignment.ssc_role,
                )
                continue
            stage = ROLE_STAGES[ssc_role]
            count, last = activity.get((assignment.user_id, stage.value), (0, None))
            members.append(
                MemberAssignmentResponse(
                    id=assignment.id,
                    user_id=assignment.user_id,
                    ssc_role=ssc_role,
                    role_label=ROLE_LABELS[ssc_role],
                    review_stage=stage,
                    stage_label=STAGE_LABELS[stage],
                    is_active=assignment.is_active,
                    assigned_at=assignment.assigned_at,
                    review_count=count,
                    last_reviewed_at=last,
                )
            )
        return members
