"""
Tests for the per-role SSC review queues.

Tests cover:
1. Role to stage capability table
2. Queue membership for the parallel stages
3. Chairperson queue gated on all three parallel stages
4. Queue ordering and the merged "my queue" view
5. Role assignments, withdrawal and the member roster

Usage:
    cd backend && pytest tests/test_queue_router.py -v
"""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.models.ssc_models import ReviewStage, SscRole
from app.services.queue_router import (
    ROLE_STAGES,
    QueueRouter,
    stage_for_role,
    stages_for_roles,
)
from app.services.review_errors import NotFound
from app.services.review_workflow import ReviewWorkflow


# ============================================================================
# HELPERS
# ============================================================================

async def queue_ids(session_factory, role):
    async with session_factory() as session:
        items = await QueueRouter.get_applications_for_role(session, role)
    return [item.application_id for item in items]


# ============================================================================
# CAPABILITY TABLE
# ============================================================================

class TestRoleStages:
    """Each SSC role reviews exactly one stage."""

    def test_every_role_maps_to_a_distinct_stage(self):
        assert set(ROLE_STAGES) == set(SscRole)
        assert set(ROLE_STAGES.values()) == set(ReviewStage)

    def test_stage_for_role(self):
        assert stage_for_role("budget_dept") == ReviewStage.FINANCIAL_REVIEW
        assert stage_for_role(SscRole.CHAIRPERSON) == ReviewStage.FINAL_APPROVAL

    def test_unknown_role(self):
        with pytest.raises(NotFound):
            stage_for_role("treasurer")

    def test_stages_for_roles_skips_unknown(self):
        assert stages_for_roles(["city_council", "treasurer"]) == {
            ReviewStage.DOCUMENT_VERIFICATION
        }


# ============================================================================
# QUEUE MEMBERSHIP
# ============================================================================

class TestRoleQueues:
    """Which applications appear in which queue."""

    async def test_new_submission_is_in_every_parallel_queue(
        self, make_application, session_factory
    ):
        application = await make_application()

        for role in ("city_council", "budget_dept", "education_affairs"):
            assert await queue_ids(session_factory, role) == [application.id]
        assert await queue_ids(session_factory, "chairperson") == []

    async def test_decided_stage_leaves_its_queue_only(
        self, make_application, decide, session_factory
    ):
        application = await make_application()

        await decide(application.id, "document_verification")

        assert await queue_ids(session_factory, "city_council") == []
        assert await queue_ids(session_factory, "budget_dept") == [application.id]
        assert await queue_ids(session_factory, "education_affairs") == [application.id]

    async def test_chairperson_waits_for_all_parallel_stages(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(application.id, "document_verification")
        await decide(application.id, "financial_review")

        assert await queue_ids(session_factory, "chairperson") == []

        await decide(
            application.id, "academic_review", outcome="rejected", notes="Low GWA"
        )

        assert await queue_ids(session_factory, "chairperson") == [application.id]

    async def test_decided_application_leaves_chairperson_queue(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        for stage in ("document_verification", "financial_review", "academic_review"):
            await decide(application.id, stage)

        await decide(application.id, "final_approval")

        assert await queue_ids(session_factory, "chairperson") == []

    @pytest.mark.parametrize("status", ["draft", "withdrawn", "approved", "rejected"])
    async def test_non_reviewable_statuses_are_excluded(
        self, make_application, session_factory, status
    ):
        await make_application(status=status)

        assert await queue_ids(session_factory, "education_affairs") == []

    async def test_reopened_stage_returns_to_queue(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(application.id, "academic_review", outcome="rejected", notes="Low GWA")
        assert await queue_ids(session_factory, "education_affairs") == []

        async with session_factory() as session:
            await ReviewWorkflow.reopen_stage(
                session, application.id, "academic_review", "Appeal granted", "admin-1"
            )

        assert await queue_ids(session_factory, "education_affairs") == [application.id]

    async def test_queue_is_oldest_submission_first(
        self, make_application, session_factory
    ):
        newer = await make_application(
            submitted_at=datetime(2026, 10, 5, 9, 0, tzinfo=timezone.utc)
        )
        older = await make_application(
            submitted_at=datetime(2026, 10, 2, 9, 0, tzinfo=timezone.utc)
        )

        assert await queue_ids(session_factory, "budget_dept") == [older.id, newer.id]

    async def test_queue_items_carry_summary_fields(
        self, make_application, session_factory
    ):
        application = await make_application(requested_amount=25000)

        async with session_factory() as session:
            items = await QueueRouter.get_applications_for_role(session, "budget_dept")

        item = items[0]
        assert item.application_number == application.application_number
        assert item.stage == ReviewStage.FINANCIAL_REVIEW
        assert item.requested_amount == 25000
        assert item.student_id == "STU-001"

    async def test_unknown_role_queue(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFound):
                await QueueRouter.get_applications_for_role(session, "treasurer")


# ============================================================================
# MEMBERSHIP AND MY QUEUE
# ============================================================================

class TestMyQueue:
    """Merged queue across every role a member holds."""

    async def test_roles_for_user_ignores_inactive(self, assign_role, session_factory):
        await assign_role("user-1", "budget_dept")
        await assign_role("user-1", "city_council", is_active=False)

        async with session_factory() as session:
            roles = await QueueRouter.roles_for_user(session, "user-1")

        assert roles == [SscRole.BUDGET_DEPT]

    async def test_merged_queue_tags_each_stage(
        self, make_application, assign_role, session_factory
    ):
        first = await make_application()
        second = await make_application()
        await assign_role("user-1", "budget_dept")
        await assign_role("user-1", "education_affairs")

        async with session_factory() as session:
            roles, items = await QueueRouter.get_my_queue(session, "user-1")

        assert set(roles) == {SscRole.BUDGET_DEPT, SscRole.EDUCATION_AFFAIRS}
        assert [(item.application_id, item.stage) for item in items] == [
            (first.id, ReviewStage.FINANCIAL_REVIEW),
            (first.id, ReviewStage.ACADEMIC_REVIEW),
            (second.id, ReviewStage.FINANCIAL_REVIEW),
            (second.id, ReviewStage.ACADEMIC_REVIEW),
        ]

    async def test_user_without_roles_has_empty_queue(
        self, make_application, session_factory
    ):
        await make_application()

        async with session_factory() as session:
            roles, items = await QueueRouter.get_my_queue(session, "nobody")

        assert roles == []
        assert items == []

    async def test_assign_role_reactivates(self, assign_role, session_factory):
        await assign_role("user-2", "chairperson", is_active=False)

        async with session_factory() as session:
            await QueueRouter.assign_role(session, "user-2", "chairperson")
            await session.commit()
            roles = await QueueRouter.roles_for_user(session, "user-2")

        assert roles == [SscRole.CHAIRPERSON]

    async def test_revision_keeps_application_in_queue(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(
            application.id,
            "financial_review",
            outcome="revision_requested",
            notes="Attach the latest payslip",
        )

        assert await queue_ids(session_factory, "budget_dept") == [application.id]


# ============================================================================
# COMMITTEE MEMBERS
# ============================================================================

class TestCommitteeMembers:
    """Role withdrawal and the member roster."""

    async def test_deactivate_role_removes_it(self, assign_role, session_factory):
        await assign_role("user-3", "budget_dept")
        await assign_role("user-3", "education_affairs")

        async with session_factory() as session:
            assignment = await QueueRouter.deactivate_role(session, "user-3", "budget_dept")
            await session.commit()
            roles = await QueueRouter.roles_for_user(session, "user-3")

        assert assignment.is_active is False
        assert roles == [SscRole.EDUCATION_AFFAIRS]

    async def test_deactivate_role_not_held(self, assign_role, session_factory):
        await assign_role("user-4", "chairperson", is_active=False)

        async with session_factory() as session:
            with pytest.raises(NotFound):
                await QueueRouter.deactivate_role(session, "user-4", "chairperson")
            with pytest.raises(NotFound):
                await QueueRouter.deactivate_role(session, "user-4", "treasurer")

    async def test_list_members_counts_reviews_on_the_role_stage(
        self, make_application, decide, assign_role, session_factory
    ):
        application = await make_application()
        await assign_role("budget-1", "budget_dept")
        await assign_role("council-1", "city_council")
        await assign_role("council-2", "city_council", is_active=False)
        await decide(application.id, "financial_review", reviewer_id="budget-1")
        await decide(
            application.id,
            "academic_review",
            outcome="rejected",
            notes="Missing grades",
            reviewer_id="budget-1",
        )

        async with session_factory() as session:
            members = await QueueRouter.list_members(session)
            active = await QueueRouter.list_members(session, include_inactive=False)

        assert [(m.user_id, m.ssc_role, m.is_active) for m in members] == [
            ("budget-1", SscRole.BUDGET_DEPT, True),
            ("council-1", SscRole.CITY_COUNCIL, True),
            ("council-2", SscRole.CITY_COUNCIL, False),
        ]
        budget = members[0]
        assert budget.review_stage == ReviewStage.FINANCIAL_REVIEW
        assert budget.role_label == "Financial Review Officer"
        assert budget.review_count == 1
        assert budget.last_reviewed_at is not None
        assert members[1].review_count == 0
        assert members[1].last_reviewed_at is None
        assert [m.user_id for m in active] == ["budget-1", "council-1"]

    def test_stages_for_roles_decides_permission(self):
        stages = stages_for_roles([SscRole.BUDGET_DEPT, SscRole.CHAIRPERSON])

        assert ReviewStage.FINANCIAL_REVIEW in stages
        assert ReviewStage.FINAL_APPROVAL in stages
        assert ReviewStage.ACADEMIC_REVIEW not in stages
