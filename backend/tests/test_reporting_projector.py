"""
Tests for SSC reporting: decision history, stage checklist and stage view.

Tests cover:
1. Decision history ordering, filters, totals, paging and the default limit
2. Directory enrichment with placeholders on failure
3. Stage checklist and readiness for final approval
4. Stage view with document links
5. Registry directory HTTP client and document storage links

Usage:
    cd backend && pytest tests/test_reporting_projector.py -v
"""

import os
import sys
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.models.ssc_models import ReviewStage
from app.services.decision_ledger import DecisionFilters
from app.services import reporting_projector
from app.services.directory import DirectoryError, HttpDirectoryClient
from app.services.reporting_projector import (
    UNKNOWN_CATEGORY,
    UNKNOWN_SCHOOL,
    UNKNOWN_STUDENT,
    ReportingProjector,
)
from app.services.review_errors import NotFound
from app.services.stage_evaluator import DOCUMENT_CHECKLIST_ITEMS
from app.storage import DocumentStorage


# ============================================================================
# TEST DATA FACTORIES
# ============================================================================

def make_mock_directory():
    directory = MagicMock()
    directory.student_name = AsyncMock(return_value="Maria Santos")
    directory.school_name = AsyncMock(return_value="Rizal High School")
    directory.category_name = AsyncMock(return_value="Academic Excellence")
    return directory


def document_payload(**refs):
    return {
        "checklist": {key: True for key in DOCUMENT_CHECKLIST_ITEMS},
        "document_refs": refs,
    }


async def history(session_factory, filters=None, directory=None):
    async with session_factory() as session:
        return await ReportingProjector.decision_history(session, filters, directory)


# ============================================================================
# DECISION HISTORY
# ============================================================================

class TestDecisionHistory:
    """Ledger report, newest first, enriched with names."""

    async def test_newest_first_with_application_metadata(
        self, make_application, decide, session_factory
    ):
        application = await make_application(requested_amount=18000)
        await decide(application.id, "document_verification")
        await decide(application.id, "financial_review")
        await decide(application.id, "academic_review", outcome="rejected", notes="Low GWA")

        items, total = await history(session_factory)

        assert total == 3
        assert [item.sequence for item in items] == [3, 2, 1]
        assert items[0].outcome == "rejected"
        assert items[0].application_number == application.application_number
        assert items[0].requested_amount == 18000

    async def test_names_come_from_directory(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(application.id, "document_verification")
        await decide(application.id, "academic_review")
        directory = make_mock_directory()

        items, _ = await history(session_factory, directory=directory)

        assert {item.student_name for item in items} == {"Maria Santos"}
        assert items[0].school_name == "Rizal High School"
        assert items[0].category_name == "Academic Excellence"
        # One lookup per distinct id within a report
        assert directory.student_name.await_count == 1
        directory.student_name.assert_awaited_with("STU-001")

    async def test_directory_failure_uses_placeholders(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(application.id, "academic_review")
        directory = make_mock_directory()
        directory.student_name.side_effect = DirectoryError("registry down")
        directory.school_name.return_value = None

        items, total = await history(session_factory, directory=directory)

        assert total == 1
        assert items[0].student_name == UNKNOWN_STUDENT
        assert items[0].school_name == UNKNOWN_SCHOOL
        assert items[0].category_name == "Academic Excellence"

    async def test_without_directory_all_placeholders(
        self, make_application, decide, session_factory
    ):
        application = await make_application(school_id=None)
        await decide(application.id, "academic_review")

        items, _ = await history(session_factory)

        assert items[0].student_name == UNKNOWN_STUDENT
        assert items[0].school_name == UNKNOWN_SCHOOL
        assert items[0].category_name == UNKNOWN_CATEGORY

    async def test_filters_by_stage_outcome_and_reviewer(
        self, make_application, decide, session_factory
    ):
        first = await make_application()
        second = await make_application()
        await decide(first.id, "financial_review", reviewer_id="budget-1")
        await decide(second.id, "financial_review", reviewer_id="budget-2")
        await decide(
            second.id,
            "academic_review",
            outcome="rejected",
            notes="Incomplete grades",
            reviewer_id="education-1",
        )

        by_stage, total = await history(
            session_factory, DecisionFilters(stage="financial_review")
        )
        assert total == 2
        assert {item.stage for item in by_stage} == {ReviewStage.FINANCIAL_REVIEW}

        rejected, total = await history(session_factory, DecisionFilters(outcome="rejected"))
        assert total == 1
        assert rejected[0].reviewer_id == "education-1"

        mine, total = await history(session_factory, DecisionFilters(reviewer_id="budget-2"))
        assert total == 1
        assert mine[0].application_id == second.id

        scoped, total = await history(
            session_factory, DecisionFilters(application_id=first.id)
        )
        assert total == 1
        assert scoped[0].application_id == first.id

    async def test_date_range_filter(self, make_application, decide, session_factory):
        application = await make_application()
        await decide(application.id, "academic_review")

        recent, total = await history(
            session_factory,
            DecisionFilters(date_from=datetime(2000, 1, 1, tzinfo=timezone.utc)),
        )
        assert total == 1

        old, total = await history(
            session_factory,
            DecisionFilters(date_to=datetime(2000, 1, 1, tzinfo=timezone.utc)),
        )
        assert total == 0
        assert old == []

    async def test_paging_keeps_total(self, make_application, decide, session_factory):
        application = await make_application()
        for stage in ("document_verification", "financial_review", "academic_review"):
            await decide(application.id, stage)

        page, total = await history(session_factory, DecisionFilters(limit=2))
        assert total == 3
        assert [item.sequence for item in page] == [3, 2]

        rest, total = await history(session_factory, DecisionFilters(limit=2, offset=2))
        assert total == 3
        assert [item.sequence for item in rest] == [1]

    async def test_reopen_entries_are_reported(
        self, make_application, decide, session_factory
    ):
        from app.services.review_workflow import ReviewWorkflow

        application = await make_application()
        await decide(application.id, "financial_review")
        async with session_factory() as session:
            await ReviewWorkflow.reopen_stage(
                session, application.id, "financial_review", "Wrong period", "admin-1"
            )

        items, _ = await history(session_factory, DecisionFilters(decision_type="reopen"))

        assert len(items) == 1
        assert items[0].outcome == "pending"
        assert items[0].notes == "Wrong period"

    async def test_callers_filters_are_left_alone(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(application.id, "document_verification")
        await decide(application.id, "academic_review")
        filters = DecisionFilters(application_id=application.id)

        items, total = await history(session_factory, filters)

        assert total == 2
        assert [item.sequence for item in items] == [2, 1]
        assert filters.newest_first is False
        assert filters.limit is None

    async def test_default_limit_applies_without_one(
        self, make_application, decide, session_factory, monkeypatch
    ):
        monkeypatch.setattr(reporting_projector, "DEFAULT_HISTORY_LIMIT", 2)
        application = await make_application()
        for stage in ("document_verification", "financial_review", "academic_review"):
            await decide(application.id, stage)

        items, total = await history(session_factory)

        assert total == 3
        assert [item.sequence for item in items] == [3, 2]

    async def test_revision_requests_are_reported(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(
            application.id,
            "academic_review",
            outcome="revision_requested",
            notes="Upload the second semester grades",
        )

        items, total = await history(
            session_factory, DecisionFilters(decision_type="revision_requested")
        )

        assert total == 1
        assert items[0].outcome == "pending"
        assert items[0].notes == "Upload the second semester grades"


# ============================================================================
# STAGE CHECKLIST
# ============================================================================

class TestStageChecklist:
    """Completed/pending view of the four stages."""

    async def test_fresh_application(self, make_application, session_factory):
        application = await make_application()

        async with session_factory() as session:
            checklist = await ReportingProjector.stage_checklist(session, application.id)

        assert checklist.total == 4
        assert checklist.completed_count == 0
        assert [item.stage for item in checklist.items] == list(ReviewStage)
        assert checklist.items[0].label == "Document Verification"
        assert checklist.ready_for_final_approval is False

    async def test_ready_once_parallel_stages_decided(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(application.id, "document_verification")
        await decide(application.id, "financial_review")
        await decide(application.id, "academic_review", outcome="rejected", notes="Low GWA")

        async with session_factory() as session:
            checklist = await ReportingProjector.stage_checklist(session, application.id)

        assert checklist.completed_count == 3
        assert checklist.ready_for_final_approval is True
        assert checklist.application_status == "under_review"

    async def test_not_ready_after_final_decision(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        for stage in ("document_verification", "financial_review", "academic_review"):
            await decide(application.id, stage)
        await decide(application.id, "final_approval")

        async with session_factory() as session:
            checklist = await ReportingProjector.stage_checklist(session, application.id)

        assert checklist.completed_count == 4
        assert checklist.ready_for_final_approval is False

    async def test_unknown_application(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFound):
                await ReportingProjector.stage_checklist(session, uuid.uuid4())


# ============================================================================
# STAGE VIEW
# ============================================================================

class TestApplicationStageView:
    """All four stage statuses with resolved document links."""

    async def test_pending_stages_are_filled_in(self, make_application, session_factory):
        application = await make_application()

        async with session_factory() as session:
            view = await ReportingProjector.application_stage_view(session, application.id)

        assert set(view.stages) == set(ReviewStage)
        assert all(entry.status == "pending" for entry in view.stages.values())
        assert view.application_number == application.application_number

    async def test_document_links_resolved_through_storage(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(
            application.id,
            "document_verification",
            review_data=document_payload(valid_id="apps/1/id.pdf"),
        )
        storage = MagicMock()
        storage.resolve_urls.return_value = {"valid_id": "https://blob/id.pdf?sig"}

        async with session_factory() as session:
            view = await ReportingProjector.application_stage_view(
                session, application.id, storage
            )

        entry = view.stages[ReviewStage.DOCUMENT_VERIFICATION]
        assert entry.status == "approved"
        assert entry.document_urls == {"valid_id": "https://blob/id.pdf?sig"}
        storage.resolve_urls.assert_called_once_with({"valid_id": "apps/1/id.pdf"})

    async def test_document_links_without_storage(
        self, make_application, decide, session_factory
    ):
        application = await make_application()
        await decide(
            application.id,
            "document_verification",
            review_data=document_payload(valid_id="apps/1/id.pdf"),
        )

        async with session_factory() as session:
            view = await ReportingProjector.application_stage_view(session, application.id)

        entry = view.stages[ReviewStage.DOCUMENT_VERIFICATION]
        assert entry.document_urls == {"valid_id": None}

    async def test_view_is_repeatable(self, make_application, decide, session_factory):
        application = await make_application()
        await decide(application.id, "financial_review")

        async with session_factory() as session:
            first = await ReportingProjector.application_stage_view(session, application.id)
            second = await ReportingProjector.application_stage_view(session, application.id)

        assert first == second


# ============================================================================
# EXTERNAL LOOKUPS
# ============================================================================

class TestHttpDirectoryClient:
    """Registry REST client."""

    @staticmethod
    def make_client(handler):
        return HttpDirectoryClient(
            "https://registry.test/api",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )

    async def test_student_full_name(self):
        def handler(request):
            assert request.url.path == "/api/students/STU-001"
            assert request.headers["Authorization"] == "Bearer secret"
            return httpx.Response(200, json={"full_name": "Maria Santos"})

        assert await self.make_client(handler).student_name("STU-001") == "Maria Santos"

    async def test_student_name_from_parts(self):
        def handler(request):
            return httpx.Response(
                200, json={"first_name": "Jose", "middle_name": None, "last_name": "Cruz"}
            )

        assert await self.make_client(handler).student_name("STU-002") == "Jose Cruz"

    async def test_missing_record_is_none(self):
        def handler(request):
            return httpx.Response(404, json={"detail": "not found"})

        assert await self.make_client(handler).school_name("SCH-404") is None

    async def test_server_error_raises(self):
        def handler(request):
            return httpx.Response(503)

        with pytest.raises(DirectoryError):
            await self.make_client(handler).category_name("CAT-1")


class TestDocumentStorage:
    """Document path to download URL resolution."""

    def test_unconfigured_storage_yields_no_links(self, monkeypatch):
        for name in (
            "AZURE_STORAGE_CONNECTION_STRING",
            "AZURE_STORAGE_ACCOUNT_NAME",
            "AZURE_STORAGE_ACCOUNT_KEY",
        ):
            monkeypatch.delenv(name, raising=False)
        storage = DocumentStorage()

        assert storage.configured is False
        assert storage.resolve_urls({"valid_id": "apps/1/id.pdf"}) == {"valid_id": None}

    def test_credentials_from_connection_string(self):
        storage = DocumentStorage(
            connection_string=(
                "DefaultEndpointsProtocol=https;AccountName=sscdocs;"
                "AccountKey=dGVzdGtleXRlc3RrZXk=;EndpointSuffix=core.windows.net"
            )
        )

        urls = storage.resolve_urls({"valid_id": "apps/1/id.pdf", "coe": ""})

        assert storage.configured is True
        assert urls["valid_id"].startswith(
            "https://sscdocs.blob.core.windows.net/scholarship-documents/apps/1/id.pdf?"
        )
        assert urls["coe"] is None
