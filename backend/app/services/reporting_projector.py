"""Read-only reporting over the decision ledger and stage statuses.

Nothing here writes.  Directory lookups only decorate results: a failing
or unconfigured directory yields placeholder names and a warning, never an
error.
"""

import logging
from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db.scholarship_application import ScholarshipApplication
from app.models.db.ssc_review import SscStageDecision
from app.models.ssc_models import (
    PARALLEL_STAGES,
    STAGE_LABELS,
    TERMINAL_STAGE_STATES,
    ApplicationStageView,
    DecisionHistoryItem,
    ReviewStage,
    StageChecklistItem,
    StageChecklistResponse,
    StageState,
    StageViewEntry,
)
from app.services.decision_ledger import DecisionFilters, DecisionLedger
from app.services.directory import Directory, NullDirectory
from app.services.review_errors import NotFound
from app.services.stage_store import StageStore

logger = logging.getLogger(__name__)

UNKNOWN_STUDENT = "Unknown student"
UNKNOWN_SCHOOL = "Unknown school"
UNKNOWN_CATEGORY = "Unknown category"

DEFAULT_HISTORY_LIMIT = 50


class DocumentUrlResolver(Protocol):
    def resolve_urls(self, document_refs: dict[str, str]) -> dict[str, str | None]: ...


class _NameCache:
    """Memoised, failure-tolerant directory lookups for one report."""

    def __init__(self, directory: Directory) -> None:
        self.directory = directory
        self._cache: dict[tuple[str, str], str] = {}

    async def lookup(self, kind: str, key: str | None, placeholder: str) -> str:
        if not key:
            return placeholder
        cache_key = (kind, key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        name: str | None = None
        try:
            name = await getattr(self.directory, f"{kind}_name")(key)
        except Exception as exc:
            logger.warning("Directory lookup for %s %s failed: %s", kind, key, exc)
        value = name or placeholder
        self._cache[cache_key] = value
        return value


async def _load_applications(
    db: AsyncSession, application_ids: set[UUID]
) -> dict[UUID, ScholarshipApplication]:
    if not application_ids:
        return {}
    result = await db.execute(
        select(ScholarshipApplication).where(
            ScholarshipApplication.id.in_(application_ids)
        )
    )
    return {app.id: app for app in result.scalars().all()}


async def _get_application(db: AsyncSession, application_id: UUID) -> ScholarshipApplication:
    application = await db.get(ScholarshipApplication, application_id)
    if application is None:
        raise NotFound("Application not found", application_id=str(application_id))
    return application


class ReportingProjector:
    """Service layer for SSC reports."""

    # ------------------------------------------------------------------
    # decision_history
    # ------------------------------------------------------------------

    @staticmethod
    async def decision_history(
        db: AsyncSession,
        filters: DecisionFilters | None = None,
        directory: Directory | None = None,
    ) -> tuple[list[DecisionHistoryItem], int]:
        """Return ledger entries, newest first, with display metadata.

        Args:
            db: Async database session.
            filters: Ledger filters; not modified.  Results are newest
                first, and at most ``DEFAULT_HISTORY_LIMIT`` rows are
                returned when no limit is given.
            directory: Name lookups; placeholders are used when absent.

        Returns:
            ``(items, total)`` where ``total`` counts all matches ignoring
            limit and offset.
        """
        filters = filters or DecisionFilters()
        filters = replace(
            filters,
            newest_first=True,
            limit=filters.limit if filters.limit is not None else DEFAULT_HISTORY_LIMIT,
        )
        names = _NameCache(directory or NullDirectory())

        entries: list[SscStageDecision] = [
            entry async for entry in DecisionLedger.list_all(db, filters)
        ]
        total = await DecisionLedger.count(db, filters)
        applications = await _load_applications(db, {e.application_id for e in entries})

        items: list[DecisionHistoryItem] = []
        for entry in entries:
            application = applications.get(entry.application_id)
            extra: dict[str, Any] = {
                "student_name": UNKNOWN_STUDENT,
                "school_name": UNKNOWN_SCHOOL,
                "category_name": UNKNOWN_CATEGORY,
            }
            if application is not None:
                extra["application_number"] = application.application_number
                if application.requested_amount is not None:
                    extra["requested_amount"] = float(application.requested_amount)
                extra["student_name"] = await names.lookup(
                    "student", application.student_id, UNKNOWN_STUDENT
                )
                extra["school_name"] = await names.lookup(
                    "school", application.school_id, UNKNOWN_SCHOOL
                )
                extra["category_name"] = await names.lookup(
                    "category", application.category_id, UNKNOWN_CATEGORY
                )
            else:
                logger.warning(
                    "Ledger entry %s references missing application %s",
                    entry.id,
                    entry.application_id,
                )

            base = DecisionHistoryItem.model_validate(entry).model_dump()
            items.append(DecisionHistoryItem(**{**base, **extra}))

        return items, total

    # ------------------------------------------------------------------
    # stage_checklist
    # ------------------------------------------------------------------

    @staticmethod
    async def stage_checklist(
        db: AsyncSession, application_id: UUID
    ) -> StageChecklistResponse:
        """Per-stage completed/pending view derived from stage statuses."""
        application = await _get_application(db, application_id)
        statuses = await StageStore.get_statuses(db, application_id)

        items: list[StageChecklistItem] = []
        for stage in ReviewStage:
            row = statuses[stage]
            state = StageState(row.status)
            items.append(
                StageChecklistItem(
                    stage=stage,
                    label=STAGE_LABELS[stage],
                    status=state,
                    completed=state in TERMINAL_STAGE_STATES,
                    reviewer_id=row.reviewer_id,
                    reviewed_at=row.reviewed_at,
                )
            )

        by_stage = {item.stage: item for item in items}
        return StageChecklistResponse(
            application_id=application.id,
            application_status=application.status,
            items=items,
            completed_count=sum(1 for item in items if item.completed),
            total=len(items),
            ready_for_final_approval=(
                all(by_stage[stage].completed for stage in PARALLEL_STAGES)
                and not by_stage[ReviewStage.FINAL_APPROVAL].completed
            ),
        )

    # ------------------------------------------------------------------
    # application_stage_view
    # ------------------------------------------------------------------

    @staticmethod
    async def application_stage_view(
        db: AsyncSession,
        application_id: UUID,
        storage: DocumentUrlResolver | None = None,
    ) -> ApplicationStageView:
        """Return all four stage statuses of an application.

        Document references in the verification payload are resolved to
        download URLs when *storage* is given.
        """
        application = await _get_application(db, application_id)
        statuses = await StageStore.get_statuses(db, application_id)

        stages: dict[ReviewStage, StageViewEntry] = {}
        for stage, row in statuses.items():
            entry = StageViewEntry.model_validate(row)
            refs = (row.review_data or {}).get("document_refs") or {}
            if refs and storage is not None:
                entry.document_urls = storage.resolve_urls(refs)
            elif refs:
                entry.document_urls = {item: None for item in refs}
            stages[stage] = entry

        return ApplicationStageView(
            application_id=application.id,
            application_number=application.application_number,
            application_status=application.status,
            stages=stages,
        )
