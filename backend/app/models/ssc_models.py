"""Enums and Pydantic schemas for the SSC (Scholarship Screening Committee)
parallel review workflow.

Stage payload models (``*Data``) describe the structured ``review_data``
each stage accepts; request/response models mirror the ORM rows in
``app.models.db.ssc_review``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ReviewStage(str, Enum):
    DOCUMENT_VERIFICATION = "document_verification"
    FINANCIAL_REVIEW = "financial_review"
    ACADEMIC_REVIEW = "academic_review"
    FINAL_APPROVAL = "final_approval"


class StageOutcome(str, Enum):
    """Outcome a reviewer may record for a stage."""

    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class StageState(str, Enum):
    """Current state of one (application, stage) pair."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DecisionType(str, Enum):
    REVIEW = "review"
    REOPEN = "reopen"
    REVISION_REQUESTED = "revision_requested"


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class SscRole(str, Enum):
    CITY_COUNCIL = "city_council"
    BUDGET_DEPT = "budget_dept"
    EDUCATION_AFFAIRS = "education_affairs"
    CHAIRPERSON = "chairperson"


PARALLEL_STAGES: tuple[ReviewStage, ...] = (
    ReviewStage.DOCUMENT_VERIFICATION,
    ReviewStage.FINANCIAL_REVIEW,
    ReviewStage.ACADEMIC_REVIEW,
)

TERMINAL_STAGE_STATES = frozenset({StageState.APPROVED, StageState.REJECTED})

TERMINAL_APPLICATION_STATUSES = frozenset(
    {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.WITHDRAWN,
    }
)

STAGE_LABELS: dict[ReviewStage, str] = {
    ReviewStage.DOCUMENT_VERIFICATION: "Document Verification",
    ReviewStage.FINANCIAL_REVIEW: "Financial Review",
    ReviewStage.ACADEMIC_REVIEW: "Academic Review",
    ReviewStage.FINAL_APPROVAL: "Final Approval",
}

ROLE_LABELS: dict[SscRole, str] = {
    SscRole.CITY_COUNCIL: "Document Verification Officer",
    SscRole.BUDGET_DEPT: "Financial Review Officer",
    SscRole.EDUCATION_AFFAIRS: "Academic Review Officer",
    SscRole.CHAIRPERSON: "SSC Chairperson",
}

# Largest value a Numeric(12, 2) amount column can hold.
MAX_AMOUNT = 9_999_999_999.99


# ---------------------------------------------------------------------------
# Stage payloads (review_data)
# ---------------------------------------------------------------------------


class DocumentVerificationData(BaseModel):
    """Document checklist submitted by the document verification officer."""

    checklist: Dict[str, bool] = Field(
        default_factory=dict,
        description="Checklist item key -> verified flag",
    )
    compliance_issues: List[str] = Field(default_factory=list)
    document_refs: Dict[str, str] = Field(
        default_factory=dict,
        description="Checklist item key -> stored document path",
    )


class FinancialReviewData(BaseModel):
    """Financial feasibility assessment."""

    income_verified: bool = False
    budget_available: bool = False
    recommended_amount: Optional[float] = Field(None, le=MAX_AMOUNT)
    budget_period: Optional[str] = Field(None, max_length=255)
    financial_assessment_score: Optional[int] = Field(None, ge=1, le=5)


class AcademicReviewData(BaseModel):
    """Academic standing assessment."""

    gwa: Optional[float] = Field(None, ge=0)
    academic_standing: Optional[str] = Field(None, max_length=255)


class FinalApprovalData(BaseModel):
    """Chairperson's final decision details."""

    approved_amount: Optional[float] = Field(None, ge=0, le=MAX_AMOUNT)


STAGE_PAYLOAD_MODELS: dict[ReviewStage, type[BaseModel]] = {
    ReviewStage.DOCUMENT_VERIFICATION: DocumentVerificationData,
    ReviewStage.FINANCIAL_REVIEW: FinancialReviewData,
    ReviewStage.ACADEMIC_REVIEW: AcademicReviewData,
    ReviewStage.FINAL_APPROVAL: FinalApprovalData,
}


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class StageDecisionRequest(BaseModel):
    """Request body for submitting a stage decision."""

    outcome: StageOutcome = Field(
        ..., description="approved, rejected or revision_requested"
    )
    review_data: Dict[str, Any] = Field(
        default_factory=dict, description="Stage-specific structured payload"
    )
    notes: Optional[str] = Field(
        None,
        max_length=1000,
        description="Reviewer notes; required to reject or request a revision",
    )


class StageReopenRequest(BaseModel):
    """Request body for administratively reopening a decided stage."""

    reason: str = Field(..., max_length=1000, description="Why the stage is reopened")


class BulkFinalDecisionRequest(BaseModel):
    """Request body for deciding final approval on several applications."""

    application_ids: List[UUID] = Field(..., min_length=1, max_length=100)
    outcome: StageOutcome = Field(..., description="approved or rejected")
    notes: Optional[str] = Field(
        None, max_length=1000, description="Applied to every decision; required to reject"
    )

    @field_validator("outcome")
    @classmethod
    def validate_outcome(cls, v: StageOutcome) -> StageOutcome:
        if v == StageOutcome.REVISION_REQUESTED:
            raise ValueError("Final approval can only be approved or rejected")
        return v


class MemberAssignRequest(BaseModel):
    """Request body for giving a staff user an SSC role."""

    user_id: str = Field(..., min_length=1, max_length=64)
    ssc_role: SscRole


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class StageStatusResponse(BaseModel):
    """Current status of one review stage."""

    application_id: UUID
    stage: ReviewStage
    status: StageState = StageState.PENDING
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    review_data: Dict[str, Any] = Field(default_factory=dict)
    decision_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class StageDecisionResponse(BaseModel):
    """Immutable ledger entry."""

    id: UUID
    application_id: UUID
    sequence: int
    stage: ReviewStage
    decision_type: DecisionType = DecisionType.REVIEW
    outcome: StageState
    review_data: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    reviewer_id: str
    reviewer_role: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DecisionSubmissionResponse(BaseModel):
    """Authoritative state returned after a decision or reopen."""

    stage_status: StageStatusResponse
    application_status: ApplicationStatus
    decision_id: UUID


class StageViewEntry(StageStatusResponse):
    """Stage status with document references resolved to download URLs."""

    document_urls: Dict[str, Optional[str]] = Field(default_factory=dict)


class ApplicationStageView(BaseModel):
    """All four stages of one application (the parallel workflow panel)."""

    application_id: UUID
    application_number: str
    application_status: ApplicationStatus
    stages: Dict[ReviewStage, StageViewEntry]


class StageChecklistItem(BaseModel):
    stage: ReviewStage
    label: str
    status: StageState
    completed: bool = False
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class StageChecklistResponse(BaseModel):
    """Per-stage completed/pending view derived from current stage statuses."""

    application_id: UUID
    application_status: ApplicationStatus
    items: List[StageChecklistItem]
    completed_count: int = 0
    total: int = 0
    ready_for_final_approval: bool = False


class QueueItem(BaseModel):
    """Summary of an application awaiting a reviewer's action."""

    application_id: UUID
    application_number: str
    stage: ReviewStage
    application_status: ApplicationStatus
    requested_amount: Optional[float] = None
    submitted_at: Optional[datetime] = None
    student_id: Optional[str] = None
    school_id: Optional[str] = None
    category_id: Optional[str] = None


class QueueResponse(BaseModel):
    role: SscRole
    stage: ReviewStage
    applications: List[QueueItem]
    total: int


class MyQueueResponse(BaseModel):
    roles: List[SscRole]
    applications: List[QueueItem]
    total: int


class DecisionHistoryItem(StageDecisionResponse):
    """Ledger entry enriched with application and directory metadata."""

    application_number: Optional[str] = None
    requested_amount: Optional[float] = None
    student_name: str = "Unknown student"
    school_name: str = "Unknown school"
    category_name: str = "Unknown category"


class DecisionHistoryResponse(BaseModel):
    decisions: List[DecisionHistoryItem]
    total: int


class BulkDecisionResult(BaseModel):
    """Outcome of one application within a bulk final decision."""

    application_id: UUID
    success: bool
    application_status: Optional[ApplicationStatus] = None
    decision_id: Optional[UUID] = None
    error: Optional[Dict[str, Any]] = None


class BulkDecisionResponse(BaseModel):
    results: List[BulkDecisionResult]
    succeeded: int
    failed: int


class MemberAssignmentResponse(BaseModel):
    """One committee role held (or formerly held) by a staff user."""

    id: UUID
    user_id: str
    ssc_role: SscRole
    role_label: str
    review_stage: ReviewStage
    stage_label: str
    is_active: bool
    assigned_at: Optional[datetime] = None
    review_count: int = 0
    last_reviewed_at: Optional[datetime] = None


class MemberListResponse(BaseModel):
    members: List[MemberAssignmentResponse]
    total: int


class MyRolesResponse(BaseModel):
    """The current user's active SSC roles and the stages they may decide."""

    user_id: str
    has_ssc_role: bool
    roles: List[SscRole]
    stages: List[ReviewStage]
    is_chairperson: bool
    role_labels: List[str]
