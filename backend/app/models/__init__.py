"""
SSC Review API Models

Pydantic models for data validation and serialization.
"""

from .ssc_models import (
    # Enums
    ApplicationStatus,
    DecisionType,
    ReviewStage,
    SscRole,
    StageOutcome,
    StageState,
    # Stage payloads
    AcademicReviewData,
    DocumentVerificationData,
    FinalApprovalData,
    FinancialReviewData,
)

from .application_models import (
    ApplicationCreate,
    ApplicationResponse,
    StatusHistoryResponse,
    WithdrawRequest,
)
