"""Pydantic request/response schemas for scholarship application intake."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.ssc_models import MAX_AMOUNT


class ApplicationCreate(BaseModel):
    """Request body for creating a draft scholarship application."""

    student_id: str = Field(..., min_length=1, max_length=64)
    school_id: Optional[str] = Field(None, max_length=64)
    category_id: Optional[str] = Field(None, max_length=64)
    subcategory_id: Optional[str] = Field(None, max_length=64)
    requested_amount: Optional[float] = Field(None, ge=0, le=MAX_AMOUNT)


class ApplicationResponse(BaseModel):
    """Full scholarship application response (mirrors all DB columns)."""

    id: UUID
    application_number: str
    student_id: Optional[str] = None
    school_id: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    requested_amount: Optional[float] = None
    approved_amount: Optional[float] = None
    status: str = "draft"
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    decided_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WithdrawRequest(BaseModel):
    """Request body for withdrawing an application."""

    reason: Optional[str] = Field(
        None, max_length=2000, description="Reason for withdrawal"
    )


class StatusHistoryResponse(BaseModel):
    """A single overall status change."""

    id: UUID
    application_id: UUID
    old_status: Optional[str] = None
    new_status: str
    changed_by: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatusHistoryListResponse(BaseModel):
    history: List[StatusHistoryResponse]
    total: int
