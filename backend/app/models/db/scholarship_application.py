"""ScholarshipApplication ORM model.

Maps to the ``scholarship_applications`` table.  Tracks a scholarship
application from draft through the SSC review to approval, rejection or
withdrawal.  Student, school and category live in other services and are
referenced by id only.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Numeric, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.db.base import Base, TimestampMixin

__all__ = ["ScholarshipApplication"]


class ScholarshipApplication(TimestampMixin, Base):
    __tablename__ = "scholarship_applications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    application_number: Mapped[str] = mapped_column(
        Text, unique=True, nullable=False
    )

    # External references
    student_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    school_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subcategory_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Amounts
    requested_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )

    # Overall status (derived by the review workflow)
    status: Mapped[str] = mapped_column(
        Text, default="draft", server_default="draft", nullable=False
    )

    # Lifecycle timestamps
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Terminal decision
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
