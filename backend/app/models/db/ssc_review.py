"""SQLAlchemy models for the SSC review workflow.

* ``ssc_stage_statuses`` -- one current row per (application, stage), a
  cache of the latest ledger entry for that pair.
* ``ssc_stage_decisions`` -- the append-only decision ledger.
* ``ssc_member_assignments`` -- which committee role each staff user holds.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.db.base import Base, JSONDocument, utcnow

__all__ = ["SscMemberAssignment", "SscStageDecision", "SscStageStatus"]


class SscStageStatus(Base):
    __tablename__ = "ssc_stage_statuses"
    __table_args__ = (
        UniqueConstraint("application_id", "stage", name="uq_ssc_stage_status_app_stage"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("scholarship_applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, default="pending", server_default="pending", nullable=False
    )
    reviewer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_data: Mapped[dict] = mapped_column(JSONDocument, default=dict, nullable=False)
    decision_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ssc_stage_decisions.id"),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class SscStageDecision(Base):
    __tablename__ = "ssc_stage_decisions"
    __table_args__ = (
        UniqueConstraint("application_id", "sequence", name="uq_ssc_decision_app_sequence"),
        Index("idx_ssc_decisions_app", "application_id"),
        Index("idx_ssc_decisions_stage_outcome", "stage", "outcome"),
        Index("idx_ssc_decisions_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("scholarship_applications.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[str] = mapped_column(Text, nullable=False)
    decision_type: Mapped[str] = mapped_column(
        Text, default="review", server_default="review", nullable=False
    )
    outcome: Mapped[str] = mapped_column(Text, nullable=False)
    review_data: Mapped[dict] = mapped_column(JSONDocument, default=dict, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewer_id: Mapped[str] = mapped_column(Text, nullable=False)
    reviewer_role: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class SscMemberAssignment(Base):
    __tablename__ = "ssc_member_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "ssc_role", name="uq_ssc_member_user_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    ssc_role: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
