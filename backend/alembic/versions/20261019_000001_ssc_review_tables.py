"""Create scholarship application and SSC review tables.

Revision ID: 0001_ssc_review
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "0001_ssc_review"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAGES = (
    "'document_verification','financial_review','academic_review','final_approval'"
)


def upgrade() -> None:
    # --- scholarship_applications ---
    op.create_table(
        "scholarship_applications",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("application_number", sa.Text(), nullable=False, unique=True),
        sa.Column("student_id", sa.Text(), nullable=True),
        sa.Column("school_id", sa.Text(), nullable=True),
        sa.Column("category_id", sa.Text(), nullable=True),
        sa.Column("subcategory_id", sa.Text(), nullable=True),
        sa.Column("requested_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("approved_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", sa.Text(), server_default="draft", nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('draft','submitted','under_review','approved','rejected','withdrawn')",
            name="scholarship_applications_status_check",
        ),
    )
    op.create_index(
        "idx_scholarship_applications_queue",
        "scholarship_applications",
        ["status", "submitted_at"],
    )

    # --- ssc_stage_decisions (append-only ledger) ---
    op.create_table(
        "ssc_stage_decisions",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "application_id",
            UUID(),
            sa.ForeignKey("scholarship_applications.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("stage", sa.Text(), nullable=False),
        sa.Column("decision_type", sa.Text(), server_default="review", nullable=False),
        sa.Column("outcome", sa.Text(), nullable=False),
        sa.Column("review_data", JSONB(), server_default="{}", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reviewer_id", sa.Text(), nullable=False),
        sa.Column("reviewer_role", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "application_id", "sequence", name="uq_ssc_decision_app_sequence"
        ),
        sa.CheckConstraint(f"stage IN ({STAGES})", name="ssc_stage_decisions_stage_check"),
        sa.CheckConstraint(
            "decision_type IN ('review','reopen','revision_requested')",
            name="ssc_stage_decisions_type_check",
        ),
        sa.CheckConstraint(
            "(decision_type = 'review' AND outcome IN ('approved','rejected')) "
            "OR (decision_type IN ('reopen','revision_requested') AND outcome = 'pending')",
            name="ssc_stage_decisions_outcome_check",
        ),
    )
    op.create_index("idx_ssc_decisions_app", "ssc_stage_decisions", ["application_id"])
    op.create_index(
        "idx_ssc_decisions_stage_outcome", "ssc_stage_decisions", ["stage", "outcome"]
    )
    op.create_index("idx_ssc_decisions_created", "ssc_stage_decisions", ["created_at"])
    # The ledger is append-only: refuse UPDATE and DELETE at the database level
    op.execute(
        """
        CREATE OR REPLACE FUNCTION ssc_stage_decisions_immutable()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'ssc_stage_decisions is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        "CREATE TRIGGER trg_ssc_stage_decisions_immutable "
        "BEFORE UPDATE OR DELETE ON ssc_stage_decisions "
        "FOR EACH ROW EXECUTE FUNCTION ssc_stage_decisions_immutable()"
    )

    # --- ssc_stage_statuses ---
    op.create_table(
        "ssc_stage_statuses",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "application_id",
            UUID(),
            sa.ForeignKey("scholarship_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("reviewer_id", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("review_data", JSONB(), server_default="{}", nullable=False),
        sa.Column(
            "decision_id",
            UUID(),
            sa.ForeignKey("ssc_stage_decisions.id"),
            nullable=True,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "application_id", "stage", name="uq_ssc_stage_status_app_stage"
        ),
        sa.CheckConstraint(f"stage IN ({STAGES})", name="ssc_stage_statuses_stage_check"),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="ssc_stage_statuses_status_check",
        ),
    )

    # --- application_status_history ---
    op.create_table(
        "application_status_history",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "application_id",
            UUID(),
            sa.ForeignKey("scholarship_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("old_status", sa.Text(), nullable=True),
        sa.Column("new_status", sa.Text(), nullable=False),
        sa.Column("changed_by", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_status_history_app",
        "application_status_history",
        ["application_id"],
    )

    # --- ssc_member_assignments ---
    op.create_table(
        "ssc_member_assignments",
        sa.Column(
            "id",
            UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("ssc_role", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "assigned_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "ssc_role", name="uq_ssc_member_user_role"),
        sa.CheckConstraint(
            "ssc_role IN ('city_council','budget_dept','education_affairs','chairperson')",
            name="ssc_member_assignments_role_check",
        ),
    )
    op.create_index("idx_ssc_members_user", "ssc_member_assignments", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_ssc_members_user", table_name="ssc_member_assignments")
    op.drop_table("ssc_member_assignments")
    op.drop_index("idx_status_history_app", table_name="application_status_history")
    op.drop_table("application_status_history")
    op.drop_table("ssc_stage_statuses")
    op.execute("DROP TRIGGER IF EXISTS trg_ssc_stage_decisions_immutable ON ssc_stage_decisions")
    op.execute("DROP FUNCTION IF EXISTS ssc_stage_decisions_immutable()")
    op.drop_index("idx_ssc_decisions_created", table_name="ssc_stage_decisions")
    op.drop_index("idx_ssc_decisions_stage_outcome", table_name="ssc_stage_decisions")
    op.drop_index("idx_ssc_decisions_app", table_name="ssc_stage_decisions")
    op.drop_table("ssc_stage_decisions")
    op.drop_index(
        "idx_scholarship_applications_queue", table_name="scholarship_applications"
    )
    op.drop_table("scholarship_applications")
