"""create case pipeline tables: inspections, appointments, cases, audit_entries, sequence_counters

Revision ID: 3f2a9c71d0e4
Revises:
Create Date: 2026-10-19 09:12:44.518302

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c71d0e4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

CASE_STAGES = (
    "request_submitted",
    "request_accepted",
    "inspection_scheduled",
    "appointment_scheduled",
    "assessment_in_progress",
    "assessment_completed",
    "estimate_finalized",
    "frc_in_progress",
    "frc_completed",
    "archived",
    "cancelled",
)

APPOINTMENT_LINK_CHECK = (
    "stage = 'cancelled'"
    " OR (stage IN ('request_submitted', 'request_accepted', 'inspection_scheduled')"
    " AND appointment_id IS NULL)"
    " OR (stage IN ('appointment_scheduled', 'assessment_in_progress', 'assessment_completed',"
    " 'estimate_finalized', 'frc_in_progress', 'frc_completed', 'archived')"
    " AND appointment_id IS NOT NULL)"
)


def upgrade() -> None:
    """Upgrade schema."""
    # Companion scheduling records
    op.create_table(
        "inspections",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("inspection_number", sa.String(length=32), nullable=False),
        sa.Column("assigned_engineer_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("inspection_number"),
    )
    op.create_index(op.f("ix_inspections_request_id"), "inspections", ["request_id"], unique=False)
    op.create_index(
        op.f("ix_inspections_assigned_engineer_id"), "inspections", ["assigned_engineer_id"], unique=False
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("inspection_id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("appointment_number", sa.String(length=32), nullable=False),
        sa.Column("engineer_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["inspection_id"],
            ["inspections.id"],
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("appointment_number"),
    )
    op.create_index(op.f("ix_appointments_inspection_id"), "appointments", ["inspection_id"], unique=False)
    op.create_index(op.f("ix_appointments_request_id"), "appointments", ["request_id"], unique=False)
    op.create_index(op.f("ix_appointments_engineer_id"), "appointments", ["engineer_id"], unique=False)

    # Canonical case record
    op.create_table(
        "cases",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_number", sa.String(length=32), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("stage", sa.Enum(*CASE_STAGES, name="case_stage"), nullable=False),
        sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("appointment_id", sa.Uuid(), nullable=True),
        sa.Column("inspection_id", sa.Uuid(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimate_finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["appointment_id"],
            ["appointments.id"],
        ),
        sa.ForeignKeyConstraint(
            ["inspection_id"],
            ["inspections.id"],
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id", name="uq_cases_request_id"),
        sa.UniqueConstraint("display_number", name="uq_cases_display_number"),
        sa.CheckConstraint(APPOINTMENT_LINK_CHECK, name="ck_cases_appointment_link"),
    )
    op.create_index(op.f("ix_cases_stage"), "cases", ["stage"], unique=False)
    op.create_index(op.f("ix_cases_appointment_id"), "cases", ["appointment_id"], unique=False)
    op.create_index(op.f("ix_cases_inspection_id"), "cases", ["inspection_id"], unique=False)

    # Append-only audit log
    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("correlation_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_entries_entity", "audit_entries", ["entity_type", "entity_id"], unique=False)
    op.create_index(op.f("ix_audit_entries_correlation_id"), "audit_entries", ["correlation_id"], unique=False)
    op.create_index(op.f("ix_audit_entries_created_at"), "audit_entries", ["created_at"], unique=False)

    # Display number counters
    op.create_table(
        "sequence_counters",
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("year", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("prefix", "year"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("sequence_counters")
    op.drop_index("ix_audit_entries_entity", table_name="audit_entries")
    op.drop_index(op.f("ix_audit_entries_created_at"), table_name="audit_entries")
    op.drop_index(op.f("ix_audit_entries_correlation_id"), table_name="audit_entries")
    op.drop_table("audit_entries")
    op.drop_index(op.f("ix_cases_inspection_id"), table_name="cases")
    op.drop_index(op.f("ix_cases_appointment_id"), table_name="cases")
    op.drop_index(op.f("ix_cases_stage"), table_name="cases")
    op.drop_table("cases")
    sa.Enum(name="case_stage").drop(op.get_bind(), checkfirst=True)
    op.drop_index(op.f("ix_appointments_engineer_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_request_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_inspection_id"), table_name="appointments")
    op.drop_table("appointments")
    op.drop_index(op.f("ix_inspections_assigned_engineer_id"), table_name="inspections")
    op.drop_index(op.f("ix_inspections_request_id"), table_name="inspections")
    op.drop_table("inspections")
