"""initial schema

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _fk(name: str, target: str, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(name, sa.Uuid(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _user_fk(name: str) -> sa.Column:
    return _fk(name, "users.id", nullable=True, ondelete="SET NULL")


def upgrade() -> None:
    # Companies, users, projects
    op.create_table(
        "companies",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("abn", sa.String(length=20), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("subscription_tier", sa.String(length=50), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role_in_company", sa.String(length=50), nullable=False),
        _fk("company_id", "companies.id", nullable=True, ondelete="SET NULL"),
        _ts("token_invalidated_at"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_company_id", "users", ["company_id"])

    op.create_table(
        "projects",
        _id(),
        _fk("company_id", "companies.id", nullable=True, ondelete="SET NULL"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("project_number", sa.String(length=100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_name", sa.String(length=255), nullable=True),
        sa.Column("state", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("target_completion", sa.Date(), nullable=True),
        sa.Column("contract_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("lot_prefix", sa.String(length=20), nullable=False),
        sa.Column("lot_starting_number", sa.Integer(), nullable=False),
        sa.Column("working_hours_start", sa.String(length=5), nullable=False),
        sa.Column("working_hours_end", sa.String(length=5), nullable=False),
        sa.Column("working_days", sa.String(length=20), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_projects_name", "projects", ["name"])
    op.create_index("ix_projects_company_id", "projects", ["company_id"])

    op.create_table(
        "project_users",
        _id(),
        _fk("project_id", "projects.id"),
        _fk("user_id", "users.id"),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("invited_at"),
        _ts("accepted_at"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_user"),
    )
    op.create_index("ix_project_users_user_id", "project_users", ["user_id"])

    # Subcontractors
    op.create_table(
        "subcontractor_companies",
        _id(),
        _fk("project_id", "projects.id"),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("abn", sa.String(length=20), nullable=True),
        sa.Column("primary_contact_name", sa.String(length=255), nullable=True),
        sa.Column("primary_contact_email", sa.String(length=255), nullable=True),
        sa.Column("primary_contact_phone", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        _user_fk("approved_by_id"),
        _ts("approved_at"),
        _ts("created_at"),
    )
    op.create_index("ix_subcontractor_companies_project_id", "subcontractor_companies", ["project_id"])

    op.create_table(
        "subcontractor_users",
        _id(),
        _fk("subcontractor_company_id", "subcontractor_companies.id"),
        _fk("user_id", "users.id"),
        sa.Column("role", sa.String(length=20), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("subcontractor_company_id", "user_id", name="uq_subcontractor_user"),
    )
    op.create_index("ix_subcontractor_users_user_id", "subcontractor_users", ["user_id"])

    op.create_table(
        "employee_roster",
        _id(),
        _fk("subcontractor_company_id", "subcontractor_companies.id"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=100), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        _user_fk("approved_by_id"),
        _ts("approved_at"),
        _ts("created_at"),
    )
    op.create_table(
        "plant_register",
        _id(),
        _fk("subcontractor_company_id", "subcontractor_companies.id"),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("id_rego", sa.String(length=100), nullable=True),
        sa.Column("dry_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("wet_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at"),
    )

    # Progress claims (lots reference the claim they were billed in)
    op.create_table(
        "progress_claims",
        _id(),
        _fk("project_id", "projects.id"),
        sa.Column("claim_number", sa.Integer(), nullable=False),
        sa.Column("claim_period_start", sa.Date(), nullable=False),
        sa.Column("claim_period_end", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("total_claimed_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("certified_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("paid_amount", sa.Numeric(14, 2), nullable=True),
        _ts("submitted_at"),
        _ts("certified_at"),
        _ts("paid_at"),
        sa.Column("payment_reference", sa.String(length=100), nullable=True),
        _ts("disputed_at"),
        sa.Column("dispute_notes", sa.Text(), nullable=True),
        _user_fk("prepared_by_id"),
        _ts("prepared_at"),
        sa.UniqueConstraint("project_id", "claim_number", name="uq_claim_number"),
    )

    # Lots
    op.create_table(
        "lots",
        _id(),
        _fk("project_id", "projects.id"),
        sa.Column("lot_number", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("activity_type", sa.String(length=100), nullable=True),
        sa.Column("lot_type", sa.String(length=20), nullable=False),
        sa.Column("chainage_start", sa.Float(), nullable=True),
        sa.Column("chainage_end", sa.Float(), nullable=True),
        sa.Column("offset", sa.String(length=50), nullable=True),
        sa.Column("layer", sa.String(length=50), nullable=True),
        sa.Column("area_zone", sa.String(length=100), nullable=True),
        sa.Column("structure_id", sa.String(length=100), nullable=True),
        sa.Column("structure_element", sa.String(length=100), nullable=True),
        sa.Column("budget_amount", sa.Numeric(14, 2), nullable=True),
        _fk("assigned_subcontractor_id", "subcontractor_companies.id", nullable=True, ondelete="SET NULL"),
        _ts("conformed_at"),
        _user_fk("conformed_by_id"),
        _fk("claimed_in_id", "progress_claims.id", nullable=True, ondelete="SET NULL"),
        _user_fk("created_by_id"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("project_id", "lot_number", name="uq_lot_number"),
    )
    op.create_index("ix_lots_status", "lots", ["status"])

    op.create_table(
        "lot_subcontractor_assignments",
        _id(),
        _fk("lot_id", "lots.id"),
        _fk("subcontractor_company_id", "subcontractor_companies.id"),
        _fk("project_id", "projects.id"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("can_complete_itp", sa.Boolean(), nullable=False),
        sa.Column("itp_requires_verification", sa.Boolean(), nullable=False),
        _user_fk("assigned_by_id"),
        _ts("assigned_at"),
        sa.UniqueConstraint("lot_id", "subcontractor_company_id", name="uq_lot_subcontractor"),
    )

    # ITPs
    op.create_table(
        "itp_templates",
        _id(),
        _fk("project_id", "projects.id", nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("activity_type", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "itp_checklist_items",
        _id(),
        _fk("template_id", "itp_templates.id"),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("acceptance_criteria", sa.Text(), nullable=True),
        sa.Column("point_type", sa.String(length=20), nullable=False),
        sa.Column("responsible_party", sa.String(length=30), nullable=False),
        sa.Column("evidence_required", sa.String(length=20), nullable=False),
        sa.Column("test_type", sa.String(length=100), nullable=True),
    )
    op.create_table(
        "itp_instances",
        _id(),
        _fk("lot_id", "lots.id"),
        _fk("template_id", "itp_templates.id", nullable=True, ondelete="SET NULL"),
        sa.Column("template_snapshot", JSONType, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("lot_id", name="uq_itp_instance_lot"),
    )
    op.create_table(
        "itp_completions",
        _id(),
        _fk("itp_instance_id", "itp_instances.id"),
        sa.Column("checklist_item_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _user_fk("completed_by_id"),
        _ts("completed_at"),
        sa.Column("verification_status", sa.String(length=30), nullable=False),
        _user_fk("verified_by_id"),
        _ts("verified_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("itp_instance_id", "checklist_item_id", name="uq_itp_completion"),
    )

    op.create_table(
        "test_results",
        _id(),
        _fk("project_id", "projects.id"),
        _fk("lot_id", "lots.id", nullable=True, ondelete="SET NULL"),
        sa.Column("test_type", sa.String(length=100), nullable=False),
        sa.Column("test_request_number", sa.String(length=100), nullable=True),
        sa.Column("laboratory_name", sa.String(length=255), nullable=True),
        sa.Column("sample_date", sa.Date(), nullable=True),
        sa.Column("result_value", sa.Float(), nullable=True),
        sa.Column("result_unit", sa.String(length=50), nullable=True),
        sa.Column("specification_min", sa.Float(), nullable=True),
        sa.Column("specification_max", sa.Float(), nullable=True),
        sa.Column("pass_fail", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _user_fk("verified_by_id"),
        _ts("verified_at"),
        _user_fk("created_by_id"),
        _ts("created_at"),
    )
    op.create_index("ix_test_results_lot_id", "test_results", ["lot_id"])

    op.create_table(
        "hold_points",
        _id(),
        _fk("lot_id", "lots.id"),
        sa.Column("itp_checklist_item_id", sa.Uuid(), nullable=False),
        sa.Column("point_type", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        _user_fk("requested_by_id"),
        _ts("notification_sent_at"),
        sa.Column("notification_sent_to", sa.String(length=255), nullable=True),
        _ts("scheduled_date"),
        _ts("released_at"),
        _user_fk("released_by_id"),
        sa.Column("released_by_name", sa.String(length=255), nullable=True),
        sa.Column("released_by_org", sa.String(length=255), nullable=True),
        sa.Column("release_method", sa.String(length=50), nullable=True),
        sa.Column("release_notes", sa.Text(), nullable=True),
        sa.Column("chase_count", sa.Integer(), nullable=False),
        _ts("last_chased_at"),
        _ts("escalated_at"),
        _ts("created_at"),
        sa.UniqueConstraint("lot_id", "itp_checklist_item_id", name="uq_hold_point_item"),
    )

    # NCRs
    op.create_table(
        "ncrs",
        _id(),
        _fk("project_id", "projects.id"),
        sa.Column("ncr_number", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("specification_reference", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        _user_fk("raised_by_id"),
        _ts("raised_at"),
        _user_fk("responsible_user_id"),
        _fk("responsible_subcontractor_id", "subcontractor_companies.id", nullable=True, ondelete="SET NULL"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("root_cause_category", sa.String(length=50), nullable=True),
        sa.Column("root_cause_description", sa.Text(), nullable=True),
        sa.Column("proposed_corrective_action", sa.Text(), nullable=True),
        _ts("response_submitted_at"),
        _ts("revision_requested_at"),
        sa.Column("revision_count", sa.Integer(), nullable=False),
        sa.Column("rectification_notes", sa.Text(), nullable=True),
        _ts("rectification_submitted_at"),
        _user_fk("verified_by_id"),
        _ts("verified_at"),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("qm_approval_required", sa.Boolean(), nullable=False),
        _user_fk("qm_approved_by_id"),
        _ts("qm_approved_at"),
        sa.Column("qm_comments", sa.Text(), nullable=True),
        sa.Column("client_notification_required", sa.Boolean(), nullable=False),
        _ts("client_notified_at"),
        _user_fk("closed_by_id"),
        _ts("closed_at"),
        sa.Column("lessons_learned", sa.Text(), nullable=True),
        sa.Column("concession_justification", sa.Text(), nullable=True),
        sa.Column("concession_risk_assessment", sa.Text(), nullable=True),
        _ts("overdue_notified_at"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("project_id", "ncr_number", name="uq_ncr_number"),
    )
    op.create_index("ix_ncrs_status", "ncrs", ["status"])

    op.create_table(
        "ncr_lots",
        sa.Column("ncr_id", sa.Uuid(), sa.ForeignKey("ncrs.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("lot_id", sa.Uuid(), sa.ForeignKey("lots.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "ncr_evidence",
        _id(),
        _fk("ncr_id", "ncrs.id"),
        sa.Column("evidence_type", sa.String(length=20), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("file_url", sa.String(length=1000), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _user_fk("uploaded_by_id"),
        _ts("created_at"),
    )

    op.create_table(
        "claimed_lots",
        _id(),
        _fk("claim_id", "progress_claims.id"),
        _fk("lot_id", "lots.id"),
        sa.Column("amount_claimed", sa.Numeric(14, 2), nullable=False),
        sa.Column("percentage_complete", sa.Float(), nullable=False),
    )

    # Notifications & audit
    op.create_table(
        "notifications",
        _id(),
        _fk("user_id", "users.id"),
        _fk("project_id", "projects.id", nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link_url", sa.String(length=500), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    op.create_table(
        "audit_logs",
        _id(),
        _fk("project_id", "projects.id", nullable=True),
        _user_fk("user_id"),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("changes", JSONType, nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_audit_logs_project_id", "audit_logs", ["project_id"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    # Reverse dependency order
    for table in (
        "audit_logs",
        "notifications",
        "claimed_lots",
        "ncr_evidence",
        "ncr_lots",
        "ncrs",
        "hold_points",
        "test_results",
        "itp_completions",
        "itp_instances",
        "itp_checklist_items",
        "itp_templates",
        "lot_subcontractor_assignments",
        "lots",
        "progress_claims",
        "plant_register",
        "employee_roster",
        "subcontractor_users",
        "subcontractor_companies",
        "project_users",
        "projects",
        "users",
        "companies",
    ):
        op.drop_table(table)
