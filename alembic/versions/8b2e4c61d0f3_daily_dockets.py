"""daily dockets

Revision ID: 8b2e4c61d0f3
Revises: 3f1c2a9d7b10
Create Date: 2026-10-19 15:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "8b2e4c61d0f3"
down_revision: Union[str, None] = "3f1c2a9d7b10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True)


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def _fk(name: str, target: str, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(name, sa.Uuid(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _user_fk(name: str) -> sa.Column:
    return _fk(name, "users.id", nullable=True, ondelete="SET NULL")


def upgrade() -> None:
    op.create_table(
        "daily_dockets",
        _id(),
        _fk("project_id", "projects.id"),
        _fk("subcontractor_company_id", "subcontractor_companies.id"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("foreman_notes", sa.Text(), nullable=True),
        sa.Column("adjustment_reason", sa.Text(), nullable=True),
        sa.Column("total_labour_submitted", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_labour_approved", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_plant_submitted", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_plant_approved", sa.Numeric(12, 2), nullable=False),
        _user_fk("submitted_by_id"),
        _ts("submitted_at"),
        _user_fk("approved_by_id"),
        _ts("approved_at"),
        _ts("created_at"),
    )
    op.create_index("ix_daily_dockets_project_id", "daily_dockets", ["project_id"])
    op.create_index("ix_daily_dockets_date", "daily_dockets", ["date"])

    op.create_table(
        "docket_labour",
        _id(),
        _fk("docket_id", "daily_dockets.id"),
        _fk("employee_id", "employee_roster.id"),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("finish_time", sa.String(length=5), nullable=True),
        sa.Column("submitted_hours", sa.Numeric(6, 2), nullable=False),
        sa.Column("approved_hours", sa.Numeric(6, 2), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("submitted_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("approved_cost", sa.Numeric(12, 2), nullable=True),
    )

    op.create_table(
        "docket_labour_lots",
        _id(),
        _fk("docket_labour_id", "docket_labour.id"),
        _fk("lot_id", "lots.id"),
        sa.Column("hours", sa.Numeric(6, 2), nullable=False),
    )

    op.create_table(
        "docket_plant",
        _id(),
        _fk("docket_id", "daily_dockets.id"),
        _fk("plant_id", "plant_register.id"),
        sa.Column("hours_operated", sa.Numeric(6, 2), nullable=False),
        sa.Column("wet_or_dry", sa.String(length=3), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("submitted_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("approved_cost", sa.Numeric(12, 2), nullable=True),
    )


def downgrade() -> None:
    for table in ("docket_plant", "docket_labour_lots", "docket_labour", "daily_dockets"):
        op.drop_table(table)
