"""create bookkeeping tables

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610170001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "bk_account",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("account_type", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "code", name="uq_bk_account_code"),
    )
    op.create_index("ix_bk_account_org_name", "bk_account", ["organization_id", "name"])

    op.create_table(
        "bk_accounting_period",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_date < end_date", name="ck_bk_period_range"),
    )
    op.create_index(
        "ix_bk_period_org_range",
        "bk_accounting_period",
        ["organization_id", "start_date", "end_date"],
    )

    op.create_table(
        "bk_journal_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=128), nullable=False),
        sa.Column("accounting_period_id", sa.Uuid(), nullable=False),
        sa.Column("entry_number", sa.String(length=10), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["accounting_period_id"], ["bk_accounting_period.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "entry_number", name="uq_bk_entry_number"),
    )
    op.create_index("ix_bk_entry_org_date", "bk_journal_entry", ["organization_id", "entry_date"])
    op.create_index("ix_bk_entry_org_status", "bk_journal_entry", ["organization_id", "status"])

    op.create_table(
        "bk_journal_entry_line",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("debit_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("credit_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["bk_journal_entry.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["account_id"], ["bk_account.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("journal_entry_id", "line_number", name="uq_bk_line_number"),
        sa.CheckConstraint("debit_amount >= 0", name="ck_bk_line_debit_nonnegative"),
        sa.CheckConstraint("credit_amount >= 0", name="ck_bk_line_credit_nonnegative"),
        sa.CheckConstraint("line_number >= 1", name="ck_bk_line_number_positive"),
    )


def downgrade() -> None:
    op.drop_table("bk_journal_entry_line")
    op.drop_index("ix_bk_entry_org_status", table_name="bk_journal_entry")
    op.drop_index("ix_bk_entry_org_date", table_name="bk_journal_entry")
    op.drop_table("bk_journal_entry")
    op.drop_index("ix_bk_period_org_range", table_name="bk_accounting_period")
    op.drop_table("bk_accounting_period")
    op.drop_index("ix_bk_account_org_name", table_name="bk_account")
    op.drop_table("bk_account")
