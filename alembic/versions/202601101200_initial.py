"""initial budgets, categories, expenses and cycles

Revision ID: 202601101200
Revises:
Create Date: 2026-01-10 12:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202601101200"
down_revision = None
branch_labels = None
depends_on = None


CYCLE_TYPES = ("WEEKLY", "BIWEEKLY", "MONTHLY", "QUARTERLY", "YEARLY", "CUSTOM")
ALLOCATION_METHODS = ("FIXED", "PERCENTAGE", "REMAINING")
MEMBER_ROLES = ("OWNER", "EDITOR", "VIEWER")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "total_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("locale", sa.String(length=20), nullable=False),
        sa.Column(
            "cycle_type", sa.Enum(*CYCLE_TYPES, name="cycletype"), nullable=False
        ),
        sa.Column("cycle_start_day", sa.Integer(), nullable=True),
        sa.Column("custom_cycle_days", sa.Integer(), nullable=True),
        sa.Column("anchor_date", sa.Date(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "total_amount_cents >= 0", name="ck_budgets_total_amount_positive"
        ),
        sa.CheckConstraint(
            "custom_cycle_days IS NULL OR custom_cycle_days > 0",
            name="ck_budgets_custom_cycle_days_positive",
        ),
    )

    op.create_table(
        "budget_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.Enum(*MEMBER_ROLES, name="memberrole"), nullable=False),
        sa.Column("added_by_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("budget_id", "user_id", name="uq_budget_member_user"),
    )
    op.create_index("ix_budget_members_user", "budget_members", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(length=40), nullable=True),
        sa.Column("color", sa.String(length=9), nullable=True),
        sa.Column(
            "allocation_method",
            sa.Enum(*ALLOCATION_METHODS, name="allocationmethod"),
            nullable=False,
        ),
        sa.Column("allocation_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "allocation_value >= 0", name="ck_categories_allocation_positive"
        ),
    )
    op.create_index(
        "ix_categories_budget_sort", "categories", ["budget_id", "sort_order"]
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_budget_date", "expenses", ["budget_id", "date"])

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id", sa.Integer(), sa.ForeignKey("expenses.id"), nullable=False
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "allocation_method",
            sa.Enum(*ALLOCATION_METHODS, name="allocationmethod"),
            nullable=False,
        ),
        sa.Column("allocation_value", sa.Integer(), nullable=False),
        sa.Column("calculated_amount", sa.Integer(), nullable=True),
    )
    op.create_index("ix_expense_splits_category", "expense_splits", ["category_id"])
    op.create_index("ix_expense_splits_expense", "expense_splits", ["expense_id"])

    op.create_table(
        "budget_cycles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("snapshot", sa.JSON(none_as_null=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("budget_id", "start_date", name="uq_budget_cycle_start"),
        sa.CheckConstraint("end_date >= start_date", name="ck_budget_cycles_bounds"),
    )


def downgrade() -> None:
    op.drop_table("budget_cycles")
    op.drop_index("ix_expense_splits_expense", table_name="expense_splits")
    op.drop_index("ix_expense_splits_category", table_name="expense_splits")
    op.drop_table("expense_splits")
    op.drop_index("ix_expenses_budget_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_categories_budget_sort", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_budget_members_user", table_name="budget_members")
    op.drop_table("budget_members")
    op.drop_table("budgets")
