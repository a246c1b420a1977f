from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _values_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class CycleType(str, Enum):
    weekly = "WEEKLY"
    biweekly = "BIWEEKLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    yearly = "YEARLY"
    custom = "CUSTOM"


class AllocationMethod(str, Enum):
    fixed = "FIXED"
    percentage = "PERCENTAGE"
    remaining = "REMAINING"


class MemberRole(str, Enum):
    owner = "OWNER"
    editor = "EDITOR"
    viewer = "VIEWER"


class InvitationStatus(str, Enum):
    pending = "PENDING"
    accepted = "ACCEPTED"
    expired = "EXPIRED"


CYCLE_TYPE_ENUM = _values_enum(CycleType, "cycletype")
ALLOCATION_METHOD_ENUM = _values_enum(AllocationMethod, "allocationmethod")
MEMBER_ROLE_ENUM = _values_enum(MemberRole, "memberrole")
INVITATION_STATUS_ENUM = _values_enum(InvitationStatus, "invitationstatus")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    locale: Mapped[str] = mapped_column(String(20), nullable=False, default="en-US")
    cycle_type: Mapped[CycleType] = mapped_column(
        CYCLE_TYPE_ENUM, nullable=False, default=CycleType.monthly
    )
    cycle_start_day: Mapped[Optional[int]] = mapped_column(Integer)
    custom_cycle_days: Mapped[Optional[int]] = mapped_column(Integer)
    anchor_date: Mapped[Optional[date]] = mapped_column(Date)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    members: Mapped[list["BudgetMember"]] = relationship(
        "BudgetMember", back_populates="budget", cascade="all, delete-orphan"
    )
    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="budget"
    )
    cycles: Mapped[list["BudgetCycle"]] = relationship(
        "BudgetCycle", back_populates="budget"
    )

    __table_args__ = (
        CheckConstraint(
            "total_amount_cents >= 0", name="ck_budgets_total_amount_positive"
        ),
        CheckConstraint(
            "custom_cycle_days IS NULL OR custom_cycle_days > 0",
            name="ck_budgets_custom_cycle_days_positive",
        ),
    )


class BudgetMember(Base, TimestampMixin):
    __tablename__ = "budget_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[MemberRole] = mapped_column(MEMBER_ROLE_ENUM, nullable=False)
    added_by_id: Mapped[Optional[int]] = mapped_column(Integer)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="members")

    __table_args__ = (
        UniqueConstraint("budget_id", "user_id", name="uq_budget_member_user"),
        Index("ix_budget_members_user", "user_id"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    icon: Mapped[Optional[str]] = mapped_column(String(40))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    allocation_method: Mapped[AllocationMethod] = mapped_column(
        ALLOCATION_METHOD_ENUM, nullable=False, default=AllocationMethod.fixed
    )
    allocation_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="categories")
    splits: Mapped[list["ExpenseSplit"]] = relationship(
        "ExpenseSplit", back_populates="category"
    )

    __table_args__ = (
        CheckConstraint(
            "allocation_value >= 0", name="ck_categories_allocation_positive"
        ),
        Index("ix_categories_budget_sort", "budget_id", "sort_order"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    splits: Mapped[list["ExpenseSplit"]] = relationship(
        "ExpenseSplit", back_populates="expense", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_expenses_budget_date", "budget_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(ForeignKey("expenses.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    allocation_method: Mapped[AllocationMethod] = mapped_column(
        ALLOCATION_METHOD_ENUM, nullable=False, default=AllocationMethod.fixed
    )
    allocation_value: Mapped[int] = mapped_column(Integer, nullable=False)
    calculated_amount: Mapped[Optional[int]] = mapped_column(Integer)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="splits")
    category: Mapped["Category"] = relationship("Category", back_populates="splits")

    __table_args__ = (
        Index("ix_expense_splits_category", "category_id"),
        Index("ix_expense_splits_expense", "expense_id"),
    )


class BudgetCycle(Base):
    __tablename__ = "budget_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    # NULL until the cycle is closed; None must persist as SQL NULL so the
    # write-once guard can test "snapshot IS NULL".
    snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON(none_as_null=True)
    )
    # bumped by every change to an existing snapshot
    snapshot_revision: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    budget: Mapped["Budget"] = relationship("Budget", back_populates="cycles")

    __table_args__ = (
        UniqueConstraint("budget_id", "start_date", name="uq_budget_cycle_start"),
        CheckConstraint("end_date >= start_date", name="ck_budget_cycles_bounds"),
    )


class Invitation(Base, TimestampMixin):
    __tablename__ = "invitations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    role: Mapped[MemberRole] = mapped_column(MEMBER_ROLE_ENUM, nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        INVITATION_STATUS_ENUM, nullable=False, default=InvitationStatus.pending
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent_by_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_invitations_budget_status", "budget_id", "status"),
    )
