import datetime as dt
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from allocation import BASIS_POINTS
from models import AllocationMethod, CycleType, MemberRole

SNAPSHOT_SCHEMA_VERSION = 1


def _check_allocation(method: Optional[AllocationMethod], value: Optional[int]) -> None:
    if method == AllocationMethod.percentage and value is not None:
        if value > BASIS_POINTS:
            raise ValueError("Percentage allocation cannot exceed 100%")


def check_cycle_start_day(cycle_type: Optional[CycleType], day: Optional[int]) -> None:
    if cycle_type == CycleType.weekly and day is not None and day > 6:
        raise ValueError("Weekly cycles start on a weekday between 0 (Sunday) and 6")


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    total_amount_cents: int = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    locale: str = Field(default="en-US", max_length=20)
    cycle_type: CycleType = CycleType.monthly
    cycle_start_day: Optional[int] = Field(default=None, ge=0, le=31)
    custom_cycle_days: Optional[int] = Field(default=None, gt=0, le=366)
    anchor_date: Optional[date] = None

    @model_validator(mode="after")
    def _start_day_in_range(self) -> "BudgetIn":
        check_cycle_start_day(self.cycle_type, self.cycle_start_day)
        return self


class BudgetUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    total_amount_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    locale: Optional[str] = Field(default=None, max_length=20)
    cycle_type: Optional[CycleType] = None
    cycle_start_day: Optional[int] = Field(default=None, ge=0, le=31)
    custom_cycle_days: Optional[int] = Field(default=None, gt=0, le=366)
    anchor_date: Optional[date] = None

    @model_validator(mode="after")
    def _start_day_in_range(self) -> "BudgetUpdateIn":
        check_cycle_start_day(self.cycle_type, self.cycle_start_day)
        return self


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)
    allocation_method: AllocationMethod = AllocationMethod.fixed
    allocation_value: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _allocation_in_range(self) -> "CategoryIn":
        _check_allocation(self.allocation_method, self.allocation_value)
        return self


class CategoryUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)
    allocation_method: Optional[AllocationMethod] = None
    allocation_value: Optional[int] = Field(default=None, ge=0)
    sort_order: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _allocation_in_range(self) -> "CategoryUpdateIn":
        _check_allocation(self.allocation_method, self.allocation_value)
        return self


class ExpenseSplitIn(BaseModel):
    category_id: int
    allocation_method: AllocationMethod = AllocationMethod.fixed
    allocation_value: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _split_method(self) -> "ExpenseSplitIn":
        if self.allocation_method == AllocationMethod.remaining:
            raise ValueError("Expense splits must be fixed or percentage")
        _check_allocation(self.allocation_method, self.allocation_value)
        return self


class ExpenseIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    date: date
    description: Optional[str] = Field(default=None, max_length=500)
    splits: list[ExpenseSplitIn] = Field(..., min_length=1)


class ExpenseUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: Optional[int] = Field(default=None, gt=0)
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    splits: Optional[list[ExpenseSplitIn]] = Field(default=None, min_length=1)


class SnapshotCategory(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    allocation_method: AllocationMethod
    allocation_value: int
    sort_order: int


class SnapshotCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)
    allocation_method: AllocationMethod
    allocation_value: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _allocation_in_range(self) -> "SnapshotCategoryIn":
        _check_allocation(self.allocation_method, self.allocation_value)
        return self


class CycleSnapshot(BaseModel):
    """Frozen summary of a closed cycle, stored as JSON on ``budget_cycles``.

    ``schema_version`` lets later releases add fields without breaking rows
    written earlier; see ``services.load_snapshot`` for the upgrade path.
    """

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    budget_total: int
    currency: str
    locale: str
    categories: list[SnapshotCategory] = Field(default_factory=list)
    total_spent: int
    category_totals: dict[str, int] = Field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class InvitationIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    role: MemberRole = MemberRole.editor
    expires_in_days: Optional[int] = Field(default=None, gt=0, le=30)

    @model_validator(mode="after")
    def _no_owner_invites(self) -> "InvitationIn":
        if self.role == MemberRole.owner:
            raise ValueError("Invitations cannot grant the owner role")
        return self
