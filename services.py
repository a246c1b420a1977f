from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import String, cast, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from allocation import (
    BASIS_POINTS,
    allocation_breakdown,
    sort_for_display,
    split_amount,
)
from config import get_settings
from cycles import (
    CycleBounds,
    RecurrenceConfig,
    cycle_bounds_for_date,
    previous_cycle_bounds,
)
from errors import (
    DuplicateName,
    Forbidden,
    InvalidState,
    NotFound,
    UnsupportedCycleType,
)
from models import (
    AllocationMethod,
    Budget,
    BudgetCycle,
    BudgetMember,
    Category,
    Expense,
    ExpenseSplit,
    Invitation,
    InvitationStatus,
    MemberRole,
)
from schemas import (
    SNAPSHOT_SCHEMA_VERSION,
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    CycleSnapshot,
    ExpenseIn,
    ExpenseSplitIn,
    ExpenseUpdateIn,
    InvitationIn,
    SnapshotCategory,
    SnapshotCategoryIn,
    check_cycle_start_day,
)
from tokens import generate_invitation_token, read_invitation_token


logger = logging.getLogger(__name__)

WRITE_ROLES = (MemberRole.owner, MemberRole.editor)

_REQUIRED_BUDGET_FIELDS = frozenset(
    {"name", "total_amount_cents", "currency", "locale", "cycle_type"}
)
_REQUIRED_CATEGORY_FIELDS = frozenset(
    {"name", "allocation_method", "allocation_value", "sort_order"}
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def _get_budget(session: Session, budget_id: int) -> Budget:
    try:
        budget = session.get(Budget, budget_id)
    except LookupError as exc:
        # the stored cycle_type is not one of CycleType's values
        raw = session.scalar(
            select(cast(Budget.cycle_type, String)).where(Budget.id == budget_id)
        )
        raise UnsupportedCycleType(raw) from exc
    if not budget or budget.deleted_at is not None:
        raise NotFound("Budget not found")
    return budget


def aggregate_spending(
    session: Session, budget_id: int, start: date, end: date
) -> tuple[dict[str, int], int]:
    """Sum split amounts per category and parent amounts for ``[start, end]``.

    A split contributes its precomputed ``calculated_amount`` when present and
    its raw ``allocation_value`` otherwise. The overall total is taken from the
    parent expenses, so drift between splits and parents is tolerated.
    """
    in_range = (
        Expense.budget_id == budget_id,
        Expense.deleted_at.is_(None),
        Expense.date.between(start, end),
    )
    split_value = func.coalesce(
        ExpenseSplit.calculated_amount, ExpenseSplit.allocation_value
    )
    by_category_stmt = (
        select(
            ExpenseSplit.category_id,
            func.coalesce(func.sum(split_value), 0).label("spent"),
        )
        .join(Expense, ExpenseSplit.expense_id == Expense.id)
        .where(*in_range)
        .group_by(ExpenseSplit.category_id)
    )
    category_totals = {
        str(row.category_id): int(row.spent or 0)
        for row in session.execute(by_category_stmt)
    }
    total_stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
        *in_range
    )
    total_spent = int(session.execute(total_stmt).scalar_one() or 0)
    return category_totals, total_spent


_LEGACY_SNAPSHOT_KEYS = {
    "budgetTotal": "budget_total",
    "totalSpent": "total_spent",
    "categoryTotals": "category_totals",
}
_LEGACY_CATEGORY_KEYS = {
    "allocationMethod": "allocation_method",
    "allocationValue": "allocation_value",
    "sortOrder": "sort_order",
}


def _rename_keys(data: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    return {mapping.get(key, key): value for key, value in data.items()}


def load_snapshot(blob: dict[str, Any]) -> CycleSnapshot:
    version = blob.get("schema_version", 0)
    if version > SNAPSHOT_SCHEMA_VERSION:
        raise ValueError(f"Snapshot schema version {version} is newer than supported")
    data = dict(blob)
    if version == 0:
        # Untagged rows predate versioning and use camelCase keys.
        data = _rename_keys(data, _LEGACY_SNAPSHOT_KEYS)
        data["categories"] = [
            {**_rename_keys(c, _LEGACY_CATEGORY_KEYS), "id": str(c["id"])}
            for c in data.get("categories", [])
        ]
        data["schema_version"] = SNAPSHOT_SCHEMA_VERSION
    return CycleSnapshot.model_validate(data)


class MembershipService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, budget_id: int, user_id: int) -> Optional[BudgetMember]:
        stmt = (
            select(BudgetMember)
            .join(Budget, Budget.id == BudgetMember.budget_id)
            .where(
                BudgetMember.budget_id == budget_id,
                BudgetMember.user_id == user_id,
                Budget.deleted_at.is_(None),
            )
        )
        return self.session.scalar(stmt)

    def require(
        self,
        budget_id: int,
        user_id: int,
        roles: Optional[Iterable[MemberRole]] = None,
    ) -> BudgetMember:
        member = self.get(budget_id, user_id)
        if not member:
            raise NotFound("Budget not found")
        if roles is not None and member.role not in tuple(roles):
            raise Forbidden("Permission denied")
        return member


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_user(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .join(BudgetMember, BudgetMember.budget_id == Budget.id)
            .where(
                BudgetMember.user_id == self.user_id, Budget.deleted_at.is_(None)
            )
            .order_by(Budget.name, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        return _get_budget(self.session, budget_id)

    def create(self, data: BudgetIn) -> Budget:
        budget = Budget(
            name=data.name.strip(),
            total_amount_cents=data.total_amount_cents,
            currency=data.currency.upper(),
            locale=data.locale,
            cycle_type=data.cycle_type,
            cycle_start_day=data.cycle_start_day,
            custom_cycle_days=data.custom_cycle_days,
            anchor_date=data.anchor_date,
            created_by_id=self.user_id,
        )
        budget.members.append(
            BudgetMember(
                user_id=self.user_id, role=MemberRole.owner, added_by_id=self.user_id
            )
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is not None:
            changes["name"] = changes["name"].strip()
        if changes.get("currency"):
            changes["currency"] = changes["currency"].upper()
        for field, value in changes.items():
            if value is None and field in _REQUIRED_BUDGET_FIELDS:
                continue
            setattr(budget, field, value)
        try:
            check_cycle_start_day(budget.cycle_type, budget.cycle_start_day)
        except ValueError:
            self.session.rollback()
            raise
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        budget.deleted_at = datetime.utcnow()
        self.session.commit()
        logger.info(f"budget_deleted: budget_id={budget_id} user_id={self.user_id}")


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _live(self, budget_id: int):
        return select(Category).where(
            Category.budget_id == budget_id, Category.deleted_at.is_(None)
        )

    def list_all(self, budget_id: int) -> list[Category]:
        stmt = self._live(budget_id).order_by(Category.sort_order, Category.id)
        return sort_for_display(self.session.scalars(stmt).all())

    def get(self, budget_id: int, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if (
            not category
            or category.budget_id != budget_id
            or category.deleted_at is not None
        ):
            raise NotFound("Category not found")
        return category

    def _ensure_unique_name(
        self, budget_id: int, name: str, exclude_id: Optional[int] = None
    ) -> None:
        stmt = self._live(budget_id).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise DuplicateName("Category with this name already exists")

    def _ensure_single_remaining(
        self, budget_id: int, exclude_id: Optional[int] = None
    ) -> None:
        stmt = self._live(budget_id).where(
            Category.allocation_method == AllocationMethod.remaining
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise InvalidState('A category with "Remaining" allocation already exists')

    def create(self, budget_id: int, data: CategoryIn) -> Category:
        _get_budget(self.session, budget_id)
        name = data.name.strip()
        self._ensure_unique_name(budget_id, name)
        if data.allocation_method == AllocationMethod.remaining:
            self._ensure_single_remaining(budget_id)

        max_sort = self.session.scalar(
            select(func.max(Category.sort_order)).where(Category.budget_id == budget_id)
        )
        category = Category(
            budget_id=budget_id,
            name=name,
            description=data.description,
            icon=data.icon,
            color=data.color,
            allocation_method=data.allocation_method,
            allocation_value=data.allocation_value,
            sort_order=(max_sort or 0) + 1,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(
        self, budget_id: int, category_id: int, data: CategoryUpdateIn
    ) -> Category:
        category = self.get(budget_id, category_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("name") is not None:
            changes["name"] = changes["name"].strip()
            self._ensure_unique_name(budget_id, changes["name"], exclude_id=category.id)
        if changes.get("allocation_method") == AllocationMethod.remaining:
            self._ensure_single_remaining(budget_id, exclude_id=category.id)
        for field, value in changes.items():
            if value is None and field in _REQUIRED_CATEGORY_FIELDS:
                continue
            setattr(category, field, value)
        if (
            category.allocation_method == AllocationMethod.percentage
            and category.allocation_value > BASIS_POINTS
        ):
            self.session.rollback()
            raise ValueError("Percentage allocation cannot exceed 100%")
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(
        self, budget_id: int, category_id: int, reassign_to: Optional[int] = None
    ) -> None:
        category = self.get(budget_id, category_id)
        live_count = self.session.scalar(
            select(func.count(Category.id)).where(
                Category.budget_id == budget_id, Category.deleted_at.is_(None)
            )
        )
        if (live_count or 0) <= 1:
            raise InvalidState("Cannot delete the last category in a budget")

        live_split_ids = (
            select(ExpenseSplit.id)
            .join(Expense, ExpenseSplit.expense_id == Expense.id)
            .where(
                ExpenseSplit.category_id == category.id,
                Expense.budget_id == budget_id,
                Expense.deleted_at.is_(None),
            )
        )
        split_count = self.session.scalar(
            select(func.count()).select_from(live_split_ids.subquery())
        )
        if split_count:
            if reassign_to is None:
                raise InvalidState("Must provide a category to reassign expenses to")
            if reassign_to == category.id:
                raise InvalidState("Cannot reassign expenses to the deleted category")
            try:
                target = self.get(budget_id, reassign_to)
            except NotFound as exc:
                raise NotFound("Reassign category not found") from exc
            self.session.execute(
                update(ExpenseSplit)
                .where(ExpenseSplit.id.in_(live_split_ids))
                .values(category_id=target.id)
                .execution_options(synchronize_session=False)
            )

        category.deleted_at = datetime.utcnow()
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _build_splits(
        self, budget_id: int, splits: list[ExpenseSplitIn], amount_cents: int
    ) -> list[ExpenseSplit]:
        built = []
        for split in splits:
            category = self.session.get(Category, split.category_id)
            if (
                not category
                or category.budget_id != budget_id
                or category.deleted_at is not None
            ):
                raise ValueError("Invalid category")
            built.append(
                ExpenseSplit(
                    category_id=category.id,
                    allocation_method=split.allocation_method,
                    allocation_value=split.allocation_value,
                    calculated_amount=split_amount(
                        split.allocation_method, split.allocation_value, amount_cents
                    ),
                )
            )
        return built

    def create(self, budget_id: int, data: ExpenseIn) -> Expense:
        _get_budget(self.session, budget_id)
        expense = Expense(
            budget_id=budget_id,
            amount_cents=data.amount_cents,
            date=data.date,
            description=data.description,
            created_by_id=self.user_id,
            splits=self._build_splits(budget_id, data.splits, data.amount_cents),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(
        self, budget_id: int, expense_id: int, data: ExpenseUpdateIn
    ) -> Expense:
        """Apply a partial edit; ``splits``, when given, replace the existing ones.

        Split amounts are recomputed against the resulting expense amount.
        Snapshots of closed cycles are not touched.
        """
        expense = self.get(budget_id, expense_id)
        changes = data.model_dump(exclude_unset=True, exclude={"splits"})
        amount_cents = changes.get("amount_cents") or expense.amount_cents
        new_splits = None
        if data.splits is not None:
            new_splits = self._build_splits(budget_id, data.splits, amount_cents)

        if changes.get("amount_cents") is not None:
            expense.amount_cents = changes["amount_cents"]
        if changes.get("date") is not None:
            expense.date = changes["date"]
        if "description" in changes:
            expense.description = changes["description"]
        if new_splits is not None:
            expense.splits = new_splits
        else:
            for split in expense.splits:
                split.calculated_amount = split_amount(
                    split.allocation_method, split.allocation_value, amount_cents
                )
        self.session.commit()
        self.session.refresh(expense)
        logger.info(f"expense_updated: budget_id={budget_id} expense_id={expense.id}")
        return expense

    def get(self, budget_id: int, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if (
            not expense
            or expense.budget_id != budget_id
            or expense.deleted_at is not None
        ):
            raise NotFound("Expense not found")
        return expense

    def list(
        self,
        budget_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.budget_id == budget_id, Expense.deleted_at.is_(None))
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if start:
            stmt = stmt.where(Expense.date >= start)
        if end:
            stmt = stmt.where(Expense.date <= end)
        return self.session.scalars(stmt).all()

    def soft_delete(self, budget_id: int, expense_id: int) -> None:
        expense = self.get(budget_id, expense_id)
        expense.deleted_at = datetime.utcnow()
        self.session.commit()


class SnapshotService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def build_snapshot(
        self, budget_id: int, cycle_start: date, cycle_end: date
    ) -> CycleSnapshot:
        budget = _get_budget(self.session, budget_id)
        categories = CategoryService(self.session).list_all(budget_id)
        category_totals, total_spent = aggregate_spending(
            self.session, budget_id, cycle_start, cycle_end
        )
        return CycleSnapshot(
            budget_total=budget.total_amount_cents,
            currency=budget.currency,
            locale=budget.locale,
            categories=[
                SnapshotCategory(
                    id=str(c.id),
                    name=c.name,
                    icon=c.icon,
                    color=c.color,
                    allocation_method=c.allocation_method,
                    allocation_value=c.allocation_value,
                    sort_order=c.sort_order,
                )
                for c in categories
            ],
            total_spent=total_spent,
            category_totals=category_totals,
        )

    def write_snapshot(self, cycle: BudgetCycle, snapshot: CycleSnapshot) -> bool:
        """Persist ``snapshot`` unless the cycle already has one.

        Returns False when another writer got there first; the stored snapshot
        is left untouched in that case.
        """
        result = self.session.execute(
            update(BudgetCycle)
            .where(BudgetCycle.id == cycle.id, BudgetCycle.snapshot.is_(None))
            .values(snapshot=snapshot.to_json())
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        self.session.refresh(cycle)
        written = result.rowcount == 1
        if written:
            logger.info(
                f"snapshot_written: budget_id={cycle.budget_id} cycle_id={cycle.id} "
                f"total_spent={snapshot.total_spent}"
            )
        else:
            logger.info(
                f"snapshot_skipped: budget_id={cycle.budget_id} cycle_id={cycle.id} "
                "reason=already_snapshotted"
            )
        return written

    def append_category(
        self, cycle: BudgetCycle, data: SnapshotCategoryIn
    ) -> SnapshotCategory:
        """Append a category to a closed cycle's snapshot.

        The write only lands if ``snapshot_revision`` still matches what was
        read, so a concurrent append is never overwritten. On a conflict the
        snapshot is re-read and the append retried once.
        """
        name = data.name.strip()
        for attempt in range(2):
            if cycle.snapshot is None:
                raise InvalidState(
                    "Cannot add categories to a cycle without a snapshot"
                )
            snapshot = load_snapshot(cycle.snapshot)
            if any(c.name.lower() == name.lower() for c in snapshot.categories):
                raise DuplicateName(
                    "A category with this name already exists in this cycle"
                )

            position = len(snapshot.categories)
            category = SnapshotCategory(
                id=f"snapshot_{cycle.id}_{position}",
                name=name,
                icon=data.icon or None,
                color=data.color or None,
                allocation_method=data.allocation_method,
                allocation_value=data.allocation_value,
                sort_order=position,
            )
            updated = snapshot.model_copy(
                update={"categories": [*snapshot.categories, category]}
            )
            revision = cycle.snapshot_revision
            result = self.session.execute(
                update(BudgetCycle)
                .where(
                    BudgetCycle.id == cycle.id,
                    BudgetCycle.snapshot_revision == revision,
                )
                .values(snapshot=updated.to_json(), snapshot_revision=revision + 1)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            self.session.refresh(cycle)
            if result.rowcount == 1:
                logger.info(
                    f"snapshot_category_added: cycle_id={cycle.id} "
                    f"category_id={category.id}"
                )
                return category
            logger.info(
                f"snapshot_append_conflict: cycle_id={cycle.id} attempt={attempt + 1}"
            )
        raise InvalidState("Snapshot changed while adding the category, try again")


@dataclass(frozen=True)
class LiveCycleView:
    cycle: BudgetCycle
    category_totals: dict[str, int]
    total_spent: int
    allocations: dict[str, int]
    is_current_cycle: bool


@dataclass(frozen=True)
class SnapshotCycleView:
    cycle: BudgetCycle
    category_totals: dict[str, int]
    total_spent: int
    allocations: dict[str, int]
    snapshot: CycleSnapshot
    is_current_cycle: bool = False


CycleView = Union[LiveCycleView, SnapshotCycleView]


class CycleService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _find_by_start(self, budget_id: int, start: date) -> Optional[BudgetCycle]:
        stmt = select(BudgetCycle).where(
            BudgetCycle.budget_id == budget_id, BudgetCycle.start_date == start
        )
        return self.session.scalar(stmt)

    def get(self, budget_id: int, cycle_id: int) -> BudgetCycle:
        cycle = self.session.get(BudgetCycle, cycle_id)
        if not cycle or cycle.budget_id != budget_id:
            raise NotFound("Cycle not found")
        return cycle

    def list_cycles(self, budget_id: int) -> list[BudgetCycle]:
        _get_budget(self.session, budget_id)
        stmt = (
            select(BudgetCycle)
            .where(BudgetCycle.budget_id == budget_id)
            .order_by(BudgetCycle.start_date.desc())
        )
        return self.session.scalars(stmt).all()

    def _create_cycle(self, budget_id: int, bounds: CycleBounds) -> BudgetCycle:
        cycle = BudgetCycle(
            budget_id=budget_id, start_date=bounds.start, end_date=bounds.end
        )
        self.session.add(cycle)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request created the same cycle between our lookup and
            # insert; the unique (budget_id, start_date) row is the winner.
            self.session.rollback()
            logger.info(
                f"cycle_create_race: budget_id={budget_id} start={bounds.start}"
            )
            existing = self._find_by_start(budget_id, bounds.start)
            if existing is None:
                raise
            return existing
        logger.info(
            f"cycle_created: budget_id={budget_id} cycle_id={cycle.id} "
            f"start={bounds.start} end={bounds.end}"
        )
        return cycle

    def _open_current_cycle(
        self, budget_id: int, config: RecurrenceConfig, current: CycleBounds
    ) -> BudgetCycle:
        # The previous cycle is closed before the new one exists, so a crash in
        # between leaves nothing un-snapshotted and the next read repeats both.
        previous = previous_cycle_bounds(current.start, config)
        previous_cycle = self._find_by_start(budget_id, previous.start)
        if previous_cycle is not None and previous_cycle.snapshot is None:
            snapshots = SnapshotService(self.session)
            snapshot = snapshots.build_snapshot(
                budget_id, previous_cycle.start_date, previous_cycle.end_date
            )
            snapshots.write_snapshot(previous_cycle, snapshot)
        return self._create_cycle(budget_id, current)

    def resolve(
        self,
        budget_id: int,
        *,
        cycle_id: Optional[int] = None,
        on_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> CycleView:
        if cycle_id is not None and on_date is not None:
            raise ValueError("Provide either a cycle id or a date, not both")
        budget = _get_budget(self.session, budget_id)
        config = RecurrenceConfig.from_budget(budget)
        today = today or local_today()
        current = cycle_bounds_for_date(today, config)

        if cycle_id is not None:
            cycle = self.get(budget_id, cycle_id)
        elif on_date is not None:
            requested = cycle_bounds_for_date(on_date, config)
            cycle = self._find_by_start(budget_id, requested.start)
            if cycle is None:
                raise NotFound("Cycle not found")
        else:
            cycle = self._find_by_start(budget_id, current.start)
            if cycle is None:
                cycle = self._open_current_cycle(budget_id, config, current)

        is_current = cycle.start_date == current.start
        if not is_current and cycle.snapshot is not None:
            snapshot = load_snapshot(cycle.snapshot)
            return SnapshotCycleView(
                cycle=cycle,
                category_totals=dict(snapshot.category_totals),
                total_spent=snapshot.total_spent,
                allocations=allocation_breakdown(
                    snapshot.categories, snapshot.budget_total
                ),
                snapshot=snapshot,
            )

        category_totals, total_spent = aggregate_spending(
            self.session, budget_id, cycle.start_date, cycle.end_date
        )
        categories = CategoryService(self.session).list_all(budget_id)
        return LiveCycleView(
            cycle=cycle,
            category_totals=category_totals,
            total_spent=total_spent,
            allocations=allocation_breakdown(categories, budget.total_amount_cents),
            is_current_cycle=is_current,
        )


class InvitationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, budget_id: int, data: InvitationIn) -> tuple[Invitation, str]:
        _get_budget(self.session, budget_id)
        email = data.email.strip().lower()
        pending = self.session.scalar(
            select(Invitation).where(
                Invitation.budget_id == budget_id,
                func.lower(Invitation.email) == email,
                Invitation.status == InvitationStatus.pending,
                Invitation.expires_at > datetime.utcnow(),
            )
        )
        if pending:
            raise InvalidState("An invitation is already pending for this email")

        days = data.expires_in_days or get_settings().invite_max_age_days
        invitation = Invitation(
            budget_id=budget_id,
            email=email,
            role=data.role,
            status=InvitationStatus.pending,
            expires_at=datetime.utcnow() + timedelta(days=days),
            sent_by_id=self.user_id,
        )
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(invitation)
        return invitation, generate_invitation_token(invitation.id)

    def list_for_budget(self, budget_id: int) -> list[Invitation]:
        _get_budget(self.session, budget_id)
        stmt = (
            select(Invitation)
            .where(Invitation.budget_id == budget_id)
            .order_by(Invitation.created_at.desc(), Invitation.id.desc())
        )
        return self.session.scalars(stmt).all()

    def accept(self, token: str) -> BudgetMember:
        invitation_id = read_invitation_token(token)
        invitation = (
            self.session.get(Invitation, invitation_id)
            if invitation_id is not None
            else None
        )
        if not invitation:
            raise NotFound("Invitation not found")
        _get_budget(self.session, invitation.budget_id)
        if invitation.status != InvitationStatus.pending:
            raise InvalidState("Invitation already used")
        if invitation.expires_at < datetime.utcnow():
            invitation.status = InvitationStatus.expired
            self.session.commit()
            raise InvalidState("Invitation expired")
        if MembershipService(self.session).get(invitation.budget_id, self.user_id):
            raise InvalidState("Already a member")

        member = BudgetMember(
            budget_id=invitation.budget_id,
            user_id=self.user_id,
            role=invitation.role,
            added_by_id=invitation.sent_by_id,
        )
        self.session.add(member)
        invitation.status = InvitationStatus.accepted
        self.session.commit()
        self.session.refresh(member)
        logger.info(
            f"invitation_accepted: budget_id={invitation.budget_id} "
            f"user_id={self.user_id} role={member.role.value}"
        )
        return member
