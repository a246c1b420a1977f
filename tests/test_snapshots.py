from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import DuplicateName, InvalidState
from models import AllocationMethod, BudgetCycle, CycleType, Expense, ExpenseSplit
from schemas import (
    BudgetIn,
    CategoryIn,
    CategoryUpdateIn,
    ExpenseIn,
    ExpenseSplitIn,
    SnapshotCategoryIn,
)
from services import (
    BudgetService,
    CategoryService,
    ExpenseService,
    SnapshotService,
    load_snapshot,
)


def _household(session: Session):
    budget = BudgetService(session, user_id=1).create(
        BudgetIn(
            name="Household",
            total_amount_cents=100_000,
            currency="eur",
            locale="de-DE",
            cycle_type=CycleType.monthly,
            anchor_date=date(2024, 1, 15),
        )
    )
    categories = CategoryService(session)
    rest = categories.create(
        budget.id,
        CategoryIn(name="Everything else", allocation_method=AllocationMethod.remaining),
    )
    groceries = categories.create(
        budget.id, CategoryIn(name="Groceries", icon="cart", allocation_value=30_000)
    )
    fun = categories.create(
        budget.id,
        CategoryIn(
            name="Fun",
            color="#ff8800",
            allocation_method=AllocationMethod.percentage,
            allocation_value=1_000,
        ),
    )
    return budget, rest, groceries, fun


def _expense(session, budget_id, when, amount, splits):
    return ExpenseService(session, user_id=1).create(
        budget_id,
        ExpenseIn(
            amount_cents=amount,
            date=when,
            splits=[
                ExpenseSplitIn(
                    category_id=cat_id, allocation_method=method, allocation_value=value
                )
                for cat_id, method, value in splits
            ],
        ),
    )


def _january_cycle(session, budget_id) -> BudgetCycle:
    cycle = BudgetCycle(
        budget_id=budget_id, start_date=date(2024, 1, 15), end_date=date(2024, 2, 14)
    )
    session.add(cycle)
    session.commit()
    return cycle


def test_build_snapshot_aggregates_cycle_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget, rest, groceries, fun = _household(session)
        fixed = AllocationMethod.fixed
        _expense(
            session,
            budget.id,
            date(2024, 1, 20),
            2_000,
            [(groceries.id, fixed, 1_500), (fun.id, fixed, 500)],
        )
        _expense(
            session,
            budget.id,
            date(2024, 2, 14),
            800,
            [(groceries.id, AllocationMethod.percentage, 5_000)],
        )
        # outside the cycle
        _expense(session, budget.id, date(2024, 2, 15), 9_999, [(fun.id, fixed, 9_999)])
        deleted = _expense(
            session, budget.id, date(2024, 1, 25), 4_000, [(fun.id, fixed, 4_000)]
        )
        ExpenseService(session, user_id=1).soft_delete(budget.id, deleted.id)

        # a split stored without a precomputed amount falls back to its value
        legacy = Expense(
            budget_id=budget.id,
            amount_cents=300,
            date=date(2024, 1, 16),
            created_by_id=1,
            splits=[
                ExpenseSplit(
                    category_id=rest.id,
                    allocation_method=fixed,
                    allocation_value=250,
                    calculated_amount=None,
                )
            ],
        )
        session.add(legacy)
        session.commit()

        snapshot = SnapshotService(session).build_snapshot(
            budget.id, date(2024, 1, 15), date(2024, 2, 14)
        )

        assert snapshot.schema_version == 1
        assert snapshot.budget_total == 100_000
        assert snapshot.currency == "EUR"
        assert snapshot.locale == "de-DE"
        assert snapshot.total_spent == 2_000 + 800 + 300
        assert snapshot.category_totals == {
            str(groceries.id): 1_500 + 400,
            str(fun.id): 500,
            str(rest.id): 250,
        }
        assert [c.name for c in snapshot.categories] == [
            "Groceries",
            "Fun",
            "Everything else",
        ]
        groceries_copy = snapshot.categories[0]
        assert groceries_copy.id == str(groceries.id)
        assert groceries_copy.icon == "cart"
        assert groceries_copy.allocation_value == 30_000


def test_snapshot_is_a_value_copy_of_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget, rest, groceries, fun = _household(session)
        cycle = _january_cycle(session, budget.id)
        snapshots = SnapshotService(session)
        snapshots.write_snapshot(
            cycle, snapshots.build_snapshot(budget.id, cycle.start_date, cycle.end_date)
        )

        categories = CategoryService(session)
        categories.update(
            budget.id,
            groceries.id,
            CategoryUpdateIn(name="Food", allocation_value=45_000),
        )
        categories.delete(budget.id, fun.id)

        session.refresh(cycle)
        stored = load_snapshot(cycle.snapshot)
        names = [c.name for c in stored.categories]
        assert names == ["Groceries", "Fun", "Everything else"]
        assert stored.categories[0].allocation_value == 30_000


def test_snapshot_write_is_write_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget, rest, groceries, fun = _household(session)
        fixed = AllocationMethod.fixed
        _expense(
            session, budget.id, date(2024, 1, 20), 1_000, [(groceries.id, fixed, 1_000)]
        )
        cycle = _january_cycle(session, budget.id)
        snapshots = SnapshotService(session)

        first = snapshots.build_snapshot(budget.id, cycle.start_date, cycle.end_date)
        assert snapshots.write_snapshot(cycle, first) is True

        _expense(
            session, budget.id, date(2024, 1, 21), 7_000, [(groceries.id, fixed, 7_000)]
        )
        second = snapshots.build_snapshot(budget.id, cycle.start_date, cycle.end_date)
        assert second.total_spent == 8_000
        assert snapshots.write_snapshot(cycle, second) is False

        stored = load_snapshot(cycle.snapshot)
        assert stored.total_spent == 1_000
        assert stored.category_totals == {str(groceries.id): 1_000}


def test_append_category_requires_a_snapshot() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget, *_ = _household(session)
        cycle = _january_cycle(session, budget.id)

        with pytest.raises(InvalidState):
            SnapshotService(session).append_category(
                cycle,
                SnapshotCategoryIn(
                    name="Gifts",
                    allocation_method=AllocationMethod.fixed,
                    allocation_value=1_000,
                ),
            )


def test_append_category_to_historical_snapshot() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget, rest, groceries, fun = _household(session)
        _expense(
            session,
            budget.id,
            date(2024, 1, 20),
            1_000,
            [(groceries.id, AllocationMethod.fixed, 1_000)],
        )
        cycle = _january_cycle(session, budget.id)
        snapshots = SnapshotService(session)
        snapshots.write_snapshot(
            cycle, snapshots.build_snapshot(budget.id, cycle.start_date, cycle.end_date)
        )

        added = snapshots.append_category(
            cycle,
            SnapshotCategoryIn(
                name="Gifts",
                icon="",
                allocation_method=AllocationMethod.fixed,
                allocation_value=2_500,
            ),
        )
        assert added.id == f"snapshot_{cycle.id}_3"
        assert added.sort_order == 3
        assert added.icon is None
        assert added.id not in {str(c.id) for c in (rest, groceries, fun)}

        with pytest.raises(DuplicateName):
            snapshots.append_category(
                cycle,
                SnapshotCategoryIn(
                    name="groceries",
                    allocation_method=AllocationMethod.fixed,
                    allocation_value=100,
                ),
            )

        stored = load_snapshot(cycle.snapshot)
        assert [c.name for c in stored.categories][-1] == "Gifts"
        assert stored.category_totals == {str(groceries.id): 1_000}
        assert stored.total_spent == 1_000


def test_load_snapshot_upgrades_untagged_rows() -> None:
    legacy = {
        "budgetTotal": 50_000,
        "currency": "USD",
        "locale": "en-US",
        "categories": [
            {
                "id": 7,
                "name": "Rent",
                "icon": None,
                "color": None,
                "allocationMethod": "FIXED",
                "allocationValue": 40_000,
                "sortOrder": 1,
            }
        ],
        "totalSpent": 40_000,
        "categoryTotals": {"7": 40_000},
    }

    snapshot = load_snapshot(legacy)

    assert snapshot.schema_version == 1
    assert snapshot.budget_total == 50_000
    assert snapshot.categories[0].id == "7"
    assert snapshot.categories[0].allocation_method == AllocationMethod.fixed
    assert snapshot.category_totals == {"7": 40_000}


def test_load_snapshot_rejects_future_versions() -> None:
    with pytest.raises(ValueError):
        load_snapshot({"schema_version": 99})


def _snapshotted_cycle_id(engine) -> int:
    with Session(engine) as session:
        budget, *_ = _household(session)
        cycle = _january_cycle(session, budget.id)
        snapshots = SnapshotService(session)
        snapshots.write_snapshot(
            cycle, snapshots.build_snapshot(budget.id, cycle.start_date, cycle.end_date)
        )
        return cycle.id


def test_concurrent_appends_keep_both_categories(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'budgets.db'}")
    Base.metadata.create_all(engine)
    cycle_id = _snapshotted_cycle_id(engine)

    with Session(engine) as first, Session(engine) as second:
        # both sessions read the snapshot before either writes
        first_cycle = first.get(BudgetCycle, cycle_id)
        second_cycle = second.get(BudgetCycle, cycle_id)
        assert first_cycle.snapshot_revision == second_cycle.snapshot_revision == 0

        SnapshotService(first).append_category(
            first_cycle,
            SnapshotCategoryIn(
                name="Gifts",
                allocation_method=AllocationMethod.fixed,
                allocation_value=1_000,
            ),
        )
        travel = SnapshotService(second).append_category(
            second_cycle,
            SnapshotCategoryIn(
                name="Travel",
                allocation_method=AllocationMethod.fixed,
                allocation_value=2_000,
            ),
        )
        assert travel.id == f"snapshot_{cycle_id}_4"

    with Session(engine) as session:
        stored = session.get(BudgetCycle, cycle_id)
        names = [c.name for c in load_snapshot(stored.snapshot).categories]
        assert names == ["Groceries", "Fun", "Everything else", "Gifts", "Travel"]
        assert stored.snapshot_revision == 2


def test_concurrent_duplicate_append_is_rejected(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'budgets.db'}")
    Base.metadata.create_all(engine)
    cycle_id = _snapshotted_cycle_id(engine)

    with Session(engine) as first, Session(engine) as second:
        first_cycle = first.get(BudgetCycle, cycle_id)
        second_cycle = second.get(BudgetCycle, cycle_id)

        SnapshotService(first).append_category(
            first_cycle,
            SnapshotCategoryIn(
                name="Gifts",
                allocation_method=AllocationMethod.fixed,
                allocation_value=1_000,
            ),
        )
        with pytest.raises(DuplicateName):
            SnapshotService(second).append_category(
                second_cycle,
                SnapshotCategoryIn(
                    name="GIFTS",
                    allocation_method=AllocationMethod.fixed,
                    allocation_value=5,
                ),
            )

    with Session(engine) as session:
        stored = session.get(BudgetCycle, cycle_id)
        names = [c.name for c in load_snapshot(stored.snapshot).categories]
        assert names.count("Gifts") == 1
        assert "GIFTS" not in names
