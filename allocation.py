from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from models import AllocationMethod

BASIS_POINTS = 10_000


class Allocatable(Protocol):
    allocation_method: AllocationMethod
    allocation_value: int


CategoryT = TypeVar("CategoryT", bound=Allocatable)


def basis_points_of(amount_cents: int, basis_points: int) -> int:
    share = Decimal(amount_cents) * Decimal(basis_points) / Decimal(BASIS_POINTS)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _fixed_or_percentage(category: Allocatable, budget_total: int) -> int:
    if category.allocation_method == AllocationMethod.percentage:
        return basis_points_of(budget_total, category.allocation_value)
    return category.allocation_value


def allocated_amount(
    category: Allocatable,
    budget_total: int,
    all_categories: Iterable[Allocatable],
) -> int:
    """Effective allocation of ``category`` in minor currency units.

    FIXED values are already cents, PERCENTAGE values are basis points of the
    budget total, and REMAINING absorbs whatever the other categories leave
    (never below zero). Several REMAINING categories in ``all_categories`` are
    each given the same residual; uniqueness is checked when categories are
    written, not here.
    """
    method = category.allocation_method
    if method == AllocationMethod.fixed:
        return category.allocation_value
    if method == AllocationMethod.percentage:
        return basis_points_of(budget_total, category.allocation_value)
    if method == AllocationMethod.remaining:
        claimed = sum(
            _fixed_or_percentage(other, budget_total)
            for other in all_categories
            if other.allocation_method != AllocationMethod.remaining
        )
        return max(0, budget_total - claimed)
    raise ValueError(f"Unknown allocation method: {method}")


def allocation_breakdown(
    categories: Sequence[Allocatable], budget_total: int, *, key=lambda c: c.id
) -> dict[str, int]:
    return {
        str(key(category)): allocated_amount(category, budget_total, categories)
        for category in categories
    }


def split_amount(
    method: AllocationMethod, value: int, expense_amount: int
) -> Optional[int]:
    if method == AllocationMethod.fixed:
        return value
    if method == AllocationMethod.percentage:
        return basis_points_of(expense_amount, value)
    return None


def sort_for_display(categories: Iterable[CategoryT]) -> list[CategoryT]:
    # REMAINING always renders last, whatever its sort_order
    return sorted(
        categories,
        key=lambda c: (
            c.allocation_method == AllocationMethod.remaining,
            c.sort_order or 0,
        ),
    )
