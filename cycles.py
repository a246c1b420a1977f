"""Budget cycle boundary arithmetic.

Every function here is pure: callers pass the reference date explicitly and
nothing reads the clock. Bounds are calendar days, inclusive on both ends.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from errors import UnsupportedCycleType
from models import Budget, CycleType

ONE_DAY = timedelta(days=1)
DEFAULT_CUSTOM_CYCLE_DAYS = 30
DEFAULT_WEEK_START = 0  # Sunday
DEFAULT_MONTH_DAY = 1


@dataclass(frozen=True)
class RecurrenceConfig:
    cycle_type: CycleType
    cycle_start_day: Optional[int] = None
    custom_cycle_days: Optional[int] = None
    anchor_date: Optional[date] = None

    @classmethod
    def from_budget(cls, budget: Budget) -> "RecurrenceConfig":
        return cls(
            cycle_type=budget.cycle_type,
            cycle_start_day=budget.cycle_start_day,
            custom_cycle_days=budget.custom_cycle_days,
            anchor_date=budget.anchor_date,
        )


@dataclass(frozen=True)
class CycleBounds:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("Cycle end must not be before its start")

    def contains(self, target: Union[date, datetime]) -> bool:
        return is_date_in_cycle(target, self.start, self.end)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    total_months = year * 12 + (month - 1) + months
    return total_months // 12, total_months % 12 + 1


def _clamped_day(year: int, month: int, desired_day: int) -> date:
    return date(year, month, min(desired_day, days_in_month(year, month)))


def _as_calendar_day(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def _weekly_bounds(target: date, config: RecurrenceConfig) -> CycleBounds:
    if config.anchor_date:
        anchor = config.anchor_date
        # dates before the anchor belong to the anchor's own first cycle
        index = max(0, (target - anchor).days // 7)
        start = anchor + timedelta(days=7 * index)
        return CycleBounds(start, start + timedelta(days=6))

    start_day = (
        config.cycle_start_day
        if config.cycle_start_day is not None
        else DEFAULT_WEEK_START
    )
    # date.weekday() is Monday=0; cycle_start_day counts from Sunday=0
    sunday_based = (target.weekday() + 1) % 7
    start = target - timedelta(days=(sunday_based - start_day) % 7)
    return CycleBounds(start, start + timedelta(days=6))


def _fixed_length_bounds(
    target: date, anchor: Optional[date], length_days: int
) -> CycleBounds:
    if anchor is not None:
        index = (target - anchor).days // length_days
        start = anchor + timedelta(days=index * length_days)
        return CycleBounds(start, start + timedelta(days=length_days - 1))

    # Without an anchor the cycles restart every January 1st, so the last
    # cycle of a year is cut short at December 31st.
    year_start = date(target.year, 1, 1)
    index = (target - year_start).days // length_days
    start = year_start + timedelta(days=index * length_days)
    end = min(start + timedelta(days=length_days - 1), date(target.year, 12, 31))
    return CycleBounds(start, end)


def _monthly_bounds(target: date, config: RecurrenceConfig) -> CycleBounds:
    if config.anchor_date:
        anchor_day = config.anchor_date.day
    else:
        anchor_day = config.cycle_start_day or DEFAULT_MONTH_DAY

    this_month_day = _clamped_day(target.year, target.month, anchor_day)
    if target >= this_month_day:
        start = this_month_day
    else:
        prev_year, prev_month = _shift_month(target.year, target.month, -1)
        start = _clamped_day(prev_year, prev_month, anchor_day)

    # The end clamp uses the following month's length, not the start month's.
    next_year, next_month = _shift_month(start.year, start.month, 1)
    end = _clamped_day(next_year, next_month, anchor_day) - ONE_DAY
    return CycleBounds(start, end)


def _quarterly_bounds(target: date) -> CycleBounds:
    first_month = (target.month - 1) // 3 * 3 + 1
    start = date(target.year, first_month, 1)
    next_year, next_month = _shift_month(target.year, first_month, 3)
    return CycleBounds(start, date(next_year, next_month, 1) - ONE_DAY)


def _yearly_bounds(target: date) -> CycleBounds:
    return CycleBounds(date(target.year, 1, 1), date(target.year, 12, 31))


def cycle_bounds_for_date(
    target: Union[date, datetime], config: RecurrenceConfig
) -> CycleBounds:
    day = _as_calendar_day(target)
    cycle_type = config.cycle_type
    if cycle_type == CycleType.weekly:
        return _weekly_bounds(day, config)
    if cycle_type == CycleType.biweekly:
        return _fixed_length_bounds(day, config.anchor_date, 14)
    if cycle_type == CycleType.monthly:
        return _monthly_bounds(day, config)
    if cycle_type == CycleType.quarterly:
        return _quarterly_bounds(day)
    if cycle_type == CycleType.yearly:
        return _yearly_bounds(day)
    if cycle_type == CycleType.custom:
        length = config.custom_cycle_days or DEFAULT_CUSTOM_CYCLE_DAYS
        return _fixed_length_bounds(day, config.anchor_date, length)
    raise UnsupportedCycleType(cycle_type)


def next_cycle_bounds(
    current_end: Union[date, datetime], config: RecurrenceConfig
) -> CycleBounds:
    return cycle_bounds_for_date(_as_calendar_day(current_end) + ONE_DAY, config)


def previous_cycle_bounds(
    current_start: Union[date, datetime], config: RecurrenceConfig
) -> CycleBounds:
    return cycle_bounds_for_date(_as_calendar_day(current_start) - ONE_DAY, config)


def is_date_in_cycle(
    target: Union[date, datetime],
    start: Union[date, datetime],
    end: Union[date, datetime],
) -> bool:
    day = _as_calendar_day(target)
    return _as_calendar_day(start) <= day <= _as_calendar_day(end)
