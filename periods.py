import calendar
from datetime import date
from enum import Enum
from typing import Optional


class PeriodFilter(str, Enum):
    this_month = "thisMonth"
    last_month = "lastMonth"
    this_year = "thisYear"
    last_year = "lastYear"
    all = "all"

    @property
    def is_month_scoped(self) -> bool:
        return self in (PeriodFilter.this_month, PeriodFilter.last_month)

    @property
    def is_year_scoped(self) -> bool:
        return self in (PeriodFilter.this_year, PeriodFilter.last_year)


def resolve_period_filter(value: Optional[str]) -> PeriodFilter:
    if not value:
        return PeriodFilter.all
    try:
        return PeriodFilter(value)
    except ValueError as exc:
        raise ValueError(f"Unknown period filter: {value}") from exc


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def target_month(period: PeriodFilter, today: date) -> Optional[tuple[int, int]]:
    if period == PeriodFilter.this_month:
        return today.year, today.month
    if period == PeriodFilter.last_month:
        return previous_month(today.year, today.month)
    return None


def target_year(period: PeriodFilter, today: date) -> Optional[int]:
    if period == PeriodFilter.this_year:
        return today.year
    if period == PeriodFilter.last_year:
        return today.year - 1
    return None


def in_period(day: date, period: PeriodFilter, today: date) -> bool:
    month = target_month(period, today)
    if month is not None:
        return (day.year, day.month) == month
    year = target_year(period, today)
    if year is not None:
        return day.year == year
    return True


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def period_bounds(period: PeriodFilter, today: date) -> Optional[tuple[date, date]]:
    """Inclusive date range for ``period``; ``None`` means unbounded."""
    month = target_month(period, today)
    if month is not None:
        year, mon = month
        return date(year, mon, 1), date(year, mon, days_in_month(year, mon))
    year = target_year(period, today)
    if year is not None:
        return date(year, 1, 1), date(year, 12, 31)
    return None
