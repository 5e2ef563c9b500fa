"""Spending analytics derived from already-loaded expenses and categories.

Everything here is a pure function of its arguments. The reference time is
always passed in as ``now`` so results are reproducible and safe to compute
concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Sequence, Union

from periods import (
    PeriodFilter,
    days_in_month,
    in_period,
    target_month,
    target_year,
)

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)
WEEK_LABELS = ("Week 1", "Week 2", "Week 3", "Week 4")
UNKNOWN_CATEGORY_COLOR = "#6B7280"
SERIES_COLOR = "#6366F1"
NO_CATEGORY = "N/A"
CATEGORY_TREND_LIMIT = 3
CATEGORY_TREND_MONTHS = 6
RECENT_MONTHS = 4
ALL_TIME_PATTERN_DAYS = 30


@dataclass(frozen=True)
class ExpenseRecord:
    amount_cents: int
    date: date
    category: str


@dataclass(frozen=True)
class CategoryRecord:
    name: str
    color: Optional[str] = None
    emoji: Optional[str] = None


@dataclass(frozen=True)
class Summary:
    total_spending: int
    monthly_average: float
    daily_average: float
    top_category: str
    top_category_amount: int

    def to_dict(self) -> dict[str, object]:
        return {
            "total_spending_cents": self.total_spending,
            "monthly_average_cents": self.monthly_average,
            "daily_average_cents": self.daily_average,
            "top_category": self.top_category,
            "top_category_amount_cents": self.top_category_amount,
        }


@dataclass(frozen=True)
class BreakdownItem:
    label: str
    value: int
    color: str
    percentage: str

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "value_cents": self.value,
            "color": self.color,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class Series:
    label: str
    labels: tuple[str, ...]
    values: tuple[int, ...]
    color: str = SERIES_COLOR

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "labels": list(self.labels),
            "values_cents": list(self.values),
            "color": self.color,
        }


@dataclass(frozen=True)
class AnalyticsReport:
    period: PeriodFilter
    summary: Summary
    breakdown: tuple[BreakdownItem, ...]
    trend: Series
    pattern: Series
    category_trends: tuple[Series, ...]
    recent_months: Series
    expense_count: int = 0
    generated_for: Optional[date] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "period": self.period.value,
            "as_of": self.generated_for.isoformat() if self.generated_for else None,
            "expense_count": self.expense_count,
            "summary": self.summary.to_dict(),
            "breakdown": [item.to_dict() for item in self.breakdown],
            "trend": self.trend.to_dict(),
            "pattern": self.pattern.to_dict(),
            "category_trends": [series.to_dict() for series in self.category_trends],
            "recent_months": self.recent_months.to_dict(),
        }


def _as_day(now: Union[date, datetime]) -> date:
    if isinstance(now, datetime):
        return now.date()
    return now


def filter_expenses(
    expenses: Iterable[ExpenseRecord], period: PeriodFilter, now: Union[date, datetime]
) -> list[ExpenseRecord]:
    today = _as_day(now)
    return [exp for exp in expenses if in_period(exp.date, period, today)]


def category_totals(expenses: Iterable[ExpenseRecord]) -> dict[str, int]:
    """Sum amounts per category name, keyed in order of first appearance."""
    totals: dict[str, int] = {}
    for exp in expenses:
        totals[exp.category] = totals.get(exp.category, 0) + exp.amount_cents
    return totals


def _color_lookup(categories: Iterable[CategoryRecord]) -> dict[str, str]:
    colors: dict[str, str] = {}
    for cat in categories:
        # first match wins, mirroring a linear find over the list
        if cat.name not in colors:
            colors[cat.name] = cat.color or UNKNOWN_CATEGORY_COLOR
    return colors


def format_percentage(value: int, total: int) -> str:
    if total <= 0:
        return "0.0"
    return f"{value / total * 100:.1f}"


def summarize(
    filtered: Sequence[ExpenseRecord], period: PeriodFilter
) -> Summary:
    total = sum(exp.amount_cents for exp in filtered)

    if period.is_year_scoped:
        num_months = 12
    elif period == PeriodFilter.all:
        num_months = max(1, len({(exp.date.year, exp.date.month) for exp in filtered}))
    else:
        num_months = 1

    num_days = max(1, len({exp.date for exp in filtered}))

    totals = category_totals(filtered)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    if ranked:
        top_name, top_amount = ranked[0]
    else:
        top_name, top_amount = NO_CATEGORY, 0

    return Summary(
        total_spending=total,
        monthly_average=total / num_months,
        daily_average=total / num_days,
        top_category=top_name,
        top_category_amount=top_amount,
    )


def breakdown(
    filtered: Sequence[ExpenseRecord], categories: Sequence[CategoryRecord]
) -> tuple[BreakdownItem, ...]:
    totals = category_totals(filtered)
    total = sum(totals.values())
    colors = _color_lookup(categories)
    return tuple(
        BreakdownItem(
            label=name,
            value=value,
            color=colors.get(name, UNKNOWN_CATEGORY_COLOR),
            percentage=format_percentage(value, total),
        )
        for name, value in totals.items()
    )


def _week_index(day: date) -> int:
    return min((day.day - 1) // 7, len(WEEK_LABELS) - 1)


def _monthly_buckets(
    expenses: Iterable[ExpenseRecord], year: Optional[int] = None
) -> tuple[int, ...]:
    buckets = [0] * 12
    for exp in expenses:
        if year is not None and exp.date.year != year:
            continue
        buckets[exp.date.month - 1] += exp.amount_cents
    return tuple(buckets)


def trend_series(
    filtered: Sequence[ExpenseRecord], period: PeriodFilter, today: date
) -> Series:
    if period.is_month_scoped:
        buckets = [0] * len(WEEK_LABELS)
        for exp in filtered:
            buckets[_week_index(exp.date)] += exp.amount_cents
        return Series("Weekly Spending", WEEK_LABELS, tuple(buckets))
    return Series(
        "Monthly Spending",
        MONTH_LABELS,
        _monthly_buckets(filtered, target_year(period, today)),
    )


def pattern_series(
    filtered: Sequence[ExpenseRecord], period: PeriodFilter, today: date
) -> Series:
    if period.is_year_scoped:
        return Series("Monthly Spending", MONTH_LABELS, _monthly_buckets(filtered))

    month = target_month(period, today)
    if month is not None:
        length = days_in_month(*month)
    else:
        length = ALL_TIME_PATTERN_DAYS
    buckets = [0] * length
    for exp in filtered:
        if exp.date.day <= length:
            buckets[exp.date.day - 1] += exp.amount_cents
    labels = tuple(str(day) for day in range(1, length + 1))
    return Series("Daily Spending", labels, tuple(buckets))


def category_trend_series(
    filtered: Sequence[ExpenseRecord],
    categories: Sequence[CategoryRecord],
    period: PeriodFilter,
    today: date,
) -> tuple[Series, ...]:
    names = list(category_totals(filtered))[:CATEGORY_TREND_LIMIT]
    colors = _color_lookup(categories)

    # year filters chart their year; everything else charts Jan-Jun of today's year
    year = target_year(period, today)
    if year is not None:
        count = 12
    else:
        year, count = today.year, CATEGORY_TREND_MONTHS
    months = [(year, m) for m in range(1, count + 1)]
    labels = MONTH_LABELS[:count]

    index = {key: pos for pos, key in enumerate(months)}
    result = []
    for name in names:
        points = [0] * len(months)
        for exp in filtered:
            if exp.category != name:
                continue
            pos = index.get((exp.date.year, exp.date.month))
            if pos is not None:
                points[pos] += exp.amount_cents
        result.append(
            Series(
                name,
                labels,
                tuple(points),
                colors.get(name, UNKNOWN_CATEGORY_COLOR),
            )
        )
    return tuple(result)


def recent_months_series(filtered: Sequence[ExpenseRecord]) -> Series:
    totals: dict[tuple[int, int], int] = {}
    for exp in filtered:
        key = (exp.date.year, exp.date.month)
        totals[key] = totals.get(key, 0) + exp.amount_cents
    keys = sorted(totals)[-RECENT_MONTHS:]
    return Series(
        "Monthly Spending",
        tuple(f"{MONTH_LABELS[m - 1]} {y}" for y, m in keys),
        tuple(totals[key] for key in keys),
    )


def build_report(
    expenses: Iterable[ExpenseRecord],
    categories: Iterable[CategoryRecord],
    period: PeriodFilter,
    now: Union[date, datetime],
) -> AnalyticsReport:
    today = _as_day(now)
    category_list = list(categories)
    filtered = filter_expenses(expenses, period, today)
    return AnalyticsReport(
        period=period,
        summary=summarize(filtered, period),
        breakdown=breakdown(filtered, category_list),
        trend=trend_series(filtered, period, today),
        pattern=pattern_series(filtered, period, today),
        category_trends=category_trend_series(filtered, category_list, period, today),
        recent_months=recent_months_series(filtered),
        expense_count=len(filtered),
        generated_for=today,
    )
