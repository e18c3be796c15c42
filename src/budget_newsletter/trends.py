"""Trends engine: weekly, month-over-month, year-over-year and YTD progress.

Every month comparison uses matched partial periods: when today is the
12th, the current window is days 1-12 of this month and each comparison
window is days 1-12 of its own month (clamped to that month's length).
Spending figures are true expenses net of refunds; per-user exclusions are
already applied to the transactions passed in.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from budget_newsletter.aggregate import (
    spending_by_bucket,
    spending_by_category,
    window_totals,
)
from budget_newsletter.dates import (
    MONTH_NAMES,
    day_of_year,
    days_in_year,
    format_period,
    matched_window,
    shift_month,
    week_start,
)
from budget_newsletter.metrics import change_percent, percent_of, top_weekly_categories
from budget_newsletter.models import (
    INVESTMENTS,
    ZERO,
    CategoryChange,
    ClassifiedTransaction,
    NewsletterSettings,
    PeriodComparison,
    PeriodTotals,
    Snapshot,
    Trends,
    WeeklyTrend,
    YtdProgress,
    month_key,
)

logger = logging.getLogger(__name__)

MOM_CHANGE_THRESHOLD = Decimal("10")
YOY_CATEGORY_MINIMUM = Decimal("50")
TOP_CHANGES = 5
INVESTMENT_PACE_BUFFER = Decimal("0.9")

YOY_UNAVAILABLE = (
    "Year-over-year data will be available once you have transaction history "
    "from the same month last year."
)
MOM_UNAVAILABLE = "No transactions recorded for last month yet."

SEASONAL_NOTES = {
    1: "January spending typically drops 15-20% from December holiday spending.",
    12: "December often sees increased spending due to holidays and gift-giving.",
    6: "Summer months often see higher travel and entertainment expenses.",
    7: "Summer months often see higher travel and entertainment expenses.",
    8: "Summer months often see higher travel and entertainment expenses.",
}


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def period_totals(
    transactions: list[ClassifiedTransaction],
    start: date,
    end: date,
    label: str = "",
) -> PeriodTotals:
    """Income, true expenses and savings rate for an inclusive window."""
    totals = window_totals(transactions, start, end)
    return PeriodTotals(
        label=label or format_period(start, end),
        start=start,
        end=end,
        income=totals.income,
        expenses=totals.expenses,
        savings_rate=percent_of(totals.income - totals.expenses, totals.income),
        transaction_count=totals.transaction_count,
    )


def _month_label(start: date, end: date, partial: bool) -> str:
    if partial:
        return format_period(start, end)
    return f"{MONTH_NAMES[start.month]} {start.year}"


def category_changes(
    transactions: list[ClassifiedTransaction],
    current: tuple[date, date],
    previous: tuple[date, date],
) -> list[CategoryChange]:
    """Per-category true-expense movement between two windows."""
    now = spending_by_category(transactions, *current)
    before = spending_by_category(transactions, *previous)

    changes: list[CategoryChange] = []
    for name in sorted(set(now) | set(before)):
        current_amount = now[name].amount if name in now else ZERO
        previous_amount = before[name].amount if name in before else ZERO
        changes.append(
            CategoryChange(
                name=name,
                current=current_amount,
                previous=previous_amount,
                change=current_amount - previous_amount,
                change_percent=change_percent(current_amount, previous_amount),
            )
        )
    return changes


def _compare(
    transactions: list[ClassifiedTransaction],
    today: date,
    year: int,
    month: int,
) -> tuple[PeriodTotals, PeriodTotals, bool]:
    partial = today.day < 28
    current_start, current_end = matched_window(today, today.year, today.month)
    previous_start, previous_end = matched_window(today, year, month)
    current = period_totals(
        transactions,
        current_start,
        current_end,
        _month_label(current_start, current_end, partial),
    )
    previous = period_totals(
        transactions,
        previous_start,
        previous_end,
        _month_label(previous_start, previous_end, partial),
    )
    return current, previous, partial


def _comparison(
    current: PeriodTotals,
    previous: PeriodTotals,
    partial: bool,
    changes: list[CategoryChange],
) -> PeriodComparison:
    return PeriodComparison(
        available=True,
        current=current,
        previous=previous,
        income_change=current.income - previous.income,
        expense_change=current.expenses - previous.expenses,
        expense_change_percent=change_percent(current.expenses, previous.expenses),
        savings_rate_change=current.savings_rate - previous.savings_rate,
        category_changes=changes,
        is_partial_month=partial,
    )


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------


def calculate_weekly(
    transactions: list[ClassifiedTransaction],
    today: date,
) -> WeeklyTrend:
    """Sunday-through-today spending against last week and a six-week average."""
    start = week_start(today)
    last_start = start - timedelta(days=7)
    history_start = start - timedelta(weeks=6)
    day_before = start - timedelta(days=1)

    current = window_totals(transactions, start, today).expenses
    last_week = window_totals(transactions, last_start, day_before).expenses
    average = window_totals(transactions, history_start, day_before).expenses / 6
    days_elapsed = (today - start).days + 1

    return WeeklyTrend(
        week_start=start,
        week_end=start + timedelta(days=6),
        current_total=current,
        last_week_total=last_week,
        six_week_average=average,
        days_elapsed=days_elapsed,
        projected_total=current * 7 / days_elapsed,
        change_amount=current - last_week,
        change_percent=change_percent(current, last_week),
        vs_average_percent=change_percent(current, average),
        top_categories=top_weekly_categories(transactions, today, limit=TOP_CHANGES),
    )


def compare_month_over_month(
    transactions: list[ClassifiedTransaction],
    today: date,
) -> PeriodComparison:
    """Current partial month against the same day range of last month.

    Only categories whose spending moved by more than 10 are reported,
    largest absolute change first.
    """
    year, month = shift_month(today.year, today.month, -1)
    current, previous, partial = _compare(transactions, today, year, month)
    if previous.transaction_count == 0:
        return PeriodComparison(
            available=False,
            message=MOM_UNAVAILABLE,
            current=current,
            is_partial_month=partial,
        )

    changes = [
        c
        for c in category_changes(
            transactions,
            (current.start, current.end),
            (previous.start, previous.end),
        )
        if abs(c.change) > MOM_CHANGE_THRESHOLD
    ]
    changes.sort(key=lambda c: (-abs(c.change), c.name))
    return _comparison(current, previous, partial, changes[:TOP_CHANGES])


def _snapshot_for_month(snapshots: list[Snapshot], key: str) -> Snapshot | None:
    matching = [s for s in snapshots if s.month == key]
    if not matching:
        return None
    return max(matching, key=lambda s: s.week_ending)


def compare_year_over_year(
    transactions: list[ClassifiedTransaction],
    today: date,
    snapshots: list[Snapshot],
    current_net_worth: Decimal,
) -> PeriodComparison:
    """Current partial month against the same days one year earlier.

    Categories above 50 in either window are reported, largest percent
    change first. Net worth is compared against the snapshot recorded for
    the same month last year.
    """
    current, previous, partial = _compare(
        transactions, today, today.year - 1, today.month
    )
    if previous.transaction_count == 0:
        return PeriodComparison(
            available=False,
            message=YOY_UNAVAILABLE,
            current=current,
            is_partial_month=partial,
        )

    changes = [
        c
        for c in category_changes(
            transactions,
            (current.start, current.end),
            (previous.start, previous.end),
        )
        if c.current > YOY_CATEGORY_MINIMUM or c.previous > YOY_CATEGORY_MINIMUM
    ]
    # Categories that are new this year have no percent and sort first.
    changes.sort(
        key=lambda c: (
            c.change_percent is not None,
            -abs(c.change_percent or 0),
            c.name,
        )
    )
    comparison = _comparison(current, previous, partial, changes[:TOP_CHANGES])

    baseline = _snapshot_for_month(snapshots, f"{today.year - 1:04d}-{today.month:02d}")
    if baseline is not None:
        comparison.net_worth_previous = baseline.net_worth
        comparison.net_worth_change = current_net_worth - baseline.net_worth
    return comparison


def _net_worth_baseline(snapshots: list[Snapshot], year: int) -> Snapshot | None:
    """Latest snapshot at or before January of *year*, else the earliest of *year*."""
    january = f"{year:04d}-01"
    earlier = [s for s in snapshots if s.month <= january]
    if earlier:
        return max(earlier, key=lambda s: s.week_ending)
    this_year = [s for s in snapshots if s.year == year]
    if this_year:
        return min(this_year, key=lambda s: s.week_ending)
    return None


def calculate_ytd(
    transactions: list[ClassifiedTransaction],
    today: date,
    settings: NewsletterSettings,
    snapshots: list[Snapshot],
    current_net_worth: Decimal,
) -> YtdProgress:
    """Year-to-date totals, linear projections and goal tracking.

    Savings are on track when the YTD savings rate meets the goal.
    Investments are on track when contribution progress reaches 90% of the
    elapsed share of the year.
    """
    year_start = date(today.year, 1, 1)
    elapsed = day_of_year(today)
    total_days = days_in_year(today.year)
    progress = Decimal(elapsed) / Decimal(total_days)

    ytd = period_totals(transactions, year_start, today)
    result = YtdProgress(
        available=ytd.transaction_count > 0,
        year=today.year,
        day_of_year=elapsed,
        days_in_year=total_days,
        year_progress=progress,
        months_completed=today.month - 1,
        savings_rate_goal=settings.savings_rate_goal,
        investment_goal=settings.investment_goal,
    )
    if not result.available:
        return result

    investments = spending_by_bucket(transactions, year_start, today)[INVESTMENTS]
    result.income = ytd.income
    result.expenses = ytd.expenses
    result.savings_rate = ytd.savings_rate
    result.investments = investments
    result.projected_income = ytd.income / progress
    result.projected_expenses = ytd.expenses / progress
    result.projected_savings = ytd.savings / progress
    result.projected_investments = investments / progress
    result.savings_on_track = ytd.savings_rate >= settings.savings_rate_goal
    if settings.investment_goal > 0:
        result.investment_progress = investments / settings.investment_goal
    result.investments_on_track = (
        result.investment_progress >= progress * INVESTMENT_PACE_BUFFER
    )

    baseline = _net_worth_baseline(snapshots, today.year)
    if baseline is not None:
        result.net_worth_start = baseline.net_worth
        result.net_worth_growth = current_net_worth - baseline.net_worth

    last_year_end = _same_day_last_year(today)
    last_year = period_totals(transactions, date(today.year - 1, 1, 1), last_year_end)
    if last_year.transaction_count > 0:
        result.last_year = last_year
        result.savings_vs_last_year = ytd.savings - last_year.savings
    return result


def _same_day_last_year(today: date) -> date:
    try:
        return today.replace(year=today.year - 1)
    except ValueError:
        # Feb 29 has no counterpart.
        return date(today.year - 1, 2, 28)


def seasonal_note(today: date) -> str | None:
    return SEASONAL_NOTES.get(today.month)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compute_trends(
    transactions: list[ClassifiedTransaction],
    today: date,
    settings: NewsletterSettings,
    snapshots: list[Snapshot],
    current_net_worth: Decimal,
) -> Trends:
    """Compute every trend comparison for one analytics pass.

    Args:
        transactions: Kept transactions not hidden by per-user exclusions.
        today: Reference day.
        settings: Newsletter settings carrying the annual goals.
        snapshots: Historical snapshots, any order.
        current_net_worth: Net worth computed by the metrics engine.
    """
    trends = Trends(
        weekly=calculate_weekly(transactions, today),
        month_over_month=compare_month_over_month(transactions, today),
        year_over_year=compare_year_over_year(
            transactions, today, snapshots, current_net_worth
        ),
        ytd=calculate_ytd(transactions, today, settings, snapshots, current_net_worth),
        seasonal_note=seasonal_note(today),
    )
    logger.debug(
        "Trends for %s: MoM %s, YoY %s, YTD %s",
        month_key(today),
        trends.month_over_month.available,
        trends.year_over_year.available,
        trends.ytd.available,
    )
    return trends
