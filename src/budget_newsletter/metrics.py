"""Metrics engine: net worth, runway, CSP allocation, burn rate, top categories.

All functions are pure. They take classified accounts and transactions plus
an explicit reference day, and return dataclasses from ``models.py``.
Percentages are rounded half-up to one decimal place; category comparisons
are rounded to whole percents.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from budget_newsletter.aggregate import (
    monthly_series,
    spending_by_bucket,
    spending_by_category,
    window_totals,
)
from budget_newsletter.dates import (
    days_in_month,
    month_keys,
    shift_month,
    week_end,
    week_start,
)
from budget_newsletter.models import (
    ACCOUNT_CASH,
    ACCOUNT_DEBT,
    ACCOUNT_INVESTMENT,
    ACCOUNT_PROPERTY,
    ACCOUNT_SAVINGS,
    BUCKETS,
    CSP_TARGETS,
    FIXED_COSTS,
    GUILT_FREE,
    INFINITY,
    INVESTMENTS,
    SAVINGS,
    ZERO,
    AccountPartition,
    BucketAllocation,
    BurnRate,
    CategorySpend,
    ClassifiedTransaction,
    CspResult,
    ExclusionTally,
    FilterResult,
    Metrics,
    MonthlyTotals,
    NetWorth,
    Runway,
    Suggestion,
)

logger = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")
HUNDRED = Decimal("100")

TREND_THRESHOLD = Decimal("5")
WEEKS_IN_AVERAGE = 6

_SUGGESTION_TEMPLATES = {
    FIXED_COSTS: "Fixed costs at {pct}% - consider reducing to under {bound}%",
    GUILT_FREE: "Guilt-free spending at {pct}% - consider reducing to under {bound}%",
    INVESTMENTS: "Investing only {pct}% - try to reach at least {bound}%",
    SAVINGS: "Savings at {pct}% - aim for at least {bound}%",
}


# ---------------------------------------------------------------------------
# Rounding helpers
# ---------------------------------------------------------------------------


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """Return ``part / whole * 100`` rounded to one decimal, 0 if *whole* <= 0."""
    if whole <= 0:
        return ZERO.quantize(ONE_DECIMAL)
    return (part / whole * HUNDRED).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def change_percent(current: Decimal, baseline: Decimal) -> int | None:
    """Rounded percent change from *baseline*, ``None`` without a baseline."""
    if baseline <= 0:
        return None
    return round_percent((current - baseline) / baseline * HUNDRED)


# ---------------------------------------------------------------------------
# Net worth and runway
# ---------------------------------------------------------------------------


def calculate_net_worth(partition: AccountPartition) -> NetWorth:
    """Sum balances per account group.

    ``total = assets + investments + savings - debt`` where ``savings``
    covers both cash and savings-typed accounts and ``debt`` is a
    non-negative magnitude.
    """

    def total(*kinds: str) -> Decimal:
        return sum(
            (a.balance for a in partition.accounts if a.kind in kinds), ZERO
        )

    assets = total(ACCOUNT_PROPERTY)
    investments = total(ACCOUNT_INVESTMENT)
    savings = total(ACCOUNT_CASH, ACCOUNT_SAVINGS)
    debt = total(ACCOUNT_DEBT)
    return NetWorth(
        total=assets + investments + savings - debt,
        assets=assets,
        investments=investments,
        savings=savings,
        debt=debt,
    )


def calculate_cash_reserves(partition: AccountPartition) -> Decimal:
    """Cash plus savings balances; investments and property are excluded."""
    return sum(
        (
            a.balance
            for a in partition.accounts
            if a.kind in (ACCOUNT_CASH, ACCOUNT_SAVINGS)
        ),
        ZERO,
    )


def runway_health(avg_net: Decimal, net_months: Decimal) -> str:
    if avg_net >= 0 or net_months.is_infinite():
        return "excellent"
    if net_months < 3:
        return "critical"
    if net_months < 6:
        return "caution"
    if net_months < 12:
        return "healthy"
    return "excellent"


def calculate_runway(cash_reserves: Decimal, months: list[MonthlyTotals]) -> Runway:
    """Compute pure and net runway from monthly history.

    Averages divide by the number of months with any activity (at least
    one), so a partially filled history is not diluted by empty months.
    """
    active = [m for m in months if m.has_activity]
    count = max(1, len(active))

    avg_expenses = sum((m.expenses for m in active), ZERO) / count
    avg_income = sum((m.income for m in active), ZERO) / count
    avg_net = avg_income - avg_expenses

    pure_months = cash_reserves / avg_expenses if avg_expenses > 0 else INFINITY
    net_months = INFINITY if avg_net >= 0 else cash_reserves / abs(avg_net)

    return Runway(
        cash_reserves=cash_reserves,
        avg_income=avg_income,
        avg_expenses=avg_expenses,
        avg_net=avg_net,
        pure_months=pure_months,
        net_months=net_months,
        health=runway_health(avg_net, net_months),
        months_of_data=len(active),
    )


# ---------------------------------------------------------------------------
# Conscious Spending Plan
# ---------------------------------------------------------------------------


def period_bounds(today: date, period_months: int) -> tuple[date, date]:
    """First day of the oldest month and last day of the current month."""
    year, month = shift_month(today.year, today.month, -(period_months - 1))
    end = date(today.year, today.month, days_in_month(today.year, today.month))
    return date(year, month, 1), end


def _suggestion(bucket: str, percentage: Decimal) -> Suggestion | None:
    target = CSP_TARGETS[bucket]
    if bucket in (FIXED_COSTS, GUILT_FREE):
        if target.maximum is not None and percentage > target.maximum:
            kind, level, bound = "above_max", "warning", target.maximum
        else:
            return None
    elif target.minimum is not None and percentage < target.minimum:
        kind, level, bound = "below_min", "alert", target.minimum
    else:
        return None

    message = _SUGGESTION_TEMPLATES[bucket].format(
        pct=round_percent(percentage), bound=bound
    )
    return Suggestion(
        bucket=bucket,
        kind=kind,
        level=level,
        percentage=percentage,
        bound=bound,
        message=message,
    )


def calculate_csp(
    transactions: list[ClassifiedTransaction],
    today: date,
    period_months: int = 6,
    excluded: dict[str, ExclusionTally] | None = None,
) -> CspResult:
    """Allocate spending over the period to the four CSP buckets.

    Args:
        transactions: Kept transactions not hidden by per-user exclusions.
        today: Reference day; the period ends with its month.
        period_months: Number of months in the period.
        excluded: Per-user exclusion tally passed through for diagnostics.

    Returns:
        Bucket totals, monthly amounts, percentages of income, on-target
        flags and suggestions for every off-target bucket.
    """
    start, end = period_bounds(today, period_months)
    totals = spending_by_bucket(transactions, start, end)
    total_income = window_totals(transactions, start, end).income
    months = Decimal(period_months)

    buckets: dict[str, BucketAllocation] = {}
    suggestions: list[Suggestion] = []
    for bucket in BUCKETS:
        percentage = percent_of(totals[bucket], total_income)
        suggestion = _suggestion(bucket, percentage)
        buckets[bucket] = BucketAllocation(
            bucket=bucket,
            total=totals[bucket],
            monthly=totals[bucket] / months,
            percentage=percentage,
            target=CSP_TARGETS[bucket],
            on_target=suggestion is None,
        )
        if suggestion is not None:
            suggestions.append(suggestion)

    # Overspending first, then under-saving.
    suggestions.sort(key=lambda s: s.kind != "above_max")
    return CspResult(
        buckets=buckets,
        total_income=total_income,
        monthly_income=total_income / months,
        period_months=period_months,
        is_on_track=not suggestions,
        suggestions=suggestions,
        excluded=dict(excluded or {}),
    )


# ---------------------------------------------------------------------------
# Burn rate and top categories
# ---------------------------------------------------------------------------


def calculate_burn_rate(months: list[MonthlyTotals]) -> BurnRate:
    """Average monthly true expenses and the last-3 vs previous-3 trend.

    The trend needs at least four months of history and a non-zero earlier
    average; otherwise it is ``stable``.
    """
    if not months:
        return BurnRate(ZERO, ZERO, "stable", None, [])

    average = sum((m.expenses for m in months), ZERO) / len(months)
    current = months[-1].expenses

    trend, trend_percent = "stable", None
    if len(months) >= 4:
        recent = months[-3:]
        previous = months[-6:-3]
        recent_avg = sum((m.expenses for m in recent), ZERO) / len(recent)
        previous_avg = sum((m.expenses for m in previous), ZERO) / len(previous)
        if previous_avg > 0:
            trend_percent = ((recent_avg - previous_avg) / previous_avg * HUNDRED).quantize(
                ONE_DECIMAL, rounding=ROUND_HALF_UP
            )
            if trend_percent > TREND_THRESHOLD:
                trend = "increasing"
            elif trend_percent < -TREND_THRESHOLD:
                trend = "decreasing"

    return BurnRate(
        average_monthly=average,
        current_month=current,
        trend=trend,
        trend_percent=trend_percent,
        history=list(months),
    )


def _rank(
    current: dict,
    history: dict,
    divisor: int,
    limit: int,
) -> list[CategorySpend]:
    ranked: list[CategorySpend] = []
    for name, total in current.items():
        if total.amount <= 0:
            continue
        previous = history.get(name)
        average = previous.amount / divisor if previous is not None else ZERO
        ranked.append(
            CategorySpend(
                name=name,
                group_name=total.group_name,
                bucket=total.bucket,
                amount=total.amount,
                average=average,
                vs_average=change_percent(total.amount, average),
            )
        )
    ranked.sort(key=lambda c: (-c.amount, c.name))
    return ranked[:limit]


def top_monthly_categories(
    transactions: list[ClassifiedTransaction],
    today: date,
    period_months: int = 6,
    limit: int = 10,
) -> list[CategorySpend]:
    """Current-month true-expense categories against their recent average.

    The average covers the ``period_months - 1`` complete months before the
    current one.
    """
    month_start = today.replace(day=1)
    month_end = month_start.replace(day=days_in_month(today.year, today.month))
    prior_months = max(1, period_months - 1)
    year, month = shift_month(today.year, today.month, -prior_months)

    current = spending_by_category(transactions, month_start, month_end)
    history = spending_by_category(
        transactions, date(year, month, 1), month_start - timedelta(days=1)
    )
    return _rank(current, history, prior_months, limit)


def top_weekly_categories(
    transactions: list[ClassifiedTransaction],
    today: date,
    limit: int = 10,
) -> list[CategorySpend]:
    """This Sunday-Saturday week's categories against a six-week average."""
    start = week_start(today)
    history_start = start - timedelta(weeks=WEEKS_IN_AVERAGE)

    current = spending_by_category(transactions, start, week_end(today))
    history = spending_by_category(
        transactions, history_start, start - timedelta(days=1)
    )
    return _rank(current, history, WEEKS_IN_AVERAGE, limit)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compute_metrics(
    partition: AccountPartition,
    filtered: FilterResult,
    today: date,
    period_months: int = 6,
) -> Metrics:
    """Compute every metric for one analytics pass.

    Runway and burn rate use all kept transactions; CSP buckets and top
    categories leave out transactions hidden by per-user exclusions.
    """
    kept = filtered.kept()
    visible = filtered.visible()
    months = monthly_series(kept, month_keys(today, period_months))

    net_worth = calculate_net_worth(partition)
    runway = calculate_runway(calculate_cash_reserves(partition), months)
    csp = calculate_csp(visible, today, period_months, filtered.settings_excluded)
    burn_rate = calculate_burn_rate(months)

    logger.debug(
        "Metrics: net worth %s, runway health %s, CSP on track %s, burn %s",
        net_worth.total,
        runway.health,
        csp.is_on_track,
        burn_rate.trend,
    )
    return Metrics(
        net_worth=net_worth,
        runway=runway,
        csp=csp,
        burn_rate=burn_rate,
        top_monthly=top_monthly_categories(visible, today, period_months),
        top_weekly=top_weekly_categories(visible, today),
    )
