"""Pipeline composition for the analytics stages.

Composes the pure stages: normalize, classify accounts, filter and
classify transactions, aggregate, metrics, and trends. Nothing here
performs I/O; the orchestrator in ``service.py`` fetches the inputs and
passes them in by value, so the same inputs always produce the same
:class:`~budget_newsletter.models.Analysis`.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from budget_newsletter.accounts import classify_accounts
from budget_newsletter.aggregate import aggregate_monthly
from budget_newsletter.dates import week_end
from budget_newsletter.filters import filter_transactions
from budget_newsletter.metrics import compute_metrics, percent_of
from budget_newsletter.models import (
    BUCKETS,
    ZERO,
    Analysis,
    CspSettings,
    NewsletterSettings,
    Snapshot,
    month_key,
)
from budget_newsletter.normalizer import normalize
from budget_newsletter.trends import compute_trends

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def analyze(
    payload: dict,
    csp_settings: CspSettings,
    newsletter_settings: NewsletterSettings,
    snapshots: list[Snapshot],
    today: date,
    period_months: int = 6,
) -> Analysis:
    """Run every analytics stage on one budget payload.

    Stages executed in order:

    1. **Normalize** -- milli-units to units, flatten split transactions.
    2. **Classify accounts** -- net-worth groups and investment account ids.
    3. **Filter** -- exclusion rules and one class per transaction.
    4. **Aggregate** -- per-month income, expenses, and net.
    5. **Metrics** -- net worth, runway, CSP, burn rate, top categories.
    6. **Trends** -- weekly, MoM, YoY, and YTD comparisons.

    Args:
        payload: Raw provider payload (see ``normalizer``).
        csp_settings: Per-user CSP settings.
        newsletter_settings: Per-user newsletter settings and goals.
        snapshots: Historical snapshots used as comparison baselines.
        today: Reference day in the user's timezone.
        period_months: Months of history for runway, CSP, and burn rate.

    Returns:
        The full :class:`Analysis`.

    Raises:
        InputMalformedError: If the payload is missing required fields.
    """
    # -- Stage 1: Normalize ---------------------------------------------------
    budget = normalize(payload)

    # -- Stage 2: Classify accounts -------------------------------------------
    partition = classify_accounts(budget.accounts)

    # -- Stage 3: Filter ------------------------------------------------------
    filtered = filter_transactions(budget, partition, csp_settings)

    # -- Stage 4: Aggregate ---------------------------------------------------
    monthly = list(aggregate_monthly(filtered.kept()).values())

    # -- Stage 5: Metrics -----------------------------------------------------
    metrics = compute_metrics(partition, filtered, today, period_months)

    # -- Stage 6: Trends ------------------------------------------------------
    trends = compute_trends(
        filtered.visible(),
        today,
        newsletter_settings,
        snapshots,
        metrics.net_worth.total,
    )

    logger.info(
        "Analyzed %d transactions across %d months for %s",
        len(budget.transactions),
        len(monthly),
        today.isoformat(),
    )
    return Analysis(
        today=today,
        week_ending=week_end(today),
        budget_name=budget.budget_name,
        metrics=metrics,
        trends=trends,
        monthly=monthly,
        excluded=filtered.excluded,
    )


def build_snapshot(analysis: Analysis, user_id: str, created_at: datetime) -> Snapshot:
    """Summarize *analysis* into the document persisted after a run."""
    metrics = analysis.metrics
    current_key = month_key(analysis.today)
    current_month = next((m for m in analysis.monthly if m.month == current_key), None)
    income = current_month.income if current_month else ZERO
    expenses = current_month.expenses if current_month else ZERO
    ytd = analysis.trends.ytd

    return Snapshot(
        user_id=user_id,
        week_ending=analysis.week_ending,
        month=current_key,
        year=analysis.today.year,
        created_at=created_at,
        net_worth=metrics.net_worth.total,
        cash_reserves=metrics.runway.cash_reserves,
        runway_months=metrics.runway.pure_months,
        buckets={b: metrics.csp.buckets[b].percentage for b in BUCKETS},
        monthly_income=income,
        monthly_expenses=expenses,
        monthly_savings_rate=percent_of(income - expenses, income),
        ytd_savings=ytd.savings,
        ytd_investment_contributions=ytd.investments,
        category_spending={c.name: c.amount for c in metrics.top_monthly},
    )
