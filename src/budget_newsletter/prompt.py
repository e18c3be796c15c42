"""LLM prompt assembly and the deterministic template commentary.

The prompt is a tag-delimited document carrying the current snapshot,
weekly numbers, month/year comparisons, annual progress, and burn rate,
followed by fixed instructions asking for at most 150 words in three
sections. The template commentary is built from the same analysis and is
used whenever the LLM is skipped or unavailable.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from html import escape

from budget_newsletter.models import (
    BUCKETS,
    CSP_TARGETS,
    Analysis,
    BucketTarget,
)

ANALYSIS_INSTRUCTIONS = """\
    You are a knowledgeable personal finance advisor. This is a WEEKLY newsletter for a household managing its finances.

    IMPORTANT CONTEXT:
    - Weekly spending data EXCLUDES investments and savings transfers - these are wealth-building, not expenses
    - Focus on the weekly_spending and burn_rate sections for accurate spending data
    - Cash runway uses net cash flow (income minus true expenses) - if positive, runway is infinite

    Provide a SHORT, focused analysis (150 words max) covering:

    1. **This Week**: How did spending compare to average? Any notable categories?

    2. **Cash Position**: Is runway healthy? Any concerns?

    3. **One Action**: The single most impactful thing to do this week.

    Guidelines:
    - Be conversational, not formal
    - Use the WEEKLY spending numbers, not monthly
    - If runway is infinite/positive cash flow, that's GOOD - don't alarm
    - Skip sections that have no meaningful insight

    Format: Use ## for section headers. Keep it brief."""

_BUCKET_TAGS = {
    "fixedCosts": "fixed_costs",
    "investments": "investments",
    "savings": "savings",
    "guiltFree": "guilt_free",
}


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_currency(amount: Decimal, cents: bool = False) -> str:
    """Format as ``$1,234`` (or ``$1,234.56``); negatives as ``-$1,234``."""
    places = Decimal("0.01") if cents else Decimal("1")
    rounded = amount.quantize(places, rounding=ROUND_HALF_UP)
    text = f"{abs(rounded):,.2f}" if cents else f"{abs(rounded):,.0f}"
    return f"-${text}" if rounded < 0 else f"${text}"


def format_months(months: Decimal) -> str:
    if months.is_infinite():
        return "unlimited"
    return f"{months.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)} months"


def format_target(target: BucketTarget) -> str:
    if target.maximum is None:
        return f"{target.minimum}%+"
    return f"{target.minimum}-{target.maximum}%"


def _percent(value: int | Decimal | None) -> str:
    return "N/A" if value is None else f"{value}%"


def _attr(value: object) -> str:
    return escape(str(value), quote=True)


def estimate_tokens(prompt: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(prompt) / 4)


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def build_prompt(analysis: Analysis) -> str:
    """Assemble the tag-delimited analysis request for the LLM."""
    metrics = analysis.metrics
    trends = analysis.trends
    net_worth = metrics.net_worth
    runway = metrics.runway
    csp = metrics.csp
    weekly = trends.weekly

    realistic = (
        "Infinite (positive cash flow)"
        if runway.net_months.is_infinite()
        else str(runway.net_months.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    )

    lines = [
        "<financial_analysis_request>",
        f'  <report week_ending="{analysis.week_ending.isoformat()}" budget="{_attr(analysis.budget_name)}"/>',
        "  <current_snapshot>",
        "    <net_worth>",
        f"      <total>{format_currency(net_worth.total)}</total>",
        f"      <assets>{format_currency(net_worth.assets + net_worth.investments + net_worth.savings)}</assets>",
        f"      <debt>{format_currency(net_worth.debt)}</debt>",
        "    </net_worth>",
        "    <cash_runway>",
        f"      <realistic_months>{realistic}</realistic_months>",
        f"      <monthly_net_cash_flow>{format_currency(runway.avg_net)}</monthly_net_cash_flow>",
        f"      <cash_reserves>{format_currency(runway.cash_reserves)}</cash_reserves>",
        f"      <status>{runway.health}</status>",
        "      <note>Runway is based on net cash flow (income minus true expenses, excluding investment/savings transfers)</note>",
        "    </cash_runway>",
        "    <csp_buckets>",
    ]
    for bucket in BUCKETS:
        allocation = csp.buckets[bucket]
        lines.append(
            f'      <{_BUCKET_TAGS[bucket]} percentage="{allocation.percentage}" '
            f'target="{format_target(CSP_TARGETS[bucket])}" '
            f'on_target="{str(allocation.on_target).lower()}"/>'
        )
    lines += [
        f"      <overall_status>{'ON TRACK' if csp.is_on_track else 'NEEDS ATTENTION'}</overall_status>",
        "    </csp_buckets>",
        "  </current_snapshot>",
        '  <weekly_spending note="Excludes investments and savings - shows true expenses only">',
        f"    <this_week>{format_currency(weekly.current_total)}</this_week>",
        f"    <days_elapsed>{weekly.days_elapsed}</days_elapsed>",
        f"    <last_week>{format_currency(weekly.last_week_total)}</last_week>",
        f"    <six_week_average>{format_currency(weekly.six_week_average)}</six_week_average>",
        f"    <vs_last_week>{_percent(weekly.change_percent)}</vs_last_week>",
        f"    <vs_average>{_percent(weekly.vs_average_percent)}</vs_average>",
        "    <top_categories>",
    ]
    for category in metrics.top_weekly[:5]:
        lines.append(
            f'      <category name="{_attr(category.name)}" '
            f'amount="{format_currency(category.amount)}" '
            f'vs_average="{category.vs_average_label}"/>'
        )
    lines.append("    </top_categories>")
    lines.append("  </weekly_spending>")

    mom = trends.month_over_month
    if mom.available:
        lines += [
            "  <monthly_trends>",
            f"    <comparison>{_attr(mom.previous.label)} to {_attr(mom.current.label)}</comparison>",
            f"    <income_change>{format_currency(mom.income_change)}</income_change>",
            f"    <expense_change>{_percent(mom.expense_change_percent)}</expense_change>",
            f"    <savings_rate_change>{mom.savings_rate_change}%</savings_rate_change>",
            f"    <current_savings_rate>{mom.current.savings_rate}%</current_savings_rate>",
            "    <top_category_changes>",
        ]
        for change in mom.category_changes:
            lines.append(
                f'      <change category="{_attr(change.name)}" '
                f'percent="{_percent(change.change_percent)}" '
                f'amount="{format_currency(change.change)}"/>'
            )
        lines += ["    </top_category_changes>", "  </monthly_trends>"]
    else:
        lines.append('  <monthly_trends available="false"/>')

    yoy = trends.year_over_year
    if yoy.available:
        lines += [
            "  <yearly_comparison>",
            f"    <comparison>{_attr(yoy.previous.label)} to {_attr(yoy.current.label)}</comparison>",
            f"    <spending_change>{_percent(yoy.expense_change_percent)}</spending_change>",
        ]
        if yoy.net_worth_change is not None:
            lines.append(
                f"    <net_worth_change>{format_currency(yoy.net_worth_change)}</net_worth_change>"
            )
        lines.append("    <category_comparison>")
        for change in yoy.category_changes:
            lines.append(
                f'      <category name="{_attr(change.name)}" '
                f'change="{_percent(change.change_percent)}"/>'
            )
        lines += ["    </category_comparison>", "  </yearly_comparison>"]
    else:
        lines.append('  <yearly_comparison available="false"/>')

    lines.append(f"  <seasonal_note>{_attr(trends.seasonal_note or 'None')}</seasonal_note>")

    ytd = trends.ytd
    if ytd.available:
        completion = (ytd.year_progress * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        progress = (ytd.investment_progress * 100).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP
        )
        lines += [
            f'  <annual_progress year="{ytd.year}" completion="{completion}%">',
            f'    <ytd_savings_rate actual="{ytd.savings_rate}%" '
            f'target="{ytd.savings_rate_goal}%" on_track="{str(ytd.savings_on_track).lower()}"/>',
            f'    <ytd_investments actual="{format_currency(ytd.investments)}" '
            f'target="{format_currency(ytd.investment_goal)}" progress="{progress}%" '
            f'on_track="{str(ytd.investments_on_track).lower()}"/>',
        ]
        if ytd.net_worth_growth is not None:
            lines.append(
                f'    <ytd_net_worth_growth amount="{format_currency(ytd.net_worth_growth)}"/>'
            )
        lines += [
            f"    <projected_annual_savings>{format_currency(ytd.projected_savings)}</projected_annual_savings>",
            "  </annual_progress>",
        ]
    else:
        lines.append('  <annual_progress available="false"/>')

    burn = metrics.burn_rate
    lines += [
        "  <burn_rate>",
        f"    <weekly_average_true_expenses>{format_currency(weekly.six_week_average)}</weekly_average_true_expenses>",
        f"    <monthly_average_true_expenses>{format_currency(burn.average_monthly)}</monthly_average_true_expenses>",
        "    <note>True expenses exclude investments and savings contributions - these are wealth-building, not spending</note>",
        f"    <trend>{burn.trend}</trend>",
        f"    <trend_percent>{_percent(burn.trend_percent)}</trend_percent>",
        "  </burn_rate>",
        "  <analysis_instructions>",
        ANALYSIS_INSTRUCTIONS,
        "  </analysis_instructions>",
        "</financial_analysis_request>",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Template commentary
# ---------------------------------------------------------------------------


def _this_week(analysis: Analysis) -> str:
    weekly = analysis.trends.weekly
    sentence = (
        f"You've spent {format_currency(weekly.current_total)} on true expenses "
        f"over the first {weekly.days_elapsed} days of the week"
    )
    if weekly.vs_average_percent is None:
        sentence += "."
    elif weekly.vs_average_percent > 0:
        sentence += (
            f", {weekly.vs_average_percent}% above your six-week average of "
            f"{format_currency(weekly.six_week_average)}."
        )
    else:
        sentence += (
            f", {abs(weekly.vs_average_percent)}% below your six-week average of "
            f"{format_currency(weekly.six_week_average)}."
        )

    top = analysis.metrics.top_weekly
    if top:
        sentence += f" Biggest category: {top[0].name} ({format_currency(top[0].amount)})."
    return sentence


def _cash_position(analysis: Analysis) -> str:
    metrics = analysis.metrics
    runway = metrics.runway
    months = format_months(runway.pure_months)
    parts = [f"Your current net worth is {format_currency(metrics.net_worth.total)}."]

    if runway.health == "critical":
        parts.append(
            f"Your cash runway of {months} is below the recommended 3-month minimum. "
            "Consider building up your emergency fund."
        )
    elif runway.health == "caution":
        parts.append(
            f"Your {months} cash runway is adequate but could be stronger. "
            "The recommended target is 6+ months."
        )
    else:
        parts.append(f"Your {months} cash runway provides solid financial security.")

    burn = metrics.burn_rate
    if burn.trend == "increasing":
        parts.append(
            f"Your spending trend is increasing ({burn.trend_percent}%). "
            "Review recent expenses to identify areas to optimize."
        )
    elif burn.trend == "decreasing":
        parts.append(f"Great job! Your spending trend is decreasing ({burn.trend_percent}%).")
    return " ".join(parts)


def _one_action(analysis: Analysis) -> str:
    csp = analysis.metrics.csp
    ytd = analysis.trends.ytd
    if csp.suggestions:
        return csp.suggestions[0].message + "."
    if ytd.available and not ytd.savings_on_track:
        return (
            f"Your savings rate of {ytd.savings_rate}% is below your "
            f"{ytd.savings_rate_goal}% target. Look for opportunities to increase savings."
        )
    if ytd.available:
        return (
            f"You're on track with your {ytd.savings_rate}% savings rate, meeting your "
            f"{ytd.savings_rate_goal}% target. Keep it going."
        )
    return "Your Conscious Spending Plan is on track. Keep up the good work!"


def template_commentary(analysis: Analysis) -> str:
    """Deterministic commentary in the same three sections the LLM writes."""
    return "\n\n".join(
        [
            "## This Week",
            _this_week(analysis),
            "## Cash Position",
            _cash_position(analysis),
            "## One Action",
            _one_action(analysis),
        ]
    )
