"""HTML rendering of the weekly newsletter.

Produces a table-based email document with a weekly hero number, the cash
runway, top categories with alerts, and the commentary. All dynamic text is
HTML-escaped. The plain-text alternative is derived by stripping tags.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from html import escape, unescape

from budget_newsletter.dates import format_day
from budget_newsletter.models import Analysis, CategorySpend, WeeklyTrend
from budget_newsletter.prompt import format_currency, format_months

TOP_CATEGORIES_IN_EMAIL = 7


@dataclass(frozen=True)
class Badge:
    label: str
    color: str
    background: str


HEALTH_BADGES = {
    "excellent": Badge("EXCELLENT", "#10B981", "#D1FAE5"),
    "healthy": Badge("HEALTHY", "#3B82F6", "#DBEAFE"),
    "caution": Badge("CAUTION", "#F59E0B", "#FEF3C7"),
    "critical": Badge("CRITICAL", "#EF4444", "#FEE2E2"),
}

_NO_DATA = Badge("NO DATA", "#6B7280", "#F3F4F6")
_UNDER = Badge("UNDER BUDGET", "#10B981", "#D1FAE5")
_SLIGHTLY_OVER = Badge("SLIGHTLY OVER", "#F59E0B", "#FEF3C7")
_OVER = Badge("OVER BUDGET", "#EF4444", "#FEE2E2")


# ---------------------------------------------------------------------------
# Status helpers
# ---------------------------------------------------------------------------


def percent_over_average(weekly: WeeklyTrend) -> Decimal | None:
    """Unrounded percent of this week's spending above the six-week average."""
    if weekly.six_week_average <= 0:
        return None
    return (weekly.current_total - weekly.six_week_average) / weekly.six_week_average * 100


def burn_badge(weekly: WeeklyTrend) -> Badge:
    over = percent_over_average(weekly)
    if over is None:
        return _NO_DATA
    if over <= 0:
        return _UNDER
    if over <= 20:
        return _SLIGHTLY_OVER
    return _OVER


def status_emoji(weekly: WeeklyTrend) -> str:
    over = percent_over_average(weekly)
    if over is None or weekly.current_total <= 0:
        return "\N{BAR CHART}"
    if over <= 0:
        return "\N{WHITE HEAVY CHECK MARK}"
    if over <= 20:
        return "\N{HIGH VOLTAGE SIGN}"
    return "\N{UP-POINTING RED TRIANGLE}"


def subject_line(analysis: Analysis) -> str:
    """``"<emoji> Weekly Update - <Month D, YYYY>"``."""
    emoji = status_emoji(analysis.trends.weekly)
    return f"{emoji} Weekly Update - {format_day(analysis.week_ending)}"


# ---------------------------------------------------------------------------
# Markdown and plain text
# ---------------------------------------------------------------------------


def _inline(text: str) -> str:
    escaped = escape(text, quote=False)
    return re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", escaped)


def markdown_to_html(markdown: str) -> str:
    """Convert the small markdown subset the commentary uses.

    Supports ``#``/``##``/``###`` headers, ``-``/``*`` bullets, ``**bold**``
    and blank-line separated paragraphs.
    """
    blocks: list[str] = []
    paragraph: list[str] = []
    bullets: list[str] = []

    def flush() -> None:
        if paragraph:
            blocks.append(
                '<p style="margin:0 0 12px 0;">' + " ".join(paragraph) + "</p>"
            )
            paragraph.clear()
        if bullets:
            items = "".join(f"<li>{item}</li>" for item in bullets)
            blocks.append(f'<ul style="margin:0 0 12px 20px;padding:0;">{items}</ul>')
            bullets.clear()

    for raw in markdown.splitlines():
        line = raw.strip()
        if not line:
            flush()
            continue
        header = re.match(r"^(#{1,3})\s+(.*)$", line)
        if header:
            flush()
            blocks.append(
                '<h3 style="margin:16px 0 8px 0;font-size:16px;color:#111827;">'
                f"{_inline(header.group(2))}</h3>"
            )
            continue
        bullet = re.match(r"^[-*]\s+(.*)$", line)
        if bullet:
            if paragraph:
                flush()
            bullets.append(_inline(bullet.group(1)))
            continue
        if bullets:
            flush()
        paragraph.append(_inline(line))

    flush()
    return "\n".join(blocks)


def html_to_text(html: str) -> str:
    """Plain-text fallback: drop styles and tags, collapse whitespace."""
    text = re.sub(r"<style[^>]*>.*?</style>", "", html, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r"<(br|/p|/h\d|/tr|/li)\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = unescape(text)
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _badge_html(badge: Badge) -> str:
    return (
        f'<span style="display:inline-block;padding:4px 10px;border-radius:12px;'
        f"font-size:12px;font-weight:bold;color:{badge.color};"
        f'background:{badge.background};">{badge.label}</span>'
    )


def _hero(weekly: WeeklyTrend) -> str:
    badge = burn_badge(weekly)
    if weekly.change_percent is None:
        change = "No spending recorded last week"
    else:
        sign = "+" if weekly.change_percent > 0 else ""
        change = f"{sign}{weekly.change_percent}% vs last week"
    return f"""\
<tr><td style="padding:24px;text-align:center;">
  <div style="font-size:13px;color:#6B7280;text-transform:uppercase;">Spent this week</div>
  <div style="font-size:40px;font-weight:bold;color:#111827;margin:8px 0;">{format_currency(weekly.current_total)}</div>
  <div style="margin-bottom:8px;">{_badge_html(badge)}</div>
  <div style="font-size:13px;color:#6B7280;">Six-week average {format_currency(weekly.six_week_average)} &middot; {escape(change)}</div>
  <div style="font-size:13px;color:#6B7280;">{weekly.days_elapsed} of 7 days &middot; on pace for {format_currency(weekly.projected_total)}</div>
</td></tr>"""


def _runway(analysis: Analysis) -> str:
    runway = analysis.metrics.runway
    badge = HEALTH_BADGES.get(runway.health, _NO_DATA)
    net = analysis.metrics.net_worth
    return f"""\
<tr><td style="padding:16px 24px;border-top:1px solid #E5E7EB;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0">
    <tr>
      <td style="font-size:15px;font-weight:bold;color:#111827;">Cash Runway</td>
      <td style="text-align:right;">{_badge_html(badge)}</td>
    </tr>
    <tr><td colspan="2" style="font-size:14px;color:#374151;padding-top:8px;">
      {format_currency(runway.cash_reserves)} in cash reserves covers {format_months(runway.pure_months)} of true expenses.
      Monthly net cash flow: {format_currency(runway.avg_net)}.
    </td></tr>
    <tr><td colspan="2" style="font-size:14px;color:#374151;padding-top:4px;">
      Net worth: {format_currency(net.total)}
    </td></tr>
  </table>
</td></tr>"""


def _category_row(category: CategorySpend) -> str:
    color = "#EF4444" if category.is_alert else "#6B7280"
    alert = " &#9888;" if category.is_alert else ""
    return (
        "<tr>"
        f'<td style="padding:6px 0;font-size:14px;color:#111827;">{escape(category.name)}{alert}</td>'
        f'<td style="padding:6px 0;font-size:14px;text-align:right;">{format_currency(category.amount)}</td>'
        f'<td style="padding:6px 0 6px 12px;font-size:12px;text-align:right;color:{color};">'
        f"{escape(category.vs_average_label)}</td>"
        "</tr>"
    )


def _categories(categories: list[CategorySpend]) -> str:
    if not categories:
        rows = '<tr><td style="font-size:14px;color:#6B7280;">No spending recorded this week.</td></tr>'
    else:
        rows = "\n".join(_category_row(c) for c in categories[:TOP_CATEGORIES_IN_EMAIL])
    return f"""\
<tr><td style="padding:16px 24px;border-top:1px solid #E5E7EB;">
  <div style="font-size:15px;font-weight:bold;color:#111827;margin-bottom:8px;">Top Categories This Week</div>
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0">
{rows}
  </table>
</td></tr>"""


def _commentary(text: str) -> str:
    return f"""\
<tr><td style="padding:16px 24px;border-top:1px solid #E5E7EB;font-size:14px;color:#374151;line-height:1.5;">
  <div style="font-size:15px;font-weight:bold;color:#111827;margin-bottom:8px;">Insights</div>
{markdown_to_html(text)}
</td></tr>"""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render_html(analysis: Analysis, commentary: str, frontend_url: str) -> str:
    """Render the complete newsletter document.

    Args:
        analysis: Metrics and trends for this run.
        commentary: Markdown commentary (LLM or template).
        frontend_url: Dashboard URL for the footer link.

    Returns:
        The HTML document as a string.
    """
    week = format_day(analysis.week_ending)
    title = escape(analysis.budget_name or "Your Budget")
    seasonal = ""
    if analysis.trends.seasonal_note:
        seasonal = (
            '<tr><td style="padding:8px 24px;font-size:13px;color:#6B7280;font-style:italic;">'
            f"{escape(analysis.trends.seasonal_note)}</td></tr>"
        )
    return f"""\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Weekly Update - {week}</title></head>
<body style="margin:0;padding:0;background:#F3F4F6;font-family:Helvetica,Arial,sans-serif;">
<table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background:#F3F4F6;">
<tr><td align="center" style="padding:24px 8px;">
<table role="presentation" width="600" cellspacing="0" cellpadding="0" style="background:#FFFFFF;border-radius:8px;">
<tr><td style="padding:24px 24px 0 24px;">
  <div style="font-size:20px;font-weight:bold;color:#111827;">Weekly Update</div>
  <div style="font-size:13px;color:#6B7280;">{title} &middot; week ending {week}</div>
</td></tr>
{_hero(analysis.trends.weekly)}
{_runway(analysis)}
{_categories(analysis.metrics.top_weekly)}
{_commentary(commentary)}
{seasonal}
<tr><td style="padding:16px 24px;border-top:1px solid #E5E7EB;text-align:center;font-size:12px;color:#9CA3AF;">
  <a href="{escape(frontend_url, quote=True)}" style="color:#3B82F6;">Open your dashboard</a>
</td></tr>
</table>
</td></tr>
</table>
</body>
</html>
"""
