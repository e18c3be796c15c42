"""Tests for budget_newsletter.metrics -- net worth, runway, CSP, burn rate, top categories.

Scenario tests drive the whole analytics pass through ``BudgetBuilder.analyze``
with today fixed at Thursday 2026-03-12.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from budget_newsletter.aggregate import spending_by_category
from budget_newsletter.accounts import classify_accounts
from budget_newsletter.filters import filter_transactions
from budget_newsletter.metrics import (
    calculate_burn_rate,
    calculate_runway,
    change_percent,
    percent_of,
    period_bounds,
    runway_health,
)
from budget_newsletter.models import INFINITY, CspSettings, MonthlyTotals
from budget_newsletter.normalizer import normalize

from conftest import BudgetBuilder, steady_month

MARCH_2 = date(2026, 3, 2)


def _month(key: str, income: str = "0", expenses: str = "0", count: int = 1) -> MonthlyTotals:
    return MonthlyTotals(
        month=key, income=Decimal(income), expenses=Decimal(expenses), transaction_count=count
    )


# ---------------------------------------------------------------------------
# Rounding helpers
# ---------------------------------------------------------------------------


class TestRounding:
    def test_percent_of_rounds_half_up(self):
        """One decimal, half up."""
        assert percent_of(Decimal("1"), Decimal("8")) == Decimal("12.5")
        assert percent_of(Decimal("1"), Decimal("16")) == Decimal("6.3")

    def test_percent_of_without_income(self):
        """No income means 0%."""
        assert percent_of(Decimal("500"), Decimal("0")) == Decimal("0.0")

    def test_change_percent(self):
        """Whole percents; no baseline gives None."""
        assert change_percent(Decimal("130"), Decimal("100")) == 30
        assert change_percent(Decimal("50"), Decimal("0")) is None

    def test_period_bounds(self):
        """Six months ending March 2026 start in October 2025."""
        assert period_bounds(date(2026, 3, 12), 6) == (date(2025, 10, 1), date(2026, 3, 31))


# ---------------------------------------------------------------------------
# Net worth and runway
# ---------------------------------------------------------------------------


class TestNetWorth:
    def test_identity(self, budget: BudgetBuilder):
        """total = assets + investments + savings - debt, debt non-negative."""
        (
            budget.account("checking", "Chase Checking", "checking", 1000)
            .account("ally", "Ally Savings", "savings", 5000)
            .account("k401", "Acme 401(k)", "otherAsset", 50000, on_budget=False)
            .account("home", "Zillow Home Value", "otherAsset", 400000, on_budget=False)
            .account("mortgage", "Home Mortgage", "mortgage", -300000, on_budget=False)
        )

        net_worth = budget.analyze().metrics.net_worth

        assert net_worth.assets == Decimal("400000")
        assert net_worth.investments == Decimal("50000")
        assert net_worth.savings == Decimal("6000")
        assert net_worth.debt == Decimal("300000")
        assert net_worth.total == Decimal("156000")

    def test_closed_accounts_ignored(self, budget: BudgetBuilder):
        """Closed accounts do not count toward net worth."""
        budget.account("checking", "Checking", balance=100).account(
            "old", "Old Checking", balance=900, closed=True
        )
        assert budget.analyze().metrics.net_worth.total == Decimal("100")


class TestRunway:
    def test_averages_over_active_months(self):
        """Empty months do not dilute the averages."""
        runway = calculate_runway(
            Decimal("6000"),
            [_month("2026-01", count=0), _month("2026-02", "3000", "2000"), _month("2026-03", "1000", "4000")],
        )

        assert runway.months_of_data == 2
        assert runway.avg_expenses == Decimal("3000")
        assert runway.avg_income == Decimal("2000")
        assert runway.pure_months == Decimal("2")
        assert runway.net_months == Decimal("6")
        assert runway.health == "healthy"

    def test_no_expenses_is_unlimited(self):
        """Zero expenses gives an infinite pure runway."""
        runway = calculate_runway(Decimal("1000"), [])
        assert runway.pure_months == INFINITY
        assert runway.net_months == INFINITY
        assert runway.health == "excellent"

    def test_positive_cash_flow_is_excellent(self):
        """Earning more than spending means infinite net runway."""
        runway = calculate_runway(Decimal("100"), [_month("2026-03", "5000", "4000")])
        assert runway.net_months == INFINITY
        assert runway.pure_months == Decimal("0.025")
        assert runway.health == "excellent"

    @pytest.mark.parametrize(
        "months, expected",
        [("2.9", "critical"), ("3", "caution"), ("5.9", "caution"), ("6", "healthy"), ("12", "excellent")],
    )
    def test_health_thresholds(self, months, expected):
        assert runway_health(Decimal("-1"), Decimal(months)) == expected

    def test_monotonic_in_cash(self):
        """More cash never shortens the pure runway."""
        months = [_month("2026-03", "1000", "2000")]
        lower = calculate_runway(Decimal("1000"), months)
        higher = calculate_runway(Decimal("5000"), months)
        assert higher.pure_months >= lower.pure_months
        assert higher.net_months >= lower.net_months

    def test_monotonic_in_net(self):
        """A better monthly net never shortens the net runway."""
        worse = calculate_runway(Decimal("3000"), [_month("2026-03", "500", "2000")])
        better = calculate_runway(Decimal("3000"), [_month("2026-03", "1500", "2000")])
        assert better.net_months >= worse.net_months


# ---------------------------------------------------------------------------
# Conscious Spending Plan scenarios
# ---------------------------------------------------------------------------


class TestCspScenarios:
    """Scenario figures for the CSP buckets."""

    def test_empty_budget(self, budget: BudgetBuilder):
        """One $1000 checking account and no transactions."""
        budget.account("checking", "Chase Checking", "checking", 1000)

        analysis = budget.analyze()
        metrics = analysis.metrics

        assert metrics.net_worth.total == Decimal("1000")
        assert all(b.total == 0 for b in metrics.csp.buckets.values())
        assert metrics.runway.pure_months == INFINITY
        assert metrics.runway.health == "excellent"
        trends = analysis.trends
        assert not trends.month_over_month.available
        assert not trends.year_over_year.available
        assert not trends.ytd.available
        assert trends.weekly.available
        assert trends.weekly.current_total == 0
        assert trends.weekly.six_week_average == 0

    def test_steady_month(self, standard_budget: BudgetBuilder):
        """50/10/6/24 is on track with no suggestions."""
        steady_month(standard_budget, MARCH_2)

        csp = standard_budget.analyze().metrics.csp

        percentages = {name: b.percentage for name, b in csp.buckets.items()}
        assert percentages == {
            "fixedCosts": Decimal("50.0"),
            "investments": Decimal("10.0"),
            "savings": Decimal("6.0"),
            "guiltFree": Decimal("24.0"),
        }
        assert csp.is_on_track
        assert csp.suggestions == []
        assert csp.total_income == Decimal("5000")
        assert csp.buckets["fixedCosts"].monthly == Decimal("2500") / 6

    def test_overspend(self, standard_budget: BudgetBuilder):
        """Guilt-free at 40% yields exactly one above-max suggestion."""
        steady_month(standard_budget, MARCH_2, guilt_free=2000)

        csp = standard_budget.analyze().metrics.csp

        assert csp.buckets["guiltFree"].percentage == Decimal("40.0")
        assert csp.buckets["investments"].percentage == Decimal("10.0")
        assert csp.buckets["savings"].percentage == Decimal("6.0")
        assert not csp.is_on_track
        (suggestion,) = csp.suggestions
        assert suggestion.bucket == "guiltFree"
        assert suggestion.kind == "above_max"
        assert suggestion.message == "Guilt-free spending at 40% - consider reducing to under 35%"

    def test_overspending_sorted_before_under_saving(self, standard_budget: BudgetBuilder):
        """above_max suggestions come before below_min ones."""
        (
            standard_budget.txn(MARCH_2, 5000, "income")
            .txn(MARCH_2, -3500, "rent")
            .txn(MARCH_2, -100, "emergency")
        )

        kinds = [(s.bucket, s.kind) for s in standard_budget.analyze().metrics.csp.suggestions]

        assert kinds == [
            ("fixedCosts", "above_max"),
            ("investments", "below_min"),
            ("savings", "below_min"),
        ]

    def test_refund(self, standard_budget: BudgetBuilder):
        """A $400 grocery run and a $100 refund report $300."""
        (
            standard_budget.txn(MARCH_2, 5000, "income")
            .txn(date(2026, 3, 3), -400, "groceries")
            .txn(date(2026, 3, 5), 100, "groceries")
        )

        analysis = standard_budget.analyze()

        march = next(m for m in analysis.monthly if m.month == "2026-03")
        assert march.expenses == Decimal("300")
        (groceries,) = [c for c in analysis.metrics.top_monthly if c.name == "Groceries"]
        assert groceries.amount == Decimal("300")

    def test_investment_transfer(self, standard_budget: BudgetBuilder):
        """A $1000 transfer to the 401(k) is an investment, not a runway expense."""
        standard_budget.txn(MARCH_2, -1000, transfer_to="k401")

        analysis = standard_budget.analyze()
        metrics = analysis.metrics

        assert metrics.csp.buckets["investments"].total == Decimal("1000")
        assert metrics.runway.cash_reserves == Decimal("1000")
        assert metrics.runway.avg_expenses == 0
        assert metrics.runway.pure_months == INFINITY

        snapshot = normalize(standard_budget.payload())
        kept = filter_transactions(
            snapshot, classify_accounts(snapshot.accounts), CspSettings()
        ).kept()
        by_category = spending_by_category(
            kept, date(2026, 3, 1), date(2026, 3, 31), true_expenses_only=False
        )
        assert by_category["Transfer: Acme 401(k)"].amount == Decimal("1000")

    def test_deleted_category_uses_transaction_group(self, standard_budget: BudgetBuilder):
        """Spending in a category no longer in the budget keeps its group's bucket."""
        standard_budget.txn(MARCH_2, -500)
        standard_budget.transactions[-1].update(
            category_id="old-rent", category_name="Old Rent", category_group_name="Fixed Costs"
        )

        buckets = standard_budget.analyze().metrics.csp.buckets

        assert buckets["fixedCosts"].total == Decimal("500")
        assert buckets["guiltFree"].total == 0

    def test_settings_exclusions_hidden_from_csp_but_not_runway(self, standard_budget: BudgetBuilder):
        """Excluded payees drop out of CSP while runway still sees them."""
        steady_month(standard_budget, MARCH_2)
        standard_budget.txn(MARCH_2, -600, "dining", payee="Venmo")

        analysis = standard_budget.analyze(csp=CspSettings(excluded_payees=frozenset({"Venmo"})))

        assert analysis.metrics.csp.buckets["guiltFree"].total == Decimal("1200")
        assert analysis.metrics.csp.excluded["payees"].amount == Decimal("600")
        assert analysis.metrics.runway.avg_expenses == Decimal("4300")


# ---------------------------------------------------------------------------
# Burn rate
# ---------------------------------------------------------------------------


class TestBurnRate:
    def _history(self, *expenses: str) -> list[MonthlyTotals]:
        return [_month(f"2025-{i + 1:02d}", expenses=e) for i, e in enumerate(expenses)]

    def test_average_over_window(self):
        """Average divides by every month in the window, current is the last."""
        burn = calculate_burn_rate(self._history("0", "0", "0", "0", "3000", "3000"))
        assert burn.average_monthly == Decimal("1000")
        assert burn.current_month == Decimal("3000")

    def test_increasing(self):
        """Last three months 10% above the previous three."""
        burn = calculate_burn_rate(self._history("1000", "1000", "1000", "1100", "1100", "1100"))
        assert burn.trend == "increasing"
        assert burn.trend_percent == Decimal("10.0")

    def test_decreasing(self):
        burn = calculate_burn_rate(self._history("1000", "1000", "1000", "900", "900", "900"))
        assert burn.trend == "decreasing"

    def test_within_threshold_is_stable(self):
        """A 5% move is not a trend."""
        burn = calculate_burn_rate(self._history("1000", "1000", "1000", "1050", "1050", "1050"))
        assert burn.trend == "stable"

    def test_short_history_is_stable(self):
        """Fewer than four months never trends."""
        burn = calculate_burn_rate(self._history("100", "500", "900"))
        assert burn.trend == "stable"
        assert burn.trend_percent is None

    def test_zero_previous_average_is_stable(self):
        burn = calculate_burn_rate(self._history("0", "0", "0", "900", "900", "900"))
        assert burn.trend == "stable"


# ---------------------------------------------------------------------------
# Top categories
# ---------------------------------------------------------------------------


class TestTopCategories:
    def test_monthly_against_previous_months(self, standard_budget: BudgetBuilder):
        """The monthly average covers the five months before the current one."""
        for month in (10, 11, 12):
            standard_budget.txn(date(2025, month, 5), -500, "groceries")
        for month in (1, 2):
            standard_budget.txn(date(2026, month, 5), -500, "groceries")
        standard_budget.txn(MARCH_2, -650, "groceries").txn(MARCH_2, -80, "fun")

        top = {c.name: c for c in standard_budget.analyze().metrics.top_monthly}

        assert top["Groceries"].average == Decimal("500")
        assert top["Groceries"].vs_average == 30
        assert top["Groceries"].is_alert
        assert top["Fun Money"].vs_average is None
        assert top["Fun Money"].vs_average_label == "new"

    def test_monthly_sorted_and_limited(self, standard_budget: BudgetBuilder):
        """Largest first, ten at most."""
        standard_budget.categories.update(
            {f"c{i}": ("Guilt-Free Spending", f"Category {i}") for i in range(12)}
        )
        for i in range(12):
            standard_budget.txn(MARCH_2, -(i + 1), f"c{i}")

        top = standard_budget.analyze().metrics.top_monthly

        assert len(top) == 10
        assert top[0].name == "Category 11"

    def test_weekly_against_six_weeks(self, standard_budget: BudgetBuilder):
        """Six preceding Sunday-Saturday weeks divided by six."""
        for weeks_back in range(6):
            standard_budget.txn(date(2026, 3, 4) - timedelta(weeks=weeks_back), -100, "dining")
        # Before the six-week window.
        standard_budget.txn(date(2026, 1, 24), -900, "dining")
        standard_budget.txn(date(2026, 3, 9), -120, "dining")

        (dining,) = standard_budget.analyze().metrics.top_weekly

        assert dining.average == Decimal("100")
        assert dining.amount == Decimal("120")
        assert dining.vs_average == 20
        assert not dining.is_alert

    def test_weekly_excludes_wealth_building(self, standard_budget: BudgetBuilder):
        """Investment and savings outflows are not weekly categories."""
        standard_budget.txn(date(2026, 3, 9), -500, "index").txn(date(2026, 3, 9), -300, "emergency")
        assert standard_budget.analyze().metrics.top_weekly == []
