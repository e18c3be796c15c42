"""Core data models for the budget newsletter.

This module defines all dataclasses and constants used throughout the
pipeline. It has zero internal imports -- everything depends on it, but it
depends on nothing within the package.

All monetary values are :class:`~decimal.Decimal` amounts in whole units of
the budget's base currency. Provider milli-units never leave the normalizer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

ZERO = Decimal("0")
INFINITY = Decimal("Infinity")

# ---------------------------------------------------------------------------
# Conscious Spending Plan buckets
# ---------------------------------------------------------------------------

FIXED_COSTS = "fixedCosts"
INVESTMENTS = "investments"
SAVINGS = "savings"
GUILT_FREE = "guiltFree"

BUCKETS = (FIXED_COSTS, INVESTMENTS, SAVINGS, GUILT_FREE)
TRUE_EXPENSE_BUCKETS = frozenset({FIXED_COSTS, GUILT_FREE})

BUCKET_LABELS = {
    FIXED_COSTS: "Fixed Costs",
    INVESTMENTS: "Investments",
    SAVINGS: "Savings",
    GUILT_FREE: "Guilt-Free Spending",
}


@dataclass(frozen=True)
class BucketTarget:
    """Target percentage range for one CSP bucket.

    ``None`` means the bound is open on that side.
    """

    minimum: Decimal | None = None
    maximum: Decimal | None = None


CSP_TARGETS = {
    FIXED_COSTS: BucketTarget(Decimal("50"), Decimal("60")),
    INVESTMENTS: BucketTarget(Decimal("10"), None),
    SAVINGS: BucketTarget(Decimal("5"), Decimal("10")),
    GUILT_FREE: BucketTarget(Decimal("20"), Decimal("35")),
}

# ---------------------------------------------------------------------------
# Provider vocabulary
# ---------------------------------------------------------------------------

INCOME_CATEGORY_NAMES = frozenset(
    {
        "Inflow: Ready to Assign",
        "Ready to Assign",
        "To be Budgeted",
        "Deferred Income SubCategory",
    }
)

SYSTEM_PAYEES = frozenset({"Reconciliation Balance Adjustment", "Starting Balance"})

UNCATEGORIZED = "Uncategorized"

# Account kinds produced by the classifier.
ACCOUNT_CASH = "cash"
ACCOUNT_SAVINGS = "savings"
ACCOUNT_INVESTMENT = "investment"
ACCOUNT_PROPERTY = "property"
ACCOUNT_DEBT = "debt"

# Transaction classes produced by the filter.
KIND_EXCLUDED = "excluded"
KIND_INCOME = "income"
KIND_EXPENSE = "expense"
KIND_REFUND = "refund"
KIND_TRANSFER_TO_INVESTMENT = "transferToInvestment"

# Run statuses.
STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


def month_key(day: date) -> str:
    """Return the ``YYYY-MM`` key for *day*."""
    return f"{day.year:04d}-{day.month:02d}"


def _dec(value: Decimal | None) -> str | None:
    """Serialize a Decimal for JSON documents; infinity becomes ``None``."""
    if value is None or value.is_infinite():
        return None
    return str(value)


def _undec(value: object, default: Decimal | None = ZERO) -> Decimal | None:
    if value is None or value == "":
        return default
    return Decimal(str(value))


# ---------------------------------------------------------------------------
# Budget input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Account:
    """A budget account as read from the provider.

    Attributes:
        id: Provider account identifier.
        name: Display name.
        type: Provider type tag, e.g. ``"checking"`` or ``"creditCard"``.
        on_budget: True for cash-flow accounts that participate in the budget.
        closed: True if the account is closed.
        balance: Current balance in base currency units.
    """

    id: str
    name: str
    type: str
    on_budget: bool
    closed: bool
    balance: Decimal


@dataclass(frozen=True)
class ClassifiedAccount:
    """An account together with the kind assigned by the classifier.

    Attributes:
        account: The underlying provider account.
        kind: One of ``cash``, ``savings``, ``investment``, ``property``,
            ``debt``.
    """

    account: Account
    kind: str

    @property
    def balance(self) -> Decimal:
        """Balance as used by net-worth arithmetic (debt is positive)."""
        if self.kind == ACCOUNT_DEBT:
            return abs(self.account.balance)
        return self.account.balance


@dataclass(frozen=True)
class AccountPartition:
    """Output of the account classifier.

    Attributes:
        accounts: Open accounts with their kinds, in input order.
        investment_account_ids: Ids of every account classified
            ``investment``.
        closed: Closed accounts that were dropped.
    """

    accounts: list[ClassifiedAccount] = field(default_factory=list)
    investment_account_ids: frozenset[str] = frozenset()
    closed: list[Account] = field(default_factory=list)

    def name_of(self, account_id: str) -> str | None:
        for classified in self.accounts:
            if classified.account.id == account_id:
                return classified.account.name
        for account in self.closed:
            if account.id == account_id:
                return account.name
        return None


@dataclass(frozen=True)
class Transaction:
    """A single flattened transaction in base currency units.

    Split transactions never appear here; each sub-transaction is emitted
    as its own record with ``parent_id`` set.

    Attributes:
        id: Provider transaction (or sub-transaction) identifier.
        date: Transaction date.
        account_id: Account the transaction was recorded on.
        amount: Signed amount. Negative means outflow.
        payee_name: Payee display name, empty if unknown.
        category_id: Category identifier, if categorized.
        category_name: Category display name, if categorized.
        category_group_name: Category group name as sent by the provider,
            used when the category is missing from the category index.
        transfer_account_id: Target account of a transfer, if any.
        parent_id: Id of the split parent for flattened sub-transactions.
    """

    id: str
    date: date
    account_id: str
    amount: Decimal
    payee_name: str = ""
    category_id: str | None = None
    category_name: str | None = None
    category_group_name: str | None = None
    transfer_account_id: str | None = None
    parent_id: str | None = None


@dataclass(frozen=True)
class CategoryInfo:
    """A budget category with its group.

    Attributes:
        id: Provider category identifier.
        name: Display name.
        group_name: Name of the parent category group.
        hidden: True if the category is hidden in the budget.
        budgeted: Amount budgeted this month (informational only).
        balance: Available balance (informational only).
    """

    id: str
    name: str
    group_name: str
    hidden: bool = False
    budgeted: Decimal = ZERO
    balance: Decimal = ZERO

    @property
    def is_income(self) -> bool:
        return self.name in INCOME_CATEGORY_NAMES


@dataclass(frozen=True)
class BudgetSnapshot:
    """Canonical budget data produced by the normalizer.

    Attributes:
        budget_id: Provider budget identifier.
        budget_name: Budget display name.
        accounts: All accounts, open and closed.
        transactions: Flattened transactions in input order.
        category_index: Category id to :class:`CategoryInfo`.
    """

    budget_id: str
    budget_name: str
    accounts: list[Account] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    category_index: dict[str, CategoryInfo] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CspSettings:
    """Per-user Conscious Spending Plan configuration.

    Attributes:
        category_mappings: Category id or category name to bucket.
        excluded_income_categories: Category ids or names whose income is
            left out of CSP and trend figures.
        excluded_expense_categories: Category ids or names whose spending
            is left out of CSP and trend figures.
        excluded_payees: Payee names (case-insensitive) left out of CSP and
            trend figures.
        include_tracking_accounts: Keep activity recorded on investment
            accounts instead of dropping it.
        use_keyword_fallback: Enable the keyword scan over category names.
    """

    category_mappings: dict[str, str] = field(default_factory=dict)
    excluded_income_categories: frozenset[str] = frozenset()
    excluded_expense_categories: frozenset[str] = frozenset()
    excluded_payees: frozenset[str] = frozenset()
    include_tracking_accounts: bool = False
    use_keyword_fallback: bool = False


@dataclass(frozen=True)
class NewsletterSettings:
    """Per-user newsletter delivery settings and annual goals."""

    recipients: list[str] = field(default_factory=list)
    savings_rate_goal: Decimal = Decimal("25")
    investment_goal: Decimal = Decimal("24000")
    timezone: str = "America/Los_Angeles"
    enabled: bool = True


@dataclass
class AppConfig:
    """Top-level application configuration from ``config.toml`` and env.

    Attributes:
        user_id: Budget owner the newsletter is generated for.
        data_dir: Directory of the JSON document store.
        output_dir: Directory for preview HTML and prompt files.
        period_months: Months of history used by runway, CSP and burn rate.
        dedup_hours: Window during which a second delivery is suppressed.
        budget_api_url: Base URL of the budget provider API.
        token_url: OAuth token endpoint used for refresh.
        budget_name: Preferred budget name; the first budget otherwise.
        provider_timeout: Timeout in seconds for provider reads.
        refresh_timeout: Timeout in seconds for token refresh.
        cache_ttl: Response cache lifetime in seconds; 0 disables it.
        llm_provider: ``"anthropic"`` or ``"none"``.
        llm_model: Primary model identifier.
        llm_fallback_model: Secondary model tried after a primary failure.
        llm_max_tokens: Response token limit.
        llm_api_key_env: Environment variable holding the LLM API key.
        llm_timeout: Timeout in seconds for LLM calls.
        mail_api_url: Mail provider endpoint.
        mail_from_name: Display name of the sender.
        schedule_day: Weekday of the scheduled run, 0 = Sunday through
            6 = Saturday.
        schedule_hour: Local hour of the scheduled run.
        timezone: Default timezone.
        mail_api_key: Mail provider API key.
        from_email: Sender address.
        recipients: Default recipient list.
        cron_secret: Bearer secret for the scheduled trigger.
        frontend_url: Dashboard URL linked from the footer.
        client_id: OAuth client id for token refresh.
        client_secret: OAuth client secret for token refresh.
    """

    user_id: str = "default"
    data_dir: str = "data"
    output_dir: str = "output"
    period_months: int = 6
    dedup_hours: int = 6
    budget_api_url: str = "https://api.ynab.com/v1"
    token_url: str = "https://app.ynab.com/oauth/token"
    budget_name: str = "My Budget"
    provider_timeout: float = 15.0
    refresh_timeout: float = 10.0
    cache_ttl: int = 300
    llm_provider: str = "anthropic"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_fallback_model: str = "claude-3-haiku-20240307"
    llm_max_tokens: int = 1000
    llm_api_key_env: str = "ANTHROPIC_API_KEY"
    llm_timeout: float = 60.0
    mail_api_url: str = "https://api.resend.com/emails"
    mail_from_name: str = "Finance Dashboard"
    schedule_day: int = 6
    schedule_hour: int = 9
    timezone: str = "America/Los_Angeles"
    mail_api_key: str = ""
    from_email: str = "onboarding@resend.dev"
    recipients: list[str] = field(default_factory=list)
    cron_secret: str = ""
    frontend_url: str = "http://localhost:5173"
    client_id: str = ""
    client_secret: str = ""


# ---------------------------------------------------------------------------
# Filter output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassifiedTransaction:
    """A transaction tagged with exactly one class by the filter.

    Attributes:
        txn: The underlying transaction.
        kind: One of ``excluded``, ``income``, ``expense``, ``refund``,
            ``transferToInvestment``.
        reason: Why an excluded transaction was dropped; empty otherwise.
        category_name: Display category (synthetic for investment
            transfers and uncategorized spending).
        group_name: Category group name, empty if unknown.
        bucket: Resolved CSP bucket for spending classes, else ``None``.
        settings_excluded: True if per-user exclusions hide this
            transaction from CSP and trend figures.
    """

    txn: Transaction
    kind: str
    reason: str = ""
    category_name: str = ""
    group_name: str = ""
    bucket: str | None = None
    settings_excluded: bool = False

    @property
    def amount(self) -> Decimal:
        return self.txn.amount

    @property
    def date(self) -> date:
        return self.txn.date

    @property
    def is_spending(self) -> bool:
        """True for outflows and refunds that count against a bucket."""
        return self.kind in (KIND_EXPENSE, KIND_REFUND, KIND_TRANSFER_TO_INVESTMENT)

    @property
    def is_true_expense(self) -> bool:
        return self.is_spending and self.bucket in TRUE_EXPENSE_BUCKETS


@dataclass
class ExclusionTally:
    """Count and absolute amount of transactions left out for one reason."""

    count: int = 0
    amount: Decimal = ZERO

    def add(self, amount: Decimal) -> None:
        self.count += 1
        self.amount += abs(amount)


@dataclass
class FilterResult:
    """Output of the transaction filter.

    Attributes:
        transactions: Every input transaction, classified.
        excluded: Tally of rule-based exclusions keyed by reason.
        settings_excluded: Tally of per-user exclusions keyed by
            ``payees``, ``incomeCategories``, ``expenseCategories``.
    """

    transactions: list[ClassifiedTransaction] = field(default_factory=list)
    excluded: dict[str, ExclusionTally] = field(default_factory=dict)
    settings_excluded: dict[str, ExclusionTally] = field(default_factory=dict)

    def kept(self) -> list[ClassifiedTransaction]:
        """Transactions that survive the rule-based exclusions."""
        return [t for t in self.transactions if t.kind != KIND_EXCLUDED]

    def visible(self) -> list[ClassifiedTransaction]:
        """Kept transactions that are not hidden by per-user exclusions."""
        return [t for t in self.kept() if not t.settings_excluded]


# ---------------------------------------------------------------------------
# Aggregates and metrics
# ---------------------------------------------------------------------------


@dataclass
class MonthlyTotals:
    """Per-month totals keyed by ``YYYY-MM``.

    Attributes:
        month: Month key.
        income: Signed sum of income-category amounts.
        expenses: True-expense outflows net of refunds.
        wealth_building: Investment and savings outflows net of refunds.
        transaction_count: Number of kept transactions in the month.
    """

    month: str
    income: Decimal = ZERO
    expenses: Decimal = ZERO
    wealth_building: Decimal = ZERO
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses

    @property
    def has_activity(self) -> bool:
        return self.transaction_count > 0


@dataclass(frozen=True)
class NetWorth:
    """Net worth broken down by classified account group."""

    total: Decimal
    assets: Decimal
    investments: Decimal
    savings: Decimal
    debt: Decimal


@dataclass(frozen=True)
class Runway:
    """Cash runway figures.

    ``pure_months`` and ``net_months`` are ``INFINITY`` when unbounded.
    """

    cash_reserves: Decimal
    avg_income: Decimal
    avg_expenses: Decimal
    avg_net: Decimal
    pure_months: Decimal
    net_months: Decimal
    health: str
    months_of_data: int


@dataclass(frozen=True)
class BucketAllocation:
    """Totals and target check for one CSP bucket."""

    bucket: str
    total: Decimal
    monthly: Decimal
    percentage: Decimal
    target: BucketTarget
    on_target: bool


@dataclass(frozen=True)
class Suggestion:
    """An off-target CSP bucket with a ready-to-display message.

    Attributes:
        bucket: The off-target bucket.
        kind: ``"above_max"`` or ``"below_min"``.
        level: ``"warning"`` for overspending, ``"alert"`` for
            under-saving.
        percentage: Observed percentage.
        bound: The violated bound.
        message: Human readable message.
    """

    bucket: str
    kind: str
    level: str
    percentage: Decimal
    bound: Decimal
    message: str


@dataclass
class CspResult:
    """Conscious Spending Plan allocation over the analysis period."""

    buckets: dict[str, BucketAllocation]
    total_income: Decimal
    monthly_income: Decimal
    period_months: int
    is_on_track: bool
    suggestions: list[Suggestion] = field(default_factory=list)
    excluded: dict[str, ExclusionTally] = field(default_factory=dict)

    @property
    def total_classified(self) -> Decimal:
        return sum((b.total for b in self.buckets.values()), ZERO)


@dataclass
class BurnRate:
    """Average monthly true-expense spending and its direction."""

    average_monthly: Decimal
    current_month: Decimal
    trend: str
    trend_percent: Decimal | None
    history: list[MonthlyTotals] = field(default_factory=list)


@dataclass(frozen=True)
class CategorySpend:
    """Spending in one category compared against its recent average.

    Attributes:
        name: Category display name.
        group_name: Category group name.
        bucket: Resolved CSP bucket.
        amount: Spending in the current period, net of refunds.
        average: Average spending per comparison period.
        vs_average: Rounded percent difference from the average, ``None``
            when there is no average to compare against.
    """

    name: str
    group_name: str
    bucket: str
    amount: Decimal
    average: Decimal
    vs_average: int | None

    @property
    def vs_average_label(self) -> str:
        if self.vs_average is None:
            return "new"
        sign = "+" if self.vs_average > 0 else ""
        return f"{sign}{self.vs_average}%"

    @property
    def is_alert(self) -> bool:
        return self.vs_average is not None and self.vs_average > 20


@dataclass
class Metrics:
    """Everything produced by the metrics engine."""

    net_worth: NetWorth
    runway: Runway
    csp: CspResult
    burn_rate: BurnRate
    top_monthly: list[CategorySpend] = field(default_factory=list)
    top_weekly: list[CategorySpend] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PeriodTotals:
    """Income and true-expense totals for a date window (inclusive)."""

    label: str
    start: date
    end: date
    income: Decimal
    expenses: Decimal
    savings_rate: Decimal
    transaction_count: int

    @property
    def savings(self) -> Decimal:
        return self.income - self.expenses


@dataclass(frozen=True)
class CategoryChange:
    """Change in one category's spending between two windows."""

    name: str
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percent: int | None


@dataclass
class WeeklyTrend:
    """Current Sunday-to-today spending against recent weeks."""

    week_start: date
    week_end: date
    current_total: Decimal
    last_week_total: Decimal
    six_week_average: Decimal
    days_elapsed: int
    projected_total: Decimal
    change_amount: Decimal
    change_percent: int | None
    vs_average_percent: int | None
    top_categories: list[CategorySpend] = field(default_factory=list)
    available: bool = True


@dataclass
class PeriodComparison:
    """Month-over-month or year-over-year comparison of matched windows.

    Attributes:
        available: False when the comparison window has no transactions.
        message: Explanation when unavailable.
        current: Totals for the current window.
        previous: Totals for the comparison window.
        income_change: Current minus previous income.
        expense_change: Current minus previous expenses.
        expense_change_percent: Rounded percent change in expenses.
        savings_rate_change: Percentage-point change in savings rate.
        category_changes: Largest category movements.
        is_partial_month: True before the 28th of the month.
        net_worth_previous: Net worth recorded for the comparison month
            (year-over-year only).
        net_worth_change: Current net worth minus that baseline.
    """

    available: bool
    message: str = ""
    current: PeriodTotals | None = None
    previous: PeriodTotals | None = None
    income_change: Decimal = ZERO
    expense_change: Decimal = ZERO
    expense_change_percent: int | None = None
    savings_rate_change: Decimal = ZERO
    category_changes: list[CategoryChange] = field(default_factory=list)
    is_partial_month: bool = False
    net_worth_previous: Decimal | None = None
    net_worth_change: Decimal | None = None


@dataclass
class YtdProgress:
    """Year-to-date totals, projections, and goal tracking."""

    available: bool
    year: int
    day_of_year: int
    days_in_year: int
    year_progress: Decimal
    months_completed: int
    income: Decimal = ZERO
    expenses: Decimal = ZERO
    savings_rate: Decimal = ZERO
    investments: Decimal = ZERO
    projected_income: Decimal = ZERO
    projected_expenses: Decimal = ZERO
    projected_savings: Decimal = ZERO
    projected_investments: Decimal = ZERO
    savings_rate_goal: Decimal = Decimal("25")
    savings_on_track: bool = False
    investment_goal: Decimal = Decimal("24000")
    investment_progress: Decimal = ZERO
    investments_on_track: bool = False
    net_worth_start: Decimal | None = None
    net_worth_growth: Decimal | None = None
    last_year: PeriodTotals | None = None
    savings_vs_last_year: Decimal | None = None

    @property
    def savings(self) -> Decimal:
        return self.income - self.expenses


@dataclass
class Trends:
    """Everything produced by the trends engine."""

    weekly: WeeklyTrend
    month_over_month: PeriodComparison
    year_over_year: PeriodComparison
    ytd: YtdProgress
    seasonal_note: str | None = None


@dataclass
class Analysis:
    """The full deterministic output of one analytics pass."""

    today: date
    week_ending: date
    budget_name: str
    metrics: Metrics
    trends: Trends
    monthly: list[MonthlyTotals] = field(default_factory=list)
    excluded: dict[str, ExclusionTally] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Persistence documents
# ---------------------------------------------------------------------------


@dataclass
class Snapshot:
    """Persisted summary of one run, the baseline for later comparisons."""

    user_id: str
    week_ending: date
    month: str
    year: int
    created_at: datetime
    net_worth: Decimal
    cash_reserves: Decimal
    runway_months: Decimal
    buckets: dict[str, Decimal] = field(default_factory=dict)
    monthly_income: Decimal = ZERO
    monthly_expenses: Decimal = ZERO
    monthly_savings_rate: Decimal = ZERO
    ytd_savings: Decimal = ZERO
    ytd_investment_contributions: Decimal = ZERO
    category_spending: dict[str, Decimal] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "week_ending": self.week_ending.isoformat(),
            "month": self.month,
            "year": self.year,
            "created_at": self.created_at.isoformat(),
            "net_worth": _dec(self.net_worth),
            "cash_reserves": _dec(self.cash_reserves),
            "runway_months": _dec(self.runway_months),
            "buckets": {k: _dec(v) for k, v in self.buckets.items()},
            "monthly_income": _dec(self.monthly_income),
            "monthly_expenses": _dec(self.monthly_expenses),
            "monthly_savings_rate": _dec(self.monthly_savings_rate),
            "ytd_savings": _dec(self.ytd_savings),
            "ytd_investment_contributions": _dec(self.ytd_investment_contributions),
            "category_spending": {
                k: _dec(v) for k, v in self.category_spending.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> Snapshot:
        return cls(
            id=data.get("id"),
            user_id=data["user_id"],
            week_ending=date.fromisoformat(data["week_ending"]),
            month=data["month"],
            year=int(data["year"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            net_worth=_undec(data.get("net_worth")),
            cash_reserves=_undec(data.get("cash_reserves")),
            runway_months=_undec(data.get("runway_months"), INFINITY),
            buckets={k: _undec(v) for k, v in data.get("buckets", {}).items()},
            monthly_income=_undec(data.get("monthly_income")),
            monthly_expenses=_undec(data.get("monthly_expenses")),
            monthly_savings_rate=_undec(data.get("monthly_savings_rate")),
            ytd_savings=_undec(data.get("ytd_savings")),
            ytd_investment_contributions=_undec(
                data.get("ytd_investment_contributions")
            ),
            category_spending={
                k: _undec(v) for k, v in data.get("category_spending", {}).items()
            },
        )


@dataclass(frozen=True)
class StageError:
    """A failure recorded against the pipeline stage that raised it."""

    stage: str
    kind: str
    message: str

    def to_dict(self) -> dict:
        return {"stage": self.stage, "kind": self.kind, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict) -> StageError:
        return cls(data["stage"], data.get("kind", ""), data.get("message", ""))


@dataclass
class RunLog:
    """Record written at the end of every pipeline invocation."""

    user_id: str
    started_at: datetime
    completed_at: datetime
    status: str
    trigger: str = "manual"
    errors: list[StageError] = field(default_factory=list)
    recipients: list[str] = field(default_factory=list)
    emails_sent: int = 0
    ai_tokens: int = 0
    ai_fallback: bool = False
    snapshot_id: str | None = None
    reason: str = ""
    id: str | None = None

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "status": self.status,
            "trigger": self.trigger,
            "errors": [e.to_dict() for e in self.errors],
            "recipients": list(self.recipients),
            "emails_sent": self.emails_sent,
            "ai_tokens": self.ai_tokens,
            "ai_fallback": self.ai_fallback,
            "snapshot_id": self.snapshot_id,
            "duration_ms": self.duration_ms,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RunLog:
        return cls(
            id=data.get("id"),
            user_id=data["user_id"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            status=data["status"],
            trigger=data.get("trigger", "manual"),
            errors=[StageError.from_dict(e) for e in data.get("errors", [])],
            recipients=list(data.get("recipients", [])),
            emails_sent=int(data.get("emails_sent", 0)),
            ai_tokens=int(data.get("ai_tokens", 0)),
            ai_fallback=bool(data.get("ai_fallback", False)),
            snapshot_id=data.get("snapshot_id"),
            reason=data.get("reason", ""),
        )


@dataclass
class TokenRecord:
    """Stored provider credentials."""

    access_token: str
    refresh_token: str
    obtained_at: datetime

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "obtained_at": self.obtained_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> TokenRecord:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            obtained_at=datetime.fromisoformat(data["obtained_at"]),
        )


# ---------------------------------------------------------------------------
# Collaborator payloads and run results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmailMessage:
    """One outgoing email for a single recipient."""

    from_address: str
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class LLMResponse:
    """Text and token usage returned by an LLM call."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class Commentary:
    """Qualitative commentary and where it came from.

    Attributes:
        text: Markdown commentary.
        source: ``"primary"``, ``"fallback"`` or ``"template"``.
        tokens: Tokens consumed producing it.
        model: Model identifier, empty for the template.
    """

    text: str
    source: str
    tokens: int = 0
    model: str = ""

    @property
    def is_fallback(self) -> bool:
        return self.source != "primary"


@dataclass
class RunResult:
    """Outcome of one pipeline invocation."""

    status: str
    snapshot_id: str | None = None
    emails_sent: int = 0
    ai_tokens: int = 0
    errors: list[StageError] = field(default_factory=list)
    reason: str = ""
    last_sent_at: datetime | None = None
    log_id: str | None = None
    subject: str = ""

    def to_dict(self) -> dict:
        if self.status == STATUS_SKIPPED:
            return {
                "status": self.status,
                "reason": self.reason,
                "lastSentAt": (
                    self.last_sent_at.isoformat() if self.last_sent_at else None
                ),
            }
        if self.status == STATUS_FAILED:
            return {
                "status": self.status,
                "errors": [e.to_dict() for e in self.errors],
            }
        body: dict = {
            "status": self.status,
            "snapshotId": self.snapshot_id,
            "emailsSent": self.emails_sent,
            "aiTokens": self.ai_tokens,
        }
        if self.errors:
            body["errors"] = [e.to_dict() for e in self.errors]
        return body
