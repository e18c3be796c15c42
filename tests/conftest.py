"""Shared pytest fixtures for budget newsletter tests.

Provides reusable fixtures for:
- budget: a BudgetBuilder that assembles provider payloads in whole
  currency units (converted to milli-units on the way out), with a
  standard set of category groups.
- standard_budget: a builder pre-loaded with a $1,000 checking account and
  a 401(k) tracking account.
- In-memory fakes for the store, budget provider, LLM and mailer, plus a
  settable clock, for orchestrator tests.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from budget_newsletter.errors import (
    DeliveryFailedError,
    IndexMissingError,
    LLMUnavailableError,
    PersistenceFailedError,
)
from budget_newsletter.models import (
    STATUS_SUCCESS,
    AppConfig,
    CspSettings,
    EmailMessage,
    LLMResponse,
    NewsletterSettings,
    RunLog,
    Snapshot,
    TokenRecord,
)
from budget_newsletter.pipeline import analyze

# A Thursday. The week runs Sunday 2026-03-08 to Saturday 2026-03-14.
TODAY = date(2026, 3, 12)
# 10:00 in America/Los_Angeles (PDT) on TODAY.
NOW = datetime(2026, 3, 12, 17, 0, tzinfo=timezone.utc)

# category id -> (group name, category name)
STANDARD_CATEGORIES = {
    "income": ("Internal Master Category", "Inflow: Ready to Assign"),
    "rent": ("Fixed Costs", "Rent"),
    "groceries": ("Fixed Costs", "Groceries"),
    "mortgage": ("Fixed Costs", "Mortgage Payment"),
    "index": ("Investments", "Index Funds"),
    "emergency": ("Savings", "Emergency Fund"),
    "dining": ("Guilt-Free Spending", "Dining Out"),
    "fun": ("Guilt-Free Spending", "Fun Money"),
    "misc": ("Everyday", "Misc Stuff"),
}


def milliunits(amount: object) -> int:
    """Whole units (str/int/Decimal) to provider milli-units."""
    return int(Decimal(str(amount)) * 1000)


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


class BudgetBuilder:
    """Fluent builder for raw provider payloads."""

    def __init__(self) -> None:
        self.accounts: list[dict] = []
        self.transactions: list[dict] = []
        self.categories = dict(STANDARD_CATEGORIES)
        self._next_id = 1

    def account(
        self,
        account_id: str,
        name: str,
        type: str = "checking",
        balance: object = 0,
        on_budget: bool = True,
        closed: bool = False,
    ) -> BudgetBuilder:
        self.accounts.append(
            {
                "id": account_id,
                "name": name,
                "type": type,
                "balance": milliunits(balance),
                "on_budget": on_budget,
                "closed": closed,
            }
        )
        return self

    def txn(
        self,
        day: date,
        amount: object,
        category: str | None = None,
        account: str = "checking",
        payee: str = "",
        transfer_to: str | None = None,
        subtransactions: list[dict] | None = None,
        txn_id: str | None = None,
    ) -> BudgetBuilder:
        if txn_id is None:
            txn_id = f"t{self._next_id}"
            self._next_id += 1
        raw = {
            "id": txn_id,
            "date": day.isoformat(),
            "account_id": account,
            "amount": milliunits(amount),
            "payee_name": payee or None,
            "category_id": category,
            "category_name": self.categories[category][1] if category else None,
            "transfer_account_id": transfer_to,
            "subtransactions": subtransactions or [],
        }
        self.transactions.append(raw)
        return self

    def payload(self) -> dict:
        groups: dict[str, list[dict]] = {}
        for category_id, (group, name) in self.categories.items():
            groups.setdefault(group, []).append(
                {
                    "id": category_id,
                    "name": name,
                    "hidden": False,
                    "budgeted": 0,
                    "balance": 0,
                }
            )
        return {
            "budget": {"id": "budget-1", "name": "My Budget"},
            "accounts": list(self.accounts),
            "transactions": list(self.transactions),
            "categories": {
                "category_groups": [
                    {"name": group, "categories": categories}
                    for group, categories in groups.items()
                ]
            },
        }

    def analyze(
        self,
        today: date = TODAY,
        csp: CspSettings | None = None,
        newsletter: NewsletterSettings | None = None,
        snapshots: list[Snapshot] | None = None,
        period_months: int = 6,
    ):
        return analyze(
            self.payload(),
            csp or CspSettings(),
            newsletter or NewsletterSettings(),
            snapshots or [],
            today,
            period_months,
        )


@pytest.fixture
def budget() -> BudgetBuilder:
    """An empty payload builder with the standard category groups."""
    return BudgetBuilder()


@pytest.fixture
def standard_budget() -> BudgetBuilder:
    """A $1,000 checking account plus an off-budget 401(k)."""
    return (
        BudgetBuilder()
        .account("checking", "Chase Checking", "checking", 1000)
        .account("k401", "Acme 401(k)", "otherAsset", 50000, on_budget=False)
    )


def steady_month(builder: BudgetBuilder, day: date, guilt_free: object = 1200) -> BudgetBuilder:
    """Income 5000, fixed 2500, investments 500, savings 300, guilt-free spend."""
    return (
        builder.txn(day, 5000, "income", payee="Employer")
        .txn(day, -2500, "rent", payee="Landlord")
        .txn(day, -500, "index", payee="Vanguard")
        .txn(day, -300, "emergency", payee="Ally")
        .txn(day, -Decimal(str(guilt_free)), "dining", payee="Bistro")
    )


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class Clock:
    """Settable clock for the orchestrator."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> None:
        self.now += timedelta(hours=hours)


class FakeStore:
    """In-memory Store with switchable failures."""

    def __init__(self) -> None:
        self.settings: dict[str, dict] = {}
        self.snapshots: list[Snapshot] = []
        self.logs: list[RunLog] = []
        self.tokens: dict[str, TokenRecord] = {}
        self.index_missing = False
        self.fail_snapshot = False
        self.fail_log = False
        self.fail_log_read = False

    async def get_settings(self, user_id: str) -> dict:
        return dict(self.settings.get(user_id, {}))

    async def put_settings(self, user_id: str, settings: dict) -> None:
        self.settings[user_id] = settings

    async def list_snapshots(self, user_id: str, limit: int = 52) -> list[Snapshot]:
        if self.index_missing:
            raise IndexMissingError("store", "snapshots index is building")
        mine = [s for s in self.snapshots if s.user_id == user_id]
        return sorted(mine, key=lambda s: s.week_ending, reverse=True)[:limit]

    async def add_snapshot(self, snapshot: Snapshot) -> str:
        if self.fail_snapshot:
            raise PersistenceFailedError("snapshot", "write rejected")
        snapshot.id = f"snap-{len(self.snapshots) + 1}"
        self.snapshots.append(snapshot)
        return snapshot.id

    async def list_logs(self, user_id: str, limit: int = 10) -> list[RunLog]:
        if self.index_missing:
            raise IndexMissingError("store", "logs index is building")
        if self.fail_log_read:
            raise PersistenceFailedError("store", "Could not read logs.json")
        mine = [log for log in self.logs if log.user_id == user_id]
        return sorted(mine, key=lambda log: log.started_at, reverse=True)[:limit]

    async def add_log(self, log: RunLog) -> str:
        if self.fail_log:
            raise PersistenceFailedError("log", "write rejected")
        log.id = f"log-{len(self.logs) + 1}"
        self.logs.append(log)
        return log.id

    async def find_recent_success(self, user_id: str, since: datetime) -> RunLog | None:
        for log in await self.list_logs(user_id, limit=len(self.logs)):
            if log.started_at >= since and log.status == STATUS_SUCCESS:
                return log
        return None

    async def get_token(self, user_id: str) -> TokenRecord | None:
        return self.tokens.get(user_id)

    async def put_token(self, user_id: str, token: TokenRecord) -> None:
        self.tokens[user_id] = token


class FakeProvider:
    """Budget provider returning a fixed payload."""

    def __init__(self, payload: dict) -> None:
        self.payload = payload
        self.fetch_calls: list[tuple[str, date]] = []
        self.refresh_calls: list[str] = []
        self.error: Exception | None = None
        self.refresh_error: Exception | None = None

    async def refresh(self, refresh_token: str, now: datetime) -> TokenRecord:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenRecord("fresh-access", "fresh-refresh", now)

    async def fetch(self, token: str, since: date, budget_name: str = "My Budget") -> dict:
        self.fetch_calls.append((token, since))
        if self.error is not None:
            raise self.error
        return self.payload


class FakeLLM:
    """LLM adapter that answers per model or fails for listed models."""

    def __init__(self, text: str = "## This Week\n\nAll good.", failing: set[str] | None = None):
        self.text = text
        self.failing = failing or set()
        self.calls: list[str] = []

    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        self.calls.append(model)
        if model in self.failing:
            raise LLMUnavailableError("llm", f"{model}: HTTP 529")
        return LLMResponse(text=self.text, input_tokens=900, output_tokens=100)


class FakeMailer:
    """Mailer recording messages; recipients in ``failing`` raise."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> str:
        if message.to in self.failing:
            raise DeliveryFailedError("deliver", f"{message.to}: HTTP 422", recipient=message.to)
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def app_config() -> AppConfig:
    """Config with mail configured and two default recipients."""
    return AppConfig(
        user_id="user-1",
        mail_api_key="re_test",
        from_email="news@example.com",
        recipients=["a@example.com", "b@example.com"],
        cron_secret="s3cret",
    )


@pytest.fixture
def fake_store(clock: Clock) -> FakeStore:
    """Store holding a token obtained just now for user-1."""
    store = FakeStore()
    store.tokens["user-1"] = TokenRecord("access", "refresh", clock())
    return store


@pytest.fixture
def provider(standard_budget: BudgetBuilder) -> FakeProvider:
    """Provider serving one steady month plus $120 of dining this week."""
    steady_month(standard_budget, date(2026, 3, 2))
    standard_budget.txn(date(2026, 3, 9), -120, "dining", payee="Bistro")
    return FakeProvider(standard_budget.payload())


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def service(app_config, fake_store, provider, llm, mailer, clock):
    """NewsletterService wired entirely to fakes."""
    from budget_newsletter.service import NewsletterService

    return NewsletterService(app_config, fake_store, provider, llm, mailer, now=clock)
