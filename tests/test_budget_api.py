"""Tests for budget_newsletter.budget_api -- provider reads, token refresh and caching.

HTTP is served by httpx.MockTransport routing on the request path.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest

from budget_newsletter.budget_api import BudgetClient
from budget_newsletter.cache import ResponseCache
from budget_newsletter.errors import (
    AuthExpiredError,
    InputMalformedError,
    ProviderUnavailableError,
)

API = "https://api.example.test/v1"
TOKEN_URL = "https://app.example.test/oauth/token"
NOW = datetime(2026, 3, 12, 17, 0, tzinfo=timezone.utc)

BUDGETS = [{"id": "b-other", "name": "Old Budget"}, {"id": "b-main", "name": "My Budget"}]
ACCOUNTS = [{"id": "a1", "name": "Checking", "type": "checking", "balance": 1000000}]
TRANSACTIONS = [{"id": "t1", "date": "2026-03-02", "account_id": "a1", "amount": -5000}]
GROUPS = [{"name": "Fixed Costs", "categories": [{"id": "c1", "name": "Rent"}]}]


class Provider:
    """Routes requests like the provider API and records them."""

    def __init__(self, budgets=BUDGETS, status: int = 200):
        self.budgets = budgets
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": {"id": str(self.status)}})
        path = request.url.path.removeprefix("/v1")
        routes = {
            "/budgets": {"budgets": self.budgets},
            "/budgets/b-main/accounts": {"accounts": ACCOUNTS},
            "/budgets/b-main/transactions": {"transactions": TRANSACTIONS},
            "/budgets/b-main/categories": {"category_groups": GROUPS},
            "/budgets/b-other/accounts": {"accounts": []},
            "/budgets/b-other/transactions": {"transactions": []},
            "/budgets/b-other/categories": {"category_groups": []},
        }
        if path not in routes:
            return httpx.Response(404)
        return httpx.Response(200, json={"data": routes[path]})

    def paths(self) -> list[str]:
        return [r.url.path.removeprefix("/v1") for r in self.requests]


def _client(handler, cache: ResponseCache | None = None) -> BudgetClient:
    return BudgetClient(
        api_url=API,
        token_url=TOKEN_URL,
        client_id="cid",
        client_secret="csecret",
        cache=cache,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------


class TestFetch:
    def test_assembles_payload_for_named_budget(self):
        """The named budget is chosen and all three reads are joined."""
        provider = Provider()

        payload = asyncio.run(_client(provider).fetch("token-123456789", date(2025, 1, 1)))

        assert payload["budget"] == {"id": "b-main", "name": "My Budget"}
        assert payload["accounts"] == ACCOUNTS
        assert payload["transactions"] == TRANSACTIONS
        assert payload["categories"] == {"category_groups": GROUPS}
        assert sorted(provider.paths()[1:]) == [
            "/budgets/b-main/accounts",
            "/budgets/b-main/categories",
            "/budgets/b-main/transactions",
        ]

    def test_bearer_token_and_since_date(self):
        provider = Provider()
        asyncio.run(_client(provider).fetch("token-abc", date(2025, 1, 1)))

        transactions = next(r for r in provider.requests if r.url.path.endswith("/transactions"))
        assert transactions.headers["Authorization"] == "Bearer token-abc"
        assert transactions.url.params["since_date"] == "2025-01-01"

    def test_falls_back_to_first_budget(self):
        provider = Provider()
        payload = asyncio.run(_client(provider).fetch("t", date(2025, 1, 1), budget_name="Nope"))
        assert payload["budget"]["id"] == "b-other"

    def test_no_budgets(self):
        with pytest.raises(InputMalformedError, match="No budgets"):
            asyncio.run(_client(Provider(budgets=[])).fetch("t", date(2025, 1, 1)))

    def test_unauthorized_read(self):
        """401 on a data read means the user must reconnect."""
        with pytest.raises(AuthExpiredError):
            asyncio.run(_client(Provider(status=401)).fetch("t", date(2025, 1, 1)))

    def test_server_error(self):
        with pytest.raises(ProviderUnavailableError, match="HTTP 503"):
            asyncio.run(_client(Provider(status=503)).fetch("t", date(2025, 1, 1)))

    def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("cold start", request=request)

        with pytest.raises(ProviderUnavailableError, match="timed out"):
            asyncio.run(_client(handler).fetch("t", date(2025, 1, 1)))

    def test_missing_data_envelope(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"budgets": []})

        with pytest.raises(InputMalformedError):
            asyncio.run(_client(handler).fetch("t", date(2025, 1, 1)))


class TestCaching:
    def test_second_fetch_served_from_cache(self):
        """Within the TTL a repeated fetch makes no HTTP calls."""
        provider = Provider()
        client = _client(provider, cache=ResponseCache(ttl=300))

        first = asyncio.run(client.fetch("token-123456789", date(2025, 1, 1)))
        calls = len(provider.requests)
        second = asyncio.run(client.fetch("token-123456789", date(2025, 1, 1)))

        assert calls == 4
        assert len(provider.requests) == 4
        assert first == second

    def test_different_token_prefix_misses(self):
        provider = Provider()
        client = _client(provider, cache=ResponseCache(ttl=300))

        asyncio.run(client.fetch("aaaaaaaa-1", date(2025, 1, 1)))
        asyncio.run(client.fetch("bbbbbbbb-1", date(2025, 1, 1)))

        assert len(provider.requests) == 8


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_exchanges_refresh_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = dict(httpx.QueryParams(request.content.decode()))
            return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh"})

        record = asyncio.run(_client(handler).refresh("old-refresh", NOW))

        assert record.access_token == "new-access"
        assert record.refresh_token == "new-refresh"
        assert record.obtained_at == NOW
        assert seen["url"] == TOKEN_URL
        assert seen["form"] == {
            "client_id": "cid",
            "client_secret": "csecret",
            "grant_type": "refresh_token",
            "refresh_token": "old-refresh",
        }

    def test_keeps_refresh_token_when_not_rotated(self):
        handler = lambda request: httpx.Response(200, json={"access_token": "new-access"})  # noqa: E731
        record = asyncio.run(_client(handler).refresh("old-refresh", NOW))
        assert record.refresh_token == "old-refresh"

    @pytest.mark.parametrize("status", [400, 401])
    def test_rejected_refresh(self, status):
        handler = lambda request: httpx.Response(status, json={"error": "invalid_grant"})  # noqa: E731
        with pytest.raises(AuthExpiredError) as excinfo:
            asyncio.run(_client(handler).refresh("old", NOW))
        assert excinfo.value.stage == "authorize"

    def test_provider_down_during_refresh(self):
        handler = lambda request: httpx.Response(502)  # noqa: E731
        with pytest.raises(ProviderUnavailableError):
            asyncio.run(_client(handler).refresh("old", NOW))

    def test_no_access_token(self):
        handler = lambda request: httpx.Response(200, json={"token_type": "bearer"})  # noqa: E731
        with pytest.raises(AuthExpiredError):
            asyncio.run(_client(handler).refresh("old", NOW))
