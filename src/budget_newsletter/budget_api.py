"""Budget provider client: OAuth token refresh and read-only budget data.

Talks to the provider's REST API with ``httpx.AsyncClient``. Transport
failures are translated into the pipeline's typed errors at this
boundary:

- 401 on a data read, or 400/401 on refresh -> :class:`AuthExpiredError`
- timeouts, connection errors, 5xx -> :class:`ProviderUnavailableError`
- a response missing the expected keys -> :class:`InputMalformedError`

After budget discovery, accounts, transactions and categories are fetched
concurrently and joined before returning.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Protocol

import httpx

from budget_newsletter.cache import ResponseCache
from budget_newsletter.errors import (
    AuthExpiredError,
    InputMalformedError,
    ProviderUnavailableError,
)
from budget_newsletter.models import TokenRecord

logger = logging.getLogger(__name__)

FETCH_STAGE = "fetch"
AUTH_STAGE = "authorize"


class BudgetProvider(Protocol):
    """What the orchestrator needs from the budget provider."""

    async def refresh(self, refresh_token: str, now: datetime) -> TokenRecord:
        ...

    async def fetch(self, token: str, since: date, budget_name: str = "My Budget") -> dict:
        ...


class BudgetClient:
    """Read-only client for the budget provider.

    Args:
        api_url: Base URL, e.g. ``https://api.ynab.com/v1``.
        token_url: OAuth token endpoint used by :meth:`refresh`.
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        timeout: Timeout in seconds for data reads.
        refresh_timeout: Timeout in seconds for token refresh.
        cache: Optional response cache.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        api_url: str,
        token_url: str = "",
        client_id: str = "",
        client_secret: str = "",
        timeout: float = 15.0,
        refresh_timeout: float = 10.0,
        cache: ResponseCache | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.refresh_timeout = refresh_timeout
        self.cache = cache
        self._client = client

    # -- HTTP plumbing --------------------------------------------------------

    async def _send(self, method: str, url: str, timeout: float, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _get(self, token: str, path: str, params: dict | None = None) -> dict:
        endpoint = path if not params else f"{path}?{httpx.QueryParams(params)}"
        cache_key = ResponseCache.key(token, endpoint)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        try:
            response = await self._send(
                "GET",
                f"{self.api_url}{path}",
                self.timeout,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Budget provider timed out on %s", path)
            raise ProviderUnavailableError(FETCH_STAGE, f"{path}: request timed out") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Budget provider returned HTTP %d on %s", status, path)
            if status == 401:
                raise AuthExpiredError(
                    FETCH_STAGE, "Budget access was revoked; reconnect the account"
                ) from exc
            raise ProviderUnavailableError(FETCH_STAGE, f"{path}: HTTP {status}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Budget provider request failed on %s: %s", path, exc)
            raise ProviderUnavailableError(FETCH_STAGE, f"{path}: {exc}") from exc

        try:
            data = response.json()["data"]
        except (ValueError, KeyError, TypeError) as exc:
            raise InputMalformedError(FETCH_STAGE, f"{path}: response has no data") from exc

        if self.cache is not None:
            self.cache.set(cache_key, data)
        return data

    @staticmethod
    def _field(data: dict, key: str, path: str) -> object:
        if not isinstance(data, dict) or key not in data:
            raise InputMalformedError(FETCH_STAGE, f"{path}: response has no '{key}'")
        return data[key]

    # -- Credential refresh ---------------------------------------------------

    async def refresh(self, refresh_token: str, now: datetime) -> TokenRecord:
        """Exchange *refresh_token* for a new access/refresh token pair.

        Raises:
            AuthExpiredError: The provider rejected the refresh (400/401).
            ProviderUnavailableError: Timeout, connection error, or 5xx.
        """
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        try:
            response = await self._send("POST", self.token_url, self.refresh_timeout, data=form)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Token refresh timed out")
            raise ProviderUnavailableError(AUTH_STAGE, "Token refresh timed out") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("Token refresh returned HTTP %d", status)
            if status in (400, 401):
                raise AuthExpiredError(
                    AUTH_STAGE, "Budget authorization expired; reconnect the account"
                ) from exc
            raise ProviderUnavailableError(AUTH_STAGE, f"Token refresh HTTP {status}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Token refresh failed: %s", exc)
            raise ProviderUnavailableError(AUTH_STAGE, f"Token refresh failed: {exc}") from exc

        try:
            body = response.json()
            access_token = body["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthExpiredError(AUTH_STAGE, "Token refresh returned no access token") from exc

        logger.info("Refreshed budget access token")
        return TokenRecord(
            access_token=access_token,
            refresh_token=body.get("refresh_token") or refresh_token,
            obtained_at=now,
        )

    # -- Reads ----------------------------------------------------------------

    async def list_budgets(self, token: str) -> list[dict]:
        data = await self._get(token, "/budgets")
        return list(self._field(data, "budgets", "/budgets"))

    async def get_accounts(self, token: str, budget_id: str) -> list[dict]:
        path = f"/budgets/{budget_id}/accounts"
        return list(self._field(await self._get(token, path), "accounts", path))

    async def get_transactions(self, token: str, budget_id: str, since: date) -> list[dict]:
        path = f"/budgets/{budget_id}/transactions"
        data = await self._get(token, path, {"since_date": since.isoformat()})
        return list(self._field(data, "transactions", path))

    async def get_categories(self, token: str, budget_id: str) -> dict:
        path = f"/budgets/{budget_id}/categories"
        groups = self._field(await self._get(token, path), "category_groups", path)
        return {"category_groups": list(groups)}

    async def fetch(self, token: str, since: date, budget_name: str = "My Budget") -> dict:
        """Discover the budget and fetch everything the pipeline needs.

        The budget named *budget_name* is preferred; otherwise the first one.

        Returns:
            A payload dict accepted by :func:`budget_newsletter.normalizer.normalize`.
        """
        budgets = await self.list_budgets(token)
        if not budgets:
            raise InputMalformedError(FETCH_STAGE, "No budgets found for this account")
        budget = next((b for b in budgets if b.get("name") == budget_name), budgets[0])
        budget_id = budget.get("id")
        if not budget_id:
            raise InputMalformedError(FETCH_STAGE, "Budget is missing its id")

        accounts, transactions, categories = await asyncio.gather(
            self.get_accounts(token, budget_id),
            self.get_transactions(token, budget_id, since),
            self.get_categories(token, budget_id),
        )
        logger.info(
            "Fetched budget %r: %d accounts, %d transactions",
            budget.get("name"),
            len(accounts),
            len(transactions),
        )
        return {
            "budget": {"id": budget_id, "name": budget.get("name", "")},
            "accounts": accounts,
            "transactions": transactions,
            "categories": categories,
        }
