"""Mail provider adapter.

Defines the Mailer protocol and a Resend implementation that posts one
message per recipient over ``httpx``. Any transport or provider failure is
raised as :class:`DeliveryFailedError` carrying the recipient, so the
orchestrator can record it and continue with the next address.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from budget_newsletter.errors import DeliveryFailedError
from budget_newsletter.models import EmailMessage

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

STAGE = "deliver"


class Mailer(Protocol):
    """Protocol for sending a single email. Returns the provider message id."""

    async def send(self, message: EmailMessage) -> str:
        ...


def sender(name: str, address: str) -> str:
    """Format the ``From`` header, e.g. ``"Finance Dashboard <a@b.c>"``."""
    return f"{name} <{address}>" if name else address


class ResendMailer:
    """Mailer backed by the Resend REST API.

    Args:
        api_key: Resend API key.
        api_url: Send endpoint.
        timeout: HTTP request timeout in seconds.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = RESEND_API_URL,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    async def send(self, message: EmailMessage) -> str:
        """Send *message* and return the provider's message id.

        Raises:
            DeliveryFailedError: On a transport error, non-2xx status, or a
                response without an id.
        """
        body = {
            "from": message.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, json=body, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.api_url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Mail provider returned HTTP %d for %s", exc.response.status_code, message.to
            )
            raise DeliveryFailedError(
                STAGE, f"{message.to}: HTTP {exc.response.status_code}", recipient=message.to
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Sending to %s failed: %s", message.to, exc)
            raise DeliveryFailedError(
                STAGE, f"{message.to}: {exc}", recipient=message.to
            ) from exc

        try:
            message_id = response.json()["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise DeliveryFailedError(
                STAGE, f"{message.to}: response has no message id", recipient=message.to
            ) from exc

        logger.info("Sent newsletter to %s (%s)", message.to, message_id)
        return str(message_id)
