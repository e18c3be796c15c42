"""Tests for budget_newsletter.mailer -- the Resend adapter."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from budget_newsletter.errors import DeliveryFailedError
from budget_newsletter.mailer import ResendMailer, sender
from budget_newsletter.models import EmailMessage

MESSAGE = EmailMessage(
    from_address="Finance Dashboard <news@example.com>",
    to="a@example.com",
    subject="Weekly Update",
    html="<p>Hi</p>",
    text="Hi",
)


def _mailer(handler) -> ResendMailer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResendMailer(api_key="re_test", client=client)


class TestSender:
    def test_with_name(self):
        assert sender("Finance Dashboard", "a@b.c") == "Finance Dashboard <a@b.c>"

    def test_without_name(self):
        assert sender("", "a@b.c") == "a@b.c"


class TestResendMailer:
    def test_posts_one_recipient(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": "email-1"})

        message_id = asyncio.run(_mailer(handler).send(MESSAGE))

        assert message_id == "email-1"
        assert seen["url"] == "https://api.resend.com/emails"
        assert seen["auth"] == "Bearer re_test"
        assert seen["body"] == {
            "from": "Finance Dashboard <news@example.com>",
            "to": ["a@example.com"],
            "subject": "Weekly Update",
            "html": "<p>Hi</p>",
            "text": "Hi",
        }

    def test_rejected(self):
        """A 4xx from the provider names the recipient."""
        mailer = _mailer(lambda request: httpx.Response(422, json={"message": "invalid"}))

        with pytest.raises(DeliveryFailedError, match="HTTP 422") as excinfo:
            asyncio.run(mailer.send(MESSAGE))

        assert excinfo.value.recipient == "a@example.com"
        assert excinfo.value.stage == "deliver"

    def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DeliveryFailedError):
            asyncio.run(_mailer(handler).send(MESSAGE))

    def test_missing_id(self):
        mailer = _mailer(lambda request: httpx.Response(200, json={}))
        with pytest.raises(DeliveryFailedError, match="no message id"):
            asyncio.run(mailer.send(MESSAGE))
