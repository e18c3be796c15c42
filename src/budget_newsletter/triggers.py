"""Entry points for the scheduled and manual triggers.

The surrounding HTTP layer (or the CLI) calls these helpers; they never
touch a transport themselves. ``handle_cron`` and ``handle_manual`` return
``(http_status, body)`` pairs ready to serialize.
"""

from __future__ import annotations

import hmac
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from budget_newsletter.errors import ConfigMissingError, NewsletterError, UnauthorizedError
from budget_newsletter.models import STATUS_FAILED, AppConfig, RunResult

if TYPE_CHECKING:
    from budget_newsletter.service import NewsletterService

logger = logging.getLogger(__name__)

STAGE = "trigger"

_ERROR_STATUS = {
    "ConfigMissing": 500,
    "Unauthorized": 401,
    "AuthExpired": 401,
    "InputMalformed": 400,
}


# ---------------------------------------------------------------------------
# Authorization and status mapping
# ---------------------------------------------------------------------------


def authorize_cron(header: str | None, secret: str) -> None:
    """Check the ``Authorization`` header of a scheduled trigger.

    Raises:
        ConfigMissingError: ``CRON_SECRET`` is not configured.
        UnauthorizedError: The header is absent or does not match.
    """
    if not secret:
        raise ConfigMissingError(STAGE, "CRON_SECRET is not configured")
    expected = f"Bearer {secret}"
    if not header or not hmac.compare_digest(header.encode(), expected.encode()):
        raise UnauthorizedError(STAGE, "Invalid or missing cron token")


def http_status(result: RunResult) -> int:
    """200 for success, partial and skipped runs; 500 for failed runs."""
    return 500 if result.status == STATUS_FAILED else 200


def error_status(error: NewsletterError) -> int:
    return _ERROR_STATUS.get(error.kind, 500)


def scheduler_enabled(config: AppConfig, recipients: list[str]) -> bool:
    """The weekly job runs only with a mail key, a sender and recipients."""
    return bool(config.mail_api_key and config.from_email and recipients)


# ---------------------------------------------------------------------------
# Configuration report
# ---------------------------------------------------------------------------


@dataclass
class ConfigReport:
    """What is configured and what is missing for unattended runs."""

    email_configured: bool
    ai_configured: bool
    budget_configured: bool
    scheduler_enabled: bool
    timezone: str
    missing: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        # AI is optional: the template commentary covers it.
        return self.email_configured

    def to_dict(self) -> dict:
        return {
            "ready": self.ready,
            "email": {"configured": self.email_configured},
            "ai": {"configured": self.ai_configured},
            "budget": {"configured": self.budget_configured},
            "schedulerEnabled": self.scheduler_enabled,
            "timezone": self.timezone,
            "missing": list(self.missing),
        }


def validate_configuration(
    config: AppConfig, env: Mapping[str, str] | None = None
) -> ConfigReport:
    """List missing settings and whether the scheduler can run."""
    env = os.environ if env is None else env
    missing: list[str] = []
    if not config.mail_api_key:
        missing.append("RESEND_API_KEY")
    if not config.from_email:
        missing.append("NEWSLETTER_FROM_EMAIL")
    if not config.recipients:
        missing.append("NEWSLETTER_RECIPIENTS")
    ai_configured = config.llm_provider != "none" and bool(env.get(config.llm_api_key_env))
    if config.llm_provider != "none" and not ai_configured:
        missing.append(config.llm_api_key_env)
    budget_configured = bool(config.client_id and config.client_secret)
    if not budget_configured:
        missing.extend(
            name for name, value in (
                ("YNAB_CLIENT_ID", config.client_id),
                ("YNAB_CLIENT_SECRET", config.client_secret),
            ) if not value
        )

    return ConfigReport(
        email_configured=bool(config.mail_api_key and config.from_email),
        ai_configured=ai_configured,
        budget_configured=budget_configured,
        scheduler_enabled=scheduler_enabled(config, config.recipients),
        timezone=config.timezone,
        missing=missing,
    )


# ---------------------------------------------------------------------------
# Request handlers
# ---------------------------------------------------------------------------


async def handle_cron(
    service: NewsletterService, authorization: str | None
) -> tuple[int, dict]:
    """Scheduled weekly run behind a bearer secret."""
    from budget_newsletter.service import TRIGGER_SCHEDULED, RunOptions

    try:
        authorize_cron(authorization, service.config.cron_secret)
    except NewsletterError as exc:
        logger.warning("Rejected scheduled trigger: %s", exc)
        return error_status(exc), {"error": exc.message}

    status = await service.status()
    if not status.scheduler_enabled:
        logger.info("Scheduler disabled for %s, nothing to send", service.user_id)
        return 200, {"status": "skipped", "reason": "scheduler_disabled"}

    result = await service.run(RunOptions(trigger=TRIGGER_SCHEDULED))
    return http_status(result), result.to_dict()


async def handle_manual(service: NewsletterService, body: Mapping) -> tuple[int, dict]:
    """Manual run with ``{userId, skipAI, skipEmail}``."""
    from budget_newsletter.service import TRIGGER_MANUAL, RunOptions

    if not body.get("userId"):
        return 400, {"error": "userId is required"}
    if body["userId"] != service.user_id:
        return 403, {"error": "Unknown user"}

    options = RunOptions(
        skip_ai=bool(body.get("skipAI", False)),
        skip_email=bool(body.get("skipEmail", False)),
        trigger=TRIGGER_MANUAL,
    )
    result = await service.run(options)
    return http_status(result), result.to_dict()
