"""Configuration loading, environment overrides, and project initialization.

Reads ``config.toml`` using stdlib ``tomllib`` and writes the default file
using ``tomli_w``. Secrets and deployment settings come from the
environment and override the file. Per-user settings documents from the
store are parsed here as well so every default lives in one place.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path

import tomli_w

from budget_newsletter.errors import ConfigMissingError
from budget_newsletter.models import BUCKETS, AppConfig, CspSettings, NewsletterSettings

logger = logging.getLogger(__name__)

STAGE = "config"

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG = {
    "general": {
        "user_id": "default",
        "data_dir": "data",
        "output_dir": "output",
        "period_months": 6,
        "dedup_hours": 6,
    },
    "budget": {
        "api_url": "https://api.ynab.com/v1",
        "token_url": "https://app.ynab.com/oauth/token",
        "budget_name": "My Budget",
        "timeout": 15.0,
        "refresh_timeout": 10.0,
        "cache_ttl": 300,
    },
    "llm": {
        "provider": "anthropic",
        "model": "claude-sonnet-4-20250514",
        "fallback_model": "claude-3-haiku-20240307",
        "max_tokens": 1000,
        "api_key_env": "ANTHROPIC_API_KEY",
        "timeout": 60.0,
    },
    "mail": {
        "api_url": "https://api.resend.com/emails",
        "from_name": "Finance Dashboard",
    },
    "schedule": {
        "day_of_week": 6,
        "hour": 9,
        "timezone": "America/Los_Angeles",
    },
}

_CONFIG_HEADER = """\
# Weekly budget newsletter configuration
#
# Secrets are read from the environment, never from this file:
#   RESEND_API_KEY, NEWSLETTER_FROM_EMAIL, NEWSLETTER_RECIPIENTS,
#   ANTHROPIC_API_KEY, CRON_SECRET, NEWSLETTER_TIMEZONE, FRONTEND_URL,
#   YNAB_CLIENT_ID, YNAB_CLIENT_SECRET
#
# schedule.day_of_week: 0 = Sunday ... 6 = Saturday

"""

# Directories that ``initialize`` creates.
_INIT_DIRS = ["data", "output"]

# AppConfig attribute -> environment variable that supplies it.
ENV_VARS = {
    "mail_api_key": "RESEND_API_KEY",
    "from_email": "NEWSLETTER_FROM_EMAIL",
    "recipients": "NEWSLETTER_RECIPIENTS",
    "cron_secret": "CRON_SECRET",
    "timezone": "NEWSLETTER_TIMEZONE",
    "frontend_url": "FRONTEND_URL",
    "client_id": "YNAB_CLIENT_ID",
    "client_secret": "YNAB_CLIENT_SECRET",
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path, env: Mapping[str, str] | None = None) -> AppConfig:
    """Load ``config.toml`` from *root*, then apply environment overrides.

    Args:
        root: Project root directory containing ``config.toml``.
        env: Environment mapping. Default: ``os.environ``.

    Returns:
        A fully-populated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``config.toml`` does not exist.
    """
    data = _read_toml(Path(root) / "config.toml")
    env = os.environ if env is None else env

    general = data.get("general", {})
    budget = data.get("budget", {})
    llm = data.get("llm", {})
    mail = data.get("mail", {})
    schedule = data.get("schedule", {})

    config = AppConfig(
        user_id=general.get("user_id", "default"),
        data_dir=general.get("data_dir", "data"),
        output_dir=general.get("output_dir", "output"),
        period_months=int(general.get("period_months", 6)),
        dedup_hours=int(general.get("dedup_hours", 6)),
        budget_api_url=budget.get("api_url", "https://api.ynab.com/v1"),
        token_url=budget.get("token_url", "https://app.ynab.com/oauth/token"),
        budget_name=budget.get("budget_name", "My Budget"),
        provider_timeout=float(budget.get("timeout", 15.0)),
        refresh_timeout=float(budget.get("refresh_timeout", 10.0)),
        cache_ttl=int(budget.get("cache_ttl", 300)),
        llm_provider=llm.get("provider", "anthropic"),
        llm_model=llm.get("model", "claude-sonnet-4-20250514"),
        llm_fallback_model=llm.get("fallback_model", "claude-3-haiku-20240307"),
        llm_max_tokens=int(llm.get("max_tokens", 1000)),
        llm_api_key_env=llm.get("api_key_env", "ANTHROPIC_API_KEY"),
        llm_timeout=float(llm.get("timeout", 60.0)),
        mail_api_url=mail.get("api_url", "https://api.resend.com/emails"),
        mail_from_name=mail.get("from_name", "Finance Dashboard"),
        schedule_day=int(schedule.get("day_of_week", 6)),
        schedule_hour=int(schedule.get("hour", 9)),
        timezone=schedule.get("timezone", "America/Los_Angeles"),
    )
    _apply_env(config, env)
    return config


def initialize(target_dir: Path) -> None:
    """Create the standard directory structure and default config file.

    Idempotent: existing directories are left alone and an existing
    ``config.toml`` is **not** overwritten.

    Args:
        target_dir: The directory in which to create the project structure.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    for d in _INIT_DIRS:
        (target_dir / d).mkdir(parents=True, exist_ok=True)

    _write_if_missing(
        target_dir / "config.toml", _CONFIG_HEADER + tomli_w.dumps(_DEFAULT_CONFIG)
    )


def require(config: AppConfig, name: str) -> object:
    """Return ``config.<name>``, raising if it is empty.

    Raises:
        ConfigMissingError: Naming the environment variable to set.
    """
    value = getattr(config, name)
    if not value:
        source = ENV_VARS.get(name, name)
        raise ConfigMissingError(STAGE, f"{source} is not configured")
    return value


def parse_csp_settings(document: Mapping | None) -> CspSettings:
    """Build :class:`CspSettings` from the ``csp`` part of a settings document.

    Unknown buckets in ``categoryMappings`` are dropped with a warning.
    """
    document = document or {}
    mappings: dict[str, str] = {}
    for key, bucket in (document.get("categoryMappings") or {}).items():
        if bucket in BUCKETS:
            mappings[str(key)] = bucket
        else:
            logger.warning("Ignoring mapping of %r to unknown bucket %r", key, bucket)

    return CspSettings(
        category_mappings=mappings,
        excluded_income_categories=frozenset(document.get("excludedIncomeCategories") or ()),
        excluded_expense_categories=frozenset(document.get("excludedExpenseCategories") or ()),
        excluded_payees=frozenset(document.get("excludedPayees") or ()),
        include_tracking_accounts=bool(document.get("includeTrackingAccounts", False)),
        use_keyword_fallback=bool(document.get("useKeywordFallback", False)),
    )


def parse_newsletter_settings(
    document: Mapping | None,
    default_recipients: list[str] | None = None,
    default_timezone: str = "America/Los_Angeles",
) -> NewsletterSettings:
    """Build :class:`NewsletterSettings` from the ``newsletter`` document.

    Recipients fall back to *default_recipients* (``NEWSLETTER_RECIPIENTS``)
    and the timezone to *default_timezone*. Goals may be stored at the top
    level or under ``goals``.
    """
    document = document or {}
    goals = document.get("goals") or {}
    recipients = _split_list(document.get("recipients")) or list(default_recipients or [])

    return NewsletterSettings(
        recipients=recipients,
        savings_rate_goal=_decimal(
            goals.get("savingsRateGoal", document.get("savingsRateGoal")), Decimal("25")
        ),
        investment_goal=_decimal(
            goals.get("investmentGoal", document.get("investmentGoal")), Decimal("24000")
        ),
        timezone=document.get("timezone") or default_timezone,
        enabled=bool(document.get("enabled", True)),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_env(config: AppConfig, env: Mapping[str, str]) -> None:
    for attribute, variable in ENV_VARS.items():
        value = env.get(variable, "").strip()
        if not value:
            continue
        if attribute == "recipients":
            config.recipients = _split_list(value)
        else:
            setattr(config, attribute, value)


def _split_list(value: object) -> list[str]:
    """Accept a list or a comma separated string; drop blanks."""
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [str(item).strip() for item in items if str(item).strip()]


def _decimal(value: object, default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning("Ignoring non-numeric goal %r", value)
        return default


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")
