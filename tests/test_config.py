"""Tests for budget_newsletter.config -- loading, environment overrides, and initialization."""

from decimal import Decimal
from pathlib import Path

import pytest

from budget_newsletter.config import (
    initialize,
    load_config,
    parse_csp_settings,
    parse_newsletter_settings,
    require,
)
from budget_newsletter.errors import ConfigMissingError
from budget_newsletter.models import AppConfig


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for loading config.toml into an AppConfig."""

    def test_loads_default_config(self, tmp_path: Path):
        """Default config.toml produced by initialize() is loadable."""
        initialize(tmp_path)
        config = load_config(tmp_path, env={})

        assert isinstance(config, AppConfig)
        assert config.data_dir == "data"
        assert config.output_dir == "output"
        assert config.period_months == 6
        assert config.dedup_hours == 6
        assert config.budget_api_url == "https://api.ynab.com/v1"
        assert config.schedule_day == 6
        assert config.schedule_hour == 9
        assert config.timezone == "America/Los_Angeles"

    def test_llm_settings(self, tmp_path: Path):
        initialize(tmp_path)
        config = load_config(tmp_path, env={})

        assert config.llm_provider == "anthropic"
        assert config.llm_model == "claude-sonnet-4-20250514"
        assert config.llm_fallback_model == "claude-3-haiku-20240307"
        assert config.llm_max_tokens == 1000
        assert config.llm_api_key_env == "ANTHROPIC_API_KEY"

    def test_custom_config(self, tmp_path: Path):
        """A hand-crafted config.toml loads with the correct values."""
        (tmp_path / "config.toml").write_text(
            """\
[general]
user_id = "household"
period_months = 3

[budget]
budget_name = "Family"
cache_ttl = 0

[schedule]
day_of_week = 0
hour = 7
timezone = "America/New_York"
""",
            encoding="utf-8",
        )
        config = load_config(tmp_path, env={})

        assert config.user_id == "household"
        assert config.period_months == 3
        assert config.budget_name == "Family"
        assert config.cache_ttl == 0
        assert (config.schedule_day, config.schedule_hour) == (0, 7)
        assert config.timezone == "America/New_York"
        # Missing sections fall back to defaults.
        assert config.llm_max_tokens == 1000

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path, env={})


class TestEnvironmentOverrides:
    """Secrets and deployment settings come from the environment."""

    def test_overrides(self, tmp_path: Path):
        initialize(tmp_path)
        env = {
            "RESEND_API_KEY": "re_123",
            "NEWSLETTER_FROM_EMAIL": "news@example.com",
            "NEWSLETTER_RECIPIENTS": "a@example.com, b@example.com,,",
            "CRON_SECRET": "s3cret",
            "NEWSLETTER_TIMEZONE": "Europe/London",
        }
        config = load_config(tmp_path, env=env)

        assert config.mail_api_key == "re_123"
        assert config.from_email == "news@example.com"
        assert config.recipients == ["a@example.com", "b@example.com"]
        assert config.cron_secret == "s3cret"
        assert config.timezone == "Europe/London"

    def test_blank_values_ignored(self, tmp_path: Path):
        initialize(tmp_path)
        config = load_config(tmp_path, env={"NEWSLETTER_FROM_EMAIL": "  "})
        assert config.from_email == "onboarding@resend.dev"

    def test_reads_process_environment(self, tmp_path: Path, monkeypatch):
        initialize(tmp_path)
        monkeypatch.setenv("CRON_SECRET", "from-env")
        assert load_config(tmp_path).cron_secret == "from-env"


class TestRequire:
    def test_present(self):
        assert require(AppConfig(cron_secret="x"), "cron_secret") == "x"

    def test_missing_names_variable(self):
        with pytest.raises(ConfigMissingError, match="RESEND_API_KEY is not configured"):
            require(AppConfig(), "mail_api_key")


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


class TestInitialize:
    def test_creates_structure(self, tmp_path: Path):
        initialize(tmp_path)

        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "output").is_dir()
        content = (tmp_path / "config.toml").read_text(encoding="utf-8")
        assert content.startswith("# Weekly budget newsletter configuration")
        assert "[schedule]" in content

    def test_does_not_overwrite(self, tmp_path: Path):
        """An existing config.toml is left untouched."""
        (tmp_path / "config.toml").write_text("[general]\nuser_id = 'mine'\n", encoding="utf-8")

        initialize(tmp_path)

        assert load_config(tmp_path, env={}).user_id == "mine"


# ---------------------------------------------------------------------------
# Settings documents
# ---------------------------------------------------------------------------


class TestCspSettings:
    def test_empty(self):
        settings = parse_csp_settings(None)
        assert settings.category_mappings == {}
        assert not settings.include_tracking_accounts

    def test_fields(self):
        settings = parse_csp_settings(
            {
                "categoryMappings": {"cat-1": "savings", "cat-2": "vacation"},
                "excludedPayees": ["Venmo"],
                "excludedExpenseCategories": ["cat-9"],
                "includeTrackingAccounts": True,
                "useKeywordFallback": True,
            }
        )

        assert settings.category_mappings == {"cat-1": "savings"}
        assert settings.excluded_payees == frozenset({"Venmo"})
        assert settings.excluded_expense_categories == frozenset({"cat-9"})
        assert settings.include_tracking_accounts
        assert settings.use_keyword_fallback


class TestNewsletterSettings:
    def test_defaults(self):
        settings = parse_newsletter_settings(None, ["a@example.com"], "UTC")

        assert settings.recipients == ["a@example.com"]
        assert settings.savings_rate_goal == Decimal("25")
        assert settings.investment_goal == Decimal("24000")
        assert settings.timezone == "UTC"
        assert settings.enabled

    def test_goals_nested_or_top_level(self):
        nested = parse_newsletter_settings({"goals": {"savingsRateGoal": 30, "investmentGoal": 12000}})
        flat = parse_newsletter_settings({"savingsRateGoal": "30", "investmentGoal": "12000"})

        assert nested.savings_rate_goal == flat.savings_rate_goal == Decimal("30")
        assert nested.investment_goal == flat.investment_goal == Decimal("12000")

    def test_non_numeric_goal_uses_default(self):
        settings = parse_newsletter_settings({"savingsRateGoal": "lots"})
        assert settings.savings_rate_goal == Decimal("25")

    def test_stored_recipients_win(self):
        settings = parse_newsletter_settings(
            {"recipients": "c@example.com", "enabled": False}, ["a@example.com"]
        )
        assert settings.recipients == ["c@example.com"]
        assert not settings.enabled
