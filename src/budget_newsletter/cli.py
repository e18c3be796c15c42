"""Click CLI entry point for the newsletter command.

Handles argument parsing, config loading, adapter wiring and error
display. All business logic is delegated to ``service``, ``triggers``,
``config`` and ``export``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from budget_newsletter import __version__


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _load_config(root: Path):
    """Load config or exit with a hint to run ``newsletter init``."""
    from budget_newsletter.config import load_config

    try:
        return load_config(root)
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'newsletter init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading configuration: {exc}", err=True)
        sys.exit(1)


def _build_service(root: Path, config, skip_ai: bool = False):
    """Wire the production adapters into a :class:`NewsletterService`."""
    from budget_newsletter.budget_api import BudgetClient
    from budget_newsletter.cache import ResponseCache
    from budget_newsletter.llm import AnthropicAdapter, NullAdapter
    from budget_newsletter.mailer import ResendMailer
    from budget_newsletter.service import NewsletterService
    from budget_newsletter.store import JsonStore

    cache = ResponseCache(ttl=config.cache_ttl) if config.cache_ttl > 0 else None
    provider = BudgetClient(
        api_url=config.budget_api_url,
        token_url=config.token_url,
        client_id=config.client_id,
        client_secret=config.client_secret,
        timeout=config.provider_timeout,
        refresh_timeout=config.refresh_timeout,
        cache=cache,
    )

    if skip_ai or config.llm_provider == "none":
        llm = NullAdapter()
    else:
        llm = AnthropicAdapter(api_key_env=config.llm_api_key_env, timeout=config.llm_timeout)

    mailer = None
    if config.mail_api_key:
        mailer = ResendMailer(
            api_key=config.mail_api_key,
            api_url=config.mail_api_url,
            timeout=config.provider_timeout,
        )

    store = JsonStore(root / config.data_dir)
    return NewsletterService(config, store, provider, llm, mailer)


_verbose_option = click.option(
    "--verbose", is_flag=True, default=False, help="Detailed progress output."
)
_debug_option = click.option(
    "--debug", is_flag=True, default=False, help="Developer-level diagnostics."
)


@click.group()
@click.version_option(version=__version__, prog_name="newsletter")
def cli() -> None:
    """Weekly household-finance newsletter from your budget data."""


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Initialize a new project directory with the default config."""
    from budget_newsletter.config import initialize

    target = Path(target_dir).resolve()

    try:
        initialize(target)
    except Exception as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized newsletter project in {target}")


@cli.command()
@click.option("--access-token", required=True, help="Budget provider access token.")
@click.option("--refresh-token", default="", help="Budget provider refresh token.")
@_verbose_option
@_debug_option
def connect(access_token: str, refresh_token: str, verbose: bool, debug: bool) -> None:
    """Save budget provider credentials for the configured user."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config(root)

    from datetime import datetime, timezone

    from budget_newsletter.models import TokenRecord
    from budget_newsletter.store import JsonStore

    record = TokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        obtained_at=datetime.now(timezone.utc),
    )
    try:
        asyncio.run(JsonStore(root / config.data_dir).put_token(config.user_id, record))
    except Exception as exc:
        click.echo(f"Error saving credentials: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Connected budget account for user '{config.user_id}'")


@cli.command()
@click.option("--skip-ai", is_flag=True, default=False, help="Use template commentary.")
@click.option("--skip-email", is_flag=True, default=False, help="Do not send any email.")
@click.option("--scheduled", is_flag=True, default=False, help="Run as the weekly job.")
@click.option(
    "--cron-token",
    envvar="NEWSLETTER_CRON_TOKEN",
    default=None,
    help="Bearer secret required with --scheduled.",
)
@_verbose_option
@_debug_option
def send(
    skip_ai: bool,
    skip_email: bool,
    scheduled: bool,
    cron_token: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """Generate the newsletter and deliver it."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config(root)
    service = _build_service(root, config, skip_ai=skip_ai)

    from budget_newsletter.export import format_run_summary
    from budget_newsletter.service import RunOptions
    from budget_newsletter.triggers import handle_cron

    if scheduled:
        header = f"Bearer {cron_token}" if cron_token else None
        try:
            code, body = asyncio.run(handle_cron(service, header))
        except Exception as exc:
            click.echo(f"Error running newsletter: {exc}", err=True)
            sys.exit(1)
        click.echo(json.dumps(body, indent=2))
        if code != 200:
            sys.exit(1)
        return

    try:
        result = asyncio.run(service.run(RunOptions(skip_ai=skip_ai, skip_email=skip_email)))
    except Exception as exc:
        click.echo(f"Error running newsletter: {exc}", err=True)
        sys.exit(1)

    click.echo(format_run_summary(result))
    if result.status == "failed":
        sys.exit(1)


@cli.command()
@click.option(
    "--output", "output_file", default=None, type=click.Path(), help="Write HTML here."
)
@click.option("--skip-ai", is_flag=True, default=False, help="Use template commentary.")
@_verbose_option
@_debug_option
def preview(output_file: str | None, skip_ai: bool, verbose: bool, debug: bool) -> None:
    """Render the newsletter HTML without sending or saving a snapshot."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config(root)
    service = _build_service(root, config, skip_ai=skip_ai)

    from budget_newsletter.dates import week_end
    from budget_newsletter.errors import NewsletterError
    from budget_newsletter.export import write_preview

    try:
        html = asyncio.run(service.preview(skip_ai=skip_ai))
    except NewsletterError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    try:
        if output_file:
            path = Path(output_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(html, encoding="utf-8")
        else:
            path = write_preview(html, root / config.output_dir, week_end(service.today()))
    except OSError as exc:
        click.echo(f"Error writing preview: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Wrote preview to {path}")


@cli.command()
@_verbose_option
@_debug_option
def prompt(verbose: bool, debug: bool) -> None:
    """Print the LLM prompt and its estimated token count."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config(root)
    service = _build_service(root, config, skip_ai=True)

    from budget_newsletter.errors import NewsletterError

    try:
        text, tokens = asyncio.run(service.prompt_preview())
    except NewsletterError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(text)
    click.echo()
    click.echo(f"Estimated tokens: {tokens}")


@cli.command()
@_verbose_option
@_debug_option
def status(verbose: bool, debug: bool) -> None:
    """Show scheduler state, configuration gaps and the last run."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config(root)
    service = _build_service(root, config)

    from budget_newsletter.triggers import validate_configuration

    report = validate_configuration(config)
    try:
        current = asyncio.run(service.status())
    except Exception as exc:
        click.echo(f"Error reading status: {exc}", err=True)
        sys.exit(1)

    click.echo()
    click.echo("== Newsletter Status ==")
    click.echo(f"  Scheduler:       {'enabled' if current.scheduler_enabled else 'disabled'}")
    click.echo(f"  Recipients:      {', '.join(current.recipients) or '-'}")
    click.echo(f"  Next scheduled:  {current.next_scheduled.strftime('%Y-%m-%d %H:%M %Z')}")
    if current.last_run is not None:
        last = current.last_run
        click.echo(f"  Last run:        {last.completed_at.isoformat()} ({last.status})")
        click.echo(f"  Emails sent:     {last.emails_sent}")
    else:
        click.echo(f"  Last run:        {current.message}")
    if report.missing:
        click.echo()
        click.echo("Missing configuration:")
        for name in report.missing:
            click.echo(f"  {name}")
    click.echo()


@cli.command()
@click.option("--limit", default=10, show_default=True, type=int, help="Number of runs.")
@_verbose_option
@_debug_option
def logs(limit: int, verbose: bool, debug: bool) -> None:
    """List recent runs, newest first."""
    _configure_logging(verbose, debug)
    root = Path.cwd()
    config = _load_config(root)
    service = _build_service(root, config)

    from budget_newsletter.export import format_log_line

    try:
        entries = asyncio.run(service.logs(limit=limit))
    except Exception as exc:
        click.echo(f"Error reading logs: {exc}", err=True)
        sys.exit(1)

    if not entries:
        click.echo("No newsletter runs recorded yet.")
        return
    for entry in entries:
        click.echo(format_log_line(entry))
