"""Run orchestrator for the weekly newsletter.

A run moves through these states::

    Dedup-check -> Authorize -> Fetch -> Analyze -> LLM -> Snapshot
        -> Render -> Deliver -> Log -> {success | partial | failed | skipped}

Collaborators (budget provider, store, LLM, mailer) are injected, so the
analytics path never imports an adapter. Every invocation of :meth:`run`
writes a run log as its last action, including skipped and failed runs.

Terminal status rules:

- **skipped**: a successful delivery exists within ``dedup_hours``.
- **failed**: a stage before Render raised, or delivery was attempted and
  no email went out.
- **partial**: the run completed but collected errors (a failed snapshot
  write, some recipients failing).
- **success**: otherwise.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from budget_newsletter.budget_api import BudgetProvider
from budget_newsletter.config import parse_csp_settings, parse_newsletter_settings, require
from budget_newsletter.dates import next_weekly_run
from budget_newsletter.errors import (
    AuthExpiredError,
    ConfigMissingError,
    DeliveryFailedError,
    IndexMissingError,
    NewsletterError,
    PersistenceFailedError,
)
from budget_newsletter.llm import LLMAdapter, write_commentary
from budget_newsletter.mailer import Mailer, sender
from budget_newsletter.metrics import period_bounds
from budget_newsletter.models import (
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    Analysis,
    AppConfig,
    Commentary,
    CspSettings,
    EmailMessage,
    NewsletterSettings,
    RunLog,
    RunResult,
    Snapshot,
    StageError,
)
from budget_newsletter.pipeline import analyze, build_snapshot
from budget_newsletter.prompt import build_prompt, estimate_tokens, template_commentary
from budget_newsletter.render import html_to_text, render_html, subject_line
from budget_newsletter.store import Store
from budget_newsletter.triggers import scheduler_enabled

logger = logging.getLogger(__name__)

TOKEN_MAX_AGE = timedelta(hours=1)
SNAPSHOT_HISTORY = 52
SKIP_REASON = "already_sent_recently"

TRIGGER_MANUAL = "manual"
TRIGGER_SCHEDULED = "scheduled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RunOptions:
    """Per-invocation switches.

    Attributes:
        skip_ai: Use the template commentary without calling the LLM.
        skip_email: Build and persist everything but send nothing.
        trigger: ``"manual"`` or ``"scheduled"``, recorded in the log.
    """

    skip_ai: bool = False
    skip_email: bool = False
    trigger: str = TRIGGER_MANUAL


@dataclass
class ServiceStatus:
    """Scheduler state and the most recent run."""

    scheduler_enabled: bool
    recipients: list[str]
    next_scheduled: datetime
    last_run: RunLog | None = None
    message: str = ""

    @property
    def has_run(self) -> bool:
        return self.last_run is not None

    def to_dict(self) -> dict:
        body = {
            "hasRun": self.has_run,
            "schedulerEnabled": self.scheduler_enabled,
            "recipients": list(self.recipients),
            "nextScheduled": self.next_scheduled.isoformat(),
        }
        if self.last_run is not None:
            body["lastSent"] = self.last_run.completed_at.isoformat()
            body["status"] = self.last_run.status
            body["emailsSent"] = self.last_run.emails_sent
        if self.message:
            body["message"] = self.message
        return body


@dataclass
class _RunState:
    """Mutable bookkeeping for one run; never shared between runs."""

    started_at: datetime
    trigger: str
    errors: list[StageError] = field(default_factory=list)
    fatal: bool = False
    recipients: list[str] = field(default_factory=list)
    delivery_attempted: bool = False
    emails_sent: int = 0
    ai_tokens: int = 0
    ai_fallback: bool = False
    snapshot_id: str | None = None
    subject: str = ""

    def record(self, error: NewsletterError) -> None:
        logger.warning("%s", error)
        self.errors.append(error.to_stage_error())

    def status(self) -> str:
        if self.fatal:
            return STATUS_FAILED
        if self.delivery_attempted and self.emails_sent == 0:
            return STATUS_FAILED
        if self.errors:
            return STATUS_PARTIAL
        return STATUS_SUCCESS


class NewsletterService:
    """Generates and delivers the newsletter for one configured user.

    Args:
        config: Application configuration.
        store: Persistence collaborator.
        provider: Budget provider collaborator.
        llm: LLM adapter used for commentary.
        mailer: Mail collaborator; may be ``None`` when sending is not
            configured (runs then need ``skip_email``).
        now: Clock returning an aware datetime. Default: UTC now.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Store,
        provider: BudgetProvider,
        llm: LLMAdapter,
        mailer: Mailer | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.provider = provider
        self.llm = llm
        self.mailer = mailer
        self._now = now

    @property
    def user_id(self) -> str:
        return self.config.user_id

    def today(self) -> date:
        """Current day in the configured timezone."""
        return self._today(self._now(), self.config.timezone)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def run(self, options: RunOptions | None = None) -> RunResult:
        """Execute one full pipeline run and return its outcome."""
        options = options or RunOptions()
        state = _RunState(started_at=self._now(), trigger=options.trigger)
        logger.info(
            "Newsletter run started for %s (skip_ai=%s, skip_email=%s, trigger=%s)",
            self.user_id,
            options.skip_ai,
            options.skip_email,
            options.trigger,
        )

        try:
            self._check_config(options)
        except ConfigMissingError as exc:
            state.record(exc)
            state.fatal = True
            return await self._finish(state)

        recent = await self._recent_success(state.started_at)
        if recent is not None:
            logger.info("Newsletter already sent at %s, skipping", recent.completed_at)
            return await self._finish(state, skipped_after=recent)

        try:
            await self._execute(state, options)
        except NewsletterError as exc:
            state.record(exc)
            state.fatal = True
        except Exception as exc:
            logger.exception("Newsletter run crashed")
            state.errors.append(StageError("general", type(exc).__name__, str(exc)))
            state.fatal = True
            await self._finish(state)
            raise

        return await self._finish(state)

    async def preview(self, skip_ai: bool = False) -> str:
        """Render the newsletter HTML without snapshot, delivery or log."""
        analysis, _ = await self._prepare(self._now())
        commentary = await self._commentary(analysis, skip_ai)
        return render_html(analysis, commentary.text, self.config.frontend_url)

    async def prompt_preview(self) -> tuple[str, int]:
        """Return the LLM prompt and its estimated token count; no LLM call."""
        analysis, _ = await self._prepare(self._now())
        prompt = build_prompt(analysis)
        return prompt, estimate_tokens(prompt)

    async def status(self) -> ServiceStatus:
        """Scheduler state, recipients, last run and next scheduled time."""
        now = self._now()
        document = await self.store.get_settings(self.user_id)
        settings = parse_newsletter_settings(
            document.get("newsletter"), self.config.recipients, self.config.timezone
        )
        next_run = next_weekly_run(
            now, self.config.schedule_day, self.config.schedule_hour, settings.timezone
        )
        enabled = settings.enabled and scheduler_enabled(self.config, settings.recipients)

        try:
            logs = await self.store.list_logs(self.user_id, limit=1)
        except IndexMissingError as exc:
            logger.warning("Run log index missing: %s", exc.message)
            return ServiceStatus(
                enabled,
                settings.recipients,
                next_run,
                message="Run log index being created - check back shortly",
            )

        if not logs:
            return ServiceStatus(
                enabled, settings.recipients, next_run, message="No newsletters sent yet"
            )
        return ServiceStatus(enabled, settings.recipients, next_run, last_run=logs[0])

    async def logs(self, limit: int = 10) -> list[RunLog]:
        """Most recent run logs, newest first."""
        try:
            return await self.store.list_logs(self.user_id, limit=limit)
        except IndexMissingError as exc:
            logger.warning("Run log index missing: %s", exc.message)
            return []

    # -----------------------------------------------------------------------
    # Run stages
    # -----------------------------------------------------------------------

    def _check_config(self, options: RunOptions) -> None:
        if options.skip_email:
            return
        require(self.config, "mail_api_key")
        require(self.config, "from_email")
        if self.mailer is None:
            raise ConfigMissingError("config", "No mailer configured")

    async def _recent_success(self, now: datetime) -> RunLog | None:
        since = now - timedelta(hours=self.config.dedup_hours)
        try:
            return await self.store.find_recent_success(self.user_id, since)
        except IndexMissingError as exc:
            logger.warning("Dedup check skipped, run log index missing: %s", exc.message)
            return None
        except NewsletterError as exc:
            logger.warning("Dedup check failed, continuing: %s", exc)
            return None

    async def _execute(self, state: _RunState, options: RunOptions) -> None:
        analysis, settings = await self._prepare(state.started_at)

        commentary = await self._commentary(analysis, options.skip_ai)
        state.ai_tokens = commentary.tokens
        state.ai_fallback = not options.skip_ai and commentary.is_fallback

        state.snapshot_id = await self._save_snapshot(state, analysis)

        html = render_html(analysis, commentary.text, self.config.frontend_url)
        state.subject = subject_line(analysis)

        if not options.skip_email:
            await self._deliver(state, settings.recipients, state.subject, html)

    async def _prepare(self, now: datetime) -> tuple[Analysis, NewsletterSettings]:
        """Authorize, fetch, load settings and history, then analyze."""
        token = await self._access_token(now)

        since = self._fetch_since(self._today(now, self.config.timezone))
        payload = await self.provider.fetch(token, since, self.config.budget_name)

        csp, settings, snapshots = await self._load_context()
        today = self._today(now, settings.timezone)
        analysis = analyze(payload, csp, settings, snapshots, today, self.config.period_months)
        return analysis, settings

    async def _access_token(self, now: datetime) -> str:
        record = await self.store.get_token(self.user_id)
        if record is None:
            raise AuthExpiredError(
                "authorize", "Budget account not connected; run 'newsletter connect'"
            )
        if now - record.obtained_at <= TOKEN_MAX_AGE:
            return record.access_token

        logger.info("Refreshing budget token (age %s)", now - record.obtained_at)
        refreshed = await self.provider.refresh(record.refresh_token, now)
        await self.store.put_token(self.user_id, refreshed)
        return refreshed.access_token

    async def _load_context(self) -> tuple[CspSettings, NewsletterSettings, list[Snapshot]]:
        document, snapshots = await asyncio.gather(
            self.store.get_settings(self.user_id),
            self._history(),
        )
        csp = parse_csp_settings(document.get("csp"))
        settings = parse_newsletter_settings(
            document.get("newsletter"), self.config.recipients, self.config.timezone
        )
        return csp, settings, snapshots

    async def _history(self) -> list[Snapshot]:
        try:
            return await self.store.list_snapshots(self.user_id, limit=SNAPSHOT_HISTORY)
        except IndexMissingError as exc:
            logger.warning("Snapshot index missing, comparing without history: %s", exc.message)
            return []

    async def _commentary(self, analysis: Analysis, skip_ai: bool) -> Commentary:
        template = template_commentary(analysis)
        if skip_ai or self.config.llm_provider == "none":
            return Commentary(text=template, source="template")
        return await write_commentary(
            self.llm,
            build_prompt(analysis),
            [self.config.llm_model, self.config.llm_fallback_model],
            self.config.llm_max_tokens,
            template,
        )

    async def _save_snapshot(self, state: _RunState, analysis: Analysis) -> str | None:
        snapshot = build_snapshot(analysis, self.user_id, self._now())
        try:
            snapshot_id = await self.store.add_snapshot(snapshot)
        except PersistenceFailedError as exc:
            state.record(exc)
            return None
        logger.info("Saved snapshot %s", snapshot_id)
        return snapshot_id

    async def _deliver(
        self, state: _RunState, recipients: list[str], subject: str, html: str
    ) -> None:
        state.delivery_attempted = True
        state.recipients = list(recipients)
        if not recipients:
            state.record(ConfigMissingError("deliver", "No recipients configured"))
            return

        text = html_to_text(html)
        from_address = sender(self.config.mail_from_name, self.config.from_email)
        for recipient in recipients:
            message = EmailMessage(from_address, recipient, subject, html, text)
            try:
                await self.mailer.send(message)
            except DeliveryFailedError as exc:
                state.record(exc)
                continue
            state.emails_sent += 1
        logger.info("Delivered %d of %d emails", state.emails_sent, len(recipients))

    async def _finish(self, state: _RunState, skipped_after: RunLog | None = None) -> RunResult:
        """Write the run log and build the result. Always the last write."""
        status = STATUS_SKIPPED if skipped_after is not None else state.status()
        log = RunLog(
            user_id=self.user_id,
            started_at=state.started_at,
            completed_at=self._now(),
            status=status,
            trigger=state.trigger,
            errors=list(state.errors),
            recipients=state.recipients,
            emails_sent=state.emails_sent,
            ai_tokens=state.ai_tokens,
            ai_fallback=state.ai_fallback,
            snapshot_id=state.snapshot_id,
            reason=SKIP_REASON if skipped_after is not None else "",
        )

        result = RunResult(
            status=status,
            snapshot_id=state.snapshot_id,
            emails_sent=state.emails_sent,
            ai_tokens=state.ai_tokens,
            errors=list(state.errors),
            subject=state.subject,
        )
        if skipped_after is not None:
            result.reason = SKIP_REASON
            result.last_sent_at = skipped_after.completed_at

        try:
            result.log_id = await self.store.add_log(log)
        except PersistenceFailedError as exc:
            logger.error("Could not write run log: %s", exc)
            result.errors.append(exc.to_stage_error())

        logger.info(
            "Newsletter run finished: %s (%d emails, %d errors)",
            status,
            state.emails_sent,
            len(result.errors),
        )
        return result

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _today(now: datetime, tz: str) -> date:
        return now.astimezone(ZoneInfo(tz)).date()

    def _fetch_since(self, today: date) -> date:
        """Earliest day any metric or comparison looks at."""
        period_start, _ = period_bounds(today, self.config.period_months)
        return min(date(today.year - 1, 1, 1), period_start)
