"""Preview writer and run summary printer.

- :func:`write_preview` saves rendered newsletter HTML to the output directory.
- :func:`format_run_summary` turns a :class:`RunResult` into the short
  report the CLI prints after ``send``.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

from budget_newsletter.models import STATUS_SKIPPED, RunLog, RunResult


# ---------------------------------------------------------------------------
# File output
# ---------------------------------------------------------------------------


def write_preview(html: str, output_dir: str | Path, week_ending: date) -> Path:
    """Write *html* to ``output_dir/newsletter-YYYY-MM-DD.html``.

    Overwrites a preview for the same week.

    Returns:
        The :class:`~pathlib.Path` to the written file.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"newsletter-{week_ending.isoformat()}.html"
    output_path.write_text(html, encoding="utf-8")
    return output_path


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def format_run_summary(result: RunResult) -> str:
    """Human-readable summary of one run."""
    lines = ["", "== Newsletter Run ==", f"  Status:        {result.status}"]

    if result.status == STATUS_SKIPPED:
        last = result.last_sent_at.isoformat() if result.last_sent_at else "unknown"
        lines.append(f"  Reason:        {result.reason}")
        lines.append(f"  Last sent at:  {last}")
    else:
        if result.subject:
            lines.append(f"  Subject:       {result.subject}")
        lines.append(f"  Snapshot:      {result.snapshot_id or '-'}")
        lines.append(f"  Emails sent:   {result.emails_sent}")
        lines.append(f"  AI tokens:     {result.ai_tokens}")

    if result.errors:
        lines.append("")
        lines.append(f"Errors ({len(result.errors)}):")
        for error in result.errors:
            lines.append(f"  [{error.stage}] {error.kind}: {error.message}")

    lines.append("")
    return "\n".join(lines)


def format_log_line(log: RunLog) -> str:
    """One line per run for ``newsletter logs``."""
    started = log.started_at.strftime("%Y-%m-%d %H:%M")
    line = (
        f"{started}  {log.status:<8} {log.trigger:<9} "
        f"emails={log.emails_sent} tokens={log.ai_tokens} {log.duration_ms}ms"
    )
    if log.reason:
        line += f"  ({log.reason})"
    if log.errors:
        line += "  errors: " + "; ".join(f"[{e.stage}] {e.message}" for e in log.errors)
    return line
