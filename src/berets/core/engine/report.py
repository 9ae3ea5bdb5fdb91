"""
Report rendering and exit codes.

``render_report`` produces the human-readable summary shown at the end of
a run: one line per processed item in declaration order, remediation hints
for failed items, then a single overall status line.
"""

from __future__ import annotations

import click

from berets.core.models.report import ItemOutcome, ReconciliationResult, RunReport, RunStatus

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

_OUTCOME_STYLE: dict[ItemOutcome, tuple[str, str]] = {
    ItemOutcome.ALREADY_SATISFIED: ("✅", "green"),
    ItemOutcome.APPLIED: ("🔧", "green"),
    ItemOutcome.WOULD_APPLY: ("📝", "cyan"),
    ItemOutcome.SKIPPED: ("⚠️ ", "yellow"),
    ItemOutcome.FAILED: ("❌", "red"),
}

_OUTCOME_LABEL = {
    ItemOutcome.ALREADY_SATISFIED: "ok",
    ItemOutcome.APPLIED: "applied",
    ItemOutcome.WOULD_APPLY: "would apply",
    ItemOutcome.SKIPPED: "skipped",
    ItemOutcome.FAILED: "FAILED",
}

_STATUS_STYLE = {
    RunStatus.SUCCESS: ("✅", "green", "Success"),
    RunStatus.SUCCESS_WITH_WARNINGS: ("⚠️ ", "yellow", "Success with warnings"),
    RunStatus.FAILED: ("❌", "red", "Failed"),
}


def exit_code(report: RunReport) -> int:
    """Process exit status for a finished run.

    Success and success-with-warnings are both 0; a critical failure is 1;
    an operator interrupt is 130.
    """
    if report.cancelled:
        return EXIT_INTERRUPTED
    if report.status == RunStatus.FAILED:
        return EXIT_FAILED
    return EXIT_OK


def render_result(result: ReconciliationResult, verbose: bool = False) -> list[str]:
    icon, color = _OUTCOME_STYLE[result.outcome]
    label = _OUTCOME_LABEL[result.outcome]
    critical = " [critical]" if result.critical else ""
    lines = [f"   {icon} {result.name}{critical} " + click.style(label, fg=color)]

    if result.error:
        lines.append(click.style(f"      {result.error}", fg=color))
    for warning in result.warnings:
        lines.append(click.style(f"      {warning}", fg="yellow"))
    if result.detail and (verbose or result.outcome == ItemOutcome.WOULD_APPLY):
        for line in result.detail.splitlines()[-5:]:
            lines.append(click.style(f"      {line}", dim=True))
    if verbose:
        lines.append(click.style(f"      ({result.duration_ms}ms)", dim=True))
    return lines


def render_report(report: RunReport, verbose: bool = False) -> str:
    """Render a run report as terminal text (with ANSI styles)."""
    title = report.mode.capitalize() + (" (dry run)" if report.dry_run else "")
    lines = [click.style(f"\n📋 {title}", fg="cyan", bold=True)]
    if report.operation_id:
        lines.append(click.style(f"   {report.operation_id}", dim=True))
    lines.append("")

    for result in report.results:
        lines.extend(render_result(result, verbose=verbose))

    if report.not_processed:
        reason = "halted" if report.halted_by else "cancelled"
        lines.append(click.style(
            f"   ⊘ {report.not_processed} item(s) not processed ({reason})", fg="yellow",
        ))

    hints = [r for r in report.failed if r.remediation]
    if hints:
        lines.append("")
        lines.append(click.style("   Remediation:", bold=True))
        for result in hints:
            lines.append(f"     {result.name}:")
            lines.extend(f"       {hint}" for hint in result.remediation)

    lines.append("")
    lines.append(status_line(report))
    return "\n".join(lines)


def status_line(report: RunReport) -> str:
    icon, color, label = _STATUS_STYLE[report.status]
    counts = (
        f"{report.total}/{report.declared_items} processed, "
        f"{len(report.applied)} applied, {len(report.failed)} failed, "
        f"{len(report.warnings)} warnings"
    )
    if report.dry_run:
        would = sum(1 for r in report.results if r.outcome == ItemOutcome.WOULD_APPLY)
        counts += f", {would} would apply"
    suffix = ""
    if report.halted_by:
        suffix = f" (halted by {report.halted_by})"
    elif report.cancelled:
        suffix = " (interrupted)"
    return click.style(f"{icon} {label}{suffix}", fg=color, bold=True) + f"  {counts}"
