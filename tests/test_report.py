"""
Tests for run report status, rendering and exit codes.
"""

import click

from berets.core.engine.report import (
    EXIT_FAILED,
    EXIT_INTERRUPTED,
    EXIT_OK,
    exit_code,
    render_report,
    status_line,
)
from berets.core.models.outcome import ProbeState
from berets.core.models.report import ItemOutcome, ReconciliationResult, RunReport, RunStatus


def _result(name, outcome, critical=False, **kwargs):
    return ReconciliationResult(
        name=name,
        critical=critical,
        initial_state=ProbeState.UNSATISFIED,
        outcome=outcome,
        applied=outcome == ItemOutcome.APPLIED,
        **kwargs,
    )


def _report(*results, **kwargs):
    kwargs.setdefault("declared_items", len(results))
    return RunReport(operation_id="provision-test", results=list(results), **kwargs)


def _plain(text):
    return click.unstyle(text)


class TestStatus:
    def test_success(self):
        report = _report(
            _result("a", ItemOutcome.ALREADY_SATISFIED),
            _result("b", ItemOutcome.APPLIED),
        )
        assert report.status == RunStatus.SUCCESS
        assert exit_code(report) == EXIT_OK

    def test_warnings_exit_zero(self):
        report = _report(
            _result("a", ItemOutcome.SKIPPED, warnings=("Could not check a",)),
            _result("b", ItemOutcome.FAILED, error="boom"),
        )
        assert report.status == RunStatus.SUCCESS_WITH_WARNINGS
        assert exit_code(report) == EXIT_OK

    def test_critical_failure(self):
        report = _report(
            _result("a", ItemOutcome.FAILED, critical=True, error="boom"),
            declared_items=4, halted_by="a",
        )
        assert report.status == RunStatus.FAILED
        assert report.not_processed == 3
        assert exit_code(report) == EXIT_FAILED

    def test_cancelled(self):
        report = _report(_result("a", ItemOutcome.APPLIED), declared_items=2, cancelled=True)
        assert report.status == RunStatus.FAILED
        assert exit_code(report) == EXIT_INTERRUPTED

    def test_to_dict(self):
        report = _report(_result("a", ItemOutcome.APPLIED))
        data = report.to_dict()
        assert data["status"] == "success"
        assert data["applied"] == 1
        assert data["results"][0]["outcome"] == "applied"
        assert data["results"][0]["initial_state"] == "unsatisfied"


class TestRender:
    def test_lines_in_order(self):
        text = _plain(render_report(_report(
            _result("disk-space", ItemOutcome.ALREADY_SATISFIED),
            _result("nix-package", ItemOutcome.APPLIED),
        )))
        assert "📋 Provision" in text
        assert text.index("disk-space ok") < text.index("nix-package applied")
        assert "Success" in text.splitlines()[-1]

    def test_failure_with_remediation(self):
        text = _plain(render_report(_report(
            _result("base-packages", ItemOutcome.FAILED, critical=True,
                    error="Failed to install bash", remediation=("apk update",)),
            declared_items=5, halted_by="base-packages",
        )))
        assert "base-packages [critical] FAILED" in text
        assert "Failed to install bash" in text
        assert "Remediation:" in text
        assert "apk update" in text
        assert "4 item(s) not processed (halted)" in text
        assert "Failed (halted by base-packages)" in text

    def test_dry_run(self):
        report = _report(
            _result("just-package", ItemOutcome.WOULD_APPLY, detail="command missing: just"),
            dry_run=True,
        )
        text = _plain(render_report(report))
        assert "Provision (dry run)" in text
        assert "just-package would apply" in text
        assert "command missing: just" in text
        assert "1 would apply" in text

    def test_verbose_shows_duration(self):
        report = _report(_result("a", ItemOutcome.APPLIED, duration_ms=12, detail="made a"))
        assert "(12ms)" in _plain(render_report(report, verbose=True))
        assert "(12ms)" not in _plain(render_report(report))

    def test_status_line_counts(self):
        report = _report(
            _result("a", ItemOutcome.APPLIED),
            _result("b", ItemOutcome.SKIPPED, warnings=("w",)),
            declared_items=3, cancelled=True,
        )
        line = _plain(status_line(report))
        assert line.startswith("❌ Failed (interrupted)")
        assert "2/3 processed, 1 applied, 0 failed, 1 warnings" in line
