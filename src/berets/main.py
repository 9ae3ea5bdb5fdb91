"""
The Black Berets workstation provisioner — CLI entrypoint.

Usage:
    berets provision [--dry-run]
    berets teardown [--dry-run] [--yes]
    berets catalog [provision|teardown]
    berets history
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from berets import __version__
from berets.core.engine.report import EXIT_CONFIG_ERROR, EXIT_INTERRUPTED, exit_code, render_report
from berets.core.observability.logging_config import resolve_level, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="berets")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to berets.yml (default: $BERETS_CONFIG or auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """The Black Berets — provision and tear down an Alpine security workstation."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose or debug
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(level=resolve_level(verbose=verbose, quiet=quiet, debug=debug))


# ── Interrupt handling ──────────────────────────────────────────────


@contextmanager
def _interruptible(cancel_event: threading.Event) -> Iterator[None]:
    """First Ctrl-C sets ``cancel_event``; a second one aborts immediately.

    Commands run in their own session, so the terminal's SIGINT only
    reaches this process and the in-flight command finishes normally.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        click.secho(
            "\n⏸  Interrupt received, stopping after the current item "
            "(Ctrl-C again to abort now)",
            fg="yellow", err=True,
        )

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _reconcile(
    ctx: click.Context,
    mode: str,
    dry_run: bool,
    as_json: bool,
    only: tuple[str, ...],
) -> None:
    from berets.core.use_cases.reconcile import run_reconcile

    cancel_event = threading.Event()
    try:
        with _interruptible(cancel_event):
            result = run_reconcile(
                mode,  # type: ignore[arg-type]
                config_path=ctx.obj.get("config_path"),
                dry_run=dry_run,
                only=list(only) or None,
                cancel_event=cancel_event,
            )
    except KeyboardInterrupt:
        click.secho("\n⛔ Aborted", fg="red", err=True)
        sys.exit(EXIT_INTERRUPTED)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(EXIT_CONFIG_ERROR)
    elif result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    report = result.report
    assert report is not None  # guaranteed after error check above

    if not as_json and not ctx.obj.get("quiet"):
        click.echo(render_report(report, verbose=ctx.obj.get("verbose", False)))
        if result.audit_path:
            click.secho(f"   📝 Logged to {result.audit_path}", dim=True)
    elif not as_json:
        click.echo(render_report(report).splitlines()[-1])

    code = exit_code(report)
    if code:
        sys.exit(code)


_only_option = click.option(
    "--only", "only", multiple=True, metavar="NAME",
    help="Reconcile only this item (repeatable).",
)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Probe only; show what would be applied.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@_only_option
@click.pass_context
def provision(ctx: click.Context, dry_run: bool, as_json: bool, only: tuple[str, ...]) -> None:
    """Install and configure everything the workstation needs."""
    _reconcile(ctx, "provision", dry_run, as_json, only)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Probe only; show what would be removed.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@_only_option
@click.pass_context
def teardown(
    ctx: click.Context, dry_run: bool, as_json: bool, yes: bool, only: tuple[str, ...],
) -> None:
    """Remove the desktop stack and everything provision installed."""
    if not (yes or dry_run):
        if as_json:
            # A prompt and its echoed answer would land in the JSON stream
            raise click.UsageError("teardown --json needs --yes (or --dry-run)")
        click.confirm(
            "This removes packages, users, services and files. Continue?",
            abort=True,
            err=True,
        )
    _reconcile(ctx, "teardown", dry_run, as_json, only)


@cli.command()
@click.argument("mode", type=click.Choice(["provision", "teardown"]), default="provision")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def catalog(ctx: click.Context, mode: str, as_json: bool) -> None:
    """List the items of a catalog in the order they run."""
    from berets.core.use_cases.catalog import describe_catalog

    result = describe_catalog(mode, config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(EXIT_CONFIG_ERROR)
        return

    if result.error or result.catalog is None:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    cat = result.catalog
    click.secho(f"\n📋 {cat.name} ({cat.mode})", fg="cyan", bold=True)
    if cat.description:
        click.echo(f"   {cat.description}")
    click.secho(f"   {result.path}", dim=True)
    click.echo()

    for index, entry in enumerate(cat.items, start=1):
        critical = click.style(" [critical]", fg="red") if entry.critical else ""
        action = entry.action.kind if entry.action else "check only"
        negate = "not " if entry.probe.negate else ""
        click.echo(f"   {index:2d}. {entry.name}{critical}")
        click.secho(f"       {negate}{entry.probe.kind} → {action}", dim=True)
        if entry.description and ctx.obj.get("verbose"):
            click.echo(f"       {entry.description}")

    if cat.not_undone:
        click.echo()
        click.secho("   Left in place:", bold=True)
        for name, reason in cat.not_undone.items():
            click.echo(f"     • {name}: {reason}")

    if result.uncovered:
        click.echo()
        click.secho(
            f"   ⚠️  No teardown for: {', '.join(result.uncovered)}", fg="yellow",
        )


@cli.command()
@click.option("-n", "count", type=int, default=10, show_default=True, help="Number of runs.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent provision and teardown runs."""
    from berets.core.use_cases.history import read_history

    result = read_history(config_path=ctx.obj.get("config_path"), n=count)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(EXIT_CONFIG_ERROR)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    if not result.entries:
        click.echo("No runs recorded yet.")
        return

    status_color = {"success": "green", "success_with_warnings": "yellow", "failed": "red"}
    click.secho(f"\n📜 Recent runs ({result.path})", fg="cyan", bold=True)
    for entry in reversed(result.entries):
        click.echo(f"   {entry.timestamp[:19]}  {entry.mode:<9} ", nl=False)
        click.secho(f"{entry.status:<22}", fg=status_color.get(entry.status, "white"), nl=False)
        click.echo(
            f" {entry.items_applied} applied, {entry.items_failed} failed"
            + (f"  halted by {entry.halted_by}" if entry.halted_by else "")
            + ("  interrupted" if entry.cancelled else "")
        )
        if entry.failed and ctx.obj.get("verbose"):
            click.secho(f"      failed: {', '.join(entry.failed)}", fg="red")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
