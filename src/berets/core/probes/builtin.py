"""
Built-in probes.

Every probe has the signature ``probe(ctx, params, timeout) -> ProbeResult``
and only reads system state.  Probes that run a command report
Indeterminate when the inspection tool itself is missing or times out,
unless the catalog sets ``when_missing: unsatisfied`` (e.g. "no nix binary"
really does mean "no nix profile entry").

``timeout`` covers the whole probe; probes that run one command per
package or user share it through a ``Deadline``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from berets.adapters.filesystem import read_text
from berets.adapters.process import Deadline, ProcessResult
from berets.core.context import RunContext
from berets.core.models.outcome import ProbeResult
from berets.core.probes.registry import ProbeFn, ProbeRegistry
from berets.core.services.markers import file_has_block

logger = logging.getLogger(__name__)

BUILTIN_PROBES: dict[str, ProbeFn] = {}

# nix probes and actions both need the flakes CLI, whatever nix.conf says
NIX_ENV = {"NIX_CONFIG": "experimental-features = nix-command flakes"}


def probe(name: str):
    """Decorator: add a function to the built-in probe table."""

    def _register(fn: ProbeFn) -> ProbeFn:
        BUILTIN_PROBES[name] = fn
        return fn

    return _register


def default_probe_registry() -> ProbeRegistry:
    """A fresh registry holding every built-in probe."""
    registry = ProbeRegistry()
    for name, fn in BUILTIN_PROBES.items():
        registry.register(name, fn)
    return registry


# ── Helpers ─────────────────────────────────────────────────────────


def as_list(value: Any) -> list[str]:
    """Accept a scalar or a list param and return a list of strings."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _inspect(
    ctx: RunContext,
    params: dict[str, Any],
    command: str,
    args: list[str],
    timeout: float,
    env_overrides: dict[str, str] | None = None,
) -> ProcessResult | ProbeResult:
    """Run an inspection command.

    Returns the ProcessResult when the command ran (whatever its exit code),
    or a ready-made ProbeResult when it could not answer.
    """
    result = ctx.runner.run(command, args, timeout=timeout, env_overrides=env_overrides)
    if result.spawn_error:
        if params.get("when_missing") == "unsatisfied":
            return ProbeResult.unmet(f"{command} not available")
        return ProbeResult.unknown(f"Cannot check: {result.describe_failure()}")
    if result.timed_out:
        return ProbeResult.unknown(result.describe_failure(), timed_out=True)
    return result


def _combine(
    hits: dict[str, bool], match: str, what: str,
) -> ProbeResult:
    """Fold per-name answers into one result (``all`` or ``any`` must hold)."""
    present = [name for name, ok in hits.items() if ok]
    absent = [name for name, ok in hits.items() if not ok]
    if match == "any":
        if present:
            return ProbeResult.met(detail=f"{what} present: {', '.join(present)}")
        return ProbeResult.unmet(f"no {what} present")
    if absent:
        return ProbeResult.unmet(f"{what} missing: {', '.join(absent)}")
    return ProbeResult.met(detail=f"{what} present: {', '.join(present)}")


# ── Commands and files ──────────────────────────────────────────────


@probe("command_exists")
def command_exists(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    names = as_list(params.get("names") or params["name"])
    hits = {name: ctx.has_command(name) for name in names}
    return _combine(hits, params.get("match", "all"), "command")


@probe("command_output")
def command_output(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    """Satisfied when ``argv`` exits 0 and, if given, ``contains`` is in stdout."""
    argv = as_list(params["argv"])
    outcome = _inspect(ctx, params, argv[0], argv[1:], timeout)
    if isinstance(outcome, ProbeResult):
        return outcome
    if not outcome.ok:
        return ProbeResult.unmet(outcome.describe_failure())

    needle = params.get("contains")
    output = outcome.stdout + outcome.stderr
    first_line = output.strip().splitlines()[0] if output.strip() else ""
    if needle and needle not in output:
        return ProbeResult.unmet(f"output of {argv[0]} does not contain '{needle}'")
    return ProbeResult.met(detail=first_line)


@probe("path_exists")
def path_exists(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    paths = [ctx.path(p) for p in as_list(params.get("paths") or params["path"])]
    kind = params.get("type", "any")
    executable = bool(params.get("executable", False))

    def _holds(path: Path) -> bool:
        if kind == "file" and not path.is_file():
            return False
        if kind == "dir" and not path.is_dir():
            return False
        if kind == "any" and not (path.exists() or path.is_symlink()):
            return False
        return not executable or os.access(path, os.X_OK)

    hits = {str(p): _holds(p) for p in paths}
    return _combine(hits, params.get("match", "all"), "path")


@probe("file_contains")
def file_contains(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    path = ctx.path(params["path"])
    needle = params["text"]
    try:
        text = read_text(path)
    except OSError as e:
        return ProbeResult.unknown(f"Cannot read {path}: {e.strerror or e}")
    if text is None:
        return ProbeResult.unmet(f"{path} does not exist")
    return ProbeResult.from_bool(needle in text, reason=f"'{needle}' not in {path}")


@probe("marker_present")
def marker_present(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    path = ctx.path(params["path"])
    block = params["block"]
    try:
        present = file_has_block(path, block)
    except OSError as e:
        return ProbeResult.unknown(f"Cannot read {path}: {e.strerror or e}")
    return ProbeResult.from_bool(present, reason=f"block {block} not in {path}")


def links_into(directory: Path, prefix: str) -> list[Path]:
    """Symlinks directly inside ``directory`` whose target lies under ``prefix``."""
    if not directory.is_dir():
        return []
    root = prefix.rstrip("/") + "/"
    return sorted(
        entry for entry in directory.iterdir()
        if entry.is_symlink() and os.readlink(entry).startswith(root)
    )


@probe("symlinks_into")
def symlinks_into(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    """Satisfied when ``dir`` holds at least one symlink into ``target_prefix``."""
    directory = ctx.path(params["dir"])
    try:
        links = links_into(directory, params["target_prefix"])
    except OSError as e:
        return ProbeResult.unknown(f"Cannot list {directory}: {e.strerror or e}")
    return ProbeResult.from_bool(
        bool(links),
        reason=f"no links into {params['target_prefix']} in {directory}",
        detail=f"{len(links)} links",
    )


@probe("repo_enabled")
def repo_enabled(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    """Satisfied when a non-comment line of the apk repositories file names ``repo``."""
    path = ctx.path(params.get("path") or ctx.vars["apk_repositories"])
    repo = params.get("repo", "community")
    try:
        text = read_text(path)
    except OSError as e:
        return ProbeResult.unknown(f"Cannot read {path}: {e.strerror or e}")
    if text is None:
        return ProbeResult.unknown(f"Cannot read {path}: file does not exist")
    lines = text.splitlines()

    pattern = re.compile(rf"/{re.escape(repo)}/?$")
    for line in lines:
        line = line.strip()
        if line and not line.startswith("#") and pattern.search(line):
            return ProbeResult.met(detail=line)
    return ProbeResult.unmet(f"{repo} repository not enabled in {path}")


# ── Packages ────────────────────────────────────────────────────────


@probe("apk_installed")
def apk_installed(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    deadline = Deadline(timeout)
    hits: dict[str, bool] = {}
    for package in as_list(params.get("packages") or params["package"]):
        outcome = _inspect(ctx, params, "apk", ["info", "-e", package], deadline.remaining())
        if isinstance(outcome, ProbeResult):
            return outcome
        hits[package] = outcome.ok
    return _combine(hits, params.get("match", "all"), "package")


@probe("nix_profile_has")
def nix_profile_has(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    entry = params["entry"]
    outcome = _inspect(ctx, params, "nix", ["profile", "list"], timeout, env_overrides=NIX_ENV)
    if isinstance(outcome, ProbeResult):
        return outcome
    if not outcome.ok:
        return ProbeResult.unknown(f"Cannot list nix profile: {outcome.describe_failure()}")
    return ProbeResult.from_bool(
        entry in outcome.stdout,
        reason=f"{entry} not in nix profile",
        detail=entry,
    )


# ── Services and users ──────────────────────────────────────────────


@probe("service_running")
def service_running(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    service = params["service"]
    outcome = _inspect(ctx, params, "rc-service", [service, "status"], timeout)
    if isinstance(outcome, ProbeResult):
        return outcome
    return ProbeResult.from_bool(outcome.ok, reason=f"{service} is not running")


def parse_rc_update(output: str) -> dict[str, list[str]]:
    """Parse ``rc-update show`` lines (``  name | runlevel ...``) into a map."""
    services: dict[str, list[str]] = {}
    for line in output.splitlines():
        if "|" not in line:
            continue
        name, _, levels = line.partition("|")
        name = name.strip()
        if name:
            services[name] = levels.split()
    return services


@probe("service_enabled")
def service_enabled(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    runlevel = params.get("runlevel", "default")
    outcome = _inspect(ctx, params, "rc-update", ["show", "-v"], timeout)
    if isinstance(outcome, ProbeResult):
        return outcome
    if not outcome.ok:
        return ProbeResult.unknown(f"Cannot list services: {outcome.describe_failure()}")

    enabled = parse_rc_update(outcome.stdout)
    hits = {
        service: runlevel in enabled.get(service, [])
        for service in as_list(params.get("services") or params["service"])
    }
    return _combine(hits, params.get("match", "all"), "service")


@probe("user_exists")
def user_exists(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    deadline = Deadline(timeout)
    hits: dict[str, bool] = {}
    for user in as_list(params.get("users") or params["user"]):
        outcome = _inspect(ctx, params, "id", ["-u", user], deadline.remaining())
        if isinstance(outcome, ProbeResult):
            return outcome
        hits[user] = outcome.ok
    return _combine(hits, params.get("match", "all"), "user")


# ── Environment ─────────────────────────────────────────────────────


@probe("disk_space")
def disk_space(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    """Satisfied when ``path`` has at least ``min_mb`` megabytes available."""
    path = params.get("path", "/")
    required = int(params["min_mb"])
    outcome = _inspect(ctx, params, "df", ["-m", path], timeout)
    if isinstance(outcome, ProbeResult):
        return outcome

    lines = outcome.stdout.strip().splitlines()
    try:
        available = int(lines[-1].split()[3])
    except (IndexError, ValueError):
        return ProbeResult.unknown(f"Cannot parse df output for {path}")

    return ProbeResult.from_bool(
        available >= required,
        reason=f"Insufficient disk space. Required: {required}MB, Available: {available}MB",
        detail=f"{available}MB available",
    )


@probe("effective_user")
def effective_user(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    """Satisfied when this process runs with effective uid ``uid`` (root by default).

    doas and sudo both set the effective uid, so either one passes.
    """
    wanted = int(params.get("uid", 0))
    current = os.geteuid()
    return ProbeResult.from_bool(
        current == wanted,
        reason=f"running as uid {current}, uid {wanted} required",
        detail=f"uid {current}",
    )


@probe("internet")
def internet(ctx: RunContext, params: dict[str, Any], timeout: float) -> ProbeResult:
    return ProbeResult.from_bool(ctx.has_internet(timeout), reason="no internet connectivity")
