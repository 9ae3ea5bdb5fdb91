"""
Built-in actions.

Every action has the signature ``action(ctx, params, timeout) -> ApplyResult``
and is idempotent: running it again once the state holds is a no-op or a
harmless re-assertion.  Actions report what they did; the reconciler
re-probes to decide whether the state now holds.

``timeout`` covers the whole action.  Actions that run several commands
share it through a ``Deadline``.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any

from berets.adapters.filesystem import read_text, remove_path as _remove, write_text_atomic
from berets.adapters.process import Deadline, ProcessResult, tail_text
from berets.core.actions.registry import ActionFn, ActionRegistry
from berets.core.context import RunContext
from berets.core.models.outcome import ApplyResult
from berets.core.probes.builtin import NIX_ENV, as_list, links_into, parse_rc_update
from berets.core.services.markers import ensure_block, strip_block
from berets.core.services.snippets import render_snippet, render_text

logger = logging.getLogger(__name__)

BUILTIN_ACTIONS: dict[str, ActionFn] = {}


def action(name: str):
    """Decorator: add a function to the built-in action table."""

    def _register(fn: ActionFn) -> ActionFn:
        BUILTIN_ACTIONS[name] = fn
        return fn

    return _register


def default_action_registry() -> ActionRegistry:
    """A fresh registry holding every built-in action."""
    registry = ActionRegistry()
    for name, fn in BUILTIN_ACTIONS.items():
        registry.register(name, fn)
    return registry


# ── Helpers ─────────────────────────────────────────────────────────


def _failed(result: ProcessResult, prefix: str = "") -> ApplyResult:
    """Turn an unsuccessful ProcessResult into a failed ApplyResult."""
    message = result.describe_failure()
    return ApplyResult.failure(
        f"{prefix}{message}" if prefix else message,
        output=tail_text(result.stdout + result.stderr),
        timed_out=result.timed_out,
        spawn_error=result.spawn_error is not None,
    )


def _out_of_time(deadline: Deadline, what: str) -> ApplyResult:
    return ApplyResult.failure(
        f"{what}: time budget of {deadline.seconds:g}s used up", timed_out=True,
    )


def parse_mode(value: Any) -> int | None:
    """File mode from a catalog param: ``0755``, ``"0755"`` or ``493``."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 8)


def _render(ctx: RunContext, params: dict[str, Any]) -> str:
    """File content from ``content`` or a rendered ``snippet``.

    ``which`` maps placeholder names to commands resolved on PATH at apply
    time (e.g. the real ``just`` binary a wrapper must exec).

    Raises:
        LookupError: A ``which`` command is not installed.
    """
    values = {k: str(v) for k, v in (params.get("values") or {}).items()}
    for placeholder, command in (params.get("which") or {}).items():
        resolved = ctx.command_path(command)
        if resolved is None:
            raise LookupError(f"Could not find the {command} binary on PATH")
        values[placeholder] = resolved

    if "snippet" in params:
        return render_snippet(params["snippet"], values)
    return render_text(params["content"], values) if values else params["content"]


# ── Packages ────────────────────────────────────────────────────────


@action("apk_add")
def apk_add(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    packages = as_list(params.get("packages") or params["package"])
    deadline = Deadline(timeout)

    if params.get("update", True):
        update = ctx.runner.run("apk", ["update"], timeout=deadline.remaining())
        if update.spawn_error or deadline.expired:
            return _failed(update)
        if not update.ok:
            logger.warning("apk update failed, installing from cached index: %s",
                           update.describe_failure())

    result = ctx.runner.run("apk", ["add", "--no-cache", *packages], timeout=deadline.remaining())
    if not result.ok:
        return _failed(result, prefix=f"Failed to install {', '.join(packages)}: ")
    return ApplyResult.success(
        output=tail_text(result.stdout, lines=5),
        metadata={"packages": packages},
    )


@action("apk_del")
def apk_del(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Remove the listed packages that are installed; the others are skipped."""
    deadline = Deadline(timeout)
    installed: list[str] = []
    for package in as_list(params.get("packages") or params["package"]):
        check = ctx.runner.run("apk", ["info", "-e", package], timeout=deadline.remaining())
        if check.spawn_error or check.timed_out:
            return _failed(check)
        if check.ok:
            installed.append(package)

    if not installed:
        return ApplyResult.success(output="No listed packages installed")

    args = ["del"]
    if params.get("purge", False):
        args.append("--purge")
    result = ctx.runner.run("apk", [*args, *installed], timeout=deadline.remaining())
    if not result.ok:
        return _failed(result, prefix=f"Failed to remove {', '.join(installed)}: ")
    return ApplyResult.success(
        output=f"Removed {len(installed)} packages",
        metadata={"packages": installed},
    )


def alpine_branch(release_file: Path) -> str:
    """``v3.19`` for a ``3.19.1`` release file, ``edge`` when unknown."""
    text = read_text(release_file)
    match = re.match(r"^(\d+)\.(\d+)", text.strip()) if text else None
    if match is None:
        return "edge"
    return f"v{match.group(1)}.{match.group(2)}"


@action("enable_repo")
def enable_repo(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Append the repository line for the running Alpine release."""
    path = ctx.path(params.get("path") or ctx.vars["apk_repositories"])
    repo = params.get("repo", "community")
    release_file = ctx.path(params.get("release_file") or ctx.vars["alpine_release"])
    mirror = (params.get("mirror") or ctx.vars["alpine_mirror"]).rstrip("/")

    line = f"{mirror}/{alpine_branch(release_file)}/{repo}"
    text = read_text(path) or ""
    active = [ln.strip() for ln in text.splitlines() if ln.strip() and not ln.lstrip().startswith("#")]
    if line in active:
        return ApplyResult.success(output=f"{line} already enabled")

    if text and not text.endswith("\n"):
        text += "\n"
    write_text_atomic(path, text + line + "\n")
    logger.info("Enabled repository %s in %s", line, path)
    return ApplyResult.success(output=f"Added {line}", metadata={"line": line})


# ── Files ───────────────────────────────────────────────────────────


@action("write_file")
def write_file(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    path = ctx.path(params["path"])
    mode = parse_mode(params.get("mode"))
    try:
        content = _render(ctx, params)
    except LookupError as e:
        return ApplyResult.failure(str(e), spawn_error=True)

    if read_text(path) == content:
        if mode is not None and (path.stat().st_mode & 0o7777) != mode:
            path.chmod(mode)
        return ApplyResult.success(output=f"{path} already up to date")

    write_text_atomic(path, content, mode=mode)
    logger.info("Wrote %s", path)
    return ApplyResult.success(output=f"Wrote {path}", metadata={"path": str(path)})


@action("append_block")
def append_block(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    path = ctx.path(params["path"])
    block = params["block"]
    try:
        body = _render(ctx, params)
    except LookupError as e:
        return ApplyResult.failure(str(e), spawn_error=True)

    changed = ensure_block(path, block, body, mode=parse_mode(params.get("mode")))
    if not changed:
        return ApplyResult.success(output=f"Block {block} already in {path}")
    return ApplyResult.success(output=f"Added block {block} to {path}")


@action("remove_block")
def remove_block(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    path = ctx.path(params["path"])
    removed = [
        block for block in as_list(params.get("blocks") or params["block"])
        if strip_block(path, block)
    ]
    if not removed:
        return ApplyResult.success(output=f"No blocks to remove from {path}")
    return ApplyResult.success(output=f"Removed {', '.join(removed)} from {path}")


@action("remove_path")
def remove_path(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    removed: list[str] = []
    errors: list[str] = []
    for raw in as_list(params.get("paths") or params["path"]):
        path = ctx.path(raw)
        try:
            if _remove(path):
                removed.append(str(path))
        except OSError as e:
            errors.append(f"{path}: {e.strerror or e}")

    if errors:
        return ApplyResult.failure(
            f"Could not remove {len(errors)} path(s): {'; '.join(errors)}",
            metadata={"removed": removed},
        )
    if removed:
        logger.info("Removed %s", ", ".join(removed))
    return ApplyResult.success(output=f"Removed {len(removed)} path(s)", metadata={"removed": removed})


@action("download")
def download(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Fetch ``url`` (then ``mirror``) to ``dest``; wget first, curl as fallback.

    A ``local`` file, when present, is copied instead of downloading.
    """
    dest = ctx.path(params["dest"])
    mode = parse_mode(params.get("mode")) or 0o644

    local = params.get("local")
    if local and Path(local).is_file():
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local, dest)
        dest.chmod(mode)
        return ApplyResult.success(output=f"Copied local {local}", metadata={"source": local})

    urls = [params["url"], *as_list(params.get("mirror"))]
    tools = [name for name in ("wget", "curl") if ctx.has_command(name)]
    if not tools:
        return ApplyResult.failure("Neither wget nor curl is available", spawn_error=True)

    deadline = Deadline(timeout)
    staging = ctx.temp_file(prefix="berets-download-", suffix=".part")
    failures: list[str] = []
    for url in urls:
        for tool in tools:
            if deadline.expired:
                return _out_of_time(deadline, f"Could not download {dest.name}")
            if tool == "wget":
                args = ["-qO", str(staging), url]
            else:
                args = ["-fsSL", url, "-o", str(staging)]
            result = ctx.runner.run(tool, args, timeout=deadline.remaining())
            if result.ok and staging.stat().st_size > 0:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(staging, dest)
                dest.chmod(mode)
                logger.info("Downloaded %s to %s", url, dest)
                return ApplyResult.success(output=f"Downloaded {url}", metadata={"source": url})
            failures.append(f"{tool} {url}: {result.describe_failure()}")

    return ApplyResult.failure(
        f"Could not download {dest.name}",
        output="\n".join(failures),
        timed_out=any("timed out" in f for f in failures),
    )


@action("symlink_bin")
def symlink_bin(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Link every executable of ``source_dir`` into ``bin_dir``.

    Regular files already in ``bin_dir`` are never replaced.
    """
    source = ctx.path(params["source_dir"])
    bin_dir = ctx.path(params.get("bin_dir") or ctx.vars["bin_dir"])
    if not source.is_dir():
        return ApplyResult.failure(f"{source} is not a directory")

    count = link_executables(source, bin_dir)
    return ApplyResult.success(output=f"Linked {count} executables into {bin_dir}")


def link_executables(source: Path, bin_dir: Path) -> int:
    bin_dir.mkdir(parents=True, exist_ok=True)
    count = 0
    for tool in sorted(source.iterdir()):
        if not (tool.is_file() and os.access(tool, os.X_OK)):
            continue
        link = bin_dir / tool.name
        target = tool.resolve()
        if link.is_symlink():
            if link.resolve() == target:
                continue
            link.unlink()
        elif link.exists():
            logger.debug("Not replacing regular file %s", link)
            continue
        link.symlink_to(target)
        count += 1
    return count


@action("unlink_bins")
def unlink_bins(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Remove symlinks in ``dir`` that point under ``target_prefix``."""
    directory = ctx.path(params["dir"])
    links = links_into(directory, params["target_prefix"])
    for link in links:
        link.unlink()
    return ApplyResult.success(output=f"Removed {len(links)} links from {directory}")


# ── Services ────────────────────────────────────────────────────────


@action("service_enable")
def service_enable(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    service = params["service"]
    runlevel = params.get("runlevel", "default")
    deadline = Deadline(timeout)

    added = ctx.runner.run("rc-update", ["add", service, runlevel], timeout=deadline.remaining())
    if not added.ok:
        return _failed(added, prefix=f"Failed to enable {service}: ")

    started = ctx.runner.run("rc-service", [service, "start"], timeout=deadline.remaining())
    if not started.ok:
        # Enabled for the next boot; start can fail in containers without openrc
        logger.warning("Could not start %s: %s", service, started.describe_failure())
        return ApplyResult.success(
            output=f"Enabled {service} (not started)",
            metadata={"started": False},
        )
    return ApplyResult.success(output=f"Enabled and started {service}", metadata={"started": True})


@action("service_disable")
def service_disable(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Stop services and drop them from every runlevel they are in."""
    services = as_list(params.get("services") or params["service"])
    deadline = Deadline(timeout)
    listing = ctx.runner.run("rc-update", ["show", "-v"], timeout=deadline.remaining())
    if not listing.ok:
        return _failed(listing, prefix="Cannot list services: ")
    enabled = parse_rc_update(listing.stdout)

    disabled: list[str] = []
    for service in services:
        if deadline.expired:
            return _out_of_time(deadline, f"Stopped at {service}")
        ctx.runner.run("rc-service", [service, "stop"], timeout=deadline.remaining())
        for runlevel in enabled.get(service, []):
            result = ctx.runner.run(
                "rc-update", ["del", service, runlevel], timeout=deadline.remaining(),
            )
            if not result.ok:
                return _failed(result, prefix=f"Failed to disable {service}: ")
            disabled.append(service)
        if params.get("remove_init_scripts", False):
            for script in (Path("/etc/init.d") / service, Path("/etc/conf.d") / service):
                _remove(script)

    return ApplyResult.success(
        output=f"Disabled {', '.join(sorted(set(disabled))) or 'nothing'}",
        metadata={"disabled": sorted(set(disabled))},
    )


# ── Users ───────────────────────────────────────────────────────────


@action("user_add")
def user_add(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    user = params["user"]
    group = params.get("group")
    deadline = Deadline(timeout)

    if ctx.runner.run("id", ["-u", user], timeout=deadline.remaining()).ok:
        return ApplyResult.success(output=f"User {user} already exists")

    if group:
        args = ["-g", str(params["gid"])] if params.get("gid") else []
        result = ctx.runner.run("addgroup", [*args, group], timeout=deadline.remaining())
        if result.spawn_error:
            return _failed(result)
        # An existing group is fine; adduser below reports a real problem

    args = ["-D", "-s", params.get("shell", "/bin/sh")]
    if params.get("uid"):
        args += ["-u", str(params["uid"])]
    if group:
        args += ["-G", group]
    result = ctx.runner.run("adduser", [*args, user], timeout=deadline.remaining())
    if not result.ok:
        return _failed(result, prefix=f"Failed to create user {user}: ")
    logger.info("Created user %s", user)
    return ApplyResult.success(output=f"Created user {user}")


@action("user_del")
def user_del(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    deadline = Deadline(timeout)
    removed: list[str] = []
    for user in as_list(params.get("users") or params["user"]):
        check = ctx.runner.run("id", ["-u", user], timeout=deadline.remaining())
        if check.spawn_error or check.timed_out:
            return _failed(check)
        if not check.ok:
            continue
        ctx.runner.run("pkill", ["-u", user], timeout=deadline.remaining())
        args = ["--remove-home"] if params.get("remove_home", True) else []
        result = ctx.runner.run("deluser", [*args, user], timeout=deadline.remaining())
        if not result.ok:
            return _failed(result, prefix=f"Failed to delete user {user}: ")
        removed.append(user)

    return ApplyResult.success(
        output=f"Removed {', '.join(removed) or 'no users'}",
        metadata={"removed": removed},
    )


# ── Nix profile ─────────────────────────────────────────────────────


@action("nix_profile_install")
def nix_profile_install(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """``nix profile install REF``; optionally link the package's bins.

    The install log goes to a temp file released at the end of the run;
    its tail is reported when the install fails.
    """
    ref = params["ref"]
    entry = params.get("entry", ref.rsplit("#", 1)[-1])
    deadline = Deadline(timeout)

    listing = ctx.runner.run(
        "nix", ["profile", "list"], timeout=deadline.remaining(), env_overrides=NIX_ENV,
    )
    if listing.spawn_error:
        return _failed(listing)
    if listing.ok and entry in listing.stdout:
        return ApplyResult.success(output=f"{entry} already in nix profile")

    log_file = ctx.temp_file(prefix=f"berets-{entry}-", suffix=".log")
    result = ctx.runner.run(
        "nix", ["profile", "install", ref], timeout=deadline.remaining(), env_overrides=NIX_ENV,
    )
    log_file.write_text(result.stdout + result.stderr, encoding="utf-8")
    if not result.ok:
        failure = _failed(result, prefix=f"Failed to install {entry} via nix profile: ")
        failure.metadata["log"] = str(log_file)
        return failure

    linked = 0
    if params.get("link_into"):
        out = ctx.temp_dir(prefix=f"berets-{entry}-") / "result"
        build = ctx.runner.run(
            "nix", ["build", ref, "--out-link", str(out)],
            timeout=deadline.remaining(), env_overrides=NIX_ENV,
        )
        if build.ok and (out / "bin").is_dir():
            linked = link_executables(out / "bin", ctx.path(params["link_into"]))
        else:
            logger.warning("Could not build %s for linking: %s", ref, build.describe_failure())

    return ApplyResult.success(
        output=f"Installed {entry}" + (f", linked {linked} tools" if linked else ""),
        metadata={"entry": entry, "linked": linked},
    )


@action("nix_profile_remove")
def nix_profile_remove(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    deadline = Deadline(timeout)
    removed: list[str] = []
    for entry in as_list(params.get("entries") or params["entry"]):
        listing = ctx.runner.run(
            "nix", ["profile", "list"], timeout=deadline.remaining(), env_overrides=NIX_ENV,
        )
        if listing.spawn_error or listing.timed_out:
            return _failed(listing)
        if entry not in listing.stdout:
            continue
        result = ctx.runner.run(
            "nix", ["profile", "remove", entry], timeout=deadline.remaining(), env_overrides=NIX_ENV,
        )
        if not result.ok:
            return _failed(result, prefix=f"Failed to remove {entry}: ")
        removed.append(entry)

    return ApplyResult.success(
        output=f"Removed {', '.join(removed) or 'nothing'} from nix profile",
        metadata={"removed": removed},
    )


# ── Generic ─────────────────────────────────────────────────────────


@action("run")
def run(ctx: RunContext, params: dict[str, Any], timeout: float) -> ApplyResult:
    """Run an arbitrary ``argv``; success is exit code 0."""
    argv = as_list(params["argv"])
    result = ctx.runner.run(argv[0], argv[1:], timeout=timeout, cwd=params.get("cwd"))
    if not result.ok:
        return _failed(result)
    return ApplyResult.success(output=tail_text(result.stdout, lines=5))
