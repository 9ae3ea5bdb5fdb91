"""
Run context — everything one reconciliation pass shares.

One ``RunContext`` is created per engine invocation and closed when the
run ends.  It replaces process-wide caches with explicit per-run state:

    - command lookups (``has_command``) are cached until the next
      successful action invalidates them
    - the connectivity check is cached for the whole run
    - temp files and other scoped resources are released on ``close()``,
      including when a critical failure stops the run early
    - the cancellation event is checked between items
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from contextlib import ExitStack
from pathlib import Path

from berets.adapters.process import Deadline, ProcessRunner
from berets.core.models.settings import Settings

logger = logging.getLogger(__name__)

_CONNECTIVITY_HOSTS = ("8.8.8.8", "1.1.1.1")


class RunContext:
    """Request-scoped state for one provisioning or teardown run."""

    def __init__(
        self,
        settings: Settings | None = None,
        runner: ProcessRunner | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.settings = settings or Settings()
        self.runner = runner or ProcessRunner(grace_period=self.settings.grace_period)
        self.cancel_event = cancel_event or threading.Event()
        self._commands: dict[str, str | None] = {}
        self._internet: bool | None = None
        self._resources = ExitStack()
        self._closed = False

    # ── Variables ───────────────────────────────────────────────

    @property
    def vars(self) -> dict[str, str]:
        return self.settings.vars

    def path(self, value: str) -> Path:
        """Expand ``~`` and return a Path (params are already var-substituted)."""
        return Path(value).expanduser()

    # ── Cached lookups ──────────────────────────────────────────

    def command_path(self, name: str) -> str | None:
        if name not in self._commands:
            self._commands[name] = self.runner.which(name)
        return self._commands[name]

    def has_command(self, name: str) -> bool:
        return self.command_path(name) is not None

    def has_internet(self, timeout: float = 5.0) -> bool:
        """Ping well-known resolvers once per run."""
        if self._internet is None:
            deadline = Deadline(timeout)
            self._internet = any(
                self.runner.run("ping", ["-c", "1", "-W", "2", host], timeout=deadline.remaining()).ok
                for host in _CONNECTIVITY_HOSTS
            )
            logger.debug("Connectivity check: %s", "online" if self._internet else "offline")
        return self._internet

    def invalidate_caches(self) -> None:
        """Forget cached lookups; called after every state mutation."""
        self._commands.clear()

    # ── Cancellation ────────────────────────────────────────────

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    # ── Scoped resources ────────────────────────────────────────

    def temp_file(self, prefix: str = "berets-", suffix: str = ".log") -> Path:
        """Create a temp file that is removed when the run ends."""
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
        os.close(fd)
        path = Path(name)
        self._resources.callback(path.unlink, missing_ok=True)
        return path

    def temp_dir(self, prefix: str = "berets-") -> Path:
        """Create a temp directory that is removed when the run ends."""
        path = Path(tempfile.mkdtemp(prefix=prefix))
        self._resources.callback(shutil.rmtree, path, ignore_errors=True)
        return path

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._resources.close()

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
