"""
Process runner — the SINGLE PLACE where external commands are spawned.

Every probe and every action reaches the system through ``ProcessRunner.run``.
The runner never raises for a failed command: exit code, captured output,
timeout and spawn errors all come back as data in a ``ProcessResult``.

Timeout enforcement:
    1. A timeout that is already used up (see ``Deadline``) returns a
       timed-out result without spawning anything.
    2. The child is started in its own session (process group), so a
       terminal Ctrl-C reaches the engine but not the in-flight command.
    3. ``communicate(timeout=...)`` races completion against the deadline.
    4. On timeout the whole group gets SIGTERM, then SIGKILL once the
       grace period expires.  The child is always reaped before returning,
       also when the wait is interrupted (second Ctrl-C).
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import time
from collections.abc import Sequence

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Conventional exit codes, kept for shell-era callers
TIMEOUT_EXIT_CODE = 124
NOT_EXECUTABLE_EXIT_CODE = 126
NOT_FOUND_EXIT_CODE = 127

DEFAULT_GRACE_PERIOD = 5.0


class ProcessResult(BaseModel):
    """Outcome of one external command."""

    command: list[str] = Field(default_factory=list)
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    timeout: float | None = None
    spawn_error: str | None = None   # set when the command could not be launched
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """Whether the command ran to completion with exit code 0."""
        return self.exit_code == 0 and not self.timed_out and self.spawn_error is None

    @property
    def spawned(self) -> bool:
        return self.spawn_error is None

    def describe_failure(self) -> str:
        """One-line human description of why the command did not succeed."""
        name = self.command[0] if self.command else "command"
        if self.spawn_error:
            return f"{name} could not be started: {self.spawn_error}"
        if self.timed_out and not self.timeout:
            return f"{name} not started: time budget used up"
        if self.timed_out:
            return f"{name} timed out after {self.timeout:g}s"
        tail = tail_text(self.stderr or self.stdout, lines=3)
        if tail:
            return f"{name} exited with code {self.exit_code}: {tail}"
        return f"{name} exited with code {self.exit_code}"


def tail_text(text: str, lines: int = 20) -> str:
    """Return the last ``lines`` non-empty lines of ``text``."""
    kept = [line for line in text.strip().splitlines() if line.strip()]
    return "\n".join(kept[-lines:])


class Deadline:
    """One wall-clock budget shared by every command of a probe or action.

    Pass ``remaining()`` as the timeout of each ``ProcessRunner.run`` call;
    once it reaches zero the runner stops spawning.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._end = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._end - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class ProcessRunner:
    """Run external commands with a hard timeout.

    Stateless per call: the runner holds configuration only (grace period,
    base environment), never results.
    """

    def __init__(
        self,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        env_overrides: dict[str, str] | None = None,
    ):
        self.grace_period = grace_period
        self._env_overrides = dict(env_overrides or {})

    def which(self, name: str) -> str | None:
        """Resolve a command name on PATH."""
        return shutil.which(name, path=self._environment().get("PATH"))

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: float = 300.0,
        *,
        cwd: str | None = None,
        input_text: str | None = None,
        env_overrides: dict[str, str] | None = None,
    ) -> ProcessResult:
        """Run ``command args...`` and wait at most ``timeout`` seconds.

        Args:
            command: Executable name or path.
            args: Arguments (never passed through a shell).
            timeout: Wall-clock budget in seconds.
            cwd: Working directory for the command.
            input_text: Optional data written to the command's stdin.
            env_overrides: Extra environment variables for this call.

        Returns:
            ProcessResult. ``timed_out`` results carry exit code 124,
            spawn failures 126/127.
        """
        argv = [command, *args]
        env = self._environment()
        if env_overrides:
            env.update(env_overrides)

        if timeout <= 0:
            logger.warning("No time left to run: %s", " ".join(argv))
            return ProcessResult(
                command=argv, exit_code=TIMEOUT_EXIT_CODE, timed_out=True, timeout=0.0,
            )

        logger.debug("Running: %s (timeout=%.1fs)", " ".join(argv), timeout)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            return self._spawn_failure(argv, NOT_FOUND_EXIT_CODE, e, start)
        except PermissionError as e:
            return self._spawn_failure(argv, NOT_EXECUTABLE_EXIT_CODE, e, start)
        except OSError as e:
            return self._spawn_failure(argv, NOT_EXECUTABLE_EXIT_CODE, e, start)

        timed_out = False
        try:
            stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            stdout, stderr = self._terminate(proc)
        except BaseException:
            # Interrupted wait: the child's own session would outlive us
            self._terminate(proc)
            raise

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if timed_out:
            logger.warning(
                "Command timed out after %.1fs: %s", timeout, " ".join(argv),
            )
            return ProcessResult(
                command=argv,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=stdout or "",
                stderr=stderr or "",
                timed_out=True,
                timeout=timeout,
                duration_ms=elapsed_ms,
            )

        logger.debug("Exit %d after %dms: %s", proc.returncode, elapsed_ms, argv[0])
        return ProcessResult(
            command=argv,
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            timeout=timeout,
            duration_ms=elapsed_ms,
        )

    # ── Internals ───────────────────────────────────────────────

    def _environment(self) -> dict[str, str]:
        env = os.environ.copy()
        for key, value in self._env_overrides.items():
            env[key] = os.path.expandvars(value)
        return env

    def _terminate(self, proc: subprocess.Popen) -> tuple[str, str]:
        """Stop a timed-out process group: SIGTERM, grace period, SIGKILL.

        Always reaps the child so no zombie is left behind.
        """
        self._signal_group(proc, signal.SIGTERM)
        try:
            return proc.communicate(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Process %d ignored SIGTERM for %ss, sending SIGKILL",
                proc.pid, self.grace_period,
            )

        self._signal_group(proc, signal.SIGKILL)
        try:
            return proc.communicate(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            # Pipes held open by an escaped grandchild; the child itself is dead
            proc.kill()
            proc.wait()
            return "", ""

    @staticmethod
    def _signal_group(proc: subprocess.Popen, sig: signal.Signals) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.send_signal(sig)

    @staticmethod
    def _spawn_failure(
        argv: list[str], exit_code: int, error: OSError, start: float,
    ) -> ProcessResult:
        logger.debug("Cannot start %s: %s", argv[0], error)
        return ProcessResult(
            command=argv,
            exit_code=exit_code,
            spawn_error=error.strerror or str(error),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
