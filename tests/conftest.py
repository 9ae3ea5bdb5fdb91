"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from berets.adapters.process import (
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    ProcessResult,
    ProcessRunner,
)
from berets.core.context import RunContext
from berets.core.models.settings import Settings

Response = ProcessResult | Callable[[list[str]], ProcessResult]


class FakeRunner(ProcessRunner):
    """ProcessRunner that answers from a script instead of spawning.

    Responses are keyed by a command-line prefix (``"apk info -e nix"``);
    the longest matching prefix wins.  Unmatched commands succeed with
    empty output.  A response can take ``delay`` seconds of wall-clock
    time; past the call's timeout it comes back timed out, like a real
    hung command.
    """

    def __init__(self, commands: dict[str, str] | None = None):
        super().__init__(grace_period=0.1)
        self.calls: list[list[str]] = []
        self.timeouts: list[float] = []
        self.envs: list[dict[str, str] | None] = []
        self.commands: dict[str, str] = dict(commands or {})
        self._responses: dict[str, tuple[Response, float]] = {}

    def respond(self, prefix: str, response: Response, delay: float = 0.0) -> None:
        self._responses[prefix] = (response, delay)

    def which(self, name: str) -> str | None:
        return self.commands.get(name)

    def run(self, command, args=(), timeout=300.0, **kwargs) -> ProcessResult:
        argv = [command, *args]
        self.calls.append(argv)
        self.timeouts.append(timeout)
        self.envs.append(kwargs.get("env_overrides"))
        if timeout <= 0:
            return ProcessResult(command=argv, exit_code=TIMEOUT_EXIT_CODE, timed_out=True, timeout=0.0)

        line = " ".join(argv)
        matches = [p for p in self._responses if line == p or line.startswith(p + " ")]
        if not matches:
            return self.ok().model_copy(update={"command": argv, "timeout": timeout})
        response, delay = self._responses[max(matches, key=len)]
        if delay:
            time.sleep(min(delay, timeout))
            if delay >= timeout:
                return ProcessResult(command=argv, exit_code=TIMEOUT_EXIT_CODE,
                                     timed_out=True, timeout=timeout)
        result = response(argv) if callable(response) else response
        return result.model_copy(update={"command": argv, "timeout": timeout})

    def called(self, prefix: str) -> bool:
        return any(" ".join(c).startswith(prefix) for c in self.calls)

    # ── Canned results ──────────────────────────────────────────

    @staticmethod
    def ok(stdout: str = "") -> ProcessResult:
        return ProcessResult(exit_code=0, stdout=stdout)

    @staticmethod
    def fail(exit_code: int = 1, stderr: str = "") -> ProcessResult:
        return ProcessResult(exit_code=exit_code, stderr=stderr)

    @staticmethod
    def missing() -> ProcessResult:
        return ProcessResult(exit_code=NOT_FOUND_EXIT_CODE, spawn_error="No such file or directory")

    @staticmethod
    def timeout() -> ProcessResult:
        return ProcessResult(exit_code=124, timed_out=True)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings whose path variables all point inside ``tmp_path``."""
    root = tmp_path / "root"
    return Settings(
        grace_period=0.1,
        retry_delay=0,
        state_dir=str(tmp_path / "state"),
        vars={
            "bin_dir": str(root / "usr/local/bin"),
            "share_dir": str(root / "usr/local/share/theblackberets"),
            "flake_dir": str(root / "usr/local/share/theblackberets"),
            "profile_d": str(root / "etc/profile.d"),
            "skel_bashrc": str(root / "etc/skel/.bashrc"),
            "root_bashrc": str(root / "root/.bashrc"),
            "starship_dir": str(root / "etc/starship"),
            "zsh_dir": str(root / "etc/zsh"),
            "nix_conf_dir": str(root / "etc/nix"),
            "nix_root": str(root / "nix"),
            "apk_repositories": str(root / "etc/apk/repositories"),
            "alpine_release": str(root / "etc/alpine-release"),
        },
    )


@pytest.fixture
def run_ctx(settings: Settings, fake_runner: FakeRunner):
    with RunContext(settings=settings, runner=fake_runner) as ctx:
        yield ctx


@pytest.fixture
def restore_root_logger():
    """Undo the root-logger changes made by ``setup_logging``."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
