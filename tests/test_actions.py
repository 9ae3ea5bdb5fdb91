"""
Tests for the action registry and built-in actions.

Commands go through the FakeRunner; file actions work on tmp_path.
"""

import time
from pathlib import Path

from berets.core.actions import ActionRegistry, default_action_registry
from berets.core.actions.builtin import alpine_branch, parse_mode
from berets.core.models.outcome import ApplyResult
from berets.core.services.markers import begin_marker, file_has_block


def _apply(run_ctx, kind, params):
    return default_action_registry().apply(kind, run_ctx, params, timeout=30)


class TestActionRegistry:
    def test_unknown_action_fails(self, run_ctx):
        result = ActionRegistry().apply("nope", run_ctx)
        assert result.failed
        assert "nope" in result.error

    def test_raising_action_fails(self, run_ctx):
        def boom(ctx, params, timeout):
            raise RuntimeError("kaboom")

        registry = ActionRegistry()
        registry.register("boom", boom)
        result = registry.apply("boom", run_ctx)
        assert result.failed
        assert result.error == "Unexpected error: kaboom"

    def test_missing_param(self, run_ctx):
        result = _apply(run_ctx, "write_file", {"content": "x"})
        assert result.failed
        assert result.error == "Missing required param: path"

    def test_duration_recorded(self, run_ctx):
        registry = ActionRegistry()
        registry.register("noop", lambda ctx, params, timeout: ApplyResult.success())
        assert "duration_ms" in registry.apply("noop", run_ctx).metadata

    def test_builtins_registered(self):
        names = default_action_registry().list_actions()
        for name in (
            "apk_add", "apk_del", "enable_repo", "write_file", "append_block",
            "remove_block", "remove_path", "download", "symlink_bin", "unlink_bins",
            "service_enable", "service_disable", "user_add", "user_del",
            "nix_profile_install", "nix_profile_remove", "run",
        ):
            assert name in names


class TestHelpers:
    def test_parse_mode(self):
        assert parse_mode(None) is None
        assert parse_mode("0755") == 0o755
        assert parse_mode(0o644) == 0o644

    def test_alpine_branch(self, tmp_path: Path):
        release = tmp_path / "alpine-release"
        assert alpine_branch(release) == "edge"
        release.write_text("3.19.1\n")
        assert alpine_branch(release) == "v3.19"
        release.write_text("3.20_alpha20240315\n")
        assert alpine_branch(release) == "v3.20"


class TestPackageActions:
    def test_apk_add_updates_then_installs(self, run_ctx, fake_runner):
        result = _apply(run_ctx, "apk_add", {"packages": ["bash", "curl"]})
        assert result.ok
        assert fake_runner.calls == [
            ["apk", "update"],
            ["apk", "add", "--no-cache", "bash", "curl"],
        ]

    def test_apk_add_without_update(self, run_ctx, fake_runner):
        _apply(run_ctx, "apk_add", {"package": "nix", "update": False})
        assert fake_runner.calls == [["apk", "add", "--no-cache", "nix"]]

    def test_apk_add_failed_update_still_installs(self, run_ctx, fake_runner):
        fake_runner.respond("apk update", fake_runner.fail(1, "network down"))
        assert _apply(run_ctx, "apk_add", {"package": "nix"}).ok
        assert fake_runner.called("apk add")

    def test_apk_add_failure(self, run_ctx, fake_runner):
        fake_runner.respond("apk add", fake_runner.fail(1, "ERROR: unable to select packages"))
        result = _apply(run_ctx, "apk_add", {"package": "nix"})
        assert result.failed
        assert result.error.startswith("Failed to install nix: ")
        assert "unable to select packages" in result.error

    def test_apk_missing_is_spawn_error(self, run_ctx, fake_runner):
        fake_runner.respond("apk", fake_runner.missing())
        result = _apply(run_ctx, "apk_add", {"package": "nix"})
        assert result.failed
        assert result.spawn_error

    def test_apk_del_only_installed(self, run_ctx, fake_runner):
        fake_runner.respond("apk info -e gdm", fake_runner.fail())
        result = _apply(run_ctx, "apk_del", {"packages": ["xfce4", "gdm"], "purge": True})
        assert result.ok
        assert ["apk", "del", "--purge", "xfce4"] in fake_runner.calls

    def test_apk_del_nothing_installed(self, run_ctx, fake_runner):
        fake_runner.respond("apk info -e", fake_runner.fail())
        result = _apply(run_ctx, "apk_del", {"packages": ["xfce4"]})
        assert result.ok
        assert not fake_runner.called("apk del")

    def test_enable_repo(self, run_ctx, tmp_path: Path):
        repos = tmp_path / "repositories"
        repos.write_text("http://dl-cdn.alpinelinux.org/alpine/v3.19/main")
        release = tmp_path / "alpine-release"
        release.write_text("3.19.1\n")
        params = {"path": str(repos), "release_file": str(release), "repo": "community"}

        assert _apply(run_ctx, "enable_repo", params).ok
        assert _apply(run_ctx, "enable_repo", params).output.endswith("already enabled")
        assert repos.read_text().splitlines() == [
            "http://dl-cdn.alpinelinux.org/alpine/v3.19/main",
            "http://dl-cdn.alpinelinux.org/alpine/v3.19/community",
        ]


class TestFileActions:
    def test_write_file(self, run_ctx, tmp_path: Path):
        target = tmp_path / "bin" / "tool"
        params = {"path": str(target), "content": "#!/bin/sh\n", "mode": "0755"}
        assert _apply(run_ctx, "write_file", params).ok
        assert target.read_text() == "#!/bin/sh\n"
        assert target.stat().st_mode & 0o777 == 0o755

        target.chmod(0o600)
        result = _apply(run_ctx, "write_file", params)
        assert result.output.endswith("already up to date")
        assert target.stat().st_mode & 0o777 == 0o755

    def test_write_file_default_mode(self, run_ctx, tmp_path: Path):
        target = tmp_path / "plain.txt"
        _apply(run_ctx, "write_file", {"path": str(target), "content": "x"})
        assert target.stat().st_mode & 0o777 == 0o644

    def test_write_snippet_with_which(self, run_ctx, fake_runner, tmp_path: Path):
        fake_runner.commands["just"] = "/usr/bin/just"
        target = tmp_path / "justdo"
        params = {
            "path": str(target),
            "snippet": "justdo",
            "mode": "0755",
            "which": {"real_just_path": "just"},
            "values": {
                "default_justfile": "/usr/local/share/theblackberets/justfile",
                "default_justfile_dir": "/usr/local/share/theblackberets",
            },
        }
        assert _apply(run_ctx, "write_file", params).ok
        assert '_REAL_JUST_PATH="/usr/bin/just"' in target.read_text()

    def test_which_unresolved_is_spawn_error(self, run_ctx, tmp_path: Path):
        params = {
            "path": str(tmp_path / "justdo"),
            "snippet": "justdo",
            "which": {"real_just_path": "just"},
        }
        result = _apply(run_ctx, "write_file", params)
        assert result.failed
        assert result.spawn_error
        assert not (tmp_path / "justdo").exists()

    def test_unresolved_placeholder_fails(self, run_ctx, tmp_path: Path):
        result = _apply(run_ctx, "write_file", {"path": str(tmp_path / "x"), "snippet": "justdo"})
        assert result.failed
        assert "Unresolved placeholders" in result.error

    def test_append_block_keeps_non_utf8_bytes(self, run_ctx, tmp_path: Path):
        bashrc = tmp_path / ".bashrc"
        bashrc.write_bytes(b"# r\xe9sum\xe9\n")
        params = {"path": str(bashrc), "block": "tool", "content": "export A=1"}
        assert _apply(run_ctx, "append_block", params).ok
        assert _apply(run_ctx, "remove_block", params).ok
        assert bashrc.read_bytes() == b"# r\xe9sum\xe9\n"

    def test_append_and_remove_block(self, run_ctx, tmp_path: Path):
        bashrc = tmp_path / ".bashrc"
        bashrc.write_text("alias ll='ls -l'\n")
        params = {"path": str(bashrc), "block": "starship-init", "content": 'eval "$(starship init bash)"'}

        assert _apply(run_ctx, "append_block", params).ok
        assert _apply(run_ctx, "append_block", params).output.startswith("Block starship-init already")
        assert bashrc.read_text().count(begin_marker("starship-init")) == 1

        result = _apply(run_ctx, "remove_block", {"path": str(bashrc), "blocks": ["starship-init", "other"]})
        assert result.output == f"Removed starship-init from {bashrc}"
        assert not file_has_block(bashrc, "starship-init")
        assert bashrc.read_text() == "alias ll='ls -l'\n"

    def test_remove_path(self, run_ctx, tmp_path: Path):
        (tmp_path / "dir" / "sub").mkdir(parents=True)
        (tmp_path / "file").write_text("x")
        params = {"paths": [str(tmp_path / "dir"), str(tmp_path / "file"), str(tmp_path / "gone")]}

        result = _apply(run_ctx, "remove_path", params)
        assert result.ok
        assert len(result.metadata["removed"]) == 2
        assert not (tmp_path / "dir").exists()
        assert _apply(run_ctx, "remove_path", params).metadata["removed"] == []

    def test_symlink_and_unlink_bins(self, run_ctx, tmp_path: Path):
        source = tmp_path / "store" / "bin"
        source.mkdir(parents=True)
        for name in ("nmap", "sqlmap"):
            tool = source / name
            tool.write_text("#!/bin/sh\n")
            tool.chmod(0o755)
        (source / "README").write_text("not a tool")
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        (bin_dir / "nmap").write_text("user's own nmap")

        params = {"source_dir": str(source), "bin_dir": str(bin_dir)}
        result = _apply(run_ctx, "symlink_bin", params)
        assert result.output == f"Linked 1 executables into {bin_dir}"
        assert (bin_dir / "sqlmap").is_symlink()
        assert not (bin_dir / "nmap").is_symlink()
        assert not (bin_dir / "README").exists()

        result = _apply(run_ctx, "unlink_bins", {"dir": str(bin_dir), "target_prefix": str((tmp_path / "store").resolve())})
        assert result.ok
        assert not (bin_dir / "sqlmap").exists()
        assert (bin_dir / "nmap").read_text() == "user's own nmap"


class TestDownload:
    def test_local_copy(self, run_ctx, fake_runner, tmp_path: Path):
        local = tmp_path / "justfile"
        local.write_text("default:\n\techo hi\n")
        dest = tmp_path / "share" / "justfile"
        result = _apply(run_ctx, "download", {
            "url": "https://example.invalid/justfile", "dest": str(dest), "local": str(local),
        })
        assert result.ok
        assert dest.read_text() == local.read_text()
        assert fake_runner.calls == []

    def test_wget_then_mirror(self, run_ctx, fake_runner, tmp_path: Path):
        fake_runner.commands["wget"] = "/usr/bin/wget"

        def _wget(argv):
            if "mirror" not in argv[-1]:
                return fake_runner.fail(8, "404")
            Path(argv[2]).write_text("flake content")
            return fake_runner.ok()

        fake_runner.respond("wget", _wget)
        dest = tmp_path / "flake.nix"
        result = _apply(run_ctx, "download", {
            "url": "https://site.invalid/flake.nix",
            "mirror": "https://mirror.invalid/flake.nix",
            "dest": str(dest),
        })
        assert result.ok
        assert result.metadata["source"] == "https://mirror.invalid/flake.nix"
        assert dest.read_text() == "flake content"
        assert dest.stat().st_mode & 0o777 == 0o644

    def test_curl_fallback(self, run_ctx, fake_runner, tmp_path: Path):
        fake_runner.commands.update({"wget": "/usr/bin/wget", "curl": "/usr/bin/curl"})
        fake_runner.respond("wget", fake_runner.fail(4))

        def _curl(argv):
            Path(argv[-1]).write_text("data")
            return fake_runner.ok()

        fake_runner.respond("curl", _curl)
        dest = tmp_path / "file"
        assert _apply(run_ctx, "download", {"url": "https://x.invalid/f", "dest": str(dest)}).ok
        assert dest.read_text() == "data"

    def test_all_sources_fail(self, run_ctx, fake_runner, tmp_path: Path):
        fake_runner.commands["curl"] = "/usr/bin/curl"
        fake_runner.respond("curl", fake_runner.fail(22, "404"))
        result = _apply(run_ctx, "download", {"url": "https://x.invalid/f", "dest": str(tmp_path / "f")})
        assert result.failed
        assert result.error == "Could not download f"
        assert not (tmp_path / "f").exists()

    def test_no_download_tool(self, run_ctx, tmp_path: Path):
        result = _apply(run_ctx, "download", {"url": "https://x.invalid/f", "dest": str(tmp_path / "f")})
        assert result.failed
        assert result.spawn_error


class TestServiceActions:
    def test_enable(self, run_ctx, fake_runner):
        result = _apply(run_ctx, "service_enable", {"service": "nix-daemon"})
        assert result.ok
        assert fake_runner.calls == [
            ["rc-update", "add", "nix-daemon", "default"],
            ["rc-service", "nix-daemon", "start"],
        ]

    def test_enable_start_failure_still_succeeds(self, run_ctx, fake_runner):
        fake_runner.respond("rc-service", fake_runner.fail(1, "not in a booted system"))
        result = _apply(run_ctx, "service_enable", {"service": "nix-daemon"})
        assert result.ok
        assert result.metadata["started"] is False

    def test_enable_failure(self, run_ctx, fake_runner):
        fake_runner.respond("rc-update add", fake_runner.fail(1))
        assert _apply(run_ctx, "service_enable", {"service": "nix-daemon"}).failed

    def test_disable_from_every_runlevel(self, run_ctx, fake_runner):
        fake_runner.respond("rc-update show", fake_runner.ok(
            "  lightdm | default boot\n  sshd | default\n"
        ))
        result = _apply(run_ctx, "service_disable", {"services": ["lightdm", "gdm"]})
        assert result.ok
        assert result.metadata["disabled"] == ["lightdm"]
        assert ["rc-update", "del", "lightdm", "default"] in fake_runner.calls
        assert ["rc-update", "del", "lightdm", "boot"] in fake_runner.calls
        assert ["rc-service", "gdm", "stop"] in fake_runner.calls


class TestUserActions:
    def test_user_add(self, run_ctx, fake_runner):
        fake_runner.respond("id -u nixbld1", fake_runner.fail(1))
        result = _apply(run_ctx, "user_add", {
            "user": "nixbld1", "group": "nixbld", "gid": 30000, "uid": 30001, "shell": "/sbin/nologin",
        })
        assert result.ok
        assert ["addgroup", "-g", "30000", "nixbld"] in fake_runner.calls
        assert fake_runner.calls[-1] == [
            "adduser", "-D", "-s", "/sbin/nologin", "-u", "30001", "-G", "nixbld", "nixbld1",
        ]

    def test_user_add_existing(self, run_ctx, fake_runner):
        result = _apply(run_ctx, "user_add", {"user": "nixbld1"})
        assert result.output == "User nixbld1 already exists"
        assert not fake_runner.called("adduser")

    def test_user_del(self, run_ctx, fake_runner):
        fake_runner.respond("id -u ghost", fake_runner.fail(1))
        result = _apply(run_ctx, "user_del", {"users": ["testuser", "ghost"]})
        assert result.metadata["removed"] == ["testuser"]
        assert ["pkill", "-u", "testuser"] in fake_runner.calls
        assert ["deluser", "--remove-home", "testuser"] in fake_runner.calls
        assert not fake_runner.called("deluser --remove-home ghost")


class TestNixActions:
    def test_install(self, run_ctx, fake_runner):
        result = _apply(run_ctx, "nix_profile_install", {"ref": "path:/flake#kali-tools"})
        assert result.ok
        assert result.metadata["entry"] == "kali-tools"
        assert ["nix", "profile", "install", "path:/flake#kali-tools"] in fake_runner.calls

    def test_install_already_present(self, run_ctx, fake_runner):
        fake_runner.respond("nix profile list", fake_runner.ok("Name: kali-tools\n"))
        result = _apply(run_ctx, "nix_profile_install", {"ref": "path:/flake#kali-tools"})
        assert result.output == "kali-tools already in nix profile"
        assert not fake_runner.called("nix profile install")

    def test_install_failure_reports_log(self, run_ctx, fake_runner):
        fake_runner.respond("nix profile install", fake_runner.fail(1, "error: flake not found"))
        result = _apply(run_ctx, "nix_profile_install", {"ref": "path:/flake#kali-tools"})
        assert result.failed
        assert "flake not found" in result.error
        assert "log" in result.metadata

    def test_install_links_binaries(self, run_ctx, fake_runner, tmp_path: Path):
        store = tmp_path / "store" / "bin"
        store.mkdir(parents=True)
        (store / "nmap").write_text("#!/bin/sh\n")
        (store / "nmap").chmod(0o755)

        def _build(argv):
            Path(argv[-1]).symlink_to(store.parent)
            return fake_runner.ok()

        fake_runner.respond("nix build", _build)
        bin_dir = tmp_path / "bin"
        result = _apply(run_ctx, "nix_profile_install", {
            "ref": "path:/flake#kali-tools", "link_into": str(bin_dir),
        })
        assert result.metadata["linked"] == 1
        assert (bin_dir / "nmap").is_symlink()

    def test_install_uses_flakes_config(self, run_ctx, fake_runner):
        seen = {}
        original = fake_runner.run

        def _run(command, args=(), timeout=300.0, **kwargs):
            seen.setdefault("env", kwargs.get("env_overrides"))
            return original(command, args, timeout, **kwargs)

        fake_runner.run = _run
        _apply(run_ctx, "nix_profile_install", {"ref": "nixpkgs#hello"})
        assert "flakes" in seen["env"]["NIX_CONFIG"]

    def test_remove(self, run_ctx, fake_runner):
        fake_runner.respond("nix profile list", fake_runner.ok("Name: kali-tools\n"))
        result = _apply(run_ctx, "nix_profile_remove", {"entries": ["kali-tools", "cool-terminal"]})
        assert result.metadata["removed"] == ["kali-tools"]
        assert ["nix", "profile", "remove", "kali-tools"] in fake_runner.calls


class TestRunAction:
    def test_run(self, run_ctx, fake_runner):
        fake_runner.respond("nix-channel --update", fake_runner.ok("unpacking channels...\n"))
        result = _apply(run_ctx, "run", {"argv": ["nix-channel", "--update"]})
        assert result.ok
        assert result.output == "unpacking channels..."

    def test_run_failure(self, run_ctx, fake_runner):
        fake_runner.respond("false", fake_runner.fail(1))
        result = _apply(run_ctx, "run", {"argv": ["false"]})
        assert result.failed
        assert result.error == "false exited with code 1"


class TestTimeBudget:
    """``timeout`` bounds the whole action, however many commands it runs."""

    def test_hung_update_leaves_no_time_for_install(self, run_ctx, fake_runner):
        fake_runner.respond("apk update", fake_runner.ok(), delay=30)
        start = time.monotonic()
        result = default_action_registry().apply("apk_add", run_ctx, {"packages": ["nix"]}, timeout=0.3)
        elapsed = time.monotonic() - start

        assert result.failed
        assert result.timed_out
        assert elapsed < 0.6
        assert not fake_runner.called("apk add")

    def test_second_command_gets_what_is_left(self, run_ctx, fake_runner):
        fake_runner.respond("apk update", fake_runner.ok(), delay=0.2)
        result = default_action_registry().apply("apk_add", run_ctx, {"packages": ["nix"]}, timeout=1.0)
        assert result.ok
        update_timeout, add_timeout = fake_runner.timeouts
        assert update_timeout <= 1.0
        assert add_timeout < 0.85

    def test_download_stops_at_the_deadline(self, run_ctx, fake_runner, tmp_path: Path):
        fake_runner.commands.update({"wget": "/usr/bin/wget", "curl": "/usr/bin/curl"})
        fake_runner.respond("wget", fake_runner.ok(), delay=30)
        fake_runner.respond("curl", fake_runner.ok(), delay=30)
        start = time.monotonic()
        result = default_action_registry().apply("download", run_ctx, {
            "url": "https://site.invalid/flake.nix",
            "mirror": "https://mirror.invalid/flake.nix",
            "dest": str(tmp_path / "flake.nix"),
        }, timeout=0.3)
        elapsed = time.monotonic() - start

        assert result.failed
        assert result.timed_out
        assert elapsed < 0.6
        assert len(fake_runner.calls) == 1
        assert fake_runner.calls[0][-1] == "https://site.invalid/flake.nix"
        assert result.error == "Could not download flake.nix: time budget of 0.3s used up"

    def test_service_disable_stops_at_the_deadline(self, run_ctx, fake_runner):
        fake_runner.respond("rc-service", fake_runner.ok(), delay=0.15)
        result = default_action_registry().apply(
            "service_disable", run_ctx, {"services": ["lightdm", "sddm", "gdm", "lxdm"]}, timeout=0.2,
        )
        assert result.failed
        assert result.timed_out
        assert not fake_runner.called("rc-service lxdm")

    def test_nix_install_steps_share_the_budget(self, run_ctx, fake_runner):
        fake_runner.respond("nix profile list", fake_runner.ok(), delay=0.25)
        fake_runner.respond("nix profile install", fake_runner.ok(), delay=30)
        start = time.monotonic()
        result = default_action_registry().apply(
            "nix_profile_install", run_ctx, {"ref": "path:/flake#kali-tools"}, timeout=0.5,
        )
        assert result.timed_out
        assert time.monotonic() - start < 0.8
