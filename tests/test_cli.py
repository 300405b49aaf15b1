# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for devenv/cli.py -- multi-command CLI."""

import socket
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from devenv import __version__
from devenv.cli import (
    _check_engine,
    _fmt_version,
    _parse_version,
    _Style,
    _use_color,
    cli,
    cmd_check,
    cmd_down,
    cmd_init,
    cmd_shell,
    cmd_status,
    cmd_up,
)
from devenv.controller import PERSIST_LABEL
from devenv.engine import EngineCommandError
from devenv.types import EnvironmentStatus, ExitCode


@pytest.fixture
def engine(fake_engine):
    """Route every CLI engine construction to the fake engine."""
    with patch("devenv.cli.DockerCLIClient", return_value=fake_engine):
        yield fake_engine


# ── _parse_version ──────────────────────────────────────────────────


class TestParseVersion:
    def test_docker_version(self) -> None:
        assert _parse_version("Docker version 27.5.1, build 9f9e405") == (
            27,
            5,
            1,
        )

    def test_podman_version(self) -> None:
        assert _parse_version("podman version 5.3.1") == (5, 3, 1)

    def test_version_with_rc_suffix(self) -> None:
        assert _parse_version("tool 1.2.3-rc1") == (1, 2, 3)

    def test_no_version_raises(self) -> None:
        with pytest.raises(ValueError, match="Cannot parse"):
            _parse_version("no version here")

    def test_fmt_version(self) -> None:
        assert _fmt_version((20, 10, 0)) == "20.10.0"


# ── _use_color / _Style ─────────────────────────────────────────────


class TestUseColor:
    def test_no_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        tty = MagicMock()
        tty.isatty.return_value = True
        assert _use_color(tty) is False

    def test_dumb_term(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        tty = MagicMock()
        tty.isatty.return_value = True
        assert _use_color(tty) is False

    def test_tty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm")
        tty = MagicMock()
        tty.isatty.return_value = True
        assert _use_color(tty) is True

    def test_not_tty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)
        pipe = MagicMock()
        pipe.isatty.return_value = False
        assert _use_color(pipe) is False


class TestStyle:
    def test_plain(self) -> None:
        assert _Style(False).red("x") == "x"

    def test_color(self) -> None:
        assert _Style(True).green("x") == "\033[32mx\033[0m"


# ── cli() dispatch ──────────────────────────────────────────────────


class TestCli:
    def test_no_args_prints_usage(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with patch("sys.argv", ["devenv"]):
            with pytest.raises(SystemExit) as exc_info:
                cli()
        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "usage: devenv" in out
        assert __version__ in out

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("sys.argv", ["devenv", "--version"]):
            with pytest.raises(SystemExit) as exc_info:
                cli()
        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == f"devenv {__version__}"

    def test_unknown_command(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with patch("sys.argv", ["devenv", "frobnicate"]):
            with pytest.raises(SystemExit) as exc_info:
                cli()
        assert exc_info.value.code == ExitCode.INVALID_ARGS
        assert "unknown command" in capsys.readouterr().err

    @pytest.mark.parametrize(
        ("command", "handler"),
        [
            ("up", "cmd_up"),
            ("down", "cmd_down"),
            ("shell", "cmd_shell"),
            ("status", "cmd_status"),
            ("init", "cmd_init"),
            ("check", "cmd_check"),
        ],
    )
    def test_dispatch(self, command: str, handler: str) -> None:
        with (
            patch("sys.argv", ["devenv", command, "x"]),
            patch(f"devenv.cli.{handler}", return_value=3) as mock_handler,
        ):
            with pytest.raises(SystemExit) as exc_info:
                cli()
        mock_handler.assert_called_once_with(["x"])
        assert exc_info.value.code == 3

    def test_bad_option_exits_invalid_args(self) -> None:
        """Usage errors map to exit 1, not argparse's default 2."""
        with pytest.raises(SystemExit) as exc_info:
            cmd_up(["--no-such-option"])
        assert exc_info.value.code == ExitCode.INVALID_ARGS

    def test_missing_positional_exits_invalid_args(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cmd_shell([])
        assert exc_info.value.code == ExitCode.INVALID_ARGS


# ── up ──────────────────────────────────────────────────────────────


class TestCmdUp:
    def test_success(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = config_file(PORTS="")
        assert cmd_up(["--config", str(path)]) == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "Environment 'demo' created successfully" in out
        assert "devenv shell demo" in out
        assert "devenv down demo" in out
        assert engine.containers["demo"].status is EnvironmentStatus.RUNNING

    def test_overrides(self, engine, config_file, tmp_path: Path) -> None:
        path = config_file()
        src = tmp_path / "src"
        src.mkdir()
        code = cmd_up(
            [
                "--config",
                str(path),
                "--name",
                "other",
                "--mount",
                f"{src}:/workspace:ro",
            ]
        )
        assert code == ExitCode.SUCCESS
        spec = engine.containers["other"].spec
        assert spec.mounts[0].to_volume_spec() == f"{src}:/workspace:ro"

    def test_missing_config(
        self, engine, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = cmd_up(["--config", str(tmp_path / "missing.env")])
        assert code == ExitCode.INVALID_ARGS
        err = capsys.readouterr().err
        assert "ConfigError" in err
        assert "devenv init" in err

    def test_malformed_port(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = config_file()
        code = cmd_up(["--config", str(path), "--port", "http:80"])
        assert code == ExitCode.INVALID_ARGS
        assert "http:80" in capsys.readouterr().err

    def test_invalid_name(self, engine, config_file) -> None:
        path = config_file(ENV_NAME="not_valid")
        assert cmd_up(["--config", str(path)]) == ExitCode.INVALID_ARGS
        assert engine.containers == {}

    def test_mount_missing(
        self,
        engine,
        config_file,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        missing = tmp_path / "nope"
        path = config_file(HOST_MOUNTS=f"{missing}:/workspace:rw")
        assert cmd_up(["--config", str(path)]) == ExitCode.INVALID_PATH
        err = capsys.readouterr().err
        assert "MountPathNotFound" in err
        assert f"mkdir -p {missing}" in err

    def test_name_conflict(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        path = config_file()
        assert cmd_up(["--config", str(path)]) == ExitCode.RESOURCE_CONFLICT
        err = capsys.readouterr().err
        assert "NameConflict" in err
        assert "devenv down demo --force" in err

    def test_port_conflict(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A host port held by another process is a resource conflict."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
            holder.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            holder.bind(("0.0.0.0", 0))
            holder.listen(1)
            port = holder.getsockname()[1]
            path = config_file(PORTS=f"{port}:8080")
            code = cmd_up(["--config", str(path)])
        assert code == ExitCode.RESOURCE_CONFLICT
        err = capsys.readouterr().err
        assert "PortInUse" in err
        assert str(port) in err
        assert engine.containers == {}

    def test_invalid_secret(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = config_file()
        code = cmd_up(["--config", str(path), "--secret", "oops"])
        assert code == ExitCode.INVALID_ARGS
        assert "InvalidSecretFormat" in capsys.readouterr().err

    def test_engine_unreachable(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.reachable = False
        path = config_file()
        assert cmd_up(["--config", str(path)]) == (
            ExitCode.PREREQUISITE_NOT_MET
        )
        err = capsys.readouterr().err
        assert "PrerequisiteError" in err
        assert "start OrbStack or Docker" in err

    def test_secret_never_printed(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Secret values appear in neither output nor verbose logs."""
        path = config_file()
        code = cmd_up(
            [
                "--config",
                str(path),
                "--secret",
                "API_KEY=abc123",
                "--verbose",
            ]
        )
        assert code == ExitCode.SUCCESS
        captured = capsys.readouterr()
        assert "API_KEY" in captured.err
        assert "abc123" not in captured.out
        assert "abc123" not in captured.err
        spec = engine.containers["demo"].spec
        assert spec.secret_assignments == ("API_KEY=abc123",)

    def test_engine_from_env(
        self, config_file, monkeypatch: pytest.MonkeyPatch, fake_engine
    ) -> None:
        monkeypatch.setenv("DEVENV_ENGINE", "podman")
        path = config_file()
        with patch(
            "devenv.cli.DockerCLIClient", return_value=fake_engine
        ) as mock_client:
            cmd_up(["--config", str(path)])
        mock_client.assert_called_with("podman")


# ── down ────────────────────────────────────────────────────────────


class TestCmdDown:
    def test_absent(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
        assert "not found or already removed" in capsys.readouterr().out

    def test_engine_unreachable(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        engine.reachable = False
        assert cmd_down(["demo", "--force"]) == (
            ExitCode.PREREQUISITE_NOT_MET
        )
        assert "PrerequisiteError" in capsys.readouterr().err
        assert "demo" in engine.containers

    def test_force(self, engine, capsys: pytest.CaptureFixture[str]) -> None:
        engine.add_container("demo")
        engine.volumes = ["demo-data"]
        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "removed successfully" in out
        assert "demo-data" in out
        assert engine.containers == {}
        assert engine.volumes == []

    def test_confirm_declined(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        with patch("builtins.input", return_value="n"):
            assert cmd_down(["demo"]) == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "WARNING" in out
        assert "Cancelled" in out
        assert "demo" in engine.containers

    def test_confirm_accepted(self, engine) -> None:
        engine.add_container("demo")
        with patch("builtins.input", return_value="y"):
            assert cmd_down(["demo"]) == ExitCode.SUCCESS
        assert engine.containers == {}

    def test_confirm_eof(self, engine) -> None:
        """No terminal input counts as declining."""
        engine.add_container("demo")
        with patch("builtins.input", side_effect=EOFError):
            assert cmd_down(["demo"]) == ExitCode.SUCCESS
        assert "demo" in engine.containers

    def test_keep_volumes(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        engine.volumes = ["demo-data"]
        code = cmd_down(["demo", "--force", "--keep-volumes"])
        assert code == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "Volumes were preserved" in out
        assert "docker volume ls --filter 'name=demo'" in out
        assert engine.volumes == ["demo-data"]

    def test_persisted_environment(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo", labels={PERSIST_LABEL: "true"})
        engine.volumes = ["demo-data"]
        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
        assert "Volumes were preserved" in capsys.readouterr().out
        assert engine.volumes == ["demo-data"]

    def test_warnings_still_succeed(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        engine.volumes = ["demo-data"]
        engine.fail["remove_volume"] = EngineCommandError("volume", "busy")
        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "Warning:" in out
        assert "completed with warnings" in out


# ── shell ───────────────────────────────────────────────────────────


class TestCmdShell:
    def test_command(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo", env={"X": "42"})
        code = cmd_shell(["demo", "--command", "echo $X"])
        assert code == 0
        captured = capsys.readouterr()
        assert captured.out == "42\n"

    def test_exit_code_passthrough(self, engine) -> None:
        engine.add_container("demo")
        assert cmd_shell(["demo", "--command", "exit 7"]) == 7

    def test_not_found(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = cmd_shell(["nonexistent-env", "--command", "true"])
        assert code == ExitCode.PREREQUISITE_NOT_MET
        assert "not found" in capsys.readouterr().err
        assert "exec" not in engine.verbs()

    def test_engine_unreachable(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        engine.reachable = False
        code = cmd_shell(["demo", "--command", "true"])
        assert code == ExitCode.PREREQUISITE_NOT_MET
        assert "start OrbStack or Docker" in capsys.readouterr().err
        assert "exec" not in engine.verbs()

    def test_interactive(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        assert cmd_shell(["demo", "--user", "node"]) == 0
        assert engine.calls[-1][0] == "exec"
        assert engine.calls[-1][3] == "node"
        assert engine.calls[-1][5] is True
        assert "Accessing shell" in capsys.readouterr().err

    def test_starts_stopped(self, engine) -> None:
        engine.add_container("demo", status=EnvironmentStatus.STOPPED)
        assert cmd_shell(["demo", "--command", "exit 0"]) == 0
        assert "start" in engine.verbs()


# ── status ──────────────────────────────────────────────────────────


class TestCmdStatus:
    def test_running(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        engine.add_container("demo")
        assert cmd_status(["demo"]) == ExitCode.SUCCESS
        assert "demo: running" in capsys.readouterr().out

    def test_stopped(self, engine) -> None:
        engine.add_container("demo", status=EnvironmentStatus.STOPPED)
        assert cmd_status(["demo"]) == ExitCode.PREREQUISITE_NOT_MET

    def test_absent(
        self, engine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cmd_status(["demo"]) == ExitCode.PREREQUISITE_NOT_MET
        assert "demo: absent" in capsys.readouterr().out


# ── init ────────────────────────────────────────────────────────────


class TestCmdInit:
    def test_creates_files(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cmd_init([str(tmp_path)]) == ExitCode.SUCCESS
        assert (tmp_path / "config" / ".env").is_file()
        assert (tmp_path / "Dockerfile").is_file()
        assert (tmp_path / "entrypoint.sh").is_file()
        assert (tmp_path / "verify-runtimes.sh").is_file()
        assert (tmp_path / "install-claude.sh").is_file()
        assert "Created stub config" in capsys.readouterr().out

    def test_idempotent(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        cmd_init([str(tmp_path)])
        capsys.readouterr()
        assert cmd_init([str(tmp_path)]) == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "Config already exists" in out
        assert "Created" not in out


# ── check ───────────────────────────────────────────────────────────


class TestCheckEngine:
    @patch("devenv.cli.shutil.which", return_value=None)
    def test_not_installed(self, mock_which: MagicMock) -> None:
        ok, detail = _check_engine("docker")
        assert ok is False
        assert detail == "docker: not found on PATH"

    @patch("devenv.cli.subprocess.run")
    @patch("devenv.cli.shutil.which", return_value="/usr/bin/docker")
    def test_meets_minimum(
        self, mock_which: MagicMock, mock_run: MagicMock
    ) -> None:
        mock_run.return_value = MagicMock(
            stdout="Docker version 27.5.1, build 9f9e405\n", stderr=""
        )
        ok, detail = _check_engine("docker")
        assert ok is True
        assert detail == "docker: 27.5.1 (>= 20.10)"
        assert mock_run.call_args.args[0] == ["docker", "--version"]

    @patch("devenv.cli.subprocess.run")
    @patch("devenv.cli.shutil.which", return_value="/usr/bin/docker")
    def test_too_old(self, mock_which: MagicMock, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(
            stdout="Docker version 19.03.1\n", stderr=""
        )
        ok, detail = _check_engine("docker")
        assert ok is False
        assert "devenv needs >= 20.10" in detail

    @patch("devenv.cli.subprocess.run")
    @patch("devenv.cli.shutil.which", return_value="/opt/bin/nerdctl")
    def test_unlisted_engine(
        self, mock_which: MagicMock, mock_run: MagicMock
    ) -> None:
        """Engines without a known minimum only need a version."""
        mock_run.return_value = MagicMock(
            stdout="nerdctl version 1.7.0\n", stderr=""
        )
        assert _check_engine("nerdctl") == (True, "nerdctl: 1.7.0")

    @patch(
        "devenv.cli.subprocess.run",
        side_effect=subprocess.CalledProcessError(1, ["docker"]),
    )
    @patch("devenv.cli.shutil.which", return_value="/usr/bin/docker")
    def test_version_command_fails(
        self, mock_which: MagicMock, mock_run: MagicMock
    ) -> None:
        ok, detail = _check_engine("docker")
        assert ok is False
        assert "--version failed" in detail


class TestCmdCheck:
    @patch(
        "devenv.cli._check_engine",
        return_value=(True, "docker: 27.5.1 (>= 20.10)"),
    )
    def test_all_ok(
        self,
        mock_dep: MagicMock,
        engine,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        assert cmd_check([]) == ExitCode.SUCCESS
        out = capsys.readouterr().out
        assert "daemon: reachable" in out
        assert "All checks passed" in out

    @patch(
        "devenv.cli._check_engine",
        return_value=(True, "docker: 27.5.1 (>= 20.10)"),
    )
    def test_daemon_down(
        self,
        mock_dep: MagicMock,
        engine,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        engine.reachable = False
        assert cmd_check([]) == ExitCode.PREREQUISITE_NOT_MET
        out = capsys.readouterr().out
        assert "not running" in out
        assert "Some checks failed" in out


# ── end to end against the in-memory engine ─────────────────────────


class TestEndToEnd:
    def test_secret_reaches_container(
        self, engine, config_file, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A secret is visible in its container and gone after recreation."""
        path = config_file()
        code = cmd_up(["--config", str(path), "--secret", "API_KEY=abc123"])
        assert code == ExitCode.SUCCESS
        capsys.readouterr()

        assert cmd_shell(["demo", "--command", "echo $API_KEY"]) == 0
        assert capsys.readouterr().out.strip() == "abc123"

        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
        assert engine.containers == {}

        assert cmd_shell(["demo", "--command", "true"]) == (
            ExitCode.PREREQUISITE_NOT_MET
        )

        assert cmd_up(["--config", str(path)]) == ExitCode.SUCCESS
        capsys.readouterr()
        assert cmd_shell(["demo", "--command", "echo $API_KEY"]) == 0
        assert capsys.readouterr().out.strip() == ""

    def test_down_twice(self, engine, config_file) -> None:
        path = config_file()
        assert cmd_up(["--config", str(path)]) == ExitCode.SUCCESS
        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
        assert cmd_down(["demo", "--force"]) == ExitCode.SUCCESS
