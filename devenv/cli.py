# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""devenv CLI: multi-command entry point.

Provides ``devenv <command>`` with subcommands for creating, entering and
tearing down a disposable development container. Running ``devenv`` with
no arguments prints version and usage information.

Subcommands:

* ``up``     -- create and start an environment
* ``down``   -- stop and remove an environment
* ``shell``  -- open a shell or run a command in an environment
* ``status`` -- show an environment's observed state
* ``init``   -- write a stub config and the default image build context
* ``check``  -- verify the container engine is installed and reachable

Exit codes are stable per failure kind (see ``devenv.types.ExitCode``) so
automation can branch on them without parsing output.
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import subprocess
import sys
from pathlib import Path
from typing import NoReturn, TextIO

from devenv import __version__
from devenv.config import (
    DEFAULT_CONFIG_PATH,
    ConfigOverrides,
    load_config,
    write_stub_config,
)
from devenv.controller import LifecycleController, TeardownPlan, UpResult
from devenv.engine import (
    DEFAULT_ENGINE_COMMAND,
    ENGINE_COMMAND_ENV,
    DockerCLIClient,
)
from devenv.errors import DevEnvError, PrerequisiteError
from devenv.image import materialize_build_context
from devenv.logging import LOGGER_NAME, configure_logging
from devenv.secrets import register_for_redaction
from devenv.shell import DEFAULT_USER, ShellGateway
from devenv.types import EnvironmentConfig, ExitCode, Secret

# Known subcommand names.
_SUBCOMMANDS = frozenset({"up", "down", "shell", "status", "init", "check"})

# Minimum engine versions known to support every flag used here.
_MIN_VERSIONS: dict[str, tuple[int, ...]] = {
    "docker": (20, 10),
    "podman": (4, 0),
}

_USAGE = """\
usage: devenv <command> [args]

commands:
  up       Create and start an environment
  down     Stop and remove an environment
  shell    Open a shell or run a command in an environment
  status   Show an environment's status
  init     Write a stub config and the default image build context
  check    Verify the container engine is installed and running

Run 'devenv <command> --help' for command-specific help.\
"""


# ── Version parsing ─────────────────────────────────────────────────

_VERSION_RE = re.compile(r"\d+(?:\.\d+)*")


def _parse_version(output: str) -> tuple[int, ...]:
    """Version tuple from ``<engine> --version`` output.

    ``Docker version 27.5.1, build 9f9e405`` gives ``(27, 5, 1)``;
    pre-release suffixes such as ``-rc1`` are ignored.

    Raises:
        ValueError: If the output holds no version number.
    """
    match = _VERSION_RE.search(output)
    if match is None:
        raise ValueError(f"Cannot parse version from: {output!r}")
    return tuple(int(part) for part in match.group().split("."))


def _fmt_version(v: tuple[int, ...]) -> str:
    return ".".join(str(p) for p in v)


# ── Terminal colors ─────────────────────────────────────────────────


def _use_color(stream: TextIO | None = None) -> bool:
    """Color only on a TTY, and never with ``NO_COLOR`` or ``TERM=dumb``."""
    if os.environ.get("NO_COLOR") or os.environ.get("TERM") == "dumb":
        return False
    return (stream or sys.stdout).isatty()


class _Style:
    """Status colors for CLI output; identity when color is off."""

    _CODES = {
        "bold": "1",
        "red": "31",
        "green": "32",
        "yellow": "33",
        "cyan": "36",
    }

    def __init__(self, color: bool) -> None:
        self._on = color

    def _wrap(self, name: str, text: str) -> str:
        if not self._on:
            return text
        return f"\033[{self._CODES[name]}m{text}\033[0m"

    def bold(self, text: str) -> str:
        return self._wrap("bold", text)

    def green(self, text: str) -> str:
        return self._wrap("green", text)

    def red(self, text: str) -> str:
        return self._wrap("red", text)

    def yellow(self, text: str) -> str:
        return self._wrap("yellow", text)

    def cyan(self, text: str) -> str:
        return self._wrap("cyan", text)


# ── Shared plumbing ─────────────────────────────────────────────────


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with INVALID_ARGS on usage errors.

    argparse exits with status 2 by default, which here means
    "prerequisite not met / not found".
    """

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(ExitCode.INVALID_ARGS, f"{self.prog}: error: {message}\n")


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--engine",
        default=None,
        metavar="CMD",
        help=(
            "Container engine command"
            f" (default: ${ENGINE_COMMAND_ENV} or {DEFAULT_ENGINE_COMMAND})"
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose diagnostics (secret keys only, never values)",
    )


def _engine_command(explicit: str | None) -> str:
    return (
        explicit
        or os.environ.get(ENGINE_COMMAND_ENV)
        or DEFAULT_ENGINE_COMMAND
    )


def _make_engine(args: argparse.Namespace) -> DockerCLIClient:
    return DockerCLIClient(_engine_command(args.engine))


def _print_error(error: DevEnvError, s: _Style) -> None:
    """Report an error: classification, cause, and remedy if known."""
    print(s.red(f"ERROR [{error.classification}]"), file=sys.stderr)
    print(f"  {error}", file=sys.stderr)
    if error.remedy:
        print(f"  Try: {s.cyan(error.remedy)}", file=sys.stderr)


def _rule(s: _Style, color: str = "green") -> str:
    return getattr(s, color)("━" * 52)


# ── up subcommand ───────────────────────────────────────────────────


def _print_up_success(
    result: UpResult, config: EnvironmentConfig, s: _Style
) -> None:
    name = config.name
    print(_rule(s))
    print(s.green(f"✓ Environment '{name}' created successfully!"))
    print(_rule(s))
    print()
    print("Container Information:")
    print(f"  Name:   {name}")
    print(f"  Image:  {result.image}")
    print(f"  Status: {result.instance.status.value}")
    print()
    print(f"Working Directory: {config.work_dir}")
    if config.ports:
        print("Port Mappings:")
        for port in config.ports:
            print(f"  - {port.to_publish_spec()}")
    print()
    print("Next Steps:")
    print(f"  1. Access shell: {s.cyan(f'devenv shell {name}')}")
    print(f"  2. Tear down:    {s.cyan(f'devenv down {name}')}")


def cmd_up(argv: list[str]) -> int:
    """Create and start an environment.

    Returns:
        0 on success, 1 invalid args/config, 2 engine unavailable,
        3 name or port conflict, 4 missing mount path, 5 operation failure.
    """
    parser = _ArgumentParser(
        prog="devenv up",
        description="Create an isolated development environment.",
        epilog=(
            "Secrets are injected as environment variables at creation "
            "and never written to disk."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--name", default=None, help="Override ENV_NAME from the config"
    )
    parser.add_argument(
        "--mount",
        action="append",
        default=[],
        metavar="HOST:CONTAINER[:MODE]",
        help="Additional mount (repeatable)",
    )
    parser.add_argument(
        "--port",
        action="append",
        default=[],
        metavar="HOST:CONTAINER",
        help="Additional port mapping (repeatable)",
    )
    parser.add_argument(
        "--secret",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Inject a secret environment variable (repeatable)",
    )
    parser.add_argument(
        "--build-context",
        type=Path,
        default=None,
        metavar="DIR",
        help="Directory holding the Dockerfile (default: current directory)",
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)

    secret_filter = configure_logging(verbose=args.verbose)
    register_for_redaction(
        [Secret(*raw.split("=", 1)) for raw in args.secret if "=" in raw],
        secret_filter,
    )
    log = logging.getLogger(LOGGER_NAME)
    s = _Style(_use_color())

    try:
        config = load_config(
            args.config,
            ConfigOverrides(
                name=args.name,
                mounts=tuple(args.mount),
                ports=tuple(args.port),
                build_context=args.build_context,
            ),
        )
        print(f"Creating environment '{config.name}'...")
        controller = LifecycleController(_make_engine(args), logger=log)
        result = controller.up(config, args.secret)
    except DevEnvError as e:
        _print_error(e, s)
        return e.exit_code

    _print_up_success(result, config, s)
    return ExitCode.SUCCESS


# ── down subcommand ─────────────────────────────────────────────────


def _confirm_teardown(plan: TeardownPlan) -> bool:
    """Ask on the terminal before removing an environment."""
    s = _Style(_use_color())
    print(_rule(s, "yellow"))
    print(s.yellow(f"⚠  WARNING: About to remove environment '{plan.name}'"))
    print(_rule(s, "yellow"))
    print()
    print("This will remove:")
    print(f"  - Container: {plan.name}")
    if plan.preserve_storage:
        print("  - Container only (volumes will be preserved)")
    else:
        for volume in plan.volumes:
            print(f"  - Volume: {volume}")
    print()
    try:
        reply = input("Are you sure you want to continue? (y/N): ")
    except EOFError:
        print()
        return False
    return reply.strip().lower() in ("y", "yes")


def cmd_down(argv: list[str]) -> int:
    """Stop and remove an environment.

    Idempotent: an absent environment is reported and exits 0, as does
    declining the confirmation prompt.

    Returns:
        0 on success, no-op or cancellation; 1 invalid args;
        2 engine unavailable.
    """
    parser = _ArgumentParser(
        prog="devenv down",
        description="Tear down an isolated development environment.",
    )
    parser.add_argument("name", help="Environment to tear down")
    parser.add_argument(
        "--force", action="store_true", help="Skip the confirmation prompt"
    )
    parser.add_argument(
        "--keep-volumes",
        action="store_true",
        help="Preserve data volumes",
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    log = logging.getLogger(LOGGER_NAME)
    s = _Style(_use_color())
    engine = _make_engine(args)

    try:
        result = LifecycleController(engine, logger=log).down(
            args.name,
            skip_confirmation=args.force,
            confirm=_confirm_teardown,
            keep_volumes=args.keep_volumes,
        )
    except DevEnvError as e:
        _print_error(e, s)
        return e.exit_code

    if not result.found:
        print(
            s.yellow(f"Environment '{args.name}' not found or already removed")
        )
        return ExitCode.SUCCESS
    if result.cancelled:
        print(s.yellow("Cancelled"))
        return ExitCode.SUCCESS

    for volume in result.removed_volumes:
        print(f"  Removed volume: {volume}")
    for warning in result.warnings:
        print(s.yellow(f"Warning: {warning}"))
    if result.warnings:
        print(s.yellow("Teardown completed with warnings"))
    else:
        print(_rule(s))
        print(s.green(f"✓ Environment '{args.name}' removed successfully"))
        print(_rule(s))

    if result.preserved_storage:
        print()
        print("Note: Volumes were preserved. To remove them later, run:")
        print(f"  {engine.command} volume ls --filter 'name={args.name}'")
        print(f"  {engine.command} volume rm <volume-name>")
    return ExitCode.SUCCESS


# ── shell subcommand ────────────────────────────────────────────────


def cmd_shell(argv: list[str]) -> int:
    """Open a shell or run one command in an environment.

    Returns:
        The command's own exit code; 1 invalid args; 2 environment not
        found or not running.
    """
    parser = _ArgumentParser(
        prog="devenv shell",
        description=(
            "Access a shell or execute a command in an isolated "
            "development environment."
        ),
    )
    parser.add_argument("name", help="Environment to access")
    parser.add_argument(
        "--command",
        default=None,
        metavar="CMD",
        help="Run CMD with /bin/bash -c instead of an interactive shell",
    )
    parser.add_argument(
        "--user",
        default=None,
        help=f"Run as USER (default: {DEFAULT_USER})",
    )
    parser.add_argument(
        "--workdir",
        default=None,
        metavar="DIR",
        help="Working directory (default: the container's)",
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    log = logging.getLogger(LOGGER_NAME)
    s = _Style(_use_color(sys.stderr))
    gateway = ShellGateway(_make_engine(args), logger=log)

    try:
        if args.command is None:
            gateway.ensure_running(args.name)
            print(
                s.green(f"Accessing shell in '{args.name}'..."),
                file=sys.stderr,
            )
            print(
                s.yellow("Type 'exit' or press Ctrl+D to leave the shell"),
                file=sys.stderr,
            )
        return gateway.open(
            args.name,
            command=args.command,
            user=args.user,
            workdir=args.workdir,
        )
    except DevEnvError as e:
        _print_error(e, s)
        return e.exit_code


# ── status subcommand ───────────────────────────────────────────────


def cmd_status(argv: list[str]) -> int:
    """Print an environment's observed state.

    Returns:
        0 if running, 2 if absent or stopped.
    """
    parser = _ArgumentParser(
        prog="devenv status",
        description="Show the state of an environment.",
    )
    parser.add_argument("name", help="Environment to query")
    _add_common_args(parser)
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    log = logging.getLogger(LOGGER_NAME)
    s = _Style(_use_color())

    try:
        instance = LifecycleController(_make_engine(args), logger=log).status(
            args.name
        )
    except DevEnvError as e:
        _print_error(e, s)
        return e.exit_code

    if instance.is_running:
        label = s.green(instance.status.value)
    else:
        label = s.yellow(instance.status.value)
    print(f"{instance.name}: {label}")
    if instance.id:
        print(f"  ID:      {instance.id[:12]}")
        print(f"  Image:   {instance.image}")
        if instance.created_at is not None:
            print(f"  Created: {instance.created_at.isoformat()}")
    return (
        ExitCode.SUCCESS
        if instance.is_running
        else ExitCode.PREREQUISITE_NOT_MET
    )


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Write a stub config and the default image build context.

    Existing files are never overwritten.

    Returns:
        Exit code (always 0 unless arguments are invalid).
    """
    parser = _ArgumentParser(
        prog="devenv init",
        description=(
            "Create config/.env and the default Dockerfile, entrypoint "
            "and runtime verification script."
        ),
    )
    parser.add_argument(
        "directory",
        nargs="?",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    args = parser.parse_args(argv)

    directory: Path = args.directory
    config_path = directory / DEFAULT_CONFIG_PATH
    if write_stub_config(config_path):
        print(f"Created stub config: {config_path}")
    else:
        print(f"Config already exists: {config_path}")

    for path in materialize_build_context(directory):
        print(f"Created {path}")
    return ExitCode.SUCCESS


# ── check subcommand ────────────────────────────────────────────────


def _check_engine(command: str) -> tuple[bool, str]:
    """Check the engine CLI is on PATH and new enough.

    The minimum comes from ``_MIN_VERSIONS`` by executable name; engines
    not listed there only need to report a version.

    Returns:
        ``(ok, detail)`` with a one-line status for ``devenv check``.
    """
    name = Path(command).name
    path = shutil.which(command)
    if path is None:
        return False, f"{name}: not found on PATH"

    try:
        result = subprocess.run(
            [command, "--version"],
            check=True,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.SubprocessError, OSError) as e:
        return False, f"{name}: found at {path} but --version failed ({e})"

    raw = result.stdout.strip() or result.stderr.strip()
    try:
        version = _parse_version(raw)
    except ValueError:
        return False, f"{name}: unrecognized version output: {raw}"

    minimum = _MIN_VERSIONS.get(name)
    if minimum is None:
        return True, f"{name}: {_fmt_version(version)}"
    if version < minimum:
        return False, (
            f"{name}: {_fmt_version(version)} "
            f"(devenv needs >= {_fmt_version(minimum)})"
        )
    got, want = _fmt_version(version), _fmt_version(minimum)
    return True, f"{name}: {got} (>= {want})"


def cmd_check(argv: list[str]) -> int:
    """Verify the container engine is installed and its daemon responds.

    Returns:
        0 if all checks pass, 2 otherwise.
    """
    parser = _ArgumentParser(
        prog="devenv check",
        description="Verify the container engine is ready.",
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    s = _Style(_use_color())
    command = _engine_command(args.engine)
    all_ok = True

    print(s.bold(f"devenv {__version__}"))
    print()
    print(s.bold("Container engine"))
    ok, detail = _check_engine(command)
    if ok:
        print(f"  {s.green('✓')} {detail}")
    else:
        print(f"  {s.red('✗')} {detail}")
        all_ok = False

    try:
        DockerCLIClient(command).ping()
        print(f"  {s.green('✓')} daemon: reachable")
    except PrerequisiteError as e:
        print(f"  {s.red('✗')} daemon: {e}")
        if e.remedy:
            print(f"  Try: {s.cyan(e.remedy)}")
        all_ok = False
    print()

    if all_ok:
        print(s.green("All checks passed."))
        return ExitCode.SUCCESS
    print(s.red("Some checks failed."))
    return ExitCode.PREREQUISITE_NOT_MET


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "up": "cmd_up",
    "down": "cmd_down",
    "shell": "cmd_shell",
    "status": "cmd_status",
    "init": "cmd_init",
    "check": "cmd_check",
}


def _print_info() -> None:
    """Print version information and available commands."""
    s = _Style(_use_color())
    print(s.bold(f"devenv {__version__}"))
    print()
    print(_USAGE)


def cli() -> None:
    """Entry point for the ``devenv`` console script.

    With no arguments, prints version and usage information.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] in ("--help", "-h"):
        _print_info()
        sys.exit(ExitCode.SUCCESS)

    if argv[0] == "--version":
        print(f"devenv {__version__}")
        sys.exit(ExitCode.SUCCESS)

    if argv[0] not in _SUBCOMMANDS:
        print(f"devenv: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(ExitCode.INVALID_ARGS)

    command = argv[0]
    rest = argv[1:]

    # Look up handler by name so tests can mock individual commands.
    import devenv.cli as _self

    handler = getattr(_self, _DISPATCH[command])
    sys.exit(int(handler(rest)))
