# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container engine client.

All stateful work (image builds, container create/start/stop/remove,
exec) is delegated to a Docker-compatible command-line tool. The
``ContainerEngineClient`` protocol is the narrow surface the controller
and shell gateway depend on; ``DockerCLIClient`` implements it by
shelling out to ``docker`` (or ``podman``, or any CLI exposing the same
verbs).

Error mapping:

- Engine binary not on PATH, or daemon unreachable -> PrerequisiteError
- Any other non-zero exit -> EngineCommandError (an OperationError)
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from devenv.errors import OperationError, PrerequisiteError
from devenv.types import (
    EnvironmentInstance,
    EnvironmentStatus,
    Mount,
    PortMapping,
    Secret,
)


logger = logging.getLogger(__name__)

DEFAULT_ENGINE_COMMAND = "docker"
ENGINE_COMMAND_ENV = "DEVENV_ENGINE"

# Timeout for the daemon reachability probe.
PING_TIMEOUT_SECONDS = 10

_NOT_FOUND_MARKERS = ("no such container", "no such object", "not found")


class EngineCommandError(OperationError):
    """An engine command exited non-zero.

    Attributes:
        verb: Engine subcommand that failed (``run``, ``stop``, ...).
        stderr: Captured standard error, stripped.
    """

    def __init__(self, verb: str, stderr: str) -> None:
        detail = stderr or "no error output"
        super().__init__(f"{verb} failed: {detail}")
        self.verb = verb
        self.stderr = stderr


@dataclass(frozen=True)
class RunSpec:
    """Everything needed for one detached ``run`` call.

    Attributes:
        name: Container name.
        image: Image reference.
        work_dir: Working directory inside the container.
        mounts: Volume mounts.
        ports: Published ports.
        env: Non-secret environment variables.
        secret_assignments: ``KEY=VALUE`` strings from the secret injector.
        labels: Container labels.
        command: Container command.
    """

    name: str
    image: str
    work_dir: str
    mounts: tuple[Mount, ...] = ()
    ports: tuple[PortMapping, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    secret_assignments: tuple[str, ...] = field(default=(), repr=False)
    labels: dict[str, str] = field(default_factory=dict)
    command: tuple[str, ...] = ("/bin/bash",)

    def to_args(self) -> list[str]:
        """Build ``run`` arguments (without the engine binary)."""
        args = ["run", "--name", self.name, "-w", self.work_dir, "-d", "-it"]

        for mount in self.mounts:
            args.extend(["-v", mount.to_volume_spec()])

        for port in self.ports:
            args.extend(["-p", port.to_publish_spec()])

        for key, value in self.env.items():
            args.extend(["-e", f"{key}={value}"])

        for assignment in self.secret_assignments:
            args.extend(["-e", assignment])

        for key, value in self.labels.items():
            args.extend(["--label", f"{key}={value}"])

        args.append(self.image)
        args.extend(self.command)
        return args


def redact_args(args: Sequence[str]) -> list[str]:
    """Mask the values of ``-e KEY=VALUE`` arguments for logging."""
    redacted: list[str] = []
    skip_next = False
    for i, arg in enumerate(args):
        if skip_next:
            skip_next = False
            continue
        if arg == "-e" and i + 1 < len(args):
            next_arg = args[i + 1]
            if "=" in next_arg:
                var_name = next_arg.split("=", 1)[0]
                redacted.extend(["-e", f"{var_name}=***"])
                skip_next = True
                continue
        redacted.append(arg)
    return redacted


class ContainerEngineClient(Protocol):
    """Operations the lifecycle controller and shell gateway rely on."""

    @property
    def command(self) -> str: ...

    def ping(self) -> None: ...

    def list_names(self) -> list[str]: ...

    def inspect(self, name: str) -> EnvironmentInstance | None: ...

    def build(
        self, tag: str, context_dir: Path, dockerfile: Path | None = None
    ) -> None: ...

    def pull(self, image: str) -> None: ...

    def run(self, spec: RunSpec) -> str: ...

    def start(self, name: str) -> None: ...

    def stop(self, name: str, timeout: int) -> None: ...

    def kill(self, name: str) -> None: ...

    def remove(
        self, name: str, *, volumes: bool = False, force: bool = False
    ) -> None: ...

    def exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        user: str | None = None,
        workdir: str | None = None,
        interactive: bool = False,
    ) -> int: ...

    def list_volumes(self, name_filter: str) -> list[str]: ...

    def remove_volume(self, name: str) -> None: ...


def _parse_created(value: str) -> datetime | None:
    """Parse an engine ``Created`` timestamp.

    Engines report nanosecond precision (``2026-01-02T03:04:05.123456789Z``),
    which ``datetime.fromisoformat`` does not accept, so the fraction is
    cut to microseconds.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits) :]}"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable Created timestamp: %s", value)
        return None


def instance_from_inspect(data: dict[str, Any]) -> EnvironmentInstance:
    """Build an EnvironmentInstance from one ``inspect`` JSON object."""
    state = data.get("State") or {}
    config = data.get("Config") or {}
    return EnvironmentInstance(
        id=data.get("Id", ""),
        name=data.get("Name", "").lstrip("/"),
        status=EnvironmentStatus.from_engine_state(state.get("Status", "")),
        created_at=_parse_created(data.get("Created", "")),
        image=config.get("Image", ""),
        labels=dict(config.get("Labels") or {}),
    )


class DockerCLIClient:
    """ContainerEngineClient backed by a Docker-compatible CLI.

    Args:
        command: Engine binary (``docker``, ``podman``, ...).
    """

    def __init__(self, command: str = DEFAULT_ENGINE_COMMAND) -> None:
        self._cmd = command

    @property
    def command(self) -> str:
        return self._cmd

    def _run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run an engine command, capturing output.

        Raises:
            PrerequisiteError: Engine binary not found.
            EngineCommandError: Non-zero exit.
        """
        cmd = [self._cmd, *args]
        logger.debug("Running: %s", " ".join(redact_args(cmd)))
        try:
            return subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise PrerequisiteError(
                f"{self._cmd} command not found",
                remedy="install OrbStack or Docker",
            ) from None
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.strip() if e.stderr else ""
            raise EngineCommandError(args[0], stderr) from e

    def ping(self) -> None:
        """Check that the engine binary exists and its daemon responds.

        Raises:
            PrerequisiteError: If either check fails.
        """
        if shutil.which(self._cmd) is None:
            raise PrerequisiteError(
                f"{self._cmd} command not found",
                remedy="install OrbStack or Docker",
            )
        try:
            self._run(["info"], timeout=PING_TIMEOUT_SECONDS)
        except (EngineCommandError, subprocess.TimeoutExpired) as e:
            raise PrerequisiteError(
                f"{self._cmd} daemon is not running",
                remedy="start OrbStack or Docker",
            ) from e

    def list_names(self) -> list[str]:
        """Names of all containers, running or not."""
        result = self._run(["ps", "-a", "--format", "{{.Names}}"])
        return [
            line.strip()
            for line in result.stdout.splitlines()
            if line.strip()
        ]

    def inspect(self, name: str) -> EnvironmentInstance | None:
        """Query a container by name.

        Returns:
            The observed instance, or None if no such container exists.
        """
        try:
            result = self._run(["inspect", "--type", "container", name])
        except EngineCommandError as e:
            if any(m in e.stderr.lower() for m in _NOT_FOUND_MARKERS):
                return None
            raise
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise EngineCommandError(
                "inspect", f"unparseable output: {e}"
            ) from e
        if not data:
            return None
        return instance_from_inspect(data[0])

    def build(
        self, tag: str, context_dir: Path, dockerfile: Path | None = None
    ) -> None:
        args = ["build", "-t", tag]
        if dockerfile is not None:
            args.extend(["-f", str(dockerfile)])
        args.append(str(context_dir))
        self._run(args)

    def pull(self, image: str) -> None:
        self._run(["pull", image])

    def run(self, spec: RunSpec) -> str:
        """Create and start a detached container.

        Returns:
            Container ID.
        """
        result = self._run(spec.to_args())
        return result.stdout.strip()

    def start(self, name: str) -> None:
        self._run(["start", name])

    def stop(self, name: str, timeout: int) -> None:
        self._run(["stop", "-t", str(timeout), name])

    def kill(self, name: str) -> None:
        self._run(["kill", name])

    def remove(
        self, name: str, *, volumes: bool = False, force: bool = False
    ) -> None:
        args = ["rm"]
        if volumes:
            args.append("-v")
        if force:
            args.append("-f")
        args.append(name)
        self._run(args)

    def exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        user: str | None = None,
        workdir: str | None = None,
        interactive: bool = False,
    ) -> int:
        """Run a command in a running container with inherited stdio.

        Output streams straight to the caller's terminal.

        Returns:
            The command's exit code, untranslated.
        """
        cmd = [self._cmd, "exec"]
        if interactive:
            cmd.append("-it")
        if user:
            cmd.extend(["--user", user])
        if workdir:
            cmd.extend(["--workdir", workdir])
        cmd.append(name)
        cmd.extend(command)
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, check=False)
        except FileNotFoundError:
            raise PrerequisiteError(
                f"{self._cmd} command not found",
                remedy="install OrbStack or Docker",
            ) from None
        return result.returncode

    def list_volumes(self, name_filter: str) -> list[str]:
        result = self._run(
            ["volume", "ls", "-q", "--filter", f"name={name_filter}"]
        )
        return [
            line.strip()
            for line in result.stdout.splitlines()
            if line.strip()
        ]

    def remove_volume(self, name: str) -> None:
        self._run(["volume", "rm", name])
