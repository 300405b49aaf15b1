# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Type definitions shared by the devenv components.

Provides the resolved environment description (EnvironmentConfig and its
Mount / PortMapping records), transient Secret values, the observed
EnvironmentInstance, and the process ExitCode enumeration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path


class MountMode(Enum):
    """Access mode of a host directory inside the container."""

    RO = "ro"
    RW = "rw"


@dataclass(frozen=True)
class Mount:
    """A host-directory-to-container-directory binding.

    Attributes:
        host_path: Path on the invoking host.
        container_path: Absolute path inside the container.
        mode: Read-only or read-write.
    """

    host_path: Path
    container_path: str
    mode: MountMode = MountMode.RW

    @property
    def read_only(self) -> bool:
        return self.mode is MountMode.RO

    def to_volume_spec(self) -> str:
        """Render as an engine volume spec (``host:container:mode``)."""
        return f"{self.host_path}:{self.container_path}:{self.mode.value}"


@dataclass(frozen=True)
class PortMapping:
    """A published container port.

    Attributes:
        host_port: Port bound on the host.
        container_port: Port inside the container.
        protocol: ``tcp`` or ``udp``.
    """

    host_port: int
    container_port: int
    protocol: str = "tcp"

    def to_publish_spec(self) -> str:
        """Render as an engine publish spec (``host:container[/udp]``)."""
        spec = f"{self.host_port}:{self.container_port}"
        if self.protocol != "tcp":
            spec += f"/{self.protocol}"
        return spec


@dataclass(frozen=True)
class Secret:
    """Credential material injected into the container environment.

    The value is held in memory only. It is excluded from ``repr()`` so
    that a Secret accidentally passed to a log call does not leak.
    """

    key: str
    value: str = field(repr=False)

    def to_assignment(self) -> str:
        return f"{self.key}={self.value}"


@dataclass(frozen=True)
class EnvironmentConfig:
    """Resolved description of one environment instance.

    Constructed once per ``up`` invocation from the configuration file
    and command-line overrides, then treated as immutable.

    Attributes:
        name: Unique environment (container) name.
        base_image: Image pulled when no local Dockerfile is present.
        work_dir: Working directory inside the container.
        mounts: Ordered host mounts.
        ports: Ordered port mappings.
        env_vars: Non-secret environment variables.
        persist_data: Keep container storage on teardown.
        nodejs_version: Informational Node.js version (image label).
        python_version: Informational Python version (image label).
        build_context: Directory searched for a Dockerfile.
    """

    name: str
    base_image: str
    work_dir: str
    mounts: tuple[Mount, ...] = ()
    ports: tuple[PortMapping, ...] = ()
    env_vars: dict[str, str] = field(default_factory=dict)
    persist_data: bool = False
    nodejs_version: str | None = None
    python_version: str | None = None
    build_context: Path | None = None


class EnvironmentStatus(Enum):
    """Observed state of an environment in the container engine."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ABSENT = "absent"

    @classmethod
    def from_engine_state(cls, state: str) -> EnvironmentStatus:
        """Map an engine ``State.Status`` string to an EnvironmentStatus."""
        state = state.strip().lower()
        if state == "created":
            return cls.CREATING
        if state in ("running", "restarting"):
            return cls.RUNNING
        return cls.STOPPED


@dataclass(frozen=True)
class EnvironmentInstance:
    """Runtime state of an environment as reported by the engine.

    Observed, never stored: every query goes back to the engine.
    """

    id: str
    name: str
    status: EnvironmentStatus
    created_at: datetime | None = None
    image: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.status is EnvironmentStatus.RUNNING


class ExitCode(IntEnum):
    """Process exit codes surfaced by the ``devenv`` commands."""

    SUCCESS = 0
    INVALID_ARGS = 1
    PREREQUISITE_NOT_MET = 2
    RESOURCE_CONFLICT = 3
    INVALID_PATH = 4
    OPERATION_FAILURE = 5
