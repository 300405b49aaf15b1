# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Disposable development containers for running coding agents.

The package wraps a Docker-compatible container CLI to create, enter and
tear down one named sandbox environment at a time. The container engine
is the only source of truth for environment state; nothing here caches
it between invocations.
"""

from devenv.config import ConfigOverrides, load_config
from devenv.controller import (
    DownResult,
    LifecycleController,
    LifecyclePhase,
    TeardownPlan,
    UpResult,
)
from devenv.engine import ContainerEngineClient, DockerCLIClient, RunSpec
from devenv.errors import (
    ConfigError,
    ContainerStartTimeout,
    DevEnvError,
    NotFoundError,
    NotRunningError,
    OperationError,
    ParseError,
    PrerequisiteError,
    ValidationError,
    ValidationKind,
)
from devenv.shell import ShellGateway
from devenv.types import (
    EnvironmentConfig,
    EnvironmentInstance,
    EnvironmentStatus,
    ExitCode,
    Mount,
    MountMode,
    PortMapping,
    Secret,
)


__version__ = "1.0.0"

__all__ = [
    # config
    "ConfigOverrides",
    "load_config",
    # controller
    "DownResult",
    "LifecycleController",
    "LifecyclePhase",
    "TeardownPlan",
    "UpResult",
    # engine
    "ContainerEngineClient",
    "DockerCLIClient",
    "RunSpec",
    # shell
    "ShellGateway",
    # types
    "EnvironmentConfig",
    "EnvironmentInstance",
    "EnvironmentStatus",
    "ExitCode",
    "Mount",
    "MountMode",
    "PortMapping",
    "Secret",
    # errors
    "ConfigError",
    "ContainerStartTimeout",
    "DevEnvError",
    "NotFoundError",
    "NotRunningError",
    "OperationError",
    "ParseError",
    "PrerequisiteError",
    "ValidationError",
    "ValidationKind",
]
