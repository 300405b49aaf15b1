# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exception taxonomy for devenv.

One exception class per failure surface. Each carries the process exit
code the CLI reports for it and, where a common fix exists, a suggested
remedial command. Callers branch on the class (or ``exit_code``), never
on message text.
"""

from __future__ import annotations

from enum import Enum

from devenv.types import ExitCode


class DevEnvError(Exception):
    """Base exception for all devenv failures.

    Attributes:
        exit_code: Process exit status for this failure.
        remedy: Optional suggested command or action for the user.
    """

    exit_code: ExitCode = ExitCode.OPERATION_FAILURE

    def __init__(self, message: str, *, remedy: str | None = None) -> None:
        super().__init__(message)
        self.remedy = remedy

    @property
    def classification(self) -> str:
        """Short label shown on the first line of the error report."""
        return type(self).__name__


class ConfigError(DevEnvError):
    """Missing or malformed configuration."""

    exit_code = ExitCode.INVALID_ARGS


class ParseError(ConfigError):
    """A mount, port or variable entry has the wrong shape."""

    def __init__(
        self, message: str, *, entry: str, remedy: str | None = None
    ) -> None:
        super().__init__(message, remedy=remedy)
        self.entry = entry


class ValidationKind(Enum):
    """Validation failure kinds, in the order they are checked."""

    INVALID_NAME = "InvalidName"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    MOUNT_PATH_NOT_FOUND = "MountPathNotFound"
    NAME_CONFLICT = "NameConflict"
    PORT_IN_USE = "PortInUse"
    INVALID_SECRET_FORMAT = "InvalidSecretFormat"


_KIND_EXIT_CODES: dict[ValidationKind, ExitCode] = {
    ValidationKind.INVALID_NAME: ExitCode.INVALID_ARGS,
    ValidationKind.MISSING_REQUIRED_FIELD: ExitCode.INVALID_ARGS,
    ValidationKind.MOUNT_PATH_NOT_FOUND: ExitCode.INVALID_PATH,
    ValidationKind.NAME_CONFLICT: ExitCode.RESOURCE_CONFLICT,
    ValidationKind.PORT_IN_USE: ExitCode.RESOURCE_CONFLICT,
    ValidationKind.INVALID_SECRET_FORMAT: ExitCode.INVALID_ARGS,
}


class ValidationError(DevEnvError):
    """The resolved configuration failed a pre-flight check.

    Attributes:
        kind: Which check failed.
    """

    def __init__(
        self,
        kind: ValidationKind,
        message: str,
        *,
        remedy: str | None = None,
    ) -> None:
        super().__init__(message, remedy=remedy)
        self.kind = kind
        self.exit_code = _KIND_EXIT_CODES[kind]

    @property
    def classification(self) -> str:
        return self.kind.value


class PrerequisiteError(DevEnvError):
    """The container engine is missing or its daemon is unreachable."""

    exit_code = ExitCode.PREREQUISITE_NOT_MET


class OperationError(DevEnvError):
    """A mutating engine operation failed after validation passed."""

    exit_code = ExitCode.OPERATION_FAILURE


class ContainerStartTimeout(OperationError):
    """The container did not report running within the health window."""


class NotFoundError(DevEnvError):
    """The target environment does not exist."""

    exit_code = ExitCode.PREREQUISITE_NOT_MET


class NotRunningError(DevEnvError):
    """The target environment exists but could not be brought up."""

    exit_code = ExitCode.PREREQUISITE_NOT_MET
