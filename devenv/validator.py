# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Pre-flight validation of a resolved EnvironmentConfig.

Checks run in a fixed order and stop at the first failure:

1. InvalidName -- name fails ``[A-Za-z0-9-]{1,64}``
2. MissingRequiredField -- base image empty, or working directory empty
   or not absolute
3. MountPathNotFound -- a mount's host path does not exist
4. NameConflict -- the engine already knows a container by that name
5. PortInUse -- a host port is already bound on this machine
6. InvalidSecretFormat -- a secret is not ``KEY=VALUE``

Validation is read-only: it inspects the host filesystem, host sockets
and the engine's container listing, and mutates nothing.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import socket
from collections.abc import Callable, Sequence

from devenv.engine import ContainerEngineClient
from devenv.errors import ValidationError, ValidationKind
from devenv.secrets import parse_secret
from devenv.types import EnvironmentConfig, Secret


logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"[A-Za-z0-9-]{1,64}")

PortProbe = Callable[[int, str], bool]
PathExists = Callable[[str], bool]


def is_port_in_use(port: int, protocol: str = "tcp") -> bool:
    """Probe whether a host port is already bound.

    Attempts to bind the port on all interfaces. Only EADDRINUSE counts
    as in use; other bind errors (e.g. EACCES on privileged ports) are
    left for the engine to report.
    """
    sock_type = socket.SOCK_DGRAM if protocol == "udp" else socket.SOCK_STREAM
    with socket.socket(socket.AF_INET, sock_type) as sock:
        if sock_type == socket.SOCK_STREAM:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("0.0.0.0", port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                return True
            logger.debug("Port %d probe inconclusive: %s", port, e)
            return False
    return False


def validate(
    config: EnvironmentConfig,
    raw_secrets: Sequence[str],
    *,
    engine: ContainerEngineClient,
    port_probe: PortProbe = is_port_in_use,
    path_exists: PathExists = os.path.exists,
    logger: logging.Logger = logger,
) -> list[Secret]:
    """Validate a configuration and the raw secret strings.

    Args:
        config: Resolved configuration.
        raw_secrets: ``KEY=VALUE`` strings from the command line.
        engine: Queried for existing container names.
        port_probe: Returns True if a (port, protocol) is taken.
        path_exists: Returns True if a host path exists.
        logger: Diagnostics sink; secret keys only, never values.

    Returns:
        The parsed secrets, in input order.

    Raises:
        ValidationError: First failing check.
        PrerequisiteError: Engine unreachable while checking names.
    """
    if not NAME_PATTERN.fullmatch(config.name):
        raise ValidationError(
            ValidationKind.INVALID_NAME,
            f"Invalid environment name '{config.name}': must be letters, "
            "digits and hyphens, max 64 characters",
        )

    if not config.base_image.strip():
        raise ValidationError(
            ValidationKind.MISSING_REQUIRED_FIELD,
            "BASE_IMAGE is required",
        )
    if not config.work_dir.strip():
        raise ValidationError(
            ValidationKind.MISSING_REQUIRED_FIELD,
            "WORK_DIR is required",
        )
    if not config.work_dir.startswith("/"):
        raise ValidationError(
            ValidationKind.MISSING_REQUIRED_FIELD,
            f"WORK_DIR must be an absolute path, got '{config.work_dir}'",
        )

    for mount in config.mounts:
        if not path_exists(str(mount.host_path)):
            raise ValidationError(
                ValidationKind.MOUNT_PATH_NOT_FOUND,
                f"Mount path does not exist: {mount.host_path}",
                remedy=f"mkdir -p {mount.host_path}",
            )

    if config.name in engine.list_names():
        raise ValidationError(
            ValidationKind.NAME_CONFLICT,
            f"Environment '{config.name}' already exists",
            remedy=f"devenv down {config.name} --force",
        )

    for port in config.ports:
        if port_probe(port.host_port, port.protocol):
            raise ValidationError(
                ValidationKind.PORT_IN_USE,
                f"Port {port.host_port} is already in use",
                remedy=f"lsof -i :{port.host_port}",
            )

    secrets: list[Secret] = []
    for raw in raw_secrets:
        secret = parse_secret(raw)
        if secret is None:
            # Show the key part only; the rest may be the secret itself
            shown = raw.partition("=")[0] if "=" in raw else "<no '='>"
            raise ValidationError(
                ValidationKind.INVALID_SECRET_FORMAT,
                f"Invalid secret format (key: {shown}): must be KEY=VALUE "
                "with KEY matching [A-Za-z_][A-Za-z0-9_]*",
            )
        logger.debug("Secret validated: %s", secret.key)
        secrets.append(secret)

    logger.debug("Configuration for '%s' is valid", config.name)
    return secrets
