# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration loading for devenv.

The environment is described by a ``KEY=VALUE`` file (``config/.env`` by
default) parsed with python-dotenv, plus command-line overrides. The CLI
``--name`` replaces the file's ``ENV_NAME``; CLI mounts and ports are
appended after the ones declared in the file.

Mount, port and variable lists are parsed into typed records here.
Malformed entries raise ``ParseError`` naming the entry rather than being
truncated or passed through to the engine.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from devenv.errors import ConfigError, ParseError
from devenv.types import EnvironmentConfig, Mount, MountMode, PortMapping


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / ".env"
CONFIG_PATH_ENV = "DEVENV_CONFIG"

KNOWN_KEYS = frozenset(
    {
        "ENV_NAME",
        "BASE_IMAGE",
        "NODEJS_VERSION",
        "PYTHON_VERSION",
        "WORK_DIR",
        "HOST_MOUNTS",
        "PORTS",
        "ENVIRONMENT_VARS",
        "PERSIST_DATA",
        "BUILD_CONTEXT",
    }
)

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

_PROTOCOLS = frozenset({"tcp", "udp"})


@dataclass(frozen=True)
class ConfigOverrides:
    """Values supplied on the command line.

    Attributes:
        name: Replaces ``ENV_NAME`` from the file when set.
        mounts: Raw ``host:container[:mode]`` entries, appended.
        ports: Raw ``host:container[/proto]`` entries, appended.
        build_context: Replaces ``BUILD_CONTEXT`` from the file when set.
    """

    name: str | None = None
    mounts: tuple[str, ...] = ()
    ports: tuple[str, ...] = ()
    build_context: Path | None = None


def get_config_path(explicit: Path | None = None) -> Path:
    """Resolve which configuration file to read.

    Order: explicit argument, ``$DEVENV_CONFIG``, ``config/.env`` in the
    current working directory.
    """
    if explicit is not None:
        return explicit
    from_env = os.environ.get(CONFIG_PATH_ENV)
    if from_env:
        return Path(from_env)
    return DEFAULT_CONFIG_PATH


# ---------------------------------------------------------------------------
# Entry parsers
# ---------------------------------------------------------------------------


def parse_mount(entry: str) -> Mount:
    """Parse ``host:container[:mode]`` into a Mount.

    Raises:
        ParseError: Wrong field count, empty path, or unknown mode.
    """
    parts = entry.strip().split(":")
    if len(parts) not in (2, 3):
        raise ParseError(
            f"Invalid mount '{entry}': expected HOST:CONTAINER[:MODE]",
            entry=entry,
        )
    host, container = parts[0].strip(), parts[1].strip()
    if not host or not container:
        raise ParseError(
            f"Invalid mount '{entry}': host and container paths are required",
            entry=entry,
        )
    mode = MountMode.RW
    if len(parts) == 3:
        try:
            mode = MountMode(parts[2].strip().lower())
        except ValueError:
            raise ParseError(
                f"Invalid mount mode '{parts[2]}' in '{entry}': "
                "expected 'ro' or 'rw'",
                entry=entry,
            ) from None
    return Mount(
        host_path=Path(host).expanduser(),
        container_path=container,
        mode=mode,
    )


def _parse_port_number(text: str, entry: str) -> int:
    try:
        port = int(text.strip())
    except ValueError:
        raise ParseError(
            f"Invalid port '{text}' in '{entry}': not a number",
            entry=entry,
        ) from None
    if not 1 <= port <= 65535:
        raise ParseError(
            f"Invalid port {port} in '{entry}': must be 1-65535",
            entry=entry,
        )
    return port


def parse_port(entry: str) -> PortMapping:
    """Parse ``host:container[/proto]`` into a PortMapping.

    Raises:
        ParseError: Wrong field count, non-numeric or out-of-range port,
            or unknown protocol.
    """
    spec = entry.strip()
    protocol = "tcp"
    if "/" in spec:
        spec, protocol = spec.rsplit("/", 1)
        protocol = protocol.strip().lower()
        if protocol not in _PROTOCOLS:
            raise ParseError(
                f"Invalid protocol '{protocol}' in '{entry}': "
                "expected tcp or udp",
                entry=entry,
            )
    parts = spec.split(":")
    if len(parts) != 2:
        raise ParseError(
            f"Invalid port mapping '{entry}': expected HOST:CONTAINER",
            entry=entry,
        )
    return PortMapping(
        host_port=_parse_port_number(parts[0], entry),
        container_port=_parse_port_number(parts[1], entry),
        protocol=protocol,
    )


def parse_env_var(entry: str) -> tuple[str, str]:
    """Parse a non-secret ``KEY=VALUE`` pair.

    Raises:
        ParseError: Missing ``=`` or empty key.
    """
    key, sep, value = entry.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ParseError(
            f"Invalid environment variable '{entry}': expected KEY=VALUE",
            entry=entry,
        )
    return key, value


def _split_list(value: str | None) -> list[str]:
    """Split a comma-separated list, dropping empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_mounts(value: str | None) -> list[Mount]:
    return [parse_mount(item) for item in _split_list(value)]


def parse_ports(value: str | None) -> list[PortMapping]:
    return [parse_port(item) for item in _split_list(value)]


def parse_env_vars(value: str | None) -> dict[str, str]:
    return dict(parse_env_var(item) for item in _split_list(value))


def parse_bool(value: str | None, *, key: str, default: bool = False) -> bool:
    """Parse a boolean setting.

    Raises:
        ConfigError: If the value is not a recognized boolean.
    """
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in _BOOL_TRUTHY:
        return True
    if lowered in _BOOL_FALSY:
        return False
    raise ConfigError(
        f"{key} must be true or false, got '{value}'",
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def read_config_file(path: Path) -> dict[str, str]:
    """Read ``KEY=VALUE`` lines without touching ``os.environ``.

    Raises:
        ConfigError: If the file does not exist.
    """
    if not path.is_file():
        raise ConfigError(
            f"Configuration file not found: {path}",
            remedy="devenv init",
        )
    values = {
        key: value or ""
        for key, value in dotenv_values(path, interpolate=False).items()
    }
    for key in sorted(values.keys() - KNOWN_KEYS):
        logger.debug("Ignoring unknown configuration key: %s", key)
    logger.debug("Loaded configuration from %s", path)
    return values


def build_config(
    values: Mapping[str, str],
    overrides: ConfigOverrides | None = None,
    *,
    base_dir: Path | None = None,
) -> EnvironmentConfig:
    """Resolve file values and CLI overrides into an EnvironmentConfig.

    Args:
        values: Parsed configuration file contents.
        overrides: Command-line overrides.
        base_dir: Directory relative ``BUILD_CONTEXT`` values resolve
            against. Defaults to the current working directory.

    Raises:
        ConfigError: A required field is absent or a value is malformed.
    """
    overrides = overrides or ConfigOverrides()

    name = overrides.name or values.get("ENV_NAME", "").strip()
    if not name:
        raise ConfigError(
            "ENV_NAME not set in config file or command line",
            remedy="pass --name NAME or set ENV_NAME in the config file",
        )
    base_image = values.get("BASE_IMAGE", "").strip()
    if not base_image:
        raise ConfigError("BASE_IMAGE is required")
    work_dir = values.get("WORK_DIR", "").strip()
    if not work_dir:
        raise ConfigError("WORK_DIR is required")

    mounts = parse_mounts(values.get("HOST_MOUNTS"))
    mounts.extend(parse_mount(entry) for entry in overrides.mounts)
    ports = parse_ports(values.get("PORTS"))
    ports.extend(parse_port(entry) for entry in overrides.ports)

    build_context = overrides.build_context
    if build_context is None and values.get("BUILD_CONTEXT", "").strip():
        build_context = Path(values["BUILD_CONTEXT"].strip()).expanduser()
    if build_context is not None and not build_context.is_absolute():
        build_context = (base_dir or Path.cwd()) / build_context

    return EnvironmentConfig(
        name=name,
        base_image=base_image,
        work_dir=work_dir,
        mounts=tuple(mounts),
        ports=tuple(ports),
        env_vars=parse_env_vars(values.get("ENVIRONMENT_VARS")),
        persist_data=parse_bool(
            values.get("PERSIST_DATA"), key="PERSIST_DATA"
        ),
        nodejs_version=values.get("NODEJS_VERSION", "").strip() or None,
        python_version=values.get("PYTHON_VERSION", "").strip() or None,
        build_context=build_context,
    )


def load_config(
    path: Path | None = None,
    overrides: ConfigOverrides | None = None,
) -> EnvironmentConfig:
    """Load the configuration file and apply command-line overrides.

    Args:
        path: Configuration file; see get_config_path() for the default.
        overrides: Command-line overrides.

    Returns:
        The resolved EnvironmentConfig (not yet validated).

    Raises:
        ConfigError: File missing, required field absent, or an entry
            is malformed (``ParseError``).
    """
    config_path = get_config_path(path)
    values = read_config_file(config_path)
    return build_config(values, overrides)


def write_stub_config(path: Path) -> bool:
    """Write a commented example configuration file.

    Returns:
        True if the file was written, False if it already existed.
    """
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STUB_CONFIG)
    return True


#: Stub configuration written by ``devenv init``.
_STUB_CONFIG = """\
# devenv environment configuration
#
# Secrets do not belong here. Pass them at creation time with
#   devenv up --secret KEY=VALUE

# Environment (container) name: letters, digits and hyphens, max 64 chars
ENV_NAME=claude-dev

# Image pulled when no Dockerfile is present in the build context
BASE_IMAGE=ubuntu:22.04

# Informational runtime versions (recorded as container labels)
NODEJS_VERSION=20
PYTHON_VERSION=3.11

# Working directory inside the container
WORK_DIR=/workspace

# Comma-separated host:container:mode triples (mode is ro or rw)
HOST_MOUNTS=

# Comma-separated host:container port pairs
PORTS=

# Comma-separated KEY=VALUE pairs (non-secret only)
ENVIRONMENT_VARS=

# Keep container storage when the environment is torn down
PERSIST_DATA=false
"""
