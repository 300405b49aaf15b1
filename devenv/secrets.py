# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Secret parsing and injection.

Secrets arrive as ``KEY=VALUE`` command-line strings, live in memory for
the duration of ``up``, and leave this process only as ``-e`` arguments
to the engine's ``run`` call. They are never written to disk, and only
their keys are ever logged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from devenv.logging import SecretFilter
from devenv.types import Secret


SECRET_KEY_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def parse_secret(raw: str) -> Secret | None:
    """Parse ``KEY=VALUE``.

    The key must be an identifier; the value may be empty and may
    contain ``=``.

    Returns:
        The Secret, or None if the string does not have that shape.
    """
    key, sep, value = raw.partition("=")
    if not sep or not SECRET_KEY_PATTERN.fullmatch(key):
        return None
    return Secret(key=key, value=value)


def inject(
    secrets: Sequence[Secret],
    *,
    logger: logging.Logger,
) -> tuple[str, ...]:
    """Produce the environment assignments to pass to container creation.

    Values are passed through untouched. When a key repeats, every
    assignment is kept in order (the engine applies the last one).

    Args:
        secrets: Validated secrets.
        logger: Receives key names at DEBUG level, never values.

    Returns:
        ``KEY=VALUE`` strings in input order.
    """
    seen: set[str] = set()
    assignments: list[str] = []
    for secret in secrets:
        if secret.key in seen:
            logger.debug(
                "Secret %s given more than once, last wins", secret.key
            )
        seen.add(secret.key)
        logger.debug("Injecting secret: %s", secret.key)
        assignments.append(secret.to_assignment())
    return tuple(assignments)


def register_for_redaction(
    secrets: Iterable[Secret], secret_filter: SecretFilter
) -> None:
    """Register every non-empty secret value with the log filter."""
    for secret in secrets:
        secret_filter.register_secret(secret.value)
