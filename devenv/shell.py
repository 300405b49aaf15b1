# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shell and command execution inside a running environment.

With no command, an interactive bash session is attached to the
environment. With a command, it runs non-interactively through
``/bin/bash -c`` with output streamed to the caller, and its exit code is
returned unchanged.
"""

from __future__ import annotations

import logging

from devenv.engine import ContainerEngineClient, EngineCommandError
from devenv.errors import NotFoundError, NotRunningError


DEFAULT_USER = "root"
SHELL = "/bin/bash"


class ShellGateway:
    """Routes shell and exec requests to an environment.

    Args:
        engine: Container engine client.
        logger: Diagnostics sink.
    """

    def __init__(
        self,
        engine: ContainerEngineClient,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or logging.getLogger(__name__)

    def ensure_running(self, name: str) -> bool:
        """Make sure the environment exists and is running.

        A stopped environment is started once.

        Returns:
            True if the environment had to be started.

        Raises:
            PrerequisiteError: Engine missing or unreachable.
            NotFoundError: No such environment.
            NotRunningError: It exists but could not be started.
        """
        self._engine.ping()
        instance = self._engine.inspect(name)
        if instance is None:
            raise NotFoundError(
                f"Environment '{name}' not found",
                remedy="devenv up --name " + name,
            )
        if instance.is_running:
            return False

        self._logger.info("Environment '%s' is not running, starting", name)
        try:
            self._engine.start(name)
        except EngineCommandError as e:
            raise NotRunningError(
                f"Failed to start environment '{name}': {e.stderr or e}",
                remedy=f"devenv down {name} --force && devenv up",
            ) from e

        instance = self._engine.inspect(name)
        if instance is None or not instance.is_running:
            raise NotRunningError(
                f"Environment '{name}' is not running",
                remedy=f"{self._engine.command} logs {name}",
            )
        return True

    def open(
        self,
        name: str,
        *,
        command: str | None = None,
        user: str | None = None,
        workdir: str | None = None,
    ) -> int:
        """Attach a shell or run one command.

        Args:
            name: Environment name.
            command: Shell command; None attaches an interactive session.
            user: User to run as (default ``root``).
            workdir: Working directory override.

        Returns:
            Exit code of the session or command, passed through.

        Raises:
            NotFoundError: No such environment (nothing was executed).
            NotRunningError: It exists but could not be started.
        """
        self.ensure_running(name)
        user = user or DEFAULT_USER

        if command is None:
            self._logger.debug("Attaching shell to %s as %s", name, user)
            return self._engine.exec(
                name,
                [SHELL],
                user=user,
                workdir=workdir,
                interactive=True,
            )

        self._logger.debug("Executing command in %s as %s", name, user)
        return self._engine.exec(
            name,
            [SHELL, "-c", command],
            user=user,
            workdir=workdir,
            interactive=False,
        )
