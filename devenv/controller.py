# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Environment lifecycle controller.

Drives one environment through its states::

    ABSENT --up()--> VALIDATING --> PREPARING_IMAGE --> CREATING
        --> WAITING_HEALTHY --> RUNNING
    VALIDATING --(fail)--> ABSENT
    WAITING_HEALTHY --(timeout)--> FAILED --(cleanup)--> ABSENT
    RUNNING --down()--> STOPPING --> REMOVING --> ABSENT

``up()`` is not idempotent: an existing environment of the same name is
a NameConflict. ``down()`` is: tearing down an absent environment
succeeds. All validation happens before the first mutating engine call.
During teardown every step runs even if an earlier one failed; failures
are collected as warnings.

The controller never prompts. Interactive confirmation belongs to the
caller, which passes either ``skip_confirmation=True`` or a ``confirm``
callback.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from devenv.engine import ContainerEngineClient, EngineCommandError, RunSpec
from devenv.errors import ContainerStartTimeout, DevEnvError, OperationError
from devenv.image import prepare_image
from devenv.secrets import inject
from devenv.types import (
    EnvironmentConfig,
    EnvironmentInstance,
    EnvironmentStatus,
)
from devenv.validator import PathExists, PortProbe, is_port_in_use, validate


MANAGED_LABEL = "devenv.managed"
PERSIST_LABEL = "devenv.persist-data"
NODEJS_LABEL = "devenv.nodejs-version"
PYTHON_LABEL = "devenv.python-version"

HEALTH_TIMEOUT_SECONDS = 30.0
HEALTH_POLL_INTERVAL = 1.0
STOP_TIMEOUT_SECONDS = 30


class LifecyclePhase(Enum):
    ABSENT = "absent"
    VALIDATING = "validating"
    PREPARING_IMAGE = "preparing_image"
    CREATING = "creating"
    WAITING_HEALTHY = "waiting_healthy"
    RUNNING = "running"
    FAILED = "failed"
    STOPPING = "stopping"
    REMOVING = "removing"


@dataclass(frozen=True)
class UpResult:
    """Outcome of a successful ``up()``.

    Attributes:
        instance: The running environment as observed after the health wait.
        image: Image the container was created from.
    """

    instance: EnvironmentInstance
    image: str


@dataclass(frozen=True)
class TeardownPlan:
    """What ``down()`` is about to remove, shown to the confirm callback.

    Attributes:
        name: Environment name.
        instance: Observed environment.
        preserve_storage: Volumes are kept (``--keep-volumes`` or the
            environment was created with PERSIST_DATA=true).
        volumes: Named volumes that will be removed.
    """

    name: str
    instance: EnvironmentInstance
    preserve_storage: bool
    volumes: tuple[str, ...] = ()


@dataclass
class DownResult:
    """Outcome of ``down()``. Teardown failures are warnings, not errors.

    Attributes:
        name: Environment name.
        found: False when there was nothing to tear down.
        cancelled: The confirm callback declined.
        preserved_storage: Volumes were intentionally kept.
        removed_volumes: Named volumes that were removed.
        warnings: Steps that failed or left something behind.
    """

    name: str
    found: bool
    cancelled: bool = False
    preserved_storage: bool = False
    removed_volumes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


ConfirmCallback = Callable[[TeardownPlan], bool]


def _owned_volume(volume: str, name: str) -> bool:
    """True if a volume name belongs to environment ``name``.

    The engine's ``name=`` filter matches substrings, so ``demo`` would
    also match ``demo2-data``.
    """
    return volume == name or volume.startswith((f"{name}-", f"{name}_"))


class LifecycleController:
    """Sequences environment creation and teardown against an engine.

    Single-threaded and synchronous. No state survives a call except
    ``history``, the phases visited by the most recent ``up()`` or
    ``down()``.

    Args:
        engine: Container engine client.
        logger: Diagnostics sink. Secret values are never passed to it.
        sleep: Sleep function used by the health wait.
        clock: Monotonic clock used by the health wait.
        health_timeout: Seconds to wait for the container to run.
        poll_interval: Seconds between status checks.
        port_probe: Host port availability check.
        path_exists: Host path existence check.
    """

    def __init__(
        self,
        engine: ContainerEngineClient,
        *,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        health_timeout: float = HEALTH_TIMEOUT_SECONDS,
        poll_interval: float = HEALTH_POLL_INTERVAL,
        port_probe: PortProbe = is_port_in_use,
        path_exists: PathExists = os.path.exists,
    ) -> None:
        self._engine = engine
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock
        self._health_timeout = health_timeout
        self._poll_interval = poll_interval
        self._port_probe = port_probe
        self._path_exists = path_exists
        self.history: list[LifecyclePhase] = []

    def _enter(self, phase: LifecyclePhase, name: str) -> None:
        self.history.append(phase)
        self._logger.debug("%s: %s", name, phase.value)

    # ------------------------------------------------------------------
    # up
    # ------------------------------------------------------------------

    def up(
        self,
        config: EnvironmentConfig,
        raw_secrets: Sequence[str] = (),
    ) -> UpResult:
        """Create and start an environment.

        Args:
            config: Resolved configuration.
            raw_secrets: ``KEY=VALUE`` strings to inject.

        Returns:
            UpResult with the running instance.

        Raises:
            PrerequisiteError: Engine missing or unreachable.
            ValidationError: A pre-flight check failed; nothing was mutated.
            ImageBuildError: Build or pull failed.
            OperationError: Container creation failed.
            ContainerStartTimeout: Not running within the health window;
                the container has been removed (best effort).
        """
        self.history = []
        name = config.name
        self._enter(LifecyclePhase.ABSENT, name)

        self._engine.ping()

        self._enter(LifecyclePhase.VALIDATING, name)
        try:
            secrets = validate(
                config,
                raw_secrets,
                engine=self._engine,
                port_probe=self._port_probe,
                path_exists=self._path_exists,
                logger=self._logger,
            )
        except DevEnvError:
            self._enter(LifecyclePhase.ABSENT, name)
            raise

        self._enter(LifecyclePhase.PREPARING_IMAGE, name)
        image = prepare_image(self._engine, config, logger=self._logger)

        self._enter(LifecyclePhase.CREATING, name)
        spec = RunSpec(
            name=name,
            image=image,
            work_dir=config.work_dir,
            mounts=config.mounts,
            ports=config.ports,
            env=dict(config.env_vars),
            secret_assignments=inject(secrets, logger=self._logger),
            labels=self._labels_for(config),
        )
        try:
            container_id = self._engine.run(spec)
        except EngineCommandError as e:
            self._logger.error("Failed to create container: %s", e.stderr)
            raise OperationError(
                f"Failed to create environment '{name}': {e.stderr or e}",
                remedy=f"devenv down {name} --force",
            ) from e
        self._logger.info("Created container %s (%s)", name, container_id[:12])

        self._enter(LifecyclePhase.WAITING_HEALTHY, name)
        instance = self._wait_until_running(name)
        if instance is None:
            self._enter(LifecyclePhase.FAILED, name)
            self._remove_failed(name)
            self._enter(LifecyclePhase.ABSENT, name)
            raise ContainerStartTimeout(
                f"Environment '{name}' failed to start within "
                f"{self._health_timeout:g}s",
                remedy=f"{self._engine.command} logs {name}",
            )

        self._enter(LifecyclePhase.RUNNING, name)
        return UpResult(instance=instance, image=image)

    @staticmethod
    def _labels_for(config: EnvironmentConfig) -> dict[str, str]:
        labels = {
            MANAGED_LABEL: "true",
            PERSIST_LABEL: "true" if config.persist_data else "false",
        }
        if config.nodejs_version:
            labels[NODEJS_LABEL] = config.nodejs_version
        if config.python_version:
            labels[PYTHON_LABEL] = config.python_version
        return labels

    def _wait_until_running(self, name: str) -> EnvironmentInstance | None:
        """Poll the engine until the container runs or the window closes."""
        deadline = self._clock() + self._health_timeout
        while True:
            try:
                instance = self._engine.inspect(name)
            except EngineCommandError as e:
                self._logger.debug("Status check failed: %s", e)
                instance = None
            if instance is not None and instance.is_running:
                self._logger.debug("Container %s is running", name)
                return instance
            if self._clock() >= deadline:
                return None
            self._sleep(self._poll_interval)

    def _remove_failed(self, name: str) -> None:
        """Force-remove a container that never became healthy."""
        try:
            self._engine.remove(name, volumes=True, force=True)
            self._logger.info("Removed failed container %s", name)
        except EngineCommandError as e:
            self._logger.warning(
                "Could not remove failed container %s: %s", name, e
            )

    # ------------------------------------------------------------------
    # down
    # ------------------------------------------------------------------

    def down(
        self,
        name: str,
        *,
        skip_confirmation: bool = False,
        confirm: ConfirmCallback | None = None,
        keep_volumes: bool = False,
    ) -> DownResult:
        """Stop and remove an environment.

        Args:
            name: Environment name.
            skip_confirmation: Proceed without calling ``confirm``.
            confirm: Asked with the TeardownPlan; False cancels.
            keep_volumes: Preserve volumes regardless of PERSIST_DATA.

        Returns:
            DownResult. ``found=False`` when already absent.

        Raises:
            ValueError: Neither ``skip_confirmation`` nor ``confirm`` given.
            PrerequisiteError: Engine missing or unreachable.
        """
        if not skip_confirmation and confirm is None:
            raise ValueError(
                "confirm callback is required unless skip_confirmation=True"
            )

        self.history = []
        self._engine.ping()
        instance = self._engine.inspect(name)
        if instance is None:
            self._logger.info("Environment '%s' not found", name)
            self._enter(LifecyclePhase.ABSENT, name)
            return DownResult(name=name, found=False)
        preserve = keep_volumes or instance.labels.get(PERSIST_LABEL) == "true"
        result = DownResult(name=name, found=True, preserved_storage=preserve)

        volumes: list[str] = []
        if not preserve:
            volumes = self._owned_volumes(name, result.warnings)

        plan = TeardownPlan(
            name=name,
            instance=instance,
            preserve_storage=preserve,
            volumes=tuple(volumes),
        )
        if not skip_confirmation and confirm is not None and not confirm(plan):
            self._logger.info("Teardown of '%s' cancelled", name)
            result.cancelled = True
            return result

        self._enter(LifecyclePhase.STOPPING, name)
        if instance.status is not EnvironmentStatus.STOPPED:
            self._stop(name, result.warnings)

        self._enter(LifecyclePhase.REMOVING, name)
        try:
            self._engine.remove(name, volumes=not preserve)
        except EngineCommandError as e:
            if "no such container" not in e.stderr.lower():
                result.warnings.append(f"Failed to remove container: {e}")

        for volume in volumes:
            try:
                self._engine.remove_volume(volume)
                result.removed_volumes.append(volume)
            except EngineCommandError as e:
                result.warnings.append(
                    f"Failed to remove volume {volume}: {e}"
                )

        self._verify_cleanup(name, preserve, result.warnings)
        self._enter(LifecyclePhase.ABSENT, name)

        for warning in result.warnings:
            self._logger.warning("%s", warning)
        return result

    def _owned_volumes(self, name: str, warnings: list[str]) -> list[str]:
        try:
            candidates = self._engine.list_volumes(name)
        except EngineCommandError as e:
            warnings.append(f"Failed to list volumes: {e}")
            return []
        return [v for v in candidates if _owned_volume(v, name)]

    def _stop(self, name: str, warnings: list[str]) -> None:
        """Graceful stop with the grace period, then kill."""
        try:
            self._engine.stop(name, STOP_TIMEOUT_SECONDS)
            return
        except EngineCommandError as e:
            self._logger.warning(
                "Failed to stop %s gracefully, forcing: %s", name, e
            )
        try:
            self._engine.kill(name)
        except EngineCommandError as e:
            warnings.append(f"Failed to stop container: {e}")

    def _verify_cleanup(
        self, name: str, preserve: bool, warnings: list[str]
    ) -> None:
        try:
            if self._engine.inspect(name) is not None:
                warnings.append(f"Container '{name}' still exists")
            if not preserve:
                leftover = self._owned_volumes(name, warnings)
                if leftover:
                    warnings.append(
                        "Some volumes still exist: " + ", ".join(leftover)
                    )
        except EngineCommandError as e:
            warnings.append(f"Could not verify cleanup: {e}")

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def status(self, name: str) -> EnvironmentInstance:
        """Observe an environment. Absence is reported, not raised."""
        self._engine.ping()
        instance = self._engine.inspect(name)
        if instance is None:
            return EnvironmentInstance(
                id="", name=name, status=EnvironmentStatus.ABSENT
            )
        return instance
