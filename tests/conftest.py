# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures: an in-memory container engine and configs."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from devenv.engine import EngineCommandError, RunSpec
from devenv.errors import PrerequisiteError
from devenv.logging import LOGGER_NAME
from devenv.types import (
    EnvironmentConfig,
    EnvironmentInstance,
    EnvironmentStatus,
)


@dataclass
class FakeContainer:
    """A container held by FakeEngine."""

    spec: RunSpec
    id: str
    status: EnvironmentStatus
    execs: list[list[str]] = field(default_factory=list)


class FakeEngine:
    """In-memory ContainerEngineClient.

    Tracks containers, images and volumes, records every call in
    ``calls``, and lets tests inject failures per verb via ``fail``.

    ``exec`` simulates just enough of bash for tests: ``echo`` with
    ``$VAR`` expansion against the container environment, and
    ``exit N``.
    """

    def __init__(self, command: str = "docker") -> None:
        self._command = command
        self.reachable = True
        self.containers: dict[str, FakeContainer] = {}
        self.images: list[str] = []
        self.volumes: list[str] = []
        self.calls: list[tuple[object, ...]] = []
        self.fail: dict[str, Exception] = {}
        # Status a container has right after run/start
        self.start_status = EnvironmentStatus.RUNNING
        self._next_id = 1

    @property
    def command(self) -> str:
        return self._command

    def _record(self, verb: str, *args: object) -> None:
        self.calls.append((verb, *args))
        if verb in self.fail:
            raise self.fail[verb]

    def verbs(self) -> list[str]:
        """Names of the calls made so far, in order."""
        return [str(call[0]) for call in self.calls]

    def add_container(
        self,
        name: str,
        *,
        status: EnvironmentStatus = EnvironmentStatus.RUNNING,
        labels: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
    ) -> FakeContainer:
        """Seed a container as if created by an earlier run."""
        spec = RunSpec(
            name=name,
            image="ubuntu:22.04",
            work_dir="/workspace",
            env=env or {},
            labels=labels or {},
        )
        container = FakeContainer(spec=spec, id=self._new_id(), status=status)
        self.containers[name] = container
        return container

    def _new_id(self) -> str:
        container_id = f"{self._next_id:064x}"
        self._next_id += 1
        return container_id

    # -- ContainerEngineClient ------------------------------------------

    def ping(self) -> None:
        self._record("ping")
        if not self.reachable:
            raise PrerequisiteError(
                f"{self._command} daemon is not running",
                remedy="start OrbStack or Docker",
            )

    def list_names(self) -> list[str]:
        self._record("list_names")
        return list(self.containers)

    def inspect(self, name: str) -> EnvironmentInstance | None:
        self._record("inspect", name)
        container = self.containers.get(name)
        if container is None:
            return None
        return EnvironmentInstance(
            id=container.id,
            name=name,
            status=container.status,
            image=container.spec.image,
            labels=dict(container.spec.labels),
        )

    def build(
        self, tag: str, context_dir: Path, dockerfile: Path | None = None
    ) -> None:
        self._record("build", tag, context_dir, dockerfile)
        self.images.append(tag)

    def pull(self, image: str) -> None:
        self._record("pull", image)
        self.images.append(image)

    def run(self, spec: RunSpec) -> str:
        self._record("run", spec)
        if spec.name in self.containers:
            raise EngineCommandError(
                "run", f'Conflict. The container name "/{spec.name}" is in use'
            )
        container = FakeContainer(
            spec=spec, id=self._new_id(), status=self.start_status
        )
        self.containers[spec.name] = container
        return container.id

    def start(self, name: str) -> None:
        self._record("start", name)
        if name not in self.containers:
            raise EngineCommandError("start", f"No such container: {name}")
        self.containers[name].status = self.start_status

    def stop(self, name: str, timeout: int) -> None:
        self._record("stop", name, timeout)
        self.containers[name].status = EnvironmentStatus.STOPPED

    def kill(self, name: str) -> None:
        self._record("kill", name)
        self.containers[name].status = EnvironmentStatus.STOPPED

    def remove(
        self, name: str, *, volumes: bool = False, force: bool = False
    ) -> None:
        self._record("remove", name, volumes, force)
        container = self.containers.get(name)
        if container is None:
            raise EngineCommandError("rm", f"No such container: {name}")
        if container.status is EnvironmentStatus.RUNNING and not force:
            raise EngineCommandError("rm", "container is running")
        del self.containers[name]

    def exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        user: str | None = None,
        workdir: str | None = None,
        interactive: bool = False,
    ) -> int:
        self._record("exec", name, list(command), user, workdir, interactive)
        container = self.containers[name]
        container.execs.append(list(command))
        if interactive:
            return 0
        return self._simulate(container, command[-1])

    def list_volumes(self, name_filter: str) -> list[str]:
        self._record("list_volumes", name_filter)
        return [v for v in self.volumes if name_filter in v]

    def remove_volume(self, name: str) -> None:
        self._record("remove_volume", name)
        self.volumes.remove(name)

    # -- exec simulation ------------------------------------------------

    @staticmethod
    def _simulate(container: FakeContainer, script: str) -> int:
        env = dict(container.spec.env)
        for assignment in container.spec.secret_assignments:
            key, _, value = assignment.partition("=")
            env[key] = value

        exit_match = re.fullmatch(r"exit (\d+)", script.strip())
        if exit_match:
            return int(exit_match.group(1))
        if script.startswith("echo "):
            text = re.sub(
                r"\$\{?(\w+)\}?",
                lambda m: env.get(m.group(1), ""),
                script[len("echo ") :],
            )
            print(text)
            return 0
        return 127


class FakeClock:
    """Monotonic clock advanced only by its own ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_devenv_logger():
    """Undo configure_logging() between tests."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory for EnvironmentConfig with a Dockerfile-free build context."""

    def _make(**overrides: object) -> EnvironmentConfig:
        values: dict[str, object] = {
            "name": "demo",
            "base_image": "ubuntu:22.04",
            "work_dir": "/workspace",
            "build_context": tmp_path,
        }
        values.update(overrides)
        return EnvironmentConfig(**values)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def config_file(tmp_path: Path):
    """Factory writing a configuration file under tmp_path."""

    def _write(**values: str) -> Path:
        settings = {
            "ENV_NAME": "demo",
            "BASE_IMAGE": "ubuntu:22.04",
            "WORK_DIR": "/workspace",
            "BUILD_CONTEXT": str(tmp_path),
        }
        settings.update(values)
        path = tmp_path / "config" / ".env"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "".join(f"{key}={value}\n" for key, value in settings.items())
        )
        return path

    return _write
