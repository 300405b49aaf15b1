# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container image preparation.

If the build context holds a ``Dockerfile``, the image is built from it
and tagged by content hash (``devenv:<sha256 prefix>``) so that distinct
Dockerfiles never overwrite each other's tag. Otherwise the configured
base image is pulled and used as-is.

The default development image (Ubuntu, Node.js LTS, Python 3.11) ships
with the package; ``materialize_build_context()`` writes it out so a
project can build and customize it.
"""

from __future__ import annotations

import hashlib
import logging
import time
from importlib.resources import files
from pathlib import Path

from devenv._entrypoint import get_entrypoint_content
from devenv.engine import ContainerEngineClient, EngineCommandError
from devenv.errors import OperationError
from devenv.types import EnvironmentConfig


logger = logging.getLogger(__name__)

IMAGE_REPOSITORY = "devenv"
DOCKERFILE_NAME = "Dockerfile"

_BUNDLED_PACKAGE = "devenv._bundled.container"
_BUNDLED_FILES = ("Dockerfile", "verify-runtimes.sh", "install-claude.sh")
_EXECUTABLE_FILES = frozenset(
    {"verify-runtimes.sh", "install-claude.sh", "entrypoint.sh"}
)


class ImageBuildError(OperationError):
    """Raised when the image cannot be built or pulled."""


def _content_hash(content: bytes | str) -> str:
    """Compute SHA-256 hex digest of content."""
    if isinstance(content, str):
        content = content.encode()
    return hashlib.sha256(content).hexdigest()


def find_dockerfile(build_context: Path | None) -> Path | None:
    """Return the build context's Dockerfile, if there is one."""
    context = build_context if build_context is not None else Path.cwd()
    dockerfile = context / DOCKERFILE_NAME
    return dockerfile if dockerfile.is_file() else None


def image_tag_for(dockerfile_content: bytes) -> str:
    """Tag for an image built from the given Dockerfile content."""
    return f"{IMAGE_REPOSITORY}:{_content_hash(dockerfile_content)[:16]}"


def prepare_image(
    engine: ContainerEngineClient,
    config: EnvironmentConfig,
    *,
    logger: logging.Logger = logger,
) -> str:
    """Build the local Dockerfile or pull the base image.

    Args:
        engine: Container engine client.
        config: Resolved configuration (base image, build context).
        logger: Progress and timing diagnostics.

    Returns:
        Image reference to create the container from.

    Raises:
        ImageBuildError: If the build or pull fails.
    """
    dockerfile = find_dockerfile(config.build_context)
    start_time = time.time()

    if dockerfile is not None:
        tag = image_tag_for(dockerfile.read_bytes())
        logger.info("Building image %s from %s", tag, dockerfile)
        try:
            engine.build(tag, dockerfile.parent, dockerfile)
        except EngineCommandError as e:
            logger.error("Failed to build image: %s", e.stderr)
            raise ImageBuildError(
                f"Image build failed: {e.stderr or e}",
                remedy=f"{engine.command} build -f {dockerfile} "
                f"{dockerfile.parent}",
            ) from e
        image = tag
    else:
        logger.info("Pulling base image: %s", config.base_image)
        try:
            engine.pull(config.base_image)
        except EngineCommandError as e:
            logger.error("Failed to pull image: %s", e.stderr)
            raise ImageBuildError(
                f"Failed to pull image {config.base_image}: {e.stderr or e}",
            ) from e
        image = config.base_image

    elapsed = time.time() - start_time
    logger.info("Image ready in %.2fs: %s", elapsed, image)
    return image


def materialize_build_context(target_dir: Path) -> list[Path]:
    """Write the bundled development image build context.

    Existing files are left untouched.

    Args:
        target_dir: Directory to write the ``Dockerfile``, the generated
            ``entrypoint.sh`` and the helper scripts into.

    Returns:
        Paths of the files that were written.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    contents: dict[str, bytes] = {
        name: files(_BUNDLED_PACKAGE).joinpath(name).read_bytes()
        for name in _BUNDLED_FILES
    }
    contents["entrypoint.sh"] = get_entrypoint_content()

    written: list[Path] = []
    for name, content in contents.items():
        path = target_dir / name
        if path.exists():
            logger.debug("Keeping existing %s", path)
            continue
        path.write_bytes(content)
        if name in _EXECUTABLE_FILES:
            path.chmod(0o755)
        written.append(path)
    return written
