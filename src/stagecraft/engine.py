"""Container engine boundary: build recipes and run images."""

from __future__ import annotations

import logging
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import docker
from docker.errors import APIError, BuildError, ContainerError, DockerException, ImageNotFound

from .errors import EngineError

logger = logging.getLogger(__name__)


class BuildFailure(Exception):
    """An engine build stopped before producing an image."""

    def __init__(self, message: str, log: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.log = log

    @property
    def text(self) -> str:
        """Log output followed by the failure message."""
        return f"{self.log}\n{self.message}" if self.log else self.message


@dataclass
class BuildResult:
    """An image produced by the engine."""

    image_id: str
    tag: str | None = None
    log: str = ""
    digest: str | None = None

    def executable(self, engine: Engine) -> Executable:
        return Executable(engine, self.tag or self.image_id)


class Executable:
    """The built artifact as an opaque capability: it can only be invoked."""

    def __init__(self, engine: Engine, image: str) -> None:
        self._engine = engine
        self.image = image

    def invoke(self, *args: str) -> str:
        """Run the image's default command with args appended; return its output."""
        logger.info("Invoking '%s' with %d argument(s)", self.image, len(args))
        return self._engine.run(self.image, args)

    def __repr__(self) -> str:
        return f"Executable(image={self.image!r})"


class Engine(ABC):
    """A container engine able to execute a rendered recipe."""

    @abstractmethod
    def build(
        self,
        context: Path,
        recipe: str,
        *,
        target: str | None = None,
        tag: str | None = None,
    ) -> BuildResult:
        """Build the recipe up to target (or fully), raising BuildFailure on error."""

    @abstractmethod
    def exists(self, image: str, path: str) -> bool:
        """A regular file exists at path inside image."""

    @abstractmethod
    def run(self, image: str, args: Sequence[str] = ()) -> str:
        """Run image once with args and return its output."""


def _log_text(chunks: Iterable[dict[str, Any]]) -> str:
    parts: list[str] = []
    for chunk in chunks:
        if "stream" in chunk:
            parts.append(chunk["stream"])
        elif "error" in chunk:
            parts.append(f"{chunk['error']}\n")
    return "".join(parts)


class DockerEngine(Engine):
    """Engine backed by the Docker SDK for Python."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                client = docker.from_env()
                client.ping()
            except DockerException as exc:
                raise EngineError(f"Docker is not available: {exc}") from exc
            self._client = client
        return self._client

    def build(
        self,
        context: Path,
        recipe: str,
        *,
        target: str | None = None,
        tag: str | None = None,
    ) -> BuildResult:
        # The recipe lives outside the build context so the source tree is untouched.
        with tempfile.TemporaryDirectory(prefix="stagecraft-") as tmp:
            dockerfile = Path(tmp) / "Dockerfile"
            dockerfile.write_text(recipe)
            logger.debug("Building '%s' (target=%s, tag=%s)", context, target, tag)
            try:
                image, chunks = self.client.images.build(
                    path=str(context),
                    dockerfile=str(dockerfile),
                    target=target,
                    tag=tag,
                    rm=True,
                    forcerm=True,
                )
            except BuildError as exc:
                raise BuildFailure(exc.msg, _log_text(exc.build_log)) from exc
            except APIError as exc:
                raise BuildFailure(str(exc)) from exc
        return BuildResult(image_id=image.id, tag=tag, log=_log_text(chunks))

    def exists(self, image: str, path: str) -> bool:
        try:
            self.client.containers.run(image, ["test", "-f", path], remove=True)
        except ContainerError:
            return False
        except (ImageNotFound, APIError) as exc:
            raise EngineError(f"Cannot inspect '{image}': {exc}") from exc
        return True

    def run(self, image: str, args: Sequence[str] = ()) -> str:
        try:
            output = self.client.containers.run(image, list(args) or None, remove=True)
        except ContainerError as exc:
            raise EngineError(f"'{image}' exited with status {exc.exit_status}") from exc
        except (ImageNotFound, APIError) as exc:
            raise EngineError(f"Cannot run '{image}': {exc}") from exc
        return output.decode(errors="replace")
