"""Concrete recipe steps."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from .context import Context
from .step import Step, step

if TYPE_CHECKING:
    from .artifacts import Artifact


_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# -- Package managers --

_PACKAGE_MANAGERS: dict[str, str] = {
    "apt": (
        "apt-get update"
        " && apt-get install -y --no-install-recommends {packages}"
        " && rm -rf /var/lib/apt/lists/*"
    ),
    "apk": "apk add --no-cache {packages}",
}

_PACKAGE_NAMES: dict[str, re.Pattern[str]] = {
    "apt": re.compile(r"^[a-z0-9][a-z0-9+.\-]+(=[A-Za-z0-9.+~:\-]+)?$"),
    "apk": re.compile(r"^[A-Za-z0-9][A-Za-z0-9+._\-]*([<>=~]+[A-Za-z0-9._\-]+)?$"),
}

_RESOLUTION_PATTERNS = (
    re.compile(r"Unable to locate package"),
    re.compile(r"has no installation candidate"),
    re.compile(r"unable to select packages", re.IGNORECASE),
    re.compile(r"Temporary failure resolving"),
)


def _quote(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")
    return f'"{text}"'


def _single_line(kind: str, value: Any) -> str:
    """Raise ValueError if value would span more than one recipe line."""
    text = str(value)
    if "\n" in text or "\r" in text:
        raise ValueError(f"{kind}: value must be a single line: {text!r}")
    return text


# -- Structural steps --


class From(Step[Any]):
    """Start a stage from a pinned base image."""

    kind = "from"

    def __init__(self, image: str, alias: str | None = None) -> None:
        self.image = image
        self.alias = alias

    def render(self, ctx: Context[Any]) -> list[str]:
        if self.alias:
            return [f"FROM {self.image} AS {self.alias}"]
        return [f"FROM {self.image}"]

    def matches(self, ctx: Context[Any], text: str) -> bool:
        return self.image in text and ("pull access denied" in text or "manifest" in text)


class WorkDir(Step[Any]):
    """Set the working directory for the steps that follow."""

    kind = "workdir"

    def __init__(self, path: str) -> None:
        self.path = path

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"WORKDIR {self.path}"]


class CopySource(Step[Any]):
    """Copy the source tree from the build context into the builder."""

    kind = "copy-source"

    def __init__(self, source: str = ".", destination: str = ".") -> None:
        self.source = source
        self.destination = destination

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"COPY {self.source} {self.destination}"]


@step("run")
class Run(Step[Any]):
    """Run a command inside the stage."""

    def __init__(self, command: str) -> None:
        if not command.strip():
            raise ValueError(f"{self.kind}: command must not be empty")
        self.command = _single_line(self.kind, command.strip())

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"RUN {self.command}"]

    def matches(self, ctx: Context[Any], text: str) -> bool:
        return self.command in text


class Install(Run):
    """The toolchain's standard build-and-install procedure."""

    kind = "install"


class InstallPackages(Step[Any]):
    """Install runtime packages and purge the package manager cache."""

    kind = "packages"

    def __init__(self, packages: list[str], manager: str = "apt") -> None:
        if manager not in _PACKAGE_MANAGERS:
            raise ValueError(f"Unknown package manager: '{manager}'")
        grammar = _PACKAGE_NAMES[manager]
        for name in packages:
            if not grammar.match(name):
                raise ValueError(f"Invalid {manager} package name: '{name}'")
        self.packages = list(packages)
        self.manager = manager

    @property
    def command(self) -> str:
        return _PACKAGE_MANAGERS[self.manager].format(packages=" ".join(self.packages))

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"RUN {self.command}"]

    def matches(self, ctx: Context[Any], text: str) -> bool:
        if self.command in text:
            return True
        return any(pattern.search(text) for pattern in _RESOLUTION_PATTERNS)


class CopyArtifact(Step[Any]):
    """Copy the build artifact verbatim out of another stage."""

    kind = "copy-artifact"

    def __init__(self, stage: str, artifact: Artifact) -> None:
        self.stage = stage
        self.artifact = artifact

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"COPY --from={self.stage} {self.artifact.source} {self.artifact.destination}"]

    def matches(self, ctx: Context[Any], text: str) -> bool:
        return str(self.artifact.source) in text or "COPY failed" in text


class Command(Step[Any]):
    """Declare the image's default command in exec form."""

    kind = "command"
    mutates_filesystem = False

    def __init__(self, argv: list[str]) -> None:
        if not argv:
            raise ValueError("command: argv must not be empty")
        self.argv = [str(arg) for arg in argv]

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"CMD {json.dumps(self.argv)}"]


# -- Metadata steps --


@step("env")
class Env(Step[Any]):
    """Set environment variables in the image."""

    mutates_filesystem = False

    def __init__(self, **variables: Any) -> None:
        for name in variables:
            if not _ENV_NAME.match(name):
                raise ValueError(f"Invalid environment variable name: '{name}'")
        self.variables = {k: _single_line(self.kind, v) for k, v in variables.items()}

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"ENV {name}={_quote(value)}" for name, value in sorted(self.variables.items())]


@step("expose")
class Expose(Step[Any]):
    """Document a port the artifact listens on."""

    mutates_filesystem = False

    def __init__(self, port: int, protocol: str = "tcp") -> None:
        port = int(port)
        if not 0 < port < 65536:
            raise ValueError(f"Port out of range: {port}")
        if protocol not in ("tcp", "udp"):
            raise ValueError(f"Unknown protocol: '{protocol}'")
        self.port = port
        self.protocol = protocol

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"EXPOSE {self.port}/{self.protocol}"]


@step("label")
class Label(Step[Any]):
    """Attach metadata labels to the image."""

    mutates_filesystem = False

    def __init__(self, **labels: Any) -> None:
        self.labels = {
            _single_line(self.kind, key): _single_line(self.kind, value) for key, value in labels.items()
        }

    def render(self, ctx: Context[Any]) -> list[str]:
        return [f"LABEL {_quote(key)}={_quote(value)}" for key, value in sorted(self.labels.items())]
