"""Stage models: the builder and runtime halves of a two-stage image."""

from __future__ import annotations

import logging
import posixpath
import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .artifacts import check_binary_name
from .context import Context
from .step import Step
from .steps import Command, CopyArtifact, CopySource, From, Install, InstallPackages, WorkDir

if TYPE_CHECKING:
    from .pipeline import Pipeline

logger = logging.getLogger(__name__)

SCRATCH = "scratch"

_STAGE_NAME = re.compile(r"^[a-z][a-z0-9_.\-]*$")

_RESERVED_PATHS = frozenset(
    {
        "/",
        "/bin",
        "/boot",
        "/dev",
        "/etc",
        "/lib",
        "/lib64",
        "/proc",
        "/sbin",
        "/sys",
        "/usr",
        "/usr/bin",
        "/usr/lib",
        "/usr/local",
        "/usr/local/bin",
        "/usr/sbin",
        "/var",
    }
)


def check_pinned(image: str) -> str:
    """Raise ValueError unless image names an explicit tag or digest.

    The empty base image "scratch" has neither and is always accepted.
    """
    ref = image.strip()
    if ref == SCRATCH:
        return ref
    if not ref or any(c.isspace() for c in ref):
        raise ValueError(f"Invalid base image reference: '{image}'")
    if "@" in ref:
        _, _, digest = ref.partition("@")
        if not digest.startswith("sha256:") or len(digest) == len("sha256:"):
            raise ValueError(f"Invalid base image digest: '{image}'")
        return ref
    last = ref.rsplit("/", 1)[-1]
    if ":" not in last:
        raise ValueError(f"Base image must be pinned to a tag or digest: '{image}'")
    tag = last.rsplit(":", 1)[1]
    if not tag or tag == "latest":
        raise ValueError(f"Base image must be pinned to a tag or digest: '{image}'")
    return ref


def _absolute(path: str) -> PurePosixPath:
    norm = PurePosixPath(posixpath.normpath(path))
    if not norm.is_absolute():
        raise ValueError(f"Path must be absolute: '{path}'")
    return norm


class Stage(BaseModel):
    """A stage environment: a pinned base image plus ordered steps."""

    model_config = {"arbitrary_types_allowed": True, "extra": "forbid"}

    name: str
    image: str
    steps: list[Step[Any]] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _STAGE_NAME.match(value):
            raise ValueError(f"Invalid stage name: '{value}'")
        return value

    @field_validator("image")
    @classmethod
    def _check_image(cls, value: str) -> str:
        return check_pinned(value)

    def plan(self, ctx: Context[Pipeline]) -> list[Step[Any]]:
        """Ordered steps of this stage."""
        return [From(self.image, alias=self.name), *self.steps]

    def render(self, ctx: Context[Pipeline]) -> list[str]:
        """Render every step of this stage into recipe instructions."""
        logger.debug("Rendering stage '%s'", self.name)
        lines: list[str] = []
        for stp in self.plan(ctx):
            lines.extend(stp.render(ctx))
        return lines

    def locate(self, ctx: Context[Pipeline], text: str) -> Step[Any] | None:
        """Return the last step that the failure text points at."""
        for stp in reversed(self.plan(ctx)):
            if stp.matches(ctx, text):
                return stp
        return None


class BuildStage(Stage):
    """Full toolchain environment that compiles the source into one binary."""

    name: str = "builder"
    workdir: str = "/usr/src/app"
    source: str = "."
    package: str
    bin_dir: str = "/usr/local/cargo/bin"
    install: str = "cargo install --path ."

    @field_validator("package")
    @classmethod
    def _check_package(cls, value: str) -> str:
        return check_binary_name(value)

    @field_validator("install")
    @classmethod
    def _check_install(cls, value: str) -> str:
        return Install(value).command

    @model_validator(mode="after")
    def _check_workdir(self) -> BuildStage:
        if self.image == SCRATCH:
            raise ValueError("The build stage needs a toolchain image, not 'scratch'")
        workdir = _absolute(self.workdir)
        bin_dir = _absolute(self.bin_dir)
        if str(workdir) in _RESERVED_PATHS:
            raise ValueError(f"Working directory '{workdir}' is a reserved path")
        if workdir == bin_dir or workdir in bin_dir.parents or bin_dir in workdir.parents:
            raise ValueError(f"Working directory '{workdir}' collides with toolchain path '{bin_dir}'")
        return self

    @property
    def output(self) -> PurePosixPath:
        """Where the install step leaves the binary."""
        return _absolute(self.bin_dir) / self.package

    def plan(self, ctx: Context[Pipeline]) -> list[Step[Any]]:
        return [
            From(self.image, alias=self.name),
            WorkDir(self.workdir),
            CopySource(self.source, "."),
            *self.steps,
            Install(self.install),
        ]


class RuntimeStage(Stage):
    """Minimal environment that receives the artifact and runs it by default."""

    name: str = "runtime"
    packages: list[str] = Field(default_factory=list)
    manager: str = "apt"
    bin_dir: str = "/usr/local/bin"

    @model_validator(mode="after")
    def _check_minimal(self) -> RuntimeStage:
        _absolute(self.bin_dir)
        # raises on an unknown manager or a malformed package name
        InstallPackages(self.packages, self.manager)
        if self.packages and self.image == SCRATCH:
            raise ValueError("Packages cannot be installed on 'scratch'")
        for stp in self.steps:
            if stp.mutates_filesystem:
                raise ValueError(f"Step '{stp.kind}' is not allowed in the runtime stage")
        return self

    def destination(self, name: str) -> PurePosixPath:
        return _absolute(self.bin_dir) / name

    def plan(self, ctx: Context[Pipeline]) -> list[Step[Any]]:
        pipeline = ctx.target
        artifact = pipeline.artifact
        steps: list[Step[Any]] = [From(self.image, alias=self.name)]
        if self.packages:
            steps.append(InstallPackages(self.packages, self.manager))
        steps.append(CopyArtifact(pipeline.builder.name, artifact))
        steps.extend(self.steps)
        steps.append(Command(artifact.command))
        return steps
