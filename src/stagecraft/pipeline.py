"""Pipeline model: the top-level two-stage image build."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from pydantic import BaseModel, model_validator

from . import dockerfile
from .artifacts import Artifact
from .context import Context
from .engine import BuildFailure, BuildResult, DockerEngine, Engine
from .errors import (
    CompilationError,
    DependencyResolutionError,
    ImageAssemblyError,
    MissingArtifactError,
    PipelineError,
)
from .stages import BuildStage, RuntimeStage, Stage
from .steps import CopyArtifact, InstallPackages

logger = logging.getLogger(__name__)


def _summary(failure: BuildFailure) -> str:
    """Last non-empty line of the failure, which names the failing command."""
    for line in reversed(failure.message.splitlines()):
        if line.strip():
            return line.strip()
    return "build failed"


class Pipeline(BaseModel):
    """Base model that apps subclass with domain-specific fields."""

    model_config = {"arbitrary_types_allowed": True}

    name: str
    description: str = ""
    tag: str | None = None
    context: Path = Path(".")
    builder: BuildStage
    runtime: RuntimeStage

    @model_validator(mode="after")
    def _check_stages(self) -> Pipeline:
        if self.builder.name == self.runtime.name:
            raise ValueError(f"Stage names must differ: '{self.builder.name}'")
        return self

    @property
    def image_tag(self) -> str:
        return self.tag or f"{self.name}:latest"

    @property
    def artifact(self) -> Artifact:
        """The single binary handed from the builder to the runtime stage."""
        return Artifact(
            name=self.builder.package,
            source=self.builder.output,
            destination=self.runtime.destination(self.builder.package),
        )

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.render().encode("utf-8")).hexdigest()

    def render(self, ctx: Context[Pipeline] | None = None) -> str:
        """Render the multi-stage recipe for this pipeline."""
        return dockerfile.render(ctx or Context(target=self))

    def build(self, **kwargs) -> BuildResult | None:
        """Run the builder stage, check the artifact, then assemble the runtime image.

        kwargs are passed to Context. Returns None on a dry run.
        """
        ctx = Context(target=self, **kwargs)
        recipe = self.render(ctx)
        digest = hashlib.sha256(recipe.encode("utf-8")).hexdigest()
        logger.info("Building image '%s' (%s)", self.image_tag, digest[:12])

        if ctx.dry_run:
            logger.info("[DRY RUN] Would build '%s' from:\n%s", self.image_tag, recipe)
            return None

        engine = ctx.engine or DockerEngine()
        builder = self._build_stage(ctx, engine, recipe)
        self._check_artifact(engine, builder)
        result = self._assemble(ctx, engine, recipe)
        result.digest = digest
        logger.info("Built image '%s' (%s)", self.image_tag, result.image_id)
        return result

    def _build_stage(self, ctx: Context[Pipeline], engine: Engine, recipe: str) -> BuildResult:
        stage = self.builder
        logger.info("Stage 1/2: building '%s' from %s", stage.name, stage.image)
        try:
            return engine.build(self.context, recipe, target=stage.name)
        except BuildFailure as exc:
            raise CompilationError(
                _summary(exc),
                stage=stage.name,
                step=self._step_name(ctx, stage, exc),
            ) from exc

    def _check_artifact(self, engine: Engine, builder: BuildResult) -> None:
        artifact = self.artifact
        logger.debug("Checking for '%s' in %s", artifact.source, builder.image_id)
        if not engine.exists(builder.image_id, str(artifact.source)):
            raise MissingArtifactError(
                f"'{artifact.source}' was not produced; "
                f"check that the package is named '{artifact.name}'",
                stage=self.runtime.name,
                step=CopyArtifact.kind,
            )

    def _assemble(self, ctx: Context[Pipeline], engine: Engine, recipe: str) -> BuildResult:
        stage = self.runtime
        logger.info("Stage 2/2: assembling '%s' from %s", stage.name, stage.image)
        try:
            return engine.build(self.context, recipe, tag=self.image_tag)
        except BuildFailure as exc:
            raise self._classify(ctx, exc) from exc

    def _classify(self, ctx: Context[Pipeline], failure: BuildFailure) -> PipelineError:
        stage = self.runtime
        failed = stage.locate(ctx, failure.text)
        kwargs = {"stage": stage.name, "step": failed.kind if failed else None}
        if isinstance(failed, InstallPackages):
            return DependencyResolutionError(_summary(failure), **kwargs)
        if isinstance(failed, CopyArtifact):
            return MissingArtifactError(
                f"'{self.artifact.source}' not found in stage '{self.builder.name}'",
                **kwargs,
            )
        return ImageAssemblyError(_summary(failure), **kwargs)

    def _step_name(self, ctx: Context[Pipeline], stage: Stage, failure: BuildFailure) -> str | None:
        failed = stage.locate(ctx, failure.text)
        return failed.kind if failed else None
