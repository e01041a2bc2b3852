"""Pipeline failure taxonomy.

Every failure aborts the whole pipeline. Each error names the stage and the
step that failed so the invoker can decide whether to retry.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for fatal pipeline failures."""

    exit_code = 10
    reason = "pipeline failure"

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        step: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.step = step

    def __str__(self) -> str:
        where = []
        if self.stage is not None:
            where.append(f"{self.stage} stage")
        if self.step is not None:
            where.append(f"step '{self.step}'")
        if not where:
            return f"{self.reason}: {self.message}"
        return f"{self.reason} in {' at '.join(where)}: {self.message}"


class CompilationError(PipelineError):
    """The build stage could not resolve dependencies or compile the source."""

    exit_code = 11
    reason = "compilation failure"


class MissingArtifactError(PipelineError):
    """The artifact was not found at the path the build stage declares."""

    exit_code = 12
    reason = "missing artifact"


class DependencyResolutionError(PipelineError):
    """Runtime package installation failed."""

    exit_code = 13
    reason = "dependency resolution failure"


class ImageAssemblyError(PipelineError):
    """The runtime stage failed for a reason other than packages or the artifact."""

    exit_code = 14
    reason = "image assembly failure"


class EngineError(PipelineError):
    """The container engine is unavailable or a container run failed."""

    exit_code = 15
    reason = "engine failure"
