"""stagecraft - Declarative two-stage container image builds: compile in a toolchain image, ship one binary."""

from .artifacts import Artifact as Artifact
from .context import Context as Context
from .engine import BuildResult as BuildResult
from .engine import DockerEngine as DockerEngine
from .engine import Engine as Engine
from .engine import Executable as Executable
from .errors import CompilationError as CompilationError
from .errors import DependencyResolutionError as DependencyResolutionError
from .errors import EngineError as EngineError
from .errors import ImageAssemblyError as ImageAssemblyError
from .errors import MissingArtifactError as MissingArtifactError
from .errors import PipelineError as PipelineError
from .pipeline import Pipeline as Pipeline
from .stages import BuildStage as BuildStage
from .stages import RuntimeStage as RuntimeStage
from .step import Step as Step
from .step import step as step
from .workspace import Workspace as Workspace
