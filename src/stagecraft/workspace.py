"""Workspace: a typed collection of parsed toolchains and image pipelines."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .hcl import load
from .pipeline import Pipeline
from .resolve import Resolver
from .stages import BuildStage, RuntimeStage
from .step import Step, _step_registry

logger = logging.getLogger(__name__)

_STAGE_BLOCKS = ("builder", "runtime")


@dataclass
class WorkspaceRef(ABC):
    """Base class for all workspace references."""

    name: str

    @abstractmethod
    def resolve(self, workspace: Workspace) -> Any:
        """Return a ready-to-use instance using the workspace as context."""


@dataclass
class StepRef(WorkspaceRef):
    """A step block: a registered step type and its attributes."""

    attrs: dict[str, Any]

    def resolve(self, workspace: Workspace) -> Step[Any]:
        if self.name not in _step_registry:
            raise ValueError(f"Unknown step type: '{self.name}'")
        step_cls = _step_registry[self.name]
        logger.debug("Decoding step '%s' -> %s", self.name, step_cls.__name__)
        try:
            return step_cls(**self.attrs)
        except TypeError as exc:
            raise ValueError(f"Step '{self.name}': {exc}") from exc


@dataclass
class ToolchainRef(WorkspaceRef):
    """Reusable builder defaults with optional includes."""

    includes: list[str] = field(default_factory=list)
    attrs: dict[str, Any] = field(default_factory=dict)

    def resolve(
        self,
        workspace: Workspace,
        _resolving: set[str] | None = None,
    ) -> dict[str, Any]:
        """Merge included toolchains in order, then this toolchain's own attributes."""
        resolving = set() if _resolving is None else _resolving
        if self.name in resolving:
            raise ValueError(f"Circular include detected: '{self.name}'")
        resolving.add(self.name)

        merged: dict[str, Any] = {}
        for inc_name in self.includes:
            if inc_name not in workspace.toolchains:
                raise ValueError(f"Toolchain '{self.name}' includes unknown toolchain: '{inc_name}'")
            logger.debug("Toolchain '%s' includes '%s'", self.name, inc_name)
            included = workspace.toolchains[inc_name].resolve(workspace, resolving)
            merged = _merge(merged, included)
        merged = _merge(merged, self.attrs)

        resolving.discard(self.name)
        return merged


@dataclass
class ImageRef(WorkspaceRef):
    """An image block, resolved into a Pipeline on access."""

    data: dict[str, Any] = field(default_factory=dict)
    origin: Path | None = None

    def resolve(self, workspace: Workspace) -> Pipeline:
        logger.debug("Resolving image '%s' as %s", self.name, workspace.pipeline_type.__name__)
        raw = dict(self.data)
        builder = _single_block(self.name, raw, "builder")
        runtime = _single_block(self.name, raw, "runtime")

        toolchain = builder.pop("toolchain", None)
        if toolchain is not None:
            if toolchain not in workspace.toolchains:
                raise ValueError(f"Image '{self.name}' references unknown toolchain: '{toolchain}'")
            builder = _merge(workspace.toolchains[toolchain].resolve(workspace), builder)

        resolver = Resolver.for_image(self.name, workspace.context)
        builder = resolver.resolve(builder)
        runtime = resolver.resolve(runtime)
        fields = resolver.resolve({k: v for k, v in raw.items() if k not in _STAGE_BLOCKS})

        kwargs: dict[str, Any] = {
            "name": self.name,
            "builder": BuildStage(**_decode_stage(builder, workspace)),
            "runtime": RuntimeStage(**_decode_stage(runtime, workspace)),
        }
        kwargs.update(fields)
        kwargs["context"] = self._context_dir(fields.get("context"))
        return workspace.pipeline_type(**kwargs)

    def _context_dir(self, value: str | None) -> Path:
        """Relative build contexts are taken from the declaring file's directory."""
        base = self.origin.parent if self.origin is not None else Path.cwd()
        if value is None:
            return base.resolve()
        path = Path(value)
        if not path.is_absolute():
            path = base / path
        return path.resolve()


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """Overlay extra on base; step blocks accumulate instead of replacing."""
    merged = dict(base)
    for key, value in extra.items():
        if key in _step_registry and key in merged:
            merged[key] = [*_blocks(merged[key]), *_blocks(value)]
        else:
            merged[key] = value
    return merged


def _blocks(value: Any) -> list[dict[str, Any]]:
    # hcl2 yields a list for repeated blocks and a dict for an object attribute
    if isinstance(value, dict):
        return [value]
    return list(value)


def _single_block(image: str, data: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in data:
        raise ValueError(f"Image '{image}' has no '{key}' block")
    blocks = _blocks(data[key])
    if len(blocks) != 1:
        raise ValueError(f"Image '{image}' must declare exactly one '{key}' block")
    return dict(blocks[0])


def _decode_stage(data: dict[str, Any], workspace: Workspace) -> dict[str, Any]:
    """Split stage attributes from step blocks and decode the step blocks."""
    attrs: dict[str, Any] = {}
    steps: list[Step[Any]] = []
    for key, value in data.items():
        if key in _step_registry:
            for block in _blocks(value):
                steps.append(StepRef(name=key, attrs=dict(block)).resolve(workspace))
        else:
            attrs[key] = value
    if steps:
        attrs["steps"] = steps
    return attrs


class Workspace[P: Pipeline](Mapping[str, P]):
    """Configured workspace that accumulates parsed data and resolves pipelines on access."""

    def __init__(
        self,
        pipeline_type: type[P] = Pipeline,  # type: ignore[assignment]
        context: dict[str, Any] | None = None,
    ) -> None:
        self._pipeline_type = pipeline_type
        self._context = context or {}
        self._toolchains: dict[str, ToolchainRef] = {}
        self._images: dict[str, ImageRef] = {}

    @property
    def pipeline_type(self) -> type[P]:
        return self._pipeline_type

    @property
    def context(self) -> dict[str, Any]:
        """Variables available to templates and ${...} interpolation."""
        return self._context

    @property
    def toolchains(self) -> dict[str, ToolchainRef]:
        return self._toolchains

    def add(self, ref: WorkspaceRef) -> None:
        """Register a workspace reference.

        Raises ValueError if a toolchain or image with the same name exists.
        """
        if isinstance(ref, ToolchainRef):
            if ref.name in self._toolchains:
                raise ValueError(f"Duplicate toolchain: '{ref.name}'")
            self._toolchains[ref.name] = ref
        elif isinstance(ref, ImageRef):
            if ref.name in self._images:
                raise ValueError(f"Duplicate image: '{ref.name}'")
            self._images[ref.name] = ref
        else:
            raise TypeError(f"Cannot add {type(ref).__name__} to a workspace")

    def load(self, data: dict[str, Any], *, origin: Path | None = None) -> None:
        """Extract toolchain and image blocks from a parsed data dict."""
        for tc_block in data.get("toolchain", []):
            for tc_name, tc_data in tc_block.items():
                logger.debug("Found toolchain '%s'", tc_name)
                attrs = dict(tc_data)
                includes = attrs.pop("include", [])
                self.add(ToolchainRef(name=tc_name, includes=list(includes), attrs=attrs))

        for image_block in data.get("image", []):
            for image_name, image_data in image_block.items():
                logger.debug("Found image '%s'", image_name)
                self.add(ImageRef(name=image_name, data=dict(image_data), origin=origin))

    def scan(self, path: str | Path, *, recurse: bool = True) -> None:
        """Load every .hcl file under path (or path itself if it is a file)."""
        root = Path(path)
        if root.is_file():
            files = [root]
        elif root.is_dir():
            files = sorted(root.glob("**/*.hcl" if recurse else "*.hcl"))
        else:
            raise ValueError(f"No such file or directory: '{root}'")
        for file in files:
            logger.debug("Loading %s", file)
            self.load(load(file, context=self._context), origin=file)

    def __getitem__(self, name: str) -> P:
        return self._images[name].resolve(self)  # type: ignore[return-value]

    def __contains__(self, name: object) -> bool:
        return name in self._images

    def __iter__(self) -> Iterator[str]:
        return iter(self._images)

    def __len__(self) -> int:
        return len(self._images)

    def filter(self, names: Iterable[str]) -> list[P]:
        """Return pipelines matching the given names, preserving input order."""
        return [self[n] for n in names if n in self._images]

    def __repr__(self) -> str:
        type_name = self._pipeline_type.__name__
        tc_count = len(self._toolchains)
        image_count = len(self._images)
        return f"Workspace(pipeline_type={type_name}, toolchains={tc_count}, images={image_count})"
