"""Shared fixtures: an in-memory engine and a registry guard."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

import pytest

from stagecraft.engine import BuildFailure, BuildResult, Engine
from stagecraft.step import _step_registry


class FakeEngine(Engine):
    """Records calls; stage failures and builder outputs are scripted by tests."""

    def __init__(self, produces: Sequence[str] = ()) -> None:
        self.produces = set(produces)
        self.failures: dict[str, BuildFailure] = {}
        self.calls: list[tuple] = []
        self.recipes: list[str] = []

    @property
    def stages_built(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "build"]

    def build(
        self,
        context: Path,
        recipe: str,
        *,
        target: str | None = None,
        tag: str | None = None,
    ) -> BuildResult:
        key = target or "final"
        self.calls.append(("build", key, tag))
        self.recipes.append(recipe)
        if key in self.failures:
            raise self.failures[key]
        return BuildResult(image_id=f"sha256:{key}", tag=tag)

    def exists(self, image: str, path: str) -> bool:
        self.calls.append(("exists", image, path))
        return path in self.produces

    def run(self, image: str, args: Sequence[str] = ()) -> str:
        self.calls.append(("run", image, tuple(args)))
        cmd = next(line for line in reversed(self.recipes[-1].splitlines()) if line.startswith("CMD "))
        return " ".join([*json.loads(cmd[4:]), *args])


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine(produces=["/usr/local/cargo/bin/myapp"])


@pytest.fixture(autouse=True)
def _restore_registry():
    """Snapshot the step registry and restore it after each test."""
    saved = _step_registry.copy()
    yield
    _step_registry.clear()
    _step_registry.update(saved)
