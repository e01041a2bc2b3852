"""Runtime execution context for the build pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import Engine


class Context[P]:
    """Runtime state passed through the render and build chain."""

    def __init__(
        self,
        target: P,
        *,
        dry_run: bool = False,
        engine: Engine | None = None,
    ) -> None:
        self.target = target
        self.dry_run = dry_run
        self.engine = engine
