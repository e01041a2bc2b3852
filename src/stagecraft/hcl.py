"""HCL loading engine: parse .hcl files into a Workspace of image pipelines."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import hcl2
import jinja2
from lark.exceptions import LarkError

from .pipeline import Pipeline

if TYPE_CHECKING:
    from .workspace import Workspace

logger = logging.getLogger(__name__)


def scan[P: Pipeline](
    path: str | Path,
    *,
    pipeline_type: type[P] = Pipeline,  # type: ignore[assignment]
    recurse: bool = True,
    context: dict[str, Any] | None = None,
) -> Workspace[P]:
    """Scan a directory (or a single file) for .hcl files and return a ready Workspace."""
    from .workspace import Workspace

    ws = Workspace(pipeline_type=pipeline_type, context=context)
    ws.scan(path, recurse=recurse)
    return ws


def load(
    file: Path,
    *,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Load and parse a single HCL file, rendering Jinja2 templates with context."""
    text = file.read_text()
    ctx = context if context is not None else {}
    env = jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    try:
        template = env.from_string(text)
        text = template.render(ctx)
    except jinja2.TemplateError as exc:
        raise ValueError(f"{file}: {exc}") from exc
    try:
        return hcl2.loads(text)
    except LarkError as exc:
        raise ValueError(f"{file}: {exc}") from exc
