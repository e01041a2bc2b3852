"""Render a pipeline into a multi-stage Dockerfile."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import jinja2

from .context import Context

if TYPE_CHECKING:
    from .pipeline import Pipeline

logger = logging.getLogger(__name__)

_TEMPLATE = """\
# {{ name }}
{% if description %}
# {{ description }}
{% endif %}
{% for stage in stages %}

# -- {{ stage.name }} --
{% for line in stage.lines %}
{{ line }}
{% endfor %}
{% endfor %}
"""

_env = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,
)


def render(ctx: Context[Pipeline]) -> str:
    """Render the context's target pipeline, builder stage first."""
    pipeline = ctx.target
    stages = [
        {"name": stage.name, "lines": stage.render(ctx)}
        for stage in (pipeline.builder, pipeline.runtime)
    ]
    logger.debug("Rendering recipe for '%s'", pipeline.name)
    template = _env.from_string(_TEMPLATE)
    return template.render(
        name=pipeline.name,
        description=" ".join(pipeline.description.split()),
        stages=stages,
    )
