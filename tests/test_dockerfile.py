"""Tests for stagecraft.dockerfile."""

from __future__ import annotations

from stagecraft.context import Context
from stagecraft.dockerfile import render
from stagecraft.pipeline import Pipeline
from stagecraft.stages import BuildStage, RuntimeStage
from stagecraft.steps import Env, Expose


def _pipeline(**kwargs) -> Pipeline:
    fields = {
        "name": "myapp",
        "builder": BuildStage(image="rust:1.67", package="myapp", workdir="/usr/src/myapp"),
        "runtime": RuntimeStage(
            image="debian:bullseye-slim",
            packages=["ca-certificates"],
        ),
    }
    fields.update(kwargs)
    return Pipeline(**fields)


class TestRender:
    def test_full_recipe(self):
        text = render(Context(target=_pipeline()))
        assert text == (
            "# myapp\n"
            "\n"
            "# -- builder --\n"
            "FROM rust:1.67 AS builder\n"
            "WORKDIR /usr/src/myapp\n"
            "COPY . .\n"
            "RUN cargo install --path .\n"
            "\n"
            "# -- runtime --\n"
            "FROM debian:bullseye-slim AS runtime\n"
            "RUN apt-get update && apt-get install -y --no-install-recommends ca-certificates"
            " && rm -rf /var/lib/apt/lists/*\n"
            "COPY --from=builder /usr/local/cargo/bin/myapp /usr/local/bin/myapp\n"
            'CMD ["myapp"]\n'
        )

    def test_builder_precedes_runtime(self):
        text = render(Context(target=_pipeline()))
        assert text.index("AS builder") < text.index("AS runtime")

    def test_description_is_single_comment_line(self):
        text = render(Context(target=_pipeline(description="Users API\nwith tracing")))
        assert "# Users API with tracing\n" in text

    def test_metadata_steps_follow_artifact(self):
        pipeline = _pipeline(
            runtime=RuntimeStage(
                image="debian:bullseye-slim",
                steps=[Env(OTLP_ENDPOINT="http://collector:4317"), Expose(8080)],
            )
        )
        lines = render(Context(target=pipeline)).splitlines()
        copy = lines.index("COPY --from=builder /usr/local/cargo/bin/myapp /usr/local/bin/myapp")
        assert lines[copy + 1 :] == [
            'ENV OTLP_ENDPOINT="http://collector:4317"',
            "EXPOSE 8080/tcp",
            'CMD ["myapp"]',
        ]

    def test_runtime_has_single_copy_from_builder(self):
        text = render(Context(target=_pipeline()))
        runtime = text.split("# -- runtime --", 1)[1]
        assert runtime.count("COPY") == 1
        assert "--from=builder" in runtime
        assert "cargo" not in runtime.replace("/usr/local/cargo/bin/myapp", "")
