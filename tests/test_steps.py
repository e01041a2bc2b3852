"""Tests for stagecraft.steps."""

from __future__ import annotations

from pathlib import PurePosixPath

import pytest

from stagecraft.artifacts import Artifact
from stagecraft.context import Context
from stagecraft.steps import (
    Command,
    CopyArtifact,
    CopySource,
    Env,
    Expose,
    From,
    Install,
    InstallPackages,
    Label,
    Run,
    WorkDir,
)


@pytest.fixture
def ctx() -> Context[object]:
    return Context(target=object())


@pytest.fixture
def artifact() -> Artifact:
    return Artifact(
        name="myapp",
        source=PurePosixPath("/usr/local/cargo/bin/myapp"),
        destination=PurePosixPath("/usr/local/bin/myapp"),
    )


class TestStructuralSteps:
    def test_from_with_alias(self, ctx):
        assert From("rust:1.67", alias="builder").render(ctx) == ["FROM rust:1.67 AS builder"]

    def test_from_without_alias(self, ctx):
        assert From("debian:bullseye-slim").render(ctx) == ["FROM debian:bullseye-slim"]

    def test_from_matches_pull_failure(self, ctx):
        text = "manifest for rust:0.0 not found: manifest unknown"
        assert From("rust:0.0").matches(ctx, text) is True

    def test_workdir(self, ctx):
        assert WorkDir("/usr/src/myapp").render(ctx) == ["WORKDIR /usr/src/myapp"]

    def test_copy_source(self, ctx):
        assert CopySource().render(ctx) == ["COPY . ."]


class TestRun:
    def test_render(self, ctx):
        assert Run("make all").render(ctx) == ["RUN make all"]

    def test_strips_command(self, ctx):
        assert Run("  make  ").command == "make"

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            Run("   ")

    def test_matches_command_in_log(self, ctx):
        text = "The command '/bin/sh -c make all' returned a non-zero code: 2"
        assert Run("make all").matches(ctx, text) is True
        assert Run("make test").matches(ctx, text) is False

    @pytest.mark.parametrize("command", ["make\nRUN rm -rf /", "make\rrm -rf /"])
    def test_multiline_command_rejected(self, command):
        with pytest.raises(ValueError, match="single line"):
            Run(command)

    def test_multiline_install_rejected(self):
        with pytest.raises(ValueError, match="install: value must be a single line"):
            Install("cargo build\ncargo install --path .")

    def test_install_kind(self):
        assert Run.kind == "run"
        assert Install.kind == "install"


class TestInstallPackages:
    def test_apt_installs_then_purges(self, ctx):
        (line,) = InstallPackages(["ca-certificates", "libssl3"]).render(ctx)
        assert line.startswith("RUN apt-get update && apt-get install -y")
        assert "ca-certificates libssl3" in line
        assert line.endswith("&& rm -rf /var/lib/apt/lists/*")

    def test_apk_uses_no_cache(self, ctx):
        (line,) = InstallPackages(["ca-certificates"], manager="apk").render(ctx)
        assert line == "RUN apk add --no-cache ca-certificates"

    def test_unknown_manager(self):
        with pytest.raises(ValueError, match="Unknown package manager"):
            InstallPackages([], manager="brew")

    def test_invalid_package_name(self):
        with pytest.raises(ValueError, match="Invalid apt package name"):
            InstallPackages(["libssl; rm -rf /"])

    def test_pinned_apt_version_allowed(self):
        step = InstallPackages(["libssl3=3.0.11-1~deb12u2"])
        assert step.packages == ["libssl3=3.0.11-1~deb12u2"]

    def test_matches_resolution_failure(self, ctx):
        step = InstallPackages(["no-such-package"])
        assert step.matches(ctx, "E: Unable to locate package no-such-package") is True

    def test_matches_apk_failure(self, ctx):
        step = InstallPackages(["nope"], manager="apk")
        assert step.matches(ctx, "ERROR: unable to select packages:\n  nope (no such package)") is True

    def test_no_match_on_unrelated_text(self, ctx):
        assert InstallPackages(["curl"]).matches(ctx, "COPY failed") is False


class TestCopyArtifact:
    def test_render(self, ctx, artifact):
        assert CopyArtifact("builder", artifact).render(ctx) == [
            "COPY --from=builder /usr/local/cargo/bin/myapp /usr/local/bin/myapp"
        ]

    def test_matches_missing_source(self, ctx, artifact):
        text = 'failed to compute cache key: "/usr/local/cargo/bin/myapp" not found'
        assert CopyArtifact("builder", artifact).matches(ctx, text) is True

    def test_matches_classic_copy_failure(self, ctx, artifact):
        text = "COPY failed: stat usr/local/cargo/bin/other: file does not exist"
        assert CopyArtifact("builder", artifact).matches(ctx, text) is True


class TestCommand:
    def test_exec_form_json(self, ctx):
        assert Command(["myapp"]).render(ctx) == ['CMD ["myapp"]']

    def test_plain_ascii_quotes(self, ctx):
        (line,) = Command(["myapp"]).render(ctx)
        assert line.isascii()

    def test_empty_argv_rejected(self):
        with pytest.raises(ValueError):
            Command([])

    def test_metadata_only(self):
        assert Command.mutates_filesystem is False


class TestMetadataSteps:
    def test_env_sorted_and_quoted(self, ctx):
        step = Env(OTLP_ENDPOINT="http://collector:4317", A='say "hi"')
        assert step.render(ctx) == [
            'ENV A="say \\"hi\\""',
            'ENV OTLP_ENDPOINT="http://collector:4317"',
        ]

    def test_env_escapes_dollar(self, ctx):
        assert Env(OTLP_ENDPOINT="http://$HOST:4317").render(ctx) == [
            'ENV OTLP_ENDPOINT="http://\\$HOST:4317"'
        ]

    @pytest.mark.parametrize("value", ["http://c:4317\nRUN apt-get install -y gcc", "a\rb"])
    def test_env_multiline_value_rejected(self, value):
        with pytest.raises(ValueError, match="env: value must be a single line"):
            Env(OTLP_ENDPOINT=value)

    def test_env_invalid_name(self):
        with pytest.raises(ValueError, match="Invalid environment variable name"):
            Env(**{"1BAD": "x"})

    def test_expose_default_tcp(self, ctx):
        assert Expose(8080).render(ctx) == ["EXPOSE 8080/tcp"]

    def test_expose_accepts_string_port(self, ctx):
        assert Expose("53", protocol="udp").render(ctx) == ["EXPOSE 53/udp"]

    def test_expose_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            Expose(70000)

    def test_expose_unknown_protocol(self):
        with pytest.raises(ValueError, match="protocol"):
            Expose(80, protocol="sctp")

    def test_label(self, ctx):
        assert Label(maintainer="ops").render(ctx) == ['LABEL "maintainer"="ops"']

    def test_label_escapes_dollar(self, ctx):
        assert Label(version="${VERSION}").render(ctx) == ['LABEL "version"="\\${VERSION}"']

    def test_label_multiline_value_rejected(self):
        with pytest.raises(ValueError, match="label: value must be a single line"):
            Label(maintainer="ops\nRUN true")

    @pytest.mark.parametrize("cls", [WorkDir, Label])
    def test_documented(self, cls):
        assert cls.__doc__

    @pytest.mark.parametrize("cls", [Env, Expose, Label])
    def test_metadata_steps_do_not_touch_filesystem(self, cls):
        assert cls.mutates_filesystem is False

    def test_run_touches_filesystem(self):
        assert Run.mutates_filesystem is True
