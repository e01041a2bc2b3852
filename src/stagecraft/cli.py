"""Command-line entry point for stagecraft."""

from __future__ import annotations

import logging
import sys
from typing import NoReturn

import click

from . import hcl
from .errors import PipelineError
from .pipeline import Pipeline
from .workspace import Workspace

logger = logging.getLogger(__name__)

EXIT_DEFINITION_ERROR = 1


def _fail(message: str, code: int) -> NoReturn:
    click.echo(f"error: {message}", err=True)
    sys.exit(code)


def _parse_vars(values: tuple[str, ...]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{item}'", param_hint="--var")
        variables[key] = value
    return variables


def _pipeline(ctx: click.Context, name: str) -> Pipeline:
    ws: Workspace = ctx.obj
    if name not in ws:
        known = ", ".join(sorted(ws)) or "none"
        _fail(f"unknown image '{name}' (declared: {known})", EXIT_DEFINITION_ERROR)
    try:
        return ws[name]
    except ValueError as exc:
        _fail(str(exc), EXIT_DEFINITION_ERROR)


@click.group()
@click.option(
    "-p",
    "--path",
    "path",
    type=click.Path(exists=True),
    default=".",
    show_default=True,
    help="HCL file or directory to scan.",
)
@click.option("--var", "variables", multiple=True, metavar="KEY=VALUE", help="Template variable.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, path: str, variables: tuple[str, ...], verbose: bool) -> None:
    """Build small runtime images from a compiled single-binary artifact."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = hcl.scan(path, context=_parse_vars(variables))
    except ValueError as exc:
        _fail(str(exc), EXIT_DEFINITION_ERROR)


@cli.command("list")
@click.pass_context
def list_images(ctx: click.Context) -> None:
    """List declared images."""
    ws: Workspace = ctx.obj
    for name in sorted(ws):
        click.echo(name)


@cli.command()
@click.argument("image")
@click.pass_context
def render(ctx: click.Context, image: str) -> None:
    """Print the rendered multi-stage recipe for IMAGE."""
    click.echo(_pipeline(ctx, image).render(), nl=False)


@cli.command()
@click.argument("image")
@click.option("--dry-run", is_flag=True, default=False, help="Render and log, do not build.")
@click.option("-t", "--tag", "tag", default=None, help="Override the image tag.")
@click.pass_context
def build(ctx: click.Context, image: str, dry_run: bool, tag: str | None) -> None:
    """Build IMAGE: compile in the builder stage, then assemble the runtime stage."""
    pipeline = _pipeline(ctx, image)
    if tag is not None:
        pipeline = pipeline.model_copy(update={"tag": tag})
    try:
        result = pipeline.build(dry_run=dry_run)
    except PipelineError as exc:
        logger.debug("Build of '%s' failed", image, exc_info=True)
        _fail(str(exc), exc.exit_code)
    if result is not None:
        click.echo(f"{result.tag} {result.image_id}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
