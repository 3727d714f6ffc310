"""Build command for devrunner."""

import asyncio
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.markup import escape

from devrunner.cli._console import error_panel, info, setup_logging, success
from devrunner.contracts import BuildInput, BuildMode, FunctionProps
from devrunner.engine import BuildFailure, BuildResult, DevSession
from devrunner.errors import DevRunnerError


def function_props(
    handler: str,
    *,
    runtime: str,
    format: str,
    install: list[str] | None = None,
    minify: bool = False,
) -> FunctionProps:
    """Build FunctionProps from command line options."""
    return FunctionProps.model_validate(
        {
            "handler": handler,
            "runtime": runtime,
            "nodejs": {"format": format, "install": install or [], "minify": minify},
        }
    )


def failure_message(result: BuildFailure) -> str:
    return "\n".join(line for line in result.errors if line)


async def _build(root: Path, build_input: BuildInput) -> BuildResult:
    session = DevSession(root=root)
    try:
        handler = session.handlers.for_runtime(build_input.props.runtime)
        return await handler.build(build_input)
    finally:
        await session.close()


def build(
    handler: str = typer.Argument(..., help="Handler reference, e.g. src/api.handler"),
    out: Path = typer.Option(
        Path(".devrunner/out"), "--out", help="Output directory for the bundle"
    ),
    root: Path = typer.Option(Path("."), "--root", help="Project root directory"),
    runtime: str = typer.Option("nodejs18.x", "--runtime", help="Function runtime"),
    format: str = typer.Option("esm", "--format", help="Module format: esm or cjs"),
    install: list[str] = typer.Option(
        None,
        "--install",
        "-i",
        help="Package to install next to the bundle instead of bundling it",
    ),
    minify: bool = typer.Option(False, "--minify", help="Minify the bundle"),
    mode: BuildMode = typer.Option(
        BuildMode.DEPLOY, "--mode", help="start links node_modules, deploy installs"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Build a function handler once.

    Examples:
        devrunner build src/api.handler
        devrunner build src/api.handler --format cjs -i sharp --out .build/api
    """
    setup_logging(verbose=verbose)

    try:
        props = function_props(
            handler, runtime=runtime, format=format, install=install, minify=minify
        )
        build_input = BuildInput(function_id=handler, out=out, mode=mode, props=props)
        result = asyncio.run(_build(root, build_input))
    except ValidationError as e:
        error_panel(escape(str(e)), title="Invalid options")
        raise typer.Exit(1)
    except (DevRunnerError, ValueError) as e:
        error_panel(escape(str(e)), title="Build failed")
        raise typer.Exit(1)

    if isinstance(result, BuildFailure):
        error_panel(failure_message(result), title="Build failed")
        raise typer.Exit(1)

    success(f"Built [bold]{escape(result.handler)}[/bold] in {escape(str(out))}")
    info(f"{len(result.input_files)} input files")
