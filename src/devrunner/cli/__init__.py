"""devrunner CLI."""

import typer

from devrunner.cli._console import console
from devrunner.cli.build import build
from devrunner.cli.start import start

app = typer.Typer(
    name="devrunner",
    help="Build and run serverless Node.js functions locally.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        from devrunner import __version__

        console.print(f"[bold]devrunner[/bold] [dim]{__version__}[/dim]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version",
    ),
) -> None:
    """Local build and worker runtime for serverless functions."""


# Register commands
app.command()(build)
app.command()(start)
