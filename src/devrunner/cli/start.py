"""Start command: build a handler and run it in a local worker."""

import asyncio
import contextlib
import signal
import uuid
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.markup import escape

from devrunner.cli._console import console, error_panel, info, nl, setup_logging, success, warning
from devrunner.cli.build import failure_message, function_props
from devrunner.contracts import BuildInput, BuildMode, FunctionProps, StartWorkerInput
from devrunner.engine import BuildFailure, DevSession, WorkerExit
from devrunner.engine.node import resolve_output_dir
from devrunner.errors import DevRunnerError


class ConsoleOutputSink:
    """Writes worker output straight to the console and records the exit."""

    def __init__(self) -> None:
        self.exit: WorkerExit | None = None
        self.exited_event = asyncio.Event()

    async def stdout(self, worker_id: str, data: str) -> None:
        console.out(data, end="", highlight=False)

    async def exited(self, event: WorkerExit) -> None:
        self.exit = event
        self.exited_event.set()


def parse_environment(pairs: list[str] | None) -> dict[str, str]:
    environment: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        environment[key] = value
    return environment


async def _start(
    root: Path,
    out: Path,
    props: FunctionProps,
    environment: dict[str, str],
) -> int:
    sink = ConsoleOutputSink()
    session = DevSession(root=root, sink=sink)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        handler = session.handlers.for_runtime(props.runtime)
        function_id = props.handler
        result = await handler.build(
            BuildInput(function_id=function_id, out=out, mode=BuildMode.START, props=props)
        )
        if isinstance(result, BuildFailure):
            error_panel(failure_message(result), title="Build failed")
            return 1
        success(f"Built [bold]{escape(result.handler)}[/bold]")

        worker_id = f"worker_{uuid.uuid4().hex[:8]}"
        await handler.start_worker(
            StartWorkerInput(
                function_id=function_id,
                worker_id=worker_id,
                out=resolve_output_dir(session.root, out),
                handler=result.handler,
                runtime=props.runtime,
                environment=environment,
            )
        )
        info(f"Worker {worker_id} starting (Ctrl+C to stop)")

        waiters = [
            asyncio.create_task(stop_event.wait()),
            asyncio.create_task(sink.exited_event.wait()),
        ]
        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if sink.exit is None:
            await handler.stop_worker(worker_id)
            return 0
        if sink.exit.failed:
            error_panel(escape(sink.exit.error or ""), title="Worker failed")
            return 1
        warning(f"Worker exited with code {sink.exit.exit_code}")
        return sink.exit.exit_code or 0
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await session.close()


def start(
    handler: str = typer.Argument(..., help="Handler reference, e.g. src/api.handler"),
    out: Path = typer.Option(
        Path(".devrunner/out"), "--out", help="Output directory for the bundle"
    ),
    root: Path = typer.Option(Path("."), "--root", help="Project root directory"),
    runtime: str = typer.Option("nodejs18.x", "--runtime", help="Function runtime"),
    format: str = typer.Option("esm", "--format", help="Module format: esm or cjs"),
    env: list[str] = typer.Option(
        None,
        "--env",
        "-e",
        help="Environment variable for the worker (KEY=VALUE)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Build a handler and run it in a local worker until interrupted.

    Examples:
        devrunner start src/api.handler
        devrunner start src/api.handler -e STAGE=dev -e TABLE=users
    """
    setup_logging(verbose=verbose)
    environment = parse_environment(env)

    try:
        props = function_props(handler, runtime=runtime, format=format)
        code = asyncio.run(_start(root, out, props, environment))
    except ValidationError as e:
        error_panel(escape(str(e)), title="Invalid options")
        raise typer.Exit(1)
    except (DevRunnerError, ValueError) as e:
        error_panel(escape(str(e)), title="Start failed")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        code = 0  # Clean exit on Ctrl+C
    finally:
        nl()

    if code:
        raise typer.Exit(code)
