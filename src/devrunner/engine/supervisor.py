"""Worker process supervision.

Each worker goes through Starting -> Running -> Exited. `start_worker` only
schedules the launch; everything after that is reported to the output sink:

    sink.stdout(worker_id, text)   for every chunk on stdout or stderr
    sink.exited(WorkerExit(...))   exactly once per started worker

Launch failures are reported through `exited` with `error` set, never raised
to the caller of `start_worker`.
"""

import asyncio
import codecs
import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from devrunner.contracts import StartWorkerInput
from devrunner.engine.launcher import ProcessLauncher, WorkerProcess
from devrunner.errors import DevRunnerError

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class WorkerExit:
    """Exit notification for a worker."""

    worker_id: str
    exit_code: int | None = None
    # Set when the worker failed to launch or was stopped while starting
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class WorkerOutputSink(Protocol):
    async def stdout(self, worker_id: str, data: str) -> None: ...

    async def exited(self, event: WorkerExit) -> None: ...


class LoggingOutputSink:
    """Sink that writes worker output and exits to the devrunner logger."""

    def __init__(self, logger_name: str = "devrunner.workers") -> None:
        self._logger = logging.getLogger(logger_name)

    async def stdout(self, worker_id: str, data: str) -> None:
        for line in data.splitlines():
            self._logger.info(f"[{worker_id}] {line}")

    async def exited(self, event: WorkerExit) -> None:
        if event.failed:
            self._logger.warning(f"[{event.worker_id}] failed: {event.error}")
        else:
            self._logger.info(f"[{event.worker_id}] exited with code {event.exit_code}")


class WorkerSupervisor:
    """
    Owns every worker process of a dev session, keyed by worker id.

    No other component holds a reference to a worker process; stopping and
    status checks go through the supervisor.

    Example:
        supervisor = WorkerSupervisor(NodeProcessLauncher(), sink, runtime_entry=entry)
        await supervisor.start_worker(start_input)
        ...
        await supervisor.stop_worker(start_input.worker_id)
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        sink: WorkerOutputSink,
        *,
        runtime_entry: Path | None,
        stop_timeout_seconds: float = 5.0,
    ) -> None:
        self._launcher = launcher
        self._sink = sink
        self._runtime_entry = runtime_entry
        self._stop_timeout_seconds = stop_timeout_seconds

        # worker_id -> running process (Running state)
        self._processes: dict[str, WorkerProcess] = {}
        # worker_id -> supervising task (Starting or Running state)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        # Scheduled workers whose supervising task has not run yet
        self._pending: set[str] = set()

    @property
    def worker_ids(self) -> list[str]:
        return list(self._tasks)

    def running(self, worker_id: str) -> bool:
        return worker_id in self._processes

    async def start_worker(self, input: StartWorkerInput) -> None:
        """Schedule the launch of a worker and return immediately."""
        worker_id = input.worker_id
        if worker_id in self._tasks:
            logger.warning(f"Worker {worker_id} is already started, ignoring start")
            return

        task = asyncio.create_task(
            self._supervise(input), name=f"devrunner-worker-{worker_id}"
        )
        self._tasks[worker_id] = task
        self._pending.add(worker_id)
        task.add_done_callback(lambda t: self._forget(worker_id, t))

    async def stop_worker(self, worker_id: str) -> None:
        """Terminate a worker and wait until it has exited. Unknown ids are ignored."""
        task = self._tasks.get(worker_id)
        if task is None:
            return

        process = self._processes.get(worker_id)
        if process is None:
            task.cancel()
        else:
            await process.terminate(self._stop_timeout_seconds)

        with contextlib.suppress(asyncio.CancelledError):
            await task

        if worker_id in self._pending:
            # Cancelled before the task ever ran, so _supervise never reported
            self._pending.discard(worker_id)
            await self._emit(
                "exited",
                WorkerExit(worker_id, error="Worker was stopped before it finished starting"),
            )

    async def stop_all(self) -> None:
        for worker_id in list(self._tasks):
            try:
                await self.stop_worker(worker_id)
            except Exception:
                logger.debug(f"Exception while stopping worker {worker_id}", exc_info=True)

    def _forget(self, worker_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(worker_id) is task:
            del self._tasks[worker_id]

    async def _launch(self, input: StartWorkerInput) -> WorkerProcess:
        if self._runtime_entry is None:
            raise DevRunnerError(
                "No worker runtime configured, set DEVRUNNER_NODE_RUNTIME_ENTRY"
            )
        env = {**os.environ, **input.environment, "IS_LOCAL": "true"}
        return await self._launcher.spawn(
            self._runtime_entry, env=env, worker_data=input.worker_data()
        )

    async def _supervise(self, input: StartWorkerInput) -> None:
        worker_id = input.worker_id
        process: WorkerProcess | None = None
        exit_code: int | None = None
        error: str | None = None
        self._pending.discard(worker_id)

        try:
            process = await self._launch(input)
            self._processes[worker_id] = process
            logger.debug(f"Worker {worker_id} running {input.handler}")

            await asyncio.gather(
                self._pump(worker_id, process.stdout),
                self._pump(worker_id, process.stderr),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            error = "Worker was stopped before it finished starting"
            if process is not None:
                error = "Worker supervision was cancelled"
                await process.terminate(self._stop_timeout_seconds)
            raise
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.debug(f"Worker {worker_id} failed to launch: {error}")
        finally:
            self._processes.pop(worker_id, None)
            await self._emit("exited", WorkerExit(worker_id, exit_code, error))

    async def _pump(self, worker_id: str, stream: asyncio.StreamReader) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while chunk := await stream.read(_READ_CHUNK_BYTES):
            text = decoder.decode(chunk)
            if text:
                await self._emit("stdout", worker_id, text)
        tail = decoder.decode(b"", final=True)
        if tail:
            await self._emit("stdout", worker_id, tail)

    async def _emit(self, method_name: str, *args: Any) -> None:
        method = getattr(self._sink, method_name)
        try:
            await method(*args)
        except Exception as exc:
            logger.warning(f"Worker output sink failed method={method_name}: {exc}")
