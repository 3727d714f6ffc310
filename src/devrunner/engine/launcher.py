"""Process launching for worker runtimes."""

import asyncio
import contextlib
import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class WorkerProcess(Protocol):
    """A running worker process as seen by the supervisor."""

    stdout: asyncio.StreamReader
    stderr: asyncio.StreamReader

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...

    async def terminate(self, timeout: float) -> None:
        """Terminate the process, killing it if it outlives `timeout` seconds."""
        ...


class ProcessLauncher(Protocol):
    async def spawn(
        self,
        entry_point: Path,
        *,
        env: Mapping[str, str],
        worker_data: Mapping[str, Any],
    ) -> WorkerProcess:
        """Start an isolated process running `entry_point`."""
        ...


class SubprocessWorker:
    """WorkerProcess backed by an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        if process.stdout is None or process.stderr is None:
            raise ValueError("worker process must be started with piped stdout and stderr")
        self._process = process
        self.stdout = process.stdout
        self.stderr = process.stderr

    @property
    def pid(self) -> int:
        return self._process.pid

    async def wait(self) -> int:
        return await self._process.wait()

    async def terminate(self, timeout: float) -> None:
        if self._process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()
        try:
            async with asyncio.timeout(timeout):
                await self._process.wait()
        except TimeoutError:
            logger.warning(f"Worker pid={self.pid} ignored terminate, killing")
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            await self._process.wait()


class NodeProcessLauncher:
    """
    Launches `node` with source maps enabled.

    The worker data is written to the child's stdin as a single JSON document
    and stdin is closed afterwards.
    """

    def __init__(
        self,
        *,
        node_bin: str = "node",
        node_options: Sequence[str] = ("--enable-source-maps",),
    ) -> None:
        self._node_bin = node_bin
        self._node_options = tuple(node_options)

    async def spawn(
        self,
        entry_point: Path,
        *,
        env: Mapping[str, str],
        worker_data: Mapping[str, Any],
    ) -> SubprocessWorker:
        process = await asyncio.create_subprocess_exec(
            self._node_bin,
            *self._node_options,
            str(entry_point),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env),
        )
        assert process.stdin is not None
        try:
            # The child may exit before reading its worker data
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                process.stdin.write(json.dumps(worker_data).encode("utf-8"))
                await process.stdin.drain()
                process.stdin.close()
        except BaseException:
            # Nobody else holds this process yet, so it must not outlive spawn
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise
        logger.debug(f"Spawned {self._node_bin} pid={process.pid} for {entry_point}")
        return SubprocessWorker(process)
