from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from devrunner.engine.bundler.base import BundleError, BundleOptions, BundleOutput, Diagnostic
from devrunner.engine.installer import InstallOutcome
from devrunner.engine.supervisor import WorkerExit


@dataclass
class FakeBundler:
    """Records options and returns a canned set of inputs per call."""

    inputs: list[frozenset[str]] = field(default_factory=lambda: [frozenset({"src/api.ts"})])
    incremental: bool = False
    fail_with: list[Diagnostic] | None = None
    calls: list[BundleOptions] = field(default_factory=list)
    rebuilds: int = 0

    def _next_inputs(self) -> frozenset[str]:
        index = min(len(self.calls) + self.rebuilds - 1, len(self.inputs) - 1)
        return self.inputs[index]

    async def bundle(self, options: BundleOptions) -> BundleOutput:
        self.calls.append(options)
        if self.fail_with is not None:
            raise BundleError(self.fail_with)
        return self._output(options)

    async def _rebuild(self, options: BundleOptions) -> BundleOutput:
        self.rebuilds += 1
        if self.fail_with is not None:
            raise BundleError(self.fail_with)
        return self._output(options)

    def _output(self, options: BundleOptions) -> BundleOutput:
        rebuild = None
        if self.incremental:

            async def rebuild() -> BundleOutput:
                return await self._rebuild(options)

        return BundleOutput(
            outfile=options.outfile, inputs=self._next_inputs(), rebuild=rebuild
        )


@dataclass
class FakePackageManager:
    exit_code: int = 0
    output: str = ""
    installs: list[tuple[Path, dict[str, Any]]] = field(default_factory=list)

    async def install(self, cwd: Path) -> InstallOutcome:
        manifest = json.loads((cwd / "package.json").read_text(encoding="utf-8"))
        self.installs.append((cwd, manifest))
        return InstallOutcome(
            command=["npm", "install"], exit_code=self.exit_code, output=self.output
        )


class FakeProcess:
    """In-memory WorkerProcess: output is fed by the test, exit on demand."""

    def __init__(self) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.terminated = False
        self._exit_code: int | None = None
        self._exited = asyncio.Event()

    def exit(self, code: int = 0) -> None:
        self._exit_code = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self._exit_code is not None
        return self._exit_code

    async def terminate(self, timeout: float) -> None:
        self.terminated = True
        if not self._exited.is_set():
            self.exit(-15)


@dataclass
class FakeLauncher:
    fail_with: Exception | None = None
    block: asyncio.Event | None = None
    spawned: list[dict[str, Any]] = field(default_factory=list)
    processes: list[FakeProcess] = field(default_factory=list)

    async def spawn(
        self,
        entry_point: Path,
        *,
        env: Mapping[str, str],
        worker_data: Mapping[str, Any],
    ) -> FakeProcess:
        if self.block is not None:
            await self.block.wait()
        if self.fail_with is not None:
            raise self.fail_with
        self.spawned.append(
            {"entry_point": entry_point, "env": dict(env), "worker_data": dict(worker_data)}
        )
        process = FakeProcess()
        self.processes.append(process)
        return process


@dataclass
class RecordingSink:
    output: list[tuple[str, str]] = field(default_factory=list)
    exits: list[WorkerExit] = field(default_factory=list)
    exited_event: asyncio.Event = field(default_factory=asyncio.Event)

    async def stdout(self, worker_id: str, data: str) -> None:
        self.output.append((worker_id, data))

    async def exited(self, event: WorkerExit) -> None:
        self.exits.append(event)
        self.exited_event.set()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project root with a package.json and a TypeScript handler."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "node_modules").mkdir()
    (root / "src" / "api.ts").write_text("export const handler = async () => 1;\n")
    (root / "package.json").write_text(
        json.dumps({"name": "app", "dependencies": {"sharp": "^0.32.0", "zod": "^3.0.0"}})
    )
    return root
