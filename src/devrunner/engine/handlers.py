"""Runtime handlers exposed to the function registry.

A runtime handler answers five questions for the functions of one runtime
family: should a changed file trigger a build, can it handle a runtime, build,
start a worker and stop a worker.
"""

from pathlib import PurePath
from typing import Protocol

from devrunner.contracts import BuildInput, StartWorkerInput
from devrunner.engine.cache import BuildCache
from devrunner.engine.node import NodeBuilder
from devrunner.engine.results import BuildResult
from devrunner.engine.supervisor import WorkerSupervisor


class RuntimeHandler(Protocol):
    def should_build(self, function_id: str, file: str | PurePath) -> bool: ...

    def can_handle(self, runtime: str) -> bool: ...

    async def start_worker(self, input: StartWorkerInput) -> None: ...

    async def stop_worker(self, worker_id: str) -> None: ...

    async def build(self, input: BuildInput) -> BuildResult: ...


class NodeRuntimeHandler:
    """Handler for the Node.js runtime family, composed from cache, builder and supervisor."""

    def __init__(
        self,
        cache: BuildCache,
        builder: NodeBuilder,
        supervisor: WorkerSupervisor,
        *,
        runtime_family: str = "nodejs",
    ) -> None:
        self._cache = cache
        self._builder = builder
        self._supervisor = supervisor
        self._runtime_family = runtime_family

    def should_build(self, function_id: str, file: str | PurePath) -> bool:
        return self._cache.should_build(function_id, file)

    def can_handle(self, runtime: str) -> bool:
        return runtime.startswith(self._runtime_family)

    async def start_worker(self, input: StartWorkerInput) -> None:
        await self._supervisor.start_worker(input)

    async def stop_worker(self, worker_id: str) -> None:
        await self._supervisor.stop_worker(worker_id)

    async def build(self, input: BuildInput) -> BuildResult:
        return await self._builder.build(input)


class RuntimeHandlers:
    """
    Registered runtime handlers, consulted in registration order.

    Example:
        handlers = RuntimeHandlers()
        handlers.register(node_handler)
        handler = handlers.for_runtime("nodejs18.x")
    """

    def __init__(self) -> None:
        self._handlers: list[RuntimeHandler] = []

    @property
    def handlers(self) -> list[RuntimeHandler]:
        return list(self._handlers)

    def register(self, handler: RuntimeHandler) -> None:
        if any(existing is handler for existing in self._handlers):
            raise ValueError("Runtime handler is already registered")
        self._handlers.append(handler)

    def find(self, runtime: str) -> RuntimeHandler | None:
        return next((h for h in self._handlers if h.can_handle(runtime)), None)

    def for_runtime(self, runtime: str) -> RuntimeHandler:
        handler = self.find(runtime)
        if handler is None:
            raise ValueError(f"No runtime handler registered for '{runtime}'")
        return handler
