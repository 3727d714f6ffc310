"""Dev session wiring.

A DevSession is created once per `devrunner` invocation. It owns the session
state (the build cache and the worker supervisor) and registers the Node.js
handler with its runtime handler registry.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from devrunner.config import Settings, get_settings
from devrunner.engine.bundler import Bundler, EsbuildBundler
from devrunner.engine.cache import BuildCache
from devrunner.engine.handlers import NodeRuntimeHandler, RuntimeHandlers
from devrunner.engine.installer import NpmPackageManager, PackageManager
from devrunner.engine.launcher import NodeProcessLauncher, ProcessLauncher
from devrunner.engine.node import NodeBuilder
from devrunner.engine.supervisor import LoggingOutputSink, WorkerOutputSink, WorkerSupervisor

logger = logging.getLogger(__name__)


@dataclass
class DevSession:
    """
    Build and worker state for one dev session.

    Collaborators default to the esbuild/npm/node implementations configured
    by Settings and can be replaced individually.

    Example:
        session = DevSession(root=Path("."))
        handler = session.handlers.for_runtime("nodejs18.x")
        result = await handler.build(build_input)
        ...
        await session.close()
    """

    root: Path
    settings: Settings = field(default_factory=get_settings)
    sink: WorkerOutputSink = field(default_factory=LoggingOutputSink)
    bundler: Bundler | None = None
    launcher: ProcessLauncher | None = None
    package_manager: PackageManager | None = None

    # Internal state
    cache: BuildCache = field(init=False)
    supervisor: WorkerSupervisor = field(init=False)
    node: NodeRuntimeHandler = field(init=False)
    handlers: RuntimeHandlers = field(default_factory=RuntimeHandlers, init=False)

    def __post_init__(self) -> None:
        settings = self.settings
        self.root = self.root.resolve()
        if self.bundler is None:
            self.bundler = EsbuildBundler(
                self.root,
                binary=settings.esbuild_bin,
                incremental=settings.incremental_builds,
            )
        if self.launcher is None:
            self.launcher = NodeProcessLauncher(node_bin=settings.node_bin)
        if self.package_manager is None:
            self.package_manager = NpmPackageManager(
                settings.npm_bin, timeout_seconds=settings.install_timeout_seconds
            )

        self.cache = BuildCache(self.root)
        self.supervisor = WorkerSupervisor(
            self.launcher,
            self.sink,
            runtime_entry=settings.node_runtime_entry,
            stop_timeout_seconds=settings.worker_stop_timeout_seconds,
        )
        builder = NodeBuilder(
            self.root,
            self.cache,
            self.bundler,
            self.package_manager,
            sdk_exempt_runtimes=settings.sdk_exempt_runtimes,
        )
        self.node = NodeRuntimeHandler(
            self.cache,
            builder,
            self.supervisor,
            runtime_family=settings.runtime_family,
        )
        self.handlers.register(self.node)

    async def close(self) -> None:
        """Stop every worker started in this session."""
        workers = self.supervisor.worker_ids
        if workers:
            logger.debug(f"Stopping {len(workers)} workers")
        await self.supervisor.stop_all()
