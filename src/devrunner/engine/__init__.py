"""devrunner engine - build cache, bundling and worker supervision."""

from devrunner.engine.bundler import (
    Bundler,
    BundleError,
    BundleOptions,
    BundleOutput,
    Diagnostic,
    EsbuildBundler,
)
from devrunner.engine.cache import BuildCache
from devrunner.engine.handlers import NodeRuntimeHandler, RuntimeHandler, RuntimeHandlers
from devrunner.engine.installer import (
    NpmPackageManager,
    PackageManager,
    install_for_deploy,
    link_for_local,
)
from devrunner.engine.launcher import NodeProcessLauncher, ProcessLauncher, WorkerProcess
from devrunner.engine.node import NodeBuilder
from devrunner.engine.results import BuildFailure, BuildResult, BuildSuccess
from devrunner.engine.session import DevSession
from devrunner.engine.supervisor import (
    LoggingOutputSink,
    WorkerExit,
    WorkerOutputSink,
    WorkerSupervisor,
)

__all__ = [
    # Session
    "DevSession",
    # Handlers
    "NodeRuntimeHandler",
    "RuntimeHandler",
    "RuntimeHandlers",
    # Build
    "BuildCache",
    "BuildFailure",
    "BuildResult",
    "BuildSuccess",
    "NodeBuilder",
    # Bundler
    "Bundler",
    "BundleError",
    "BundleOptions",
    "BundleOutput",
    "Diagnostic",
    "EsbuildBundler",
    # Dependencies
    "NpmPackageManager",
    "PackageManager",
    "install_for_deploy",
    "link_for_local",
    # Workers
    "LoggingOutputSink",
    "NodeProcessLauncher",
    "ProcessLauncher",
    "WorkerExit",
    "WorkerOutputSink",
    "WorkerProcess",
    "WorkerSupervisor",
]
