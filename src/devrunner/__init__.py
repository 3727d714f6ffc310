"""devrunner - local build and worker runtime for serverless Node.js functions."""

from devrunner._version import __version__
from devrunner.contracts import (
    BuildInput,
    BuildMode,
    FunctionProps,
    NodejsOptions,
    StartWorkerInput,
)
from devrunner.engine import (
    BuildFailure,
    BuildSuccess,
    DevSession,
    RuntimeHandler,
    WorkerExit,
)
from devrunner.errors import (
    DevRunnerError,
    HandlerNotFoundError,
    InvalidManifestError,
    ManifestNotFoundError,
    PackageManagerError,
)

__all__ = [
    "BuildFailure",
    "BuildInput",
    "BuildMode",
    "BuildSuccess",
    "DevRunnerError",
    "DevSession",
    "FunctionProps",
    "HandlerNotFoundError",
    "InvalidManifestError",
    "ManifestNotFoundError",
    "NodejsOptions",
    "PackageManagerError",
    "RuntimeHandler",
    "StartWorkerInput",
    "WorkerExit",
    "__version__",
]
