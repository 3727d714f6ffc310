"""Bundler interface and the esbuild implementation."""

from devrunner.engine.bundler.base import (
    Bundler,
    BundleError,
    BundleOptions,
    BundleOutput,
    Diagnostic,
    RebuildHandle,
)
from devrunner.engine.bundler.esbuild import EsbuildBundler

__all__ = [
    "Bundler",
    "BundleError",
    "BundleOptions",
    "BundleOutput",
    "Diagnostic",
    "EsbuildBundler",
    "RebuildHandle",
]
