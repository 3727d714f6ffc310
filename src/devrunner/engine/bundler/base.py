"""Bundler interface and the option set handed to it.

A bundler turns a set of entry files into a single artifact and reports which
source files it read doing so. The engine only talks to bundlers through the
`Bundler` protocol; `EsbuildBundler` is the shipped implementation.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Protocol

VALID_FORMATS = ("esm", "cjs", "iife")
VALID_PLATFORMS = ("node", "browser", "neutral")
VALID_SOURCEMAPS = (None, True, False, "linked", "inline", "external", "both")
VALID_LOG_LEVELS = ("verbose", "debug", "info", "warning", "error", "silent")

# camelCase override keys (as written in project config) -> BundleOptions field
_OVERRIDE_ALIASES = {
    "entryPoints": "entry_points",
    "mainFields": "main_fields",
    "keepNames": "keep_names",
    "logLevel": "log_level",
}
# Fields an override may not replace directly
_RESERVED_OVERRIDES = {"external", "extra", "banner_js"}


@dataclass(frozen=True)
class Diagnostic:
    """A single error reported by the bundler."""

    text: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    line_text: str | None = None


class BundleError(Exception):
    """Raised by a bundler when the build produced errors."""

    def __init__(self, diagnostics: list[Diagnostic]) -> None:
        self.diagnostics = diagnostics
        summary = diagnostics[0].text if diagnostics else "bundle failed"
        if len(diagnostics) > 1:
            summary += f" (+{len(diagnostics) - 1} more)"
        super().__init__(summary)


RebuildHandle = Callable[[], Awaitable["BundleOutput"]]


@dataclass(frozen=True)
class BundleOutput:
    """Result of a successful bundle."""

    outfile: Path
    # Input paths as recorded in the metafile (project-root relative, POSIX)
    inputs: frozenset[str] = frozenset()
    rebuild: RebuildHandle | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class BundleOptions:
    """
    Bundler configuration for one build.

    Instances are built from computed defaults and then passed through
    `apply_overrides`, so user-declared options always win over defaults.
    Every instance is validated on construction.
    """

    entry_points: list[str]
    outfile: Path
    platform: str = "node"
    format: str = "esm"
    target: str = "esnext"
    main_fields: list[str] | None = None
    external: list[str] = field(default_factory=list)
    banner_js: str | None = None
    sourcemap: bool | str | None = None
    minify: bool = False
    keep_names: bool = True
    bundle: bool = True
    metafile: bool = True
    log_level: str = "error"
    # Options without a named field, passed through to the bundler verbatim
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.entry_points:
            raise ValueError("entry_points must contain at least one file")
        if not str(self.outfile):
            raise ValueError("outfile must be set")
        if self.format not in VALID_FORMATS:
            raise ValueError(f"format must be one of {VALID_FORMATS}, got {self.format!r}")
        if self.platform not in VALID_PLATFORMS:
            raise ValueError(
                f"platform must be one of {VALID_PLATFORMS}, got {self.platform!r}"
            )
        if self.sourcemap not in VALID_SOURCEMAPS:
            raise ValueError(f"sourcemap must be one of {VALID_SOURCEMAPS}")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {VALID_LOG_LEVELS}, got {self.log_level!r}"
            )
        if not self.metafile:
            raise ValueError("metafile cannot be disabled, the build cache reads it")

    def apply_overrides(self, overrides: Mapping[str, Any]) -> BundleOptions:
        """
        Return a copy with user overrides applied over these options.

        - `external` entries are appended to the computed externals.
        - `banner` accepts esbuild's `{"js": "..."}` shape and replaces banner_js.
        - Keys naming a field (snake_case or camelCase) replace that field.
        - Any other key lands in `extra`.
        """
        if not overrides:
            return self

        names = {f.name for f in fields(self)} - _RESERVED_OVERRIDES
        changes: dict[str, Any] = {}
        extra = dict(self.extra)
        external = list(self.external)

        for key, value in overrides.items():
            if key == "external":
                external.extend(value or [])
                continue
            if key == "banner":
                changes["banner_js"] = value.get("js") if isinstance(value, dict) else value
                continue
            name = _OVERRIDE_ALIASES.get(key, key)
            if name in names:
                changes[name] = value
            else:
                extra[key] = value

        return replace(self, external=external, extra=extra, **changes)


class Bundler(Protocol):
    async def bundle(self, options: BundleOptions) -> BundleOutput:
        """Bundle `options.entry_points` into `options.outfile`.

        Raises:
            BundleError: The bundler reported one or more errors.
        """
        ...
