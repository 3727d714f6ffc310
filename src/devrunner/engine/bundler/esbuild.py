"""esbuild CLI bundler.

Runs the `esbuild` executable from the project root so that metafile input
paths are recorded relative to that root, which is the representation the
build cache compares changed files against.
"""

import asyncio
import json
import logging
import re
import tempfile
from functools import partial
from pathlib import Path
from typing import Any

from devrunner.engine.bundler.base import BundleError, BundleOptions, BundleOutput, Diagnostic

logger = logging.getLogger(__name__)

_ERROR_HEADER_RE = re.compile(r"^\s*(?:✘|X)\s+\[ERROR\]\s+(?P<text>.+?)\s*$")
_ANY_HEADER_RE = re.compile(r"^\s*(?:✘|X|▲)\s+\[[A-Z]+\]")
_LOCATION_RE = re.compile(r"^\s+(?P<file>.+?):(?P<line>\d+):(?P<column>\d+):\s*$")
_SOURCE_LINE_RE = re.compile(r"^\s*(?P<line>\d+)\s+│\s?(?P<text>.*)$")

_STDERR_TAIL_CHARS = 700


def _kebab(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", key).replace("_", "-").lower()


def _extra_flags(extra: dict[str, Any]) -> list[str]:
    flags: list[str] = []
    for key, value in extra.items():
        flag = f"--{_kebab(key)}"
        if value is None or value is False:
            continue
        if value is True:
            flags.append(flag)
        elif isinstance(value, dict):
            flags.extend(f"{flag}:{k}={v}" for k, v in value.items())
        elif isinstance(value, list | tuple):
            flags.append(f"{flag}={','.join(str(v) for v in value)}")
        else:
            flags.append(f"{flag}={value}")
    return flags


def build_cli_args(options: BundleOptions, *, metafile: Path) -> list[str]:
    """Translate bundle options into esbuild command line arguments."""
    args = [*options.entry_points]
    if options.bundle:
        args.append("--bundle")
    args += [
        f"--platform={options.platform}",
        f"--format={options.format}",
        f"--target={options.target}",
        f"--outfile={options.outfile}",
        f"--metafile={metafile}",
        f"--log-level={options.log_level}",
        "--color=false",
    ]
    if options.main_fields:
        args.append(f"--main-fields={','.join(options.main_fields)}")
    args += [f"--external:{name}" for name in options.external]
    if options.banner_js:
        args.append(f"--banner:js={options.banner_js}")
    if options.sourcemap is True:
        args.append("--sourcemap")
    elif isinstance(options.sourcemap, str):
        args.append(f"--sourcemap={options.sourcemap}")
    if options.minify:
        args.append("--minify")
    if options.keep_names:
        args.append("--keep-names")
    args += _extra_flags(options.extra)
    return args


def parse_log(log: str) -> list[Diagnostic]:
    """
    Extract error diagnostics from esbuild's plain-text log, in reported order.

    Each error looks like:

        ✘ [ERROR] Could not resolve "missing"

            src/api.ts:1:17:
              1 │ import x from "missing";
                ╵                  ~~~~~~~~~

    Only the first location of an error is kept; notes are ignored.
    """
    diagnostics: list[Diagnostic] = []
    current: dict[str, Any] | None = None

    def flush() -> None:
        if current is not None:
            diagnostics.append(Diagnostic(**current))

    for raw in log.splitlines():
        header = _ERROR_HEADER_RE.match(raw)
        if header:
            flush()
            current = {"text": header.group("text")}
            continue
        if _ANY_HEADER_RE.match(raw):
            flush()
            current = None
            continue
        if current is None:
            continue
        if "file" not in current:
            location = _LOCATION_RE.match(raw)
            if location:
                current["file"] = location.group("file")
                current["line"] = int(location.group("line"))
                current["column"] = int(location.group("column"))
            continue
        if "line_text" not in current:
            source = _SOURCE_LINE_RE.match(raw)
            if source:
                current["line_text"] = source.group("text")

    flush()
    return diagnostics


def read_metafile_inputs(path: Path) -> frozenset[str]:
    """Return the input paths recorded in an esbuild metafile."""
    meta = json.loads(path.read_text(encoding="utf-8"))
    return frozenset(meta.get("inputs", {}))


class EsbuildBundler:
    """
    Bundler backed by the esbuild executable.

    Example:
        bundler = EsbuildBundler(Path("."))
        output = await bundler.bundle(options)
        output = await output.rebuild()
    """

    def __init__(
        self,
        root: Path,
        *,
        binary: str = "esbuild",
        incremental: bool = True,
    ) -> None:
        self._root = root
        self._binary = binary
        self._incremental = incremental

    async def bundle(self, options: BundleOptions) -> BundleOutput:
        with tempfile.TemporaryDirectory(prefix="devrunner-meta-") as tmp:
            metafile = Path(tmp) / "meta.json"
            args = build_cli_args(options, metafile=metafile)
            logger.debug(f"Running {self._binary} {' '.join(args)}")

            try:
                process = await asyncio.create_subprocess_exec(
                    self._binary,
                    *args,
                    cwd=str(self._root),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as exc:
                raise BundleError(
                    [Diagnostic(text=f"esbuild executable not found: {self._binary}")]
                ) from exc

            _, stderr = await process.communicate()
            if process.returncode != 0:
                log = stderr.decode("utf-8", errors="replace")
                diagnostics = parse_log(log)
                if not diagnostics:
                    tail = log.strip()[-_STDERR_TAIL_CHARS:]
                    text = f"esbuild exited with code {process.returncode}"
                    if tail:
                        text += f": {tail}"
                    diagnostics = [Diagnostic(text=text)]
                raise BundleError(diagnostics)

            inputs = read_metafile_inputs(metafile)

        logger.debug(f"Bundled {options.outfile} from {len(inputs)} inputs")
        return BundleOutput(
            outfile=options.outfile,
            inputs=inputs,
            rebuild=partial(self.bundle, options) if self._incremental else None,
        )
