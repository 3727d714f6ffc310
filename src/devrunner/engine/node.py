"""Node.js function builder.

Resolves a handler reference to a source file, bundles it with the configured
bundler and records the result in the build cache.

Output layout:
    <out>/<source dir relative to root>/<name>.mjs   (esm, default)
    <out>/<source dir relative to root>/<name>.cjs   (cjs)

Sources outside the project root are written directly under <out>. A relative
<out> is taken relative to the project root.
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path, PurePath

from devrunner.contracts import BuildInput, BuildMode
from devrunner.engine.bundler.base import Bundler, BundleError, BundleOptions
from devrunner.engine.cache import BuildCache
from devrunner.engine.installer import PackageManager, install_for_deploy, link_for_local
from devrunner.engine.results import BuildFailure, BuildResult, BuildSuccess
from devrunner.errors import (
    HandlerNotFoundError,
    InvalidManifestError,
    ManifestNotFoundError,
    PackageManagerError,
)

logger = logging.getLogger(__name__)

# Lookup order for handler source files: typed sources first
HANDLER_EXTENSIONS = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs")

ESM_EXTENSION = ".mjs"
CJS_EXTENSION = ".cjs"

# Excluded from cjs bundles unless the runtime is exempt
SDK_PACKAGE = "aws-sdk"

# Keeps `require` usable inside esm output for dependencies that expect it
ESM_REQUIRE_SHIM = (
    "import { createRequire as topLevelCreateRequire } from 'module';",
    "const require = topLevelCreateRequire(import.meta.url);",
)


def resolve_handler_file(root: Path, handler: str) -> Path:
    """
    Find the source file behind a handler reference.

    `src/api.handler` tries `src/api.ts`, `src/api.tsx`, ... `src/api.cjs`
    relative to `root` and returns the first that exists, relative to `root`
    when the handler was relative.

    Raises:
        HandlerNotFoundError: None of the candidates exist.
    """
    parsed = PurePath(handler)
    for extension in HANDLER_EXTENSIONS:
        candidate = parsed.parent / f"{parsed.stem}{extension}"
        if (root / candidate).is_file():
            return Path(candidate)
    raise HandlerNotFoundError(handler)


def resolve_output_dir(root: Path, out: Path) -> Path:
    """Anchor a relative output directory at the project root, where the bundler runs."""
    return out if out.is_absolute() else root / out


def relative_source_dir(root: Path, source_dir: PurePath) -> Path:
    """Source directory relative to `root`, or empty if it lies outside `root`."""
    relative = os.path.relpath(
        os.path.abspath(os.path.join(root, source_dir)), os.path.abspath(root)
    )
    if relative.startswith("..") or os.path.isabs(relative):
        return Path()
    return Path(relative)


class NodeBuilder:
    """
    Builds Node.js functions and keeps the build cache current.

    Example:
        builder = NodeBuilder(root, cache, EsbuildBundler(root), NpmPackageManager())
        result = await builder.build(build_input)
    """

    def __init__(
        self,
        root: Path,
        cache: BuildCache,
        bundler: Bundler,
        package_manager: PackageManager,
        *,
        sdk_exempt_runtimes: Iterable[str] = ("nodejs18.x",),
    ) -> None:
        self._root = root
        self._cache = cache
        self._bundler = bundler
        self._package_manager = package_manager
        self._sdk_exempt_runtimes = frozenset(sdk_exempt_runtimes)

    def output_paths(self, input: BuildInput) -> tuple[Path, str]:
        """Return the artifact path and the handler reference callers should use."""
        parsed = PurePath(input.props.handler)
        extension = ESM_EXTENSION if input.props.nodejs.format == "esm" else CJS_EXTENSION
        out = resolve_output_dir(self._root, input.out)
        directory = out / relative_source_dir(self._root, parsed.parent)
        target = directory / f"{parsed.stem}{extension}"
        handler = (directory / f"{parsed.stem}{parsed.suffix}").relative_to(out)
        return target, handler.as_posix()

    def bundle_options(self, input: BuildInput, *, entry: Path, target: Path) -> BundleOptions:
        """Compute bundler options for a build, then apply the function's overrides."""
        props = input.props
        nodejs = props.nodejs
        is_esm = nodejs.format == "esm"

        external: list[str] = []
        if not is_esm and props.runtime not in self._sdk_exempt_runtimes:
            external.append(SDK_PACKAGE)
        external += nodejs.install

        common = dict(
            entry_points=[entry.as_posix()],
            outfile=target,
            platform="node",
            external=external,
            sourcemap="linked" if input.mode == BuildMode.START else nodejs.sourcemap,
            minify=nodejs.minify,
            keep_names=True,
            bundle=True,
            metafile=True,
        )
        if is_esm:
            options = BundleOptions(
                **common,
                format="esm",
                target="esnext",
                main_fields=["module", "main"],
                banner_js="\n".join([*ESM_REQUIRE_SHIM, nodejs.banner or ""]),
            )
        else:
            options = BundleOptions(
                **common,
                format="cjs",
                target="node14",
                banner_js=nodejs.banner or None,
            )
        return options.apply_overrides(nodejs.esbuild)

    async def build(self, input: BuildInput) -> BuildResult:
        """
        Build one function.

        Reuses the cached rebuild handle when one exists. Bundler, manifest and
        package manager failures are returned as BuildFailure.

        Raises:
            HandlerNotFoundError: The handler reference matches no source file.
        """
        entry = resolve_handler_file(self._root, input.props.handler)
        target, handler = self.output_paths(input)

        existing = self._cache.get(input.function_id)
        if existing is not None and existing.rebuild is not None:
            logger.debug(f"Rebuilding {input.function_id} incrementally")
            try:
                output = await existing.rebuild()
            except BundleError as e:
                return BuildFailure.from_diagnostics(e.diagnostics)
            result = BuildSuccess(
                handler=handler, input_files=output.inputs, rebuild=output.rebuild
            )
            self._cache.store(input.function_id, result)
            return result

        try:
            options = self.bundle_options(input, entry=entry, target=target)
        except ValueError as e:
            logger.debug(f"Invalid bundler options for {input.function_id}: {e}")
            return BuildFailure.from_message(f"Invalid esbuild options: {e}")

        try:
            output = await self._bundler.bundle(options)
            if options.external:
                await self._materialize_dependencies(input, entry)
        except BundleError as e:
            logger.debug(f"Build failed for {input.function_id}: {e}")
            return BuildFailure.from_diagnostics(e.diagnostics)
        except (InvalidManifestError, ManifestNotFoundError, PackageManagerError) as e:
            logger.debug(f"Dependency install failed for {input.function_id}: {e}")
            return BuildFailure.from_message(str(e))

        result = BuildSuccess(
            handler=handler, input_files=output.inputs, rebuild=output.rebuild
        )
        self._cache.store(input.function_id, result)
        return result

    async def _materialize_dependencies(self, input: BuildInput, entry: Path) -> None:
        source_dir = self._root / entry.parent
        out = resolve_output_dir(self._root, input.out)
        install = input.props.nodejs.install
        if input.mode == BuildMode.DEPLOY and install:
            await install_for_deploy(source_dir, install, out, self._package_manager)
        if input.mode == BuildMode.START:
            await link_for_local(source_dir, out)
