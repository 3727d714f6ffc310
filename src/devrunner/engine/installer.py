"""Runtime dependency materialization for built functions.

Deploy packaging installs a trimmed dependency set next to the bundle; local
starts link the project's existing node_modules instead.
"""

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from devrunner.errors import InvalidManifestError, ManifestNotFoundError, PackageManagerError

logger = logging.getLogger(__name__)

MANIFEST_FILE = "package.json"
DEPENDENCY_DIR = "node_modules"
ANY_VERSION = "*"

_OUTPUT_TAIL_CHARS = 1400


def find_upward(start: Path, name: str) -> Path | None:
    """Return the nearest directory at or above `start` containing `name`."""
    current = start.resolve()
    while True:
        if (current / name).exists():
            return current
        if current.parent == current:
            return None
        current = current.parent


def read_manifest(path: Path) -> dict[str, Any]:
    """Load a package.json, rejecting documents that are not a JSON object."""
    try:
        manifest = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidManifestError(str(path), str(e)) from e
    if not isinstance(manifest, dict):
        raise InvalidManifestError(str(path), "expected a JSON object")
    if not isinstance(manifest.get("dependencies") or {}, dict):
        raise InvalidManifestError(str(path), "\"dependencies\" must be an object")
    return manifest


def trimmed_manifest(
    manifest: Mapping[str, Any], package_names: Iterable[str]
) -> dict[str, Any]:
    """Build a manifest declaring only `package_names`, keeping declared versions."""
    declared = manifest.get("dependencies") or {}
    return {
        "dependencies": {name: declared.get(name, ANY_VERSION) for name in package_names}
    }


@dataclass(frozen=True)
class InstallOutcome:
    command: list[str]
    exit_code: int
    output: str = ""


class PackageManager(Protocol):
    async def install(self, cwd: Path) -> InstallOutcome:
        """Install the dependencies declared by the manifest in `cwd`."""
        ...


class NpmPackageManager:
    """Runs `npm install` to completion in the target directory."""

    def __init__(self, binary: str = "npm", *, timeout_seconds: float = 600.0) -> None:
        self._binary = binary
        self._timeout_seconds = timeout_seconds

    async def install(self, cwd: Path) -> InstallOutcome:
        command = [self._binary, "install", "--no-audit", "--no-fund"]
        logger.debug(f"Running {' '.join(command)} in {cwd}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise PackageManagerError(command, 127, f"{self._binary} not found") from exc

        try:
            async with asyncio.timeout(self._timeout_seconds):
                stdout, stderr = await process.communicate()
        except TimeoutError:
            process.kill()
            await process.communicate()
            raise PackageManagerError(
                command, -1, f"timed out after {self._timeout_seconds}s"
            )

        output = (stderr or stdout or b"").decode("utf-8", errors="replace").strip()
        return InstallOutcome(
            command=command,
            exit_code=process.returncode or 0,
            output=output[-_OUTPUT_TAIL_CHARS:],
        )


async def install_for_deploy(
    source_dir: Path,
    package_names: Iterable[str],
    out: Path,
    package_manager: PackageManager,
) -> Path:
    """
    Write a trimmed package.json into `out` and install it.

    Versions come from the nearest package.json above `source_dir`; packages
    it does not declare are installed at any version.

    Returns:
        Path of the written manifest.

    Raises:
        ManifestNotFoundError: No package.json above `source_dir`.
        InvalidManifestError: That package.json is not a usable manifest.
        PackageManagerError: The install exited non-zero.
    """
    project_dir = find_upward(source_dir, MANIFEST_FILE)
    if project_dir is None:
        raise ManifestNotFoundError(str(source_dir))

    manifest = read_manifest(project_dir / MANIFEST_FILE)
    out.mkdir(parents=True, exist_ok=True)
    target = out / MANIFEST_FILE
    target.write_text(
        json.dumps(trimmed_manifest(manifest, package_names)), encoding="utf-8"
    )

    outcome = await package_manager.install(out)
    if outcome.exit_code != 0:
        raise PackageManagerError(outcome.command, outcome.exit_code, outcome.output)
    logger.debug(f"Installed dependencies into {out}")
    return target


async def link_for_local(source_dir: Path, out: Path) -> Path | None:
    """
    Link the project's node_modules into `out` for local execution.

    Failures are logged and ignored: a missing link surfaces as a module
    resolution error when the worker runs.

    Returns:
        The created link, or None if nothing was linked.
    """
    project_dir = find_upward(source_dir, MANIFEST_FILE)
    if project_dir is None:
        logger.debug(f"No {MANIFEST_FILE} above {source_dir}, skipping node_modules link")
        return None

    source = (project_dir / DEPENDENCY_DIR).resolve()
    link = (out / DEPENDENCY_DIR).absolute()
    try:
        out.mkdir(parents=True, exist_ok=True)
        link.symlink_to(source, target_is_directory=True)
    except OSError as e:
        logger.debug(f"Could not link {link} -> {source}: {e}")
        return None
    return link
