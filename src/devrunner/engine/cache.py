"""Per-function build cache.

Holds the latest successful build of every function seen in this dev session
and answers whether a changed file can affect it.
"""

import logging
import os
from pathlib import Path, PurePath

from devrunner.engine.results import BuildSuccess

logger = logging.getLogger(__name__)


def normalize_input_path(root: Path, file: str | PurePath) -> str:
    """Express `file` the way the bundler metafile records inputs.

    Inputs are keyed relative to the project root with POSIX separators.
    Relative paths are taken to be relative to the project root.
    """
    absolute = os.path.abspath(os.path.join(root, str(file)))
    return Path(os.path.relpath(absolute, os.path.abspath(root))).as_posix()


class BuildCache:
    """
    Latest successful build per function id.

    Entries are replaced, never merged, so the recorded input files are always
    exactly the files read by the most recent successful build.

    Example:
        cache = BuildCache(project_root)
        cache.store("fn-api", result)
        cache.should_build("fn-api", "src/lib/util.ts")
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._entries: dict[str, BuildSuccess] = {}

    def __contains__(self, function_id: object) -> bool:
        return function_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, function_id: str) -> BuildSuccess | None:
        return self._entries.get(function_id)

    def store(self, function_id: str, result: BuildSuccess) -> None:
        self._entries[function_id] = result
        logger.debug(
            f"Cached build for {function_id} ({len(result.input_files)} inputs)"
        )

    def discard(self, function_id: str) -> None:
        self._entries.pop(function_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def should_build(self, function_id: str, file: str | PurePath) -> bool:
        """Return True if `file` was an input of the cached build for `function_id`.

        Functions without a cached build return False; the caller decides
        whether an unbuilt function needs a first build.
        """
        result = self._entries.get(function_id)
        if result is None:
            return False
        return normalize_input_path(self._root, file) in result.input_files
