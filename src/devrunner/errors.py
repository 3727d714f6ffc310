"""Error types raised by the devrunner engine."""

from __future__ import annotations


class DevRunnerError(Exception):
    """Base class for errors with a message meant to be shown to the user."""


class HandlerNotFoundError(DevRunnerError):
    """No source file exists for a handler reference."""

    def __init__(self, handler: str) -> None:
        self.handler = handler
        super().__init__(f'Cannot find a handler file for "{handler}"')


class ManifestNotFoundError(DevRunnerError):
    """No package.json exists in the directory or any of its ancestors."""

    def __init__(self, start: str) -> None:
        self.start = start
        super().__init__(f"Could not find a package.json file above {start}")


class PackageManagerError(DevRunnerError):
    """The package manager exited with a non-zero status."""

    def __init__(self, command: list[str], exit_code: int, output: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        message = f"`{' '.join(command)}` failed with exit code {exit_code}"
        if output:
            message += f": {output}"
        super().__init__(message)


class InvalidManifestError(DevRunnerError):
    """A package.json exists but cannot be used."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid package.json at {path}: {reason}")
