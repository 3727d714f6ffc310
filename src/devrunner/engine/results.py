"""Build results returned to the handler registry."""

from dataclasses import dataclass, field
from typing import Literal

from rich.markup import escape

from devrunner.engine.bundler.base import Diagnostic, RebuildHandle


@dataclass(frozen=True)
class BuildSuccess:
    """A successful build.

    `handler` addresses the built function relative to the output directory,
    using the handler's original export suffix (e.g. `src/api.handler`).
    """

    handler: str
    input_files: frozenset[str] = frozenset()
    rebuild: RebuildHandle | None = field(default=None, compare=False, repr=False)
    type: Literal["success"] = field(default="success", init=False)


@dataclass(frozen=True)
class BuildFailure:
    """A failed build with display-ready error lines."""

    errors: list[str]
    type: Literal["error"] = field(default="error", init=False)

    @classmethod
    def from_diagnostics(cls, diagnostics: list[Diagnostic]) -> "BuildFailure":
        return cls(errors=format_diagnostics(diagnostics))

    @classmethod
    def from_message(cls, message: str) -> "BuildFailure":
        return cls.from_diagnostics([Diagnostic(text=message)])


BuildResult = BuildSuccess | BuildFailure


def format_diagnostics(diagnostics: list[Diagnostic]) -> list[str]:
    """
    Render diagnostics as rich markup lines, three per diagnostic.

    Each diagnostic becomes `[bold text, file or "", dim "<line> │ <source>"]`,
    flattened in the order the bundler reported them.
    """
    lines: list[str] = []
    for diagnostic in diagnostics:
        context = ""
        if diagnostic.line is not None:
            context = f"[dim]{diagnostic.line} │ {escape(diagnostic.line_text or '')}[/dim]"
        lines += [
            f"[bold]{escape(diagnostic.text)}[/bold]",
            diagnostic.file or "",
            context,
        ]
    return lines
