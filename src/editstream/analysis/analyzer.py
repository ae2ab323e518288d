"""Problem analyzers run against the hypothetical post-edit file state."""

from __future__ import annotations

import ast
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..protocol.problems import Problem, ProblemReport
from ..workspace.overlay import FileSystemReader, OverlayFileSystem

__all__ = ["ProblemAnalyzer", "PythonSyntaxAnalyzer"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ProblemAnalyzer(Protocol):
    """Produces a problem report for the files a transcript would write.

    Implementations may be slow (a full type-check) and are always awaited.
    """

    async def generate_problem_report(self, transcript: str, app_root: Path) -> ProblemReport:
        ...


class PythonSyntaxAnalyzer:
    """Parses every Python file the transcript touches, as the overlay sees it."""

    code = "syntax-error"

    def __init__(self, *, reader: FileSystemReader | None = None, suffixes: tuple[str, ...] = (".py", ".pyi")) -> None:
        self._reader = reader
        self._suffixes = suffixes

    async def generate_problem_report(self, transcript: str, app_root: Path) -> ProblemReport:
        overlay = OverlayFileSystem(app_root, self._reader)
        overlay.apply_response_changes(transcript)
        problems: list[Problem] = []
        for relative in overlay.changed_paths():
            if not relative.endswith(self._suffixes):
                continue
            source = await overlay.read_file(relative)
            problem = self._check(relative, source)
            if problem is not None:
                problems.append(problem)
        LOGGER.debug("Python syntax analysis found %d problem(s)", len(problems))
        return ProblemReport.from_problems(problems)

    def _check(self, relative: str, source: str) -> Problem | None:
        try:
            ast.parse(source, filename=relative)
        except SyntaxError as exc:
            return Problem(
                file=relative,
                line=exc.lineno or 0,
                column=exc.offset or 0,
                code=self.code,
                message=exc.msg or "invalid syntax",
            )
        except ValueError as exc:
            # Source containing null bytes.
            return Problem(file=relative, line=0, column=0, code=self.code, message=str(exc))
        return None
