"""Problem reports: analyzer output and its embedding in the transcript."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .tags import TAG_PROBLEM, TAG_PROBLEM_REPORT, parse_attributes

__all__ = [
    "Problem",
    "ProblemReport",
    "escape_xml",
    "render_problem_report",
    "parse_problem_reports",
    "create_problem_fix_prompt",
]

_REPORT_RE = re.compile(
    rf"<{re.escape(TAG_PROBLEM_REPORT)}(?![\w-])(?P<attrs>[^>]*)>(?P<body>.*?)</{re.escape(TAG_PROBLEM_REPORT)}\s*>",
    re.IGNORECASE | re.DOTALL,
)
_PROBLEM_RE = re.compile(
    rf"<{re.escape(TAG_PROBLEM)}(?![\w-])(?P<attrs>[^>]*)>(?P<body>.*?)</{re.escape(TAG_PROBLEM)}\s*>",
    re.IGNORECASE | re.DOTALL,
)


@dataclass(slots=True, frozen=True)
class Problem:
    """A single diagnostic produced by the analyzer."""

    file: str
    line: int
    column: int
    code: str | int
    message: str

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Problem:
        return cls(
            file=str(payload.get("file", "")),
            line=_coerce_int(payload.get("line")),
            column=_coerce_int(payload.get("column")),
            code=payload.get("code", ""),
            message=str(payload.get("message", "")),
        )

    def location(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(slots=True, frozen=True)
class ProblemReport:
    """Ordered problems for one hypothetical file state. Never persisted."""

    problems: tuple[Problem, ...] = field(default_factory=tuple)

    @classmethod
    def from_problems(cls, problems: Iterable[Problem]) -> ProblemReport:
        return cls(problems=tuple(problems))

    @property
    def count(self) -> int:
        return len(self.problems)

    def __bool__(self) -> bool:
        return bool(self.problems)

    def summary(self) -> str:
        noun = "problem" if self.count == 1 else "problems"
        return f"{self.count} {noun}"


def escape_xml(unsafe: str) -> str:
    return (
        str(unsafe)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def render_problem_report(report: ProblemReport) -> str:
    """Render the block appended to the transcript before a fix attempt."""

    entries = "\n".join(
        f'<{TAG_PROBLEM} file="{escape_xml(problem.file)}" line="{problem.line}" '
        f'column="{problem.column}" code="{escape_xml(str(problem.code))}">{escape_xml(problem.message)}</{TAG_PROBLEM}>'
        for problem in report.problems
    )
    return f'<{TAG_PROBLEM_REPORT} summary="{report.count} problems">\n{entries}\n</{TAG_PROBLEM_REPORT}>'


def parse_problem_reports(transcript: str) -> list[ProblemReport]:
    """Recover every embedded problem-report block from ``transcript``."""

    reports: list[ProblemReport] = []
    for block in _REPORT_RE.finditer(transcript or ""):
        problems = []
        for entry in _PROBLEM_RE.finditer(block.group("body")):
            attrs = {key: html.unescape(value) for key, value in parse_attributes(entry.group("attrs")).items()}
            attrs["message"] = html.unescape(entry.group("body"))
            problems.append(Problem.from_mapping(attrs))
        reports.append(ProblemReport.from_problems(problems))
    return reports


def create_problem_fix_prompt(report: ProblemReport) -> str:
    """Build the user turn asking the model to fix ``report``."""

    if not report.problems:
        return "No problems detected."
    lines = [f"Fix these {report.count} compile-time errors:", ""]
    for index, problem in enumerate(report.problems, start=1):
        lines.append(f"{index}. {problem.location()} - {problem.message} ({problem.code})")
    lines.append("")
    lines.append("Please fix all errors in a concise way.")
    return "\n".join(lines)


def _coerce_int(value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
