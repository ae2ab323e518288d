"""Tests for problem-report rendering and parsing."""

from __future__ import annotations

from editstream.protocol.problems import (
    Problem,
    ProblemReport,
    create_problem_fix_prompt,
    escape_xml,
    parse_problem_reports,
    render_problem_report,
)
from editstream.protocol.sanitizer import clean_full_response


def _report() -> ProblemReport:
    return ProblemReport.from_problems(
        [
            Problem(file="src/a.py", line=3, column=5, code="syntax-error", message="expected ':'"),
            Problem(file="src/<b>.py", line=10, column=1, code=2304, message='name "x" is not <defined> & unused'),
        ]
    )


def test_render_problem_report_format() -> None:
    rendered = render_problem_report(_report())

    assert rendered.splitlines() == [
        '<problem-report summary="2 problems">',
        '<problem file="src/a.py" line="3" column="5" code="syntax-error">expected \':\'</problem>',
        '<problem file="src/&lt;b&gt;.py" line="10" column="1" code="2304">'
        "name &quot;x&quot; is not &lt;defined&gt; &amp; unused</problem>",
        "</problem-report>",
    ]


def test_parse_problem_reports_round_trips_rendered_block() -> None:
    transcript = "Before " + render_problem_report(_report()) + " after"

    [report] = parse_problem_reports(transcript)

    assert [problem.file for problem in report.problems] == ["src/a.py", "src/<b>.py"]
    assert report.problems[1].line == 10
    assert report.problems[1].message == 'name "x" is not <defined> & unused'


def test_rendered_report_survives_cleaning() -> None:
    block = render_problem_report(_report())

    assert clean_full_response(block) == block


def test_report_summary_and_truthiness() -> None:
    assert not ProblemReport()
    assert ProblemReport().summary() == "0 problems"
    assert _report().count == 2
    assert ProblemReport.from_problems([_report().problems[0]]).summary() == "1 problem"


def test_problem_from_mapping_coerces_values() -> None:
    problem = Problem.from_mapping({"file": "a.py", "line": "7", "column": None, "code": "E1", "message": "bad"})

    assert problem == Problem(file="a.py", line=7, column=0, code="E1", message="bad")
    assert problem.location() == "a.py:7:0"


def test_create_problem_fix_prompt_lists_every_problem() -> None:
    prompt = create_problem_fix_prompt(_report())

    assert prompt.startswith("Fix these 2 compile-time errors:")
    assert "1. src/a.py:3:5 - expected ':' (syntax-error)" in prompt
    assert "2. src/<b>.py:10:1" in prompt
    assert prompt.rstrip().endswith("Please fix all errors in a concise way.")


def test_escape_xml() -> None:
    assert escape_xml('<a href="x">&</a>') == "&lt;a href=&quot;x&quot;&gt;&amp;&lt;/a&gt;"
