"""Shared test doubles for model clients, analyzers and observers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from editstream.ai.client import StreamDelta
from editstream.protocol.problems import Problem, ProblemReport


def text(value: str) -> StreamDelta:
    return StreamDelta.of_text(value)


def reasoning(value: str) -> StreamDelta:
    return StreamDelta.of_reasoning(value)


async def deltas(items: Iterable[StreamDelta]):
    for item in items:
        yield item


class ScriptedModelClient:
    """Model client returning one scripted delta sequence per call.

    A script entry may be an exception instance, which is raised after the
    deltas before it have been yielded. ``before_delta`` runs ahead of every
    yielded delta, which lets tests cancel mid-stream.
    """

    def __init__(
        self,
        responses: Sequence[Sequence[StreamDelta | BaseException]] | None = None,
        *,
        before_delta: Callable[[int, int], None] | None = None,
    ) -> None:
        self.responses = [list(response) for response in responses or ()]
        self.calls: list[dict[str, Any]] = []
        self._before_delta = before_delta

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def stream_chat(self, messages: Sequence[Mapping[str, Any]], *, cancel_token=None, **kwargs: Any):
        call_index = len(self.calls)
        self.calls.append({"messages": [dict(message) for message in messages], "cancel_token": cancel_token, **kwargs})
        script = self.responses[call_index] if call_index < len(self.responses) else []
        for position, item in enumerate(script):
            if isinstance(item, BaseException):
                raise item
            if self._before_delta is not None:
                self._before_delta(call_index, position)
            await asyncio.sleep(0)
            yield item


class ScriptedAnalyzer:
    """Analyzer returning queued reports; an exception entry is raised."""

    def __init__(self, reports: Sequence[ProblemReport | BaseException]) -> None:
        self._reports = list(reports)
        self.transcripts: list[str] = []

    async def generate_problem_report(self, transcript: str, app_root: Path) -> ProblemReport:
        self.transcripts.append(transcript)
        if not self._reports:
            return ProblemReport()
        item = self._reports.pop(0) if len(self._reports) > 1 else self._reports[0]
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    def transcripts(self) -> list[str]:
        return [event.transcript for event in self.events if event.type == "chunk"]

    def of_type(self, event_type: str) -> list[Any]:
        return [event for event in self.events if event.type == event_type]


def make_report(count: int, file: str = "src/app.py") -> ProblemReport:
    return ProblemReport.from_problems(
        Problem(file=file, line=index + 1, column=1, code="syntax-error", message=f"problem {index + 1}")
        for index in range(count)
    )
