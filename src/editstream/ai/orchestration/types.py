"""Core type definitions for the episode pipeline.

Stage outcomes are frozen so they can be handed between stages and to
callers without copying. The transcript itself lives on the running episode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Hashable, Mapping, Protocol, Sequence, runtime_checkable

from ...protocol.problems import ProblemReport
from ...protocol.tags import ResponseEdits
from ..client import StreamDelta

__all__ = [
    "ChatMessage",
    "ModelClient",
    "UpdateHook",
    "EpisodeState",
    "EpisodeStatus",
    "StreamResult",
    "ContinuationOutcome",
    "AutoFixOutcome",
    "EpisodeResult",
]

ChatMessage = Mapping[str, Any]

# Receives the transcript after each applied delta and returns the value to
# keep; may rewrite it (placeholder substitution). Sync or async.
UpdateHook = Callable[[str], "Awaitable[str] | str"]


@runtime_checkable
class ModelClient(Protocol):
    """Anything that streams text/reasoning deltas for a message list.

    :class:`~editstream.ai.client.AIClient` conforms to this protocol.
    """

    def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        *,
        cancel_token: Any | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamDelta]:
        ...


class EpisodeState(str, Enum):
    STARTED = "started"
    STREAMING = "streaming"
    CANCELLED = "cancelled"
    STRUCTURALLY_COMPLETE = "structurally_complete"
    CONTINUATION_PENDING = "continuation_pending"
    AUTO_FIX_PENDING = "auto_fix_pending"
    FINALIZED = "finalized"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (EpisodeState.CANCELLED, EpisodeState.FINALIZED, EpisodeState.FAILED)


class EpisodeStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class StreamResult:
    transcript: str
    incremental: str
    cancelled: bool = False
    deltas: int = 0


@dataclass(slots=True, frozen=True)
class ContinuationOutcome:
    transcript: str
    attempts: int
    still_unclosed: bool = False
    cancelled: bool = False


@dataclass(slots=True, frozen=True)
class AutoFixOutcome:
    """Result of the auto-fix loop.

    ``last_report`` is the most recent analyzer output (``None`` if the
    analyzer never ran); ``error`` is set when the loop aborted early.
    """

    transcript: str
    attempts: int
    last_report: ProblemReport | None = None
    error: str | None = None
    cancelled: bool = False
    skipped_reason: str | None = None

    @property
    def resolved(self) -> bool:
        return self.last_report is not None and not self.last_report.problems


@dataclass(slots=True)
class EpisodeResult:
    """What the caller stores and commits for one episode."""

    conversation_id: Hashable
    status: EpisodeStatus
    content: str
    edits: ResponseEdits | None = None
    continuation_attempts: int = 0
    auto_fix_attempts: int = 0
    problem_report: ProblemReport | None = None
    error: str | None = None
    states: tuple[EpisodeState, ...] = field(default_factory=tuple)

    @property
    def cancelled(self) -> bool:
        return self.status is EpisodeStatus.CANCELLED

    @property
    def succeeded(self) -> bool:
        return self.status is EpisodeStatus.COMPLETED
