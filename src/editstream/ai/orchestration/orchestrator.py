"""Episode orchestrator: wires streaming, cancellation, continuation and auto-fix.

One :class:`EditStreamOrchestrator` is created per process and owns the
shared per-conversation state (cancellation registry, partial transcripts,
checkpoint queues). ``aclose`` tears that state down again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Hashable, Sequence

from ...analysis.analyzer import ProblemAnalyzer
from ...errors import ModelClientError, format_model_error
from ...protocol.problems import ProblemReport
from ...protocol.tags import extract_edit_records, has_unclosed_write
from ...services import telemetry
from ...workspace.codebase import CodebaseContextProvider
from ...workspace.overlay import FileSystemReader
from .auto_fix import AutoFixLoop
from .cancellation import CancellationRegistry, CancellationToken, PartialResponseStore, with_cancellation_notice
from .checkpoints import CheckpointObserver, CheckpointPublisher
from .continuation import ContinuationController
from .message_builder import MessageBuilder
from .runtime_config import EpisodeConfig
from .stream_processor import apply_update_hook, process_stream_chunks
from .types import ChatMessage, EpisodeResult, EpisodeState, EpisodeStatus, ModelClient, UpdateHook

__all__ = ["EditStreamOrchestrator", "EpisodeRun"]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Episode state
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class EpisodeRun:
    """Mutable state owned by one running episode."""

    conversation_id: Hashable
    token: CancellationToken
    transcript: str = ""
    state: EpisodeState = EpisodeState.STARTED
    history: list[EpisodeState] = field(default_factory=lambda: [EpisodeState.STARTED])
    continuation_attempts: int = 0
    auto_fix_attempts: int = 0
    problem_report: ProblemReport | None = None
    started_at: float = field(default_factory=time.perf_counter)

    def transition(self, state: EpisodeState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"Episode {self.conversation_id} already ended in {self.state.value}")
        LOGGER.debug("Episode %s: %s -> %s", self.conversation_id, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000.0


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class EditStreamOrchestrator:
    """Runs episodes for many conversations concurrently.

    Example::

        orchestrator = EditStreamOrchestrator(client, analyzer=PythonSyntaxAnalyzer(), observer=push_to_ui)
        result = await orchestrator.run_episode("chat-1", messages, app_root=project)
        ...
        await orchestrator.aclose()
    """

    def __init__(
        self,
        client: ModelClient,
        *,
        config: EpisodeConfig | None = None,
        analyzer: ProblemAnalyzer | None = None,
        codebase_provider: CodebaseContextProvider | None = None,
        reader: FileSystemReader | None = None,
        observer: CheckpointObserver | None = None,
        registry: CancellationRegistry | None = None,
        partials: PartialResponseStore | None = None,
    ) -> None:
        self._client = client
        self._config = config or EpisodeConfig()
        self._analyzer = analyzer
        self._codebase_provider = codebase_provider
        self._reader = reader
        self._registry = registry or CancellationRegistry()
        self._partials = partials or PartialResponseStore()
        self._publisher = CheckpointPublisher(observer)
        self._closed = False

    @property
    def config(self) -> EpisodeConfig:
        return self._config

    @property
    def registry(self) -> CancellationRegistry:
        return self._registry

    @property
    def partials(self) -> PartialResponseStore:
        return self._partials

    @property
    def publisher(self) -> CheckpointPublisher:
        return self._publisher

    def set_config(self, config: EpisodeConfig) -> None:
        self._config = config

    def message_builder(self, config: EpisodeConfig | None = None) -> MessageBuilder:
        active = config or self._config
        return MessageBuilder(max_chat_turns_in_context=active.max_chat_turns_in_context)

    def prepare_messages(
        self,
        history: Sequence[ChatMessage],
        *,
        codebase: str | None = None,
        system_prompt: str | None = None,
        config: EpisodeConfig | None = None,
    ) -> list[dict[str, Any]]:
        active = config or self._config
        return self.message_builder(active).build_messages(
            history,
            codebase=codebase,
            system_prompt=system_prompt,
            chat_mode=active.chat_mode,
        )

    def cancel(self, conversation_id: Hashable) -> bool:
        """Cancel the live episode for ``conversation_id``, if there is one."""

        return self._registry.cancel(conversation_id)

    async def aclose(self) -> None:
        """Cancel live episodes and drain pending checkpoints."""

        if self._closed:
            return
        self._closed = True
        cancelled = self._registry.cancel_all()
        if cancelled:
            LOGGER.info("Cancelled %d live episode(s) during shutdown", cancelled)
        await self._publisher.aclose()
        self._partials.clear()

    # ------------------------------------------------------------------
    # Episodes
    # ------------------------------------------------------------------
    async def run_episode(
        self,
        conversation_id: Hashable,
        messages: Sequence[ChatMessage],
        *,
        app_root: Path | str | None = None,
        config: EpisodeConfig | None = None,
        on_update: UpdateHook | None = None,
    ) -> EpisodeResult:
        """Drive one episode to a terminal state and return what to store.

        Any failure of the model stages is reported to the observer once and
        returned as a ``FAILED`` result rather than raised.
        """

        if self._closed:
            raise RuntimeError("Orchestrator is closed")
        active = config or self._config
        token = self._registry.register(conversation_id)
        run = EpisodeRun(conversation_id=conversation_id, token=token)
        self._publisher.forget(conversation_id)
        telemetry.emit(
            telemetry.EPISODE_STARTED,
            {"conversation_id": conversation_id, "chat_mode": active.chat_mode.value},
        )

        async def checkpoint(transcript: str) -> str:
            transcript = await apply_update_hook(on_update, transcript)
            self._partials.set(conversation_id, transcript)
            self._publisher.publish(conversation_id, transcript)
            return transcript

        try:
            run.transition(EpisodeState.STREAMING)
            result = await process_stream_chunks(
                self._client.stream_chat(list(messages), cancel_token=token),
                run.transcript,
                on_update=checkpoint,
                cancel_token=token,
                conversation_id=conversation_id,
            )
            run.transcript = result.transcript
            if result.cancelled or token.cancelled:
                return self._finish_cancelled(run)
            run.transition(EpisodeState.STRUCTURALLY_COMPLETE)

            if active.allows_edits and has_unclosed_write(run.transcript):
                await self._continue(run, messages, active, checkpoint)
                if token.cancelled:
                    return self._finish_cancelled(run)

            if self._should_auto_fix(active, app_root):
                await self._auto_fix(run, messages, active, checkpoint, self._analyzer, Path(app_root))
                if token.cancelled:
                    return self._finish_cancelled(run)

            return self._finish_completed(run)
        except Exception as exc:
            if token.cancelled:
                return self._finish_cancelled(run)
            error = exc if isinstance(exc, ModelClientError) else ModelClientError(format_model_error(exc), cause=exc)
            return self._finish_failed(run, error)
        finally:
            self._registry.release(conversation_id, token)
            self._partials.pop(conversation_id)

    async def _continue(
        self,
        run: EpisodeRun,
        messages: Sequence[ChatMessage],
        config: EpisodeConfig,
        checkpoint: UpdateHook,
    ) -> None:
        run.transition(EpisodeState.CONTINUATION_PENDING)
        controller = ContinuationController(self._client, max_attempts=config.max_continuation_attempts)
        outcome = await controller.run(
            messages,
            run.transcript,
            cancel_token=run.token,
            on_update=checkpoint,
            conversation_id=run.conversation_id,
        )
        run.transcript = outcome.transcript
        run.continuation_attempts = outcome.attempts
        telemetry.emit(
            telemetry.EPISODE_CONTINUATION,
            {
                "conversation_id": run.conversation_id,
                "attempts": outcome.attempts,
                "still_unclosed": outcome.still_unclosed,
            },
        )
        if not outcome.cancelled:
            run.transition(EpisodeState.STRUCTURALLY_COMPLETE)

    def _should_auto_fix(self, config: EpisodeConfig, app_root: Path | str | None) -> bool:
        if not (config.allows_edits and config.enable_auto_fix) or config.max_auto_fix_attempts == 0:
            return False
        if self._analyzer is None or app_root is None:
            LOGGER.debug("Auto-fix enabled but no analyzer or app root was provided")
            return False
        return True

    async def _auto_fix(
        self,
        run: EpisodeRun,
        messages: Sequence[ChatMessage],
        config: EpisodeConfig,
        checkpoint: UpdateHook,
        analyzer: ProblemAnalyzer,
        app_root: Path,
    ) -> None:
        run.transition(EpisodeState.AUTO_FIX_PENDING)
        loop = AutoFixLoop(
            self._client,
            analyzer,
            codebase_provider=self._codebase_provider,
            reader=self._reader,
            max_attempts=config.max_auto_fix_attempts,
        )
        outcome = await loop.run(
            messages,
            run.transcript,
            app_root=app_root,
            cancel_token=run.token,
            on_update=checkpoint,
            conversation_id=run.conversation_id,
        )
        run.transcript = outcome.transcript
        run.auto_fix_attempts = outcome.attempts
        run.problem_report = outcome.last_report
        telemetry.emit(
            telemetry.EPISODE_AUTO_FIX,
            {
                "conversation_id": run.conversation_id,
                "attempts": outcome.attempts,
                "remaining_problems": outcome.last_report.count if outcome.last_report else None,
                "skipped": outcome.skipped_reason,
                "error": outcome.error,
            },
        )
        if not outcome.cancelled:
            run.transition(EpisodeState.STRUCTURALLY_COMPLETE)

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------
    def _finish_cancelled(self, run: EpisodeRun) -> EpisodeResult:
        last_checkpoint = self._partials.get(run.conversation_id)
        content = with_cancellation_notice(run.transcript if last_checkpoint is None else last_checkpoint)
        run.transition(EpisodeState.CANCELLED)
        self._publisher.publish(run.conversation_id, content)
        self._publisher.publish_end(run.conversation_id, content)
        LOGGER.info("Episode %s cancelled after %.0f ms", run.conversation_id, run.elapsed_ms)
        telemetry.emit(telemetry.EPISODE_CANCELLED, {"conversation_id": run.conversation_id})
        return EpisodeResult(
            conversation_id=run.conversation_id,
            status=EpisodeStatus.CANCELLED,
            content=content,
            continuation_attempts=run.continuation_attempts,
            auto_fix_attempts=run.auto_fix_attempts,
            states=tuple(run.history),
        )

    def _finish_failed(self, run: EpisodeRun, error: ModelClientError) -> EpisodeResult:
        last_checkpoint = self._partials.get(run.conversation_id)
        content = run.transcript if last_checkpoint is None else last_checkpoint
        message = error.user_message()
        run.transition(EpisodeState.FAILED)
        LOGGER.error("Episode %s failed: %s", run.conversation_id, error)
        self._publisher.publish_error(run.conversation_id, message)
        telemetry.emit(
            telemetry.EPISODE_FAILED,
            {"conversation_id": run.conversation_id, "error": str(error), "request_id": error.request_id},
        )
        return EpisodeResult(
            conversation_id=run.conversation_id,
            status=EpisodeStatus.FAILED,
            content=content,
            continuation_attempts=run.continuation_attempts,
            auto_fix_attempts=run.auto_fix_attempts,
            error=message,
            states=tuple(run.history),
        )

    def _finish_completed(self, run: EpisodeRun) -> EpisodeResult:
        run.transition(EpisodeState.FINALIZED)
        edits = extract_edit_records(run.transcript)
        self._publisher.publish(run.conversation_id, run.transcript)
        self._publisher.publish_end(run.conversation_id, run.transcript)
        LOGGER.info(
            "Episode %s finalized in %.0f ms (%d write(s), %d continuation, %d auto-fix)",
            run.conversation_id,
            run.elapsed_ms,
            len(edits.writes),
            run.continuation_attempts,
            run.auto_fix_attempts,
        )
        telemetry.emit(
            telemetry.EPISODE_FINISHED,
            {
                "conversation_id": run.conversation_id,
                "writes": len(edits.writes),
                "continuation_attempts": run.continuation_attempts,
                "auto_fix_attempts": run.auto_fix_attempts,
                "unclosed_write": edits.unclosed_write,
            },
        )
        return EpisodeResult(
            conversation_id=run.conversation_id,
            status=EpisodeStatus.COMPLETED,
            content=run.transcript,
            edits=edits,
            continuation_attempts=run.continuation_attempts,
            auto_fix_attempts=run.auto_fix_attempts,
            problem_report=run.problem_report,
            states=tuple(run.history),
        )

