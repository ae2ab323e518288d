"""Bounded self-correction: analyze the hypothetical edit state, ask for fixes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Hashable, Sequence

from ...analysis.analyzer import ProblemAnalyzer
from ...errors import AutoFixError
from ...protocol.problems import ProblemReport, create_problem_fix_prompt, render_problem_report
from ...protocol.sanitizer import clean_full_response, remove_non_essential_tags
from ...protocol.tags import get_add_dependency_tags
from ...workspace.codebase import CodebaseContextProvider
from ...workspace.overlay import FileSystemReader, OverlayFileSystem
from .cancellation import CancellationToken
from .message_builder import refresh_codebase_message
from .runtime_config import DEFAULT_MAX_AUTO_FIX_ATTEMPTS
from .stream_processor import apply_update_hook, process_stream_chunks
from .types import AutoFixOutcome, ChatMessage, ModelClient, UpdateHook

__all__ = ["AutoFixLoop"]

LOGGER = logging.getLogger(__name__)


class AutoFixLoop:
    """Feeds analyzer problems back to the model until clean or out of attempts.

    Every iteration rebuilds an overlay from the whole transcript, so fixes
    written by earlier iterations shadow the original writes. Failures of the
    analyzer, the overlay or the model end the loop quietly; the transcript
    keeps everything that was already checkpointed.
    """

    def __init__(
        self,
        client: ModelClient,
        analyzer: ProblemAnalyzer,
        *,
        codebase_provider: CodebaseContextProvider | None = None,
        reader: FileSystemReader | None = None,
        max_attempts: int = DEFAULT_MAX_AUTO_FIX_ATTEMPTS,
    ) -> None:
        if max_attempts < 0:
            raise ValueError("max_attempts must be non-negative")
        self._client = client
        self._analyzer = analyzer
        self._codebase_provider = codebase_provider
        self._reader = reader
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def run(
        self,
        history: Sequence[ChatMessage],
        transcript: str,
        *,
        app_root: Path | str,
        cancel_token: CancellationToken | None = None,
        on_update: UpdateHook | None = None,
        conversation_id: Hashable | None = None,
    ) -> AutoFixOutcome:
        if get_add_dependency_tags(transcript):
            LOGGER.debug("Skipping auto-fix for conversation %s: response adds dependencies", conversation_id)
            return AutoFixOutcome(transcript=transcript, attempts=0, skipped_reason="dependencies")

        root = Path(app_root)
        original = remove_non_essential_tags(transcript)
        previous_attempts: list[dict[str, Any]] = []
        attempts = 0
        report: ProblemReport | None = None
        checkpointed = transcript

        async def checkpoint(value: str) -> str:
            nonlocal checkpointed
            checkpointed = await apply_update_hook(on_update, value)
            return checkpointed

        try:
            report = await self._problem_report(transcript, root)
            while report.problems and attempts < self._max_attempts:
                if cancel_token is not None and cancel_token.cancelled:
                    return AutoFixOutcome(transcript, attempts, report, cancelled=True)
                attempts += 1
                LOGGER.info(
                    "Attempting to auto-fix %s for conversation %s (attempt %d/%d)",
                    report.summary(),
                    conversation_id,
                    attempts,
                    self._max_attempts,
                )
                transcript = clean_full_response(transcript + render_problem_report(report))
                transcript = await checkpoint(transcript)

                fix_prompt = create_problem_fix_prompt(report)
                messages = [
                    *(await self._refreshed_history(history, transcript, root)),
                    {"role": "assistant", "content": original},
                    *previous_attempts,
                    {"role": "user", "content": fix_prompt},
                ]
                result = await process_stream_chunks(
                    self._client.stream_chat(messages, cancel_token=cancel_token),
                    transcript,
                    on_update=checkpoint,
                    cancel_token=cancel_token,
                    conversation_id=conversation_id,
                )
                transcript = result.transcript
                previous_attempts.append({"role": "user", "content": fix_prompt})
                previous_attempts.append({"role": "assistant", "content": remove_non_essential_tags(result.incremental)})
                if result.cancelled:
                    return AutoFixOutcome(transcript, attempts, report, cancelled=True)

                report = await self._problem_report(transcript, root)
        except AutoFixError as exc:
            LOGGER.error("Auto-fix aborted for conversation %s: %s", conversation_id, exc)
            return AutoFixOutcome(checkpointed, attempts, report, error=str(exc))
        except Exception as exc:
            # Whatever already reached the observer stays in the transcript.
            LOGGER.error("Auto-fix stream failed for conversation %s: %s", conversation_id, exc)
            return AutoFixOutcome(checkpointed, attempts, report, error=str(exc))

        if report.problems:
            LOGGER.info(
                "Auto-fix gave up with %s remaining for conversation %s",
                report.summary(),
                conversation_id,
            )
        return AutoFixOutcome(transcript, attempts, report)

    async def _problem_report(self, transcript: str, root: Path) -> ProblemReport:
        try:
            return await self._analyzer.generate_problem_report(transcript, root)
        except Exception as exc:
            raise AutoFixError(f"Problem analysis failed: {exc}") from exc

    async def _refreshed_history(self, history: Sequence[ChatMessage], transcript: str, root: Path) -> list[dict[str, Any]]:
        if self._codebase_provider is None:
            return [dict(message) for message in history]
        try:
            overlay = OverlayFileSystem(root, self._reader)
            overlay.apply_response_changes(transcript)
            codebase = await self._codebase_provider.extract_codebase(root, overlay)
        except Exception as exc:
            raise AutoFixError(f"Codebase extraction failed: {exc}") from exc
        return refresh_codebase_message(history, codebase)
