"""Resumes a response that was cut off inside a ``<write>`` tag."""

from __future__ import annotations

import logging
from typing import Hashable, Sequence

from ...protocol.tags import has_unclosed_write
from .cancellation import CancellationToken
from .runtime_config import DEFAULT_MAX_CONTINUATION_ATTEMPTS
from .stream_processor import process_stream_chunks
from .types import ChatMessage, ContinuationOutcome, ModelClient, UpdateHook

__all__ = ["ContinuationController"]

LOGGER = logging.getLogger(__name__)


class ContinuationController:
    """Re-prompts the model with its own partial output as the assistant turn.

    Each attempt prefills the transcript so far and appends only the text
    deltas of the reply; reasoning produced while continuing is discarded.
    """

    def __init__(self, client: ModelClient, *, max_attempts: int = DEFAULT_MAX_CONTINUATION_ATTEMPTS) -> None:
        if max_attempts < 0:
            raise ValueError("max_attempts must be non-negative")
        self._client = client
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def run(
        self,
        history: Sequence[ChatMessage],
        transcript: str,
        *,
        cancel_token: CancellationToken | None = None,
        on_update: UpdateHook | None = None,
        conversation_id: Hashable | None = None,
    ) -> ContinuationOutcome:
        attempts = 0
        cancelled = False
        while has_unclosed_write(transcript) and attempts < self._max_attempts:
            if cancel_token is not None and cancel_token.cancelled:
                cancelled = True
                break
            attempts += 1
            LOGGER.info(
                "Continuing unclosed write for conversation %s (attempt %d/%d)",
                conversation_id,
                attempts,
                self._max_attempts,
            )
            messages = [*history, {"role": "assistant", "content": transcript}]
            result = await process_stream_chunks(
                self._client.stream_chat(messages, cancel_token=cancel_token),
                transcript,
                on_update=on_update,
                cancel_token=cancel_token,
                conversation_id=conversation_id,
                text_only=True,
            )
            transcript = result.transcript
            if result.cancelled:
                cancelled = True
                break

        still_unclosed = has_unclosed_write(transcript)
        if still_unclosed and not cancelled:
            LOGGER.warning(
                "Write tag still unclosed after %d continuation attempt(s) for conversation %s",
                attempts,
                conversation_id,
            )
        return ContinuationOutcome(
            transcript=transcript,
            attempts=attempts,
            still_unclosed=still_unclosed,
            cancelled=cancelled,
        )
