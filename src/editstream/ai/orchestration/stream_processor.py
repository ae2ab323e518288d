"""Stream chunk processing: deltas in, one growing transcript out."""

from __future__ import annotations

import contextlib
import inspect
import logging
from typing import AsyncIterable, Hashable

from ...protocol.sanitizer import THINK_CLOSE, THINK_OPEN, clean_full_response, escape_protocol_tags
from ..client import StreamDelta
from .cancellation import CancellationToken
from .types import StreamResult, UpdateHook

__all__ = ["process_stream_chunks", "apply_update_hook"]

LOGGER = logging.getLogger(__name__)


async def apply_update_hook(on_update: UpdateHook | None, transcript: str) -> str:
    if on_update is None:
        return transcript
    result = on_update(transcript)
    if inspect.isawaitable(result):
        result = await result
    return transcript if result is None else str(result)


def _closing(stream: AsyncIterable[StreamDelta]) -> contextlib.AbstractAsyncContextManager:
    """Close an async generator as soon as iteration stops."""

    if hasattr(stream, "aclose"):
        return contextlib.aclosing(stream)
    return contextlib.nullcontext(stream)


async def process_stream_chunks(
    stream: AsyncIterable[StreamDelta],
    transcript: str,
    *,
    on_update: UpdateHook | None = None,
    cancel_token: CancellationToken | None = None,
    conversation_id: Hashable | None = None,
    text_only: bool = False,
) -> StreamResult:
    """Consume ``stream`` and append its deltas to ``transcript``.

    Reasoning deltas are wrapped in ``<think>`` markers (opened once per
    contiguous run) and have protocol tags escaped; text deltas are appended
    raw. After every non-empty append the transcript is cleaned, handed to
    ``on_update`` and replaced by its return value. With ``text_only`` set
    reasoning deltas are dropped entirely.

    A set ``cancel_token`` stops consumption after the delta that was just
    applied; this is a graceful stop reported via ``StreamResult.cancelled``.
    A reasoning block still open when the stream ends normally is closed.
    """

    incremental: list[str] = []
    inside_reasoning = False
    applied = 0
    cancelled = False

    async with _closing(stream) as deltas:
        async for delta in deltas:
            chunk = ""
            if delta.type == "text":
                if inside_reasoning:
                    chunk = THINK_CLOSE
                    inside_reasoning = False
                chunk += delta.text or ""
            elif delta.type == "reasoning":
                if text_only:
                    continue
                if not inside_reasoning:
                    chunk = THINK_OPEN
                    inside_reasoning = True
                chunk += escape_protocol_tags(delta.text or "")
            else:
                LOGGER.debug("Ignoring delta of unknown type %r", delta.type)
                continue

            if not chunk:
                continue

            transcript = clean_full_response(transcript + chunk)
            incremental.append(chunk)
            transcript = await apply_update_hook(on_update, transcript)
            applied += 1

            if cancel_token is not None and cancel_token.cancelled:
                LOGGER.info("Stream for conversation %s was aborted", conversation_id)
                cancelled = True
                break

    if inside_reasoning and not cancelled:
        transcript = clean_full_response(transcript + THINK_CLOSE)
        incremental.append(THINK_CLOSE)
        transcript = await apply_update_hook(on_update, transcript)

    return StreamResult(
        transcript=transcript,
        incremental="".join(incremental),
        cancelled=cancelled,
        deltas=applied,
    )
