"""Checkpoint delivery: publishing transcript snapshots to observers.

Publishing never blocks the producer. Each conversation gets its own queue
drained by a background task, so events for one conversation arrive in the
order they were published while a slow observer only delays itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable, Literal

__all__ = [
    "CheckpointEvent",
    "CheckpointObserver",
    "CheckpointPublisher",
]

LOGGER = logging.getLogger(__name__)

EventType = Literal["chunk", "error", "end"]


@dataclass(slots=True, frozen=True)
class CheckpointEvent:
    """Payload pushed to observers.

    ``chunk`` events carry the full transcript so a re-delivered payload is
    harmless; ``error`` carries a user-visible message and ``end`` closes the
    episode.
    """

    type: EventType
    conversation_id: Hashable
    sequence: int
    transcript: str | None = None
    message: str | None = None


CheckpointObserver = Callable[[CheckpointEvent], "Awaitable[Any] | Any"]


class CheckpointPublisher:
    """Fire-and-forget, per-conversation ordered delivery to one observer.

    Consecutive ``chunk`` events with identical transcripts are dropped. When
    ``coalesce`` is enabled a backlog of chunk events collapses to the newest
    one, which keeps the observed transcripts a monotonic prefix chain.
    """

    def __init__(self, observer: CheckpointObserver | None = None, *, coalesce: bool = True) -> None:
        self._observer = observer
        self._coalesce = coalesce
        self._queues: dict[Hashable, asyncio.Queue[CheckpointEvent]] = {}
        self._drains: dict[Hashable, asyncio.Task[None]] = {}
        self._last_transcript: dict[Hashable, str] = {}
        self._sequence: dict[Hashable, int] = {}

    @property
    def observer(self) -> CheckpointObserver | None:
        return self._observer

    def publish(self, conversation_id: Hashable, transcript: str) -> bool:
        """Queue a transcript checkpoint. Returns ``False`` for a duplicate."""

        if self._last_transcript.get(conversation_id) == transcript:
            return False
        self._last_transcript[conversation_id] = transcript
        self._enqueue(conversation_id, "chunk", transcript=transcript)
        return True

    def publish_error(self, conversation_id: Hashable, message: str) -> None:
        self._enqueue(conversation_id, "error", message=message)

    def publish_end(self, conversation_id: Hashable, transcript: str | None = None) -> None:
        self._enqueue(conversation_id, "end", transcript=transcript)

    async def flush(self, conversation_id: Hashable | None = None) -> None:
        """Wait until queued events have been delivered."""

        keys = [conversation_id] if conversation_id is not None else list(self._queues)
        for key in keys:
            queue = self._queues.get(key)
            if queue is not None:
                await queue.join()

    def forget(self, conversation_id: Hashable) -> None:
        """Drop dedupe state so a new episode can republish the same text."""

        self._last_transcript.pop(conversation_id, None)

    async def aclose(self) -> None:
        await self.flush()
        drains = list(self._drains.values())
        self._drains.clear()
        self._queues.clear()
        for task in drains:
            task.cancel()
        for task in drains:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _enqueue(self, conversation_id: Hashable, event_type: EventType, **fields: Any) -> None:
        if self._observer is None:
            return
        sequence = self._sequence.get(conversation_id, 0) + 1
        self._sequence[conversation_id] = sequence
        event = CheckpointEvent(type=event_type, conversation_id=conversation_id, sequence=sequence, **fields)
        queue = self._queues.get(conversation_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[conversation_id] = queue
        queue.put_nowait(event)
        drain = self._drains.get(conversation_id)
        if drain is None or drain.done():
            self._drains[conversation_id] = asyncio.get_running_loop().create_task(self._drain(queue))

    async def _drain(self, queue: asyncio.Queue[CheckpointEvent]) -> None:
        while True:
            batch = [await queue.get()]
            while not queue.empty():
                batch.append(queue.get_nowait())
            try:
                for event in self._collapse(batch):
                    await self._deliver(event)
            finally:
                for _ in batch:
                    queue.task_done()

    def _collapse(self, batch: list[CheckpointEvent]) -> list[CheckpointEvent]:
        if not self._coalesce:
            return batch
        kept: list[CheckpointEvent] = []
        for index, event in enumerate(batch):
            following = batch[index + 1] if index + 1 < len(batch) else None
            if event.type == "chunk" and following is not None and following.type == "chunk":
                continue
            kept.append(event)
        return kept

    async def _deliver(self, event: CheckpointEvent) -> None:
        try:
            result = self._observer(event) if self._observer is not None else None
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.warning("Checkpoint observer failed for conversation %s", event.conversation_id, exc_info=True)
