"""Cancellation tokens and the per-conversation registries that own them."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Hashable

__all__ = [
    "CANCELLATION_SUFFIX",
    "CancellationToken",
    "CancellationRegistry",
    "PartialResponseStore",
    "with_cancellation_notice",
]

LOGGER = logging.getLogger(__name__)

CANCELLATION_SUFFIX = "\n\n[Response cancelled by user]"

ConversationId = Hashable


def with_cancellation_notice(transcript: str) -> str:
    """Return the stored form of a cancelled transcript."""

    return f"{transcript}{CANCELLATION_SUFFIX}"


class CancellationToken:
    """Terminal, broadcastable cancellation flag shared within one episode.

    ``cancel`` may be called from any thread; waiters on :meth:`wait` are woken
    on the loop the token was created on.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._event = asyncio.Event()
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Set the flag. Returns ``False`` if it was already set."""

        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        self._set_event()
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - callbacks must not break cancel
                LOGGER.debug("Cancellation callback %s failed", callback, exc_info=True)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Invoke ``callback`` on cancellation (immediately if already set)."""

        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()

    async def wait(self) -> None:
        await self._event.wait()

    def _set_event(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self._event.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._event.set()
        else:
            loop.call_soon_threadsafe(self._event.set)


class CancellationRegistry:
    """Maps conversation ids to the token of their live episode.

    Registering a new token for an id orphans the previous one: callers that
    kept the old token can still cancel their own episode, but ``cancel(id)``
    only reaches the newest. All operations are atomic.
    """

    def __init__(self) -> None:
        self._tokens: dict[ConversationId, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, conversation_id: ConversationId) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            previous = self._tokens.get(conversation_id)
            self._tokens[conversation_id] = token
        if previous is not None:
            LOGGER.warning("Replacing live cancellation token for conversation %s", conversation_id)
        return token

    def cancel(self, conversation_id: ConversationId) -> bool:
        with self._lock:
            token = self._tokens.pop(conversation_id, None)
        if token is None:
            LOGGER.warning("No active stream found for conversation %s", conversation_id)
            return False
        token.cancel()
        LOGGER.info("Aborted stream for conversation %s", conversation_id)
        return True

    def release(self, conversation_id: ConversationId, token: CancellationToken) -> bool:
        """Remove ``token`` if it is still the registered one for the id."""

        with self._lock:
            if self._tokens.get(conversation_id) is not token:
                return False
            del self._tokens[conversation_id]
            return True

    def get(self, conversation_id: ConversationId) -> CancellationToken | None:
        with self._lock:
            return self._tokens.get(conversation_id)

    def is_active(self, conversation_id: ConversationId) -> bool:
        return self.get(conversation_id) is not None

    def active_ids(self) -> tuple[ConversationId, ...]:
        with self._lock:
            return tuple(self._tokens)

    def cancel_all(self) -> int:
        with self._lock:
            tokens = list(self._tokens.values())
            self._tokens.clear()
        for token in tokens:
            token.cancel()
        return len(tokens)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


class PartialResponseStore:
    """Last checkpointed transcript per conversation, kept for cancellation."""

    def __init__(self) -> None:
        self._partials: dict[ConversationId, str] = {}
        self._lock = threading.Lock()

    def set(self, conversation_id: ConversationId, transcript: str) -> None:
        with self._lock:
            self._partials[conversation_id] = transcript

    def get(self, conversation_id: ConversationId) -> str | None:
        with self._lock:
            return self._partials.get(conversation_id)

    def pop(self, conversation_id: ConversationId) -> str | None:
        with self._lock:
            return self._partials.pop(conversation_id, None)

    def clear(self) -> None:
        with self._lock:
            self._partials.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._partials)
