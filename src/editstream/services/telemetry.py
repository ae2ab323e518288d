"""In-process telemetry events for episode lifecycle transitions."""

from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import Any, Callable, Mapping

__all__ = [
    "EPISODE_STARTED",
    "EPISODE_CONTINUATION",
    "EPISODE_AUTO_FIX",
    "EPISODE_CANCELLED",
    "EPISODE_FAILED",
    "EPISODE_FINISHED",
    "EPISODE_EVENTS",
    "register_event_listener",
    "unregister_event_listener",
    "clear_event_listeners",
    "emit",
    "InMemoryEventSink",
]

LOGGER = logging.getLogger(__name__)

EPISODE_STARTED = "episode.started"
EPISODE_CONTINUATION = "episode.continuation"
EPISODE_AUTO_FIX = "episode.auto_fix"
EPISODE_CANCELLED = "episode.cancelled"
EPISODE_FAILED = "episode.failed"
EPISODE_FINISHED = "episode.finished"
EPISODE_EVENTS: tuple[str, ...] = (
    EPISODE_STARTED,
    EPISODE_CONTINUATION,
    EPISODE_AUTO_FIX,
    EPISODE_CANCELLED,
    EPISODE_FAILED,
    EPISODE_FINISHED,
)

EventListener = Callable[[dict[str, Any]], None]

_EVENT_LISTENERS: dict[str, list[EventListener]] = {}
_LISTENER_LOCK = Lock()


def register_event_listener(event_name: str, callback: EventListener) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    with _LISTENER_LOCK:
        listeners = _EVENT_LISTENERS.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)


def unregister_event_listener(event_name: str, callback: EventListener) -> None:
    with _LISTENER_LOCK:
        listeners = _EVENT_LISTENERS.get(event_name)
        if listeners and callback in listeners:
            listeners.remove(callback)


def clear_event_listeners() -> None:
    with _LISTENER_LOCK:
        _EVENT_LISTENERS.clear()


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name}
    if payload:
        event_payload.update(payload)
    with _LISTENER_LOCK:
        listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


class InMemoryEventSink:
    """Ring buffer of emitted events for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[dict[str, Any]] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __call__(self, payload: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(payload)

    def attach(self, events: tuple[str, ...] = EPISODE_EVENTS) -> InMemoryEventSink:
        for name in events:
            register_event_listener(name, self)
        return self

    def detach(self, events: tuple[str, ...] = EPISODE_EVENTS) -> None:
        for name in events:
            unregister_event_listener(name, self)

    def names(self) -> list[str]:
        with self._lock:
            return [payload["event"] for payload in self._buffer]

    def tail(self, limit: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
