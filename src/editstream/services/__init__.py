"""Process-level services: settings persistence and telemetry."""

from .settings import EngineSettings, SettingsStore, redact_secret
from .telemetry import InMemoryEventSink, emit, register_event_listener, unregister_event_listener

__all__ = [
    "EngineSettings",
    "SettingsStore",
    "redact_secret",
    "InMemoryEventSink",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]
