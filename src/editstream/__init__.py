"""Streaming edit-protocol engine for model-driven codebase changes."""

from .ai.client import AIClient, ClientSettings, StreamDelta
from .ai.orchestration import (
    CANCELLATION_SUFFIX,
    ChatMode,
    EditStreamOrchestrator,
    EpisodeConfig,
    EpisodeResult,
    EpisodeStatus,
)
from .errors import AutoFixError, EditStreamError, ModelClientError
from .protocol import extract_edit_records, has_unclosed_write

__all__ = [
    "AIClient",
    "ClientSettings",
    "StreamDelta",
    "CANCELLATION_SUFFIX",
    "ChatMode",
    "EditStreamOrchestrator",
    "EpisodeConfig",
    "EpisodeResult",
    "EpisodeStatus",
    "AutoFixError",
    "EditStreamError",
    "ModelClientError",
    "extract_edit_records",
    "has_unclosed_write",
]

__version__ = "0.1.0"
