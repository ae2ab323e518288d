"""Episode orchestration: streaming, cancellation, continuation and auto-fix."""

from .auto_fix import AutoFixLoop
from .cancellation import (
    CANCELLATION_SUFFIX,
    CancellationRegistry,
    CancellationToken,
    PartialResponseStore,
    with_cancellation_notice,
)
from .checkpoints import CheckpointEvent, CheckpointObserver, CheckpointPublisher
from .continuation import ContinuationController
from .message_builder import (
    CODEBASE_ACK,
    CODEBASE_PROMPT_PREFIX,
    MessageBuilder,
    create_codebase_prompt,
    format_messages_for_summary,
    refresh_codebase_message,
)
from .orchestrator import EditStreamOrchestrator, EpisodeRun
from .runtime_config import ChatMode, EpisodeConfig
from .stream_processor import process_stream_chunks
from .types import (
    AutoFixOutcome,
    ContinuationOutcome,
    EpisodeResult,
    EpisodeState,
    EpisodeStatus,
    ModelClient,
    StreamResult,
)

__all__ = [
    "AutoFixLoop",
    "CANCELLATION_SUFFIX",
    "CancellationRegistry",
    "CancellationToken",
    "PartialResponseStore",
    "with_cancellation_notice",
    "CheckpointEvent",
    "CheckpointObserver",
    "CheckpointPublisher",
    "ContinuationController",
    "CODEBASE_ACK",
    "CODEBASE_PROMPT_PREFIX",
    "MessageBuilder",
    "create_codebase_prompt",
    "format_messages_for_summary",
    "refresh_codebase_message",
    "EditStreamOrchestrator",
    "EpisodeRun",
    "ChatMode",
    "EpisodeConfig",
    "process_stream_chunks",
    "AutoFixOutcome",
    "ContinuationOutcome",
    "EpisodeResult",
    "EpisodeState",
    "EpisodeStatus",
    "ModelClient",
    "StreamResult",
]
