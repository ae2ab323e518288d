"""Runtime configuration classes for the episode orchestrator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CONTINUATION_ATTEMPTS = 2
DEFAULT_MAX_AUTO_FIX_ATTEMPTS = 2
DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT = 5


class ChatMode(str, Enum):
    """``build`` lets the model propose edits; ``ask`` is read-only."""

    BUILD = "build"
    ASK = "ask"

    @property
    def allows_edits(self) -> bool:
        return self is ChatMode.BUILD

    @classmethod
    def coerce(cls, value: "ChatMode | str | None") -> ChatMode:
        if isinstance(value, ChatMode):
            return value
        try:
            return cls(str(value or cls.BUILD.value).strip().lower())
        except ValueError:
            LOGGER.warning("Unknown chat mode %r; falling back to build", value)
            return cls.BUILD


@dataclass(slots=True, frozen=True)
class EpisodeConfig:
    """Policy knobs for one episode. Retry bounds are finite and visible."""

    chat_mode: ChatMode = ChatMode.BUILD
    enable_auto_fix: bool = True
    max_continuation_attempts: int = DEFAULT_MAX_CONTINUATION_ATTEMPTS
    max_auto_fix_attempts: int = DEFAULT_MAX_AUTO_FIX_ATTEMPTS
    max_chat_turns_in_context: int = DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT

    def __post_init__(self) -> None:
        object.__setattr__(self, "chat_mode", ChatMode.coerce(self.chat_mode))
        for name in ("max_continuation_attempts", "max_auto_fix_attempts", "max_chat_turns_in_context"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

    @property
    def allows_edits(self) -> bool:
        return self.chat_mode.allows_edits


__all__ = [
    "ChatMode",
    "EpisodeConfig",
    "DEFAULT_MAX_CONTINUATION_ATTEMPTS",
    "DEFAULT_MAX_AUTO_FIX_ATTEMPTS",
    "DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT",
]
