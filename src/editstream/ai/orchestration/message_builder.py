"""Message construction for episode prompts."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from ...protocol.sanitizer import remove_non_essential_tags, remove_protocol_tags
from .runtime_config import DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT, ChatMode
from .types import ChatMessage

__all__ = [
    "CODEBASE_PROMPT_PREFIX",
    "CODEBASE_ACK",
    "MessageBuilder",
    "create_codebase_prompt",
    "refresh_codebase_message",
    "format_messages_for_summary",
]

LOGGER = logging.getLogger(__name__)

CODEBASE_PROMPT_PREFIX = "This is my codebase."
CODEBASE_ACK = "OK, got it. I'm ready to help"
_SUMMARY_HEAD = 2
_SUMMARY_TAIL = 6


def create_codebase_prompt(codebase: str) -> str:
    return f"{CODEBASE_PROMPT_PREFIX} {codebase}"


def refresh_codebase_message(messages: Sequence[ChatMessage], codebase: str) -> list[dict[str, Any]]:
    """Return a copy of ``messages`` whose codebase message reflects ``codebase``.

    Only the first user message starting with :data:`CODEBASE_PROMPT_PREFIX`
    is replaced; everything else is passed through unchanged.
    """

    refreshed: list[dict[str, Any]] = []
    replaced = False
    for message in messages:
        content = message.get("content")
        if (
            not replaced
            and message.get("role") == "user"
            and isinstance(content, str)
            and content.startswith(CODEBASE_PROMPT_PREFIX)
        ):
            refreshed.append({"role": "user", "content": create_codebase_prompt(codebase)})
            replaced = True
            continue
        refreshed.append(dict(message))
    return refreshed


class MessageBuilder:
    """Turns stored chat history into the message list sent to the model.

    History is trimmed to the most recent turns, replayed assistant content
    loses its reasoning and problem-report blocks, and the codebase context is
    prepended as a user/assistant pair.
    """

    def __init__(self, *, max_chat_turns_in_context: int = DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT) -> None:
        self._max_chat_turns = max(0, int(max_chat_turns_in_context))

    @property
    def max_chat_turns_in_context(self) -> int:
        return self._max_chat_turns

    def build_messages(
        self,
        history: Sequence[ChatMessage],
        *,
        codebase: str | None = None,
        system_prompt: str | None = None,
        chat_mode: ChatMode | str = ChatMode.BUILD,
    ) -> list[dict[str, Any]]:
        """Build the message sequence for one episode.

        Args:
            history: Stored messages, oldest first, ending with the new user prompt.
            codebase: Rendered codebase text; omitted from the prompt when ``None``.
            system_prompt: Optional system message placed first.
            chat_mode: ``ask`` additionally strips every protocol tag from history.
        """

        mode = ChatMode.coerce(chat_mode)
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if codebase is not None:
            messages.append({"role": "user", "content": create_codebase_prompt(codebase)})
            messages.append({"role": "assistant", "content": CODEBASE_ACK})

        for message in self.limit_history(history):
            content = self._sanitize_content(message.get("content"), mode)
            if not content:
                continue
            messages.append({"role": message.get("role", "user"), "content": content})
        return messages

    def limit_history(self, history: Sequence[ChatMessage]) -> list[ChatMessage]:
        """Keep the most recent turns, starting at a user message.

        One extra turn is allowed for the prompt being answered.
        """

        limit = (self._max_chat_turns + 1) * 2
        if len(history) <= limit:
            return list(history)

        recent = [message for message in history if message.get("role") != "system"][-limit:]
        if recent and recent[0].get("role") != "user":
            first_user = next((index for index, message in enumerate(recent) if message.get("role") == "user"), None)
            if first_user is None:
                LOGGER.warning("No user messages found in recent history; dropping it")
                recent = []
            else:
                recent = recent[first_user:]
        LOGGER.debug(
            "Limiting chat history from %d to %d messages (max %d turns)",
            len(history),
            len(recent),
            self._max_chat_turns + 1,
        )
        return recent

    @staticmethod
    def _sanitize_content(content: Any, mode: ChatMode) -> str:
        if content is None:
            return ""
        text = remove_non_essential_tags(str(content))
        if not mode.allows_edits:
            text = remove_protocol_tags(text)
        return text


def format_messages_for_summary(messages: Iterable[Mapping[str, Any]]) -> str:
    """Render a conversation for a summarisation request.

    Long conversations keep the first two and last six messages with a marker
    for the omitted middle.
    """

    items = list(messages)
    keep = _SUMMARY_HEAD + _SUMMARY_TAIL
    if len(items) > keep:
        omitted = len(items) - keep
        items = [
            *items[:_SUMMARY_HEAD],
            {"role": "system", "content": f"[... {omitted} messages omitted ...]"},
            *items[-_SUMMARY_TAIL:],
        ]
    return "\n".join(f'<message role="{item.get("role")}">{item.get("content")}</message>' for item in items)
