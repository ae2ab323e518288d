"""Exception hierarchy for the edit stream engine.

Only model-client failures invalidate an episode. The other error types are
raised internally and caught at the stage boundary that owns them, so a
response that is structurally complete is never thrown away because a later
stage failed.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "EditStreamError",
    "ModelClientError",
    "AutoFixError",
    "format_model_error",
]


class EditStreamError(Exception):
    """Base class for engine errors."""


class ModelClientError(EditStreamError):
    """The model client failed before the response was structurally complete."""

    def __init__(self, message: str, *, request_id: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.cause = cause

    def user_message(self) -> str:
        prefix = f"[Request ID: {self.request_id}] " if self.request_id else ""
        return f"Sorry, there was an error from the AI: {prefix}{self}"


class AutoFixError(EditStreamError):
    """The analyzer or overlay failed while running the auto-fix loop."""


def format_model_error(error: BaseException) -> str:
    """Render a provider exception the way it is surfaced to observers."""

    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    body: Any = getattr(error, "body", None)
    if body and str(body) not in message:
        message = f"{message}\n\nDetails: {body}"
    return message
