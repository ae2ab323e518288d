"""Model client and episode orchestration."""

from .client import AIClient, ClientSettings, StreamDelta

__all__ = ["AIClient", "ClientSettings", "StreamDelta"]
