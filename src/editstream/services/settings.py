"""Engine settings and their JSON persistence."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..ai.client import ClientSettings
from ..ai.orchestration.runtime_config import (
    DEFAULT_MAX_AUTO_FIX_ATTEMPTS,
    DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT,
    DEFAULT_MAX_CONTINUATION_ATTEMPTS,
    ChatMode,
    EpisodeConfig,
)

__all__ = ["EngineSettings", "SettingsStore", "redact_secret"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".editstream"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITSTREAM_API_KEY": "api_key",
    "EDITSTREAM_BASE_URL": "base_url",
    "EDITSTREAM_MODEL": "model",
    "EDITSTREAM_CHAT_MODE": "chat_mode",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITSTREAM_DEBUG_LOGGING": "debug_logging",
    "EDITSTREAM_AUTO_FIX": "enable_auto_fix_problems",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITSTREAM_REQUEST_TIMEOUT": "request_timeout",
    "EDITSTREAM_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITSTREAM_MAX_RETRIES": "max_retries",
    "EDITSTREAM_MAX_CONTINUATION_ATTEMPTS": "max_continuation_attempts",
    "EDITSTREAM_MAX_AUTO_FIX_ATTEMPTS": "max_auto_fix_attempts",
    "EDITSTREAM_MAX_CHAT_TURNS": "max_chat_turns_in_context",
}
_BOUNDED_FIELDS: Mapping[str, int] = {
    "max_continuation_attempts": DEFAULT_MAX_CONTINUATION_ATTEMPTS,
    "max_auto_fix_attempts": DEFAULT_MAX_AUTO_FIX_ATTEMPTS,
    "max_chat_turns_in_context": DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT,
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class EngineSettings:
    """User-facing configuration for the model client and episode policy.

    The API key is never written to disk; supply it through
    ``EDITSTREAM_API_KEY`` or a runtime override.
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    temperature: float = 0.0
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    chat_mode: str = ChatMode.BUILD.value
    enable_auto_fix_problems: bool = True
    max_continuation_attempts: int = DEFAULT_MAX_CONTINUATION_ATTEMPTS
    max_auto_fix_attempts: int = DEFAULT_MAX_AUTO_FIX_ATTEMPTS
    max_chat_turns_in_context: int = DEFAULT_MAX_CHAT_TURNS_IN_CONTEXT
    debug_logging: bool = False

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            temperature=self.temperature,
            debug_logging=self.debug_logging,
        )

    def runtime_config(self) -> EpisodeConfig:
        return EpisodeConfig(
            chat_mode=ChatMode.coerce(self.chat_mode),
            enable_auto_fix=self.enable_auto_fix_problems,
            max_continuation_attempts=self.max_continuation_attempts,
            max_auto_fix_attempts=self.max_auto_fix_attempts,
            max_chat_turns_in_context=self.max_chat_turns_in_context,
        )


class SettingsStore:
    """Persistence adapter for :class:`EngineSettings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> EngineSettings:
        """Load settings from disk, applying runtime then environment overrides."""

        payload = self._read_payload()
        settings = EngineSettings()
        if payload:
            try:
                settings = EngineSettings(**_filter_fields(payload))
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = EngineSettings()
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")
        settings = self._apply_env_overrides(settings)
        return _normalize(settings)

    def save(self, settings: EngineSettings) -> Path:
        """Persist settings to disk with an atomic file replace."""

        data = asdict(settings)
        data.pop("api_key", None)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: EngineSettings,
        overrides: Mapping[str, Any],
        *,
        source: str,
    ) -> EngineSettings:
        allowed = {field.name for field in fields(EngineSettings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: EngineSettings) -> EngineSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(EngineSettings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _normalize(settings: EngineSettings) -> EngineSettings:
    """Clamp retry bounds to finite non-negative integers and validate the mode."""

    updates: Dict[str, Any] = {}
    for name, default in _BOUNDED_FIELDS.items():
        value = getattr(settings, name)
        try:
            coerced = int(value)
        except (TypeError, ValueError):
            LOGGER.warning("Setting %s=%r is not an integer; using %d", name, value, default)
            coerced = default
        if coerced < 0:
            LOGGER.warning("Setting %s=%d is negative; clamping to 0", name, coerced)
            coerced = 0
        if coerced != value:
            updates[name] = coerced
    mode = ChatMode.coerce(settings.chat_mode).value
    if mode != settings.chat_mode:
        updates["chat_mode"] = mode
    return replace(settings, **updates) if updates else settings


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
