from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from chatterm.utils.env_utils import float_env, int_env, truthy

DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_CONTEXT_LENGTH = 4096


def _default_settings_path() -> Path:
    raw = os.getenv("CHATTERM_SETTINGS_PATH")
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.cwd() / ".chatterm" / "settings.json"


def _deep_merge_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts (override wins). Lists are replaced, not merged."""
    out: dict[str, Any] = dict(base)
    for key, value in override.items():
        out_value = out.get(key)
        if isinstance(value, dict) and isinstance(out_value, dict):
            out[key] = _deep_merge_dict(out_value, value)
        else:
            out[key] = value
    return out


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default


def positive_or_none(value: float | None) -> float | None:
    """Non-positive timeouts are ignored; 0 would make the socket non-blocking."""
    if value is None or value <= 0:
        return None
    return value


@dataclass(frozen=True)
class ChatSettings:
    """
    Resolved configuration for one chat session.

    Built once at startup and handed to the completion client and the session host;
    nothing reads configuration from process globals after that.
    """

    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    system_prompt: str = ""
    history_path: str | None = None
    max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH  # displayed only, never enforced
    stream: bool = True
    timeout_s: float = DEFAULT_TIMEOUT_S
    temperature: float | None = None
    top_p: float | None = None
    message: str | None = None
    log_events: bool = True

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ChatSettings":
        stream = raw.get("stream")
        log_events = raw.get("log_events")
        timeout_s = _optional_float(raw.get("timeout_s"))
        return cls(
            model=_optional_str(raw.get("model")) or DEFAULT_MODEL,
            base_url=_optional_str(raw.get("base_url")) or DEFAULT_BASE_URL,
            api_key=_optional_str(raw.get("api_key")) or "",
            system_prompt=str(raw.get("system_prompt") or ""),
            history_path=_optional_str(raw.get("history_path")),
            max_context_length=_int_or(raw.get("max_context_length"), DEFAULT_MAX_CONTEXT_LENGTH),
            stream=stream if isinstance(stream, bool) else truthy(stream) if stream is not None else True,
            timeout_s=timeout_s if timeout_s is not None and timeout_s > 0 else DEFAULT_TIMEOUT_S,
            temperature=_optional_float(raw.get("temperature")),
            top_p=_optional_float(raw.get("top_p")),
            message=_optional_str(raw.get("message")),
            log_events=log_events if isinstance(log_events, bool) else truthy(log_events)
            if log_events is not None
            else True,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "model": self.model,
            "base_url": self.base_url,
            "system_prompt": self.system_prompt,
            "max_context_length": self.max_context_length,
            "stream": self.stream,
            "timeout_s": self.timeout_s,
            "log_events": self.log_events,
        }
        # The API key is never included.
        if self.history_path:
            out["history_path"] = self.history_path
        if self.temperature is not None:
            out["temperature"] = self.temperature
        if self.top_p is not None:
            out["top_p"] = self.top_p
        if self.message:
            out["message"] = self.message
        return out

    def with_overrides(self, **overrides: Any) -> "ChatSettings":
        """Return a copy with every non-None override applied (CLI flags win over everything else)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
        applied = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **applied) if applied else self

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())


def default_settings_template() -> ChatSettings:
    return ChatSettings()


def load_settings(path: Path | None = None) -> ChatSettings:
    """
    Load chatterm settings from `.chatterm/settings.json` (project-local).

    Environment overrides:
    - OPENAI_API_KEY / OPENAI_BASE_URL: credentials and endpoint
    - CHATTERM_MODEL, CHATTERM_SYSTEM: model id and system prompt
    - CHATTERM_STREAM: enable/disable streaming responses
    - CHATTERM_TIMEOUT_S: non-streaming request timeout
    - CHATTERM_MAX_CONTEXT_LENGTH: context size shown in the status bar
    - CHATTERM_LOG_EVENTS: enable/disable the JSONL turn log
    """
    settings_path = path or _default_settings_path()
    raw: dict[str, Any] = {}
    if settings_path.exists() and settings_path.is_file():
        try:
            loaded = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            loaded = {}
        raw = loaded if isinstance(loaded, dict) else {}

    defaults = default_settings_template().to_dict()
    merged = _deep_merge_dict(defaults, raw) if raw else defaults
    settings = ChatSettings.from_dict(merged)

    # Apply env overrides into the returned structure (does not persist to disk).
    env_stream = os.getenv("CHATTERM_STREAM")
    env_log_events = os.getenv("CHATTERM_LOG_EVENTS")
    return settings.with_overrides(
        api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
        base_url=_optional_str(os.getenv("OPENAI_BASE_URL")),
        model=_optional_str(os.getenv("CHATTERM_MODEL")),
        system_prompt=os.getenv("CHATTERM_SYSTEM") or None,
        stream=truthy(env_stream) if env_stream is not None else None,
        timeout_s=positive_or_none(float_env("CHATTERM_TIMEOUT_S", None)),
        max_context_length=int_env("CHATTERM_MAX_CONTEXT_LENGTH", None),
        log_events=truthy(env_log_events) if env_log_events is not None else None,
    )

