from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatterm.settings import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_S,
    ChatSettings,
    load_settings,
)
from chatterm.utils.env_utils import load_env_file


def test_load_settings_uses_builtins_when_file_missing(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "settings.json")

    assert settings.model == DEFAULT_MODEL == "gpt-3.5-turbo"
    assert settings.base_url == DEFAULT_BASE_URL
    assert settings.timeout_s == DEFAULT_TIMEOUT_S == 60.0
    assert settings.stream is True
    assert settings.api_key == ""
    assert not settings.has_api_key


def test_file_then_env_then_overrides(tmp_path: Path, monkeypatch) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(
        json.dumps({"model": "from-file", "system_prompt": "file prompt", "stream": False, "timeout_s": 5}),
        encoding="utf-8",
    )
    monkeypatch.setenv("CHATTERM_MODEL", "from-env")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    settings = load_settings(settings_path)

    assert settings.model == "from-env"
    assert settings.system_prompt == "file prompt"
    assert settings.stream is False
    assert settings.timeout_s == 5.0
    assert settings.api_key == "sk-env"

    final = settings.with_overrides(model="from-flag", stream=None, api_key=None)
    assert final.model == "from-flag"
    assert final.stream is False
    assert final.api_key == "sk-env"


def test_env_stream_and_numbers(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CHATTERM_STREAM", "false")
    monkeypatch.setenv("CHATTERM_TIMEOUT_S", "2.5")
    monkeypatch.setenv("CHATTERM_MAX_CONTEXT_LENGTH", "8192")
    monkeypatch.setenv("CHATTERM_LOG_EVENTS", "0")

    settings = load_settings(tmp_path / "settings.json")

    assert settings.stream is False
    assert settings.timeout_s == 2.5
    assert settings.max_context_length == 8192
    assert settings.log_events is False


def test_settings_path_from_env(tmp_path: Path, monkeypatch) -> None:
    settings_path = tmp_path / "elsewhere.json"
    settings_path.write_text(json.dumps({"base_url": "http://localhost:8080/v1"}), encoding="utf-8")
    monkeypatch.setenv("CHATTERM_SETTINGS_PATH", str(settings_path))

    assert load_settings().base_url == "http://localhost:8080/v1"


def test_malformed_settings_file_falls_back_to_defaults(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text("{not json", encoding="utf-8")

    assert load_settings(settings_path) == ChatSettings()


def test_with_overrides_rejects_unknown_keys() -> None:
    with pytest.raises(TypeError, match="nope"):
        ChatSettings().with_overrides(nope=1)


def test_load_env_file_preserves_existing(tmp_path: Path, monkeypatch) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text("# comment\nexport OPENAI_API_KEY='sk-file'\nCHATTERM_MODEL=file-model\nnot a pair\n", encoding="utf-8")
    monkeypatch.setenv("CHATTERM_MODEL", "already-set")
    # Registered with monkeypatch so the value loaded from the file is undone afterwards.
    monkeypatch.setenv("OPENAI_API_KEY", "placeholder")
    monkeypatch.delenv("OPENAI_API_KEY")

    assert load_env_file(env_path) is True
    assert load_settings(tmp_path / "settings.json").api_key == "sk-file"
    assert load_settings(tmp_path / "settings.json").model == "already-set"
    assert load_env_file(tmp_path / "missing.env") is False


@pytest.mark.parametrize("raw", ["0", "-5", "not-a-number"])
def test_non_positive_env_timeout_is_ignored(tmp_path: Path, monkeypatch, raw: str) -> None:
    monkeypatch.setenv("CHATTERM_TIMEOUT_S", raw)

    assert load_settings(tmp_path / "settings.json").timeout_s == DEFAULT_TIMEOUT_S
