"""
Test configuration and fixtures for pytest
"""

from __future__ import annotations

import io
import json
from typing import Any

import pytest

from chatterm.chat.api import ChatClient
from chatterm.rest import RestResponse
from chatterm.settings import ChatSettings

_CHATTERM_ENV = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "CHATTERM_MODEL",
    "CHATTERM_SYSTEM",
    "CHATTERM_STREAM",
    "CHATTERM_TIMEOUT_S",
    "CHATTERM_MAX_CONTEXT_LENGTH",
    "CHATTERM_LOG_EVENTS",
    "CHATTERM_SETTINGS_PATH",
    "CHATTERM_LOG_MAX_FIELD_CHARS",
)


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path, monkeypatch):
    """Keep unit tests deterministic and away from the real home directory."""
    for name in _CHATTERM_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHATTERM_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.chdir(tmp_path)


class FakeRest:
    """Stands in for `RestClient`: replays canned responses and records each call."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, path: str, **kwargs: Any) -> RestResponse:
        self.calls.append({"path": path, **kwargs})
        if not self.responses:
            raise AssertionError("unexpected request")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def make_response(status: int, body: str | bytes) -> RestResponse:
    raw = body.encode("utf-8") if isinstance(body, str) else body
    return RestResponse(status=status, headers={}, body=io.BytesIO(raw))


def completion_body(content: str, *, finish_reason: str = "stop") -> str:
    return json.dumps(
        {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 1700000000,
            "choices": [
                {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}
            ],
            "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
        }
    )


def stream_chunk(content: str | None = None, *, finish_reason: str | None = None) -> str:
    delta = {} if content is None else {"content": content}
    return json.dumps(
        {
            "id": "chatcmpl-1",
            "object": "chat.completion.chunk",
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
    )


def sse_body(*chunks: str, done: bool = True) -> str:
    lines = [f"data: {chunk}\n\n" for chunk in chunks]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


@pytest.fixture
def settings() -> ChatSettings:
    return ChatSettings(api_key="sk-test", model="gpt-test", log_events=False)


@pytest.fixture
def make_client():
    """
    Fixture returning a factory for `ChatClient` backed by a `FakeRest`
    """

    def _make(settings: ChatSettings, *responses: Any) -> tuple[ChatClient, FakeRest]:
        rest = FakeRest(*responses)
        return ChatClient(settings, rest=rest), rest  # type: ignore[arg-type]

    return _make


@pytest.fixture
def wire():
    """
    Fixture exposing the canned response builders
    """

    class _Wire:
        response = staticmethod(make_response)
        completion = staticmethod(completion_body)
        chunk = staticmethod(stream_chunk)
        sse = staticmethod(sse_body)

    return _Wire
