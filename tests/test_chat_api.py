from __future__ import annotations

import json
import threading

import pytest

from chatterm.chat.api import (
    CompletionRequest,
    Message,
    build_request,
    iter_sse_data,
    parse_stream_event,
    sse_data,
)
from chatterm.errors import AuthError, DecodeError, HTTPError, TransportError, TurnCancelledError
from chatterm.settings import ChatSettings


class _ListChannel:
    def __init__(self) -> None:
        self.items: list = []

    def put(self, item) -> None:
        self.items.append(item)


def _user(text: str) -> Message:
    return Message(role="user", content=text)


def _assistant(text: str) -> Message:
    return Message(role="assistant", content=text)


def test_build_request_injects_system_prompt_on_first_turn_only() -> None:
    first = build_request([], "hi", model="m", system_prompt="be brief")
    assert [(m.role, m.content) for m in first.messages] == [("system", "be brief"), ("user", "hi")]

    later = build_request([_user("hi"), _assistant("hello")], "again", model="m", system_prompt="be brief")
    assert [m.role for m in later.messages] == ["user", "assistant", "user"]
    assert later.messages[-1].content == "again"


def test_build_request_without_system_prompt() -> None:
    request = build_request([], "hi", model="m")
    assert [m.role for m in request.messages] == ["user"]


def test_request_payload_omits_unset_sampling_params() -> None:
    request = build_request([], "hi", model="gpt-test")
    assert request.to_payload() == {
        "model": "gpt-test",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": False,
    }

    tuned = build_request([], "hi", model="gpt-test", temperature=0.2, top_p=0.9)
    assert tuned.to_payload()["temperature"] == 0.2
    assert tuned.to_payload()["top_p"] == 0.9


def test_complete_posts_payload_and_decodes_response(settings, make_client, wire) -> None:
    client, rest = make_client(settings, wire.response(200, wire.completion("Hello there")))
    request = client.build_request([], "Hi")

    response = client.complete(request)

    assert response.choices[0].message == _assistant("Hello there")
    assert response.choices[0].finish_reason == "stop"
    assert response.usage is not None and response.usage.total_tokens == 5

    call = rest.calls[0]
    assert call["path"] == "/chat/completions"
    assert call["method"] == "POST"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["headers"]["Content-Type"] == "application/json"
    assert "Accept" not in call["headers"]
    assert "timeout" not in call
    payload = json.loads(call["body"])
    assert payload["stream"] is False
    assert payload["messages"] == [{"role": "user", "content": "Hi"}]


def test_complete_without_api_key_fails_before_any_request(make_client) -> None:
    client, rest = make_client(ChatSettings(api_key=""))

    with pytest.raises(AuthError, match="OPENAI_API_KEY"):
        client.complete(client.build_request([], "Hi"))
    assert rest.calls == []


def test_complete_non_200_raises_http_error_with_body(settings, make_client, wire) -> None:
    client, _ = make_client(settings, wire.response(429, '{"error":"rate limited"}'))

    with pytest.raises(HTTPError) as info:
        client.complete(client.build_request([], "Hi"))

    assert info.value.status == 429
    assert str(info.value) == 'status code: 429, body: {"error":"rate limited"}'


def test_complete_malformed_body_raises_decode_error(settings, make_client, wire) -> None:
    client, _ = make_client(settings, wire.response(200, "<html>bad gateway</html>"))

    with pytest.raises(DecodeError):
        client.complete(client.build_request([], "Hi"))


def test_complete_passes_through_empty_choices(settings, make_client, wire) -> None:
    client, _ = make_client(settings, wire.response(200, '{"id": "x", "choices": []}'))

    response = client.complete(client.build_request([], "Hi"))

    assert response.choices == []


def test_complete_transport_error_propagates(settings, make_client) -> None:
    client, _ = make_client(settings, TransportError("POST /chat/completions failed: timed out"))

    with pytest.raises(TransportError):
        client.complete(client.build_request([], "Hi"))


def test_stream_pushes_each_event_in_order(settings, make_client, wire) -> None:
    body = wire.sse(wire.chunk("Hel"), wire.chunk("lo"), wire.chunk(finish_reason="stop"))
    client, rest = make_client(settings, wire.response(200, body))
    channel = _ListChannel()

    client.stream(client.build_request([], "Hi"), channel)

    contents = [event.choices[0].delta.content for event in channel.items]
    assert contents == ["Hel", "lo", None]
    assert channel.items[-1].choices[0].finish_reason == "stop"

    call = rest.calls[0]
    assert call["timeout"] is None
    assert call["headers"]["Accept"] == "text/event-stream"
    assert call["headers"]["Cache-Control"] == "no-cache"
    assert call["headers"]["Connection"] == "keep-alive"
    assert json.loads(call["body"])["stream"] is True


def test_stream_skips_non_data_lines_and_stops_at_done(settings, make_client, wire) -> None:
    body = (
        ": keep-alive\n\n"
        "event: message\n"
        f"data: {wire.chunk('a')}\n\n"
        "data: [DONE]\n\n"
        f"data: {wire.chunk('after done')}\n\n"
    )
    client, _ = make_client(settings, wire.response(200, body))
    channel = _ListChannel()

    client.stream(client.build_request([], "Hi"), channel)

    assert [event.choices[0].delta.content for event in channel.items] == ["a"]


def test_stream_malformed_event_raises_after_earlier_events(settings, make_client, wire) -> None:
    body = f"data: {wire.chunk('ok')}\n\ndata: {{not json\n\n"
    client, _ = make_client(settings, wire.response(200, body))
    channel = _ListChannel()

    with pytest.raises(DecodeError):
        client.stream(client.build_request([], "Hi"), channel)
    assert len(channel.items) == 1


def test_stream_non_200_raises_before_any_event(settings, make_client, wire) -> None:
    client, _ = make_client(settings, wire.response(500, "upstream exploded"))
    channel = _ListChannel()

    with pytest.raises(HTTPError, match="status code: 500"):
        client.stream(client.build_request([], "Hi"), channel)
    assert channel.items == []


def test_stream_already_cancelled_sends_nothing(settings, make_client) -> None:
    client, rest = make_client(settings)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(TurnCancelledError):
        client.stream(client.build_request([], "Hi"), _ListChannel(), cancel)
    assert rest.calls == []


def test_stream_cancel_stops_reading_at_next_line(settings, make_client, wire) -> None:
    body = wire.sse(wire.chunk("one"), wire.chunk("two"), wire.chunk("three"))
    client, _ = make_client(settings, wire.response(200, body))
    cancel = threading.Event()

    class _CancellingChannel(_ListChannel):
        def put(self, item) -> None:
            super().put(item)
            cancel.set()

    channel = _CancellingChannel()
    with pytest.raises(TurnCancelledError):
        client.stream(client.build_request([], "Hi"), channel, cancel)
    assert len(channel.items) == 1


def test_sse_helpers() -> None:
    assert sse_data("data: {}") == "{}"
    assert sse_data("data:{}") == "{}"
    assert sse_data(": ping") is None
    assert sse_data("") is None
    assert list(iter_sse_data(["data: 1", "", "id: 7", "data: 2", "data: [DONE]", "data: 3"])) == ["1", "2"]


def test_parse_stream_event_tolerates_unknown_fields() -> None:
    event = parse_stream_event(
        '{"id":"x","system_fingerprint":"fp","choices":[{"index":0,"delta":{"role":"assistant"},"logprobs":null}]}'
    )
    assert event.choices[0].delta.role == "assistant"
    assert event.choices[0].delta.content is None


def test_message_null_content_becomes_empty() -> None:
    assert Message.model_validate({"role": "assistant", "content": None}).content == ""


def test_completion_request_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        CompletionRequest(model="m", messages=[{"role": "tool", "content": "x"}])
