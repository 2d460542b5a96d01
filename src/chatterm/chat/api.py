"""OpenAI-compatible chat completion types and client.

See https://platform.openai.com/docs/api-reference/chat
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Iterable, Iterator, Literal, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatterm.errors import AuthError, DecodeError, HTTPError, TurnCancelledError
from chatterm.rest import RestClient, RestResponse
from chatterm.settings import ChatSettings

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"
SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"

Role = Literal["system", "user", "assistant"]


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Message(_WireModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    role: Role
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value: Any) -> Any:
        return "" if value is None else value


class CompletionUsage(_WireModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionChoice(_WireModel):
    index: int = 0
    message: Message
    finish_reason: str | None = None


class CompletionResponse(_WireModel):
    id: str | None = None
    object: str | None = None
    created: int | None = None
    choices: list[CompletionChoice] = Field(default_factory=list)
    usage: CompletionUsage | None = None


class CompletionStreamDelta(_WireModel):
    role: Role | None = None
    content: str | None = None


class CompletionStreamChoice(_WireModel):
    index: int = 0
    delta: CompletionStreamDelta = Field(default_factory=CompletionStreamDelta)
    finish_reason: str | None = None


class StreamEvent(_WireModel):
    """One decoded `data:` payload of a streamed completion."""

    id: str | None = None
    object: str | None = None
    created: int | None = None
    choices: list[CompletionStreamChoice] = Field(default_factory=list)


class CompletionRequest(_WireModel):
    model: str
    messages: list[Message]
    stream: bool = False
    temperature: float | None = None
    top_p: float | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class EventChannel(Protocol):
    def put(self, item: Any) -> None: ...


def build_request(
    history: Sequence[Message],
    new_user_text: str,
    *,
    model: str,
    system_prompt: str = "",
    stream: bool = False,
    temperature: float | None = None,
    top_p: float | None = None,
) -> CompletionRequest:
    """
    Build the request for the next turn.

    The system prompt is injected once, on the first turn only (when `history` is empty);
    later turns rely on it being the head of the conversation the model already saw.
    """
    # TODO: trim history to max_context_length once a tokenizer-backed budget exists.
    messages: list[Message] = []
    if system_prompt and not history:
        messages.append(Message(role="system", content=system_prompt))
    messages.extend(history)
    messages.append(Message(role="user", content=new_user_text))
    return CompletionRequest(
        model=model,
        messages=messages,
        stream=stream,
        temperature=temperature,
        top_p=top_p,
    )


def parse_completion_response(raw: bytes | str) -> CompletionResponse:
    try:
        return CompletionResponse.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"invalid completion response: {exc}") from exc


def parse_stream_event(data: str) -> StreamEvent:
    try:
        return StreamEvent.model_validate_json(data)
    except ValidationError as exc:
        raise DecodeError(f"invalid stream event: {exc}") from exc


def sse_data(line: str) -> str | None:
    """Return the trimmed payload of a `data:` line, or None for any other line."""
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX) :].strip()


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """
    Yield the payload of each `data:` line until the `[DONE]` sentinel.

    Keep-alive comments (`: ping`), blank event separators, and other SSE fields are skipped.
    """
    for line in lines:
        data = sse_data(line)
        if data is None:
            continue
        if data == SSE_DONE:
            return
        yield data


def _guard_cancel(lines: Iterable[str], cancel: threading.Event | None) -> Iterator[str]:
    for line in lines:
        if cancel is not None and cancel.is_set():
            raise TurnCancelledError()
        yield line


class ChatClient:
    """REST client for the chat completion endpoint of an OpenAI-compatible API."""

    def __init__(self, settings: ChatSettings, rest: RestClient | None = None) -> None:
        self.settings = settings
        self._rest = rest or RestClient(base_url=settings.base_url, timeout_s=settings.timeout_s)

    def build_request(self, history: Sequence[Message], text: str) -> CompletionRequest:
        return build_request(
            history,
            text,
            model=self.settings.model,
            system_prompt=self.settings.system_prompt,
            stream=self.settings.stream,
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
        )

    def _headers(self, *, stream: bool) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key.strip()}",
            "Content-Type": "application/json",
        }
        if stream:
            headers["Accept"] = "text/event-stream"
            headers["Cache-Control"] = "no-cache"
            headers["Connection"] = "keep-alive"
        return headers

    def _post(self, request: CompletionRequest, *, stream: bool) -> RestResponse:
        if not self.settings.has_api_key:
            raise AuthError()

        body = request.model_copy(update={"stream": stream})
        payload = json.dumps(body.to_payload(), ensure_ascii=False).encode("utf-8")
        kwargs: dict[str, Any] = {"method": "POST", "headers": self._headers(stream=stream), "body": payload}
        if stream:
            # Streams are long-lived; the configured timeout only applies to single responses.
            kwargs["timeout"] = None
        resp = self._rest.request(COMPLETIONS_PATH, **kwargs)

        if resp.status != 200:
            with resp:
                text = resp.text()
            raise HTTPError(resp.status, text)
        return resp

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Send a non-streaming completion request and return the decoded response."""
        with self._post(request, stream=False) as resp:
            raw = resp.read()
        return parse_completion_response(raw)

    def stream(
        self,
        request: CompletionRequest,
        channel: EventChannel,
        cancel: threading.Event | None = None,
    ) -> None:
        """
        Send a streaming completion request and push each decoded event onto `channel`.

        Returns after the `[DONE]` sentinel or when the body ends. A malformed event aborts
        the whole stream with `DecodeError`; events already pushed stay pushed.
        """
        if cancel is not None and cancel.is_set():
            raise TurnCancelledError()
        with self._post(request, stream=True) as resp:
            count = 0
            for data in iter_sse_data(_guard_cancel(resp.iter_lines(), cancel)):
                channel.put(parse_stream_event(data))
                count += 1
            logger.debug("stream finished after %d events", count)
