"""Conversation state machine.

`ChatSession.handle` is the only place conversation state changes. It takes one occurrence
(a keystroke, a resize, a timer tick, or a network result) and returns the follow-up
actions for the host to carry out. It never performs I/O itself.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Sequence, Union

from chatterm.chat.api import (
    CompletionRequest,
    CompletionResponse,
    CompletionUsage,
    Message,
    StreamEvent,
    build_request,
)
from chatterm.chat.render import DEFAULT_LAYOUT, Layout, Mode, TranscriptBlock, compute_layout, transcript_blocks
from chatterm.errors import EmptyResponseError, LayoutError, TurnCancelledError
from chatterm.settings import ChatSettings
from chatterm.utils.text_utils import count_tokens

KEY_SEND = "enter"
KEY_QUIT = "ctrl+c"
KEY_HELP = "ctrl+h"
KEY_MULTILINE = "ctrl+l"
KEY_INTERRUPT = "escape"


# Occurrences


@dataclass(frozen=True)
class Key:
    key: str
    text: str = ""


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Completed:
    turn_id: int
    response: CompletionResponse


@dataclass(frozen=True)
class Delta:
    turn_id: int
    event: StreamEvent


@dataclass(frozen=True)
class StreamClosed:
    turn_id: int


@dataclass(frozen=True)
class Failure:
    turn_id: int
    error: BaseException


@dataclass(frozen=True)
class Interrupt:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Occurrence = Union[Key, Resize, Tick, Completed, Delta, StreamClosed, Failure, Interrupt, Quit]


# Actions


@dataclass(frozen=True)
class StartCompletion:
    turn_id: int
    request: CompletionRequest


@dataclass(frozen=True)
class StartStream:
    turn_id: int
    request: CompletionRequest


@dataclass(frozen=True)
class AwaitNextEvent:
    turn_id: int


@dataclass(frozen=True)
class Render:
    pass


@dataclass(frozen=True)
class ClearInput:
    pass


@dataclass(frozen=True)
class PersistHistory:
    messages: tuple[Message, ...]


@dataclass(frozen=True)
class CancelTurn:
    turn_id: int


@dataclass(frozen=True)
class TurnEnded:
    turn_id: int
    message: Message | None = None
    error: BaseException | None = None
    finish_reason: str | None = None
    usage: CompletionUsage | None = None


@dataclass(frozen=True)
class Exit:
    code: int = 0
    error: BaseException | None = None


Action = Union[
    StartCompletion,
    StartStream,
    AwaitNextEvent,
    Render,
    ClearInput,
    PersistHistory,
    CancelTurn,
    TurnEnded,
    Exit,
]


class ChatSession:
    """
    Holds the conversation and reacts to occurrences.

    Modes:
    - idle: accepting input
    - waiting: a non-streaming request is outstanding
    - streaming: deltas are arriving for the current turn

    Turn ids tag every network occurrence; anything tagged with a turn that is no longer
    outstanding (for example one that was interrupted) is ignored.
    """

    def __init__(self, settings: ChatSettings, history: Sequence[Message] | None = None) -> None:
        self.settings = settings
        self._history: list[Message] = list(history or [])
        self._pending_input = settings.message or ""
        self._scratch = ""
        self._mode = Mode.IDLE
        self._last_error: BaseException | None = None
        self._turn_id = 0
        self._layout = DEFAULT_LAYOUT
        self._finish_reason: str | None = None
        self._events_seen = False
        self._multiline = False
        self._show_help = False
        self._exited = False

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def scratch(self) -> str:
        return self._scratch

    @property
    def pending_input(self) -> str:
        return self._pending_input

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    @property
    def turn_id(self) -> int:
        return self._turn_id

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def multiline(self) -> bool:
        return self._multiline

    @property
    def show_help(self) -> bool:
        return self._show_help

    @property
    def exited(self) -> bool:
        return self._exited

    @property
    def context_tokens(self) -> int:
        """Approximate size of the next request, excluding the message being typed."""
        total = sum(count_tokens(m.content) for m in self._history)
        if not self._history and self.settings.system_prompt:
            total += count_tokens(self.settings.system_prompt)
        return total

    def transcript_blocks(self) -> tuple[TranscriptBlock, ...]:
        return transcript_blocks(self._history, self._scratch, self._mode)

    def handle(self, occurrence: Occurrence) -> list[Action]:
        if self._exited:
            return []
        return self._on(occurrence)

    # ------------------------------------------------------------------ dispatch

    @functools.singledispatchmethod
    def _on(self, occurrence: object) -> list[Action]:
        raise TypeError(f"Unsupported occurrence: {type(occurrence).__name__}")

    @_on.register(Key)
    def _on_key(self, occurrence: Key) -> list[Action]:
        key = occurrence.key.lower()
        if key == KEY_QUIT:
            return self._exit(0)
        if key == KEY_INTERRUPT:
            return self._interrupt()
        if key == KEY_HELP:
            self._show_help = not self._show_help
            return [Render()]
        if key == KEY_MULTILINE:
            self._multiline = not self._multiline
            return [Render()]

        self._pending_input = occurrence.text
        if key != KEY_SEND or self._multiline or self._mode.busy:
            return []
        text = occurrence.text.strip()
        if not text:
            return []
        return self._submit(text)

    @_on.register(Resize)
    def _on_resize(self, occurrence: Resize) -> list[Action]:
        try:
            self._layout = compute_layout(occurrence.width, occurrence.height)
        except LayoutError as exc:
            self._last_error = exc
            return self._exit(1, exc)
        return [Render()]

    @_on.register(Tick)
    def _on_tick(self, occurrence: Tick) -> list[Action]:
        return [Render()] if self._mode.busy else []

    @_on.register(Completed)
    def _on_completed(self, occurrence: Completed) -> list[Action]:
        if not self._is_current(occurrence.turn_id, Mode.WAITING):
            return []
        response = occurrence.response
        if not response.choices:
            return self._fail(EmptyResponseError())
        # Only the first choice is used; any others are dropped.
        choice = response.choices[0]
        self._history.append(choice.message)
        self._mode = Mode.IDLE
        return [
            PersistHistory(self.history),
            TurnEnded(
                self._turn_id,
                message=choice.message,
                finish_reason=choice.finish_reason,
                usage=response.usage,
            ),
            Render(),
        ]

    @_on.register(Delta)
    def _on_delta(self, occurrence: Delta) -> list[Action]:
        if not self._is_current(occurrence.turn_id, Mode.STREAMING):
            return []
        event = occurrence.event
        if not event.choices:
            return self._fail(EmptyResponseError("stream event contained no choices"))
        self._events_seen = True
        choice = event.choices[0]
        if choice.delta.content:
            self._scratch += choice.delta.content
        if choice.finish_reason:
            self._finish_reason = choice.finish_reason
            return self._flush()
        return [AwaitNextEvent(self._turn_id), Render()]

    @_on.register(StreamClosed)
    def _on_stream_closed(self, occurrence: StreamClosed) -> list[Action]:
        if not self._is_current(occurrence.turn_id, Mode.STREAMING):
            return []
        if not self._events_seen:
            return self._fail(EmptyResponseError("stream ended without any events"))
        return self._flush()

    @_on.register(Failure)
    def _on_failure(self, occurrence: Failure) -> list[Action]:
        if occurrence.turn_id != self._turn_id or not self._mode.busy:
            return []
        return self._fail(occurrence.error)

    @_on.register(Interrupt)
    def _on_interrupt(self, occurrence: Interrupt) -> list[Action]:
        return self._interrupt()

    @_on.register(Quit)
    def _on_quit(self, occurrence: Quit) -> list[Action]:
        return self._exit(0)

    # ------------------------------------------------------------------ transitions

    def _is_current(self, turn_id: int, mode: Mode) -> bool:
        return turn_id == self._turn_id and self._mode is mode

    def _submit(self, text: str) -> list[Action]:
        request = build_request(
            self._history,
            text,
            model=self.settings.model,
            system_prompt=self.settings.system_prompt,
            stream=self.settings.stream,
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
        )
        self._history.append(Message(role="user", content=text))
        self._turn_id += 1
        self._pending_input = ""
        self._scratch = ""
        self._finish_reason = None
        self._events_seen = False
        self._last_error = None

        actions: list[Action] = [ClearInput()]
        if self.settings.stream:
            self._mode = Mode.STREAMING
            actions += [StartStream(self._turn_id, request), AwaitNextEvent(self._turn_id)]
        else:
            self._mode = Mode.WAITING
            actions.append(StartCompletion(self._turn_id, request))
        actions.append(Render())
        return actions

    def _flush(self) -> list[Action]:
        message = Message(role="assistant", content=self._scratch)
        self._history.append(message)
        self._scratch = ""
        self._mode = Mode.IDLE
        return [
            PersistHistory(self.history),
            TurnEnded(self._turn_id, message=message, finish_reason=self._finish_reason),
            Render(),
        ]

    def _fail(self, error: BaseException) -> list[Action]:
        # The user message of the failed turn stays in history.
        self._last_error = error
        self._scratch = ""
        self._mode = Mode.IDLE
        return [TurnEnded(self._turn_id, error=error), Render()]

    def _interrupt(self) -> list[Action]:
        if not self._mode.busy:
            return []
        return [CancelTurn(self._turn_id), *self._fail(TurnCancelledError())]

    def _exit(self, code: int, error: BaseException | None = None) -> list[Action]:
        actions: list[Action] = []
        if self._mode.busy:
            # The request itself is abandoned; this only stops the reader at its next line.
            actions.append(CancelTurn(self._turn_id))
            self._mode = Mode.IDLE
            self._scratch = ""
        self._exited = True
        actions.append(Exit(code, error))
        return actions
