"""Action execution shared by the Textual app and the headless driver.

The host runs every state transition on one foreground loop. Network calls run on
worker threads that never touch session state: they hand results back through
`post` (single results) or through a per-turn channel that the host reads one item
at a time, only while the session keeps asking for the next event.
"""

from __future__ import annotations

import functools
import logging
import queue
import threading
from typing import IO, Any, Callable

from chatterm.chat.api import ChatClient, CompletionRequest, StreamEvent
from chatterm.chat.render import Mode, error_text, render_transcript
from chatterm.chat.session import (
    AwaitNextEvent,
    CancelTurn,
    ChatSession,
    ClearInput,
    Completed,
    Delta,
    Exit,
    Failure,
    Key,
    KEY_SEND,
    Occurrence,
    PersistHistory,
    Render,
    StartCompletion,
    StartStream,
    StreamClosed,
    TurnEnded,
)
from chatterm.error_classification import error_hint
from chatterm.hooks.jsonl_logger import TurnLogger
from chatterm.session.store import HistoryStore

logger = logging.getLogger(__name__)


class _TurnChannel:
    """Channel handed to `ChatClient.stream`; tags each event with its turn."""

    def __init__(self, turn_id: int, inner: "queue.Queue[Occurrence]") -> None:
        self.turn_id = turn_id
        self.inner = inner

    def put(self, item: StreamEvent) -> None:
        self.inner.put(Delta(self.turn_id, item))


class SessionHost:
    """Carries out the actions a `ChatSession` returns."""

    def __init__(
        self,
        session: ChatSession,
        client: ChatClient,
        *,
        session_id: str,
        store: HistoryStore | None = None,
        turn_logger: TurnLogger | None = None,
    ) -> None:
        self.session = session
        self.client = client
        self.session_id = session_id
        self.store = store or HistoryStore()
        self.turn_logger = turn_logger
        self.exit_code: int | None = None
        self.notice: str | None = None
        self._channels: dict[int, queue.Queue[Occurrence]] = {}
        self._cancels: dict[int, threading.Event] = {}

    # -- hooks for concrete hosts -------------------------------------------

    def post(self, occurrence: Occurrence) -> None:
        """Deliver an occurrence from a worker thread to the foreground loop."""
        raise NotImplementedError

    def spawn(self, target: Callable[..., None], *args: Any, name: str) -> None:
        threading.Thread(target=target, args=args, daemon=True, name=name).start()

    def render(self) -> None:
        raise NotImplementedError

    def clear_input(self) -> None:
        pass

    def exit_host(self, code: int, error: BaseException | None) -> None:
        self.exit_code = code

    # -- foreground loop -----------------------------------------------------

    def dispatch(self, occurrence: Occurrence) -> None:
        for action in self.session.handle(occurrence):
            self.execute(action)

    def error_message(self) -> str | None:
        error = self.session.last_error
        if error is None:
            return self.notice
        return error_text(error, error_hint(error))

    @functools.singledispatchmethod
    def execute(self, action: object) -> None:
        raise TypeError(f"Unsupported action: {type(action).__name__}")

    @execute.register(StartCompletion)
    def _start_completion(self, action: StartCompletion) -> None:
        cancel = threading.Event()
        self._cancels[action.turn_id] = cancel
        self.notice = None
        if self.turn_logger is not None:
            self.turn_logger.turn_started(action)
        self.spawn(self._run_completion, action.turn_id, action.request, name=f"chatterm-turn-{action.turn_id}")

    @execute.register(StartStream)
    def _start_stream(self, action: StartStream) -> None:
        cancel = threading.Event()
        channel: queue.Queue[Occurrence] = queue.Queue()
        self._cancels[action.turn_id] = cancel
        self._channels[action.turn_id] = channel
        self.notice = None
        if self.turn_logger is not None:
            self.turn_logger.turn_started(action)
        self.spawn(
            self._run_stream,
            action.turn_id,
            action.request,
            channel,
            cancel,
            name=f"chatterm-stream-{action.turn_id}",
        )

    @execute.register(AwaitNextEvent)
    def _await_next_event(self, action: AwaitNextEvent) -> None:
        channel = self._channels.get(action.turn_id)
        if channel is None:
            return
        self.spawn(self._wait_event, channel, name=f"chatterm-wait-{action.turn_id}")

    @execute.register(Render)
    def _render(self, action: Render) -> None:
        self.render()

    @execute.register(ClearInput)
    def _clear_input(self, action: ClearInput) -> None:
        self.clear_input()

    @execute.register(PersistHistory)
    def _persist_history(self, action: PersistHistory) -> None:
        try:
            self.store.save(self.session_id, action.messages)
        except OSError as exc:
            logger.warning("failed to save history: %s", exc)
            self.notice = f"failed to save history: {exc}"

    @execute.register(CancelTurn)
    def _cancel_turn(self, action: CancelTurn) -> None:
        cancel = self._cancels.get(action.turn_id)
        if cancel is not None:
            cancel.set()

    @execute.register(TurnEnded)
    def _turn_ended(self, action: TurnEnded) -> None:
        # The channel is dropped with the turn; nothing reads it again.
        self._channels.pop(action.turn_id, None)
        self._cancels.pop(action.turn_id, None)
        if self.turn_logger is not None:
            self.turn_logger.turn_ended(action)

    @execute.register(Exit)
    def _exit(self, action: Exit) -> None:
        self.exit_host(action.code, action.error)

    # -- worker threads --------------------------------------------------------

    def _run_completion(self, turn_id: int, request: CompletionRequest) -> None:
        try:
            response = self.client.complete(request)
        except Exception as exc:
            self.post(Failure(turn_id, exc))
            return
        self.post(Completed(turn_id, response))

    def _run_stream(
        self,
        turn_id: int,
        request: CompletionRequest,
        channel: "queue.Queue[Occurrence]",
        cancel: threading.Event,
    ) -> None:
        # Failures travel through the channel so they stay ordered after earlier deltas.
        try:
            self.client.stream(request, _TurnChannel(turn_id, channel), cancel)
        except Exception as exc:
            channel.put(Failure(turn_id, exc))
            return
        channel.put(StreamClosed(turn_id))

    def _wait_event(self, channel: "queue.Queue[Occurrence]") -> None:
        self.post(channel.get())


class HeadlessHost(SessionHost):
    """
    Synchronous host without a terminal UI.

    Work runs inline on the calling thread and posted occurrences are queued until
    `drain` processes them, so a whole turn completes inside `submit`. Used for
    `--once` and in tests.
    """

    def __init__(self, *args: Any, output: IO[str] | None = None, width: int = 80, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.output = output
        self.width = width
        self.frames: list[str] = []
        self._inbox: queue.Queue[Occurrence] = queue.Queue()
        self._printed = 0
        self._echoed_turn = 0

    def post(self, occurrence: Occurrence) -> None:
        self._inbox.put(occurrence)

    def spawn(self, target: Callable[..., None], *args: Any, name: str) -> None:
        target(*args)

    def drain(self) -> None:
        while self.exit_code is None:
            try:
                occurrence = self._inbox.get_nowait()
            except queue.Empty:
                return
            self.dispatch(occurrence)

    def submit(self, text: str) -> None:
        self.dispatch(Key(KEY_SEND, text))
        self.drain()

    def render(self) -> None:
        session = self.session
        self.frames.append(render_transcript(session.history, session.scratch, session.mode, self.width))
        if self.output is None:
            return
        if session.mode is Mode.STREAMING:
            self._write(session.scratch)
            return
        if session.mode is not Mode.IDLE or session.turn_id == self._echoed_turn:
            return
        history = session.history
        if session.last_error is None and history and history[-1].role == "assistant":
            self._write(history[-1].content)
        if self._printed:
            self.output.write("\n")
            self.output.flush()
        self._printed = 0
        self._echoed_turn = session.turn_id

    def _write(self, text: str) -> None:
        if self.output is None or len(text) <= self._printed:
            return
        self.output.write(text[self._printed :])
        self.output.flush()
        self._printed = len(text)
