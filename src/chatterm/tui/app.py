"""Textual front end for `chatterm`."""

from __future__ import annotations

import contextlib
import importlib
import inspect
import sys
from typing import Any, Sequence

from chatterm.chat.api import ChatClient, Message
from chatterm.chat.render import Mode, status_text, welcome_text
from chatterm.chat.session import (
    KEY_HELP,
    KEY_INTERRUPT,
    KEY_MULTILINE,
    KEY_QUIT,
    KEY_SEND,
    ChatSession,
    Key,
    Resize,
    Tick,
)
from chatterm.hooks.jsonl_logger import TurnLogger
from chatterm.session.store import HistoryStore
from chatterm.settings import ChatSettings
from chatterm.tui.host import SessionHost

_SPINNER_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
# Key name used to sync the prompt text without triggering any binding.
_KEY_EDIT = "edit"


class TextualHost(SessionHost):
    """Session host driven by a Textual app; workers post back via `call_from_thread`."""

    def __init__(self, app: Any, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.app = app

    def post(self, occurrence: Any) -> None:
        self.app._call_from_thread_safe(self.dispatch, occurrence)

    def render(self) -> None:
        self.app._refresh_view()

    def clear_input(self) -> None:
        self.app._clear_prompt()

    def exit_host(self, code: int, error: BaseException | None) -> None:
        super().exit_host(code, error)
        self.app._is_shutting_down = True
        self.app.exit(return_code=code, message=str(error) if error is not None else None)


def run_tui(
    settings: ChatSettings,
    *,
    history: Sequence[Message] = (),
    session_id: str,
    client: ChatClient | None = None,
    store: HistoryStore | None = None,
    turn_logger: TurnLogger | None = None,
) -> int:
    """Run the full-screen chat UI if Textual is installed."""
    try:
        textual_app = importlib.import_module("textual.app")
        textual_binding = importlib.import_module("textual.binding")
        textual_containers = importlib.import_module("textual.containers")
        textual_widgets = importlib.import_module("textual.widgets")
    except ImportError:
        print(
            "Textual is required for the chat UI.\n"
            'Install with: pip install "chatterm[tui]"\n'
            'For editable installs in this repo: pip install -e ".[tui]"\n'
            "Use --once to send a single message without the UI.",
            file=sys.stderr,
        )
        return 1

    AppBase = textual_app.App
    Binding = textual_binding.Binding
    VerticalScroll = textual_containers.VerticalScroll
    Header = textual_widgets.Header
    TextArea = textual_widgets.TextArea

    from chatterm.tui.widgets import ErrorLine, HelpLine, MessageBlock, StatusBar, SystemMessage

    class PromptTextArea(TextArea):
        """Prompt editor; Enter sends unless multi-line input is on."""

        _ENTER_KEYS = {"enter", "return", "ctrl+m"}

        def on_text_area_changed(self, event: Any) -> None:
            app = getattr(self, "app", None)
            if app is not None and getattr(app, "host", None) is not None:
                app.host.dispatch(Key(_KEY_EDIT, self.text))

        async def _on_key(self, event: Any) -> None:
            """
            Route Enter to the session before TextArea sees it.

            Textual resolves `_on_key`/`on_key` per class in the MRO, so all key
            handling for this widget lives here.
            """
            key = str(getattr(event, "key", "")).lower()
            app = getattr(self, "app", None)
            host = getattr(app, "host", None)

            if key in self._ENTER_KEYS and host is not None and not host.session.multiline:
                # Do not call super(): TextArea would insert a newline.
                event.stop()
                event.prevent_default()
                host.dispatch(Key(KEY_SEND, self.text))
                return

            handler = getattr(super(), "_on_key", None) or getattr(super(), "on_key", None)
            if handler is None:
                return
            result = handler(event)
            if inspect.isawaitable(result):
                await result

    class ChatTUI(AppBase):
        CSS = """
        Screen {
            layout: vertical;
        }
        #transcript {
            height: 1fr;
        }
        #prompt {
            height: 4;
        }
        """
        BINDINGS = [
            Binding("ctrl+c", "quit", "Quit", priority=True),
            Binding("ctrl+h", "toggle_help", "Help", priority=True),
            Binding("ctrl+l", "toggle_multiline", "Multi-line", priority=True),
            Binding("escape", "interrupt", "Cancel request", priority=True),
        ]

        host: TextualHost | None = None
        _is_shutting_down: bool = False
        _spinner_index: int = 0

        def __init__(self) -> None:
            super().__init__()
            self._message_widgets: list[Any] = []

        def compose(self) -> Any:
            yield Header()
            with VerticalScroll(id="transcript"):
                yield SystemMessage(welcome_text(settings.model), id="welcome")
            yield ErrorLine(id="error_line")
            yield StatusBar(id="status_bar")
            yield PromptTextArea(text="", id="prompt", soft_wrap=True)
            yield HelpLine(id="help_line")

        def on_mount(self) -> None:
            self.title = "chatterm"
            self.sub_title = settings.model
            prompt = self.query_one("#prompt", PromptTextArea)
            if self.host is not None and self.host.session.pending_input:
                prompt.load_text(self.host.session.pending_input)
            prompt.focus()
            self.set_interval(1.0, self._tick)
            self._dispatch(Resize(self.size.width, self.size.height))

        def on_resize(self, event: Any) -> None:
            self._dispatch(Resize(event.size.width, event.size.height))

        def _dispatch(self, occurrence: Any) -> None:
            if self.host is not None and not self._is_shutting_down:
                self.host.dispatch(occurrence)

        def _tick(self) -> None:
            self._spinner_index = (self._spinner_index + 1) % len(_SPINNER_FRAMES)
            self._dispatch(Tick())

        def _call_from_thread_safe(self, callback: Any, *args: Any, **kwargs: Any) -> None:
            if self._is_shutting_down:
                return
            # The app may already be closing; a late worker result is dropped.
            with contextlib.suppress(RuntimeError):
                self.call_from_thread(callback, *args, **kwargs)

        def _clear_prompt(self) -> None:
            self.query_one("#prompt", PromptTextArea).clear()

        def _refresh_view(self) -> None:
            host = self.host
            if host is None:
                return
            session = host.session
            transcript = self.query_one("#transcript", VerticalScroll)
            blocks = session.transcript_blocks()
            changed = False
            for index, block in enumerate(blocks):
                if index < len(self._message_widgets):
                    widget = self._message_widgets[index]
                    if widget.block != block:
                        widget.set_block(block)
                        changed = True
                    continue
                widget = MessageBlock(block)
                self._message_widgets.append(widget)
                transcript.mount(widget)
                changed = True
            # A partial reply that failed or was cancelled leaves the transcript.
            for widget in self._message_widgets[len(blocks) :]:
                widget.remove()
                changed = True
            del self._message_widgets[len(blocks) :]
            self.query_one("#welcome", SystemMessage).display = not blocks

            spinner = _SPINNER_FRAMES[self._spinner_index] if session.mode is not Mode.IDLE else ""
            self.query_one("#status_bar", StatusBar).set_status(
                status_text(
                    session.mode,
                    model=settings.model,
                    context_tokens=session.context_tokens,
                    max_context_length=settings.max_context_length,
                    spinner=spinner,
                )
            )
            self.query_one("#error_line", ErrorLine).set_error(host.error_message())
            self.query_one("#help_line", HelpLine).set_expanded(session.show_help, multiline=session.multiline)
            if changed:
                transcript.scroll_end(animate=False)

        def _prompt_key(self, key: str) -> None:
            text = self.query_one("#prompt", PromptTextArea).text
            self._dispatch(Key(key, text))

        def action_quit(self) -> None:
            self._prompt_key(KEY_QUIT)

        def action_toggle_help(self) -> None:
            self._prompt_key(KEY_HELP)

        def action_toggle_multiline(self) -> None:
            self._prompt_key(KEY_MULTILINE)

        def action_interrupt(self) -> None:
            self._prompt_key(KEY_INTERRUPT)

    app = ChatTUI()
    session = ChatSession(settings, history)
    app.host = TextualHost(
        app,
        session,
        client or ChatClient(settings),
        session_id=session_id,
        store=store,
        turn_logger=turn_logger,
    )
    app.run()
    return int(app.return_code or 0)
