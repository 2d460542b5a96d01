"""Custom Textual widgets for the conversation transcript."""

from __future__ import annotations

from rich.console import Group
from rich.markdown import Markdown as RichMarkdown
from rich.text import Text
from textual.widgets import Static

from chatterm.chat.render import TranscriptBlock


class MessageBlock(Static):
    """One transcript entry: an author label followed by the message rendered as markdown."""

    DEFAULT_CSS = """
    MessageBlock {
        padding: 0 1;
        margin: 1 0 0 0;
    }
    MessageBlock.-user {
        background: $surface;
    }
    """

    def __init__(self, block: TranscriptBlock, **kwargs: object) -> None:
        super().__init__("", **kwargs)
        self.block = block
        self.add_class(f"-{block.role}")
        self._render_block()

    def _render_block(self) -> None:
        style = "bold magenta" if self.block.role == "user" else "bold cyan"
        label = Text(f" {self.block.author} ", style=f"{style} reverse")
        self.update(Group(label, RichMarkdown(self.block.content)))

    def set_block(self, block: TranscriptBlock) -> None:
        if block == self.block:
            return
        self.remove_class(f"-{self.block.role}")
        self.block = block
        self.add_class(f"-{block.role}")
        self._render_block()


class SystemMessage(Static):
    """TUI-internal messages (welcome, hints, status)."""

    DEFAULT_CSS = """
    SystemMessage {
        color: $text-muted;
        padding: 0 1;
    }
    """

    def __init__(self, text: str, **kwargs: object) -> None:
        super().__init__(Text(text), **kwargs)


class StatusBar(Static):
    """One-line bar showing session mode, model and approximate context size."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface;
        color: $text-muted;
    }
    """

    def __init__(self, **kwargs: object) -> None:
        super().__init__("", **kwargs)

    def set_status(self, text: str) -> None:
        self.update(Text(text))


class ErrorLine(Static):
    DEFAULT_CSS = """
    ErrorLine {
        height: auto;
        padding: 0 1;
        color: $error;
        display: none;
    }
    """

    def __init__(self, **kwargs: object) -> None:
        super().__init__("", **kwargs)

    def set_error(self, text: str | None) -> None:
        if not text:
            self.update("")
            self.styles.display = "none"
            return
        self.update(Text(text))
        self.styles.display = "block"


class HelpLine(Static):
    """Key hints; the full list is toggled with ctrl+h."""

    DEFAULT_CSS = """
    HelpLine {
        height: auto;
        padding: 0 1;
        color: $text-muted;
    }
    """

    SHORT_HELP = "ctrl+h help • enter send • ctrl+c quit"
    FULL_HELP = "\n".join(
        [
            "ctrl+h  toggle help",
            "enter   send (adds a newline in multi-line mode)",
            "ctrl+l  toggle multi-line input",
            "esc     cancel the request in flight",
            "ctrl+c  quit",
        ]
    )

    def __init__(self, **kwargs: object) -> None:
        super().__init__(self.SHORT_HELP, **kwargs)

    def set_expanded(self, expanded: bool, *, multiline: bool = False) -> None:
        text = self.FULL_HELP if expanded else self.SHORT_HELP
        if multiline:
            text += "\n[multi-line]"
        self.update(Text(text))
