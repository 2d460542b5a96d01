"""Pure transcript rendering and layout math.

Everything here is a function of its arguments: rendering the same
`(history, scratch, mode)` twice yields the same output.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from chatterm.chat.api import Message
from chatterm.errors import LayoutError

USER_NAME = "You"
ASSISTANT_NAME = "Assistant"

INPUT_HEIGHT = 4
# app margin (2 columns each side)
HORIZONTAL_FRAME = 4
# header, status bar, input border, help line, spacing
CHROME_ROWS = 8


class Mode(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    STREAMING = "streaming"

    @property
    def busy(self) -> bool:
        return self is not Mode.IDLE


@dataclass(frozen=True)
class Layout:
    width: int
    height: int
    transcript_width: int
    transcript_height: int
    input_height: int = INPUT_HEIGHT

    @property
    def wrap_width(self) -> int:
        # Leave room for the transcript border and scrollbar.
        return max(1, self.transcript_width - 2)


DEFAULT_LAYOUT = Layout(width=80, height=24, transcript_width=76, transcript_height=12)


def compute_layout(width: int, height: int, *, input_height: int = INPUT_HEIGHT) -> Layout:
    transcript_width = int(width) - HORIZONTAL_FRAME
    transcript_height = int(height) - (CHROME_ROWS + input_height)
    if transcript_height <= 0 or transcript_width <= 0:
        raise LayoutError()
    return Layout(
        width=int(width),
        height=int(height),
        transcript_width=transcript_width,
        transcript_height=transcript_height,
        input_height=input_height,
    )


@dataclass(frozen=True)
class TranscriptBlock:
    role: str
    author: str
    content: str
    partial: bool = False


def _author(role: str) -> str | None:
    if role == "user":
        return USER_NAME
    if role == "assistant":
        return ASSISTANT_NAME
    return None


def transcript_blocks(history: Sequence[Message], scratch: str, mode: Mode) -> tuple[TranscriptBlock, ...]:
    """One block per displayed message, plus the in-progress reply while streaming."""
    blocks: list[TranscriptBlock] = []
    for message in history:
        author = _author(message.role)
        if author is None:
            # System prompts are sent, not shown.
            continue
        blocks.append(TranscriptBlock(role=message.role, author=author, content=message.content))
    if mode is Mode.STREAMING and scratch:
        blocks.append(TranscriptBlock(role="assistant", author=ASSISTANT_NAME, content=scratch, partial=True))
    return tuple(blocks)


def _wrap(content: str, width: int) -> str:
    lines: list[str] = []
    for raw_line in content.splitlines() or [""]:
        if not raw_line.strip():
            lines.append("")
            continue
        lines.extend(
            textwrap.wrap(raw_line, width=width, replace_whitespace=False, drop_whitespace=True)
            or [raw_line]
        )
    return "\n".join(lines)


def render_block(block: TranscriptBlock, width: int) -> str:
    return f"{block.author}\n{_wrap(block.content, width)}"


def render_transcript(history: Sequence[Message], scratch: str, mode: Mode, width: int = 80) -> str:
    return "\n\n".join(render_block(block, width) for block in transcript_blocks(history, scratch, mode))


def welcome_text(model: str) -> str:
    return f"Terminal chat\n\nModel: {model}\n\nType a message and press Enter to send."


def status_text(mode: Mode, *, model: str, context_tokens: int, max_context_length: int, spinner: str = "") -> str:
    parts = [model, f"ctx {context_tokens}/{max_context_length}"]
    if mode is Mode.WAITING:
        parts.insert(0, f"{spinner} sending...".strip())
    elif mode is Mode.STREAMING:
        parts.insert(0, f"{spinner} receiving...".strip())
    return " | ".join(parts)


def error_text(error: BaseException, hint: str = "") -> str:
    text = f"error: {error}"
    if hint:
        text += f" ({hint})"
    return text
