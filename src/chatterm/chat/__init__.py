"""Chat completion client, conversation state machine and transcript rendering."""

from .api import ChatClient, CompletionRequest, CompletionResponse, Message, StreamEvent, build_request
from .render import Mode
from .session import ChatSession

__all__ = [
    "ChatClient",
    "ChatSession",
    "CompletionRequest",
    "CompletionResponse",
    "Message",
    "Mode",
    "StreamEvent",
    "build_request",
]
