"""Error taxonomy for chat turns.

Every failure of a turn is delivered to the session state machine as a value and shown
inline; only `LayoutError` (and `HistoryFileError` at startup) ends the program.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all chatterm errors."""


class AuthError(ChatError):
    def __init__(self, message: str = "API key is not set. Set OPENAI_API_KEY or pass --openai-api-key.") -> None:
        super().__init__(message)


class TransportError(ChatError):
    """Connection, DNS, or timeout failure talking to the API."""


class HTTPError(ChatError):
    def __init__(self, status: int, body: str) -> None:
        self.status = int(status)
        self.body = body
        super().__init__(f"status code: {self.status}, body: {body}")


class DecodeError(ChatError):
    """Malformed JSON in a response body or stream event."""


class EmptyResponseError(ChatError):
    def __init__(self, message: str = "response contained no choices") -> None:
        super().__init__(message)


class LayoutError(ChatError):
    def __init__(self, message: str = "terminal size too small") -> None:
        super().__init__(message)


class TurnCancelledError(ChatError):
    def __init__(self, message: str = "request cancelled") -> None:
        super().__init__(message)


class HistoryFileError(ChatError):
    """History file is missing, unreadable, or not a JSON array of messages."""
