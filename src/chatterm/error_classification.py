from __future__ import annotations

from typing import Any

from chatterm.errors import AuthError, HTTPError, TransportError, TurnCancelledError

ERROR_CATEGORY_TRANSIENT = "transient"
ERROR_CATEGORY_AUTH_ERROR = "auth_error"
ERROR_CATEGORY_CANCELLED = "cancelled"
ERROR_CATEGORY_FATAL = "fatal"

_TRANSIENT_MARKERS = (
    "rate limit",
    "rate_limit_exceeded",
    "timeout",
    "timed out",
    "temporarily unavailable",
    "try again",
    "service unavailable",
    "overloaded",
    "connection refused",
    "connection reset",
)

_AUTH_MARKERS = (
    "invalid api key",
    "incorrect api key",
    "unauthorized",
    "authentication failed",
    "forbidden",
    "expired token",
)

_TRANSIENT_STATUSES = {408, 409, 429, 500, 502, 503, 504}
_AUTH_STATUSES = {401, 403}

_HINTS = {
    ERROR_CATEGORY_TRANSIENT: "temporary failure, resend to retry",
    ERROR_CATEGORY_AUTH_ERROR: "check the API key",
    ERROR_CATEGORY_CANCELLED: "",
    ERROR_CATEGORY_FATAL: "",
}


def classify_error_message(message: Any) -> str:
    lowered = str(message or "").strip().lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return ERROR_CATEGORY_AUTH_ERROR
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return ERROR_CATEGORY_TRANSIENT
    return ERROR_CATEGORY_FATAL


def classify_error(error: BaseException) -> dict[str, Any]:
    """
    Classify a failed turn for display and logging.

    `retryable` is advisory: nothing in chatterm retries on its own, the user resends.
    """
    if isinstance(error, TurnCancelledError):
        category = ERROR_CATEGORY_CANCELLED
    elif isinstance(error, AuthError):
        category = ERROR_CATEGORY_AUTH_ERROR
    elif isinstance(error, TransportError):
        category = ERROR_CATEGORY_TRANSIENT
    elif isinstance(error, HTTPError):
        if error.status in _AUTH_STATUSES:
            category = ERROR_CATEGORY_AUTH_ERROR
        elif error.status in _TRANSIENT_STATUSES:
            category = ERROR_CATEGORY_TRANSIENT
        else:
            category = classify_error_message(error.body)
    else:
        category = classify_error_message(error)

    return {
        "category": category,
        "retryable": category == ERROR_CATEGORY_TRANSIENT,
    }


def error_hint(error: BaseException) -> str:
    return _HINTS[classify_error(error)["category"]]
