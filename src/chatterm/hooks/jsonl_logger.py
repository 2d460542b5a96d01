from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path
from typing import Any

from chatterm.chat.session import StartCompletion, StartStream, TurnEnded
from chatterm.error_classification import classify_error
from chatterm.errors import TurnCancelledError
from chatterm.state_paths import logs_dir
from chatterm.utils.text_utils import truncate


def _iso_ts() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime())


class TurnLogger:
    """
    Lightweight JSONL logging of chat turns for debugging and replay.

    Writes one JSON object per line to a session log file in `<state_dir>/logs/`.
    """

    def __init__(self, session_id: str, *, enabled: bool = True, log_dir: Path | None = None) -> None:
        self.enabled = enabled
        self.log_dir = log_dir or logs_dir()
        self.session_id = session_id
        self.max_field_chars = int(os.getenv("CHATTERM_LOG_MAX_FIELD_CHARS", "8000"))

        self._lock = threading.Lock()
        self._turn_t0: dict[int, float] = {}
        self._log_path = self.log_dir / f"{time.strftime('%Y%m%d_%H%M%S')}_{self.session_id}.jsonl"

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _write_append(self, line: str) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")

    def _log(self, event: str, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        payload = dict(payload)
        payload.update({"ts": _iso_ts(), "event": event, "session_id": self.session_id})
        self._write_append(json.dumps(payload, ensure_ascii=False, default=str))

    def turn_started(self, action: StartCompletion | StartStream) -> None:
        self._turn_t0[action.turn_id] = time.time()
        request = action.request
        self._log(
            "turn_start",
            {
                "turn_id": action.turn_id,
                "model": request.model,
                "stream": request.stream,
                "message_count": len(request.messages),
            },
        )

    def turn_ended(self, action: TurnEnded) -> None:
        t0 = self._turn_t0.pop(action.turn_id, None)
        duration_s = round(time.time() - t0, 3) if t0 is not None else None

        if isinstance(action.error, TurnCancelledError):
            self._log("turn_cancelled", {"turn_id": action.turn_id, "duration_s": duration_s})
            return

        if action.error is not None:
            classification = classify_error(action.error)
            self._log(
                "turn_error",
                {
                    "turn_id": action.turn_id,
                    "duration_s": duration_s,
                    "error_type": type(action.error).__name__,
                    "error": truncate(str(action.error), self.max_field_chars),
                    **classification,
                },
            )
            return

        payload: dict[str, Any] = {
            "turn_id": action.turn_id,
            "duration_s": duration_s,
            "finish_reason": action.finish_reason,
            "content_chars": len(action.message.content) if action.message is not None else 0,
        }
        if action.usage is not None:
            payload["usage"] = action.usage.model_dump()
        self._log("turn_complete", payload)
