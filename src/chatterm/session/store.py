from __future__ import annotations

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Sequence

from pydantic import TypeAdapter, ValidationError

from chatterm.chat.api import Message
from chatterm.errors import HistoryFileError
from chatterm.state_paths import chat_dir as _default_chat_dir

_SESSION_ID_FORMAT = "%Y-%m-%d_%H-%M-%S"
_MESSAGES = TypeAdapter(list[Message])


def expand_history_path(path: str | Path) -> Path:
    """Expand a leading `~/` to the home directory."""
    return Path(path).expanduser()


def session_id_for(history_path: str | Path | None = None, *, now: float | None = None) -> str:
    """
    Session id used to name the snapshot file.

    A resumed conversation keeps the stem of the file it was loaded from, so later turns
    overwrite that file instead of forking a new one.
    """
    if history_path:
        stem = Path(str(history_path)).stem
        if stem:
            return stem
    return time.strftime(_SESSION_ID_FORMAT, time.localtime(now))


def load_history(path: str | Path) -> list[Message]:
    history_path = expand_history_path(path)
    try:
        raw = history_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise HistoryFileError(f"cannot read history file {history_path}: {exc}") from exc
    try:
        return _MESSAGES.validate_json(raw)
    except ValidationError as exc:
        raise HistoryFileError(f"invalid history file {history_path}: {exc}") from exc


def dump_history(messages: Sequence[Message]) -> str:
    return json.dumps([m.model_dump() for m in messages], ensure_ascii=False, indent=2) + "\n"


class HistoryStore:
    """
    Conversation snapshots under `<state_dir>/chat/<session_id>.json`.

    Default state dir is `~/.config/chatterm`; override via `CHATTERM_STATE_DIR`.
    Each save rewrites the whole conversation as a JSON array of `{role, content}`.
    """

    def __init__(self, root_dir: Path | None = None) -> None:
        self.root_dir = root_dir or _default_chat_dir()

    def path_for(self, session_id: str) -> Path:
        sid = (session_id or "").strip()
        if not sid:
            raise ValueError("session_id is required")
        return self.root_dir / f"{sid}.json"

    def save(self, session_id: str, messages: Sequence[Message]) -> Path:
        path = self.path_for(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(dump_history(messages))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def list(self, *, limit: int = 50) -> list[dict[str, Any]]:
        if not self.root_dir.exists():
            return []
        entries: list[dict[str, Any]] = []
        for child in self.root_dir.glob("*.json"):
            try:
                stat = child.stat()
            except OSError:
                continue
            entries.append(
                {
                    "id": child.stem,
                    "path": str(child),
                    "updated_at": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(stat.st_mtime)),
                }
            )
        entries.sort(key=lambda item: str(item["updated_at"]), reverse=True)
        return entries[: max(0, int(limit))]
