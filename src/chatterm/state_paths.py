from __future__ import annotations

import os
from pathlib import Path


def state_dir(*, cwd: Path | None = None) -> Path:
    """
    Return the base directory for chatterm runtime state (chat history snapshots, logs).

    Default: `~/.config/chatterm`
    Override: `CHATTERM_STATE_DIR`

    Notes:
    - If CHATTERM_STATE_DIR is relative, it is interpreted relative to `cwd` (or Path.cwd()).
    - This does not create directories; callers should mkdir as needed.
    """
    raw = os.getenv("CHATTERM_STATE_DIR")
    if isinstance(raw, str) and raw.strip():
        p = Path(raw.strip()).expanduser()
        if not p.is_absolute():
            p = ((cwd or Path.cwd()).expanduser().resolve() / p).expanduser()
        return p.resolve()

    return Path.home() / ".config" / "chatterm"


def chat_dir(*, cwd: Path | None = None) -> Path:
    return state_dir(cwd=cwd) / "chat"


def logs_dir(*, cwd: Path | None = None) -> Path:
    return state_dir(cwd=cwd) / "logs"
