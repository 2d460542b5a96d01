from __future__ import annotations

import os
from pathlib import Path

_TRUTHY_VALUES = {"1", "true", "t", "yes", "y", "on", "enabled", "enable"}


def truthy(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY_VALUES


def int_env(name: str, default: int | None) -> int | None:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def float_env(name: str, default: float | None) -> float | None:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def load_env_file(path: str | Path = ".env", *, override: bool = False) -> bool:
    """
    Load `KEY=VALUE` lines from a dotenv file into `os.environ`.

    Blank lines and `#` comments are skipped, a leading `export ` is allowed, and one
    pair of matching quotes around the value is removed. Variables that are already
    set win unless `override=True`.

    Returns:
        True if the file exists and was read.
    """
    env_path = Path(path)
    if not env_path.is_file():
        return False

    for raw_line in env_path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        if override or key not in os.environ:
            os.environ[key] = _unquote(value.strip())

    return True
