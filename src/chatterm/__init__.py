"""chatterm package."""

from __future__ import annotations

import importlib

from . import chat, rest, session, utils

__all__ = ["chat", "rest", "session", "utils"]


def __getattr__(name: str):  # type: ignore[no-untyped-def]
    # Avoid importing `chatterm.cli` at package import time to prevent `-m chatterm.cli`
    # from triggering runpy's "found in sys.modules" RuntimeWarning.
    if name == "cli":
        module = importlib.import_module(f"{__name__}.cli")
        globals()["cli"] = module
        return module
    raise AttributeError(name)
