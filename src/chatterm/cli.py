"""Command-line entry point for `chatterm`."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import IO, Sequence

from chatterm.chat.api import ChatClient, Message
from chatterm.chat.session import ChatSession
from chatterm.errors import HistoryFileError
from chatterm.hooks.jsonl_logger import TurnLogger
from chatterm.session.store import HistoryStore, load_history, session_id_for
from chatterm.settings import ChatSettings, load_settings, positive_or_none
from chatterm.state_paths import logs_dir
from chatterm.tui.host import HeadlessHost
from chatterm.utils.env_utils import load_env_file

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatterm", description="Chat with an OpenAI-compatible model in the terminal")
    parser.add_argument("--model", default=None, help="Model id (overrides CHATTERM_MODEL)")
    parser.add_argument(
        "--system",
        dest="system_prompt",
        default=None,
        help="System prompt, sent only at the start of a new conversation (overrides CHATTERM_SYSTEM)",
    )
    parser.add_argument(
        "--history",
        dest="history_path",
        default=None,
        help="Resume the conversation saved in this JSON file; later turns keep writing to it",
    )
    parser.add_argument(
        "--max-context-length",
        type=int,
        default=None,
        help="Context size shown in the status bar (overrides CHATTERM_MAX_CONTEXT_LENGTH)",
    )
    parser.add_argument(
        "--stream",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Stream replies as they are generated (overrides CHATTERM_STREAM)",
    )
    parser.add_argument("--base-url", default=None, help="API base URL (overrides OPENAI_BASE_URL)")
    parser.add_argument("--openai-api-key", dest="api_key", default=None, help="API key (overrides OPENAI_API_KEY)")
    parser.add_argument("-m", "--message", default=None, help="Initial message; read from stdin when piped")
    parser.add_argument(
        "--timeout",
        dest="timeout_s",
        type=float,
        default=None,
        help="Timeout in seconds for non-streaming requests (overrides CHATTERM_TIMEOUT_S)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Write debug logs to <state_dir>/logs/debug.log",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Send the message once without the UI, print the reply and exit",
    )
    parser.add_argument(
        "--list-history",
        action="store_true",
        help="List saved conversations and exit",
    )
    return parser


def _configure_debug_logging() -> None:
    log_dir = logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_dir / "debug.log"),
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_piped_message(stdin: IO[str]) -> str | None:
    if stdin is None or stdin.isatty():
        return None
    text = stdin.read().strip()
    return text or None


def _print_history_list(store: HistoryStore) -> None:
    entries = store.list()
    if not entries:
        print("No saved conversations.")
        return
    for entry in entries:
        print(f"{entry['id']}  {entry['updated_at']}  {entry['path']}")


def run_once(
    settings: ChatSettings,
    *,
    history: Sequence[Message],
    session_id: str,
    client: ChatClient | None = None,
    store: HistoryStore | None = None,
    turn_logger: TurnLogger | None = None,
    output: IO[str] | None = None,
) -> int:
    """Send `settings.message` as one turn, print the reply and return an exit code."""
    message = (settings.message or "").strip()
    if not message:
        print("error: --once needs --message or text piped on stdin", file=sys.stderr)
        return 1

    host = HeadlessHost(
        ChatSession(settings, history),
        client or ChatClient(settings),
        session_id=session_id,
        store=store,
        turn_logger=turn_logger,
        output=output if output is not None else sys.stdout,
    )
    host.submit(message)
    error = host.error_message()
    if error:
        print(error, file=sys.stderr)
    return 1 if host.session.last_error is not None else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Load .env early (useful for OPENAI_API_KEY and similar local dev settings)
    load_env_file()
    if args.debug:
        _configure_debug_logging()

    if args.list_history:
        _print_history_list(HistoryStore())
        return 0

    message = args.message if args.message is not None else _read_piped_message(sys.stdin)
    settings = load_settings().with_overrides(
        model=args.model,
        system_prompt=args.system_prompt,
        history_path=args.history_path,
        max_context_length=args.max_context_length,
        stream=args.stream,
        base_url=args.base_url,
        api_key=args.api_key,
        message=message,
        timeout_s=positive_or_none(args.timeout_s),
    )

    history: list[Message] = []
    if settings.history_path:
        try:
            history = load_history(settings.history_path)
        except HistoryFileError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
    session_id = session_id_for(settings.history_path)
    logger.debug("session %s: model=%s stream=%s history=%d", session_id, settings.model, settings.stream, len(history))
    turn_logger = TurnLogger(session_id, enabled=settings.log_events)

    try:
        if args.once:
            return run_once(settings, history=history, session_id=session_id, turn_logger=turn_logger)
        from chatterm.tui.app import run_tui

        return run_tui(settings, history=history, session_id=session_id, turn_logger=turn_logger)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
