from .store import HistoryStore, expand_history_path, load_history, session_id_for

__all__ = ["HistoryStore", "expand_history_path", "load_history", "session_id_for"]
