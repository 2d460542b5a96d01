from .jsonl_logger import TurnLogger

__all__ = ["TurnLogger"]
