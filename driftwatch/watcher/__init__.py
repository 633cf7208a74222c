"""Change detection: debouncing and watch sessions."""

from .debounce import Debouncer, SettledPath
from .session import AnalysisContext, WatchSession, WatchState, discover_files, run_pipeline

__all__ = [
    "AnalysisContext",
    "Debouncer",
    "SettledPath",
    "WatchSession",
    "WatchState",
    "discover_files",
    "run_pipeline",
]
