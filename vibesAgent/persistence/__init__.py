"""State, task and result storage."""

from .backend import SessionBackends, StateBackend, TaskStore
from .results import FileResultStore, ResultStore
from .snapshot import load_snapshot, save_snapshot
from .state import AgentState

__all__ = [
    "AgentState",
    "FileResultStore",
    "ResultStore",
    "SessionBackends",
    "StateBackend",
    "TaskStore",
    "load_snapshot",
    "save_snapshot",
]
