"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .operation_state import AppState, ControlState, Operation, controls_for
from .session_store import SessionSnapshot, load_snapshot, save_snapshot
from .task_orchestrator import CalendarClientProtocol, Rejected, Started, TaskOrchestrator

__all__ = [
    "AppState",
    "CalendarClientProtocol",
    "ControlState",
    "Operation",
    "Rejected",
    "SessionSnapshot",
    "Started",
    "TaskOrchestrator",
    "controls_for",
    "load_snapshot",
    "save_snapshot",
]
