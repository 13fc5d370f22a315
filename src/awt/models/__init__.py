"""
Task models for awt.
"""

from .task import ALLOWED_TRANSITIONS, Task, TaskState, can_transition
from .task_store import TaskStore, atomic_write_json

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Task",
    "TaskState",
    "TaskStore",
    "atomic_write_json",
    "can_transition",
]
