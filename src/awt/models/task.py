"""
Task model for awt.

A task is one unit of agent work: a branch, the base it forked from and,
while active, a dedicated worktree. Identity fields are frozen; only the
lifecycle fields change after creation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..utils.status_codes import InvalidStateTransitionError


class TaskState(str, Enum):
    """Lifecycle states of a task."""

    NEW = "NEW"
    ACTIVE = "ACTIVE"
    HANDOFF_READY = "HANDOFF_READY"
    MERGED = "MERGED"
    ABANDONED = "ABANDONED"


# MERGED and ABANDONED are set by operators, never by the engine itself.
ALLOWED_TRANSITIONS: Dict[TaskState, FrozenSet[TaskState]] = {
    TaskState.NEW: frozenset({TaskState.ACTIVE, TaskState.ABANDONED}),
    TaskState.ACTIVE: frozenset({TaskState.HANDOFF_READY, TaskState.MERGED, TaskState.ABANDONED}),
    TaskState.HANDOFF_READY: frozenset({TaskState.MERGED, TaskState.ABANDONED}),
    TaskState.MERGED: frozenset(),
    TaskState.ABANDONED: frozenset(),
}


def can_transition(current: TaskState, target: TaskState) -> bool:
    """Return True if a task may move from current to target."""
    return current == target or target in ALLOWED_TRANSITIONS[current]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class Task(BaseModel):
    """Persistent record of a task."""

    model_config = ConfigDict(validate_assignment=True, use_enum_values=False)

    id: str = Field(..., min_length=1, frozen=True, description="Unique task identifier")
    agent: str = Field(..., min_length=1, description="Agent that owns the task")
    title: str = Field(..., min_length=1, description="Human-readable title")
    branch: str = Field(..., min_length=1, frozen=True, description="Branch holding the task's work")
    base: str = Field(..., min_length=1, frozen=True, description="Branch the task forked from")
    created_at: str = Field(default_factory=utc_now_iso, min_length=1, description="ISO-8601 creation time")
    state: TaskState = Field(..., description="Lifecycle state")
    worktree_path: str = Field(default="", description="Worktree location, empty when none exists")
    last_commit: Optional[str] = Field(default=None, description="Latest commit recorded by awt")
    pr_url: Optional[str] = Field(default=None, description="Review request URL")

    def transition_to(self, target: TaskState) -> None:
        """Move the task to a new state, rejecting illegal transitions."""
        target = TaskState(target)
        if not can_transition(self.state, target):
            raise InvalidStateTransitionError(
                f"task '{self.id}' cannot move from {self.state.value} to {target.value}"
            )
        self.state = target

    @property
    def has_worktree(self) -> bool:
        return bool(self.worktree_path)

    def to_record(self) -> dict:
        """Serialize to the on-disk record layout."""
        return self.model_dump(mode="json", exclude_none=True)
