"""
Stable exit codes and the error hierarchy for awt.

Every failure the lifecycle engine reports is an ``AwtError`` carrying an
``ExitCode``, a one-line message and an optional hint telling the operator
what to do next. Exit code values are part of the public contract and must
not be renumbered.
"""

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Process exit codes with a stable meaning."""

    OK = 0
    GENERAL = 1

    # Environment
    REPO_NOT_FOUND = 10
    GIT_TOO_OLD = 11

    # Branch / worktree preconditions
    BRANCH_EXISTS = 20
    BRANCH_CHECKED_OUT_ELSEWHERE = 21
    WORKTREE_EXISTS = 22
    WORKTREE_NOT_FOUND = 23
    DETACH_FAILED = 24
    REMOVE_FAILED = 25
    UNSAFE_PATH = 26

    # Backend conflicts
    SYNC_CONFLICTS = 30
    PUSH_REJECTED = 31

    # Contention
    LOCK_TIMEOUT = 40
    LOCK_HELD = 41

    # External tools
    TOOL_MISSING = 50

    # Task identity and records
    INVALID_TASK_ID = 60
    CASE_ONLY_COLLISION = 61
    TASK_CORRUPT = 62
    INVALID_INPUT = 63
    INVALID_STATE = 64


class AwtError(Exception):
    """Base class for every error awt reports to its caller."""

    code: ExitCode = ExitCode.GENERAL
    default_hint: str = ""
    retryable: bool = False

    def __init__(self, message: str, hint: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.hint = self.default_hint if hint is None else hint
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class RepoNotFoundError(AwtError):
    code = ExitCode.REPO_NOT_FOUND
    default_hint = "Run this command from inside a git repository or pass --repo."


class GitTooOldError(AwtError):
    code = ExitCode.GIT_TOO_OLD
    default_hint = "Upgrade git to at least 2.33."


class BranchExistsError(AwtError):
    code = ExitCode.BRANCH_EXISTS
    default_hint = "Use 'awt task adopt' to take over an existing branch."


class BranchCheckedOutElsewhereError(AwtError):
    code = ExitCode.BRANCH_CHECKED_OUT_ELSEWHERE
    default_hint = "Run 'awt task unlock' to detach the branch from other worktrees."


class WorktreeExistsError(AwtError):
    code = ExitCode.WORKTREE_EXISTS
    default_hint = "Choose a different path or remove the existing worktree."


class WorktreeNotFoundError(AwtError):
    code = ExitCode.WORKTREE_NOT_FOUND
    default_hint = "Run 'awt task checkout' to create a worktree for the task."


class DetachFailedError(AwtError):
    code = ExitCode.DETACH_FAILED
    default_hint = "Check the worktree for an in-progress rebase or merge."


class RemoveFailedError(AwtError):
    code = ExitCode.REMOVE_FAILED
    default_hint = "Remove the worktree manually with 'git worktree remove --force <path>'."


class UnsafePathError(AwtError):
    code = ExitCode.UNSAFE_PATH
    default_hint = "Pick a worktree path outside the repository's .git directory."


class SyncConflictError(AwtError):
    code = ExitCode.SYNC_CONFLICTS
    default_hint = "Resolve the conflicts in the worktree, then run the command again."


class PushRejectedError(AwtError):
    code = ExitCode.PUSH_REJECTED
    default_hint = "The remote may have been updated. Run 'awt task sync' and try again."
    retryable = True


class LockTimeoutError(AwtError):
    code = ExitCode.LOCK_TIMEOUT
    default_hint = "Another awt process is working on this. Wait and retry, or run 'awt prune' to clear stale locks."
    retryable = True

    def __init__(self, message: str, lock_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.lock_name = lock_name


class LockHeldError(AwtError):
    code = ExitCode.LOCK_HELD
    default_hint = "Another awt process holds this lock. Retry later."
    retryable = True

    def __init__(self, message: str, lock_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.lock_name = lock_name


class ToolMissingError(AwtError):
    code = ExitCode.TOOL_MISSING
    default_hint = "Install the GitHub CLI (gh) or GitLab CLI (glab) to open review requests."


class InvalidTaskIDError(AwtError):
    code = ExitCode.INVALID_TASK_ID
    default_hint = "Task IDs may not contain path separators, whitespace or shell metacharacters."


class TaskNotFoundError(InvalidTaskIDError):
    default_hint = "Run 'awt list' to see known tasks."


class CaseOnlyCollisionError(AwtError):
    code = ExitCode.CASE_ONLY_COLLISION
    default_hint = (
        "macOS and Windows filesystems are usually case-insensitive, so names "
        "differing only in case collide. Choose a different name."
    )


class TaskValidationError(AwtError):
    code = ExitCode.TASK_CORRUPT
    default_hint = "Inspect or delete the task record under <git-common-dir>/awt/tasks."


class InvalidInputError(AwtError):
    code = ExitCode.INVALID_INPUT


class InvalidStateTransitionError(AwtError):
    code = ExitCode.INVALID_STATE


class GitOperationError(AwtError):
    code = ExitCode.GENERAL


def create_lock_timeout_error(name: str, timeout: float) -> LockTimeoutError:
    """Create a timeout error naming the contended lock."""
    return LockTimeoutError(f"timed out after {timeout:g}s waiting for lock '{name}'", lock_name=name)


def create_lock_held_error(name: str) -> LockHeldError:
    """Create an error for a lock that is held by someone else."""
    return LockHeldError(f"lock '{name}' is held by another process", lock_name=name)


def create_task_not_found_error(task_id: str) -> TaskNotFoundError:
    """Create a standardized not found error for a task."""
    return TaskNotFoundError(f"task '{task_id}' not found")


def create_invalid_task_id_error(task_id: str) -> InvalidTaskIDError:
    """Create a standardized invalid task ID error."""
    return InvalidTaskIDError(f"invalid task ID: {task_id!r}")


def create_git_error(action: str, detail: str) -> GitOperationError:
    """Create a generic backend failure error."""
    detail = detail.strip()
    return GitOperationError(f"git {action} failed: {detail}" if detail else f"git {action} failed")


def exit_code_for(error: BaseException) -> int:
    """Map any exception to the process exit code it should produce."""
    if isinstance(error, AwtError):
        return int(error.code)
    return int(ExitCode.GENERAL)
