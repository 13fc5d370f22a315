"""
Handoff: turn an ACTIVE task into one that is ready for review.

A handoff commits outstanding work, syncs the branch with its base, pushes
it, optionally opens a review request, detaches HEAD so the branch is free
to be checked out elsewhere, and retires the worktree. The task is marked
HANDOFF_READY only after every step has succeeded.

Each step checks whether its effect is already present and skips itself if
so, and each step saves its partial result to the task record before the
next one runs. A handoff interrupted at any point can therefore simply be
run again.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from .git_tool import CommitOutcome, PushOutcome, SyncOutcome
from .lifecycle import TaskService, default_commit_message
from .models import Task, TaskState
from .review import ReviewRequestError, ReviewRequestService, select_review_service, strip_remote_prefix
from .safety import is_path_inside, is_safe_to_remove, validate_commit_message
from .utils.status_codes import (
    DetachFailedError,
    InvalidInputError,
    InvalidStateTransitionError,
    PushRejectedError,
    RemoveFailedError,
    ToolMissingError,
)


class HandoffStep(str, Enum):
    COMMIT = "commit"
    SYNC = "sync"
    PUSH = "push"
    REVIEW = "review"
    DETACH = "detach"
    RETIRE = "retire"


class StepOutcome(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"
    NOOP = "noop"
    WARNING = "warning"


@dataclass
class HandoffOptions:
    """What a handoff should do. None means "use the configured default"."""

    commit: bool = True
    message: Optional[str] = None
    sync: bool = True
    fetch: bool = True
    merge: Optional[bool] = None
    push: Optional[bool] = None
    create_pr: Optional[bool] = None
    pr_title: Optional[str] = None
    pr_body: Optional[str] = None
    keep_worktree: bool = False
    force_remove: bool = False


@dataclass
class HandoffResult:
    task_id: str
    branch: str
    state: TaskState
    pushed: bool = False
    pr_url: Optional[str] = None
    worktree_kept: bool = False
    already_complete: bool = False
    steps: List[Tuple[HandoffStep, StepOutcome]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record(self, step: HandoffStep, outcome: StepOutcome) -> None:
        self.steps.append((step, outcome))

    def outcome_of(self, step: HandoffStep) -> Optional[StepOutcome]:
        for recorded, outcome in self.steps:
            if recorded == step:
                return outcome
        return None

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "branch": self.branch,
            "state": self.state.value,
            "pushed": self.pushed,
            "pr_url": self.pr_url,
            "worktree_kept": self.worktree_kept,
            "already_complete": self.already_complete,
            "steps": [{"step": s.value, "outcome": o.value} for s, o in self.steps],
            "warnings": list(self.warnings),
        }


def default_review_body(task: Task) -> str:
    return (
        f"Task ID: {task.id}\n"
        f"Agent: {task.agent}\n"
        f"Branch: {task.branch}\n"
        f"Base: {task.base}\n"
    )


class HandoffOrchestrator:
    """Runs the handoff sequence for one task at a time."""

    def __init__(self, service: TaskService, review_service: Optional[ReviewRequestService] = None):
        self.service = service
        self.review_service = review_service

    @property
    def git(self):
        return self.service.git

    def _save(self, task: Task) -> None:
        self.service.store.save(task)

    def run(self, task_id: str, options: Optional[HandoffOptions] = None) -> HandoffResult:
        """Hand off a task. Safe to re-run after any failure.

        Raises:
            InvalidStateTransitionError: the task is not ACTIVE (or already HANDOFF_READY)
            SyncConflictError: the branch conflicts with its base
            PushRejectedError: the remote rejected the push
            DetachFailedError, RemoveFailedError: the worktree could not be released
        """
        options = options or HandoffOptions()
        settings = self.service.settings
        push = settings.auto_push if options.push is None else options.push
        create_pr = settings.auto_pr if options.create_pr is None else options.create_pr
        if create_pr and not push:
            if options.create_pr:
                raise InvalidInputError("opening a review request requires pushing the branch")
            create_pr = False

        with self.service.locks.acquire_task(task_id):
            task = self.service.store.load(task_id)
            result = HandoffResult(task_id=task.id, branch=task.branch, state=task.state, pr_url=task.pr_url)

            if task.state == TaskState.HANDOFF_READY:
                result.already_complete = True
                logger.info("Task {} is already handed off", task_id)
                return result
            if task.state != TaskState.ACTIVE:
                raise InvalidStateTransitionError(
                    f"task '{task_id}' is {task.state.value}; only ACTIVE tasks can be handed off"
                )

            worktree = Path(task.worktree_path) if task.worktree_path and Path(task.worktree_path).is_dir() else None
            detached = worktree is not None and self.git.is_head_detached(cwd=worktree)

            self._commit(task, worktree, detached, options, result)
            self._sync(task, worktree, detached, options, result)
            self._push(task, worktree, push, result)
            self._review(task, worktree, create_pr, options, result)
            self._detach(task, worktree, result)
            self._retire(task, worktree, options, result)

            task.transition_to(TaskState.HANDOFF_READY)
            self._save(task)
            result.state = task.state
            result.pr_url = task.pr_url

        logger.bind(task_id=task_id).info("Task {} is ready for handoff", task_id)
        return result

    def _commit(self, task: Task, worktree: Optional[Path], detached: bool, options: HandoffOptions, result: HandoffResult) -> None:
        if not options.commit or worktree is None or detached:
            result.record(HandoffStep.COMMIT, StepOutcome.SKIPPED)
            return
        if self.git.get_status(cwd=worktree).is_clean:
            result.record(HandoffStep.COMMIT, StepOutcome.NOOP)
            return

        message = options.message or default_commit_message(task)
        ok, reason = validate_commit_message(message)
        if not ok:
            raise InvalidInputError(reason)
        outcome = self.git.commit(message, stage_all=True, cwd=worktree)
        if outcome is CommitOutcome.NOTHING_TO_COMMIT:
            result.record(HandoffStep.COMMIT, StepOutcome.NOOP)
            return
        task.last_commit = self.git.current_commit(cwd=worktree)
        self._save(task)
        result.record(HandoffStep.COMMIT, StepOutcome.DONE)

    def _sync(self, task: Task, worktree: Optional[Path], detached: bool, options: HandoffOptions, result: HandoffResult) -> None:
        if not options.sync or worktree is None or detached:
            result.record(HandoffStep.SYNC, StepOutcome.SKIPPED)
            return
        if options.fetch:
            warning = self.service.fetch_remote(cwd=worktree)
            if warning:
                result.warnings.append(warning)

        outcome = self.service.sync_worktree(task, worktree, use_merge=options.merge)
        task.last_commit = self.git.current_commit(cwd=worktree)
        self._save(task)
        result.record(HandoffStep.SYNC, StepOutcome.NOOP if outcome is SyncOutcome.UP_TO_DATE else StepOutcome.DONE)

    def _push(self, task: Task, worktree: Optional[Path], push: bool, result: HandoffResult) -> None:
        if not push:
            result.record(HandoffStep.PUSH, StepOutcome.SKIPPED)
            return
        remote = self.service.remote
        outcome = self.git.push(remote, task.branch, set_upstream=True, cwd=worktree)
        if outcome is PushOutcome.REJECTED:
            raise PushRejectedError(f"push of {task.branch} to {remote} was rejected")
        result.pushed = True
        last = self.git.rev_parse(task.branch)
        if last and last != task.last_commit:
            task.last_commit = last
            self._save(task)
        result.record(HandoffStep.PUSH, StepOutcome.NOOP if outcome is PushOutcome.UP_TO_DATE else StepOutcome.DONE)

    def _review(self, task: Task, worktree: Optional[Path], create_pr: bool, options: HandoffOptions, result: HandoffResult) -> None:
        if not create_pr or task.pr_url:
            result.record(HandoffStep.REVIEW, StepOutcome.SKIPPED)
            return

        remote = self.service.remote
        target = strip_remote_prefix(task.base, remote)
        service = self.review_service or select_review_service(worktree or self.service.repo.work_tree_root)
        try:
            if service is None:
                raise ToolMissingError("no review-request tool (gh or glab) is installed")
            task.pr_url = service.create_review_request(
                options.pr_title or task.title,
                options.pr_body or default_review_body(task),
                target,
            )
        except (ToolMissingError, ReviewRequestError) as e:
            message = f"review request not created: {e}"
            compare = self.git.compare_url(remote, task.branch, target)
            if compare:
                message += f" (open {compare} to create one)"
            result.warn(message)
            result.record(HandoffStep.REVIEW, StepOutcome.WARNING)
            return

        self._save(task)
        result.pr_url = task.pr_url
        result.record(HandoffStep.REVIEW, StepOutcome.DONE)

    def _detach(self, task: Task, worktree: Optional[Path], result: HandoffResult) -> None:
        if worktree is None or self.git.is_head_detached(cwd=worktree):
            result.record(HandoffStep.DETACH, StepOutcome.SKIPPED)
            return
        detach = self.git.detach_head(cwd=worktree)
        if not detach.success:
            raise DetachFailedError(f"could not detach HEAD in {worktree}: {detach.error}")
        result.record(HandoffStep.DETACH, StepOutcome.DONE)

    def _retire(self, task: Task, worktree: Optional[Path], options: HandoffOptions, result: HandoffResult) -> None:
        if options.keep_worktree:
            result.worktree_kept = worktree is not None
            result.record(HandoffStep.RETIRE, StepOutcome.SKIPPED)
            return
        if worktree is None:
            if task.worktree_path:
                task.worktree_path = ""
                self._save(task)
            result.record(HandoffStep.RETIRE, StepOutcome.SKIPPED)
            return

        ok, reason = is_safe_to_remove(worktree, force=options.force_remove)
        if not ok:
            result.worktree_kept = True
            result.warn(f"worktree {worktree} kept: {reason} (use --force-remove to remove it anyway)")
            result.record(HandoffStep.RETIRE, StepOutcome.WARNING)
            return

        try:
            cwd_inside = is_path_inside(os.getcwd(), worktree)
        except FileNotFoundError:
            cwd_inside = False
        if cwd_inside:
            os.chdir(self.service.repo.work_tree_root)
        with self.service.locks.acquire_global():
            removal = self.git.remove_worktree(worktree, force=True)
        if not removal.success:
            raise RemoveFailedError(f"could not remove worktree {worktree}: {removal.error}")

        task.worktree_path = ""
        self._save(task)
        result.record(HandoffStep.RETIRE, StepOutcome.DONE)
