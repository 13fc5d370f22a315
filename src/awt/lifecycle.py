"""
Task lifecycle operations.

TaskService implements every operation that creates, changes or removes a
task. Each operation takes the per-task lock (and the global lock when it
creates or removes worktrees, always in that order), loads the record,
drives git, and saves the record atomically before releasing.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from .config import ConfigManager, Settings
from .git_tool import CommitOutcome, GitTool, SyncOutcome
from .idgen import (
    find_case_collision,
    generate_branch_name,
    generate_task_id,
    task_id_from_branch,
    validate_task_id,
)
from .locking import LockManager
from .models import Task, TaskState, TaskStore
from .repo import Repo, discover_repo
from .review import strip_remote_prefix
from .safety import (
    MAX_COMMIT_SUBJECT_BYTES,
    is_path_inside,
    is_safe_to_remove,
    sanitize_task_title,
    validate_agent_name,
    validate_branch_name,
    validate_commit_message,
    validate_task_title,
    validate_worktree_path,
)
from .utils.status_codes import (
    BranchCheckedOutElsewhereError,
    BranchExistsError,
    CaseOnlyCollisionError,
    DetachFailedError,
    InvalidInputError,
    InvalidStateTransitionError,
    InvalidTaskIDError,
    LockHeldError,
    SyncConflictError,
    TaskNotFoundError,
    UnsafePathError,
    WorktreeExistsError,
    WorktreeNotFoundError,
    create_git_error,
    create_invalid_task_id_error,
)

BASE_CANDIDATES = ("origin/main", "origin/master", "main", "master", "origin/develop", "develop")
TITLE_PREFIXES = ("refs/heads/", "feature/", "fix/", "bugfix/")

PathLike = Union[str, Path]


def default_commit_message(task: Task) -> str:
    """Commit message used when the caller does not supply one."""
    prefix = f"feat(task:{task.id}): "
    title = task.title
    room = MAX_COMMIT_SUBJECT_BYTES - len(prefix.encode("utf-8"))
    if len(title.encode("utf-8")) > room:
        title = title.encode("utf-8")[: max(room - 3, 0)].decode("utf-8", "ignore").rstrip() + "..."
    return (
        f"{prefix}{title}\n\n"
        f"Task ID: {task.id}\n"
        f"Agent: {task.agent}\n"
        f"Branch: {task.branch}\n"
        f"Base: {task.base}\n"
    )


def title_from_branch(branch: str) -> str:
    title = branch
    for prefix in TITLE_PREFIXES:
        if title.startswith(prefix):
            title = title[len(prefix):]
    for sep in ("/", "-", "_"):
        title = title.replace(sep, " ")
    return sanitize_task_title(title) or branch


@dataclass
class PruneReport:
    pruned_tasks: List[str] = field(default_factory=list)
    removed_locks: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class TaskService:
    """Creates and transitions tasks for one repository."""

    def __init__(
        self,
        repo: Repo,
        settings: Optional[Settings] = None,
        store: Optional[TaskStore] = None,
        lock_manager: Optional[LockManager] = None,
        git: Optional[GitTool] = None,
    ):
        self.repo = repo
        self.settings = settings or Settings()
        paths = repo.paths.ensure()
        self.store = store or TaskStore(paths.tasks_dir)
        self.locks = lock_manager or LockManager(paths.locks_dir, timeout=self.settings.lock_timeout)
        self.git = git or GitTool(repo.work_tree_root, verbose=self.settings.verbose_git)

    @classmethod
    def from_path(cls, path: Optional[PathLike] = None, settings: Optional[Settings] = None) -> "TaskService":
        repo = discover_repo(path)
        if settings is None:
            settings = ConfigManager(repo.git_common_dir).load_config()
        return cls(repo, settings)

    @property
    def remote(self) -> str:
        return self.settings.remote_name

    # Helpers shared with the handoff orchestrator

    def fetch_remote(self, cwd: Optional[PathLike] = None, unshallow: bool = False) -> Optional[str]:
        """Fetch from the configured remote. Returns a warning instead of failing."""
        if self.git.remote_url(self.remote) is None:
            logger.debug("No remote named {}, skipping fetch", self.remote)
            return None
        if unshallow and self.git.is_shallow(cwd=cwd):
            result = self.git.fetch_unshallow(self.remote, cwd=cwd)
        else:
            result = self.git.fetch(self.remote, cwd=cwd)
        if result.success:
            return None
        warning = f"fetch from {self.remote} failed: {result.error}"
        logger.warning(warning)
        return warning

    def sync_target(self, base: str) -> str:
        """Prefer the remote-tracking version of base when it exists."""
        tracking = f"{self.remote}/{strip_remote_prefix(base, self.remote)}"
        if self.git.ref_exists(tracking):
            return tracking
        return base

    def sync_worktree(self, task: Task, worktree: Path, use_merge: Optional[bool] = None) -> SyncOutcome:
        """Rebase (or merge) the task branch onto its base inside worktree."""
        if use_merge is None:
            use_merge = not self.settings.rebase_default
        target = self.sync_target(task.base)
        if use_merge:
            outcome = self.git.merge(target, cwd=worktree)
        else:
            outcome = self.git.rebase(target, cwd=worktree)
        if outcome is SyncOutcome.CONFLICT:
            verb = "merging" if use_merge else "rebasing"
            raise SyncConflictError(f"conflicts while {verb} {task.branch} onto {target}")
        logger.info("Synced {} onto {} ({})", task.branch, target, outcome.value)
        return outcome

    def require_worktree(self, task: Task) -> Path:
        if not task.worktree_path or not Path(task.worktree_path).is_dir():
            raise WorktreeNotFoundError(f"task '{task.id}' has no worktree")
        return Path(task.worktree_path)

    def detect_base(self) -> str:
        for candidate in BASE_CANDIDATES:
            if self.git.ref_exists(candidate):
                return candidate
        raise InvalidInputError("could not detect a base branch", hint="Pass --base explicitly.")

    def _check_id_available(self, task_id: str) -> None:
        collision = find_case_collision(task_id, self.store.list_task_ids())
        if collision:
            raise CaseOnlyCollisionError(f"task ID '{task_id}' differs only in case from existing task '{collision}'")
        if self.store.exists(task_id):
            raise InvalidTaskIDError(f"task '{task_id}' already exists", hint="Pick a different task ID.")

    def _check_worktree_path(self, path: Path) -> None:
        ok, reason = validate_worktree_path(path, self.repo.work_tree_root, self.repo.git_common_dir)
        if ok:
            return
        if path.exists():
            raise WorktreeExistsError(reason)
        raise UnsafePathError(reason)

    def _exclude_worktree_dir(self, path: Path) -> None:
        """Keep worktrees nested in the main checkout out of its git status."""
        root = self.repo.work_tree_root
        if not is_path_inside(path, root):
            return
        relative = Path(os.path.relpath(path.parent, root)).as_posix()
        pattern = f"/{relative}/"
        exclude = self.repo.git_common_dir / "info" / "exclude"
        try:
            existing = exclude.read_text(encoding="utf-8").splitlines() if exclude.exists() else []
            if pattern in existing:
                return
            exclude.parent.mkdir(parents=True, exist_ok=True)
            with exclude.open("a", encoding="utf-8") as fh:
                if existing and existing[-1] != "":
                    fh.write("\n")
                fh.write(f"{pattern}\n")
        except OSError as e:
            logger.warning("Could not update {}: {}", exclude, e)

    def _rollback_worktree(self, path: Path, branch: Optional[str]) -> None:
        result = self.git.remove_worktree(path, force=True)
        if not result.success:
            logger.warning("Rollback could not remove worktree {}: {}", path, result.error)
        if branch:
            result = self.git.delete_branch(branch)
            if not result.success:
                logger.warning("Rollback could not delete branch {}: {}", branch, result.error)

    # Operations

    def start_task(
        self,
        title: str,
        agent: Optional[str] = None,
        base: Optional[str] = None,
        task_id: Optional[str] = None,
        fetch: bool = True,
    ) -> Task:
        """Create a task: a new branch from base checked out in a fresh worktree."""
        agent = agent or self.settings.default_agent
        ok, reason = validate_agent_name(agent)
        if not ok:
            raise InvalidInputError(reason)

        title = sanitize_task_title(title)
        ok, reason = validate_task_title(title)
        if not ok:
            raise InvalidInputError(reason)

        if task_id is None:
            task_id = generate_task_id()
        elif not validate_task_id(task_id):
            raise create_invalid_task_id_error(task_id)

        branch = generate_branch_name(self.settings.branch_prefix, agent, task_id)
        ok, reason = validate_branch_name(branch)
        if not ok:
            raise InvalidInputError(f"derived branch name '{branch}' is invalid: {reason}")

        worktree_path = self.settings.worktree_path_for(self.repo.work_tree_root, task_id)
        log = logger.bind(task_id=task_id)

        with self.locks.acquire_task(task_id), self.locks.acquire_global():
            self._check_id_available(task_id)

            if fetch:
                self.fetch_remote()
            base = base or self.detect_base()
            if not self.git.ref_exists(base):
                raise InvalidInputError(f"base '{base}' does not exist")

            if self.git.branch_exists(branch):
                raise BranchExistsError(f"branch '{branch}' already exists")
            collision = find_case_collision(branch, self.git.list_branches())
            if collision:
                raise CaseOnlyCollisionError(f"branch '{branch}' differs only in case from existing branch '{collision}'")

            self._check_worktree_path(worktree_path)
            worktree_path.parent.mkdir(parents=True, exist_ok=True)
            self._exclude_worktree_dir(worktree_path)

            result = self.git.create_worktree(worktree_path, branch, base)
            if not result.success:
                raise create_git_error("worktree add", result.error)

            task = Task(
                id=task_id,
                agent=agent,
                title=title,
                branch=branch,
                base=base,
                state=TaskState.ACTIVE,
                worktree_path=str(worktree_path),
                last_commit=self.git.current_commit(cwd=worktree_path),
            )
            try:
                self.store.save(task)
            except BaseException:
                log.error("Saving task failed, rolling back worktree {}", worktree_path)
                self._rollback_worktree(worktree_path, branch)
                raise

        log.info("Started task {} on {}", task_id, branch)
        return task

    def adopt_task(
        self,
        branch: str,
        agent: Optional[str] = None,
        base: Optional[str] = None,
        title: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> Task:
        """Start tracking an existing branch as a NEW task without a worktree."""
        if branch.startswith("refs/heads/"):
            branch = branch[len("refs/heads/"):]
        ok, reason = validate_branch_name(branch)
        if not ok:
            raise InvalidInputError(reason)
        if not self.git.branch_exists(branch):
            raise InvalidInputError(f"branch '{branch}' does not exist")

        agent = agent or self.settings.default_agent
        ok, reason = validate_agent_name(agent)
        if not ok:
            raise InvalidInputError(reason)

        if task_id is None:
            task_id = generate_task_id()
        elif not validate_task_id(task_id):
            raise create_invalid_task_id_error(task_id)

        title = sanitize_task_title(title) if title else title_from_branch(branch)
        ok, reason = validate_task_title(title)
        if not ok:
            raise InvalidInputError(reason)

        base = base or self.detect_base()

        with self.locks.acquire_task(task_id):
            self._check_id_available(task_id)
            for existing in self.store.list():
                if existing.branch == branch:
                    raise BranchExistsError(f"branch '{branch}' is already tracked by task '{existing.id}'")

            task = Task(
                id=task_id,
                agent=agent,
                title=title,
                branch=branch,
                base=base,
                state=TaskState.NEW,
                worktree_path="",
                last_commit=self.git.rev_parse(branch),
            )
            self.store.save(task)

        logger.bind(task_id=task_id).info("Adopted branch {} as task {}", branch, task_id)
        return task

    def checkout_task(self, task_id: str, path: Optional[PathLike] = None, submodules: bool = False) -> Task:
        """Create a worktree for a task's existing branch and mark it ACTIVE."""
        with self.locks.acquire_task(task_id):
            task = self.store.load(task_id)
            if task.state not in (TaskState.NEW, TaskState.ACTIVE):
                raise InvalidStateTransitionError(f"task '{task_id}' is {task.state.value} and cannot be checked out")
            if task.worktree_path and Path(task.worktree_path).is_dir():
                raise WorktreeExistsError(f"task '{task_id}' already has a worktree at {task.worktree_path}")

            target = Path(path).expanduser() if path else self.settings.worktree_path_for(self.repo.work_tree_root, task_id)
            target = target.absolute()

            with self.locks.acquire_global():
                registered = {wt.path.resolve() for wt in self.git.list_worktrees()}
                if target.resolve() in registered:
                    raise WorktreeExistsError(f"{target} is already a registered worktree")
                holder = self.git.branch_checked_out_at(task.branch)
                if holder is not None:
                    raise BranchCheckedOutElsewhereError(f"branch '{task.branch}' is checked out at {holder}")
                self._check_worktree_path(target)
                target.parent.mkdir(parents=True, exist_ok=True)
                self._exclude_worktree_dir(target)
                result = self.git.create_worktree_for_existing_branch(target, task.branch)
                if not result.success:
                    raise create_git_error("worktree add", result.error)

            if submodules:
                result = self.git.submodule_update(cwd=target)
                if not result.success:
                    logger.warning("Submodule update failed: {}", result.error)

            task.worktree_path = str(target)
            task.transition_to(TaskState.ACTIVE)
            task.last_commit = self.git.current_commit(cwd=target)
            try:
                self.store.save(task)
            except BaseException:
                with self.locks.acquire_global():
                    self._rollback_worktree(target, None)
                raise

        logger.bind(task_id=task_id).info("Checked out task {} at {}", task_id, target)
        return task

    def commit_task(
        self,
        task_id: str,
        message: Optional[str] = None,
        stage_all: bool = False,
        signoff: bool = False,
    ) -> str:
        """Commit in the task's worktree and return the new commit SHA."""
        with self.locks.acquire_task(task_id):
            task = self.store.load(task_id)
            worktree = self.require_worktree(task)
            message = message or default_commit_message(task)
            ok, reason = validate_commit_message(message)
            if not ok:
                raise InvalidInputError(reason)

            outcome = self.git.commit(message, stage_all=stage_all, signoff=signoff, cwd=worktree)
            if outcome is CommitOutcome.NOTHING_TO_COMMIT:
                raise InvalidInputError("nothing to commit", hint="Stage changes first or pass --all.")
            task.last_commit = self.git.current_commit(cwd=worktree)
            self.store.save(task)
        return task.last_commit

    def sync_task(self, task_id: str, merge: Optional[bool] = None) -> SyncOutcome:
        """Fetch and bring the task branch up to date with its base."""
        with self.locks.acquire_task(task_id):
            task = self.store.load(task_id)
            worktree = self.require_worktree(task)
            self.fetch_remote(cwd=worktree, unshallow=True)
            outcome = self.sync_worktree(task, worktree, use_merge=merge)
            task.last_commit = self.git.current_commit(cwd=worktree)
            self.store.save(task)
        return outcome

    def unlock_task(self, task_id: str, remove: bool = False) -> List[Path]:
        """Detach the task branch from every worktree that has it checked out.

        Returns:
            Paths of the worktrees that were detached.
        """
        detached: List[Path] = []
        with self.locks.acquire_task(task_id):
            task = self.store.load(task_id)
            changed = False
            with self.locks.acquire_global():
                for wt in self.git.worktrees_for_branch(task.branch):
                    result = self.git.detach_head(cwd=wt.path)
                    if not result.success:
                        raise DetachFailedError(f"could not detach HEAD in {wt.path}: {result.error}")
                    detached.append(wt.path)
                    logger.info("Detached {} in {}", task.branch, wt.path)

                    if not remove or wt.path.resolve() == self.repo.work_tree_root.resolve():
                        continue
                    ok, reason = is_safe_to_remove(wt.path)
                    if not ok:
                        logger.warning("Not removing {}: {}", wt.path, reason)
                        continue
                    result = self.git.remove_worktree(wt.path, force=True)
                    if not result.success:
                        logger.warning("Could not remove worktree {}: {}", wt.path, result.error)
                        continue
                    if task.worktree_path and Path(task.worktree_path).resolve() == wt.path.resolve():
                        task.worktree_path = ""
                        changed = True
            if changed:
                self.store.save(task)
        return detached

    def prune(self, dry_run: bool = False) -> PruneReport:
        """Drop git and awt bookkeeping for worktrees that no longer exist."""
        report = PruneReport()
        if not dry_run:
            with self.locks.acquire_global():
                result = self.git.prune_worktrees()
            if not result.success:
                report.warnings.append(f"git worktree prune failed: {result.error}")

        for task in self.store.list():
            if not task.worktree_path or Path(task.worktree_path).exists():
                continue
            try:
                handle = self.locks.try_acquire_task(task.id)
            except LockHeldError:
                report.warnings.append(f"task {task.id} is locked, skipped")
                continue
            with handle:
                try:
                    current = self.store.load(task.id)
                except TaskNotFoundError:
                    continue
                if not current.worktree_path or Path(current.worktree_path).exists():
                    continue
                if not dry_run:
                    self.store.delete(task.id)
                report.pruned_tasks.append(task.id)
                logger.info("Pruned task {} (worktree {} is gone)", task.id, current.worktree_path)

        if not dry_run:
            report.removed_locks = self.locks.cleanup()
        for warning in report.warnings:
            logger.warning(warning)
        return report

    def list_tasks(self, state: Optional[TaskState] = None) -> List[Task]:
        tasks = self.store.list()
        if state is not None:
            tasks = [t for t in tasks if t.state == state]
        return tasks

    def resolve_task_id(self, task_id: Optional[str] = None, cwd: Optional[PathLike] = None) -> str:
        """Use task_id if given, otherwise infer the task from the working directory."""
        if task_id:
            return task_id
        cwd = Path(cwd or os.getcwd())
        tasks = self.store.list()
        for task in tasks:
            if task.worktree_path and is_path_inside(cwd, task.worktree_path):
                return task.id

        branch = self.git.current_branch(cwd=cwd)
        if branch:
            for task in tasks:
                if task.branch == branch:
                    return task.id
            derived = task_id_from_branch(branch)
            if derived and self.store.exists(derived):
                return derived
        raise InvalidInputError("cannot infer the task from the current directory", hint="Pass the task ID explicitly.")
