"""
Git integration for awt.

This module wraps the git command line. Every call runs as a child process;
if the user interrupts awt while git is running, the interrupt is forwarded
to git so that it can clean up its own lock files before we unwind.
"""

import os
import re
import signal
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from loguru import logger

from .utils.status_codes import create_git_error

PathLike = Union[str, Path]

CHILD_EXIT_GRACE_SECONDS = 5.0

# Stable, untranslated messages so output can be inspected.
_GIT_ENV = {"LC_ALL": "C", "GIT_TERMINAL_PROMPT": "0"}


class GitOperationResult:
    """Result of a Git operation."""

    def __init__(self, success: bool, output: str = "", error: str = "", data: Dict[str, Any] = None):
        self.success = success
        self.output = output
        self.error = error
        self.data = data or {}

    @property
    def returncode(self) -> Optional[int]:
        return self.data.get("returncode")

    def __repr__(self) -> str:
        return f"GitOperationResult(success={self.success}, returncode={self.returncode})"


class CommitOutcome(Enum):
    COMMITTED = "committed"
    NOTHING_TO_COMMIT = "nothing_to_commit"


class SyncOutcome(Enum):
    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    CONFLICT = "conflict"


class PushOutcome(Enum):
    PUSHED = "pushed"
    UP_TO_DATE = "up_to_date"
    REJECTED = "rejected"


@dataclass
class WorktreeInfo:
    """One entry of ``git worktree list --porcelain``."""

    path: Path
    head_commit: str = ""
    branch: Optional[str] = None
    detached: bool = False
    bare: bool = False
    locked: bool = False
    prunable: bool = False


@dataclass
class StatusInfo:
    """Parsed ``git status --porcelain`` output."""

    staged_files: List[str] = field(default_factory=list)
    unstaged_files: List[str] = field(default_factory=list)
    untracked_files: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged_files or self.unstaged_files or self.untracked_files)


def run_command(args: Sequence[str], cwd: Optional[PathLike] = None, env: Dict[str, str] = None) -> GitOperationResult:
    """Run an external command, forwarding SIGINT to it if we are interrupted."""
    full_env = dict(os.environ)
    if env:
        full_env.update(env)
    try:
        proc = subprocess.Popen(
            list(args),
            cwd=str(cwd) if cwd else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=full_env,
        )
    except FileNotFoundError as e:
        return GitOperationResult(success=False, error=f"{args[0]}: command not found", data={"exception": str(e)})
    except NotADirectoryError as e:
        return GitOperationResult(success=False, error=str(e), data={"exception": str(e)})

    try:
        stdout, stderr = proc.communicate()
    except KeyboardInterrupt:
        _interrupt_child(proc)
        raise

    return GitOperationResult(
        success=proc.returncode == 0,
        output=stdout.strip(),
        error=stderr.strip(),
        data={"returncode": proc.returncode},
    )


def _interrupt_child(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        proc.send_signal(signal.SIGINT)
        proc.wait(timeout=CHILD_EXIT_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
    except ProcessLookupError:
        pass


def parse_worktree_list(output: str) -> List[WorktreeInfo]:
    """Parse ``git worktree list --porcelain``."""
    worktrees: List[WorktreeInfo] = []
    current: Optional[WorktreeInfo] = None
    for line in output.splitlines():
        if not line.strip():
            current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            current = WorktreeInfo(path=Path(value))
            worktrees.append(current)
        elif current is None:
            continue
        elif key == "HEAD":
            current.head_commit = value
        elif key == "branch":
            current.branch = value[len("refs/heads/"):] if value.startswith("refs/heads/") else value
        elif key == "detached":
            current.detached = True
        elif key == "bare":
            current.bare = True
        elif key == "locked":
            current.locked = True
        elif key == "prunable":
            current.prunable = True
    return worktrees


def parse_status(output: str) -> StatusInfo:
    status = StatusInfo()
    for line in output.splitlines():
        if not line:
            continue
        code = line[:2]
        filename = line[3:]
        if code == "??":
            status.untracked_files.append(filename)
            continue
        if code[0] != " ":
            status.staged_files.append(filename)
        if code[1] != " ":
            status.unstaged_files.append(filename)
    return status


_SCP_REMOTE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>.+)$")
_URL_REMOTE = re.compile(r"^(?:https?|ssh|git)://(?:[^@/]+@)?(?P<host>[^/:]+)(?::\d+)?/(?P<path>.+)$")


def web_url_from_remote(url: str) -> Optional[Tuple[str, str]]:
    """Return (host, https base URL) for a remote URL, or None if unrecognized."""
    url = url.strip()
    match = _URL_REMOTE.match(url) or _SCP_REMOTE.match(url)
    if not match:
        return None
    host = match.group("host")
    path = match.group("path").strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    if not path:
        return None
    return host, f"https://{host}/{path}"


def build_compare_url(remote_url: str, branch: str, base: str) -> Optional[str]:
    """Build a browser URL for opening a review request by hand."""
    parsed = web_url_from_remote(remote_url)
    if parsed is None:
        return None
    host, web_url = parsed
    if "gitlab" in host:
        return (
            f"{web_url}/-/merge_requests/new"
            f"?merge_request[source_branch]={quote(branch, safe='')}"
            f"&merge_request[target_branch]={quote(base, safe='')}"
        )
    return f"{web_url}/compare/{quote(base, safe='/')}...{quote(branch, safe='/')}?expand=1"


def _is_conflict(result: GitOperationResult) -> bool:
    text = f"{result.output}\n{result.error}"
    return "CONFLICT" in text or "could not apply" in text or "Automatic merge failed" in text


def _is_push_rejected(result: GitOperationResult) -> bool:
    text = result.error
    return "[rejected]" in text or "non-fast-forward" in text or "fetch first" in text


class GitTool:
    """Git operations tool."""

    def __init__(self, repo_path: PathLike = None, verbose: bool = False):
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self.verbose = verbose

    def _run_git_command(self, command: List[str], cwd: PathLike = None, env: Dict[str, str] = None) -> GitOperationResult:
        """Run a Git command and return the result."""
        cwd = cwd or self.repo_path
        if self.verbose:
            logger.debug("git {} (cwd={})", " ".join(command), cwd)
        result = run_command(["git"] + command, cwd=cwd, env={**_GIT_ENV, **(env or {})})
        if not result.success and self.verbose:
            logger.debug("git {} failed: {}", command[0], result.error)
        return result

    def version(self) -> Tuple[int, ...]:
        """Return the installed git version, e.g. (2, 43, 0)."""
        result = run_command(["git", "--version"], env=_GIT_ENV)
        if not result.success:
            raise create_git_error("--version", result.error)
        match = re.search(r"(\d+)\.(\d+)(?:\.(\d+))?", result.output)
        if not match:
            raise create_git_error("--version", f"unrecognized output: {result.output}")
        return tuple(int(part) for part in match.groups() if part is not None)

    # Worktrees

    def create_worktree(self, path: PathLike, new_branch: str, base: str) -> GitOperationResult:
        """Create a worktree at path on a new branch forked from base."""
        result = self._run_git_command(["worktree", "add", "-b", new_branch, str(path), base])
        if result.success:
            logger.info("Created worktree {} on new branch {} from {}", path, new_branch, base)
        return result

    def create_worktree_for_existing_branch(self, path: PathLike, branch: str) -> GitOperationResult:
        result = self._run_git_command(["worktree", "add", str(path), branch])
        if result.success:
            logger.info("Created worktree {} for branch {}", path, branch)
        return result

    def remove_worktree(self, path: PathLike, force: bool = False) -> GitOperationResult:
        command = ["worktree", "remove"]
        if force:
            command.append("--force")
        result = self._run_git_command(command + [str(path)])
        if result.success:
            logger.info("Removed worktree {}", path)
        return result

    def prune_worktrees(self) -> GitOperationResult:
        return self._run_git_command(["worktree", "prune"])

    def list_worktrees(self) -> List[WorktreeInfo]:
        result = self._run_git_command(["worktree", "list", "--porcelain"])
        if not result.success:
            raise create_git_error("worktree list", result.error)
        return parse_worktree_list(result.output)

    # Branches

    def branch_exists(self, name: str) -> bool:
        result = self._run_git_command(["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"])
        return result.success

    def ref_exists(self, ref: str) -> bool:
        return self.rev_parse(ref) is not None

    def list_branches(self) -> List[str]:
        result = self._run_git_command(["for-each-ref", "--format=%(refname:short)", "refs/heads"])
        if not result.success:
            raise create_git_error("for-each-ref", result.error)
        return [line for line in result.output.splitlines() if line]

    def worktrees_for_branch(self, name: str) -> List[WorktreeInfo]:
        """Return every worktree that has name checked out."""
        return [wt for wt in self.list_worktrees() if wt.branch == name]

    def branch_checked_out_at(self, name: str) -> Optional[Path]:
        worktrees = self.worktrees_for_branch(name)
        return worktrees[0].path if worktrees else None

    def delete_branch(self, name: str, force: bool = True) -> GitOperationResult:
        return self._run_git_command(["branch", "-D" if force else "-d", name])

    # Sync

    def fetch(self, remote: Optional[str] = None, refspec: Optional[str] = None, cwd: PathLike = None) -> GitOperationResult:
        command = ["fetch"]
        if remote:
            command.append(remote)
            if refspec:
                command.append(refspec)
        return self._run_git_command(command, cwd=cwd)

    def is_shallow(self, cwd: PathLike = None) -> bool:
        result = self._run_git_command(["rev-parse", "--is-shallow-repository"], cwd=cwd)
        return result.success and result.output == "true"

    def fetch_unshallow(self, remote: Optional[str] = None, cwd: PathLike = None) -> GitOperationResult:
        command = ["fetch", "--unshallow"]
        if remote:
            command.append(remote)
        return self._run_git_command(command, cwd=cwd)

    def rebase(self, onto: str, cwd: PathLike = None) -> SyncOutcome:
        """Rebase the current branch onto another ref."""
        result = self._run_git_command(["rebase", onto], cwd=cwd)
        if result.success:
            if "is up to date" in result.output or "is up to date" in result.error:
                return SyncOutcome.UP_TO_DATE
            return SyncOutcome.UPDATED
        if _is_conflict(result):
            return SyncOutcome.CONFLICT
        raise create_git_error("rebase", result.error or result.output)

    def merge(self, onto: str, cwd: PathLike = None) -> SyncOutcome:
        """Merge another ref into the current branch."""
        result = self._run_git_command(["merge", "--no-edit", onto], cwd=cwd)
        if result.success:
            if "Already up to date" in result.output:
                return SyncOutcome.UP_TO_DATE
            return SyncOutcome.UPDATED
        if _is_conflict(result):
            return SyncOutcome.CONFLICT
        raise create_git_error("merge", result.error or result.output)

    def push(self, remote: str, branch: str, set_upstream: bool = True, cwd: PathLike = None) -> PushOutcome:
        command = ["push"]
        if set_upstream:
            command.append("-u")
        result = self._run_git_command(command + [remote, branch], cwd=cwd)
        if result.success:
            if "Everything up-to-date" in result.error:
                return PushOutcome.UP_TO_DATE
            logger.info("Pushed {} to {}", branch, remote)
            return PushOutcome.PUSHED
        if _is_push_rejected(result):
            return PushOutcome.REJECTED
        raise create_git_error("push", result.error)

    # HEAD and commits

    def detach_head(self, cwd: PathLike = None) -> GitOperationResult:
        return self._run_git_command(["switch", "--detach", "HEAD"], cwd=cwd)

    def is_head_detached(self, cwd: PathLike = None) -> bool:
        result = self._run_git_command(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
        return not result.success

    def get_status(self, cwd: PathLike = None) -> StatusInfo:
        result = self._run_git_command(["status", "--porcelain"], cwd=cwd)
        if not result.success:
            raise create_git_error("status", result.error)
        return parse_status(result.output)

    def has_changes(self, cwd: PathLike = None) -> bool:
        return not self.get_status(cwd).is_clean

    def commit(self, message: str, stage_all: bool = True, signoff: bool = False, cwd: PathLike = None) -> CommitOutcome:
        """Commit the index, optionally staging every change first.

        Returns NOTHING_TO_COMMIT without creating a commit when there is
        nothing staged.
        """
        if stage_all:
            add_result = self._run_git_command(["add", "-A"], cwd=cwd)
            if not add_result.success:
                raise create_git_error("add", add_result.error)

        staged = self._run_git_command(["diff", "--cached", "--quiet"], cwd=cwd)
        if staged.success:
            return CommitOutcome.NOTHING_TO_COMMIT

        command = ["commit", "-m", message]
        if signoff:
            command.append("--signoff")
        result = self._run_git_command(command, cwd=cwd)
        if not result.success:
            raise create_git_error("commit", result.error or result.output)
        logger.info("Committed: {}", message.splitlines()[0])
        return CommitOutcome.COMMITTED

    def rev_parse(self, ref: str, cwd: PathLike = None) -> Optional[str]:
        result = self._run_git_command(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=cwd)
        return result.output if result.success and result.output else None

    def current_commit(self, cwd: PathLike = None) -> Optional[str]:
        return self.rev_parse("HEAD", cwd=cwd)

    def current_branch(self, cwd: PathLike = None) -> Optional[str]:
        result = self._run_git_command(["branch", "--show-current"], cwd=cwd)
        if not result.success:
            return None
        return result.output or None

    # Remotes

    def remote_url(self, remote: str = "origin") -> Optional[str]:
        result = self._run_git_command(["remote", "get-url", remote])
        return result.output if result.success else None

    def compare_url(self, remote: str, branch: str, base: str) -> Optional[str]:
        url = self.remote_url(remote)
        return build_compare_url(url, branch, base) if url else None

    def submodule_update(self, cwd: PathLike = None) -> GitOperationResult:
        return self._run_git_command(["submodule", "update", "--init", "--recursive"], cwd=cwd)
