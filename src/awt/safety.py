"""
Safety checks for awt.

Validators are pure predicates returning ``(ok, reason)`` in the same way
GitTool.validate_commit_message does. They never mutate anything; at most
they stat the filesystem or read the process working directory.
"""

import os
import re
from pathlib import Path
from typing import Optional, Tuple, Union

PathLike = Union[str, Path]

MAX_TITLE_BYTES = 200
MAX_AGENT_BYTES = 50
MAX_COMMIT_MESSAGE_BYTES = 10_000
MAX_COMMIT_SUBJECT_BYTES = 100
MAX_REMOTE_NAME_BYTES = 100

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_BRANCH_FORBIDDEN = ("..", "~", "^", ":", "?", "*", "[", "\\", "@{")
_REMOTE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")


def _byte_len(value: str) -> int:
    return len(value.encode("utf-8"))


def _resolve(path: PathLike) -> Path:
    return Path(os.path.realpath(os.path.abspath(os.fspath(path))))


def is_path_inside(child: PathLike, parent: PathLike) -> bool:
    """Return True if child is parent or lies beneath it (after resolving symlinks)."""
    child_path = _resolve(child)
    parent_path = _resolve(parent)
    return child_path == parent_path or parent_path in child_path.parents


def validate_task_title(title: str) -> Tuple[bool, str]:
    """Validate a task title."""
    if not title or not title.strip():
        return False, "Task title cannot be empty"
    if _byte_len(title) > MAX_TITLE_BYTES:
        return False, f"Task title too long (maximum {MAX_TITLE_BYTES} bytes)"
    if any(ch in title for ch in "\n\r\t"):
        return False, "Task title cannot contain newlines or tabs"
    if _CONTROL_CHARS.search(title):
        return False, "Task title cannot contain control characters"
    return True, "Valid task title"


def validate_agent_name(agent: str) -> Tuple[bool, str]:
    """Validate an agent name."""
    if not agent or not agent.strip():
        return False, "Agent name cannot be empty"
    if _byte_len(agent) > MAX_AGENT_BYTES:
        return False, f"Agent name too long (maximum {MAX_AGENT_BYTES} bytes)"
    if _CONTROL_CHARS.search(agent):
        return False, "Agent name cannot contain control characters"
    return True, "Valid agent name"


def validate_commit_message(message: str) -> Tuple[bool, str]:
    """Validate a commit message."""
    if not message or not message.strip():
        return False, "Commit message cannot be empty"
    if _byte_len(message) > MAX_COMMIT_MESSAGE_BYTES:
        return False, f"Commit message too long (maximum {MAX_COMMIT_MESSAGE_BYTES} bytes)"
    subject = message.strip().split("\n", 1)[0]
    if _byte_len(subject) > MAX_COMMIT_SUBJECT_BYTES:
        return False, f"Commit subject too long (maximum {MAX_COMMIT_SUBJECT_BYTES} bytes)"
    return True, "Valid commit message"


def validate_branch_name(name: str) -> Tuple[bool, str]:
    """Validate a branch name against git's ref format rules."""
    if not name:
        return False, "Branch name cannot be empty"
    if name == "@":
        return False, "Branch name cannot be '@'"
    if name.startswith("-"):
        return False, "Branch name cannot start with '-'"
    if name.endswith(".") or name.endswith(".lock") or name.endswith("/"):
        return False, "Branch name cannot end with '.', '/' or '.lock'"
    if name.startswith("/") or "//" in name:
        return False, "Branch name cannot contain empty path components"
    for seq in _BRANCH_FORBIDDEN:
        if seq in name:
            return False, f"Branch name cannot contain '{seq}'"
    if any(ch.isspace() for ch in name) or _CONTROL_CHARS.search(name):
        return False, "Branch name cannot contain whitespace or control characters"
    for component in name.split("/"):
        if component.startswith(".") or component.endswith(".lock"):
            return False, f"Invalid branch name component '{component}'"
    return True, "Valid branch name"


def validate_remote_name(name: str) -> Tuple[bool, str]:
    """Validate a git remote name."""
    if not name:
        return False, "Remote name cannot be empty"
    if _byte_len(name) > MAX_REMOTE_NAME_BYTES:
        return False, f"Remote name too long (maximum {MAX_REMOTE_NAME_BYTES} bytes)"
    if name.startswith("-") or not _REMOTE_NAME.match(name):
        return False, "Remote name may only contain letters, digits, '.', '_' and '-'"
    return True, "Valid remote name"


def validate_refspec(refspec: str) -> Tuple[bool, str]:
    """Validate a fetch/push refspec of the form [+]<src>[:<dst>]."""
    if not refspec:
        return False, "Refspec cannot be empty"
    if refspec.startswith("-"):
        return False, "Refspec cannot start with '-'"
    if any(ch.isspace() for ch in refspec) or _CONTROL_CHARS.search(refspec):
        return False, "Refspec cannot contain whitespace or control characters"
    spec = refspec[1:] if refspec.startswith("+") else refspec
    parts = spec.split(":")
    if len(parts) > 2:
        return False, "Refspec can contain at most one ':'"
    for part in parts:
        if not part:
            continue
        candidate = part.replace("*", "x", 1)
        ok, reason = validate_branch_name(candidate)
        if not ok:
            return False, f"Invalid refspec: {reason}"
    return True, "Valid refspec"


def validate_worktree_path(
    path: PathLike, repo_root: PathLike, git_common_dir: Optional[PathLike] = None
) -> Tuple[bool, str]:
    """Check that path is an acceptable location for a new worktree.

    git_common_dir is the repository's shared metadata directory and
    defaults to <repo_root>/.git.
    """
    if not path or not os.fspath(path).strip():
        return False, "Worktree path cannot be empty"

    target = _resolve(path)
    root = _resolve(repo_root)

    if target == root:
        return False, "Worktree path cannot be the repository root"
    metadata = _resolve(git_common_dir) if git_common_dir else root / ".git"
    if is_path_inside(target, metadata) or is_path_inside(target, root / ".git"):
        return False, "Worktree path cannot be inside the .git directory"

    if target.exists():
        if not target.is_dir():
            return False, f"Worktree path exists and is not a directory: {target}"
        if any(target.iterdir()):
            return False, f"Worktree path exists and is not empty: {target}"
    return True, "Valid worktree path"


def is_safe_to_remove(path: PathLike, force: bool = False) -> Tuple[bool, str]:
    """Check whether a worktree directory may be removed by this process."""
    target = _resolve(path)
    if not target.exists():
        return True, "Worktree path does not exist"
    if not target.is_dir():
        return False, f"Worktree path is not a directory: {target}"
    try:
        cwd = os.getcwd()
    except FileNotFoundError:
        return True, "Current directory no longer exists"
    if is_path_inside(cwd, target) and not force:
        return False, "Current directory is inside the worktree"
    return True, "Safe to remove"


def sanitize_branch_name(name: str) -> str:
    """Replace characters git rejects in branch names."""
    result = _CONTROL_CHARS.sub("-", name.strip())
    result = re.sub(r"\s+", "-", result)
    for seq in _BRANCH_FORBIDDEN:
        result = result.replace(seq, "-")
    result = re.sub(r"/\.+", "/", result)
    result = re.sub(r"/{2,}", "/", result)
    result = re.sub(r"-{2,}", "-", result)
    result = result.strip("-/.")
    while result.endswith(".lock"):
        result = result[: -len(".lock")].rstrip("-/.")
    if not result or result == "@":
        return "branch"
    return result


def sanitize_task_title(title: str) -> str:
    """Collapse whitespace and truncate a title to the allowed length."""
    result = _CONTROL_CHARS.sub(" ", title)
    result = re.sub(r"\s+", " ", result).strip()
    if _byte_len(result) > MAX_TITLE_BYTES:
        truncated = result.encode("utf-8")[: MAX_TITLE_BYTES - 3].decode("utf-8", "ignore")
        result = truncated.rstrip() + "..."
    return result
