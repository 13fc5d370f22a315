"""
Repository discovery and the awt state root.

All awt state for a repository lives under ``<git-common-dir>/awt`` so that
every linked worktree of the repository shares one task store and one set
of locks.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from .git_tool import GitTool
from .utils.status_codes import GitTooOldError, RepoNotFoundError

MIN_GIT_VERSION: Tuple[int, ...] = (2, 33)
STATE_DIR_NAME = "awt"


@dataclass(frozen=True)
class AwtPaths:
    """Locations of awt's shared state for one repository."""

    root: Path

    @property
    def tasks_dir(self) -> Path:
        return self.root / "tasks"

    @property
    def locks_dir(self) -> Path:
        return self.root / "locks"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def config_file(self) -> Path:
        return self.root / "config.json"

    def ensure(self) -> "AwtPaths":
        for directory in (self.tasks_dir, self.locks_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self


@dataclass(frozen=True)
class Repo:
    """A discovered git repository."""

    work_tree_root: Path
    git_common_dir: Path

    @property
    def paths(self) -> AwtPaths:
        return AwtPaths(self.git_common_dir / STATE_DIR_NAME)

    def git(self, verbose: bool = False) -> GitTool:
        return GitTool(self.work_tree_root, verbose=verbose)


def discover_repo(path: Optional[Union[str, Path]] = None) -> Repo:
    """Find the repository containing path (default: the current directory).

    When path is inside a linked worktree, work_tree_root is that worktree and
    git_common_dir is the main repository's .git directory.

    Raises:
        RepoNotFoundError: path is not inside a git work tree
    """
    start = Path(path) if path else Path.cwd()
    git = GitTool(start)

    top = git._run_git_command(["rev-parse", "--show-toplevel"])
    if not top.success or not top.output:
        raise RepoNotFoundError(f"not a git repository: {start}")

    common = git._run_git_command(["rev-parse", "--git-common-dir"])
    if not common.success or not common.output:
        raise RepoNotFoundError(f"cannot determine git common dir for {start}")

    common_dir = Path(common.output)
    if not common_dir.is_absolute():
        common_dir = start / common_dir
    return Repo(work_tree_root=Path(top.output).resolve(), git_common_dir=common_dir.resolve())


def check_git_version(git: Optional[GitTool] = None, minimum: Tuple[int, ...] = MIN_GIT_VERSION) -> Tuple[int, ...]:
    """Ensure the installed git is recent enough for ``worktree`` and ``switch``."""
    version = (git or GitTool()).version()
    if version[: len(minimum)] < minimum:
        found = ".".join(str(part) for part in version)
        required = ".".join(str(part) for part in minimum)
        raise GitTooOldError(f"git {found} is too old; awt needs git {required} or newer")
    return version
