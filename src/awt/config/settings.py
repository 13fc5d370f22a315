"""
Pydantic settings model for awt configuration.

Explicit constructor arguments win over ``AWT_*`` environment variables.
ConfigManager layers the JSON config files underneath the environment.
"""

import hashlib
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..idgen import sanitize_name

PROJECT_NAME_MAX = 30


def generate_project_id(repo_root: Union[str, Path]) -> str:
    """Stable per-repository directory name: <sanitized-name>-<8 hex>."""
    root = Path(repo_root).resolve()
    name = sanitize_name(root.name)[:PROJECT_NAME_MAX].strip("-") or "repo"
    digest = hashlib.sha256(str(root).encode("utf-8")).hexdigest()[:8]
    return f"{name}-{digest}"


class Settings(BaseSettings):
    """awt configuration."""

    model_config = SettingsConfigDict(env_prefix="AWT_", extra="ignore")

    default_agent: str = Field(default="unknown", description="Agent name used when none is given")
    branch_prefix: str = Field(default="awt", description="First component of task branch names")
    worktree_dir: str = Field(default=".awt/wt", description="Worktree directory, relative to the repository root")
    global_worktree_dir: Optional[str] = Field(
        default=None, description="If set, worktrees live under <dir>/<project-id>/<task-id>"
    )
    rebase_default: bool = Field(default=True, description="Rebase (instead of merge) when syncing")
    auto_push: bool = Field(default=False, description="Push during handoff")
    auto_pr: bool = Field(default=False, description="Open a review request during handoff")
    remote_name: str = Field(default="origin", description="Remote to fetch from and push to")
    lock_timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for a lock")
    verbose_git: bool = Field(default=False, description="Log every git command")
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("branch_prefix")
    @classmethod
    def validate_branch_prefix(cls, v: str) -> str:
        v = v.strip().strip("/")
        if any(ch.isspace() for ch in v) or ".." in v:
            raise ValueError("branch_prefix cannot contain whitespace or '..'")
        return v

    @field_validator("worktree_dir")
    @classmethod
    def validate_worktree_dir(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("worktree_dir cannot be empty")
        return v

    def worktree_path_for(self, repo_root: Union[str, Path], task_id: str) -> Path:
        """Where the worktree for task_id should be created."""
        if self.global_worktree_dir:
            base = Path(self.global_worktree_dir).expanduser()
            return base / generate_project_id(repo_root) / task_id
        worktree_dir = Path(self.worktree_dir).expanduser()
        if not worktree_dir.is_absolute():
            worktree_dir = Path(repo_root) / worktree_dir
        return worktree_dir / task_id
