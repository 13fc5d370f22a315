"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from awt.config import Settings
from awt.lifecycle import TaskService
from awt.repo import discover_repo

from .helpers import commit_file, git


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from the developer's git and awt configuration."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    for name in list(os.environ):
        if name.startswith("AWT_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("AWT_LOG_LEVEL", "WARNING")


@pytest.fixture
def temp_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with one commit on main."""
    repo_path = tmp_path / "repo"
    repo_path.mkdir()
    git(repo_path, "init", "-q", "-b", "main")
    git(repo_path, "config", "user.name", "Test User")
    git(repo_path, "config", "user.email", "test@example.com")
    git(repo_path, "config", "commit.gpgsign", "false")
    commit_file(repo_path, "README.md", "# Test Repository\n", "Initial commit")
    return repo_path


@pytest.fixture
def remote_repo(tmp_path: Path, temp_repo: Path) -> Path:
    """Create a bare repository, add it as origin of temp_repo and push main."""
    bare = tmp_path / "origin.git"
    git(tmp_path, "init", "-q", "--bare", "-b", "main", str(bare))
    git(temp_repo, "remote", "add", "origin", str(bare))
    git(temp_repo, "push", "-q", "-u", "origin", "main")
    return bare


@pytest.fixture
def settings() -> Settings:
    return Settings(lock_timeout=2.0)


@pytest.fixture
def service(temp_repo: Path, settings: Settings) -> TaskService:
    """A TaskService bound to temp_repo."""
    return TaskService(discover_repo(temp_repo), settings)


@pytest.fixture
def chdir_repo(temp_repo: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    monkeypatch.chdir(temp_repo)
    yield temp_repo


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: fast tests without external processes")
    config.addinivalue_line("markers", "integration: tests that drive real git repositories")
    config.addinivalue_line("markers", "slow: tests that wait on timeouts or child processes")
