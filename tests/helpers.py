"""Git helpers shared by the test suite."""

import subprocess
from pathlib import Path


def git(cwd: Path, *args: str) -> str:
    """Run git in cwd and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def write_file(repo_path: Path, relative_path: str, content: str) -> None:
    """Helper to write content to a file inside the repo."""
    target = repo_path / relative_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


def commit_file(repo_path: Path, relative_path: str, content: str, message: str) -> str:
    write_file(repo_path, relative_path, content)
    git(repo_path, "add", relative_path)
    git(repo_path, "commit", "-q", "-m", message)
    return git(repo_path, "rev-parse", "HEAD")
