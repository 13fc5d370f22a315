"""Tests for the safety validators."""

import pytest

from awt.safety import (
    is_path_inside,
    is_safe_to_remove,
    sanitize_branch_name,
    sanitize_task_title,
    validate_agent_name,
    validate_branch_name,
    validate_commit_message,
    validate_refspec,
    validate_remote_name,
    validate_task_title,
    validate_worktree_path,
)


@pytest.mark.unit
class TestTextValidators:
    def test_title(self):
        assert validate_task_title("Add auth")[0]
        assert not validate_task_title("")[0]
        assert not validate_task_title("a\nb")[0]
        assert not validate_task_title("x" * 201)[0]

    def test_agent(self):
        assert validate_agent_name("claude")[0]
        assert not validate_agent_name("")[0]
        assert not validate_agent_name("x" * 51)[0]
        assert not validate_agent_name("bell\x07")[0]

    def test_commit_message(self):
        assert validate_commit_message("feat: add thing\n\nbody")[0]
        assert not validate_commit_message("   ")[0]
        assert not validate_commit_message("x" * 101)[0]
        assert not validate_commit_message("ok\n\n" + "x" * 10_001)[0]

    @pytest.mark.parametrize("name", ["main", "awt/claude/T1", "feature/new-api", "v1.2"])
    def test_valid_branch_names(self, name):
        ok, reason = validate_branch_name(name)
        assert ok, reason

    @pytest.mark.parametrize(
        "name",
        ["", "@", "-x", "a.", "a.lock", "a..b", "a~b", "a^b", "a:b", "a?b", "a*b", "a[b", "a\\b", "a b", "a@{b", "a//b", "a/.b", "a\x01"],
    )
    def test_invalid_branch_names(self, name):
        assert not validate_branch_name(name)[0]

    def test_remote_name(self):
        assert validate_remote_name("origin")[0]
        assert not validate_remote_name("-bad")[0]
        assert not validate_remote_name("has space")[0]

    def test_refspec(self):
        assert validate_refspec("refs/heads/*:refs/remotes/origin/*")[0]
        assert validate_refspec("+main")[0]
        assert not validate_refspec("a:b:c")[0]
        assert not validate_refspec("-delete")[0]

    def test_sanitizers(self):
        assert sanitize_branch_name("my branch~1") == "my-branch-1"
        assert sanitize_branch_name("~~~") == "branch"
        assert sanitize_branch_name("name.lock") == "name"
        assert sanitize_task_title("  two\tspaces\n here ") == "two spaces here"
        long_title = sanitize_task_title("y" * 300)
        assert len(long_title) == 200 and long_title.endswith("...")


@pytest.mark.unit
class TestPathSafety:
    def test_worktree_path_rules(self, tmp_path):
        repo = tmp_path / "repo"
        (repo / ".git").mkdir(parents=True)
        assert validate_worktree_path(tmp_path / "wt", repo)[0]
        assert validate_worktree_path(repo / ".awt" / "wt" / "T1", repo)[0]
        assert not validate_worktree_path("", repo)[0]
        assert not validate_worktree_path(repo, repo)[0]
        assert not validate_worktree_path(repo / ".git" / "wt", repo)[0]

    def test_existing_paths(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        empty = tmp_path / "empty"
        empty.mkdir()
        full = tmp_path / "full"
        full.mkdir()
        (full / "f").write_text("x")
        afile = tmp_path / "file"
        afile.write_text("x")
        assert validate_worktree_path(empty, repo)[0]
        assert not validate_worktree_path(full, repo)[0]
        assert not validate_worktree_path(afile, repo)[0]

    def test_linked_worktree_root_uses_common_dir(self, tmp_path):
        main = tmp_path / "main"
        common = main / ".git"
        common.mkdir(parents=True)
        linked = tmp_path / "linked"
        linked.mkdir()
        (linked / ".git").write_text(f"gitdir: {common}/worktrees/linked\n")

        ok, reason = validate_worktree_path(common / "awt" / "wt" / "T1", linked, common)
        assert not ok
        assert ".git" in reason
        assert validate_worktree_path(common / "awt" / "wt" / "T1", linked)[0]
        assert validate_worktree_path(tmp_path / "elsewhere", linked, common)[0]

    def test_is_path_inside(self, tmp_path):
        assert is_path_inside(tmp_path / "a" / "b", tmp_path / "a")
        assert is_path_inside(tmp_path, tmp_path)
        assert not is_path_inside(tmp_path / "ab", tmp_path / "a")

    def test_safe_to_remove_refuses_current_directory(self, tmp_path, monkeypatch):
        wt = tmp_path / "wt"
        (wt / "sub").mkdir(parents=True)
        monkeypatch.chdir(wt / "sub")
        ok, reason = is_safe_to_remove(wt)
        assert not ok
        assert "inside" in reason
        assert is_safe_to_remove(wt, force=True)[0]

    def test_safe_to_remove_elsewhere(self, tmp_path, monkeypatch):
        wt = tmp_path / "wt"
        wt.mkdir()
        monkeypatch.chdir(tmp_path)
        assert is_safe_to_remove(wt)[0]
        assert is_safe_to_remove(tmp_path / "missing")[0]
