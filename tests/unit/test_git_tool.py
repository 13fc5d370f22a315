"""Tests for GitTool against real repositories."""

import signal
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from awt.git_tool import (
    CommitOutcome,
    GitTool,
    PushOutcome,
    SyncOutcome,
    parse_status,
    parse_worktree_list,
    run_command,
)
from awt.repo import check_git_version, discover_repo
from awt.utils.status_codes import GitTooOldError, RepoNotFoundError

from ..helpers import commit_file, git, write_file


@pytest.mark.unit
class TestParsers:
    def test_parse_worktree_list(self):
        output = (
            "worktree /repo\nHEAD 1111\nbranch refs/heads/main\n\n"
            "worktree /repo/.awt/wt/T1\nHEAD 2222\ndetached\n\n"
            "worktree /gone\nHEAD 3333\nbranch refs/heads/awt/a/T2\nprunable gitdir file points to non-existent location\n"
        )
        worktrees = parse_worktree_list(output)
        assert [str(w.path) for w in worktrees] == ["/repo", "/repo/.awt/wt/T1", "/gone"]
        assert worktrees[0].branch == "main"
        assert worktrees[1].detached and worktrees[1].branch is None
        assert worktrees[2].prunable and worktrees[2].branch == "awt/a/T2"

    def test_parse_status(self):
        status = parse_status("M  staged.txt\n M changed.txt\n?? new.txt\nMM both.txt")
        assert status.staged_files == ["staged.txt", "both.txt"]
        assert status.unstaged_files == ["changed.txt", "both.txt"]
        assert status.untracked_files == ["new.txt"]
        assert not status.is_clean


@pytest.mark.integration
class TestGitTool:
    def test_version(self, temp_repo):
        version = GitTool(temp_repo).version()
        assert version >= (2, 0)
        assert check_git_version(GitTool(temp_repo)) == version

    def test_version_too_old(self, temp_repo):
        tool = GitTool(temp_repo)
        with patch.object(tool, "version", return_value=(2, 20, 1)):
            with pytest.raises(GitTooOldError):
                check_git_version(tool)

    def test_worktree_lifecycle(self, temp_repo, tmp_path):
        tool = GitTool(temp_repo)
        wt_path = tmp_path / "wt"

        result = tool.create_worktree(wt_path, "awt/a/T1", "main")
        assert result.success, result.error
        assert tool.branch_exists("awt/a/T1")
        assert tool.branch_checked_out_at("awt/a/T1").resolve() == wt_path.resolve()
        assert "awt/a/T1" in tool.list_branches()
        assert tool.current_branch(cwd=wt_path) == "awt/a/T1"

        assert tool.detach_head(cwd=wt_path).success
        assert tool.is_head_detached(cwd=wt_path)
        assert tool.branch_checked_out_at("awt/a/T1") is None

        assert tool.remove_worktree(wt_path, force=True).success
        assert not wt_path.exists()
        assert len(tool.list_worktrees()) == 1

    def test_create_worktree_for_existing_branch(self, temp_repo, tmp_path):
        git(temp_repo, "branch", "feature/x")
        tool = GitTool(temp_repo)
        assert tool.create_worktree_for_existing_branch(tmp_path / "wt", "feature/x").success
        assert tool.worktrees_for_branch("feature/x")[0].path.resolve() == (tmp_path / "wt").resolve()

    def test_commit_nothing_to_commit(self, temp_repo):
        tool = GitTool(temp_repo)
        before = tool.current_commit()
        assert tool.commit("feat: nothing") is CommitOutcome.NOTHING_TO_COMMIT
        assert tool.current_commit() == before

    def test_commit_stages_everything(self, temp_repo):
        tool = GitTool(temp_repo)
        write_file(temp_repo, "notes.txt", "hello")
        assert tool.has_changes()
        assert tool.commit("feat: add notes", signoff=True) is CommitOutcome.COMMITTED
        assert not tool.has_changes()
        assert "Signed-off-by" in git(temp_repo, "log", "-1", "--format=%B")

    def test_commit_without_staging(self, temp_repo):
        tool = GitTool(temp_repo)
        write_file(temp_repo, "notes.txt", "hello")
        assert tool.commit("feat: add notes", stage_all=False) is CommitOutcome.NOTHING_TO_COMMIT

    def test_rebase_conflict(self, temp_repo):
        tool = GitTool(temp_repo)
        git(temp_repo, "checkout", "-q", "-b", "topic")
        commit_file(temp_repo, "README.md", "topic\n", "topic change")
        git(temp_repo, "checkout", "-q", "main")
        commit_file(temp_repo, "README.md", "main\n", "main change")
        git(temp_repo, "checkout", "-q", "topic")

        assert tool.rebase("main") is SyncOutcome.CONFLICT
        git(temp_repo, "rebase", "--abort")

    def test_rebase_up_to_date(self, temp_repo):
        git(temp_repo, "checkout", "-q", "-b", "topic")
        assert GitTool(temp_repo).rebase("main") is SyncOutcome.UP_TO_DATE

    def test_merge(self, temp_repo):
        tool = GitTool(temp_repo)
        git(temp_repo, "checkout", "-q", "-b", "topic")
        commit_file(temp_repo, "topic.txt", "t", "topic")
        git(temp_repo, "checkout", "-q", "main")
        commit_file(temp_repo, "main.txt", "m", "main")
        git(temp_repo, "checkout", "-q", "topic")
        assert tool.merge("main") is SyncOutcome.UPDATED
        assert tool.merge("main") is SyncOutcome.UP_TO_DATE

    def test_push_and_rejection(self, temp_repo, remote_repo, tmp_path):
        tool = GitTool(temp_repo)
        git(temp_repo, "checkout", "-q", "-b", "topic")
        commit_file(temp_repo, "a.txt", "a", "a")
        assert tool.push("origin", "topic") is PushOutcome.PUSHED
        assert tool.push("origin", "topic") is PushOutcome.UP_TO_DATE

        other = tmp_path / "other"
        git(tmp_path, "clone", "-q", str(remote_repo), str(other))
        git(other, "checkout", "-q", "topic")
        commit_file(other, "b.txt", "b", "b")
        git(other, "push", "-q", "origin", "topic")

        commit_file(temp_repo, "c.txt", "c", "c")
        assert tool.push("origin", "topic") is PushOutcome.REJECTED

    def test_rev_parse_and_remotes(self, temp_repo, remote_repo):
        tool = GitTool(temp_repo)
        assert tool.rev_parse("main") == git(temp_repo, "rev-parse", "main")
        assert tool.rev_parse("does-not-exist") is None
        assert tool.ref_exists("origin/main")
        assert tool.remote_url("origin") == str(remote_repo)
        assert tool.remote_url("nope") is None
        assert tool.compare_url("origin", "b", "main") is None
        assert not tool.is_shallow()


@pytest.mark.integration
class TestRepoDiscovery:
    def test_discover_from_worktree_shares_common_dir(self, temp_repo, tmp_path):
        GitTool(temp_repo).create_worktree(tmp_path / "wt", "topic", "main")
        main = discover_repo(temp_repo)
        linked = discover_repo(tmp_path / "wt")
        assert linked.work_tree_root == (tmp_path / "wt").resolve()
        assert linked.git_common_dir == main.git_common_dir == (temp_repo / ".git").resolve()
        assert main.paths.tasks_dir == main.git_common_dir / "awt" / "tasks"

    def test_discover_outside_repo(self, tmp_path):
        outside = tmp_path / "plain"
        outside.mkdir()
        with pytest.raises(RepoNotFoundError):
            discover_repo(outside)


@pytest.mark.unit
class TestInterruptForwarding:
    def test_sigint_forwarded_to_child(self):
        proc = MagicMock()
        proc.communicate.side_effect = KeyboardInterrupt
        proc.poll.return_value = None
        with patch("awt.git_tool.subprocess.Popen", return_value=proc):
            with pytest.raises(KeyboardInterrupt):
                run_command(["git", "fetch"])
        proc.send_signal.assert_called_once_with(signal.SIGINT)
        proc.wait.assert_called()

    def test_child_killed_if_it_ignores_sigint(self):
        proc = MagicMock()
        proc.communicate.side_effect = KeyboardInterrupt
        proc.poll.return_value = None
        proc.wait.side_effect = [subprocess.TimeoutExpired("git", 5), 0]
        with patch("awt.git_tool.subprocess.Popen", return_value=proc):
            with pytest.raises(KeyboardInterrupt):
                run_command(["git", "fetch"])
        proc.kill.assert_called_once()

    def test_missing_executable(self):
        result = run_command(["definitely-not-a-real-tool-awt"])
        assert not result.success
        assert "command not found" in result.error
