"""Tests for ralph.git module."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from ralph.git.branch import get_commit_sha, get_current_branch, get_repo_root
from ralph.git.commit import commit_staged
from ralph.git.runner import GitResult, run_git
from ralph.git.status import get_staged_files, get_staged_stat, has_staged_changes


class TestGitResult:
    """Test GitResult dataclass."""

    def test_success_when_returncode_zero(self):
        result = GitResult(returncode=0, stdout="ok", stderr="")
        assert result.success is True

    def test_failure_when_returncode_nonzero(self):
        result = GitResult(returncode=1, stdout="", stderr="error")
        assert result.success is False

    def test_failure_when_timed_out(self):
        result = GitResult(returncode=0, stdout="ok", stderr="", timed_out=True)
        assert result.success is False


class TestRunGit:
    """Test run_git function."""

    @patch("ralph.git.runner.subprocess.run")
    def test_returns_result_on_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="output", stderr="")
        result = run_git(["status"], Path("/tmp"))
        assert result.success
        assert result.stdout == "output"
        mock_run.assert_called_once()

    @patch("ralph.git.runner.subprocess.run")
    def test_handles_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=30)
        result = run_git(["status"], Path("/tmp"))
        assert not result.success
        assert result.timed_out
        assert "timed out" in result.stderr

    @patch("ralph.git.runner.subprocess.run")
    def test_handles_missing_git(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        result = run_git(["status"], Path("/tmp"))
        assert result.returncode == 127

    @patch("ralph.git.runner.subprocess.run")
    def test_passes_cwd_with_C_flag(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["diff", "--cached", "--quiet"], Path("/my/repo"))
        call_args = mock_run.call_args[0][0]
        assert call_args == ["git", "-C", "/my/repo", "diff", "--cached", "--quiet"]


class TestStatus:
    """Staging-area queries."""

    @patch("ralph.git.status.run_git")
    def test_staged_when_diff_exits_one(self, mock_git):
        mock_git.return_value = GitResult(returncode=1, stdout="", stderr="")
        assert has_staged_changes(Path("/repo")) is True

    @patch("ralph.git.status.run_git")
    def test_clean_index(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="", stderr="")
        assert has_staged_changes(Path("/repo")) is False

    @patch("ralph.git.status.run_git")
    def test_git_error_counts_as_nothing_staged(self, mock_git, caplog):
        mock_git.return_value = GitResult(returncode=128, stdout="", stderr="not a git repository")
        assert has_staged_changes(Path("/repo")) is False
        assert "not a git repository" in caplog.text

    @patch("ralph.git.status.run_git")
    def test_staged_files(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="a.py\0dir/b.py\0", stderr="")
        assert get_staged_files(Path("/repo")) == ["a.py", "dir/b.py"]

    @patch("ralph.git.status.run_git")
    def test_staged_files_on_error(self, mock_git):
        mock_git.return_value = GitResult(returncode=128, stdout="", stderr="boom")
        assert get_staged_files(Path("/repo")) == []

    @patch("ralph.git.status.run_git")
    def test_staged_stat(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout=" a.py | 2 +-\n", stderr="")
        assert get_staged_stat(Path("/repo")) == "a.py | 2 +-"


class TestBranchAndCommit:
    """Ref lookups and commits."""

    @patch("ralph.git.branch.run_git")
    def test_current_branch(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="ralph/auth\n", stderr="")
        assert get_current_branch(Path("/repo")) == "ralph/auth"

    @patch("ralph.git.branch.run_git")
    def test_detached_head(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="\n", stderr="")
        assert get_current_branch(Path("/repo")) is None

    @patch("ralph.git.branch.run_git")
    def test_commit_sha_before_first_commit(self, mock_git):
        mock_git.return_value = GitResult(returncode=1, stdout="", stderr="")
        assert get_commit_sha(Path("/repo")) is None

    @patch("ralph.git.branch.run_git")
    def test_commit_sha(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="abc123\n", stderr="")
        assert get_commit_sha(Path("/repo")) == "abc123"
        assert mock_git.call_args[0][0] == ["rev-parse", "--verify", "--quiet", "HEAD"]

    @patch("ralph.git.branch.run_git")
    def test_repo_root(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="/repo\n", stderr="")
        assert get_repo_root(Path("/repo/sub")) == Path("/repo")

    @patch("ralph.git.branch.run_git")
    def test_repo_root_outside_repo(self, mock_git):
        mock_git.return_value = GitResult(returncode=128, stdout="", stderr="fatal")
        assert get_repo_root(Path("/tmp")) is None

    @patch("ralph.git.commit.run_git")
    def test_commit_staged(self, mock_git):
        mock_git.return_value = GitResult(returncode=0, stdout="", stderr="")
        assert commit_staged(Path("/repo"), "feat: [US-001] - X").success
        assert mock_git.call_args[0][0] == ["commit", "-m", "feat: [US-001] - X"]
