"""Git commit operations."""

from pathlib import Path

from ralph.git.runner import run_git, GitResult


def commit_staged(worktree: Path, message: str) -> GitResult:
    """Commit whatever is currently staged. Unstaged edits are left alone."""
    return run_git(["commit", "-m", message], worktree)
