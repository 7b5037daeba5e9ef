"""Git branch and ref lookups."""

from pathlib import Path

from ralph.git.runner import run_git


def get_current_branch(worktree: Path) -> str | None:
    """Get the current branch name, or None if detached HEAD or not a repo."""
    result = run_git(["branch", "--show-current"], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_commit_sha(worktree: Path, ref: str = "HEAD") -> str | None:
    """Get the SHA of a ref (None before the first commit)."""
    result = run_git(["rev-parse", "--verify", "--quiet", ref], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_repo_root(path: Path) -> Path | None:
    """Get the top-level directory of the repository containing path."""
    result = run_git(["rev-parse", "--show-toplevel"], path)
    if result.success and result.stdout.strip():
        return Path(result.stdout.strip())
    return None
