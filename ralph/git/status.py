"""Git staging-area queries."""

import logging
from pathlib import Path

from ralph.git.runner import run_git

logger = logging.getLogger(__name__)


def has_staged_changes(worktree: Path) -> bool:
    """True if the index differs from HEAD.

    `git diff --cached --quiet` exits 1 when something is staged, 0 when the
    index is clean; anything else is an error and counts as "nothing staged".
    """
    result = run_git(["diff", "--cached", "--quiet"], worktree)
    if result.returncode == 1:
        return True
    if result.returncode != 0:
        logger.warning(f"git diff --cached failed in {worktree}: {result.stderr.strip()}")
    return False


def get_staged_files(worktree: Path) -> list[str]:
    """Get list of staged file paths. Returns [] on git failure."""
    result = run_git(["diff", "--cached", "--name-only", "-z"], worktree)
    if not result.success:
        return []
    return [f for f in result.stdout.split('\0') if f]


def get_staged_stat(worktree: Path) -> str:
    """Get stat of staged changes."""
    result = run_git(["diff", "--cached", "--stat"], worktree)
    return result.stdout.strip()
