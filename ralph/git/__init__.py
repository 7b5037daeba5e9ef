"""Git operations for ralph.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
  Example: commit_staged()
- Functions returning bool: True when the condition holds, False otherwise
  (including on git failure). Example: has_staged_changes()
- Functions returning parsed values: None / [] on failure.
  Examples: get_current_branch(), get_commit_sha(), get_staged_files()
"""

from ralph.git.runner import GitResult, run_git
from ralph.git.status import (
    has_staged_changes,
    get_staged_files,
    get_staged_stat,
)
from ralph.git.branch import (
    get_current_branch,
    get_commit_sha,
    get_repo_root,
)
from ralph.git.commit import commit_staged

__all__ = [
    "GitResult",
    "run_git",
    # status
    "has_staged_changes",
    "get_staged_files",
    "get_staged_stat",
    # branch
    "get_current_branch",
    "get_commit_sha",
    "get_repo_root",
    # commit
    "commit_staged",
]
