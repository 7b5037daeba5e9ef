"""
Run directory resolution.

Decides which run under <workspace>/.ralph/runs applies to this invocation:
explicit --run name, then the current git branch, then the only run on disk.
Never guesses between several candidates.
"""

import logging
from pathlib import Path

from ralph.lib.constants import BRANCH_FILLER, PRD_FILE
from ralph.lib.validate import ValidationError, validate_file

logger = logging.getLogger(__name__)


class RunResolutionError(Exception):
    """No run, or more than one, matches this invocation."""

    def __init__(self, message: str, candidates: list[Path] | None = None):
        self.candidates = candidates or []
        lines = [message]
        if self.candidates:
            lines.append("Available runs:")
            lines.extend(f"  {c.name}" for c in self.candidates)
        super().__init__("\n".join(lines))


def normalize_branch(branch: str) -> str:
    """Map a branch name to a run directory name: 'ralph/auth' -> 'ralph-auth'."""
    return branch.strip().replace("/", BRANCH_FILLER).replace("\\", BRANCH_FILLER)


def has_valid_state(run_dir: Path) -> bool:
    try:
        validate_file(run_dir / PRD_FILE, "prd")
    except ValidationError as e:
        logger.debug(f"{run_dir} has no usable run state: {e}")
        return False
    return True


def find_candidate_runs(runs_root: Path) -> list[Path]:
    """Directories under runs_root that hold a prd.json, sorted by name."""
    if not runs_root.is_dir():
        return []
    return sorted(
        d for d in runs_root.iterdir()
        if d.is_dir() and not d.name.startswith(".") and (d / PRD_FILE).is_file()
    )


def resolve_run(runs_root: Path, explicit: str | None = None, branch: str | None = None) -> Path:
    """
    Return the run directory for this invocation.

    Order (first match wins):
    1. explicit name (must exist)
    2. normalized branch name, only if that run holds valid state
    3. the single candidate run, if exactly one exists

    Raises:
        RunResolutionError: listing candidates when ambiguous or absent
    """
    candidates = find_candidate_runs(runs_root)

    if explicit:
        run_dir = runs_root / explicit
        if not (run_dir / PRD_FILE).is_file():
            raise RunResolutionError(f"Run '{explicit}' not found in {runs_root}", candidates)
        return run_dir

    if branch:
        run_dir = runs_root / normalize_branch(branch)
        if run_dir.is_dir() and has_valid_state(run_dir):
            logger.debug(f"Resolved run from branch {branch}: {run_dir}")
            return run_dir

    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        raise RunResolutionError(
            f"No runs found in {runs_root}. Create one with: ralph new <name>"
        )
    raise RunResolutionError(
        "Multiple runs found and none matches the current branch. Use --run to pick one.",
        candidates,
    )
