"""
ralph new - Create a new run.

Creates:
- .ralph/runs/<name>/prd.json (empty story list, or copied from --from FILE)
- .ralph/runs/<name>/progress.txt
- .ralph/runs/<name>/ralph.env with the default settings commented out
"""

from datetime import datetime
from pathlib import Path

from ralph.lib.constants import PRD_FILE, PROGRESS_FILE, RUN_ENV_FILE, RUN_NAME_PATTERN
from ralph.lib.fsutil import atomic_write_json, atomic_write_text
from ralph.lib.validate import ValidationError, validate, validate_file
from ralph.runner.run_store import progress_header

ENV_TEMPLATE = """\
# ralph settings for this run. Command-line flags take precedence.
# TOOL=amp
# REVIEWER=codex
# MAX_ITERATIONS=10
# MAX_REVIEW_ROUNDS=3
# RATE_LIMIT_DELAYS=300,900,1800
# RATE_LIMIT_MAX_WAIT=0
# AGENT_TIMEOUT=0
# ITERATION_PAUSE=2
"""


def build_prd(name: str, branch: str | None, project: str | None) -> dict:
    return {
        "project": project or name,
        "branchName": branch or f"ralph/{name}",
        "description": "",
        "userStories": [],
    }


def cmd_new(args, workspace: Path, runs_root: Path) -> int:
    """Create a new run directory."""
    name = args.name

    if not RUN_NAME_PATTERN.match(name):
        print(f"ERROR: Invalid run name '{name}'")
        print("  Must start with a letter or digit, then letters/digits/'.'/'_'/'-'")
        return 1

    run_dir = runs_root / name
    if run_dir.exists():
        print(f"ERROR: Run '{name}' already exists at {run_dir}")
        return 1

    if args.from_file:
        try:
            prd = validate_file(Path(args.from_file), "prd")
        except ValidationError as e:
            print(f"ERROR: {e}")
            return 1
        if args.branch:
            prd["branchName"] = args.branch
        if args.project:
            prd["project"] = args.project
    else:
        prd = build_prd(name, args.branch, args.project)

    try:
        validate(prd, "prd")
    except ValidationError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Creating run at {run_dir}...")
    run_dir.mkdir(parents=True)
    atomic_write_json(run_dir / PRD_FILE, prd)
    atomic_write_text(run_dir / PROGRESS_FILE, progress_header(datetime.now()))
    atomic_write_text(run_dir / RUN_ENV_FILE, ENV_TEMPLATE)

    print()
    print(f"Created run '{name}' ({len(prd['userStories'])} stories, branch {prd.get('branchName', '')})")
    print()
    print("Next steps:")
    if not prd["userStories"]:
        print(f"  Add stories to {run_dir / PRD_FILE}")
    print(f"  ralph run --run {name}")
    return 0
