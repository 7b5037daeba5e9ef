"""
ralph list - List runs in this workspace.
"""

from pathlib import Path

from ralph.git import get_current_branch
from ralph.runner.models import RunInfo
from ralph.runner.resolver import find_candidate_runs, normalize_branch
from ralph.runner.run_store import RunStore, StateCorruptError


def collect_runs(runs_root: Path) -> list[RunInfo]:
    runs = []
    for run_dir in find_candidate_runs(runs_root):
        store = RunStore(run_dir)
        try:
            data = store.load()
        except StateCorruptError as e:
            runs.append(RunInfo(run_dir.name, str(run_dir), "", 0, 0, error=str(e)))
            continue
        stories = data["userStories"]
        remaining = sum(1 for s in stories if s.get("passes") is not True)
        runs.append(RunInfo(
            name=run_dir.name,
            directory=str(run_dir),
            branch_name=data.get("branchName", "") or "",
            total=len(stories),
            remaining=remaining,
        ))
    return runs


def cmd_list(args, workspace: Path, runs_root: Path) -> int:
    """List runs with their progress."""
    runs = collect_runs(runs_root)

    if not runs:
        print(f"Runs: none (in {runs_root})")
        print()
        print("Get started:")
        print("  ralph new <name>   - Create a run")
        return 0

    branch = get_current_branch(workspace)
    current = normalize_branch(branch) if branch else None

    print("Runs")
    print("-" * 60)
    for run in runs:
        marker = "*" if run.name == current else " "
        if run.error:
            print(f"{marker} {run.name:<24} [INVALID] {run.error}")
            continue
        done = run.total - run.remaining
        status = "complete" if run.remaining == 0 else f"{done}/{run.total} passed"
        print(f"{marker} {run.name:<24} {status:<16} {run.branch_name}")
    print()
    print(f"{len(runs)} run(s)")
    return 0
