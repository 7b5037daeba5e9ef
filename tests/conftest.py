"""Shared fixtures: run directories, a fake git layer and scripted agents."""

import json
from pathlib import Path

import pytest

from ralph import git as ralph_git
from ralph.agents.invoker import AgentInvoker, SkipReviewer
from ralph.git.runner import GitResult
from ralph.lib.constants import REVIEW_FILE, STORY_MARKER
from ralph.lib.prompts import clear_cache
from ralph.lib.ratelimit import RateLimitController
from ralph.runner.process import ProcessResult
from ralph.runner.round_state import RoundStateStore
from ralph.runner.run_log import RunLog
from ralph.runner.run_store import RunStore
from ralph.workflow.round_loop import RoundLoop
from ralph.workflow.story_loop import StoryLoop


def make_story(story_id: str, priority: int = 1, passes: bool = False, title: str | None = None) -> dict:
    return {
        "id": story_id,
        "title": title or f"Story {story_id}",
        "description": "",
        "acceptanceCriteria": ["it works"],
        "priority": priority,
        "passes": passes,
        "notes": "",
    }


def write_prd(run_dir: Path, stories: list[dict], branch: str = "ralph/feature") -> Path:
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / "prd.json"
    path.write_text(json.dumps({
        "project": "demo",
        "branchName": branch,
        "description": "",
        "userStories": stories,
    }, indent=2))
    return path


def read_prd(run_dir: Path) -> dict:
    return json.loads((run_dir / "prd.json").read_text())


def write_verdict(workdir: Path, verdict: str = "PASS", issues: list | None = None, story_id: str = "US-001"):
    (workdir / REVIEW_FILE).write_text(json.dumps({
        "story_id": story_id,
        "verdict": verdict,
        "summary": f"{verdict} summary",
        "issues": issues or [],
    }))


class FakeGit:
    """In-memory stand-in for the staging area and HEAD."""

    def __init__(self):
        self.staged = False
        self.staged_files = ["src/app.py"]
        self.head = "0" * 40
        self.commits: list[str] = []
        self.fail_commit = False

    def commit(self, message: str) -> str:
        self.commits.append(message)
        self.head = f"{len(self.commits):040x}"
        self.staged = False
        return self.head

    # ralph.git API
    def has_staged_changes(self, worktree):
        return self.staged

    def get_staged_files(self, worktree):
        return list(self.staged_files) if self.staged else []

    def get_staged_stat(self, worktree):
        return ""

    def get_commit_sha(self, worktree, ref="HEAD"):
        return self.head

    def commit_staged(self, worktree, message):
        if self.fail_commit:
            return GitResult(returncode=1, stdout="", stderr="pre-commit hook failed")
        if not self.staged:
            return GitResult(returncode=1, stdout="nothing to commit", stderr="")
        self.commit(message)
        return GitResult(returncode=0, stdout="", stderr="")


@pytest.fixture
def fake_git(monkeypatch):
    fg = FakeGit()
    for name in ("has_staged_changes", "get_staged_files", "get_staged_stat",
                 "get_commit_sha", "commit_staged"):
        monkeypatch.setattr(ralph_git, name, getattr(fg, name))
    return fg


class ScriptedAgent(AgentInvoker):
    """Agent whose Nth invocation runs steps[N] (the last step repeats).

    A step is a callable(prompt, cwd) returning the agent's output text.
    """

    def __init__(self, name: str, steps):
        self.name = name
        self.steps = list(steps)
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def invoke(self, prompt: str, cwd: Path) -> ProcessResult:
        step = self.steps[min(len(self.prompts), len(self.steps) - 1)]
        self.prompts.append(prompt)
        return ProcessResult(returncode=0, output=step(prompt, cwd) or "")


def implementer(fake: FakeGit, story_id: str = "US-001", output: str = "done"):
    """Step: write the story marker and stage something."""
    def step(prompt, cwd):
        (cwd / STORY_MARKER).write_text(story_id + "\n")
        fake.staged = True
        return output
    return step


def idle(output: str = ""):
    """Step: do nothing."""
    def step(prompt, cwd):
        return output
    return step


def reviewer_pass(fake: FakeGit, run_dir: Path, story_id: str = "US-001", output: str = ""):
    """Step: gatekeeper approves, commits and marks the story passed."""
    def step(prompt, cwd):
        write_verdict(cwd, "PASS", story_id=story_id)
        fake.commit(f"feat: [{story_id}] - reviewed")
        data = read_prd(run_dir)
        for s in data["userStories"]:
            if s["id"] == story_id:
                s["passes"] = True
        (run_dir / "prd.json").write_text(json.dumps(data))
        return output
    return step


def reviewer_needs_fix(story_id: str = "US-001", severity: str = "critical"):
    def step(prompt, cwd):
        write_verdict(cwd, "NEEDS_FIX", story_id=story_id, issues=[{
            "severity": severity,
            "category": "correctness",
            "file": "src/app.py",
            "line": 3,
            "description": "off by one",
            "suggestion": "use <=",
        }])
        return ""
    return step


def reviewer_crash():
    def step(prompt, cwd):
        return "panic: reviewer blew up"
    return step


@pytest.fixture(autouse=True)
def _fresh_prompt_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def run_dir(workdir):
    return workdir / ".ralph" / "runs" / "feature"


class LoopHarness:
    """Builds a RoundLoop/StoryLoop over fakes and records sleeps."""

    def __init__(self, workdir: Path, run_dir: Path):
        self.workdir = workdir
        self.run_dir = run_dir
        self.sleeps: list[float] = []
        self.store = RunStore(run_dir)
        self.markers = RoundStateStore(workdir)
        self.run_log = RunLog(run_dir, quiet=True)

    def limiter(self, delays=(5, 15, 30), max_wait=0) -> RateLimitController:
        return RateLimitController(delays=delays, max_wait=max_wait, sleep=self.sleeps.append)

    def round_loop(self, agent, reviewer, max_rounds: int = 3, limiter=None) -> RoundLoop:
        """reviewer=None runs the round with --reviewer skip."""
        return RoundLoop(
            self.workdir, self.store, self.markers, agent, reviewer or SkipReviewer(),
            limiter or self.limiter(), self.run_log, max_rounds=max_rounds,
        )

    def story_loop(self, agent, reviewer, max_rounds: int = 3, max_iterations: int = 5,
                   iteration_pause: float = 0) -> StoryLoop:
        return StoryLoop(
            self.workdir, self.store, self.markers,
            self.round_loop(agent, reviewer, max_rounds=max_rounds),
            self.run_log, max_iterations=max_iterations,
            iteration_pause=iteration_pause, sleep=self.sleeps.append,
        )


@pytest.fixture
def harness(workdir, run_dir):
    return LoopHarness(workdir, run_dir)
