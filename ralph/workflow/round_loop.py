"""
Round loop: implement (or fix) -> stage check -> review -> verdict dispatch.

Runs at most max_rounds cycles for one story. Each cycle calls the
implementation agent, checks that something was staged, asks the reviewer for
a verdict and lets the ReviewGate act on it. Every external call is wrapped in
rate-limit backoff and a run state snapshot/restore.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ralph import git
from ralph.agents.invoker import AgentInvoker
from ralph.lib.constants import BASELINE_MARKER, REVIEW_FILE, STORY_MARKER
from ralph.lib.prompts import render_prompt
from ralph.lib.ratelimit import RateLimitController
from ralph.runner.models import Story
from ralph.runner.process import ProcessResult
from ralph.runner.review_gate import GateAction, ReviewGate, parse_verdict
from ralph.runner.round_state import RoundStateStore
from ralph.runner.run_log import RunLog
from ralph.runner.run_store import RunStore
from ralph.workflow.fsm import RoundFSM

logger = logging.getLogger(__name__)

# RoundOutcome.status values
PASSED = "passed"
NEEDS_FIX_EXHAUSTED = "needs_fix_exhausted"
NOTHING_STAGED = "nothing_staged"
ABANDONED = "abandoned"


@dataclass
class RoundOutcome:
    status: str
    story_id: str | None
    rounds: int
    last_output: str = ""
    note: str = ""

    @property
    def passed(self) -> bool:
        return self.status == PASSED


class RoundLoop:
    """Drives the review rounds for whichever story the agent picks up."""

    def __init__(
        self,
        workdir: Path,
        store: RunStore,
        markers: RoundStateStore,
        agent: AgentInvoker,
        reviewer: AgentInvoker,
        limiter: RateLimitController,
        run_log: RunLog,
        max_rounds: int,
    ):
        self.workdir = workdir
        self.store = store
        self.markers = markers
        self.agent = agent
        self.reviewer = reviewer
        self.limiter = limiter
        self.run_log = run_log
        self.max_rounds = max_rounds
        self.gate = ReviewGate(workdir, store, markers, run_log)

    def _prompt_vars(self, round_no: int) -> dict:
        return {
            "prd_path": str(self.store.prd_path),
            "progress_path": str(self.store.progress_path),
            "story_marker": STORY_MARKER,
            "review_file": REVIEW_FILE,
            "baseline_marker": BASELINE_MARKER,
            "round": round_no,
            "max_rounds": self.max_rounds,
        }

    def _run_external(
        self,
        invoker: AgentInvoker,
        prompt: str,
        produced: Callable[[], bool],
        reset: Callable[[], None] | None = None,
    ) -> ProcessResult:
        """Invoke an agent with backoff, guarding run state around each attempt.

        A clean exit that produced() confirms is never treated as rate limited.
        reset() runs before every attempt.
        """
        def attempt() -> ProcessResult:
            if reset:
                reset()
            snapshot = self.store.snapshot()
            try:
                return invoker.invoke(prompt, self.workdir)
            finally:
                if self.store.verify_or_restore(snapshot):
                    self.run_log.say(f"  WARNING: {invoker.name} damaged {self.store.prd_path.name}; restored")

        def on_wait(retry: int, delay: int):
            self.run_log.say(f"  Rate limited ({invoker.name}); retry {retry} in {delay}s")

        return self.limiter.call(
            attempt,
            lambda r: r.output,
            on_wait=on_wait,
            usable=lambda r: r.success and produced(),
        )

    def _ensure_baseline(self) -> None:
        if self.markers.baseline() is not None:
            return
        head = git.get_commit_sha(self.workdir)
        if head:
            self.markers.set_baseline(head)
            logger.debug(f"Review baseline set to {head}")

    def run(self, story: Story | None = None) -> RoundOutcome:
        """Run rounds until the story passes, is abandoned, or rounds run out.

        `story` is the orchestrator's guess at what the agent will pick; the
        agent's marker file wins when present. Any story an agent marked passed
        without this round passing it is reopened afterwards.
        """
        before = self.store.snapshot()
        earned = None
        try:
            outcome = self._run_rounds(story)
            if outcome.passed:
                earned = outcome.story_id
            return outcome
        finally:
            reopened = self.store.revoke_unearned_passes(before, earned)
            if reopened:
                self.run_log.say(
                    f"  WARNING: {', '.join(reopened)} marked passed without a passing review; reopened"
                )

    def _run_rounds(self, story: Story | None) -> RoundOutcome:
        hint = story.id if story else None
        self._ensure_baseline()

        fsm = RoundFSM(hint or "?", self.max_rounds)
        fsm.start()
        last_output = ""

        while True:
            round_no = fsm.round
            template = "implement" if round_no == 1 else "fix"
            self.run_log.say(f"  Round {round_no}/{self.max_rounds}: {template} ({self.agent.name})")

            prompt = render_prompt(template, self.store.run_dir, **self._prompt_vars(round_no))
            result = self._run_external(self.agent, prompt, lambda: git.has_staged_changes(self.workdir))
            last_output = result.output

            state = self.markers.load()
            story_id = state.story_id or hint
            if story_id and story_id != fsm.story_id:
                fsm.story_id = story_id

            if not git.has_staged_changes(self.workdir):
                self.run_log.say("  Nothing staged after implement step; skipping review")
                fsm.nothing_staged()
                return RoundOutcome(NOTHING_STAGED, story_id, round_no, last_output)

            staged = git.get_staged_files(self.workdir)
            self.run_log.say(f"  {len(staged)} file(s) staged")
            logger.debug(git.get_staged_stat(self.workdir))

            if not story_id:
                self.run_log.say(f"  WARNING: no story id in {STORY_MARKER}; cannot attribute changes")
                fsm.abandon()
                return RoundOutcome(ABANDONED, None, round_no, last_output, "no story id")

            fsm.review()
            if not self.reviewer.reviews:
                decision = self.gate.self_commit(story_id)
            else:
                self.run_log.say(f"  Reviewing {story_id} ({self.reviewer.name})")
                pre_review_head = git.get_commit_sha(self.workdir)
                prompt = render_prompt("review", self.store.run_dir, **self._prompt_vars(round_no))
                result = self._run_external(
                    self.reviewer, prompt, self.markers.has_review, reset=self.markers.clear_review
                )
                last_output = result.output

                verdict = parse_verdict(self.markers.review_text())
                if verdict.story_id and verdict.story_id != story_id:
                    logger.warning(f"Verdict is for {verdict.story_id}, expected {story_id}")
                self.run_log.say(f"  Verdict: {verdict.status.value}"
                                 + (f" - {verdict.summary}" if verdict.summary else ""))
                decision = self.gate.dispatch(verdict, story_id, pre_review_head)

            if decision.action is GateAction.PASSED:
                fsm.pass_story()
                self.run_log.say(f"  {story_id} passed ({decision.note})")
                return RoundOutcome(PASSED, story_id, round_no, last_output, decision.note)

            if decision.action is GateAction.ABANDONED:
                fsm.abandon()
                return RoundOutcome(ABANDONED, story_id, round_no, last_output)

            fsm.needs_fix()
            if fsm.finished:
                # Working tree and index are left as they are for the next iteration
                self.markers.purge()
                self.run_log.say(
                    f"  WARNING: {story_id} still failing review after {self.max_rounds} rounds; "
                    "moving on (changes left in working tree)"
                )
                return RoundOutcome(NEEDS_FIX_EXHAUSTED, story_id, round_no, last_output)

            self.run_log.say(f"  Review requested fixes; starting round {fsm.round}")
