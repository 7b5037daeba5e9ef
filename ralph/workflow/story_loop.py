"""
Story loop: the outer iteration over the run's stories.

Each iteration re-reads the run state, clears per-round markers, runs one
RoundLoop and then decides whether the run is complete, stopped by the user
or should go round again. Rate-limit give-up is the only error that escapes.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ralph.lib.constants import COMPLETE_SIGNAL, STOP_FILE
from ralph.runner.round_state import RoundStateStore
from ralph.runner.run_log import RunLog
from ralph.runner.run_store import RunStore
from ralph.workflow.round_loop import RoundLoop

logger = logging.getLogger(__name__)

# LoopResult.status values
COMPLETE = "complete"
STOPPED = "stopped"
MAX_ITERATIONS = "max_iterations"

# Only the end of the reviewer's output is searched for the signal
SIGNAL_TAIL_LINES = 20


def completion_signalled(output: str) -> bool:
    """True if one of the last lines of output is exactly the completion signal."""
    tail = output.splitlines()[-SIGNAL_TAIL_LINES:]
    return any(line.strip() == COMPLETE_SIGNAL for line in tail)


@dataclass
class LoopResult:
    status: str
    iterations: int
    remaining: int


class StoryLoop:
    def __init__(
        self,
        workdir: Path,
        store: RunStore,
        markers: RoundStateStore,
        round_loop: RoundLoop,
        run_log: RunLog,
        max_iterations: int,
        iteration_pause: float = 0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.workdir = workdir
        self.store = store
        self.markers = markers
        self.round_loop = round_loop
        self.run_log = run_log
        self.max_iterations = max_iterations
        self.iteration_pause = iteration_pause
        self._sleep = sleep

    @property
    def stop_path(self) -> Path:
        return self.workdir / STOP_FILE

    def stop_requested(self) -> bool:
        """Consume the stop file if present."""
        if not self.stop_path.exists():
            return False
        self.stop_path.unlink(missing_ok=True)
        return True

    def _complete(self, iterations: int) -> LoopResult:
        self.run_log.banner("Ralph completed all stories!", f"Finished after {iterations} iteration(s)")
        return LoopResult(COMPLETE, iterations, 0)

    def run(self) -> LoopResult:
        """Iterate until complete, stopped, or out of iterations.

        Raises:
            RateLimitExhausted: when backoff exceeds the configured wait budget
        """
        self.store.ensure_progress_log()

        for iteration in range(1, self.max_iterations + 1):
            remaining = self.store.remaining_count()
            if remaining == 0:
                return self._complete(iteration - 1)

            self.markers.purge()
            self.store.compact_progress_log()

            story = self.store.next_story()
            self.run_log.banner(
                f"Ralph Iteration {iteration} of {self.max_iterations}",
                f"Next story: {story.id} - {story.title}" if story else "Next story: ?",
                f"{remaining} stories remaining",
            )

            outcome = self.round_loop.run(story)
            logger.info(f"Iteration {iteration}: {outcome.status} ({outcome.story_id}, {outcome.rounds} rounds)")

            if outcome.passed:
                remaining = self.store.remaining_count()
                if remaining == 0:
                    return self._complete(iteration)
                if completion_signalled(outcome.last_output):
                    self.run_log.say(
                        f"  WARNING: reviewer signalled completion but {remaining} stories are still open; continuing"
                    )

            if self.stop_requested():
                remaining = self.store.remaining_count()
                self.run_log.banner(
                    "Ralph stopped by user request",
                    f"{remaining} stories remaining",
                    f"Resume with: ralph run --run {self.store.name}",
                )
                return LoopResult(STOPPED, iteration, remaining)

            self.run_log.say(f"Iteration {iteration} complete ({outcome.status}). Continuing...")
            if self.iteration_pause and iteration < self.max_iterations:
                self._sleep(self.iteration_pause)

        remaining = self.store.remaining_count()
        if remaining == 0:
            return self._complete(self.max_iterations)

        self.run_log.banner(
            f"Ralph reached max iterations ({self.max_iterations}) without completing all stories",
            f"{remaining} stories remaining",
            f"Check {self.store.progress_path} for status",
        )
        return LoopResult(MAX_ITERATIONS, self.max_iterations, remaining)
