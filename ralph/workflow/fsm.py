"""Round state machine using transitions library.

One RoundFSM drives the implement -> review -> fix cycle for a single story
within one iteration. The machine is in-memory only: what survives a crash is
the marker files and the run state, never the FSM.

Usage:
    from ralph.workflow.fsm import RoundFSM

    fsm = RoundFSM("US-001", max_rounds=3)
    fsm.start()          # idle -> implementing (round 1)
    fsm.review()         # implementing -> reviewing
    fsm.needs_fix()      # reviewing -> fixing (round 2), or exhausted
"""

import logging

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "idle",
    "implementing",
    "reviewing",
    "fixing",
    "passed",
    "exhausted",
    "nothing_staged",
    "abandoned",
]

TERMINAL_STATES = ("passed", "exhausted", "nothing_staged", "abandoned")

TRANSITIONS = [
    {"trigger": "start", "source": "idle", "dest": "implementing", "after": "_advance_round"},

    # Work staged -> review; nothing staged -> stop without review
    {"trigger": "review", "source": ["implementing", "fixing"], "dest": "reviewing"},
    {"trigger": "nothing_staged", "source": ["implementing", "fixing"], "dest": "nothing_staged"},

    # Verdict outcomes. needs_fix falls through to exhausted once rounds run out.
    {"trigger": "pass_story", "source": "reviewing", "dest": "passed"},
    {"trigger": "needs_fix", "source": "reviewing", "dest": "fixing",
     "conditions": "has_rounds_left", "after": "_advance_round"},
    {"trigger": "needs_fix", "source": "reviewing", "dest": "exhausted"},

    {"trigger": "abandon", "source": ["implementing", "reviewing", "fixing"], "dest": "abandoned"},
]


class RoundFSM:
    """State machine for the review rounds of one story.

    Tracks the round number (1-based) alongside the state; max_rounds bounds
    how many implement/fix cycles can happen before the story is given up for
    this iteration.
    """

    def __init__(self, story_id: str, max_rounds: int):
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {max_rounds}")
        self.story_id = story_id
        self.max_rounds = max_rounds
        self.round = 0

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def has_rounds_left(self, event) -> bool:
        return self.round < self.max_rounds

    def _advance_round(self, event) -> None:
        self.round += 1

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.story_id}: {from_state} -> {to_state} ({trigger}, round {self.round})")

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES
