"""
Rate-limit detection and progressive backoff.

Agent CLIs report provider throttling as text in their output, not through a
structured channel, so detection is a signature match on captured output.
The backoff grows through the configured delays and then stays at the last
one; a new retry sequence (a new call()) starts again from the first delay.
"""

import logging
import re
import time
from typing import Callable, TypeVar

from .agents_config import DEFAULT_RATE_LIMIT_SIGNATURES
from .config import DEFAULT_RATE_LIMIT_DELAYS

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Throttling errors are printed at the end of a run; scanning only the tail
# keeps an agent that merely talks about rate limiting from tripping the check.
TAIL_LINES = 40


class RateLimitExhausted(Exception):
    """Total backoff would exceed the configured wait budget."""

    def __init__(self, waited: int, budget: int, retries: int):
        self.waited = waited
        self.budget = budget
        self.retries = retries
        super().__init__(
            f"Still rate limited after {retries} retries and {waited}s of waiting "
            f"(budget {budget}s)"
        )


class RateLimitController:
    """Classifies output and re-runs an operation with progressive backoff."""

    def __init__(
        self,
        delays: tuple[int, ...] = DEFAULT_RATE_LIMIT_DELAYS,
        signatures: list[str] | None = None,
        max_wait: int = 0,
        sleep: Callable[[float], None] = time.sleep,
        on_wait: Callable[[int, int], None] | None = None,
    ):
        if not delays:
            raise ValueError("at least one backoff delay is required")
        self.delays = tuple(delays)
        self.max_wait = max_wait
        self._sleep = sleep
        self._on_wait = on_wait
        self._patterns = [
            re.compile(sig, re.IGNORECASE)
            for sig in (signatures if signatures is not None else DEFAULT_RATE_LIMIT_SIGNATURES)
        ]

    def is_rate_limited(self, output: str) -> bool:
        """True if the tail of output matches any rate-limit signature."""
        if not output:
            return False
        tail = "\n".join(output.splitlines()[-TAIL_LINES:])
        return any(p.search(tail) for p in self._patterns)

    def delay_for(self, retry_index: int) -> int:
        """Delay before the Nth retry (0-indexed): grows, then plateaus."""
        return self.delays[min(retry_index, len(self.delays) - 1)]

    def call(
        self,
        operation: Callable[[], T],
        output_of: Callable[[T], str],
        on_wait: Callable[[int, int], None] | None = None,
        usable: Callable[[T], bool] | None = None,
    ) -> T:
        """Run operation() until its output is not rate limited.

        A result that usable() accepts is returned without classifying its
        output.

        The same operation (and therefore the same inputs) is re-invoked after
        each wait. Retries are unbounded unless max_wait > 0, in which case
        RateLimitExhausted is raised instead of starting a wait that would
        push the total past the budget.
        """
        retries = 0
        waited = 0
        while True:
            result = operation()
            if (usable and usable(result)) or not self.is_rate_limited(output_of(result)):
                if retries:
                    logger.info(f"Recovered from rate limiting after {retries} retries")
                return result

            delay = self.delay_for(retries)
            if self.max_wait and waited + delay > self.max_wait:
                raise RateLimitExhausted(waited, self.max_wait, retries)

            logger.warning(f"Rate limited (retry {retries + 1}); waiting {delay}s")
            notify = on_wait or self._on_wait
            if notify:
                notify(retries + 1, delay)
            self._sleep(delay)
            waited += delay
            retries += 1
