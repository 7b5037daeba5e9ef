"""
Per-round marker files.

Three small files in the working directory carry state between the
orchestrator and the agents for the story currently being worked:

- .ralph-current-story  active story id (written by the implementation agent)
- .ralph-review.json    latest verdict report (written by the reviewer)
- .ralph-review-base    baseline commit that scopes the next review's diff

RoundStateStore is the only code that checks whether they exist.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from ralph.lib.constants import BASELINE_MARKER, REVIEW_FILE, STORY_MARKER
from ralph.lib.fsutil import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass
class RoundState:
    """Snapshot of the markers for the active story."""
    story_id: str | None = None
    review: dict | None = None
    baseline: str | None = None


class RoundStateStore:
    """Reads, writes and purges the marker files in one working directory."""

    def __init__(self, workdir: Path):
        self.workdir = workdir
        self.story_path = workdir / STORY_MARKER
        self.review_path = workdir / REVIEW_FILE
        self.baseline_path = workdir / BASELINE_MARKER

    def _read_text(self, path: Path) -> str | None:
        try:
            value = path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read {path.name}: {e}")
            return None
        return value or None

    def story_id(self) -> str | None:
        return self._read_text(self.story_path)

    def baseline(self) -> str | None:
        return self._read_text(self.baseline_path)

    def set_baseline(self, sha: str) -> None:
        atomic_write_text(self.baseline_path, sha + "\n")

    def has_review(self) -> bool:
        return self.review_path.is_file()

    def review_text(self) -> str | None:
        return self._read_text(self.review_path)

    def clear_review(self) -> None:
        self.review_path.unlink(missing_ok=True)

    def load(self) -> RoundState:
        review = None
        text = self.review_text()
        if text:
            try:
                review = json.loads(text)
            except json.JSONDecodeError:
                review = None
        return RoundState(story_id=self.story_id(), review=review, baseline=self.baseline())

    def purge(self) -> None:
        """Remove all three markers."""
        for path in (self.story_path, self.review_path, self.baseline_path):
            path.unlink(missing_ok=True)
