"""
Persistent run state: prd.json (the story list) and progress.txt.

The orchestrator never caches run state across a process boundary. Every
query re-reads prd.json, because the reviewer may have rewritten it since the
last look. Writes validate first and go through an atomic temp-file rename.
"""

import json
import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable

from ralph.lib.constants import (
    ARCHIVE_DIR,
    LAST_BRANCH_FILE,
    PRD_FILE,
    PROGRESS_ARCHIVE_FILE,
    PROGRESS_COMPACT_THRESHOLD,
    PROGRESS_FILE,
    PROGRESS_KEEP_ENTRIES,
)
from ralph.lib.fsutil import atomic_write_json, atomic_write_text
from ralph.lib.validate import ValidationError, validate_before_write, validate_file
from ralph.runner.models import Story

logger = logging.getLogger(__name__)

# A progress entry starts with "## YYYY-MM-DD ..."; anything before the first
# one (log header, "## Codebase Patterns") is the durable preamble.
ENTRY_HEADING = re.compile(r'^## \d{4}-\d{2}-\d{2}\b.*$', re.MULTILINE)


class StateCorruptError(Exception):
    """prd.json is missing, unparseable, or fails schema validation."""
    pass


def progress_header(now: datetime) -> str:
    return f"# Ralph Progress Log\nStarted: {now.strftime('%a %b %d %H:%M:%S %Y')}\n---\n"


def split_progress(text: str) -> tuple[str, list[str]]:
    """Split a progress log into (preamble, [entry, ...]).

    "".join([preamble] + entries) == text
    """
    starts = [m.start() for m in ENTRY_HEADING.finditer(text)]
    if not starts:
        return text, []
    preamble = text[:starts[0]]
    bounds = starts + [len(text)]
    entries = [text[bounds[i]:bounds[i + 1]] for i in range(len(starts))]
    return preamble, entries


class RunStore:
    """Reads and writes the persisted state of one run directory."""

    def __init__(self, run_dir: Path, now: Callable[[], datetime] = datetime.now):
        self.run_dir = run_dir
        self.prd_path = run_dir / PRD_FILE
        self.progress_path = run_dir / PROGRESS_FILE
        self.progress_archive_path = run_dir / PROGRESS_ARCHIVE_FILE
        self.archive_dir = run_dir / ARCHIVE_DIR
        self.last_branch_path = run_dir / LAST_BRANCH_FILE
        self._now = now
        self._last_good: dict | None = None

    @property
    def name(self) -> str:
        return self.run_dir.name

    # ─── prd.json ────────────────────────────────────────────────────────

    def load(self) -> dict:
        """Read and validate prd.json.

        Raises:
            StateCorruptError: if the file is missing or invalid
        """
        try:
            data = validate_file(self.prd_path, "prd")
        except ValidationError as e:
            raise StateCorruptError(str(e)) from None
        self._last_good = data
        return data

    def _load_or_last_good(self) -> dict:
        try:
            return self.load()
        except StateCorruptError as e:
            if self._last_good is None:
                raise
            logger.error(f"{e}; continuing with last good copy of {self.prd_path.name}")
            return self._last_good

    def stories(self) -> list[Story]:
        """Stories in document order."""
        return [Story.from_dict(s) for s in self._load_or_last_good()["userStories"]]

    def remaining_count(self) -> int:
        """Number of stories with passes != true. The only completion test."""
        return sum(1 for s in self._load_or_last_good()["userStories"] if s.get("passes") is not True)

    def next_story(self) -> Story | None:
        """Lowest-priority unfinished story (document order breaks ties)."""
        pending = [s for s in self.stories() if not s.passes]
        if not pending:
            return None
        return min(pending, key=lambda s: s.priority)

    def get_story(self, story_id: str) -> Story | None:
        for story in self.stories():
            if story.id == story_id:
                return story
        return None

    def branch_name(self) -> str:
        return self._load_or_last_good().get("branchName", "") or ""

    def mark_story_passed(self, story_id: str, note: str) -> bool:
        """Set passes=true for story_id, record note, append a progress entry.

        Re-reads the file first: if the reviewer already marked the story the
        flag is left alone. Returns True if this call flipped the flag.
        A corrupt prd.json aborts the mutation (logged) and returns False.
        """
        try:
            data = self.load()
        except StateCorruptError as e:
            logger.error(f"Not marking {story_id} as passed: {e}")
            return False

        story = next((s for s in data["userStories"] if s.get("id") == story_id), None)
        if story is None:
            logger.warning(f"Story {story_id} not found in {self.prd_path}; not marking passed")
            return False

        flipped = story.get("passes") is not True
        existing = story.get("notes", "") or ""
        if flipped or note not in existing:
            story["passes"] = True
            story["notes"] = f"{existing}\n{note}" if existing else note
            try:
                validate_before_write(data, "prd", self.prd_path)
            except ValidationError as e:
                logger.error(str(e))
                return False
            atomic_write_json(self.prd_path, data)
            self._last_good = data
        else:
            logger.info(f"Story {story_id} already marked passed")
            return False

        self.append_progress(story_id, story.get("title", ""), note)
        return flipped

    def snapshot(self) -> str | None:
        """Raw text of prd.json if it is currently valid, else None."""
        try:
            self.load()
        except StateCorruptError as e:
            logger.error(f"No good snapshot of run state: {e}")
            return None
        return self.prd_path.read_text()

    def verify_or_restore(self, snapshot: str | None) -> bool:
        """Check prd.json after an external process touched it.

        An invalid rewrite is replaced by the snapshot. Stories that passed in
        the snapshot but no longer do are flipped back to passed.
        Returns True if the file had to be repaired.
        """
        if snapshot is None:
            return False

        try:
            data = self.load()
        except StateCorruptError as e:
            logger.error(f"External process corrupted run state ({e}); restoring previous version")
            atomic_write_text(self.prd_path, snapshot)
            self._last_good = json.loads(snapshot)
            return True

        previous = json.loads(snapshot)
        passed_before = {s["id"] for s in previous["userStories"] if s.get("passes") is True}
        regressed = [
            s for s in data["userStories"]
            if s.get("id") in passed_before and s.get("passes") is not True
        ]
        if not regressed:
            return False

        for s in regressed:
            s["passes"] = True
        logger.error(
            "Restored passes=true for stories unmarked by an external process: "
            + ", ".join(s["id"] for s in regressed)
        )
        atomic_write_json(self.prd_path, data)
        self._last_good = data
        return True

    def revoke_unearned_passes(self, snapshot: str | None, earned: str | None = None) -> list[str]:
        """Reopen stories marked passed since snapshot, except `earned`.

        Only a passing round outcome may close a story; anything an agent
        flipped on its own is set back to passes=false. Returns the ids reopened.
        """
        if snapshot is None:
            return []
        try:
            data = self.load()
        except StateCorruptError as e:
            logger.error(f"Cannot check for unearned passes: {e}")
            return []

        open_before = {s["id"] for s in json.loads(snapshot)["userStories"] if s.get("passes") is not True}
        unearned = [
            s for s in data["userStories"]
            if s.get("id") in open_before and s.get("id") != earned and s.get("passes") is True
        ]
        if not unearned:
            return []

        for s in unearned:
            s["passes"] = False
        try:
            validate_before_write(data, "prd", self.prd_path)
        except ValidationError as e:
            logger.error(str(e))
            return []
        atomic_write_json(self.prd_path, data)
        self._last_good = data
        reopened = [s["id"] for s in unearned]
        logger.error(f"Reopened stories marked passed without a passing review: {', '.join(reopened)}")
        return reopened

    # ─── progress.txt ────────────────────────────────────────────────────

    def ensure_progress_log(self) -> None:
        if not self.progress_path.exists():
            atomic_write_text(self.progress_path, progress_header(self._now()))

    def append_progress(self, story_id: str, title: str, note: str) -> None:
        """Append a dated entry keyed by story id."""
        self.ensure_progress_log()
        stamp = self._now().strftime("%Y-%m-%d %H:%M")
        lines = [f"## {stamp} - {story_id}"]
        if title:
            lines.append(f"- {title}")
        lines.append(f"- {note}")
        lines.append("---")
        current = self.progress_path.read_text()
        if current and not current.endswith("\n"):
            current += "\n"
        atomic_write_text(self.progress_path, current + "\n".join(lines) + "\n")

    def compact_progress_log(
        self,
        threshold: int = PROGRESS_COMPACT_THRESHOLD,
        keep: int = PROGRESS_KEEP_ENTRIES,
    ) -> int:
        """Move all but the last `keep` entries to progress-archive.txt.

        Only runs once there are more than `threshold` entries. The preamble
        stays in place. Returns the number of entries archived.
        """
        if not self.progress_path.exists():
            return 0

        text = self.progress_path.read_text()
        preamble, entries = split_progress(text)
        if len(entries) <= threshold:
            return 0

        archived, kept = entries[:-keep], entries[-keep:]
        # Archive first: a crash in between duplicates entries, never loses them
        with open(self.progress_archive_path, "a") as f:
            f.write("".join(archived))
        atomic_write_text(self.progress_path, preamble + "".join(kept))

        logger.info(f"Compacted progress log: archived {len(archived)} entries")
        return len(archived)

    # ─── session archive ─────────────────────────────────────────────────

    def archive_if_session_changed(self) -> Path | None:
        """Archive the previous session if prd.json's branchName changed.

        Must run before any other mutation in an invocation. Returns the
        archive folder, or None if nothing was archived.
        """
        try:
            current = self.load().get("branchName", "") or ""
        except StateCorruptError as e:
            logger.error(f"Skipping session archive check: {e}")
            return None

        last = ""
        if self.last_branch_path.exists():
            last = self.last_branch_path.read_text().strip()

        folder = None
        if current and last and current != last:
            label = last.removeprefix("ralph/").replace("/", "-")
            folder = self.archive_dir / f"{self._now().strftime('%Y-%m-%d')}-{label}"
            suffix = 2
            while folder.exists():
                folder = self.archive_dir / f"{self._now().strftime('%Y-%m-%d')}-{label}-{suffix}"
                suffix += 1
            folder.mkdir(parents=True)

            for path in (self.prd_path, self.progress_path, self.progress_archive_path):
                if path.exists():
                    shutil.copy2(path, folder / path.name)
            if self.progress_archive_path.exists():
                self.progress_archive_path.unlink()
            atomic_write_text(self.progress_path, progress_header(self._now()))
            logger.info(f"Archived previous run '{last}' to {folder}")

        if current:
            atomic_write_text(self.last_branch_path, current + "\n")

        return folder
