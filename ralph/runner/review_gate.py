"""
Review gate: interprets the reviewer's verdict and decides who commits.

The reviewer is the gatekeeper and normally commits itself. The orchestrator
commits only when the reviewer passed the change but left it staged, when
review is skipped, or as a logged fallback when the reviewer crashed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ralph import git
from ralph.lib.validate import ValidationError, parse_and_validate
from ralph.runner.round_state import RoundStateStore
from ralph.runner.run_log import RunLog
from ralph.runner.run_store import RunStore

logger = logging.getLogger(__name__)

PASS_NOTE = "Passed review"
PASS_SELF_COMMIT_NOTE = "Passed review (staged changes committed by orchestrator)"
CRASH_NOTE = "Committed WITHOUT review: reviewer crashed (fallback commit)"
CRASH_REVIEWER_COMMIT_NOTE = "Reviewer crashed after committing; verdict unavailable"
SKIP_NOTE = "Committed without review (--reviewer skip)"


class VerdictStatus(Enum):
    PASS = "PASS"
    NEEDS_FIX = "NEEDS_FIX"
    CRASH = "CRASH"
    UNKNOWN = "UNKNOWN"


SEVERITY_ALIASES = {
    "critical": "critical",
    "blocker": "critical",
    "high": "critical",
    "important": "important",
    "major": "important",
    "medium": "important",
    "minor": "minor",
    "low": "minor",
    "nit": "minor",
    "info": "minor",
    "suggestion": "minor",
}
BLOCKING_SEVERITIES = ("critical", "important")


@dataclass
class Issue:
    severity: str
    category: str = ""
    file: str | None = None
    line: int | str | None = None
    description: str = ""
    suggestion: str | None = None

    @property
    def blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES

    @classmethod
    def from_dict(cls, data: dict) -> "Issue":
        raw = str(data.get("severity", "")).strip().lower()
        # Unrecognised severities count as blocking
        severity = SEVERITY_ALIASES.get(raw, "important")
        return cls(
            severity=severity,
            category=data.get("category", "") or "",
            file=data.get("file"),
            line=data.get("line"),
            description=data.get("description", "") or "",
            suggestion=data.get("suggestion"),
        )


@dataclass
class Verdict:
    status: VerdictStatus
    issues: list[Issue] = field(default_factory=list)
    summary: str = ""
    story_id: str | None = None
    reported: str | None = None    # the reviewer's literal verdict field
    overridden: bool = False       # reported verdict contradicted the issues

    @property
    def blocking_issues(self) -> list[Issue]:
        return [i for i in self.issues if i.blocking]


def parse_verdict(text: str | None) -> Verdict:
    """Classify a verdict report.

    Missing or unparseable reports are CRASH. Any critical/important issue
    means NEEDS_FIX whatever the report claims; a recognised verdict with no
    such issues means PASS. Anything else is UNKNOWN.
    """
    if text is None:
        return Verdict(VerdictStatus.CRASH, summary="reviewer produced no verdict report")

    try:
        data = parse_and_validate(text, "review", "verdict report")
    except ValidationError as e:
        return Verdict(VerdictStatus.CRASH, summary=str(e))

    issues = [Issue.from_dict(i) for i in data.get("issues", [])]
    reported = str(data["verdict"]).strip().upper().replace("-", "_").replace(" ", "_")
    blocking = any(i.blocking for i in issues)

    if blocking:
        status = VerdictStatus.NEEDS_FIX
    elif reported in (VerdictStatus.PASS.value, VerdictStatus.NEEDS_FIX.value):
        status = VerdictStatus.PASS
    else:
        status = VerdictStatus.UNKNOWN

    overridden = status in (VerdictStatus.PASS, VerdictStatus.NEEDS_FIX) and reported != status.value
    return Verdict(
        status=status,
        issues=issues,
        summary=data.get("summary", "") or "",
        story_id=data.get("story_id"),
        reported=reported,
        overridden=overridden,
    )


def format_issues(verdict: Verdict) -> list[str]:
    lines = []
    for issue in verdict.issues:
        where = issue.file or "?"
        if issue.line not in (None, ""):
            where = f"{where}:{issue.line}"
        lines.append(f"    [{issue.severity}] {where} - {issue.description}")
    return lines


class GateAction(Enum):
    PASSED = "passed"        # story committed and marked passed; round loop ends
    RETRY = "retry"          # verdict retained; next round fixes
    ABANDONED = "abandoned"  # nothing usable; story left for the next iteration


@dataclass
class GateDecision:
    action: GateAction
    note: str = ""
    committed_by: str | None = None   # "reviewer" or "orchestrator"
    commit_sha: str | None = None


class ReviewGate:
    """Applies one verdict to the working tree and run state."""

    def __init__(self, workdir: Path, store: RunStore, markers: RoundStateStore, run_log: RunLog):
        self.workdir = workdir
        self.store = store
        self.markers = markers
        self.run_log = run_log

    def dispatch(self, verdict: Verdict, story_id: str, pre_review_head: str | None) -> GateDecision:
        """Act on a verdict for story_id. Evaluated once per round."""
        status = verdict.status

        if verdict.overridden:
            self.run_log.say(
                f"  WARNING: reviewer said {verdict.reported} but reported "
                f"{len(verdict.blocking_issues)} blocking issue(s); treating as {status.value}"
            )

        if status is VerdictStatus.CRASH:
            return self._on_crash(verdict, story_id, pre_review_head)
        if status is VerdictStatus.PASS:
            return self._on_pass(story_id, pre_review_head)

        if status is VerdictStatus.UNKNOWN:
            self.run_log.say(f"  WARNING: unrecognised verdict '{verdict.reported}'; treating as NEEDS_FIX")
        for line in format_issues(verdict):
            self.run_log.say(line)
        # Verdict file stays on disk for the next round's fix step
        return GateDecision(GateAction.RETRY)

    def self_commit(self, story_id: str) -> GateDecision:
        """Commit staged changes without review (--reviewer skip)."""
        self.run_log.say("  Review skipped (--reviewer skip); committing staged changes")
        return self._commit_and_pass(story_id, SKIP_NOTE, suffix="")

    def _on_pass(self, story_id: str, pre_review_head: str | None) -> GateDecision:
        if git.has_staged_changes(self.workdir):
            self.run_log.say("  PASS but changes still staged; reviewer forgot to commit, committing")
            return self._commit_and_pass(story_id, PASS_SELF_COMMIT_NOTE, suffix="")

        head = git.get_commit_sha(self.workdir)
        if head is None or head == pre_review_head:
            self.run_log.say("  WARNING: PASS but nothing staged and no new commit; leaving story open")
            return GateDecision(GateAction.ABANDONED)

        self.run_log.say(f"  Reviewer committed {head[:10]}")
        self.markers.set_baseline(head)
        self.store.mark_story_passed(story_id, PASS_NOTE)
        return GateDecision(GateAction.PASSED, PASS_NOTE, committed_by="reviewer", commit_sha=head)

    def _on_crash(self, verdict: Verdict, story_id: str, pre_review_head: str | None) -> GateDecision:
        self.run_log.say(f"  WARNING: reviewer crashed ({verdict.summary})")

        if git.has_staged_changes(self.workdir):
            self.run_log.say("  Performing fallback commit of staged changes (UNREVIEWED)")
            return self._commit_and_pass(story_id, CRASH_NOTE, suffix=" (unreviewed: reviewer crashed)")

        head = git.get_commit_sha(self.workdir)
        if head is not None and head != pre_review_head:
            self.run_log.say(f"  Reviewer committed {head[:10]} before crashing")
            self.markers.set_baseline(head)
            self.store.mark_story_passed(story_id, CRASH_REVIEWER_COMMIT_NOTE)
            return GateDecision(
                GateAction.PASSED, CRASH_REVIEWER_COMMIT_NOTE, committed_by="reviewer", commit_sha=head
            )

        self.run_log.say("  Nothing staged and no new commit; leaving story open")
        return GateDecision(GateAction.ABANDONED)

    def _commit_and_pass(self, story_id: str, note: str, suffix: str) -> GateDecision:
        story = self.store.get_story(story_id)
        title = story.title if story else ""
        message = f"feat: [{story_id}] - {title}{suffix}" if title else f"feat: [{story_id}]{suffix}"

        result = git.commit_staged(self.workdir, message)
        if not result.success:
            self.run_log.say(f"  ERROR: git commit failed: {(result.stderr or result.stdout).strip()}")
            return GateDecision(GateAction.ABANDONED)

        head = git.get_commit_sha(self.workdir)
        self.run_log.say(f"  Committed {head[:10] if head else '?'}: {message}")
        if head:
            self.markers.set_baseline(head)
        self.store.mark_story_passed(story_id, note)
        return GateDecision(GateAction.PASSED, note, committed_by="orchestrator", commit_sha=head)
