"""Tests for ralph.runner.review_gate."""

import json

import pytest

from ralph.runner.review_gate import (
    CRASH_NOTE,
    CRASH_REVIEWER_COMMIT_NOTE,
    GateAction,
    PASS_NOTE,
    PASS_SELF_COMMIT_NOTE,
    ReviewGate,
    SKIP_NOTE,
    Verdict,
    VerdictStatus,
    parse_verdict,
)
from ralph.runner.round_state import RoundStateStore
from ralph.runner.run_log import RunLog
from ralph.runner.run_store import RunStore

from conftest import make_story, write_prd


def report(verdict="PASS", issues=None, **extra):
    return json.dumps({"verdict": verdict, "issues": issues or [], **extra})


def issue(severity):
    return {"severity": severity, "file": "a.py", "line": 1, "description": "d"}


class TestParseVerdict:
    """parse_verdict() classification."""

    def test_missing_report_is_crash(self):
        assert parse_verdict(None).status is VerdictStatus.CRASH

    def test_unparseable_report_is_crash(self):
        assert parse_verdict("{not json").status is VerdictStatus.CRASH

    def test_schema_invalid_report_is_crash(self):
        assert parse_verdict(json.dumps({"issues": []})).status is VerdictStatus.CRASH

    def test_clean_pass(self):
        v = parse_verdict(report("PASS", summary="looks good", story_id="US-001"))
        assert v.status is VerdictStatus.PASS
        assert v.summary == "looks good"
        assert v.story_id == "US-001"
        assert not v.overridden

    def test_pass_with_minor_issues(self):
        v = parse_verdict(report("PASS", [issue("minor"), issue("nit")]))
        assert v.status is VerdictStatus.PASS
        assert len(v.issues) == 2

    @pytest.mark.parametrize("severity", ["critical", "important", "HIGH", "blocker", "major", "medium"])
    def test_blocking_issue_forces_needs_fix(self, severity):
        v = parse_verdict(report("PASS", [issue(severity)]))
        assert v.status is VerdictStatus.NEEDS_FIX
        assert v.overridden

    def test_unknown_severity_is_blocking(self):
        v = parse_verdict(report("PASS", [issue("catastrophic")]))
        assert v.status is VerdictStatus.NEEDS_FIX
        assert v.issues[0].severity == "important"

    def test_needs_fix_without_blocking_issues_passes(self):
        v = parse_verdict(report("NEEDS_FIX", [issue("minor")]))
        assert v.status is VerdictStatus.PASS
        assert v.overridden

    def test_needs_fix_with_critical(self):
        v = parse_verdict(report("NEEDS_FIX", [issue("critical")]))
        assert v.status is VerdictStatus.NEEDS_FIX
        assert not v.overridden
        assert len(v.blocking_issues) == 1

    @pytest.mark.parametrize("literal", ["needs-fix", "needs fix", "pass"])
    def test_literal_is_normalised(self, literal):
        assert parse_verdict(report(literal)).status is VerdictStatus.PASS

    def test_unrecognised_literal_is_unknown(self):
        v = parse_verdict(report("MAYBE"))
        assert v.status is VerdictStatus.UNKNOWN
        assert v.reported == "MAYBE"


@pytest.fixture
def gate_env(workdir, run_dir, fake_git):
    write_prd(run_dir, [make_story("US-001", title="Add login")])
    store = RunStore(run_dir)
    markers = RoundStateStore(workdir)
    gate = ReviewGate(workdir, store, markers, RunLog(run_dir, quiet=True))
    return gate, store, markers, fake_git


class TestDispatch:
    """ReviewGate.dispatch() side effects."""

    def test_pass_reviewer_committed(self, gate_env):
        gate, store, markers, git = gate_env
        before = git.head
        git.commit("feat: [US-001] - Add login")

        decision = gate.dispatch(Verdict(VerdictStatus.PASS), "US-001", before)

        assert decision.action is GateAction.PASSED
        assert decision.committed_by == "reviewer"
        assert markers.baseline() == git.head
        assert store.get_story("US-001").passes
        assert store.get_story("US-001").notes == PASS_NOTE
        assert len(git.commits) == 1

    def test_pass_with_staged_changes_commits(self, gate_env):
        gate, store, markers, git = gate_env
        git.staged = True

        decision = gate.dispatch(Verdict(VerdictStatus.PASS), "US-001", git.head)

        assert decision.action is GateAction.PASSED
        assert decision.committed_by == "orchestrator"
        assert git.commits == ["feat: [US-001] - Add login"]
        assert markers.baseline() == git.head
        assert store.get_story("US-001").notes == PASS_SELF_COMMIT_NOTE

    def test_pass_without_any_commit_is_abandoned(self, gate_env):
        gate, store, markers, git = gate_env
        decision = gate.dispatch(Verdict(VerdictStatus.PASS), "US-001", git.head)
        assert decision.action is GateAction.ABANDONED
        assert not store.get_story("US-001").passes

    def test_failed_commit_abandons(self, gate_env):
        gate, store, markers, git = gate_env
        git.staged = True
        git.fail_commit = True
        decision = gate.dispatch(Verdict(VerdictStatus.PASS), "US-001", git.head)
        assert decision.action is GateAction.ABANDONED
        assert not store.get_story("US-001").passes
        assert markers.baseline() is None

    def test_crash_fallback_commit(self, gate_env):
        gate, store, markers, git = gate_env
        git.staged = True

        decision = gate.dispatch(Verdict(VerdictStatus.CRASH, summary="no report"), "US-001", git.head)

        assert decision.action is GateAction.PASSED
        assert git.commits == ["feat: [US-001] - Add login (unreviewed: reviewer crashed)"]
        story = store.get_story("US-001")
        assert story.passes
        assert story.notes == CRASH_NOTE
        assert CRASH_NOTE in store.progress_path.read_text()

    def test_crash_after_reviewer_commit(self, gate_env):
        gate, store, markers, git = gate_env
        before = git.head
        git.commit("feat: [US-001] - Add login")
        decision = gate.dispatch(Verdict(VerdictStatus.CRASH), "US-001", before)
        assert decision.action is GateAction.PASSED
        assert store.get_story("US-001").notes == CRASH_REVIEWER_COMMIT_NOTE

    def test_crash_with_nothing_to_commit(self, gate_env):
        gate, store, markers, git = gate_env
        decision = gate.dispatch(Verdict(VerdictStatus.CRASH), "US-001", git.head)
        assert decision.action is GateAction.ABANDONED
        assert git.commits == []

    @pytest.mark.parametrize("status", [VerdictStatus.NEEDS_FIX, VerdictStatus.UNKNOWN])
    def test_needs_fix_retains_verdict(self, gate_env, status):
        gate, store, markers, git = gate_env
        git.staged = True
        markers.review_path.write_text(report("NEEDS_FIX"))

        decision = gate.dispatch(Verdict(status), "US-001", git.head)

        assert decision.action is GateAction.RETRY
        assert markers.has_review()
        assert git.commits == []
        assert not store.get_story("US-001").passes

    def test_unknown_logged_distinctly(self, gate_env, run_dir):
        gate, *_ = gate_env
        gate.dispatch(Verdict(VerdictStatus.UNKNOWN, reported="MAYBE"), "US-001", None)
        assert "unrecognised verdict 'MAYBE'" in (run_dir / "ralph.log").read_text()

    def test_self_commit(self, gate_env):
        gate, store, markers, git = gate_env
        git.staged = True
        decision = gate.self_commit("US-001")
        assert decision.action is GateAction.PASSED
        assert store.get_story("US-001").notes == SKIP_NOTE
        assert git.commits == ["feat: [US-001] - Add login"]
