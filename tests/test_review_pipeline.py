"""Tests for core.review_pipeline — all agents are mocks."""

import os
from unittest.mock import MagicMock

import pytest

from core.errors import ReviewPhaseError
from core.review_pipeline import ReviewAgents, run_parallel_agents, run_review_pipeline
from core.state import AgentResult, Finding, TestSuiteResult


def _result(agent, findings=None, blocking=None, success=True):
    return AgentResult(agent=agent, success=success, report=f"# {agent}\n",
                       findings=findings or [], blocking_issues=blocking or [])


def _make_agents(tests_pass=True, security_findings=None, qa_success=True, gap_blocking=None):
    return ReviewAgents(
        code_reviewer=MagicMock(return_value=_result(
            "code-review", [Finding(title="Null deref", severity="high", file="a.py")])),
        gap_analyst=MagicMock(return_value=_result("gap-analysis", blocking=gap_blocking)),
        tech_debt_auditor=MagicMock(return_value=_result(
            "tech-debt", [Finding(title="Duplicate helper", severity="low")])),
        refactoring_agent=MagicMock(return_value=_result("refactoring")),
        test_hardener=MagicMock(return_value=_result("test-hardening")),
        test_suite_runner=MagicMock(return_value=TestSuiteResult(passed=tests_pass, output="3 passed")),
        security_scanner=MagicMock(return_value=_result("security-scan", security_findings)),
        qa_smoke_tester=MagicMock(return_value=_result("qa-smoke-test", success=qa_success)),
    )


def _review_dir(tmp_path, epic=1):
    return tmp_path / ".buildgate" / "reviews" / f"epic-{epic}"


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_clean_review_can_advance(tmp_path):
    agents = _make_agents()
    result = run_review_pipeline(str(tmp_path), 1, agents)

    assert result.can_advance is True
    assert result.blocking_issues == []
    assert result.last_completed_phase == "qa-smoke-test"
    assert [r.agent for r in result.parallel_results] == ["code-review", "gap-analysis", "tech-debt"]
    for agent in (agents.code_reviewer, agents.gap_analyst, agents.tech_debt_auditor,
                  agents.refactoring_agent, agents.test_hardener, agents.test_suite_runner,
                  agents.security_scanner, agents.qa_smoke_tester):
        assert agent.call_count == 1


def test_refactoring_gets_flattened_findings(tmp_path):
    agents = _make_agents()
    run_review_pipeline(str(tmp_path), 1, agents)

    context, findings = agents.refactoring_agent.call_args[0]
    assert context.epic_number == 1
    assert [f.title for f in findings] == ["Null deref", "Duplicate helper"]


def test_test_suite_runs_in_project_dir(tmp_path):
    agents = _make_agents()
    run_review_pipeline(str(tmp_path), 1, agents)
    agents.test_suite_runner.assert_called_once_with(str(tmp_path))


def test_reports_written(tmp_path):
    run_review_pipeline(str(tmp_path), 1, _make_agents())
    names = set(os.listdir(_review_dir(tmp_path)))
    assert {"code-review.md", "gap-analysis.md", "tech-debt.md", "refactoring.md",
            "test-hardening.md", "test-suite.log", "security-scan.md"} <= names
    assert (_review_dir(tmp_path) / "qa-smoke-test" / "results.md").is_file()
    assert (_review_dir(tmp_path) / "test-suite.log").read_text() == "3 passed"


def test_progress_events_in_order(tmp_path):
    events = []
    run_review_pipeline(str(tmp_path), 1, _make_agents(), on_progress=lambda p, s: events.append((p, s)))
    phases = [p for p, s in events if s == "starting"]
    assert phases == ["parallel", "refactoring", "test-hardening", "test-suite",
                      "security-scan", "qa-smoke-test"]
    assert all(s in ("starting", "completed") for _, s in events)
    assert len(events) == 12


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

def test_failing_tests_skip_security_and_qa(tmp_path):
    agents = _make_agents(tests_pass=False)
    result = run_review_pipeline(str(tmp_path), 1, agents)

    assert result.can_advance is False
    assert "Test suite failed after review fixes" in result.blocking_issues
    assert result.last_completed_phase == "test-suite"
    assert result.security_result is None
    assert result.qa_result is None
    agents.security_scanner.assert_not_called()
    agents.qa_smoke_tester.assert_not_called()


def test_critical_security_finding_blocks(tmp_path):
    findings = [Finding(title="Hardcoded secret", severity="critical", file="a.py"),
                Finding(title="Debug mode enabled", severity="medium", file="a.py")]
    result = run_review_pipeline(str(tmp_path), 1, _make_agents(security_findings=findings))

    assert result.can_advance is False
    assert result.blocking_issues == ["[critical] Hardcoded secret"]


def test_medium_security_finding_does_not_block(tmp_path):
    findings = [Finding(title="Debug mode enabled", severity="medium")]
    result = run_review_pipeline(str(tmp_path), 1, _make_agents(security_findings=findings))
    assert result.can_advance is True


def test_qa_failure_blocks(tmp_path):
    result = run_review_pipeline(str(tmp_path), 1, _make_agents(qa_success=False))
    assert result.can_advance is False
    assert result.blocking_issues == [
        "QA smoke test failed during review: app crashes or console errors detected"
    ]


def test_parallel_blocking_issues_collected(tmp_path):
    result = run_review_pipeline(str(tmp_path), 1, _make_agents(gap_blocking=["Missing login flow"]))
    assert result.blocking_issues == ["Missing login flow"]
    assert result.can_advance is False


def test_can_advance_matches_blocking_issues(tmp_path):
    for kwargs in ({}, {"tests_pass": False}, {"qa_success": False}):
        result = run_review_pipeline(str(tmp_path), 1, _make_agents(**kwargs))
        assert result.can_advance == (not result.blocking_issues)


# ---------------------------------------------------------------------------
# Agent failures
# ---------------------------------------------------------------------------

def test_parallel_agent_error_is_wrapped(tmp_path):
    agents = _make_agents()
    agents.gap_analyst.side_effect = RuntimeError("model overloaded")
    events = []

    with pytest.raises(ReviewPhaseError) as exc_info:
        run_review_pipeline(str(tmp_path), 1, agents, on_progress=lambda p, s: events.append((p, s)))

    assert exc_info.value.phase == "parallel"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert 'Review phase "parallel" failed: model overloaded' in str(exc_info.value)
    assert events[-1] == ("parallel", "failed")
    agents.refactoring_agent.assert_not_called()


def test_sequential_agent_error_names_phase(tmp_path):
    agents = _make_agents()
    agents.test_hardener.side_effect = ValueError("bad path")

    with pytest.raises(ReviewPhaseError) as exc_info:
        run_review_pipeline(str(tmp_path), 1, agents)

    assert exc_info.value.phase == "test-hardening"
    assert exc_info.value.cause.args == ("bad path",)
    agents.test_suite_runner.assert_not_called()


def test_reviewers_are_required():
    agents = _make_agents()
    with pytest.raises(TypeError):
        ReviewAgents(
            code_reviewer=agents.code_reviewer,
            gap_analyst=agents.gap_analyst,
            refactoring_agent=agents.refactoring_agent,
            test_hardener=agents.test_hardener,
            test_suite_runner=agents.test_suite_runner,
            security_scanner=agents.security_scanner,
            qa_smoke_tester=agents.qa_smoke_tester,
        )


def test_run_parallel_agents_waits_for_all():
    slow = MagicMock(return_value=_result("slow"))
    failing = MagicMock(side_effect=RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        run_parallel_agents([("fail", failing), ("slow", slow)], context=None)
    slow.assert_called_once_with(None)
