"""Tests for core.improve — improvement cycles driven by the convergence tracker."""

from unittest.mock import MagicMock

from core.adversarial import FixBatchResult
from core.convergence import CycleResult, create_convergence_state, load_convergence_state, record_cycle, save_convergence_state
from core.improve import run_improve_loop
from core.orchestrator import PipelineOrchestrator
from core.state import AgentResult, DeveloperProfile, Finding, Phase, TestSuiteResult

STUBBORN = Finding(id="cq-9", title="Global mutable cache", severity="high")


def _orch(tmp_path):
    return PipelineOrchestrator(str(tmp_path), profile=DeveloperProfile(name="dev"))


def _loop_agent(findings):
    agent = MagicMock(return_value=AgentResult(agent="cq", success=True, findings=list(findings)))
    agent.name = "code-quality"
    return agent


def _never_fixes(context, findings):
    return FixBatchResult(unfixed=list(findings), final_test_result=TestSuiteResult(passed=True))


def _run(tmp_path, analyzer_findings, loop_findings, max_depth, threshold=0, **kw):
    kw.setdefault("builder", MagicMock())
    return run_improve_loop(
        _orch(tmp_path),
        str(tmp_path),
        analyzer=MagicMock(return_value=list(analyzer_findings)),
        loop_agents=[_loop_agent(loop_findings)],
        fixer=MagicMock(side_effect=_never_fixes),
        test_suite_runner=MagicMock(return_value=TestSuiteResult(passed=True)),
        max_depth=max_depth,
        threshold=threshold,
        **kw,
    )


def test_clean_codebase_stops_after_one_cycle(tmp_path):
    builder = MagicMock()
    state = _run(tmp_path, [], [], max_depth=5, builder=builder)

    assert len(state.cycles) == 1
    assert state.cycles[0].total_findings == 0
    builder.assert_not_called()
    assert _orch(tmp_path).get_state().phase == Phase.COMPLETE


def test_diminishing_returns_stops_run(tmp_path):
    builder = MagicMock()
    state = _run(tmp_path, [STUBBORN], [STUBBORN], max_depth=5, builder=builder)

    assert [c.remaining for c in state.cycles] == [1, 1]
    assert builder.call_count == 2
    assert _orch(tmp_path).get_state().epic_number == 2


def test_max_depth_caps_cycles(tmp_path):
    state = _run(tmp_path, [STUBBORN], [STUBBORN], max_depth=1)
    assert len(state.cycles) == 1


def test_converged_when_remaining_at_threshold(tmp_path):
    state = _run(tmp_path, [STUBBORN], [STUBBORN], max_depth=5, threshold=1)
    assert len(state.cycles) == 1


def test_cycle_walks_phases_and_writes_artifacts(tmp_path):
    _run(tmp_path, [STUBBORN], [STUBBORN], max_depth=1)

    state = _orch(tmp_path).get_state()
    assert state.phase == Phase.COMPLETE
    assert state.last_completed_step == "build"
    reviews = tmp_path / ".buildgate" / "reviews"
    assert (reviews / "improve-1" / "adversarial-summary.md").is_file()
    assert (reviews / "improve-1" / "summary.md").is_file()
    assert not (reviews / "epic-1").exists()


def test_history_persisted_and_resumed(tmp_path):
    saved = create_convergence_state(3, 0)
    record_cycle(saved, CycleResult(cycle=1, total_findings=4, fixed=1, remaining=3))
    save_convergence_state(str(tmp_path), saved)

    state = _run(tmp_path, [STUBBORN], [STUBBORN], max_depth=3)

    assert [c.cycle for c in state.cycles][:2] == [1, 2]
    assert state.cycles[0].remaining == 3
    assert load_convergence_state(str(tmp_path)) == state


def test_different_max_depth_starts_fresh(tmp_path):
    saved = create_convergence_state(9, 0)
    record_cycle(saved, CycleResult(cycle=1, total_findings=4, fixed=1, remaining=3))
    save_convergence_state(str(tmp_path), saved)

    state = _run(tmp_path, [], [], max_depth=2)
    assert state.max_depth == 2
    assert len(state.cycles) == 1
