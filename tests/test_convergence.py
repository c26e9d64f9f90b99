"""Tests for core.convergence — stop decisions and persisted cycle history."""

from core.convergence import (
    ConvergenceState,
    CycleResult,
    create_convergence_state,
    format_trend,
    load_convergence_state,
    record_cycle,
    save_convergence_state,
    should_stop,
)


def _cycle(n, remaining, total=10):
    return CycleResult(cycle=n, total_findings=total, fixed=total - remaining, remaining=remaining)


def _state(max_depth, *remaining, threshold=2):
    state = create_convergence_state(max_depth, threshold)
    for i, r in enumerate(remaining, 1):
        record_cycle(state, _cycle(i, r))
    return state


def test_create_uses_default_threshold():
    state = create_convergence_state(5)
    assert state.threshold == 2
    assert state.cycles == []


def test_no_cycles_continues():
    decision = should_stop(_state(3))
    assert decision.stop is False
    assert decision.reason == "no-cycles"


def test_zero_depth_stops_immediately():
    assert should_stop(_state(0)).reason == "max-depth"


def test_converged_at_threshold():
    decision = should_stop(_state(5, 2))
    assert decision.stop is True
    assert decision.reason == "converged"


def test_above_threshold_continues():
    decision = should_stop(_state(5, 8))
    assert decision.stop is False
    assert decision.reason == "continue"


def test_diminishing_returns():
    decision = should_stop(_state(5, 6, 6))
    assert decision.stop is True
    assert decision.reason == "diminishing-returns"


def test_improving_continues():
    assert should_stop(_state(5, 9, 6)).stop is False


def test_max_depth_wins_over_diminishing_returns():
    decision = should_stop(_state(3, 7, 5, 5))
    assert decision.stop is True
    assert decision.reason == "max-depth"


def test_max_depth_wins_over_converged():
    assert should_stop(_state(1, 0)).reason == "max-depth"


def test_record_cycle_appends():
    state = _state(5, 4)
    record_cycle(state, _cycle(2, 3))
    assert [c.cycle for c in state.cycles] == [1, 2]


def test_format_trend():
    text = format_trend(_state(5, 6, 3))
    lines = text.splitlines()
    assert lines[0].startswith("Cycle | Findings")
    assert len(lines) == 4
    assert format_trend(_state(5)) == "No cycles completed."


def test_save_and_load(tmp_path):
    state = _state(4, 7, 5, threshold=1)
    save_convergence_state(str(tmp_path), state)
    loaded = load_convergence_state(str(tmp_path))
    assert loaded == state
    assert (tmp_path / ".buildgate" / "convergence.json").is_file()


def test_load_missing_or_malformed(tmp_path):
    assert load_convergence_state(str(tmp_path)) is None
    (tmp_path / ".buildgate").mkdir()
    (tmp_path / ".buildgate" / "convergence.json").write_text('{"cycles": []}')
    assert load_convergence_state(str(tmp_path)) is None


def test_state_to_dict_shape():
    data = _state(3, 1).to_dict()
    assert set(data) == {"max_depth", "threshold", "cycles"}
    assert ConvergenceState.from_dict(data).cycles[0].remaining == 1
