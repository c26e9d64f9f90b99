"""Tests for the main.py CLI — pipeline commands on a temp project dir."""

import json
from unittest.mock import MagicMock, patch

import pytest

import main
from core.adversarial import ApprovalDecision
from core.convergence import CycleResult, create_convergence_state, record_cycle, save_convergence_state
from core.signoff import SignOffDecision
from core.state import EpicSummary, Finding


def _run(tmp_path, *argv):
    main.main(["--project-dir", str(tmp_path), *argv])


def _init(tmp_path):
    _run(tmp_path, "init", "--name", "dev", "--languages", "python")


def test_no_command_prints_help(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main.main([])
    assert exc.value.code == 1


def test_status_fresh(tmp_path, capsys):
    _run(tmp_path, "status")
    assert capsys.readouterr().out.strip() == "No active pipeline."


def test_init_then_advance(tmp_path, capsys):
    _init(tmp_path)
    _run(tmp_path, "advance")
    _run(tmp_path, "status")
    out = capsys.readouterr().out
    assert "Profile saved" in out
    assert "Advanced to PLANNING" in out
    assert "Phase:    PLANNING" in out


def test_advance_without_profile_fails(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        _run(tmp_path, "advance")
    assert exc.value.code == 1
    assert "developer profile" in capsys.readouterr().err


def test_invalid_transition_reports_error(tmp_path, capsys):
    _init(tmp_path)
    with pytest.raises(SystemExit):
        _run(tmp_path, "transition", "building")
    assert "Invalid transition: IDLE → BUILDING" in capsys.readouterr().err


def test_transition_accepts_lowercase(tmp_path, capsys):
    _init(tmp_path)
    _run(tmp_path, "transition", "analyzing")
    assert "Transitioned to ANALYZING" in capsys.readouterr().out


def test_start_epic_and_resume(tmp_path, capsys):
    _run(tmp_path, "start-epic", "3")
    _run(tmp_path, "resume")
    out = capsys.readouterr().out
    assert "Started epic 3" in out
    assert "Epic:           3" in out


def test_reset_needs_confirmation(tmp_path, capsys):
    _run(tmp_path, "start-epic", "3")
    with patch("builtins.input", return_value="n"):
        _run(tmp_path, "reset")
    assert "Reset cancelled." in capsys.readouterr().out

    _run(tmp_path, "reset", "--yes")
    _run(tmp_path, "status")
    assert "No active pipeline." in capsys.readouterr().out


def test_verify_command(tmp_path, capsys):
    (tmp_path / "app.py").write_text("def handler():\n    pass\n")
    findings = tmp_path / "findings.json"
    findings.write_text(json.dumps([
        {"title": "`handler` is empty", "severity": "medium", "file": "app.py"},
        {"title": "`ghost` leaks", "severity": "high", "file": "ghost.py"},
    ]))
    _run(tmp_path, "verify", str(findings), "--json")
    data = json.loads(capsys.readouterr().out)
    assert data["stats"] == {"total": 2, "verified": 1, "discarded": 1}


def test_verify_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit):
        _run(tmp_path, "verify", str(tmp_path / "nope.json"))
    assert "cannot read findings" in capsys.readouterr().err


def test_trend(tmp_path, capsys):
    _run(tmp_path, "trend")
    assert "No improvement cycles recorded." in capsys.readouterr().out

    state = create_convergence_state(4)
    record_cycle(state, CycleResult(cycle=1, total_findings=5, fixed=2, remaining=3))
    save_convergence_state(str(tmp_path), state)
    _run(tmp_path, "trend")
    out = capsys.readouterr().out
    assert "Max depth: 4" in out
    assert "Cycle | Findings" in out


def _summary():
    return EpicSummary(epic_number=1, markdown="# Epic 1", can_advance=True,
                       blocking_issues=[], summary_path="/tmp/summary.md")


def test_sign_off_prompt_approve(capsys):
    with patch("builtins.input", return_value="y"):
        assert main._ask_sign_off(_summary()) == SignOffDecision.approve()


def test_sign_off_prompt_reject_with_feedback():
    with patch("builtins.input", side_effect=["n", "pagination is off"]):
        decision = main._ask_sign_off(_summary())
    assert decision == SignOffDecision.reject("pagination is off")


def test_sign_off_prompt_eof_aborts():
    with patch("builtins.input", side_effect=EOFError):
        with pytest.raises(SystemExit):
            main._ask_sign_off(_summary())


def test_adversarial_agent_failure_reports_error(tmp_path, capsys):
    broken = MagicMock(side_effect=RuntimeError("model overloaded"))
    broken.name = "code-quality"
    with patch("agents.panel.default_loop_agents", return_value=[broken]), \
            patch("agents.panel.default_fixer", return_value=MagicMock()):
        with pytest.raises(SystemExit) as exc:
            _run(tmp_path, "adversarial", "--epic", "1")
    assert exc.value.code == 1
    assert 'Review phase "review" failed: model overloaded' in capsys.readouterr().err


FIXABLE = [Finding(id="cq-1", title="Leak", severity="high", file="app.py"),
           Finding(id="tc-1", title="Untested", severity="medium")]


@pytest.mark.parametrize("answers,expected", [
    (["a"], ApprovalDecision.approve()),
    ([""], ApprovalDecision.approve()),
    (["k"], ApprovalDecision.skip()),
    (["q"], ApprovalDecision.abort()),
    (["s", "cq-1, tc-1"], ApprovalDecision.filter(["cq-1", "tc-1"])),
    (["s", "  "], ApprovalDecision.skip()),
])
def test_approval_prompt(capsys, answers, expected):
    with patch("builtins.input", side_effect=answers):
        assert main._ask_approval(1, 3, FIXABLE, []) == expected
    assert "## Findings to Fix (2)" in capsys.readouterr().out


def test_approval_prompt_eof_aborts():
    with patch("builtins.input", side_effect=EOFError):
        assert main._ask_approval(1, 3, FIXABLE, []) == ApprovalDecision.abort()
