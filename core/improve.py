"""Improvement cycles — repeatedly analyze, fix and review an existing codebase.

Per cycle (one epic each):
    ANALYZING   run the analyzer, verify its findings
    BUILDING    hand the verified findings to the builder
    REVIEWING   adversarial review loop
    SIGN_OFF    epic sign-off
    COMPLETE    record the cycle, ask the convergence tracker whether to stop

Cycle N writes its review artifacts under ``reviews/improve-N``, apart from
build epics. Cycle history is saved to convergence.json after every cycle, so
an interrupted run resumes with the cycles it already has.
"""

import logging

from core.adversarial import generate_adversarial_summary, run_adversarial_loop, to_review_phase_result
from core.convergence import (
    CycleResult,
    create_convergence_state,
    format_trend,
    load_convergence_state,
    record_cycle,
    save_convergence_state,
    should_stop,
)
from core.signoff import run_epic_sign_off
from core.state import Phase
from core.verifier import verify_findings

logger = logging.getLogger(__name__)

REVIEW_PREFIX = "improve"


def run_improve_loop(
    orchestrator,
    project_dir,
    analyzer,
    builder,
    loop_agents,
    fixer,
    test_suite_runner,
    max_depth,
    threshold=None,
    autonomous=True,
    sign_off_prompt=None,
    fix_cycle_agents=None,
    on_progress=None,
):
    """Run improvement cycles until the convergence tracker says stop.

    Args:
        analyzer: ``(project_dir) -> list[Finding]``.
        builder: ``(project_dir, findings) -> None``; applies improvements.
        loop_agents / fixer / test_suite_runner: passed to the adversarial loop.

    Returns the final ConvergenceState.
    """
    def progress(phase, message):
        logger.info("[%s] %s", phase, message)
        if on_progress:
            on_progress(phase, message)

    state = load_convergence_state(project_dir)
    if state is None or state.max_depth != max_depth:
        state = create_convergence_state(max_depth, threshold)
    elif state.cycles:
        progress("IMPROVE", f"Resuming after cycle {state.cycles[-1].cycle}")

    decision = should_stop(state)
    while not decision.stop:
        cycle = len(state.cycles) + 1
        progress("IMPROVE", f"Starting improvement cycle {cycle}/{max_depth}")

        orchestrator.start_epic(cycle)
        orchestrator.transition(Phase.ANALYZING)
        verification = verify_findings(project_dir, analyzer(project_dir))
        findings = verification.verified
        progress("ANALYZING", f"{len(findings)} verified findings "
                              f"({len(verification.discarded)} discarded)")

        if not findings:
            record_cycle(state, CycleResult(cycle=cycle, total_findings=0, fixed=0, remaining=0))
            save_convergence_state(project_dir, state)
            orchestrator.transition(Phase.COMPLETE)
            progress("ANALYZING", "No findings, codebase is clean")
            break

        orchestrator.transition(Phase.BUILDING)
        builder(project_dir, findings)
        orchestrator.set_last_completed_step("build")

        orchestrator.transition(Phase.REVIEWING)
        loop_result = run_adversarial_loop(
            project_dir,
            cycle,
            loop_agents,
            fixer,
            test_suite_runner=test_suite_runner,
            on_progress=lambda i, phase, msg: progress("REVIEWING", f"[iter {i}] {phase}: {msg}"),
            review_prefix=REVIEW_PREFIX,
        )
        generate_adversarial_summary(project_dir, cycle, loop_result, review_prefix=REVIEW_PREFIX)

        orchestrator.transition(Phase.SIGN_OFF)
        run_epic_sign_off(
            project_dir,
            cycle,
            to_review_phase_result(cycle, loop_result),
            sign_off_prompt=sign_off_prompt,
            fix_cycle_agents=fix_cycle_agents,
            autonomous=autonomous,
            review_prefix=REVIEW_PREFIX,
        )
        orchestrator.transition(Phase.COMPLETE)

        remaining = len(loop_result.unresolved_findings)
        record_cycle(state, CycleResult(
            cycle=cycle,
            total_findings=len(findings),
            fixed=max(0, len(findings) - remaining),
            remaining=remaining,
        ))
        save_convergence_state(project_dir, state)

        decision = should_stop(state)
        progress("IMPROVE", f"Cycle {cycle}: {remaining} remaining ({decision.reason})")

    progress("IMPROVE", f"Improvement run finished\n{format_trend(state)}")
    return state
