"""Review panel coordinator — runs the specialist review agents for one epic.

Sequence:
    1. Parallel: code reviewer + gap analyst + tech-debt auditor
    2. Refactoring agent (gets the combined findings from step 1)
    3. Test hardener
    4. Full test suite (failure stops here; security/QA never see broken code)
    5. Security scanner (critical/high findings block)
    6. QA smoke test (a failed run blocks)

Quality problems come back as ``blocking_issues`` / ``can_advance`` on the
result. Only an agent raising is fatal: it is wrapped in ReviewPhaseError
tagged with the sub-phase, and not retried here.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable

from config.defaults import DEFAULTS
from core.errors import ReviewPhaseError
from core.quality import blocking_findings, finalize
from core.state import ReviewContext, ReviewPhaseResult
from core.store import review_dir, save_report

logger = logging.getLogger(__name__)

REVIEW_SUB_PHASES = [
    "code-review",
    "gap-analysis",
    "tech-debt",
    "refactoring",
    "test-hardening",
    "test-suite",
    "security-scan",
    "qa-smoke-test",
]

PARALLEL_PHASE = "parallel"


@dataclass
class FixCycleAgents:
    """Agents for the sequential part of the review (steps 2-6)."""

    refactoring_agent: Callable      # (context, findings) -> AgentResult
    test_hardener: Callable          # (context) -> AgentResult
    test_suite_runner: Callable      # (project_dir) -> TestSuiteResult
    security_scanner: Callable       # (context) -> AgentResult
    qa_smoke_tester: Callable        # (context) -> AgentResult


@dataclass
class ReviewAgents(FixCycleAgents):
    """Full review panel: the three parallel reviewers plus the fix-cycle agents."""

    code_reviewer: Callable
    gap_analyst: Callable
    tech_debt_auditor: Callable

    def parallel(self):
        return [
            ("code-review", self.code_reviewer),
            ("gap-analysis", self.gap_analyst),
            ("tech-debt", self.tech_debt_auditor),
        ]


def _notify(on_progress, phase, status):
    if on_progress:
        on_progress(phase, status)


@contextmanager
def review_step(phase, on_progress=None):
    """Report starting/completed/failed and wrap agent errors with the phase name."""
    _notify(on_progress, phase, "starting")
    try:
        yield
    except Exception as e:
        logger.error("Review phase %s failed: %s", phase, e)
        _notify(on_progress, phase, "failed")
        raise ReviewPhaseError(phase, e) from e
    _notify(on_progress, phase, "completed")


def run_parallel_agents(named_agents, context):
    """Run ``(name, fn)`` agents concurrently and return results in input order.

    All agents are awaited; if any raised, the first failure is re-raised.
    """
    workers = max(1, min(len(named_agents), DEFAULTS["parallel_workers"]))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(fn, context) for _, fn in named_agents]
    return [future.result() for future in futures]


def run_hardening_steps(context, findings, agents, result, on_progress=None, stage="review"):
    """Steps 2-6: refactor, harden tests, run tests, security scan, QA.

    Shared by the review pipeline and the sign-off fix cycle. Mutates and
    returns ``result``.
    """
    with review_step("refactoring", on_progress):
        refactoring = agents.refactoring_agent(context, list(findings))
        result.refactoring_result = refactoring
        save_report(context.review_dir, "refactoring.md", refactoring.report)
        result.blocking_issues.extend(refactoring.blocking_issues)
        result.last_completed_phase = "refactoring"

    with review_step("test-hardening", on_progress):
        hardening = agents.test_hardener(context)
        result.test_hardening_result = hardening
        save_report(context.review_dir, "test-hardening.md", hardening.report)
        result.blocking_issues.extend(hardening.blocking_issues)
        result.last_completed_phase = "test-hardening"

    with review_step("test-suite", on_progress):
        suite = agents.test_suite_runner(context.project_dir)
        result.test_suite_result = suite
        save_report(context.review_dir, "test-suite.log", suite.output)
        if not suite.passed:
            result.blocking_issues.append(f"Test suite failed after {stage} fixes")
        result.last_completed_phase = "test-suite"

    if not suite.passed:
        logger.info("Epic %d: tests failing, skipping security scan and QA", context.epic_number)
        result.can_advance = False
        return result

    with review_step("security-scan", on_progress):
        security = agents.security_scanner(context)
        result.security_result = security
        save_report(context.review_dir, "security-scan.md", security.report)
        result.blocking_issues.extend(blocking_findings(security.findings))
        result.blocking_issues.extend(security.blocking_issues)
        result.last_completed_phase = "security-scan"

    with review_step("qa-smoke-test", on_progress):
        qa = agents.qa_smoke_tester(context)
        result.qa_result = qa
        save_report(context.review_dir, "qa-smoke-test/results.md", qa.report)
        if not qa.success:
            result.blocking_issues.append(
                f"QA smoke test failed during {stage}: app crashes or console errors detected"
            )
        result.blocking_issues.extend(qa.blocking_issues)
        result.last_completed_phase = "qa-smoke-test"

    return finalize(result)


def run_review_pipeline(project_dir, epic_number, agents: ReviewAgents, on_progress=None) -> ReviewPhaseResult:
    """Run the full review pipeline for an epic.

    ``on_progress(phase, status)`` is called around every step; the three
    concurrent reviewers report together under the "parallel" phase.
    """
    context = ReviewContext(
        project_dir=project_dir,
        epic_number=epic_number,
        review_dir=review_dir(project_dir, epic_number),
    )
    result = ReviewPhaseResult(epic_number=epic_number)
    logger.info("Epic %d: starting review pipeline", epic_number)

    named = agents.parallel()
    with review_step(PARALLEL_PHASE, on_progress):
        result.parallel_results = run_parallel_agents(named, context)
        for (name, _), agent_result in zip(named, result.parallel_results):
            save_report(context.review_dir, f"{name}.md", agent_result.report)
            result.blocking_issues.extend(agent_result.blocking_issues)
        result.last_completed_phase = "tech-debt"

    findings = [f for r in result.parallel_results for f in r.findings]
    run_hardening_steps(context, findings, agents, result, on_progress, stage="review")

    logger.info(
        "Epic %d: review finished, can_advance=%s (%d blocking)",
        epic_number, result.can_advance, len(result.blocking_issues),
    )
    return result
