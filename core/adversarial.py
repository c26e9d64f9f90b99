"""Adversarial review loop — review → verify → fix, repeated until clean.

Each iteration runs the analysis agents in parallel, drops findings the
verifier cannot back up, and hands the rest to the fixer. The loop exits on:

    converged       nothing verified (or nothing at/above min_fix_severity) to fix
    test-failure    the fixer left the test suite red
    stuck           same unresolved findings as the previous iteration
    max-iterations  iteration budget used up while still making changes
    human-aborted   the approval gate stopped the loop

Stuck is checked every iteration before the budget, so a finding that
survives two iterations unchanged is reported as stuck even on the last one.

An optional approval gate sees the fixable findings before the fixer does and
can approve them all, keep a subset, skip this iteration's fixes or abort.
An analysis agent or the fixer raising is fatal: it surfaces as
ReviewPhaseError tagged "review" or "fix".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from config.defaults import DEFAULTS
from core.quality import severity_table
from core.review_pipeline import review_step, run_parallel_agents
from core.state import Finding, ReviewContext, ReviewPhaseResult, Severity, TestSuiteResult
from core.store import review_dir, save_json, save_report
from core.verifier import VerificationResult, verify_findings

logger = logging.getLogger(__name__)

EXIT_REASONS = ("converged", "max-iterations", "stuck", "test-failure", "human-aborted")
APPROVAL_ACTIONS = ("approve", "filter", "skip", "abort")


@dataclass
class FixResult:
    """One fix attempt for one finding."""

    finding: Finding
    fixed: bool
    attempts: int = 1
    error: str | None = None
    commit_sha: str | None = None


@dataclass
class FixBatchResult:
    results: list = field(default_factory=list)
    fixed: list = field(default_factory=list)
    unfixed: list = field(default_factory=list)
    final_test_result: TestSuiteResult = field(default_factory=lambda: TestSuiteResult(passed=True))


@dataclass
class IterationResult:
    iteration: int
    agent_results: list
    verification: VerificationResult
    fix_result: FixBatchResult | None
    tests_pass: bool
    unresolved_ids: list

    def to_artifact(self) -> dict:
        return {
            "iteration": self.iteration,
            "agents": [
                {
                    "agent": a.agent,
                    "success": a.success,
                    "finding_count": len(a.findings),
                    "findings": [f.to_dict() for f in a.findings],
                }
                for a in self.agent_results
            ],
            "verification": self.verification.stats,
            "discarded": [
                {"title": d.finding.title, "file": d.finding.file, "reason": d.reason}
                for d in self.verification.discarded
            ],
            "fix_results": (
                {"fixed": len(self.fix_result.fixed), "unfixed": len(self.fix_result.unfixed)}
                if self.fix_result else None
            ),
            "tests_pass": self.tests_pass,
            "unresolved_ids": list(self.unresolved_ids),
        }


@dataclass
class AdversarialLoopResult:
    iterations: list
    exit_reason: str
    total_findings: int
    total_fixed: int
    total_discarded: int
    unresolved_findings: list
    all_fix_results: list
    deferred_findings: list = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.exit_reason == "converged"


@dataclass(frozen=True)
class ApprovalDecision:
    action: str                 # one of APPROVAL_ACTIONS
    approved_ids: tuple = ()    # Finding.key values kept by "filter"

    @classmethod
    def approve(cls):
        return cls("approve")

    @classmethod
    def filter(cls, approved_ids):
        return cls("filter", tuple(approved_ids))

    @classmethod
    def skip(cls):
        return cls("skip")

    @classmethod
    def abort(cls):
        return cls("abort")


def _as_approval(value) -> ApprovalDecision:
    if isinstance(value, dict):
        value = ApprovalDecision(value.get("action", ""), tuple(value.get("approved_ids") or ()))
    if value.action not in APPROVAL_ACTIONS:
        raise ValueError(f"Unknown approval action: {value.action!r}")
    return value


def format_findings_for_approval(fixable, deferred):
    """Markdown listing of what the fixer is about to get, for a human gate."""
    lines = [f"## Findings to Fix ({len(fixable)})"]
    for idx, f in enumerate(fixable, 1):
        where = f" ({f.file})" if f.file else ""
        lines.append(f"{idx}. [{f.key}] **{f.title}** ({f.severity.value}){where}")
    if deferred:
        lines.append("")
        lines.append(f"## Deferred ({len(deferred)})")
        for f in deferred:
            where = f" ({f.file})" if f.file else ""
            lines.append(f"- [{f.key}] {f.title} ({f.severity.value}){where}")
    return "\n".join(lines)


def _partition_by_severity(findings, min_severity):
    """Split into (fixable, deferred). No threshold means everything is fixable."""
    if min_severity is None:
        return list(findings), []
    threshold = Severity.parse(min_severity).rank
    fixable = [f for f in findings if f.severity.rank <= threshold]
    deferred = [f for f in findings if f.severity.rank > threshold]
    return fixable, deferred


def _is_stuck(previous_ids, current_ids):
    if not current_ids:
        return False
    return set(previous_ids) == set(current_ids)


def run_adversarial_loop(
    project_dir,
    epic_number,
    agents,
    fixer: Callable,
    test_suite_runner: Callable = None,
    verifier: Callable = verify_findings,
    max_iterations=None,
    on_progress=None,
    min_fix_severity=None,
    approval_gate: Callable = None,
    review_prefix="epic",
) -> AdversarialLoopResult:
    """Iterate until the verified findings are gone or an exit condition hits.

    Args:
        agents: Analysis agents, ``(context) -> AgentResult``, run in parallel.
        fixer: ``(context, findings) -> FixBatchResult``.
        test_suite_runner: ``(project_dir) -> TestSuiteResult``; only consulted
            to record test status on iterations where the fixer is not called
            (assumed passing when omitted).
        verifier: ``(project_dir, findings) -> VerificationResult``.
        on_progress: ``(iteration, sub_phase, message)``; sub-phases are
            review, verify, fix, done — in that order, every iteration. With
            an approval gate, "approval" comes between verify and fix, and an
            iteration whose fixes are skipped or aborted ends there.
        min_fix_severity: Findings below this severity are deferred to the
            summary instead of being fixed.
        approval_gate: ``(iteration, max_iterations, fixable, deferred) ->
            ApprovalDecision``; only asked when there is something to fix.
        review_prefix: Artifact directory prefix, ``reviews/<prefix>-N``.

    Raises:
        ReviewPhaseError: an analysis agent ("review") or the fixer ("fix") raised.
    """
    if max_iterations is None:
        max_iterations = DEFAULTS["max_iterations"]
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

    def progress(iteration, phase, message):
        logger.debug("Epic %d iteration %d [%s] %s", epic_number, iteration, phase, message)
        if on_progress:
            on_progress(iteration, phase, message)

    directory = review_dir(project_dir, epic_number, prefix=review_prefix)
    context = ReviewContext(project_dir=project_dir, epic_number=epic_number, review_dir=directory)
    named_agents = [(getattr(a, "name", f"agent-{i}"), a) for i, a in enumerate(agents, 1)]

    iterations = []
    all_fix_results = []
    deferred_findings = []
    unresolved = []
    total_findings = 0
    total_fixed = 0
    total_discarded = 0
    exit_reason = "max-iterations"

    def record(iteration):
        iterations.append(iteration)
        save_json(directory, f"iteration-{iteration.iteration}.json", iteration.to_artifact())

    for i in range(1, max_iterations + 1):
        with review_step("review"):
            agent_results = run_parallel_agents(named_agents, context)
        findings = [f for r in agent_results for f in r.findings]
        progress(
            i, "review",
            f"Iteration {i}/{max_iterations}: {len(findings)} findings across {len(agent_results)} agents",
        )

        verification = verifier(project_dir, findings)
        total_findings += len(verification.verified)
        total_discarded += len(verification.discarded)
        fixable, deferred = _partition_by_severity(verification.verified, min_fix_severity)
        deferred_findings.extend(deferred)
        progress(
            i, "verify",
            f"Verified: {len(verification.verified)}, Discarded: {len(verification.discarded)}, "
            f"Deferred: {len(deferred)}",
        )

        if approval_gate and fixable:
            decision = _as_approval(approval_gate(i, max_iterations, list(fixable), list(deferred)))
            if decision.action == "filter":
                approved = set(decision.approved_ids)
                rejected = [f for f in fixable if f.key not in approved]
                fixable = [f for f in fixable if f.key in approved]
                deferred_findings.extend(rejected)
                progress(i, "approval", f"Approved {len(fixable)} findings, deferred {len(rejected)}")
            elif decision.action == "approve":
                progress(i, "approval", f"Approved all {len(fixable)} findings")

            # Nothing left after filtering counts as a skip
            if decision.action in ("skip", "abort") or not fixable:
                unresolved = list(fixable)
                record(IterationResult(
                    iteration=i,
                    agent_results=agent_results,
                    verification=verification,
                    fix_result=None,
                    tests_pass=True,
                    unresolved_ids=[f.key for f in unresolved],
                ))
                if decision.action == "abort":
                    exit_reason = "human-aborted"
                    progress(i, "approval", "Review loop aborted at approval")
                    break
                progress(i, "approval", "Fixes skipped for this iteration")
                continue

        fix_result = None
        if fixable:
            with review_step("fix"):
                fix_result = fixer(context, fixable)
            total_fixed += len(fix_result.fixed)
            all_fix_results.extend(fix_result.results)
            tests_pass = fix_result.final_test_result.passed
            progress(i, "fix", f"Fixed: {len(fix_result.fixed)}, Unfixed: {len(fix_result.unfixed)}")
        else:
            progress(i, "fix", "No findings to fix, iteration clean")
            tests_pass = test_suite_runner(project_dir).passed if test_suite_runner else True

        unresolved = list(fix_result.unfixed) if fix_result else []
        iteration = IterationResult(
            iteration=i,
            agent_results=agent_results,
            verification=verification,
            fix_result=fix_result,
            tests_pass=tests_pass,
            unresolved_ids=[f.key for f in unresolved],
        )
        previous = iterations[-1] if iterations else None
        record(iteration)

        if not fixable:
            exit_reason = "converged"
            progress(i, "done", "Converged, no verified findings to fix")
            break

        if not tests_pass:
            exit_reason = "test-failure"
            progress(i, "done", "Tests failing after fixes, exiting loop")
            break

        if previous is not None and _is_stuck(previous.unresolved_ids, iteration.unresolved_ids):
            exit_reason = "stuck"
            progress(i, "done", "Stuck, same unresolved findings as the previous iteration")
            break

        if i == max_iterations:
            progress(i, "done", "Max iterations reached")
        else:
            progress(i, "done", f"{len(unresolved)} unresolved, re-reviewing")

    logger.info(
        "Epic %d adversarial loop exited (%s) after %d iteration(s): %d fixed, %d unresolved",
        epic_number, exit_reason, len(iterations), total_fixed, len(unresolved),
    )
    return AdversarialLoopResult(
        iterations=iterations,
        exit_reason=exit_reason,
        total_findings=total_findings,
        total_fixed=total_fixed,
        total_discarded=total_discarded,
        unresolved_findings=unresolved,
        all_fix_results=all_fix_results,
        deferred_findings=deferred_findings,
    )


_EXIT_LABELS = {
    "converged": "Converged (zero findings)",
    "max-iterations": "Max iterations reached",
    "stuck": "Stuck (same findings repeated)",
    "test-failure": "Tests failing after fixes",
    "human-aborted": "Aborted at approval",
}


def generate_adversarial_summary(project_dir, epic_number, loop_result: AdversarialLoopResult,
                                 review_prefix="epic"):
    """Write adversarial-summary.md for the epic and return (markdown, path)."""
    lines = [
        f"# Epic {epic_number} Adversarial Review Summary",
        "",
        f"**Iterations:** {len(loop_result.iterations)}",
        f"**Status:** {_EXIT_LABELS.get(loop_result.exit_reason, loop_result.exit_reason)}",
        f"**All Resolved:** {'Yes' if loop_result.converged else 'No'}",
        "",
        "## Overview",
        "",
        "| Metric | Count |",
        "| ------ | ----- |",
        f"| Verified findings (all iterations) | {loop_result.total_findings} |",
        f"| Auto-fixed | {loop_result.total_fixed} |",
        f"| Deferred | {len(loop_result.deferred_findings)} |",
        f"| Discarded (hallucinations) | {loop_result.total_discarded} |",
        f"| Unresolved | {len(loop_result.unresolved_findings)} |",
        "",
        "## Iteration Breakdown",
        "",
    ]
    for it in loop_result.iterations:
        stats = it.verification.stats
        lines.append(f"### Iteration {it.iteration}")
        lines.append("")
        lines.append(f"- **Verified:** {stats['verified']}")
        lines.append(f"- **Discarded:** {stats['discarded']}")
        if it.fix_result:
            lines.append(f"- **Fixed:** {len(it.fix_result.fixed)}")
            lines.append(f"- **Unfixed:** {len(it.fix_result.unfixed)}")
        lines.append(f"- **Tests:** {'passing' if it.tests_pass else 'FAILING'}")
        lines.append("")

    if loop_result.unresolved_findings:
        lines.append("## Unresolved Findings")
        lines.append("")
        lines.append(severity_table(loop_result.unresolved_findings))
        for f in loop_result.unresolved_findings:
            where = f" in `{f.file}`" if f.file else ""
            lines.append(f"- [{f.severity.value}] {f.title}{where}")
        lines.append("")

    failed = [r for r in loop_result.all_fix_results if not r.fixed and r.error]
    if failed:
        lines.append("## Fix Errors")
        lines.append("")
        for r in failed:
            lines.append(f"- {r.finding.title}: {r.error}")
        lines.append("")

    if loop_result.deferred_findings:
        lines.append("## Deferred Recommendations")
        lines.append("")
        for f in loop_result.deferred_findings:
            lines.append(f"- [{f.severity.value}] {f.title}")
        lines.append("")

    markdown = "\n".join(lines)
    directory = review_dir(project_dir, epic_number, prefix=review_prefix)
    path = save_report(directory, "adversarial-summary.md", markdown)
    return markdown, path


def to_review_phase_result(epic_number, loop_result: AdversarialLoopResult) -> ReviewPhaseResult:
    """Express a loop outcome as a ReviewPhaseResult for the sign-off gate."""
    blocking = [
        f"[{f.severity.value}] {f.title}" + (f" in {f.file}" if f.file else "")
        for f in loop_result.unresolved_findings
        if f.severity.is_blocking
    ]
    last = loop_result.iterations[-1] if loop_result.iterations else None
    tests_pass = last.tests_pass if last else True
    if not tests_pass:
        blocking.append("Test suite failing after adversarial review fixes")

    return ReviewPhaseResult(
        epic_number=epic_number,
        test_suite_result=TestSuiteResult(passed=tests_pass),
        can_advance=not blocking,
        blocking_issues=blocking,
    )
