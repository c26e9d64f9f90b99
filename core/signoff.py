"""Epic summary, fix cycle and the sign-off gate.

After review, a summary is written to ``reviews/epic-N/summary.md``
(``improve-N`` for improvement cycles) and the sign-off prompt (a human, or
anything else) approves or rejects it. A
rejection feeds the feedback into a fix cycle (refactor → harden → test →
security → QA), the summary is rewritten and the prompt asked again, up to
``max_rejection_cycles`` times. The summary on disk always matches the latest
attempt.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from config.defaults import DEFAULTS
from core.quality import severity_table
from core.review_pipeline import run_hardening_steps
from core.state import EpicSummary, Finding, ReviewContext, ReviewPhaseResult, Severity
from core.store import review_dir, save_report

logger = logging.getLogger(__name__)

FEEDBACK_FINDING_TITLE = "User feedback during sign-off"


@dataclass(frozen=True)
class SignOffDecision:
    action: str             # "approve" | "reject"
    feedback: str = ""

    @classmethod
    def approve(cls):
        return cls("approve")

    @classmethod
    def reject(cls, feedback):
        return cls("reject", feedback)


@dataclass
class EpicLoopResult:
    summary: EpicSummary
    approved: bool
    rejection_cycles: int


def _as_decision(value) -> SignOffDecision:
    if isinstance(value, dict):
        value = SignOffDecision(value.get("action", ""), value.get("feedback", "") or "")
    if value.action not in ("approve", "reject"):
        raise ValueError(f"Unknown sign-off action: {value.action!r}")
    return value


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def _agent_section(label, result):
    if result is None:
        return f"### {label}\n\nSkipped.\n"

    lines = [f"### {label}", "", f"**Status:** {'Passed' if result.success else 'Failed'}", ""]
    lines.append(severity_table(result.findings))
    if result.blocking_issues:
        lines.append("**Blocking Issues:**")
        lines.extend(f"- {issue}" for issue in result.blocking_issues)
        lines.append("")
    return "\n".join(lines)


def generate_epic_summary(project_dir, epic_number, review_result: ReviewPhaseResult,
                          review_prefix="epic") -> EpicSummary:
    """Render the review result as markdown and write it to summary.md."""
    lines = [
        f"# Epic {epic_number} Review Summary",
        "",
        f"**Date:** {datetime.now(timezone.utc).isoformat()}",
        f"**Can Advance:** {'Yes' if review_result.can_advance else 'No'}",
        "",
    ]

    if review_result.blocking_issues:
        lines.append("## Blocking Issues")
        lines.append("")
        lines.extend(f"- {issue}" for issue in review_result.blocking_issues)
        lines.append("")

    lines.append("## Review Results")
    lines.append("")
    by_agent = {r.agent: r for r in review_result.parallel_results}
    for label, name in (("Code Review", "code-review"),
                        ("Gap Analysis", "gap-analysis"),
                        ("Tech Debt", "tech-debt")):
        lines.append(_agent_section(label, by_agent.get(name)))
    lines.append(_agent_section("Refactoring", review_result.refactoring_result))
    lines.append(_agent_section("Test Hardening", review_result.test_hardening_result))

    lines.append("### Test Suite")
    lines.append("")
    suite = review_result.test_suite_result
    if suite is None:
        lines.append("Skipped.\n")
    else:
        lines.append(f"**Status:** {'Passed' if suite.passed else 'Failed'}\n")

    lines.append(_agent_section("Security Scan", review_result.security_result))
    lines.append(_agent_section("QA Smoke Test", review_result.qa_result))

    findings = review_result.all_findings()
    lines.append("## Overall Findings")
    lines.append("")
    lines.append(f"**Total Findings:** {len(findings)}")
    lines.append("")
    lines.append(severity_table(findings))

    markdown = "\n".join(lines)
    directory = review_dir(project_dir, epic_number, prefix=review_prefix)
    path = save_report(directory, "summary.md", markdown)
    return EpicSummary(
        epic_number=epic_number,
        markdown=markdown,
        can_advance=review_result.can_advance,
        blocking_issues=list(review_result.blocking_issues),
        summary_path=path,
    )


# ---------------------------------------------------------------------------
# Fix cycle
# ---------------------------------------------------------------------------

def run_fix_cycle(context: ReviewContext, feedback, previous_findings, agents, on_progress=None) -> ReviewPhaseResult:
    """Re-run the sequential half of the review, seeded with earlier findings and feedback."""
    findings = list(previous_findings)
    if feedback:
        findings.append(Finding(
            title=FEEDBACK_FINDING_TITLE,
            severity=Severity.HIGH,
            description=feedback,
        ))

    result = ReviewPhaseResult(epic_number=context.epic_number)
    return run_hardening_steps(context, findings, agents, result, on_progress, stage="fix cycle")


# ---------------------------------------------------------------------------
# Sign-off gate
# ---------------------------------------------------------------------------

def run_epic_sign_off(
    project_dir,
    epic_number,
    review_result: ReviewPhaseResult,
    sign_off_prompt=None,
    fix_cycle_agents=None,
    max_rejection_cycles=None,
    autonomous=False,
    review_prefix="epic",
) -> EpicLoopResult:
    """Ask for sign-off, looping through fix cycles on rejection.

    Autonomous mode, or no prompt at all, approves immediately. A rejection
    with no fix-cycle agents returns unapproved straight away.
    """
    if max_rejection_cycles is None:
        max_rejection_cycles = DEFAULTS["max_rejection_cycles"]

    current = review_result
    summary = generate_epic_summary(project_dir, epic_number, current, review_prefix)

    if autonomous or sign_off_prompt is None:
        logger.info("Epic %d auto-approved", epic_number)
        return EpicLoopResult(summary=summary, approved=True, rejection_cycles=0)

    rejection_cycles = 0
    while rejection_cycles < max_rejection_cycles:
        decision = _as_decision(sign_off_prompt(summary))

        if decision.action == "approve":
            logger.info("Epic %d approved after %d rejection cycle(s)", epic_number, rejection_cycles)
            return EpicLoopResult(summary=summary, approved=True, rejection_cycles=rejection_cycles)

        if fix_cycle_agents is None:
            logger.info("Epic %d rejected; no fix-cycle agents available", epic_number)
            return EpicLoopResult(summary=summary, approved=False, rejection_cycles=0)

        rejection_cycles += 1
        logger.info("Epic %d rejected, running fix cycle %d/%d",
                    epic_number, rejection_cycles, max_rejection_cycles)

        context = ReviewContext(
            project_dir=project_dir,
            epic_number=epic_number,
            review_dir=review_dir(project_dir, epic_number, prefix=review_prefix),
        )
        current = run_fix_cycle(context, decision.feedback, current.all_findings(), fix_cycle_agents)
        summary = generate_epic_summary(project_dir, epic_number, current, review_prefix)

    logger.info("Epic %d not approved after %d rejection cycle(s)", epic_number, rejection_cycles)
    return EpicLoopResult(summary=summary, approved=False, rejection_cycles=rejection_cycles)
