"""Default agent wiring for the review pipeline, the adversarial loop and improve runs."""

from agents.fixer import LLMFixer, RefactoringAgent, TestHardener
from agents.reviewer import LLMReviewAgent, adversarial_panel, review_panel
from agents.security import SecurityScanner
from agents.tester import QASmokeTester, make_test_suite_runner
from core.review_pipeline import FixCycleAgents, ReviewAgents
from core.state import ReviewContext


def default_fix_cycle_agents(model=None, test_command=None):
    return FixCycleAgents(
        refactoring_agent=RefactoringAgent(model=model),
        test_hardener=TestHardener(model=model),
        test_suite_runner=make_test_suite_runner(test_command),
        security_scanner=SecurityScanner(),
        qa_smoke_tester=QASmokeTester(),
    )


def default_review_agents(model=None, test_command=None):
    fix = default_fix_cycle_agents(model, test_command)
    code_reviewer, gap_analyst, tech_debt_auditor = review_panel(model)
    return ReviewAgents(
        refactoring_agent=fix.refactoring_agent,
        test_hardener=fix.test_hardener,
        test_suite_runner=fix.test_suite_runner,
        security_scanner=fix.security_scanner,
        qa_smoke_tester=fix.qa_smoke_tester,
        code_reviewer=code_reviewer,
        gap_analyst=gap_analyst,
        tech_debt_auditor=tech_debt_auditor,
    )


def default_loop_agents(model=None):
    """Adversarial loop panel: three LLM lenses plus the regex scanner."""
    return adversarial_panel(model) + [SecurityScanner()]


def default_fixer(model=None, test_command=None):
    return LLMFixer(make_test_suite_runner(test_command), model=model)


def make_analyzer(model=None):
    """``(project_dir) -> list[Finding]`` for improve cycles: the code-review lens."""
    reviewer = LLMReviewAgent("code-review", blocking_severities=(), model=model)

    def analyze(project_dir):
        return reviewer(ReviewContext(project_dir=project_dir, epic_number=0, review_dir="")).findings

    return analyze


def make_builder(model=None):
    """``(project_dir, findings) -> None`` for improve cycles: one refactoring pass."""
    refactor = RefactoringAgent(model=model)

    def build(project_dir, findings):
        refactor(ReviewContext(project_dir=project_dir, epic_number=0, review_dir=""), findings)

    return build
