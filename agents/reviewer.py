"""LLM review agents — one class, several review lenses. 1 LLM call per run."""

import logging

from agents.base import ReviewAgent, collect_source_files, findings_from_json, format_report
from core.state import AgentResult
from utils.llm import call_llm

logger = logging.getLogger(__name__)

_OUTPUT_RULES = """
Return a JSON array. Each element:
{"id": "<short-stable-id>", "title": "...", "severity": "critical|high|medium|low|info",
 "file": "relative/path.py", "description": "..."}

Rules:
- Only report issues you can see in the provided files. Never invent file paths.
- Wrap every identifier you refer to in backticks, e.g. `parse_config`.
- Severity: critical = data loss or crash, high = bug, medium = antipattern, low = minor.
- Return [] when there is nothing to report.
"""

LENSES = {
    "code-review": (
        "You are a senior code reviewer. Find logic errors, unhandled edge cases, "
        "broken error handling and API contract violations."
    ),
    "gap-analysis": (
        "You are a gap analyst. Compare the code against its stated purpose (README, "
        "docstrings, tests) and report features that are missing, stubbed or incomplete. "
        "Report an unimplemented requirement as high severity."
    ),
    "tech-debt": (
        "You are a tech-debt auditor. Report duplication, dead code, oversized functions, "
        "missing tests and fragile coupling that will slow future changes."
    ),
    "code-quality": (
        "You are an adversarial code quality reviewer. Find REAL bugs, not style nits: "
        "logic errors, race conditions, resource leaks, unhandled exceptions."
    ),
    "test-coverage": (
        "You are an adversarial test coverage reviewer. Find untested branches, missing "
        "edge-case and negative tests, and assertions that check too little."
    ),
    "security": (
        "You are an adversarial security reviewer. Find injection vectors, credential "
        "leaks, unsafe deserialization and missing input validation."
    ),
}


class LLMReviewAgent(ReviewAgent):
    """Reviews the project's source through one lens and returns structured findings."""

    def __init__(self, lens, blocking_severities=("critical",), model=None):
        if lens not in LENSES:
            raise ValueError(f"Unknown review lens: {lens}")
        self.name = lens
        self.description = LENSES[lens]
        self.system_prompt = LENSES[lens] + "\n" + _OUTPUT_RULES
        self.blocking_severities = set(blocking_severities)
        self.model = model

    def build_message(self, context):
        parts = [f"Epic {context.epic_number} review.\n", "FILES:\n"]
        for path, content in collect_source_files(context.project_dir):
            parts.append(f"```{path}\n{content}\n```\n")
        return "\n".join(parts)

    def run(self, context, *args) -> AgentResult:
        result = call_llm(self.system_prompt, self.build_message(context),
                          response_format="json", model=self.model)
        if isinstance(result, str):
            logger.warning("%s agent returned unparseable output", self.name)
            return AgentResult(agent=self.name, success=False,
                               report=format_report(self.name, [], notes=result[:2000]))

        findings = findings_from_json(result, self.name)
        blocking = [
            f"[{f.severity.value}] {f.title}"
            for f in findings if f.severity.value in self.blocking_severities
        ]
        return AgentResult(
            agent=self.name,
            success=True,
            report=format_report(self.name.replace("-", " ").title(), findings),
            findings=findings,
            blocking_issues=blocking,
        )


def review_panel(model=None):
    """The three parallel reviewers: code review, gap analysis (gaps block), tech debt."""
    return (
        LLMReviewAgent("code-review", model=model),
        LLMReviewAgent("gap-analysis", blocking_severities=("critical", "high"), model=model),
        LLMReviewAgent("tech-debt", blocking_severities=(), model=model),
    )


def adversarial_panel(model=None):
    """Analysis agents for the adversarial loop. They never block directly."""
    return [
        LLMReviewAgent(lens, blocking_severities=(), model=model)
        for lens in ("code-quality", "test-coverage", "security")
    ]
