"""Code-changing agents: refactoring, test hardening and the per-finding fixer.

All three send source files to Claude and write back whatever complete files
come out of the fenced code blocks in the response.
"""

import logging

import anthropic

from agents.base import ReviewAgent, collect_source_files
from core.adversarial import FixBatchResult, FixResult
from core.state import AgentResult
from utils.llm import call_llm, parse_files

logger = logging.getLogger(__name__)

_FILE_OUTPUT_RULES = """
Output every file you change IN FULL as a fenced code block tagged with its
relative path, e.g.

```app/models.py
<complete file>
```

Do not output unchanged files. Do not explain.
"""

REFACTOR_PROMPT = (
    "You are a senior engineer fixing review findings in an existing codebase. "
    "Make the smallest change that resolves each finding without changing behaviour "
    "the tests rely on.\n" + _FILE_OUTPUT_RULES
)

HARDEN_PROMPT = (
    "You are a test engineer. Add pytest tests for untested branches, error paths and "
    "edge cases. Only create or change files under tests/.\n" + _FILE_OUTPUT_RULES
)


def compose_fix_instructions(findings):
    """Numbered fix list, most severe first. Info findings are left out."""
    actionable = [f for f in findings if f.severity.value != "info"]
    if not actionable:
        return ""

    actionable.sort(key=lambda f: (f.severity.rank, f.file or ""))
    lines = ["Fix the following issues in the code:\n"]
    for idx, f in enumerate(actionable, 1):
        loc = f.file or "(project)"
        lines.append(f"{idx}. [{f.severity.value.upper()}] {loc}: {f.title}")
        if f.description:
            lines.append(f"   {f.description}")
    return "\n".join(lines)


def _files_block(project_dir, only=None):
    parts = []
    for path, content in collect_source_files(project_dir):
        if only is not None and path not in only:
            continue
        parts.append(f"```{path}\n{content}\n```")
    return "\n".join(parts)


class _FileWritingAgent(ReviewAgent):
    """Shared plumbing: call Claude, write the returned files, list them."""

    system_prompt = REFACTOR_PROMPT

    def __init__(self, model=None):
        self.model = model

    def apply(self, project_dir, user_message, allowed_prefix=None):
        response = call_llm(self.system_prompt, user_message, model=self.model)
        written = []
        for path, content in parse_files(response):
            if allowed_prefix and not path.startswith(allowed_prefix):
                logger.warning("%s: ignoring file outside %s: %s", self.name, allowed_prefix, path)
                continue
            written.append(self.write_file(project_dir, path, content + "\n"))
        return written

    def _result(self, title, written):
        lines = [f"# {title}", ""]
        if written:
            lines.extend(f"- `{p}`" for p in written)
        else:
            lines.append("No files changed.")
        return AgentResult(agent=self.name, success=True, report="\n".join(lines) + "\n")


class RefactoringAgent(_FileWritingAgent):
    name = "refactoring"
    description = "Applies fixes for the findings of the parallel reviewers"

    def run(self, context, findings=()):
        instructions = compose_fix_instructions(list(findings))
        if not instructions:
            return self._result("Refactoring", [])
        message = f"{instructions}\n\n--- FILES ---\n{_files_block(context.project_dir)}"
        return self._result("Refactoring", self.apply(context.project_dir, message))


class TestHardener(_FileWritingAgent):
    __test__ = False
    name = "test-hardening"
    description = "Adds tests for weak spots"
    system_prompt = HARDEN_PROMPT

    def run(self, context, *args):
        message = f"--- FILES ---\n{_files_block(context.project_dir)}"
        return self._result("Test hardening", self.apply(context.project_dir, message, allowed_prefix="tests/"))


class LLMFixer(_FileWritingAgent):
    """Fixes verified findings one at a time, then runs the test suite once.

    A finding counts as fixed when Claude returned at least one file for it.
    API errors and rejected paths are recorded on the FixResult.
    """

    name = "fixer"
    description = "Per-finding fixer for the adversarial loop"

    def __init__(self, test_suite_runner, model=None):
        super().__init__(model=model)
        self.test_suite_runner = test_suite_runner

    def run(self, context, findings=()):
        batch = FixBatchResult()
        for finding in sorted(findings, key=lambda f: f.severity.rank):
            only = {finding.file} if finding.file else None
            message = (
                f"{compose_fix_instructions([finding]) or finding.title}\n\n"
                f"--- FILES ---\n{_files_block(context.project_dir, only=only)}"
            )
            try:
                written = self.apply(context.project_dir, message)
                outcome = FixResult(finding=finding, fixed=bool(written))
            except (anthropic.APIError, ValueError) as e:
                logger.error("Fix failed for %s: %s", finding.key, e)
                outcome = FixResult(finding=finding, fixed=False, error=str(e))

            batch.results.append(outcome)
            (batch.fixed if outcome.fixed else batch.unfixed).append(finding)

        batch.final_test_result = self.test_suite_runner(context.project_dir)
        return batch
