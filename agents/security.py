"""Security scanner: static pattern checks over the project tree. Zero LLM calls."""

import logging
import re

from agents.base import ReviewAgent, collect_source_files, format_report
from config.rules import HTML_SECURITY_PATTERNS, SECURITY_PATTERNS
from core.state import AgentResult, Finding

logger = logging.getLogger(__name__)

_TEMPLATE_EXTENSIONS = (".html", ".jinja2", ".j2")


def _scan_lines(path, content, patterns):
    findings = []
    for line_num, line in enumerate(content.split("\n"), 1):
        for pattern, severity, message, suggestion in patterns:
            if pattern.search(line):
                findings.append(Finding(
                    id=f"security:{path}:{line_num}:{message}",
                    title=message,
                    severity=severity,
                    file=path,
                    description=f"Line {line_num}: `{line.strip()[:120]}`. {suggestion}",
                    source="security-scan",
                ))
    return findings


class SecurityScanner(ReviewAgent):
    """Scans Python sources and HTML templates against the rule tables.

    Findings carry the offending line in backticks, so the verifier can
    check them against the file like any other agent's findings. Blocking
    is left to the coordinator, which blocks on critical/high findings.
    """

    name = "security-scan"
    description = "Regex security scan"

    def run(self, context, *args) -> AgentResult:
        findings = []
        for path, content in collect_source_files(context.project_dir, extensions=(".py",)):
            findings.extend(_scan_lines(path, content, SECURITY_PATTERNS))
        for path, content in collect_source_files(context.project_dir, extensions=_TEMPLATE_EXTENSIONS):
            findings.extend(_scan_lines(path, content, HTML_SECURITY_PATTERNS))
            csrf = self._check_csrf(path, content)
            if csrf:
                findings.append(csrf)

        logger.debug("Security scan of %s: %d findings", context.project_dir, len(findings))
        return AgentResult(
            agent=self.name,
            success=True,
            report=format_report("Security Scan", findings),
            findings=findings,
        )

    def _check_csrf(self, path, content):
        """Flag a template with a POST form but no CSRF token anywhere in the file."""
        has_post_form = re.search(r"""<\s*form\b[^>]+method\s*=\s*["']post["']""", content, re.IGNORECASE)
        if not has_post_form or re.search(r"csrf|hidden_tag", content, re.IGNORECASE):
            return None
        return Finding(
            id=f"security:{path}:csrf",
            title="POST form found with no CSRF protection",
            severity="high",
            file=path,
            description="Add `csrf_token()` or `form.hidden_tag()` inside every POST form.",
            source="security-scan",
        )

