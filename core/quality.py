"""Quality gate evaluation."""

from core.state import SEVERITY_ORDER, ReviewPhaseResult


def blocking_findings(findings):
    """Critical and high findings, formatted as blocking issue strings."""
    return [f"[{f.severity.value}] {f.title}" for f in findings if f.severity.is_blocking]


def finalize(result: ReviewPhaseResult) -> ReviewPhaseResult:
    """An epic can advance only when nothing is blocking it."""
    result.can_advance = len(result.blocking_issues) == 0
    return result


def severity_table(findings):
    """Markdown table of finding counts per severity."""
    counts = {}
    for f in findings:
        counts[f.severity] = counts.get(f.severity, 0) + 1
    if not counts:
        return "No findings.\n"
    lines = ["| Severity | Count |", "| -------- | ----- |"]
    for sev in SEVERITY_ORDER:
        if counts.get(sev):
            lines.append(f"| {sev.value} | {counts[sev]} |")
    lines.append("")
    return "\n".join(lines)
