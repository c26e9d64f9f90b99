"""Base class and helpers shared by the review agents."""

import os
from abc import ABC, abstractmethod

from config.defaults import DEFAULTS
from core.state import AgentResult, Finding

_SKIP_DIRS = {"__pycache__", "node_modules", "venv", "build", "dist"}


class ReviewAgent(ABC):
    """A review agent is a callable: ``agent(context) -> AgentResult``.

    Exceptions are not caught here; the coordinator wraps them with the
    review phase they happened in.
    """

    name = "base"
    description = "Base review agent"

    def __call__(self, context, *args):
        return self.run(context, *args)

    @abstractmethod
    def run(self, context, *args) -> AgentResult:
        """Review the project in ``context.project_dir``."""

    def write_file(self, project_dir, relative_path, content):
        """Write content to a file inside project_dir, creating dirs as needed."""
        full_path = os.path.join(project_dir, relative_path)
        resolved = os.path.realpath(full_path)
        if not resolved.startswith(os.path.realpath(project_dir) + os.sep):
            raise ValueError(f"Path escapes project directory: {relative_path}")
        os.makedirs(os.path.dirname(resolved), exist_ok=True)
        with open(resolved, "w") as f:
            f.write(content)
        return relative_path


def collect_source_files(project_dir, extensions=(".py",), max_chars=None):
    """Return sorted (relative_path, content) pairs for source files in the project.

    Hidden directories (including the pipeline's own state dir) and build
    output are skipped. Each file is truncated to ``max_chars``.
    """
    if max_chars is None:
        max_chars = DEFAULTS["max_file_chars"]

    files = []
    for root, dirs, names in os.walk(project_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith(".") and d not in _SKIP_DIRS)
        for name in sorted(names):
            if not name.endswith(tuple(extensions)):
                continue
            path = os.path.join(root, name)
            try:
                with open(path, encoding="utf-8", errors="replace") as f:
                    content = f.read(max_chars)
            except OSError:
                continue
            files.append((os.path.relpath(path, project_dir), content))
    return files


def findings_from_json(data, source):
    """Turn an LLM JSON payload (a list, or {"findings": [...]}) into Findings."""
    if isinstance(data, dict):
        data = data.get("findings", [])
    if not isinstance(data, list):
        return []

    findings = []
    for idx, item in enumerate(data, 1):
        if not isinstance(item, dict) or not item.get("title"):
            continue
        item = dict(item)
        item.setdefault("id", f"{source}-{idx}")
        item["source"] = source
        findings.append(Finding.from_dict(item))
    return findings


def format_report(title, findings, notes=""):
    """Markdown report listing findings, most severe first."""
    lines = [f"# {title}", ""]
    if notes:
        lines.extend([notes, ""])
    if not findings:
        lines.append("No findings.")
        return "\n".join(lines) + "\n"

    for f in sorted(findings, key=lambda f: f.severity.rank):
        loc = f" (`{f.file}`)" if f.file else ""
        lines.append(f"- **[{f.severity.value.upper()}]** {f.title}{loc}")
        if f.description:
            lines.append(f"  {f.description}")
    return "\n".join(lines) + "\n"
