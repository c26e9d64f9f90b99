"""Finding verifier — checks agent findings against the files they cite. Zero LLM calls.

A finding that names a file which does not exist, or whose quoted identifiers
appear nowhere in that file, is treated as a hallucination and discarded.
Findings that give nothing to check against are kept.
"""

import logging
import os
import re
from dataclasses import dataclass, field

from core.state import Finding

logger = logging.getLogger(__name__)

_BACKTICK_RE = re.compile(r"`([^`]+)`")
_DOUBLE_QUOTE_RE = re.compile(r'"([^"]+)"')


@dataclass
class DiscardedFinding:
    finding: Finding
    reason: str


@dataclass
class VerificationResult:
    verified: list = field(default_factory=list)
    discarded: list = field(default_factory=list)

    @property
    def stats(self):
        return {
            "total": len(self.verified) + len(self.discarded),
            "verified": len(self.verified),
            "discarded": len(self.discarded),
        }


def extract_key_terms(text):
    """Backtick- and double-quote-delimited substrings, deduplicated in order."""
    terms = []
    for regex in (_BACKTICK_RE, _DOUBLE_QUOTE_RE):
        for match in regex.finditer(text or ""):
            term = match.group(1).strip()
            if term and term not in terms:
                terms.append(term)
    return terms


def _resolve(project_dir, relative_path):
    """Absolute path for a cited file, or None if it escapes the project."""
    root = os.path.realpath(project_dir)
    resolved = os.path.realpath(os.path.join(root, relative_path))
    if resolved != root and not resolved.startswith(root + os.sep):
        return None
    return resolved


def _check(project_dir, finding):
    """Return None if the finding is plausible, else the discard reason."""
    if not finding.file:
        return None

    path = _resolve(project_dir, finding.file)
    if path is None or not os.path.isfile(path):
        return f"File does not exist: {finding.file}"

    terms = extract_key_terms(f"{finding.title}\n{finding.description}")
    if not terms:
        return None

    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            content = f.read()
    except OSError:
        return f"File unreadable: {finding.file}"

    if any(term in content for term in terms):
        return None
    return f"None of the key terms [{', '.join(terms)}] found in {finding.file}"


def verify_findings(project_dir, findings) -> VerificationResult:
    """Split findings into verified and discarded. Pure file-system check."""
    result = VerificationResult()
    for finding in findings:
        reason = _check(project_dir, finding)
        if reason is None:
            result.verified.append(finding)
        else:
            logger.debug("Discarded finding %r: %s", finding.title, reason)
            result.discarded.append(DiscardedFinding(finding=finding, reason=reason))
    return result
