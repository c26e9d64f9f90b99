"""Pipeline state and review models shared across all stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Phase(str, Enum):
    """Pipeline phases. Declaration order is the default phase order."""

    IDLE = "IDLE"
    PLANNING = "PLANNING"
    ANALYZING = "ANALYZING"
    BRIDGING = "BRIDGING"
    SCAFFOLDING = "SCAFFOLDING"
    BUILDING = "BUILDING"
    REVIEWING = "REVIEWING"
    SIGN_OFF = "SIGN_OFF"
    DEPLOYING = "DEPLOYING"
    RETROSPECTIVE = "RETROSPECTIVE"
    COMPLETE = "COMPLETE"

    def __str__(self):
        return self.value


PHASE_ORDER = list(Phase)


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        """0 is most severe."""
        return SEVERITY_ORDER.index(self)

    @property
    def is_blocking(self) -> bool:
        return self in (Severity.CRITICAL, Severity.HIGH)

    @classmethod
    def parse(cls, value) -> Severity:
        """Lenient parse for agent output; unknown labels become INFO."""
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.INFO


SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW, Severity.INFO]


@dataclass
class PipelineState:
    phase: Phase = Phase.IDLE
    epic_number: int = 0
    current_story: str | None = None
    last_completed_step: str | None = None
    scaffolding_complete: bool = False
    updated_at: str = field(default_factory=utc_now)

    def copy(self, **changes) -> PipelineState:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "epic_number": self.epic_number,
            "current_story": self.current_story,
            "last_completed_step": self.last_completed_step,
            "scaffolding_complete": self.scaffolding_complete,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PipelineState:
        return cls(
            phase=Phase(data.get("phase", "IDLE")),
            epic_number=int(data.get("epic_number", 0)),
            current_story=data.get("current_story"),
            last_completed_step=data.get("last_completed_step"),
            scaffolding_complete=bool(data.get("scaffolding_complete", False)),
            updated_at=data.get("updated_at") or utc_now(),
        )


def default_state() -> PipelineState:
    """State for a brand-new pipeline."""
    return PipelineState()


@dataclass
class DeveloperProfile:
    name: str
    languages: list[str] = field(default_factory=list)
    frontend_framework: str = ""
    backend_framework: str = ""
    database: str = ""
    deploy_target: str = ""
    ai_model: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> DeveloperProfile:
        return cls(
            name=data["name"],
            languages=list(data.get("languages", [])),
            frontend_framework=data.get("frontend_framework", ""),
            backend_framework=data.get("backend_framework", ""),
            database=data.get("database", ""),
            deploy_target=data.get("deploy_target", ""),
            ai_model=data.get("ai_model", ""),
        )


@dataclass(frozen=True)
class Finding:
    title: str
    severity: Severity
    description: str = ""
    file: str | None = None
    id: str | None = None        # stable across iterations when the agent provides one
    source: str | None = None    # agent that produced it

    def __post_init__(self):
        object.__setattr__(self, "severity", Severity.parse(self.severity))

    @property
    def key(self) -> str:
        """Identity used to compare findings between iterations."""
        if self.id:
            return self.id
        return f"{self.file or ''}:{self.title}"

    def to_dict(self) -> dict:
        data = {
            "title": self.title,
            "severity": self.severity.value,
            "description": self.description,
        }
        if self.file:
            data["file"] = self.file
        if self.id:
            data["id"] = self.id
        if self.source:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Finding:
        return cls(
            title=str(data.get("title", "")),
            severity=Severity.parse(data.get("severity", "info")),
            description=str(data.get("description", "")),
            file=data.get("file") or None,
            id=data.get("id") or None,
            source=data.get("source") or None,
        )


@dataclass
class AgentResult:
    agent: str
    success: bool
    report: str = ""
    findings: list[Finding] = field(default_factory=list)
    blocking_issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "agent": self.agent,
            "success": self.success,
            "report": self.report,
            "findings": [f.to_dict() for f in self.findings],
            "blocking_issues": list(self.blocking_issues),
        }


@dataclass
class TestSuiteResult:
    __test__ = False  # keep pytest from collecting this

    passed: bool
    output: str = ""


@dataclass
class ReviewContext:
    project_dir: str
    epic_number: int
    review_dir: str


@dataclass
class ReviewPhaseResult:
    epic_number: int
    parallel_results: list[AgentResult] = field(default_factory=list)
    refactoring_result: AgentResult | None = None
    test_hardening_result: AgentResult | None = None
    test_suite_result: TestSuiteResult | None = None
    security_result: AgentResult | None = None
    qa_result: AgentResult | None = None
    can_advance: bool = True
    blocking_issues: list[str] = field(default_factory=list)
    last_completed_phase: str | None = None

    def all_findings(self) -> list[Finding]:
        findings = [f for r in self.parallel_results for f in r.findings]
        for r in (self.refactoring_result, self.test_hardening_result,
                  self.security_result, self.qa_result):
            if r is not None:
                findings.extend(r.findings)
        return findings

    def to_dict(self) -> dict:
        def _agent(r):
            return r.to_dict() if r else None

        return {
            "epic_number": self.epic_number,
            "parallel_results": [r.to_dict() for r in self.parallel_results],
            "refactoring_result": _agent(self.refactoring_result),
            "test_hardening_result": _agent(self.test_hardening_result),
            "test_suite_result": (
                {"passed": self.test_suite_result.passed, "output": self.test_suite_result.output}
                if self.test_suite_result else None
            ),
            "security_result": _agent(self.security_result),
            "qa_result": _agent(self.qa_result),
            "can_advance": self.can_advance,
            "blocking_issues": list(self.blocking_issues),
            "last_completed_phase": self.last_completed_phase,
        }


@dataclass
class EpicSummary:
    epic_number: int
    markdown: str
    can_advance: bool
    blocking_issues: list[str]
    summary_path: str
