"""Convergence tracking — decides when a multi-cycle improvement run should stop.

Stop conditions, in priority order:
    1. max-depth            cycle budget used up (wins over everything else)
    2. no-cycles            nothing recorded yet, keep going
    3. converged            latest remaining count at or below threshold
    4. diminishing-returns  last two cycles left the same number of findings
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from config.defaults import DEFAULTS
from core.state import utc_now
from core.store import load_json, save_json, state_dir

logger = logging.getLogger(__name__)

CONVERGENCE_FILE = "convergence.json"


@dataclass(frozen=True)
class CycleResult:
    cycle: int              # 1-based
    total_findings: int
    fixed: int
    remaining: int
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle,
            "total_findings": self.total_findings,
            "fixed": self.fixed,
            "remaining": self.remaining,
            "timestamp": self.timestamp,
        }


@dataclass
class ConvergenceState:
    max_depth: int
    threshold: int = DEFAULTS["convergence_threshold"]
    cycles: list[CycleResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "max_depth": self.max_depth,
            "threshold": self.threshold,
            "cycles": [c.to_dict() for c in self.cycles],
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConvergenceState:
        return cls(
            max_depth=int(data["max_depth"]),
            threshold=int(data.get("threshold", DEFAULTS["convergence_threshold"])),
            cycles=[CycleResult(**c) for c in data.get("cycles", [])],
        )


@dataclass(frozen=True)
class StopDecision:
    stop: bool
    reason: str


def create_convergence_state(max_depth, threshold=None) -> ConvergenceState:
    if threshold is None:
        threshold = DEFAULTS["convergence_threshold"]
    return ConvergenceState(max_depth=max_depth, threshold=threshold)


def record_cycle(state: ConvergenceState, result: CycleResult):
    """Append a cycle. History is append-only."""
    state.cycles.append(result)


def should_stop(state: ConvergenceState) -> StopDecision:
    cycles = state.cycles

    if len(cycles) >= state.max_depth:
        return StopDecision(True, "max-depth")

    if not cycles:
        return StopDecision(False, "no-cycles")

    last = cycles[-1]
    if last.remaining <= state.threshold:
        return StopDecision(True, "converged")

    if len(cycles) >= 2 and cycles[-2].remaining == last.remaining:
        return StopDecision(True, "diminishing-returns")

    return StopDecision(False, "continue")


def format_trend(state: ConvergenceState) -> str:
    if not state.cycles:
        return "No cycles completed."

    lines = ["Cycle | Findings | Fixed | Remaining", "------|----------|-------|----------"]
    for c in state.cycles:
        lines.append(f"{c.cycle:>5} | {c.total_findings:>8} | {c.fixed:>5} | {c.remaining:>9}")
    return "\n".join(lines)


def save_convergence_state(project_dir, state: ConvergenceState):
    return save_json(state_dir(project_dir), CONVERGENCE_FILE, state.to_dict())


def load_convergence_state(project_dir):
    """Saved state, or None when missing or malformed."""
    data = load_json(os.path.join(state_dir(project_dir), CONVERGENCE_FILE))
    if data is None:
        return None
    try:
        return ConvergenceState.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Ignoring malformed convergence state: %s", e)
        return None
