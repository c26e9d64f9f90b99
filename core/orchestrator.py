"""Phase state machine: IDLE → PLANNING → BRIDGING → SCAFFOLDING → BUILDING → REVIEWING → SIGN_OFF → ... → COMPLETE.

SCAFFOLDING runs once per project. Later epics go from BRIDGING straight to
BUILDING. Every mutation is written to disk before the call returns, so a
fresh orchestrator on the same project directory picks up exactly where the
last one stopped.
"""

import logging

from core.errors import ProfileRequiredError, TransitionError
from core.state import PHASE_ORDER, Phase, PipelineState, default_state
from core.store import load_state, save_state

logger = logging.getLogger(__name__)

TRANSITIONS = {
    Phase.IDLE: [Phase.PLANNING, Phase.ANALYZING],
    Phase.PLANNING: [Phase.BRIDGING],
    Phase.ANALYZING: [Phase.BUILDING, Phase.COMPLETE],
    Phase.BRIDGING: [Phase.SCAFFOLDING, Phase.BUILDING],
    Phase.SCAFFOLDING: [Phase.BUILDING],
    Phase.BUILDING: [Phase.REVIEWING],
    Phase.REVIEWING: [Phase.SIGN_OFF],
    Phase.SIGN_OFF: [Phase.DEPLOYING, Phase.RETROSPECTIVE, Phase.COMPLETE],
    Phase.DEPLOYING: [Phase.RETROSPECTIVE, Phase.COMPLETE],
    Phase.RETROSPECTIVE: [Phase.COMPLETE],
    Phase.COMPLETE: [Phase.IDLE],
}


class PipelineOrchestrator:
    """Owns the PipelineState for one project directory.

    Only one orchestrator should drive a given project directory at a time.
    """

    def __init__(self, project_dir, profile=None):
        self.project_dir = project_dir
        self.profile = profile
        self._state = load_state(project_dir) or default_state()

    def get_state(self) -> PipelineState:
        """Return a copy of the current state."""
        return self._state.copy()

    def _commit(self, **changes):
        self._state = save_state(self.project_dir, self._state.copy(**changes))

    def transition(self, target):
        """Move to ``target`` if the transition table allows it."""
        target = Phase(target)
        current = self._state.phase
        allowed = TRANSITIONS.get(current, [])

        if target not in allowed:
            allowed_str = ", ".join(p.value for p in allowed) or "none"
            raise TransitionError(
                f"Invalid transition: {current} → {target}. Allowed: {allowed_str}"
            )

        if current == Phase.IDLE and self.profile is None:
            raise ProfileRequiredError()

        if target == Phase.SCAFFOLDING and self._state.scaffolding_complete:
            raise TransitionError(
                "SCAFFOLDING already complete for this project. Transition to BUILDING instead."
            )

        self._commit(phase=target)
        logger.info("Epic %d: %s → %s", self._state.epic_number, current, target)

    def advance(self):
        """Move to the next phase in order, skipping SCAFFOLDING once done."""
        current = self._state.phase
        if current == Phase.COMPLETE:
            raise TransitionError("Pipeline is already COMPLETE. Start a new epic or reset first.")

        allowed = TRANSITIONS[current]
        for phase in PHASE_ORDER[PHASE_ORDER.index(current) + 1:]:
            if phase not in allowed:
                continue
            if phase == Phase.SCAFFOLDING and self._state.scaffolding_complete:
                continue
            self.transition(phase)
            return phase

        raise TransitionError(f"No valid next phase after {current}.")

    def complete_scaffolding(self):
        self._commit(scaffolding_complete=True)

    def start_epic(self, epic_number):
        """Return to IDLE for a new epic. Scaffolding state carries over."""
        if epic_number < 0:
            raise ValueError(f"Epic number must be >= 0, got {epic_number}")
        self._commit(
            phase=Phase.IDLE,
            epic_number=epic_number,
            current_story=None,
            last_completed_step=None,
        )
        logger.info("Started epic %d", epic_number)

    def set_current_story(self, story_id):
        self._commit(current_story=story_id)

    def set_last_completed_step(self, step):
        self._commit(last_completed_step=step)

    def reset(self):
        """Discard all progress, including scaffolding, and return to IDLE."""
        self._state = save_state(self.project_dir, default_state())
        logger.info("Pipeline state reset")

    def format_status(self) -> str:
        s = self._state
        if s.phase == Phase.IDLE and s.epic_number == 0:
            return "No active pipeline."

        lines = [
            f"Phase:    {s.phase}",
            f"Epic:     {s.epic_number}",
        ]
        if s.current_story:
            lines.append(f"Story:    {s.current_story}")
        if s.last_completed_step:
            lines.append(f"Step:     {s.last_completed_step}")
        lines.append(f"Updated:  {s.updated_at}")
        return "\n".join(lines)

    def format_resume_context(self) -> str:
        s = self._state
        if s.phase == Phase.IDLE and s.epic_number == 0:
            return "No interrupted pipeline to resume."

        return "\n".join([
            "Pipeline state:",
            f"  Phase:          {s.phase}",
            f"  Epic:           {s.epic_number}",
            f"  Story:          {s.current_story or '(none)'}",
            f"  Last step:      {s.last_completed_step or '(none)'}",
            f"  Scaffolding:    {'done' if s.scaffolding_complete else 'pending'}",
            f"  Last updated:   {s.updated_at}",
            "",
            "Continue from this point?",
        ])
