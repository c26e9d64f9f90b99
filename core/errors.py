"""Exception types raised by the pipeline core."""


class BuildGateError(Exception):
    """Base class for fatal pipeline errors."""


class StateError(BuildGateError):
    """Pipeline state could not be persisted."""


class TransitionError(BuildGateError):
    """A phase change that the state machine does not allow."""


class ProfileRequiredError(BuildGateError):
    """The pipeline cannot leave IDLE without a developer profile."""

    def __init__(self, message=None):
        super().__init__(
            message or "A developer profile must be loaded before leaving IDLE."
        )


class ReviewPhaseError(BuildGateError):
    """An agent raised during a review sub-phase.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, phase, cause):
        super().__init__(f'Review phase "{phase}" failed: {cause}')
        self.phase = phase
        self.cause = cause
