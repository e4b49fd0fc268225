"""Workout engine exceptions."""


class WorkoutEngineError(Exception):
    """Base exception for workout engine errors."""
    pass


class SessionStateError(WorkoutEngineError):
    """Raised when a session operation is not allowed in the current phase."""

    def __init__(self, message: str, phase: str | None = None):
        super().__init__(message)
        self.phase = phase


class WorkoutPersistenceError(WorkoutEngineError):
    """Raised when a finished workout log could not be saved."""
    pass
