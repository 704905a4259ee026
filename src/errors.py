# src/errors.py
#
# Error taxonomy shared by the engine and the HTTP layer.
#   validation   -> rejected before any write
#   not found    -> unknown id or another organization's row
#   conflict     -> already handled; callers may treat as a benign no-op
#   storage      -> backend failure, safe to retry


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling engine."""


class ValidationError(SchedulingError, ValueError):
    """Invalid frequency, status, weekday or other input value."""


class NotFoundError(SchedulingError, LookupError):
    """Subscription, job, route or suggestion does not exist for the caller."""


class ConflictError(SchedulingError):
    """The requested change collides with the current state of a row."""


class AlreadyProcessedError(ConflictError):
    """A suggestion (or similar one-shot row) was already accepted or dismissed."""


class InvalidTransitionError(ConflictError):
    """A job or route cannot move from its current status to the requested one."""


class StorageError(SchedulingError):
    """The backing store failed mid-operation."""
