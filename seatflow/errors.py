"""
Error classes for seatflow.

These error types enable retry classification at activity boundaries:
- TransientError: Safe to retry (flaky inventory backend, temporary failures)
- PermanentError: Do not retry (invalid input, empty selection, bad fixtures)

Activities raise these errors to signal retry behavior. The runtime catches
at the dispatch boundary, retries transient failures with backoff, and
records anything else as a failed task in the instance history.

Expected outcomes are NOT errors:
- Preferred partition exhausted is a branch, not a failure
- An empty fallback set returns the no-seats sentinel
"""

from typing import Any, Optional


class SeatflowError(Exception):
    """Base exception for seatflow."""
    pass


class TransientError(SeatflowError):
    """
    Transient error - safe to retry.

    The runtime retries activities that raise TransientError according
    to the configured attempt budget and backoff.
    """
    pass


class PermanentError(SeatflowError):
    """
    Permanent error - do not retry.

    The runtime immediately fails the task without retry when
    PermanentError (or any non-transient exception) is raised.
    """
    pass


class EmptySelectionError(PermanentError):
    """Raised when a random seat is requested from an empty sequence."""

    def __init__(self, message: str = "Cannot select a seat from an empty sequence"):
        super().__init__(message)


class InventoryError(PermanentError):
    """Seat inventory fixture is malformed (duplicate codes, wrong partition)."""
    pass


class InvalidReservationError(PermanentError):
    """Reservation request is missing fields or names an unknown partition."""
    pass


class ConfigError(SeatflowError):
    """Configuration validation error."""
    pass


class TaskFailedError(SeatflowError):
    """
    An activity failed and the failure was surfaced inside an orchestration.

    Orchestration code may catch this; if it does not, the instance
    terminates in the failed state.
    """

    def __init__(self, activity: str, error_type: str, message: str):
        self.activity = activity
        self.error_type = error_type
        self.error_message = message
        super().__init__(f"Activity '{activity}' failed: {error_type}: {message}")

    @classmethod
    def from_details(cls, activity: str, details: dict[str, Any]) -> "TaskFailedError":
        return cls(activity, details.get("type", "Exception"), details.get("message", ""))


class NonDeterminismError(SeatflowError):
    """Replay of an orchestration diverged from its recorded history."""
    pass


class InstanceNotFoundError(SeatflowError):
    """No orchestration instance exists with the given id."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Orchestration instance not found: {instance_id}")


class CompletionTimeoutError(SeatflowError):
    """
    A local wait for completion ran out of budget.

    This is not an orchestration failure: the instance keeps running.
    """

    def __init__(self, instance_id: str, timeout: Optional[float]):
        self.instance_id = instance_id
        self.timeout = timeout
        super().__init__(
            f"Instance {instance_id} did not complete within {timeout}s"
        )


def error_details(exc: BaseException) -> dict[str, str]:
    """Serialize an exception into the form stored in history."""
    return {
        "type": type(exc).__name__,
        "message": str(exc),
    }
