"""Tests for seatflow error classes.

Tests cover:
- Retry classification hierarchy (TransientError / PermanentError)
- Domain errors and their default messages
- TaskFailedError construction from recorded details
- error_details serialization
"""

import pytest

from seatflow.errors import (
    CompletionTimeoutError,
    ConfigError,
    EmptySelectionError,
    InstanceNotFoundError,
    InvalidReservationError,
    InventoryError,
    NonDeterminismError,
    PermanentError,
    SeatflowError,
    TaskFailedError,
    TransientError,
    error_details,
)


class TestHierarchy:
    """Tests for the retry classification hierarchy."""

    def test_base_is_exception(self):
        """SeatflowError should be an Exception."""
        assert issubclass(SeatflowError, Exception)

    @pytest.mark.parametrize("cls", [TransientError, PermanentError, ConfigError,
                                     TaskFailedError, NonDeterminismError,
                                     InstanceNotFoundError, CompletionTimeoutError])
    def test_all_errors_are_seatflow_errors(self, cls):
        """Every seatflow error can be caught as SeatflowError."""
        assert issubclass(cls, SeatflowError)

    @pytest.mark.parametrize("cls", [EmptySelectionError, InventoryError, InvalidReservationError])
    def test_domain_errors_are_permanent(self, cls):
        """Bad input and empty selections are never retried."""
        assert issubclass(cls, PermanentError)
        assert not issubclass(cls, TransientError)

    def test_transient_is_not_permanent(self):
        """TransientError and PermanentError are disjoint."""
        assert not issubclass(TransientError, PermanentError)
        assert not issubclass(PermanentError, TransientError)


class TestEmptySelectionError:
    """Tests for EmptySelectionError."""

    def test_default_message(self):
        """EmptySelectionError has a descriptive default message."""
        assert str(EmptySelectionError()) == "Cannot select a seat from an empty sequence"

    def test_custom_message(self):
        """EmptySelectionError keeps a custom message."""
        assert str(EmptySelectionError("nothing left")) == "nothing left"


class TestTaskFailedError:
    """Tests for TaskFailedError."""

    def test_attributes(self):
        """TaskFailedError keeps activity, type and message."""
        error = TaskFailedError("get_random_seat", "EmptySelectionError", "empty")
        assert error.activity == "get_random_seat"
        assert error.error_type == "EmptySelectionError"
        assert error.error_message == "empty"
        assert "get_random_seat" in str(error)
        assert "EmptySelectionError: empty" in str(error)

    def test_from_details(self):
        """TaskFailedError can be rebuilt from recorded error details."""
        error = TaskFailedError.from_details("select_seat_task", {"type": "KeyError", "message": "x"})
        assert error.error_type == "KeyError"
        assert error.error_message == "x"

    def test_from_details_missing_fields(self):
        """Missing details fall back to generic values."""
        error = TaskFailedError.from_details("a", {})
        assert error.error_type == "Exception"
        assert error.error_message == ""


class TestLookupErrors:
    """Tests for instance lookup and wait errors."""

    def test_instance_not_found(self):
        """InstanceNotFoundError carries the instance id."""
        error = InstanceNotFoundError("01ABC")
        assert error.instance_id == "01ABC"
        assert "01ABC" in str(error)

    def test_completion_timeout(self):
        """CompletionTimeoutError carries the id and budget."""
        error = CompletionTimeoutError("01ABC", 2.5)
        assert error.instance_id == "01ABC"
        assert error.timeout == 2.5
        assert "2.5s" in str(error)


class TestErrorDetails:
    """Tests for error_details."""

    def test_serializes_type_and_message(self):
        """error_details returns the exception class name and message."""
        assert error_details(ValueError("bad")) == {"type": "ValueError", "message": "bad"}

    def test_serializes_seatflow_error(self):
        """error_details works for seatflow errors."""
        details = error_details(EmptySelectionError())
        assert details["type"] == "EmptySelectionError"
        assert details["message"] == "Cannot select a seat from an empty sequence"
