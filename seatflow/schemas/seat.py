"""
Seat schemas - seats, partitions, and lookup results.

A Seat belongs to exactly one partition (LocationPreference). Seats cross
the runtime boundary as plain dictionaries so they can be persisted in
instance history.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


class LocationPreference(str, Enum):
    """Seat location preference. Declaration order is the partition order."""
    AISLE = "aisle"
    MIDDLE = "middle"
    WINDOW = "window"

    @classmethod
    def from_string(cls, value: "str | LocationPreference") -> "LocationPreference":
        """
        Parse a partition token.

        Raises:
            ValueError: If the token does not name a partition
        """
        if isinstance(value, LocationPreference):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [p.value for p in cls]
            raise ValueError(f"Unknown location preference: {value!r} (expected one of {valid})")

    def complement(self) -> list["LocationPreference"]:
        """All partitions except this one, in partition order."""
        return [p for p in LocationPreference if p != self]


@dataclass(frozen=True)
class Seat:
    """
    A single seat.

    Attributes:
        code: Seat code, unique across all partitions (e.g. "C4")
        partition: The partition the seat belongs to
        available: Whether the seat can be handed out
    """
    code: str
    partition: LocationPreference
    available: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for history/JSON output."""
        return {
            "code": self.code,
            "partition": self.partition.value,
            "available": self.available,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Seat":
        """Deserialize from dictionary."""
        return cls(
            code=data["code"],
            partition=LocationPreference.from_string(data["partition"]),
            available=bool(data.get("available", True)),
        )


@dataclass(frozen=True)
class SeatLookup:
    """
    Result of an available-seat lookup.

    Keeps "no seats" and "lookup failed" apart: both carry an empty
    seats tuple, but only a failed lookup carries an error message.
    """
    seats: tuple[Seat, ...] = field(default_factory=tuple)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_empty(self) -> bool:
        return not self.seats

    @classmethod
    def found(cls, seats: Iterable[Seat]) -> "SeatLookup":
        return cls(seats=tuple(seats))

    @classmethod
    def failed(cls, error: str) -> "SeatLookup":
        return cls(seats=(), error=error)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"seats": [s.to_dict() for s in self.seats]}
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeatLookup":
        return cls(
            seats=tuple(Seat.from_dict(s) for s in data.get("seats", [])),
            error=data.get("error"),
        )
