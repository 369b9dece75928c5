"""
seatflow.schemas - Schema definitions for seat reservation orchestration.

Domain:
1. Seat / LocationPreference: Inventory entries and the partition they live in
2. SeatLookup: Available-seat lookup that separates "no seats" from "lookup failed"
3. ReservationRequest: Immutable orchestration input

Runtime:
4. OrchestrationInstance: Scheduled instance with runtime-owned status
5. HistoryEvent: Append-only record an instance is replayed from
"""

from .seat import (
    LocationPreference,
    Seat,
    SeatLookup,
)
from .reservation import (
    ReservationRequest,
)
from .instance import (
    OrchestrationInstance,
    OrchestrationStatus,
    ULID,
)
from .history import (
    EventType,
    HistoryEvent,
)

__all__ = [
    # Seats
    "LocationPreference",
    "Seat",
    "SeatLookup",
    # Reservations
    "ReservationRequest",
    # Instances
    "OrchestrationInstance",
    "OrchestrationStatus",
    "ULID",
    # History
    "EventType",
    "HistoryEvent",
]
