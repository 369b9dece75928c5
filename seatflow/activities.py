"""
Seat activities - units of work dispatched by the runtime.

Activities are the only place non-determinism (random draws) and
inventory reads happen. Each takes an ActivityContext plus one
JSON-compatible input and returns a JSON-compatible result, so that
inputs and results can be persisted in instance history.

Registered activities:
- validate_available_seat: does a partition have any available seat?
- get_available_seats: available seats across partitions (SeatLookup)
- get_random_seat: uniform pick from a seat list
- select_seat_task: the three above, sequenced for one reservation
"""

import logging
import random
from typing import Any, Callable, Sequence, TYPE_CHECKING

from seatflow.errors import EmptySelectionError, InvalidReservationError
from seatflow.inventory import SeatInventory
from seatflow.schemas import LocationPreference, ReservationRequest, Seat, SeatLookup

if TYPE_CHECKING:
    from seatflow.engine.context import ActivityContext
    from seatflow.engine.registry import Registry

logger = logging.getLogger(__name__)


PREFERRED_SEAT_MESSAGE = "Selected seat: {code}"
FALLBACK_SEAT_MESSAGE = "Random selected seat: {code}, because none were available in your preference."
NO_SEATS_MESSAGE = "No seats available on this flight."


# =============================================================================
# SELECTION LOGIC
# =============================================================================


def lookup_available_seats(
    inventory: SeatInventory,
    location_preferences: Sequence[Any],
) -> SeatLookup:
    """
    Look up available seats, degrading failures to an empty lookup.

    Args:
        inventory: Inventory to read
        location_preferences: Partition tokens, in the order to search

    Returns:
        SeatLookup with the seats found, or an empty SeatLookup carrying
        the error message if the lookup failed
    """
    try:
        partitions = [LocationPreference.from_string(p) for p in location_preferences]
        return SeatLookup.found(inventory.available_seats(partitions))
    except Exception as e:
        logger.warning(f"Seat lookup failed for {location_preferences!r}: {e}")
        return SeatLookup.failed(f"{type(e).__name__}: {e}")


def pick_random_seat(seats: Sequence[Seat], rng: random.Random) -> Seat:
    """
    Uniformly pick one seat.

    Raises:
        EmptySelectionError: If seats is empty
    """
    if not seats:
        raise EmptySelectionError()
    return seats[rng.randint(0, len(seats) - 1)]


# =============================================================================
# ACTIVITIES
# =============================================================================


def validate_available_seat(ctx: "ActivityContext", location_preference: str) -> bool:
    """True iff the partition has at least one available seat."""
    try:
        partition = LocationPreference.from_string(location_preference)
    except ValueError as e:
        raise InvalidReservationError(str(e)) from e
    return ctx.inventory.has_available(partition)


def get_available_seats(ctx: "ActivityContext", location_preferences: list[str]) -> dict[str, Any]:
    """Serialized SeatLookup over the given partitions (duplicates preserved)."""
    return lookup_available_seats(ctx.inventory, location_preferences or []).to_dict()


def get_random_seat(ctx: "ActivityContext", seats: list[dict[str, Any]]) -> dict[str, Any]:
    """Serialized seat drawn uniformly from seats."""
    candidates = [Seat.from_dict(s) for s in seats or []]
    return pick_random_seat(candidates, ctx.rng).to_dict()


def select_seat_task(ctx: "ActivityContext", reservation: dict[str, Any]) -> str:
    """
    Pick one seat for one reservation.

    Preferred partition first; if it has nothing available, a random seat
    from the other partitions; if those are empty too, the no-seats
    sentinel. Never raises on seat exhaustion.
    """
    request = ReservationRequest.from_dict(reservation)
    preference = request.location_preference

    if validate_available_seat(ctx, preference.value):
        preferred = SeatLookup.from_dict(get_available_seats(ctx, [preference.value]))
        if preferred.seats:
            seat = get_random_seat(ctx, [s.to_dict() for s in preferred.seats])
            return PREFERRED_SEAT_MESSAGE.format(code=seat["code"])
        logger.info(
            f"Partition {preference.value} emptied before selection for {request.requester_id}; "
            f"falling back"
        )

    fallback = SeatLookup.from_dict(
        get_available_seats(ctx, [p.value for p in preference.complement()])
    )
    if not fallback.ok:
        logger.warning(f"Fallback lookup failed for {request.requester_id}: {fallback.error}")
    if not fallback.seats:
        return NO_SEATS_MESSAGE

    seat = get_random_seat(ctx, [s.to_dict() for s in fallback.seats])
    return FALLBACK_SEAT_MESSAGE.format(code=seat["code"])


ACTIVITIES: dict[str, Callable[..., Any]] = {
    "validate_available_seat": validate_available_seat,
    "get_available_seats": get_available_seats,
    "get_random_seat": get_random_seat,
    "select_seat_task": select_seat_task,
}


def register_activities(registry: "Registry") -> "Registry":
    """Register all seat activities under their function names."""
    for name, fn in ACTIVITIES.items():
        registry.register(name, fn)
    return registry
