"""
Seat reservation orchestrations.

Both orchestrations are generator functions driven by the runtime. They
must stay deterministic: every activity call, timer, and event wait goes
through the context, and nothing here reads the clock, draws random
numbers, or touches the inventory directly.

- sequential_reservation: one reservation, one activity at a time
- approval_reservation: N reservations selected concurrently, then an
  approval signal raced against a timeout
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import partial
from typing import Any, Generator, Optional, Union, TYPE_CHECKING

from seatflow.activities import FALLBACK_SEAT_MESSAGE, NO_SEATS_MESSAGE, PREFERRED_SEAT_MESSAGE
from seatflow.engine.context import OrchestrationContext
from seatflow.schemas import ReservationRequest, SeatLookup

if TYPE_CHECKING:
    from seatflow.engine.registry import Registry

logger = logging.getLogger(__name__)


SEQUENTIAL_RESERVATION = "sequential_reservation"
APPROVAL_RESERVATION = "approval_reservation"

APPROVAL_EVENT = "approval_received"
CANCELLED = "Cancelled"
DEFAULT_APPROVAL_TIMEOUT = timedelta(seconds=20)


class ReservationState(str, Enum):
    """States the reservation orchestrations move through."""
    START = "start"
    VALIDATING_PREFERENCE = "validating_preference"
    SELECTING_PREFERRED = "selecting_preferred"
    SELECTING_FALLBACK = "selecting_fallback"
    FANNING_OUT = "fanning_out"
    AWAITING_APPROVAL_OR_TIMEOUT = "awaiting_approval_or_timeout"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Approved:
    """The approval signal arrived before the timeout."""
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def approver(self) -> Optional[str]:
        return self.payload.get("approver")


@dataclass(frozen=True)
class TimedOut:
    """The timeout fired before any approval arrived."""


ApprovalOutcome = Union[Approved, TimedOut]


def _enter(ctx: OrchestrationContext, state: ReservationState) -> None:
    if not ctx.is_replaying:
        logger.info(f"[{ctx.instance_id}] -> {state.value}")


def await_approval(
    ctx: OrchestrationContext,
    timeout: timedelta,
) -> Generator[Any, Any, ApprovalOutcome]:
    """
    Race the approval signal against a timer.

    Use with ``yield from``. The winner is decided by which handle
    settled first, never by the payload.
    """
    outcome = yield ctx.wait_any({
        "approval": ctx.wait_for_external_event(APPROVAL_EVENT),
        "timeout": ctx.create_timer(timeout),
    })
    if outcome.tag == "timeout":
        return TimedOut()

    payload = outcome.value if isinstance(outcome.value, dict) else {}
    return Approved(payload)


def sequential_reservation(ctx: OrchestrationContext, reservation: dict[str, Any]):
    """
    Reserve one seat, one checkpoint per activity.

    Start -> ValidatingPreference -> {SelectingPreferred | SelectingFallback} -> Completed
    """
    request = ReservationRequest.from_dict(reservation)
    preference = request.location_preference

    _enter(ctx, ReservationState.VALIDATING_PREFERENCE)
    available = yield ctx.call_activity("validate_available_seat", preference.value)

    if available:
        _enter(ctx, ReservationState.SELECTING_PREFERRED)
        preferred = SeatLookup.from_dict(
            (yield ctx.call_activity("get_available_seats", [preference.value]))
        )
        if preferred.seats:
            seat = yield ctx.call_activity("get_random_seat", [s.to_dict() for s in preferred.seats])
            _enter(ctx, ReservationState.COMPLETED)
            return PREFERRED_SEAT_MESSAGE.format(code=seat["code"])

    _enter(ctx, ReservationState.SELECTING_FALLBACK)
    fallback = SeatLookup.from_dict(
        (yield ctx.call_activity("get_available_seats", [p.value for p in preference.complement()]))
    )
    if not fallback.ok and not ctx.is_replaying:
        logger.warning(f"[{ctx.instance_id}] fallback lookup failed: {fallback.error}")
    if not fallback.seats:
        _enter(ctx, ReservationState.COMPLETED)
        return NO_SEATS_MESSAGE

    seat = yield ctx.call_activity("get_random_seat", [s.to_dict() for s in fallback.seats])
    _enter(ctx, ReservationState.COMPLETED)
    return FALLBACK_SEAT_MESSAGE.format(code=seat["code"])


def approval_reservation(
    ctx: OrchestrationContext,
    reservations: list[dict[str, Any]],
    approval_timeout: timedelta = DEFAULT_APPROVAL_TIMEOUT,
):
    """
    Select seats for a batch, then hold the result until approved.

    Phase A dispatches one select_seat_task per reservation and waits for
    all of them; results keep the input order. Phase B races the
    approval_received signal against approval_timeout. A timeout returns
    "Cancelled"; an approval returns the Phase A results.

    Start -> FanningOut -> AwaitingApprovalOrTimeout -> {Cancelled | Approved} -> Completed
    """
    requests = [ReservationRequest.from_dict(r) for r in reservations or []]

    _enter(ctx, ReservationState.FANNING_OUT)
    tasks = [ctx.call_activity("select_seat_task", r.to_dict()) for r in requests]
    results = yield ctx.wait_all(tasks)

    _enter(ctx, ReservationState.AWAITING_APPROVAL_OR_TIMEOUT)
    outcome = yield from await_approval(ctx, approval_timeout)

    if isinstance(outcome, TimedOut):
        _enter(ctx, ReservationState.CANCELLED)
        return CANCELLED

    _enter(ctx, ReservationState.APPROVED)
    if not ctx.is_replaying:
        logger.info(f"[{ctx.instance_id}] approved by {outcome.approver}")
    return list(results)


def register_orchestrations(
    registry: "Registry",
    approval_timeout: timedelta = DEFAULT_APPROVAL_TIMEOUT,
) -> "Registry":
    """
    Register both orchestrations.

    The approval timeout is bound at registration so it stays fixed for
    every replay of an instance.
    """
    registry.register(SEQUENTIAL_RESERVATION, sequential_reservation)
    registry.register(
        APPROVAL_RESERVATION,
        partial(approval_reservation, approval_timeout=approval_timeout),
    )
    return registry
