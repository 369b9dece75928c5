"""
Reservation service - the request surface over the runtime.

Three inbound operations:
- submit_reservation: schedule the sequential orchestration for one request
- submit_batch: schedule the approval orchestration for many requests
- submit_approval: raise approval_received against a running batch

Every operation returns an Acknowledgement whether or not the instance
finished within the local wait budget. Running out of budget is reported
as "not yet complete"; it is not a failure and does not stop the instance.
"""

import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from seatflow.activities import register_activities
from seatflow.config import SeatflowConfig
from seatflow.engine import Clock, FileHistoryStore, InMemoryHistoryStore, OrchestrationRuntime
from seatflow.errors import CompletionTimeoutError, InvalidReservationError
from seatflow.inventory import load_inventory
from seatflow.orchestrations import (
    APPROVAL_EVENT,
    APPROVAL_RESERVATION,
    SEQUENTIAL_RESERVATION,
    register_orchestrations,
)
from seatflow.schemas import OrchestrationInstance, OrchestrationStatus, ReservationRequest

logger = logging.getLogger(__name__)


WORKFLOW_RECEIVED = "Workflow received"
APPROVAL_RECEIVED = "Approval received"
ALREADY_FINISHED = "Instance already finished"


@dataclass
class Acknowledgement:
    """
    What a caller gets back from the request surface.

    Attributes:
        instance_id: Orchestration instance the request refers to
        message: Human-readable acknowledgement
        status: Instance status when the acknowledgement was built
        output: Instance output if it completed
        failure: Failure details if it failed
        completed: Whether the instance reached a terminal state in time
    """
    instance_id: str
    message: str
    status: OrchestrationStatus
    output: Any = None
    failure: Optional[dict[str, Any]] = None
    completed: bool = False

    @classmethod
    def from_instance(cls, instance: OrchestrationInstance, message: str) -> "Acknowledgement":
        return cls(
            instance_id=instance.instance_id,
            message=message,
            status=instance.status,
            output=instance.output,
            failure=instance.failure,
            completed=instance.is_terminal,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "instance_id": self.instance_id,
            "msg": self.message,
            "status": self.status.value,
            "completed": self.completed,
        }
        if self.output is not None:
            result["output"] = self.output
        if self.failure is not None:
            result["failure"] = self.failure
        return result


ReservationInput = Union[ReservationRequest, dict[str, Any]]


def _as_request(reservation: ReservationInput) -> ReservationRequest:
    if isinstance(reservation, ReservationRequest):
        return reservation
    return ReservationRequest.from_dict(reservation)


class ReservationService:
    """
    Request handling on top of an OrchestrationRuntime.

    Usage:
        runtime = create_runtime(config)
        service = ReservationService(runtime, wait_seconds=config.completion_wait_seconds)

        ack = service.submit_reservation({"id": "1", "name": "Ana", "locationPreference": "window"})
    """

    def __init__(self, runtime: OrchestrationRuntime, wait_seconds: float = 30.0):
        self._runtime = runtime
        self._wait_seconds = wait_seconds

    @property
    def runtime(self) -> OrchestrationRuntime:
        return self._runtime

    def submit_reservation(self, reservation: ReservationInput, wait: bool = True) -> Acknowledgement:
        """
        Reserve one seat with the sequential orchestration.

        Raises:
            InvalidReservationError: If the request is malformed
        """
        request = _as_request(reservation)
        instance_id = self._runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, request.to_dict())
        return self.acknowledge(instance_id, WORKFLOW_RECEIVED, wait)

    def submit_batch(self, reservations: Iterable[ReservationInput], wait: bool = True) -> Acknowledgement:
        """
        Reserve seats for a batch with the approval orchestration.

        Raises:
            InvalidReservationError: If any request is malformed
        """
        if isinstance(reservations, (dict, str, bytes)):
            raise InvalidReservationError("A batch must be a list of reservations")
        requests = [_as_request(r) for r in reservations]
        instance_id = self._runtime.schedule_new_instance(
            APPROVAL_RESERVATION, [r.to_dict() for r in requests]
        )
        return self.acknowledge(instance_id, WORKFLOW_RECEIVED, wait)

    def submit_approval(self, instance_id: str, approver: str, wait: bool = False) -> Acknowledgement:
        """
        Approve a pending batch.

        Raises:
            InstanceNotFoundError: If the instance is unknown
        """
        delivered = self._runtime.raise_event(instance_id, APPROVAL_EVENT, {"approver": approver})
        message = APPROVAL_RECEIVED if delivered else ALREADY_FINISHED
        return self.acknowledge(instance_id, message, wait)

    def acknowledge(self, instance_id: str, message: str = WORKFLOW_RECEIVED, wait: bool = True) -> Acknowledgement:
        """Acknowledge a request, waiting up to the budget for the instance to finish."""
        if wait:
            try:
                instance = self._runtime.wait_for_completion(instance_id, self._wait_seconds)
                logger.info(f"Orchestration completed! Result: {instance.output!r}")
            except CompletionTimeoutError:
                logger.info(f"Instance {instance_id} not yet complete after {self._wait_seconds}s")
        return Acknowledgement.from_instance(self._runtime.get_instance(instance_id), message)


def create_runtime(
    config: Optional[SeatflowConfig] = None,
    clock: Optional[Clock] = None,
) -> OrchestrationRuntime:
    """
    Build a runtime from configuration with all seat activities and
    orchestrations registered.
    """
    config = config or SeatflowConfig()

    store = FileHistoryStore(Path(config.store_dir)) if config.store_dir else InMemoryHistoryStore()
    rng = random.Random(config.random_seed) if config.random_seed is not None else random.Random()

    runtime = OrchestrationRuntime(
        inventory=load_inventory(config.inventory_file),
        store=store,
        clock=clock,
        max_workers=config.max_workers,
        rng=rng,
        activity_max_attempts=config.activity_max_attempts,
        activity_retry_backoff_seconds=config.activity_retry_backoff_seconds,
    )
    register_activities(runtime.activities)
    register_orchestrations(
        runtime.orchestrations,
        approval_timeout=timedelta(seconds=config.approval_timeout_seconds),
    )
    return runtime
