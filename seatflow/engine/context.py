"""
Orchestration and activity contexts.

Orchestrations are generator functions that receive an
OrchestrationContext. Every suspension point is a Task handle obtained
from the context and yielded back to the runtime:

    def my_orchestration(ctx, payload):
        ok = yield ctx.call_activity("validate_available_seat", "window")
        results = yield ctx.wait_all([ctx.call_activity(...), ...])
        outcome = yield ctx.wait_any({
            "approval": ctx.wait_for_external_event("approval_received"),
            "timeout": ctx.create_timer(20),
        })
        return outcome.tag

ReplayContext runs such a body against an instance's history. Tasks
whose settling event is already in history are answered immediately;
the first unsettled task suspends the body. Work the body asked for that
history does not know about yet is collected as actions for the runtime
to record and dispatch.
"""

import inspect
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence, Union, TYPE_CHECKING

from seatflow.errors import NonDeterminismError, TaskFailedError
from seatflow.schemas import EventType, HistoryEvent

if TYPE_CHECKING:
    from seatflow.inventory import SeatInventory


# =============================================================================
# TASK HANDLES
# =============================================================================


class Task:
    """A pending handle yielded by orchestration code."""


@dataclass(frozen=True)
class ActivityTask(Task):
    task_id: int
    name: str
    input: Any = None


@dataclass(frozen=True)
class TimerTask(Task):
    task_id: int
    delay_seconds: float


@dataclass(frozen=True)
class ExternalEventTask(Task):
    name: str
    ordinal: int


@dataclass(frozen=True)
class WhenAllTask(Task):
    children: tuple[Task, ...]


@dataclass(frozen=True)
class WhenAnyTask(Task):
    children: tuple[tuple[Any, Task], ...]


@dataclass(frozen=True)
class AnyResult:
    """
    Outcome of wait_any: which handle settled first, and its value.

    Attributes:
        tag: Key (or index) of the winning handle
        value: Result of the winning handle
    """
    tag: Any
    value: Any = None


@dataclass(frozen=True)
class ScheduleActivity:
    task_id: int
    name: str
    input: Any = None


@dataclass(frozen=True)
class CreateTimer:
    task_id: int
    delay_seconds: float


Action = Union[ScheduleActivity, CreateTimer]


# =============================================================================
# CONTEXTS
# =============================================================================


@dataclass(frozen=True)
class ActivityContext:
    """
    Context handed to an activity invocation.

    Attributes:
        instance_id: Orchestration instance that scheduled the activity
        task_id: Sequence number of the task within the instance
        name: Activity name
        inventory: Seat inventory injected by the runtime
        rng: Random source injected by the runtime
        attempt: Attempt number (1-indexed)
    """
    instance_id: str
    task_id: int
    name: str
    inventory: "SeatInventory"
    rng: random.Random
    attempt: int = 1


class OrchestrationContext(ABC):
    """
    The only interface orchestration code may use to interact with the world.

    Orchestrations must not read the wall clock, draw random numbers, or
    perform I/O directly; all of that belongs in activities.
    """

    instance_id: str
    is_replaying: bool

    @property
    @abstractmethod
    def current_utc_datetime(self) -> datetime:
        """Replay-safe current time, derived from history."""
        pass

    @abstractmethod
    def call_activity(self, name: str, input: Any = None) -> Task:
        """Schedule an activity; yield the handle to wait for its result."""
        pass

    @abstractmethod
    def wait_all(self, tasks: Sequence[Task]) -> Task:
        """Handle that settles with all results, in input order."""
        pass

    @abstractmethod
    def wait_any(self, tasks: Union[Mapping[Any, Task], Sequence[Task]]) -> Task:
        """Handle that settles with an AnyResult for the first task to settle."""
        pass

    @abstractmethod
    def create_timer(self, duration: Union[float, timedelta]) -> Task:
        """Handle that settles after duration (seconds or timedelta)."""
        pass

    @abstractmethod
    def wait_for_external_event(self, name: str) -> Task:
        """Handle that settles with the payload of the next event named name."""
        pass


@dataclass(frozen=True)
class _Settled:
    index: int
    value: Any = None
    error: Optional[BaseException] = None


@dataclass
class ReplayResult:
    """
    Outcome of one replay pass.

    Attributes:
        status: "completed", "failed", or "suspended"
        output: Return value when completed
        error: Exception when failed
        actions: New work to record and dispatch when suspended
    """
    status: str
    output: Any = None
    error: Optional[BaseException] = None
    actions: list[Action] = field(default_factory=list)


class ReplayContext(OrchestrationContext):
    """
    OrchestrationContext that replays an orchestration body over history.

    Args:
        instance_id: The instance being replayed
        history: Full history of the instance
        replayed_through: Number of history events seen by the previous
            replay; results from before this point are replays
    """

    def __init__(self, instance_id: str, history: Sequence[HistoryEvent], replayed_through: int = 0):
        self.instance_id = instance_id
        self.is_replaying = replayed_through > 0
        self._history = list(history)
        self._replayed_through = replayed_through
        self._sequence = 0
        self._event_ordinals: dict[str, int] = {}
        self._actions: list[Action] = []

        self._scheduled: dict[int, HistoryEvent] = {}
        self._tasks: dict[int, _Settled] = {}
        self._timers: dict[int, _Settled] = {}
        self._events: dict[str, list[_Settled]] = {}
        self._current_time: Optional[datetime] = None

        for index, event in enumerate(self._history):
            self._index_event(index, event)

    def _index_event(self, index: int, event: HistoryEvent) -> None:
        kind = event.event_type
        if kind == EventType.EXECUTION_STARTED and self._current_time is None:
            self._current_time = event.timestamp
        elif kind in (EventType.TASK_SCHEDULED, EventType.TIMER_CREATED):
            self._scheduled[event.task_id] = event
        elif kind == EventType.TASK_COMPLETED:
            self._tasks[event.task_id] = _Settled(index, value=event.result)
        elif kind == EventType.TASK_FAILED:
            scheduled = self._scheduled.get(event.task_id)
            activity = scheduled.name if scheduled is not None else f"task-{event.task_id}"
            self._tasks[event.task_id] = _Settled(
                index, error=TaskFailedError.from_details(activity, event.error or {})
            )
        elif kind == EventType.TIMER_FIRED:
            self._timers[event.task_id] = _Settled(index, value=None)
        elif kind == EventType.EVENT_RAISED:
            self._events.setdefault(event.name, []).append(_Settled(index, value=event.result))

    # -------------------------------------------------------------------------
    # OrchestrationContext
    # -------------------------------------------------------------------------

    @property
    def current_utc_datetime(self) -> datetime:
        if self._current_time is None:
            raise NonDeterminismError("History has no execution_started event")
        return self._current_time

    def call_activity(self, name: str, input: Any = None) -> Task:
        task_id = self._next_id()
        recorded = self._scheduled.get(task_id)
        if recorded is None:
            self._actions.append(ScheduleActivity(task_id, name, input))
        elif recorded.event_type != EventType.TASK_SCHEDULED or recorded.name != name:
            raise NonDeterminismError(
                f"Replay scheduled activity '{name}' as task {task_id}, "
                f"but history recorded {_describe(recorded)}"
            )
        return ActivityTask(task_id, name, input)

    def wait_all(self, tasks: Sequence[Task]) -> Task:
        return WhenAllTask(tuple(tasks))

    def wait_any(self, tasks: Union[Mapping[Any, Task], Sequence[Task]]) -> Task:
        if isinstance(tasks, Mapping):
            children = tuple(tasks.items())
        else:
            children = tuple(enumerate(tasks))
        if not children:
            raise ValueError("wait_any needs at least one task")
        return WhenAnyTask(children)

    def create_timer(self, duration: Union[float, timedelta]) -> Task:
        delay = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        if delay < 0:
            raise ValueError(f"Timer duration must be >= 0, got {delay}")

        task_id = self._next_id()
        recorded = self._scheduled.get(task_id)
        if recorded is None:
            self._actions.append(CreateTimer(task_id, delay))
        elif recorded.event_type != EventType.TIMER_CREATED:
            raise NonDeterminismError(
                f"Replay created a timer as task {task_id}, "
                f"but history recorded {_describe(recorded)}"
            )
        return TimerTask(task_id, delay)

    def wait_for_external_event(self, name: str) -> Task:
        ordinal = self._event_ordinals.get(name, 0)
        self._event_ordinals[name] = ordinal + 1
        return ExternalEventTask(name, ordinal)

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def run(self, orchestrator: Callable[..., Any], input: Any) -> ReplayResult:
        """
        Drive the orchestration body as far as history allows.

        Returns:
            ReplayResult describing completion, failure, or suspension
        """
        try:
            body = orchestrator(self, input)
        except Exception as e:
            return ReplayResult("failed", error=e)

        if not inspect.isgenerator(body):
            return ReplayResult("completed", output=body)

        send_value: Any = None
        throw_error: Optional[BaseException] = None

        while True:
            try:
                if throw_error is not None:
                    yielded = body.throw(throw_error)
                else:
                    yielded = body.send(send_value)
            except StopIteration as stop:
                return ReplayResult("completed", output=stop.value)
            except Exception as e:
                return ReplayResult("failed", error=e)

            if not isinstance(yielded, Task):
                body.close()
                return ReplayResult(
                    "failed",
                    error=TypeError(
                        f"Orchestrations must yield context tasks, got {type(yielded).__name__}"
                    ),
                )

            settled = self._resolve(yielded)

            if settled is None:
                self.is_replaying = False
                body.close()
                return ReplayResult("suspended", actions=list(self._actions))

            if settled.index >= self._replayed_through:
                self.is_replaying = False
            if 0 <= settled.index < len(self._history):
                timestamp = self._history[settled.index].timestamp
                if self._current_time is None or timestamp > self._current_time:
                    self._current_time = timestamp

            send_value, throw_error = settled.value, settled.error

    def _resolve(self, task: Task) -> Optional[_Settled]:
        if isinstance(task, ActivityTask):
            return self._tasks.get(task.task_id)

        if isinstance(task, TimerTask):
            return self._timers.get(task.task_id)

        if isinstance(task, ExternalEventTask):
            raised = self._events.get(task.name, [])
            return raised[task.ordinal] if task.ordinal < len(raised) else None

        if isinstance(task, WhenAllTask):
            settled = [self._resolve(child) for child in task.children]
            failures = [s for s in settled if s is not None and s.error is not None]
            if failures:
                return min(failures, key=lambda s: s.index)
            if any(s is None for s in settled):
                return None
            last = max((s.index for s in settled), default=-1)
            return _Settled(last, value=[s.value for s in settled])

        if isinstance(task, WhenAnyTask):
            winner: Optional[tuple[Any, _Settled]] = None
            for tag, child in task.children:
                s = self._resolve(child)
                if s is not None and (winner is None or s.index < winner[1].index):
                    winner = (tag, s)
            if winner is None:
                return None
            tag, s = winner
            if s.error is not None:
                return s
            return _Settled(s.index, value=AnyResult(tag, s.value))

        raise TypeError(f"Unknown task type: {type(task).__name__}")

    def _next_id(self) -> int:
        task_id = self._sequence
        self._sequence += 1
        return task_id


def _describe(event: HistoryEvent) -> str:
    if event.event_type == EventType.TASK_SCHEDULED:
        return f"activity '{event.name}'"
    return event.event_type.value
