"""
OrchestrationRuntime - local durable-execution runtime.

The runtime implements:
- Instance scheduling and id allocation (via HistoryStore)
- History recording for every suspension point
- Deterministic replay of orchestration bodies (via ReplayContext)
- Activity dispatch on a worker pool, with retry of TransientError
- Durable timers (via Clock)
- External event delivery, buffered until the orchestration waits for it
- Resume of persisted instances after a process restart

Execution flow for one instance:
1. schedule_new_instance records execution_started and replays
2. Each replay either completes, fails, or suspends with new actions
3. New actions are recorded (task_scheduled / timer_created) and dispatched
4. When dispatched work settles (task_completed / task_failed / timer_fired)
   or an event is raised, the event is recorded and the body replays again
5. On completion/failure the outcome is recorded, outstanding timers are
   cancelled, and waiters are released

Replays of one instance are serialized by a per-instance lock; activities
of one instance (and of many instances) run in parallel on the pool.
"""

import itertools
import logging
import random
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional

from seatflow.errors import (
    CompletionTimeoutError,
    InstanceNotFoundError,
    TransientError,
    error_details,
)
from seatflow.inventory import SeatInventory, default_inventory
from seatflow.schemas import EventType, HistoryEvent, OrchestrationInstance
from seatflow.utils import retry_with_backoff

from .clock import Clock, SystemClock, TimerHandle
from .context import ActivityContext, CreateTimer, ReplayContext, ScheduleActivity
from .history_store import HistoryStore, InMemoryHistoryStore
from .registry import Registry

logger = logging.getLogger(__name__)


_SETTLING_EVENTS = (EventType.TASK_COMPLETED, EventType.TASK_FAILED, EventType.TIMER_FIRED)
_SCHEDULING_EVENTS = (EventType.TASK_SCHEDULED, EventType.TIMER_CREATED)


class _InstanceState:
    """In-process state of one loaded instance."""

    def __init__(
        self,
        instance: OrchestrationInstance,
        history: Iterable[HistoryEvent],
        replayed_through: int = 0,
    ):
        self.instance = instance
        self.history: list[HistoryEvent] = list(history)
        self.replayed_through = replayed_through
        self.lock = threading.RLock()
        self.done = threading.Event()
        self.timers: dict[int, TimerHandle] = {}
        if instance.is_terminal:
            self.done.set()


class OrchestrationRuntime:
    """
    Runs registered orchestrations durably.

    Usage:
        runtime = OrchestrationRuntime(inventory=default_inventory())
        runtime.register_orchestration("sequential_reservation", sequential_reservation)
        register_activities(runtime.activities)

        instance_id = runtime.schedule_new_instance("sequential_reservation", reservation)
        instance = runtime.wait_for_completion(instance_id, timeout=30)
    """

    def __init__(
        self,
        inventory: Optional[SeatInventory] = None,
        store: Optional[HistoryStore] = None,
        clock: Optional[Clock] = None,
        executor: Optional[Executor] = None,
        max_workers: int = 8,
        rng: Optional[random.Random] = None,
        activity_max_attempts: int = 1,
        activity_retry_backoff_seconds: float = 0.0,
    ):
        """
        Initialize the runtime.

        Args:
            inventory: Seat inventory injected into activities (default fixture if None)
            store: HistoryStore for instances and history (in-memory if None)
            clock: Clock driving durable timers (wall clock if None)
            executor: Executor running activities (owned thread pool if None)
            max_workers: Pool size when the runtime creates its own executor
            rng: Random source injected into activities
            activity_max_attempts: Attempts per activity for TransientError
            activity_retry_backoff_seconds: Initial backoff between attempts
        """
        self._inventory = inventory if inventory is not None else default_inventory()
        self._store = store if store is not None else InMemoryHistoryStore()
        self._clock = clock if clock is not None else SystemClock()
        self._rng = rng if rng is not None else random.Random()
        self._max_attempts = activity_max_attempts
        self._retry_backoff = activity_retry_backoff_seconds

        self._owns_executor = executor is None
        self._executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="seatflow-activity"
        )

        self._orchestrations = Registry("orchestration")
        self._activities = Registry("activity")

        self._states: dict[str, _InstanceState] = {}
        self._states_lock = threading.Lock()
        self._closed = False

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    @property
    def orchestrations(self) -> Registry:
        return self._orchestrations

    @property
    def activities(self) -> Registry:
        return self._activities

    @property
    def inventory(self) -> SeatInventory:
        return self._inventory

    @property
    def store(self) -> HistoryStore:
        return self._store

    def register_orchestration(self, name: str, fn: Callable[..., Any]) -> "OrchestrationRuntime":
        self._orchestrations.register(name, fn)
        return self

    def register_activity(self, name: str, fn: Callable[..., Any]) -> "OrchestrationRuntime":
        self._activities.register(name, fn)
        return self

    # -------------------------------------------------------------------------
    # Client API
    # -------------------------------------------------------------------------

    def schedule_new_instance(self, name: str, input: Any = None) -> str:
        """
        Schedule a new orchestration instance.

        Args:
            name: Registered orchestration name
            input: Orchestration input (JSON-compatible)

        Returns:
            The new instance id

        Raises:
            KeyError: If no orchestration is registered under name
            RuntimeError: If the runtime has been shut down
        """
        if self._closed:
            raise RuntimeError("Runtime is shut down")
        self._orchestrations.get(name)

        instance = self._store.create_instance(name, input)
        state = _InstanceState(instance, [])
        with self._states_lock:
            self._states[instance.instance_id] = state

        logger.info(f"Orchestration scheduled with ID: {instance.instance_id} ({name})")
        self._deliver(state, [HistoryEvent.execution_started(name, input)])
        return instance.instance_id

    def raise_event(self, instance_id: str, name: str, payload: Any = None) -> bool:
        """
        Deliver an external event to an instance.

        Events raised before the orchestration waits for them are kept in
        history and handed out in arrival order.

        Returns:
            True if recorded, False if the instance had already finished

        Raises:
            InstanceNotFoundError: If the instance is unknown
        """
        state = self._get_state(instance_id)
        delivered = self._deliver(state, [HistoryEvent.event_raised(name, payload)])
        if delivered:
            logger.info(f"Event '{name}' raised for instance {instance_id}")
        return delivered

    def wait_for_completion(self, instance_id: str, timeout: Optional[float] = None) -> OrchestrationInstance:
        """
        Block until the instance finishes.

        Args:
            instance_id: Instance to wait for
            timeout: Local wait budget in seconds (None waits forever)

        Returns:
            The finished OrchestrationInstance

        Raises:
            InstanceNotFoundError: If the instance is unknown
            CompletionTimeoutError: If the budget runs out; the instance keeps running
        """
        state = self._get_state(instance_id)
        if not state.done.wait(timeout):
            raise CompletionTimeoutError(instance_id, timeout)
        return state.instance

    def get_instance(self, instance_id: str) -> OrchestrationInstance:
        """
        Current record of an instance.

        Raises:
            InstanceNotFoundError: If the instance is unknown
        """
        with self._states_lock:
            state = self._states.get(instance_id)
        if state is not None:
            return state.instance
        instance = self._store.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def get_history(self, instance_id: str) -> list[HistoryEvent]:
        """
        History of an instance, oldest first.

        Raises:
            InstanceNotFoundError: If the instance is unknown
        """
        with self._states_lock:
            state = self._states.get(instance_id)
        if state is not None:
            with state.lock:
                return list(state.history)
        self.get_instance(instance_id)
        return self._store.get_history(instance_id)

    def list_instances(self) -> list[OrchestrationInstance]:
        with self._states_lock:
            loaded = {k: s.instance for k, s in self._states.items()}
        return [loaded.get(i.instance_id, i) for i in self._store.list_instances()]

    def resume(self, instance_id: str) -> OrchestrationInstance:
        """
        Load a persisted instance and continue running it.

        Replays history, re-dispatches activities that were scheduled but
        never settled, records timers that came due while unloaded as fired,
        and re-arms the rest for their remaining time.

        Raises:
            InstanceNotFoundError: If the store has no such instance
        """
        return self._get_state(instance_id).instance

    def shutdown(self, wait: bool = True) -> None:
        """Cancel armed timers and stop the activity pool (if owned)."""
        self._closed = True
        with self._states_lock:
            states = list(self._states.values())
        for state in states:
            with state.lock:
                for handle in state.timers.values():
                    handle.cancel()
                state.timers.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> "OrchestrationRuntime":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Instance state
    # -------------------------------------------------------------------------

    def _get_state(self, instance_id: str) -> _InstanceState:
        with self._states_lock:
            state = self._states.get(instance_id)
            if state is not None:
                return state

            instance = self._store.get_instance(instance_id)
            if instance is None:
                raise InstanceNotFoundError(instance_id)
            history = self._store.get_history(instance_id)
            state = _InstanceState(instance, history, replayed_through=len(history))
            # Held until overdue timers are recorded, so no event can overtake them
            state.lock.acquire()
            self._states[instance_id] = state

        try:
            pending = self._recover(state)
        finally:
            state.lock.release()

        if not state.instance.is_terminal:
            self._restore(state, pending)
        if state.instance.is_terminal:
            self._evict(state)
        return state

    def _recover(self, state: _InstanceState) -> list[HistoryEvent]:
        """
        Bring a freshly loaded instance up to date with the clock.

        Must be called with state.lock held. Timers that came due while no
        runtime was watching are recorded as fired, earliest first.

        Returns:
            Scheduling events still waiting to be dispatched
        """
        instance = state.instance
        terminal = [
            e for e in state.history
            if e.event_type in (EventType.EXECUTION_COMPLETED, EventType.EXECUTION_FAILED)
        ]
        if terminal and not instance.is_terminal:
            # Outcome was recorded but the instance record was not updated
            if terminal[-1].event_type == EventType.EXECUTION_COMPLETED:
                instance.mark_completed(terminal[-1].result)
            else:
                instance.mark_failed(terminal[-1].error or {})
            self._store.update_instance(instance)
        if instance.is_terminal:
            state.done.set()
            return []

        settled = {e.task_id for e in state.history if e.event_type in _SETTLING_EVENTS}
        pending = [
            e for e in state.history
            if e.event_type in _SCHEDULING_EVENTS and e.task_id not in settled
        ]

        now = self._clock.now()
        overdue = sorted(
            (e for e in pending if e.event_type == EventType.TIMER_CREATED and e.fire_at <= now),
            key=lambda e: e.fire_at,
        )
        if overdue:
            logger.info(
                f"Instance {instance.instance_id}: {len(overdue)} timer(s) came due while unloaded"
            )
            self._record(state, [HistoryEvent.timer_fired(e.task_id) for e in overdue])
        fired = {e.task_id for e in overdue}
        return [e for e in pending if e.task_id not in fired]

    def _restore(self, state: _InstanceState, pending: list[HistoryEvent]) -> None:
        instance = state.instance
        logger.info(
            f"Resuming instance {instance.instance_id} ({instance.name}): "
            f"{len(state.history)} history events, {len(pending)} pending tasks"
        )
        self._deliver(state, [])
        if state.instance.is_terminal:
            return
        for event in pending:
            self._dispatch(state, event)

    def _evict(self, state: _InstanceState) -> None:
        """Forget a finished instance; its record stays in the store."""
        with self._states_lock:
            if self._states.get(state.instance.instance_id) is state:
                del self._states[state.instance.instance_id]

    # -------------------------------------------------------------------------
    # Replay loop
    # -------------------------------------------------------------------------

    def _deliver(self, state: _InstanceState, events: list[HistoryEvent]) -> bool:
        """Record events, replay the instance, and dispatch any new work."""
        with state.lock:
            if state.instance.is_terminal:
                kinds = [e.event_type.value for e in events]
                logger.info(f"Ignoring {kinds} for finished instance {state.instance.instance_id}")
                return False
            self._record(state, events)
            new_work = self._replay(state)
            finished = state.instance.is_terminal

        if finished:
            self._evict(state)
        for event in new_work:
            self._dispatch(state, event)
        return True

    def _record(self, state: _InstanceState, events: list[HistoryEvent]) -> None:
        if not events:
            return
        state.history.extend(events)
        self._store.append_events(state.instance.instance_id, events)

    def _replay(self, state: _InstanceState) -> list[HistoryEvent]:
        instance = state.instance
        orchestrator = self._orchestrations.get(instance.name)

        ctx = ReplayContext(instance.instance_id, state.history, state.replayed_through)
        result = ctx.run(orchestrator, instance.input)

        if result.status == "completed":
            self._record(state, [HistoryEvent.execution_completed(result.output)])
            instance.mark_completed(result.output)
            self._finish(state)
            logger.info(f"Orchestration completed! Instance {instance.instance_id} result: {result.output!r}")
            return []

        if result.status == "failed":
            details = error_details(result.error)
            self._record(state, [HistoryEvent.execution_failed(details)])
            instance.mark_failed(details)
            self._finish(state)
            logger.error(
                f"Orchestration {instance.name} ({instance.instance_id}) failed: "
                f"{details['type']}: {details['message']}"
            )
            return []

        new_work = []
        for action in result.actions:
            if isinstance(action, ScheduleActivity):
                new_work.append(HistoryEvent.task_scheduled(action.task_id, action.name, action.input))
            elif isinstance(action, CreateTimer):
                fire_at = self._clock.now() + timedelta(seconds=action.delay_seconds)
                new_work.append(HistoryEvent.timer_created(action.task_id, fire_at))
        self._record(state, new_work)
        state.replayed_through = len(state.history)
        return new_work

    def _finish(self, state: _InstanceState) -> None:
        self._store.update_instance(state.instance)
        for handle in state.timers.values():
            handle.cancel()
        state.timers.clear()
        state.replayed_through = len(state.history)
        state.done.set()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _dispatch(self, state: _InstanceState, event: HistoryEvent) -> None:
        if event.event_type == EventType.TASK_SCHEDULED:
            self._dispatch_activity(state, event.task_id, event.name, event.input)
        elif event.event_type == EventType.TIMER_CREATED:
            self._arm_timer(state, event.task_id, event)

    def _dispatch_activity(self, state: _InstanceState, task_id: int, name: str, input: Any) -> None:
        instance_id = state.instance.instance_id
        try:
            fn = self._activities.get(name)
        except KeyError as e:
            logger.error(f"Instance {instance_id} scheduled unknown activity '{name}'")
            self._deliver(state, [HistoryEvent.task_failed(task_id, error_details(e))])
            return

        try:
            future = self._executor.submit(self._run_activity, instance_id, task_id, name, fn, input)
        except RuntimeError as e:
            logger.warning(f"Could not dispatch activity '{name}' for {instance_id}: {e}")
            return

        logger.debug(f"Dispatched activity '{name}' (task {task_id}) for {instance_id}")
        future.add_done_callback(lambda f: self._on_activity_done(state, task_id, name, f))

    def _run_activity(self, instance_id: str, task_id: int, name: str, fn: Callable[..., Any], input: Any) -> Any:
        attempts = itertools.count(1)

        def invoke() -> Any:
            ctx = ActivityContext(
                instance_id=instance_id,
                task_id=task_id,
                name=name,
                inventory=self._inventory,
                rng=self._rng,
                attempt=next(attempts),
            )
            return fn(ctx, input)

        return retry_with_backoff(
            invoke,
            max_attempts=self._max_attempts,
            backoff_seconds=self._retry_backoff,
            retry_on=(TransientError,),
            logger=logger,
        )

    def _on_activity_done(self, state: _InstanceState, task_id: int, name: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(
                f"Activity '{name}' (task {task_id}) failed for {state.instance.instance_id}: "
                f"{type(error).__name__}: {error}"
            )
            event = HistoryEvent.task_failed(task_id, error_details(error))
        else:
            event = HistoryEvent.task_completed(task_id, future.result())
        self._deliver(state, [event])

    def _arm_timer(self, state: _InstanceState, task_id: int, event: HistoryEvent) -> None:
        delay = (event.fire_at - self._clock.now()).total_seconds()
        with state.lock:
            if state.instance.is_terminal or self._closed:
                return
            state.timers[task_id] = self._clock.call_later(
                delay, lambda: self._fire_timer(state, task_id)
            )
        logger.debug(f"Timer {task_id} armed for {state.instance.instance_id} ({max(delay, 0):.3f}s)")

    def _fire_timer(self, state: _InstanceState, task_id: int) -> None:
        with state.lock:
            state.timers.pop(task_id, None)
        self._deliver(state, [HistoryEvent.timer_fired(task_id)])
