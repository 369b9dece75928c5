"""Tests for OrchestrationRuntime.

Tests the complete instance lifecycle:
schedule -> replay -> dispatch -> settle -> replay -> complete/fail

Most tests run activities inline (or queued on a DeferredExecutor) and
drive timers with a ManualClock, so interleavings are chosen by the test.
"""

import logging
import re
import time
from datetime import timedelta

import pytest

from seatflow.engine import FileHistoryStore, InMemoryHistoryStore, ManualClock
from seatflow.errors import (
    CompletionTimeoutError,
    InstanceNotFoundError,
    PermanentError,
    TransientError,
)
from seatflow.orchestrations import APPROVAL_EVENT, APPROVAL_RESERVATION, CANCELLED, SEQUENTIAL_RESERVATION
from seatflow.schemas import EventType, HistoryEvent, OrchestrationStatus


WINDOW = {"id": "1", "name": "Ana", "locationPreference": "window"}
MIDDLE = {"id": "2", "name": "Bo", "locationPreference": "middle"}
AISLE = {"id": "3", "name": "Cy", "locationPreference": "aisle"}


def kinds(runtime, instance_id):
    return [e.event_type for e in runtime.get_history(instance_id)]


# =============================================================================
# SEQUENTIAL EXECUTION
# =============================================================================


class TestSequentialExecution:
    """Tests for single-activity-at-a-time orchestrations."""

    def test_completes(self, make_runtime):
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)

        instance = runtime.wait_for_completion(instance_id, timeout=1)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert re.fullmatch(r"Selected seat: C[1-6]", instance.output)

    def test_history_records_every_checkpoint(self, make_runtime):
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)

        assert kinds(runtime, instance_id) == [
            EventType.EXECUTION_STARTED,
            EventType.TASK_SCHEDULED, EventType.TASK_COMPLETED,
            EventType.TASK_SCHEDULED, EventType.TASK_COMPLETED,
            EventType.TASK_SCHEDULED, EventType.TASK_COMPLETED,
            EventType.EXECUTION_COMPLETED,
        ]
        names = [e.name for e in runtime.get_history(instance_id) if e.event_type == EventType.TASK_SCHEDULED]
        assert names == ["validate_available_seat", "get_available_seats", "get_random_seat"]

    def test_one_activity_in_flight_at_a_time(self, make_runtime, deferred):
        runtime = make_runtime(executor=deferred)
        instance_id = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)

        for _ in range(3):
            assert deferred.pending == 1
            deferred.run_next()
        assert deferred.pending == 0
        assert runtime.get_instance(instance_id).status == OrchestrationStatus.COMPLETED

    def test_logs_schedule(self, make_runtime, caplog):
        caplog.set_level(logging.INFO, logger="seatflow")
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)
        assert f"Orchestration scheduled with ID: {instance_id}" in caplog.text


# =============================================================================
# FAN-OUT / FAN-IN
# =============================================================================


class TestFanOut:
    """Tests for concurrent activities joined with wait_all."""

    def test_results_keep_input_order(self, make_runtime, deferred):
        runtime = make_runtime(executor=deferred)
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW, MIDDLE, AISLE])
        assert deferred.pending == 3

        # Settle in reverse order
        while deferred.pending:
            deferred.run_next(-1)

        runtime.raise_event(instance_id, APPROVAL_EVENT, {"approver": "sup"})
        output = runtime.wait_for_completion(instance_id, timeout=1).output

        assert len(output) == 3
        assert re.fullmatch(r"Selected seat: C[1-6]", output[0])
        assert re.fullmatch(r"Selected seat: B[1-6]", output[1])
        assert output[2].startswith("Random selected seat: ")

    def test_thread_pool_order(self, make_runtime):
        """Slow early activities still land first in the result list."""
        def sleepy(ctx, seconds):
            time.sleep(seconds)
            return seconds

        def gather(ctx, delays):
            return (yield ctx.wait_all([ctx.call_activity("sleepy", d) for d in delays]))

        runtime = make_runtime(executor=None, max_workers=4)
        runtime.register_activity("sleepy", sleepy).register_orchestration("gather", gather)

        instance_id = runtime.schedule_new_instance("gather", [0.2, 0.0, 0.1])
        assert runtime.wait_for_completion(instance_id, timeout=5).output == [0.2, 0.0, 0.1]

    def test_thread_pool_batch(self, make_runtime):
        runtime = make_runtime(executor=None, max_workers=4)
        batch = [WINDOW, MIDDLE, AISLE, WINDOW, MIDDLE]
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, batch)
        runtime.raise_event(instance_id, APPROVAL_EVENT, {"approver": "sup"})

        instance = runtime.wait_for_completion(instance_id, timeout=5)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert len(instance.output) == 5

    def test_failure_fails_instance(self, make_runtime):
        def boom(ctx, input):
            raise PermanentError(f"bad {input}")

        def gather(ctx, inputs):
            return (yield ctx.wait_all([ctx.call_activity("boom", i) for i in inputs]))

        runtime = make_runtime()
        runtime.register_activity("boom", boom).register_orchestration("gather", gather)

        instance = runtime.wait_for_completion(runtime.schedule_new_instance("gather", [1, 2]), timeout=1)
        assert instance.status == OrchestrationStatus.FAILED
        assert instance.failure["type"] == "TaskFailedError"
        assert "bad 1" in instance.failure["message"]


# =============================================================================
# TIMERS AND EXTERNAL EVENTS
# =============================================================================


class TestApprovalRace:
    """Tests for the approval signal raced against the durable timer."""

    def test_approval_wins(self, make_runtime, clock):
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])
        assert clock.pending == 1

        assert runtime.raise_event(instance_id, APPROVAL_EVENT, {"approver": "sup"}) is True
        instance = runtime.get_instance(instance_id)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert isinstance(instance.output, list)
        # The losing timer is cancelled
        assert clock.pending == 0

    def test_timeout_wins(self, make_runtime, clock):
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])

        assert clock.advance(19) == 0
        assert runtime.get_instance(instance_id).status == OrchestrationStatus.RUNNING

        assert clock.advance(1) == 1
        instance = runtime.get_instance(instance_id)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert instance.output == CANCELLED

    def test_late_approval_ignored(self, make_runtime, clock):
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])
        clock.advance(20)

        assert runtime.raise_event(instance_id, APPROVAL_EVENT, {"approver": "late"}) is False
        assert runtime.get_instance(instance_id).output == CANCELLED
        assert kinds(runtime, instance_id)[-1] == EventType.EXECUTION_COMPLETED

    def test_approval_before_wait_is_buffered(self, make_runtime, deferred, clock):
        runtime = make_runtime(executor=deferred)
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW, MIDDLE])

        assert runtime.raise_event(instance_id, APPROVAL_EVENT, {"approver": "early"}) is True
        deferred.run_all()

        instance = runtime.get_instance(instance_id)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert len(instance.output) == 2
        assert clock.pending == 0

    def test_timer_fire_time_recorded(self, make_runtime, clock):
        runtime = make_runtime()
        start = clock.now()
        instance_id = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])

        created = [e for e in runtime.get_history(instance_id) if e.event_type == EventType.TIMER_CREATED]
        assert len(created) == 1
        assert (created[0].fire_at - start).total_seconds() == 20


# =============================================================================
# ACTIVITY FAILURES AND RETRIES
# =============================================================================


def call_one(ctx, name):
    return (yield ctx.call_activity(name))


class TestActivityFailures:
    """Tests for retry classification at the dispatch boundary."""

    def test_transient_error_retried(self, make_runtime):
        def flaky(ctx, _):
            if ctx.attempt < 3:
                raise TransientError("inventory busy")
            return ctx.attempt

        runtime = make_runtime(activity_max_attempts=3)
        runtime.register_activity("flaky", flaky).register_orchestration("call_one", call_one)

        instance = runtime.wait_for_completion(runtime.schedule_new_instance("call_one", "flaky"), 1)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert instance.output == 3

    def test_transient_error_exhausts_attempts(self, make_runtime):
        def always_busy(ctx, _):
            raise TransientError("inventory busy")

        runtime = make_runtime(activity_max_attempts=2)
        runtime.register_activity("busy", always_busy).register_orchestration("call_one", call_one)

        instance = runtime.wait_for_completion(runtime.schedule_new_instance("call_one", "busy"), 1)
        assert instance.status == OrchestrationStatus.FAILED
        assert "TransientError" in instance.failure["message"]

    def test_permanent_error_not_retried(self, make_runtime):
        calls = []

        def broken(ctx, _):
            calls.append(ctx.attempt)
            raise PermanentError("bad input")

        runtime = make_runtime(activity_max_attempts=5)
        runtime.register_activity("broken", broken).register_orchestration("call_one", call_one)

        instance = runtime.wait_for_completion(runtime.schedule_new_instance("call_one", "broken"), 1)
        assert instance.status == OrchestrationStatus.FAILED
        assert calls == [1]
        assert kinds(runtime, instance.instance_id)[-2:] == [EventType.TASK_FAILED, EventType.EXECUTION_FAILED]

    def test_unknown_activity_fails_task(self, make_runtime):
        runtime = make_runtime()
        runtime.register_orchestration("call_one", call_one)

        instance = runtime.wait_for_completion(runtime.schedule_new_instance("call_one", "missing"), 1)
        assert instance.status == OrchestrationStatus.FAILED
        assert "No activity registered with name: missing" in instance.failure["message"]

    def test_orchestration_body_error(self, make_runtime):
        def broken(ctx, _):
            raise ValueError("no")

        runtime = make_runtime()
        runtime.register_orchestration("broken", broken)

        instance = runtime.wait_for_completion(runtime.schedule_new_instance("broken"), 1)
        assert instance.failure == {"type": "ValueError", "message": "no"}

    def test_bad_reservation_fails_instance(self, make_runtime):
        runtime = make_runtime()
        instance_id = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, {"id": "1"})
        instance = runtime.wait_for_completion(instance_id, 1)
        assert instance.status == OrchestrationStatus.FAILED
        assert instance.failure["type"] == "InvalidReservationError"


# =============================================================================
# NON-DETERMINISM
# =============================================================================


class TestNonDeterminism:
    """Tests for orchestrations whose replay diverges from history."""

    def test_changed_schedule_fails_instance(self, make_runtime, deferred):
        current = {"name": "a"}

        def drifting(ctx, _):
            return (yield ctx.call_activity(current["name"]))

        runtime = make_runtime(executor=deferred)
        runtime.register_activity("a", lambda ctx, _: 1)
        runtime.register_activity("b", lambda ctx, _: 2)
        runtime.register_orchestration("drifting", drifting)

        instance_id = runtime.schedule_new_instance("drifting")
        current["name"] = "b"
        deferred.run_all()

        instance = runtime.get_instance(instance_id)
        assert instance.status == OrchestrationStatus.FAILED
        assert instance.failure["type"] == "NonDeterminismError"


# =============================================================================
# PERSISTENCE AND RESUME
# =============================================================================


class TestResume:
    """Tests for resuming persisted instances in a new runtime."""

    def test_resume_then_approve(self, make_runtime, clock, tmp_path):
        first = make_runtime(store=FileHistoryStore(tmp_path))
        instance_id = first.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW, AISLE])
        selected = [e.result for e in first.get_history(instance_id) if e.event_type == EventType.TASK_COMPLETED]
        first.shutdown(wait=False)
        assert clock.pending == 0

        second = make_runtime(store=FileHistoryStore(tmp_path))
        assert second.resume(instance_id).status == OrchestrationStatus.RUNNING
        assert clock.pending == 1

        assert second.raise_event(instance_id, APPROVAL_EVENT, {"approver": "sup"})
        instance = second.get_instance(instance_id)
        assert instance.status == OrchestrationStatus.COMPLETED
        # Replayed, not re-run
        assert instance.output == selected
        assert kinds(second, instance_id).count(EventType.TASK_SCHEDULED) == 2

    def test_resume_then_timeout(self, make_runtime, clock, tmp_path):
        first = make_runtime(store=FileHistoryStore(tmp_path))
        instance_id = first.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])
        first.shutdown(wait=False)

        second = make_runtime(store=FileHistoryStore(tmp_path))
        second.resume(instance_id)
        clock.advance(20)
        assert second.get_instance(instance_id).output == CANCELLED
        assert FileHistoryStore(tmp_path).get_instance(instance_id).output == CANCELLED

    def test_overdue_timeout_beats_late_approval(self, make_runtime, clock, tmp_path):
        first = make_runtime(store=FileHistoryStore(tmp_path))
        instance_id = first.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])
        first.shutdown(wait=False)

        later = ManualClock(clock.now() + timedelta(seconds=60))
        second = make_runtime(store=FileHistoryStore(tmp_path), clock=later)
        assert second.raise_event(instance_id, APPROVAL_EVENT, {"approver": "sup"}) is False

        assert second.get_instance(instance_id).output == CANCELLED
        history = kinds(second, instance_id)
        assert EventType.TIMER_FIRED in history
        assert EventType.EVENT_RAISED not in history
        assert later.pending == 0

    def test_resume_keeps_future_timer_armed(self, make_runtime, clock, tmp_path):
        first = make_runtime(store=FileHistoryStore(tmp_path))
        instance_id = first.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])
        first.shutdown(wait=False)

        later = ManualClock(clock.now() + timedelta(seconds=5))
        second = make_runtime(store=FileHistoryStore(tmp_path), clock=later)
        assert second.resume(instance_id).status == OrchestrationStatus.RUNNING
        assert EventType.TIMER_FIRED not in kinds(second, instance_id)

        later.advance(14)
        assert second.get_instance(instance_id).status == OrchestrationStatus.RUNNING
        later.advance(1)
        assert second.get_instance(instance_id).output == CANCELLED

    def test_resume_redispatches_unsettled_activity(self, make_runtime, deferred, tmp_path):
        first = make_runtime(store=FileHistoryStore(tmp_path), executor=deferred)
        instance_id = first.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)
        assert deferred.pending == 1
        first.shutdown(wait=False)

        second = make_runtime(store=FileHistoryStore(tmp_path))
        second.resume(instance_id)
        instance = second.wait_for_completion(instance_id, timeout=1)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert instance.output.startswith("Selected seat: C")

    def test_resume_finished_instance(self, make_runtime, tmp_path):
        first = make_runtime(store=FileHistoryStore(tmp_path))
        instance_id = first.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)
        output = first.get_instance(instance_id).output

        second = make_runtime(store=FileHistoryStore(tmp_path))
        instance = second.resume(instance_id)
        assert instance.status == OrchestrationStatus.COMPLETED
        assert instance.output == output
        assert second.raise_event(instance_id, APPROVAL_EVENT, {}) is False

    def test_resume_repairs_unrecorded_outcome(self, make_runtime):
        store = InMemoryHistoryStore()
        instance = store.create_instance(SEQUENTIAL_RESERVATION, WINDOW)
        store.append_events(instance.instance_id, [
            HistoryEvent.execution_started(SEQUENTIAL_RESERVATION, WINDOW),
            HistoryEvent.execution_completed("Selected seat: C2"),
        ])

        runtime = make_runtime(store=store)
        resumed = runtime.resume(instance.instance_id)
        assert resumed.status == OrchestrationStatus.COMPLETED
        assert store.get_instance(instance.instance_id).output == "Selected seat: C2"

    def test_resume_unknown(self, make_runtime):
        with pytest.raises(InstanceNotFoundError):
            make_runtime().resume("nope")


# =============================================================================
# CLIENT API
# =============================================================================


class TestClientApi:
    """Tests for scheduling, waiting and lookup."""

    def test_unknown_orchestration(self, make_runtime):
        with pytest.raises(KeyError, match="No orchestration registered"):
            make_runtime().schedule_new_instance("nope")

    def test_schedule_after_shutdown(self, make_runtime):
        runtime = make_runtime()
        runtime.shutdown()
        with pytest.raises(RuntimeError, match="shut down"):
            runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)

    def test_completion_timeout_keeps_instance_running(self, make_runtime, deferred):
        runtime = make_runtime(executor=deferred)
        instance_id = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)

        with pytest.raises(CompletionTimeoutError):
            runtime.wait_for_completion(instance_id, timeout=0.01)
        assert runtime.get_instance(instance_id).status == OrchestrationStatus.RUNNING

        deferred.run_all()
        assert runtime.wait_for_completion(instance_id, timeout=0.01).status == OrchestrationStatus.COMPLETED

    def test_raise_event_unknown_instance(self, make_runtime):
        with pytest.raises(InstanceNotFoundError):
            make_runtime().raise_event("nope", APPROVAL_EVENT, {})

    def test_get_instance_unknown(self, make_runtime):
        with pytest.raises(InstanceNotFoundError):
            make_runtime().get_instance("nope")

    def test_list_instances(self, make_runtime):
        runtime = make_runtime()
        a = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)
        b = runtime.schedule_new_instance(APPROVAL_RESERVATION, [MIDDLE])
        listed = {i.instance_id: i.status for i in runtime.list_instances()}
        assert listed == {a: OrchestrationStatus.COMPLETED, b: OrchestrationStatus.RUNNING}

    def test_context_manager_shuts_down(self, make_runtime):
        with make_runtime() as runtime:
            pass
        with pytest.raises(RuntimeError):
            runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)

    def test_finished_instances_are_released(self, make_runtime, clock):
        runtime = make_runtime()
        done = runtime.schedule_new_instance(SEQUENTIAL_RESERVATION, WINDOW)
        waiting = runtime.schedule_new_instance(APPROVAL_RESERVATION, [WINDOW])
        assert set(runtime._states) == {waiting}

        clock.advance(20)
        assert runtime._states == {}

        # Still served from the store
        assert runtime.get_instance(done).status == OrchestrationStatus.COMPLETED
        assert runtime.get_instance(waiting).output == CANCELLED
        assert kinds(runtime, waiting)[-1] == EventType.EXECUTION_COMPLETED
        assert runtime.wait_for_completion(done, timeout=0.01).output.startswith("Selected seat: C")
        assert runtime.raise_event(waiting, APPROVAL_EVENT, {}) is False
        assert runtime._states == {}
