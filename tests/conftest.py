import random
import threading
from concurrent.futures import Executor, Future

import pytest

from seatflow.activities import register_activities
from seatflow.engine import InMemoryHistoryStore, ManualClock, OrchestrationRuntime
from seatflow.inventory import SeatInventory, default_inventory
from seatflow.orchestrations import register_orchestrations
from seatflow.schemas import LocationPreference, Seat


class InlineExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def __init__(self):
        self._shutdown = False
        self._lock = threading.Lock()

    def submit(self, fn, /, *args, **kwargs):
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, *, cancel_futures=False):
        with self._lock:
            self._shutdown = True


class DeferredExecutor(Executor):
    """Queues submitted work until the test runs it."""

    def __init__(self):
        self._queue = []

    @property
    def pending(self) -> int:
        return len(self._queue)

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self._queue.append((future, fn, args, kwargs))
        return future

    def run_next(self, index: int = 0) -> None:
        """Run one queued item (FIFO by default)."""
        future, fn, args, kwargs = self._queue.pop(index)
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    def run_all(self) -> None:
        while self._queue:
            self.run_next()

    def shutdown(self, wait=True, *, cancel_futures=False):
        pass


@pytest.fixture(autouse=True)
def seatflow_home(monkeypatch, tmp_path):
    """Keep every test away from the real ~/.config/seatflow."""
    home = tmp_path / "seatflow_home"
    monkeypatch.setenv("SEATFLOW_HOME", str(home))
    return home


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def inventory() -> SeatInventory:
    return default_inventory()


@pytest.fixture
def empty_inventory() -> SeatInventory:
    """Every seat taken."""
    return SeatInventory({
        p: [Seat(f"{p.value[0].upper()}{n}", p, False) for n in range(1, 4)]
        for p in LocationPreference
    })


@pytest.fixture
def deferred() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture
def make_runtime(clock, rng):
    """
    Factory for runtimes wired with the seat activities and orchestrations.

    Activities run inline and timers only fire on clock.advance(), so
    tests are deterministic. Pass executor=None to use a real thread pool.
    """
    runtimes = []

    def _make(inventory=None, store=None, executor="inline", **kwargs):
        runtime = OrchestrationRuntime(
            inventory=inventory if inventory is not None else default_inventory(),
            store=store if store is not None else InMemoryHistoryStore(),
            clock=kwargs.pop("clock", clock),
            executor=InlineExecutor() if executor == "inline" else executor,
            rng=kwargs.pop("rng", rng),
            **kwargs,
        )
        register_activities(runtime.activities)
        register_orchestrations(runtime.orchestrations)
        runtimes.append(runtime)
        return runtime

    yield _make

    for runtime in runtimes:
        runtime.shutdown(wait=False)
