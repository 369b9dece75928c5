"""
seatflow.engine - Local durable-execution runtime.

Components:
  - OrchestrationContext / ReplayContext: the suspension primitives
    orchestrations use, and the replay driver behind them
  - HistoryStore: Persists instances and their append-only history
  - Clock: Drives durable timers (SystemClock, ManualClock)
  - Registry: Name -> callable lookup for orchestrations and activities
  - OrchestrationRuntime: Scheduling, dispatch, replay, events, resume
"""

from .clock import Clock, ManualClock, SystemClock
from .context import (
    ActivityContext,
    AnyResult,
    OrchestrationContext,
    ReplayContext,
    ReplayResult,
    Task,
)
from .history_store import FileHistoryStore, HistoryStore, InMemoryHistoryStore, generate_ulid
from .registry import Registry
from .runtime import OrchestrationRuntime

__all__ = [
    # Clocks
    "Clock",
    "ManualClock",
    "SystemClock",
    # Contexts
    "ActivityContext",
    "AnyResult",
    "OrchestrationContext",
    "ReplayContext",
    "ReplayResult",
    "Task",
    # History
    "HistoryStore",
    "InMemoryHistoryStore",
    "FileHistoryStore",
    "generate_ulid",
    # Runtime
    "Registry",
    "OrchestrationRuntime",
]
