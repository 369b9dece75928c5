"""
HistoryEvent schema - the append-only record an instance is replayed from.

Every suspension point an orchestration passes through leaves events in
history: a *_scheduled/*_created event when the orchestration first asks
for the work, and a *_completed/*_failed/*_fired event when the work
settles. Replaying the orchestration body against the same history must
reproduce the same control flow.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    """Kinds of history events."""
    EXECUTION_STARTED = "execution_started"
    TASK_SCHEDULED = "task_scheduled"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TIMER_CREATED = "timer_created"
    TIMER_FIRED = "timer_fired"
    EVENT_RAISED = "event_raised"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"


@dataclass(frozen=True)
class HistoryEvent:
    """
    A single entry in an instance's history.

    Attributes:
        event_type: What happened
        timestamp: When the runtime recorded the event
        task_id: Sequence number of the activity/timer the event belongs to
        name: Activity name, orchestration name, or external event name
        input: Activity input or orchestration input
        result: Activity result, event payload, or orchestration output
        error: Error details ({"type", "message"}) for failures
        fire_at: Absolute fire time for timer_created events
    """
    event_type: EventType
    timestamp: datetime = field(default_factory=_utcnow)
    task_id: Optional[int] = None
    name: Optional[str] = None
    input: Any = None
    result: Any = None
    error: Optional[dict[str, Any]] = None
    fire_at: Optional[datetime] = None

    @classmethod
    def execution_started(cls, name: str, input: Any) -> "HistoryEvent":
        return cls(EventType.EXECUTION_STARTED, name=name, input=input)

    @classmethod
    def task_scheduled(cls, task_id: int, name: str, input: Any) -> "HistoryEvent":
        return cls(EventType.TASK_SCHEDULED, task_id=task_id, name=name, input=input)

    @classmethod
    def task_completed(cls, task_id: int, result: Any) -> "HistoryEvent":
        return cls(EventType.TASK_COMPLETED, task_id=task_id, result=result)

    @classmethod
    def task_failed(cls, task_id: int, error: dict[str, Any]) -> "HistoryEvent":
        return cls(EventType.TASK_FAILED, task_id=task_id, error=error)

    @classmethod
    def timer_created(cls, task_id: int, fire_at: datetime) -> "HistoryEvent":
        return cls(EventType.TIMER_CREATED, task_id=task_id, fire_at=fire_at)

    @classmethod
    def timer_fired(cls, task_id: int) -> "HistoryEvent":
        return cls(EventType.TIMER_FIRED, task_id=task_id)

    @classmethod
    def event_raised(cls, name: str, payload: Any) -> "HistoryEvent":
        return cls(EventType.EVENT_RAISED, name=name, result=payload)

    @classmethod
    def execution_completed(cls, output: Any) -> "HistoryEvent":
        return cls(EventType.EXECUTION_COMPLETED, result=output)

    @classmethod
    def execution_failed(cls, error: dict[str, Any]) -> "HistoryEvent":
        return cls(EventType.EXECUTION_FAILED, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.task_id is not None:
            result["task_id"] = self.task_id
        if self.name is not None:
            result["name"] = self.name
        if self.input is not None:
            result["input"] = self.input
        if self.result is not None:
            result["result"] = self.result
        if self.error is not None:
            result["error"] = self.error
        if self.fire_at is not None:
            result["fire_at"] = self.fire_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEvent":
        """Deserialize from dictionary."""
        return cls(
            event_type=EventType(data["event_type"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            task_id=data.get("task_id"),
            name=data.get("name"),
            input=data.get("input"),
            result=data.get("result"),
            error=data.get("error"),
            fire_at=datetime.fromisoformat(data["fire_at"]) if data.get("fire_at") else None,
        )
