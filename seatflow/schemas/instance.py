"""
OrchestrationInstance schema - tracks one scheduled orchestration.

An instance is created when a caller schedules an orchestration. Its
status is owned by the runtime and moves from running to exactly one
terminal state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# ULID type alias for documentation
ULID = str


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class OrchestrationStatus(str, Enum):
    """Lifecycle status of an orchestration instance."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrchestrationStatus.COMPLETED, OrchestrationStatus.FAILED)


@dataclass
class OrchestrationInstance:
    """
    A record of an orchestration instance.

    Attributes:
        instance_id: ULID uniquely identifying this instance
        name: Registered orchestration name
        input: Orchestration input (JSON-compatible)
        status: running, completed, or failed
        output: Terminal output when completed
        failure: Error details ({"type", "message"}) when failed
        created_at: When the instance was scheduled
        updated_at: When the status/output last changed
    """
    instance_id: ULID
    name: str
    input: Any = None
    status: OrchestrationStatus = OrchestrationStatus.RUNNING
    output: Any = None
    failure: Optional[dict[str, Any]] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_completed(self, output: Any) -> None:
        self.status = OrchestrationStatus.COMPLETED
        self.output = output
        self.updated_at = _utcnow()

    def mark_failed(self, failure: dict[str, Any]) -> None:
        self.status = OrchestrationStatus.FAILED
        self.failure = failure
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "instance_id": self.instance_id,
            "name": self.name,
            "input": self.input,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.output is not None:
            result["output"] = self.output
        if self.failure is not None:
            result["failure"] = self.failure
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrchestrationInstance":
        """Deserialize from dictionary."""
        return cls(
            instance_id=data["instance_id"],
            name=data["name"],
            input=data.get("input"),
            status=OrchestrationStatus(data.get("status", "running")),
            output=data.get("output"),
            failure=data.get("failure"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
