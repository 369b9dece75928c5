"""
HistoryStore - Persist orchestration instances and their history.

The HistoryStore manages:
- OrchestrationInstances (created when an orchestration is scheduled)
- HistoryEvents (append-only, replayed to rebuild orchestration state)

Storage backends:
- In-memory (for testing and single-process use)
- File-based (survives process restarts; used by `seatflow approve`)
"""

import json
import random
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional

from seatflow.schemas import HistoryEvent, OrchestrationInstance


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    # Timestamp component (48 bits = 10 chars in base32)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(ALPHABET[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    # Random component (80 bits = 16 chars in base32)
    rng = random.SystemRandom()
    random_part = "".join(rng.choice(ALPHABET) for _ in range(16))

    return timestamp_part + random_part


class HistoryStore(ABC):
    """
    Abstract base class for instance and history storage.

    Implementations must be safe to call from several threads.
    """

    @abstractmethod
    def create_instance(self, name: str, input: Any) -> OrchestrationInstance:
        """
        Create a new running instance.

        Args:
            name: Registered orchestration name
            input: Orchestration input (JSON-compatible)

        Returns:
            The created OrchestrationInstance with a new ULID
        """
        pass

    @abstractmethod
    def get_instance(self, instance_id: str) -> Optional[OrchestrationInstance]:
        """Retrieve an instance by ID, or None."""
        pass

    @abstractmethod
    def update_instance(self, instance: OrchestrationInstance) -> None:
        """Persist the instance's current status/output."""
        pass

    @abstractmethod
    def append_events(self, instance_id: str, events: Iterable[HistoryEvent]) -> None:
        """Append events to the instance's history."""
        pass

    @abstractmethod
    def get_history(self, instance_id: str) -> list[HistoryEvent]:
        """Full history of an instance, oldest first (empty if unknown)."""
        pass

    @abstractmethod
    def list_instances(self) -> list[OrchestrationInstance]:
        """All known instances, oldest first."""
        pass


class InMemoryHistoryStore(HistoryStore):
    """
    In-memory implementation of HistoryStore.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._instances: dict[str, OrchestrationInstance] = {}
        self._history: dict[str, list[HistoryEvent]] = {}
        self._lock = threading.Lock()

    def create_instance(self, name: str, input: Any) -> OrchestrationInstance:
        instance = OrchestrationInstance(instance_id=generate_ulid(), name=name, input=input)
        with self._lock:
            self._instances[instance.instance_id] = instance
            self._history[instance.instance_id] = []
        return instance

    def get_instance(self, instance_id: str) -> Optional[OrchestrationInstance]:
        with self._lock:
            return self._instances.get(instance_id)

    def update_instance(self, instance: OrchestrationInstance) -> None:
        with self._lock:
            self._instances[instance.instance_id] = instance

    def append_events(self, instance_id: str, events: Iterable[HistoryEvent]) -> None:
        with self._lock:
            self._history.setdefault(instance_id, []).extend(events)

    def get_history(self, instance_id: str) -> list[HistoryEvent]:
        with self._lock:
            return list(self._history.get(instance_id, []))

    def list_instances(self) -> list[OrchestrationInstance]:
        with self._lock:
            return sorted(self._instances.values(), key=lambda i: i.created_at)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        with self._lock:
            self._instances.clear()
            self._history.clear()


class FileHistoryStore(HistoryStore):
    """
    File-based implementation of HistoryStore.

    Stores artifacts in a directory tree:
        store_dir/
            instances/
                {instance_id}.json
            history/
                {instance_id}.jsonl    (one HistoryEvent per line)
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir).expanduser()
        self._lock = threading.Lock()
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        """Create the directory structure if needed."""
        for subdir in ["instances", "history"]:
            (self._store_dir / subdir).mkdir(parents=True, exist_ok=True)

    def _instance_path(self, instance_id: str) -> Path:
        return self._store_dir / "instances" / f"{instance_id}.json"

    def _history_path(self, instance_id: str) -> Path:
        return self._store_dir / "history" / f"{instance_id}.jsonl"

    def create_instance(self, name: str, input: Any) -> OrchestrationInstance:
        instance = OrchestrationInstance(instance_id=generate_ulid(), name=name, input=input)
        with self._lock:
            self._write_instance(instance)
            self._history_path(instance.instance_id).touch()
        return instance

    def _write_instance(self, instance: OrchestrationInstance) -> None:
        path = self._instance_path(instance.instance_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(instance.to_dict(), f, indent=2)
        tmp_path.replace(path)

    def get_instance(self, instance_id: str) -> Optional[OrchestrationInstance]:
        path = self._instance_path(instance_id)
        if not path.exists():
            return None
        with open(path) as f:
            data = json.load(f)
        return OrchestrationInstance.from_dict(data)

    def update_instance(self, instance: OrchestrationInstance) -> None:
        with self._lock:
            self._write_instance(instance)

    def append_events(self, instance_id: str, events: Iterable[HistoryEvent]) -> None:
        with self._lock:
            with open(self._history_path(instance_id), "a") as f:
                for event in events:
                    f.write(json.dumps(event.to_dict()) + "\n")

    def get_history(self, instance_id: str) -> list[HistoryEvent]:
        path = self._history_path(instance_id)
        if not path.exists():
            return []
        with open(path) as f:
            return [HistoryEvent.from_dict(json.loads(line)) for line in f if line.strip()]

    def list_instances(self) -> list[OrchestrationInstance]:
        instances = []
        for path in sorted((self._store_dir / "instances").glob("*.json")):
            with open(path) as f:
                instances.append(OrchestrationInstance.from_dict(json.load(f)))
        return sorted(instances, key=lambda i: i.created_at)
