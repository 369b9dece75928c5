"""
Seat inventory - three fixed partitions of seats.

The inventory is built once (from the default fixture or a YAML file) and
handed to the runtime, which passes it to activities through their
context. Partitions are never resized after construction and no activity
mutates seat availability.
"""

import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from seatflow.errors import InventoryError
from seatflow.schemas import LocationPreference, Seat

logger = logging.getLogger(__name__)


class SeatInventory:
    """
    Read-only seat inventory partitioned by location preference.

    Usage:
        inventory = default_inventory()
        inventory.has_available(LocationPreference.WINDOW)
        inventory.available_seats([LocationPreference.MIDDLE, LocationPreference.WINDOW])
    """

    def __init__(self, partitions: dict[LocationPreference, Iterable[Seat]]):
        """
        Build an inventory from per-partition seat lists.

        Args:
            partitions: Seats keyed by partition; missing partitions are empty

        Raises:
            InventoryError: If a seat code repeats or a seat is filed under
                the wrong partition
        """
        self._partitions: dict[LocationPreference, tuple[Seat, ...]] = {}
        seen: dict[str, LocationPreference] = {}

        for partition in LocationPreference:
            seats = tuple(partitions.get(partition, ()))
            for seat in seats:
                if seat.partition != partition:
                    raise InventoryError(
                        f"Seat {seat.code} belongs to {seat.partition.value} "
                        f"but was listed under {partition.value}"
                    )
                if seat.code in seen:
                    raise InventoryError(
                        f"Duplicate seat code {seat.code} "
                        f"(in {seen[seat.code].value} and {partition.value})"
                    )
                seen[seat.code] = partition
            self._partitions[partition] = seats

    def partition(self, partition: LocationPreference) -> tuple[Seat, ...]:
        """All seats of one partition, in fixture order."""
        return self._partitions[LocationPreference.from_string(partition)]

    def all_seats(self) -> tuple[Seat, ...]:
        """All seats, partition order then fixture order."""
        return tuple(seat for p in LocationPreference for seat in self._partitions[p])

    def has_available(self, partition: LocationPreference) -> bool:
        """True iff at least one seat in the partition is available."""
        return any(seat.available for seat in self.partition(partition))

    def available_seats(self, partitions: Iterable[LocationPreference]) -> tuple[Seat, ...]:
        """
        Available seats across the given partitions.

        Partition order and seat order within a partition are preserved.
        A partition requested more than once contributes its seats once
        per request; no deduplication is performed.

        Raises:
            ValueError: If a partition token is unknown
        """
        result: list[Seat] = []
        for partition in partitions:
            result.extend(seat for seat in self.partition(partition) if seat.available)
        return tuple(result)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Serialize to the fixture form accepted by from_dict."""
        return {
            p.value: [{"code": s.code, "available": s.available} for s in self._partitions[p]]
            for p in LocationPreference
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeatInventory":
        """
        Build an inventory from a fixture mapping.

        Fixture form:
            aisle:
              - {code: A1, available: false}
            middle:
              - {code: B1, available: true}
            window: []

        Raises:
            InventoryError: If the fixture is malformed
        """
        if not isinstance(data, dict):
            raise InventoryError("Inventory fixture must be a mapping of partition -> seats")

        partitions: dict[LocationPreference, list[Seat]] = {}
        for key, entries in data.items():
            try:
                partition = LocationPreference.from_string(key)
            except ValueError as e:
                raise InventoryError(str(e)) from e

            seats = []
            for entry in entries or []:
                if isinstance(entry, str):
                    entry = {"code": entry}
                if not isinstance(entry, dict) or "code" not in entry:
                    raise InventoryError(f"Invalid seat entry in {partition.value}: {entry!r}")
                seats.append(Seat(
                    code=str(entry["code"]),
                    partition=partition,
                    available=bool(entry.get("available", True)),
                ))
            partitions[partition] = seats

        return cls(partitions)

    @classmethod
    def from_yaml(cls, path: Path) -> "SeatInventory":
        """
        Load an inventory fixture from a YAML file.

        Raises:
            InventoryError: If the file is missing or malformed
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise InventoryError(f"Inventory file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InventoryError(f"Invalid YAML in inventory file {path}: {e}")

        inventory = cls.from_dict(data or {})
        logger.info(f"Loaded inventory from {path} ({len(inventory.all_seats())} seats)")
        return inventory

    def __repr__(self) -> str:
        counts = ", ".join(
            f"{p.value}={sum(s.available for s in self._partitions[p])}/{len(self._partitions[p])}"
            for p in LocationPreference
        )
        return f"SeatInventory({counts})"


def _seat_row(prefix: str, partition: LocationPreference, available: bool, count: int = 6) -> list[Seat]:
    return [Seat(f"{prefix}{n}", partition, available) for n in range(1, count + 1)]


def default_inventory() -> SeatInventory:
    """
    The default flight fixture.

    aisle:  A1-A6, all taken
    middle: B1-B6, all available
    window: C1-C6, all available
    """
    return SeatInventory({
        LocationPreference.AISLE: _seat_row("A", LocationPreference.AISLE, False),
        LocationPreference.MIDDLE: _seat_row("B", LocationPreference.MIDDLE, True),
        LocationPreference.WINDOW: _seat_row("C", LocationPreference.WINDOW, True),
    })


def load_inventory(inventory_file: Optional[str] = None) -> SeatInventory:
    """Load the configured inventory fixture, or the default one."""
    if inventory_file:
        return SeatInventory.from_yaml(Path(inventory_file))
    return default_inventory()
