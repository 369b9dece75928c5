"""
ReservationRequest schema - immutable orchestration input.
"""

from dataclasses import dataclass
from typing import Any

from seatflow.errors import InvalidReservationError

from .seat import LocationPreference


@dataclass(frozen=True)
class ReservationRequest:
    """
    A request to reserve one seat.

    Attributes:
        requester_id: Caller-supplied requester identifier
        requester_name: Display name of the requester
        location_preference: Preferred partition
    """
    requester_id: str
    requester_name: str
    location_preference: LocationPreference

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire form used as orchestration input."""
        return {
            "id": self.requester_id,
            "name": self.requester_name,
            "locationPreference": self.location_preference.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReservationRequest":
        """
        Deserialize from the wire form.

        Accepts both the wire keys (id, name, locationPreference) and the
        attribute names (requester_id, requester_name, location_preference).

        Raises:
            InvalidReservationError: If a field is missing or the preference is unknown
        """
        if not isinstance(data, dict):
            raise InvalidReservationError(f"Reservation must be a mapping, got {type(data).__name__}")

        requester_id = data.get("id", data.get("requester_id"))
        requester_name = data.get("name", data.get("requester_name"))
        preference = data.get("locationPreference", data.get("location_preference"))

        missing = [
            key for key, value in (
                ("id", requester_id),
                ("name", requester_name),
                ("locationPreference", preference),
            )
            if value is None or value == ""
        ]
        if missing:
            raise InvalidReservationError(f"Reservation missing fields: {missing}")

        try:
            location = LocationPreference.from_string(preference)
        except ValueError as e:
            raise InvalidReservationError(str(e)) from e

        return cls(
            requester_id=str(requester_id),
            requester_name=str(requester_name),
            location_preference=location,
        )
