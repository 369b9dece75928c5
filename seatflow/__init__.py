"""
seatflow - Durable seat reservation orchestrations

Seat selection for one or many reservations, run as replayable
orchestrations on a local durable-execution runtime.
"""

__version__ = "0.1.0"


__all__ = ["SeatflowConfig", "load_config", "get_seatflow_home"]

from .config import SeatflowConfig, load_config, get_seatflow_home
