"""Message-driven state machines, one per track."""

from trip_dispatcher.flows.base import FlowResult, TrackFlow
from trip_dispatcher.flows.driver import DRIVER_FLOW
from trip_dispatcher.flows.passenger import PASSENGER_FLOW
from trip_dispatcher.models import Track

FLOWS: dict[Track, TrackFlow] = {
    Track.PASSENGER: PASSENGER_FLOW,
    Track.DRIVER: DRIVER_FLOW,
}

__all__ = ["DRIVER_FLOW", "FLOWS", "PASSENGER_FLOW", "FlowResult", "TrackFlow"]
