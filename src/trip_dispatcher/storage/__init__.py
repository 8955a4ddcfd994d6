"""Record store adapters for trips."""

from trip_dispatcher.storage.base import TripStore
from trip_dispatcher.storage.memory import InMemoryTripStore
from trip_dispatcher.storage.postgres import PostgresTripStore

__all__ = ["InMemoryTripStore", "PostgresTripStore", "TripStore"]
