"""Error taxonomy for the trip dispatcher.

None of these errors is process-fatal. The dispatcher catches them at the
unit-of-work boundary (one sweep tick, one trip, one inbound message), logs
them and carries on:

- ``StoreUnavailable``: the whole tick (or message) is abandoned.
- ``StoreWriteError``: only the affected trip is skipped; the next tick
  re-evaluates it from the persisted state.
- ``InvalidTripRecord``: the row is left out of the loaded snapshot.
- ``MalformedSchedule``: the trip is skipped for this tick only.
- ``SendError``: logged, never retried within the same tick.
"""

from __future__ import annotations


class TripDispatchError(Exception):
    """Base class for all trip dispatcher errors."""


class StoreError(TripDispatchError):
    """Base class for record store failures."""


class StoreUnavailable(StoreError):
    """Raised when trips cannot be read from the record store."""


class StoreWriteError(StoreError):
    """Raised when a trip cannot be persisted to the record store."""

    def __init__(self, message: str, *, trip_id: str | None = None) -> None:
        super().__init__(message)
        self.trip_id = trip_id


class InvalidTripRecord(StoreError, ValueError):
    """Raised by the row codec when a stored value is not recognized."""

    def __init__(self, message: str, *, trip_id: str | None = None, field: str | None = None):
        super().__init__(message)
        self.trip_id = trip_id
        self.field = field


class SendError(TripDispatchError):
    """Raised when the chat channel fails to deliver an outbound message."""

    def __init__(self, message: str, *, recipient_id: str | None = None) -> None:
        super().__init__(message)
        self.recipient_id = recipient_id


class MalformedSchedule(TripDispatchError, ValueError):
    """Raised when a trip's date/time cannot be combined into an instant."""


__all__ = [
    "InvalidTripRecord",
    "MalformedSchedule",
    "SendError",
    "StoreError",
    "StoreUnavailable",
    "StoreWriteError",
    "TripDispatchError",
]
