"""Record store protocol consumed by the dispatcher."""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from trip_dispatcher.models import Trip, TripDraft


@runtime_checkable
class TripStore(Protocol):
    """Protocol for trip record stores."""

    async def load_all(self) -> Sequence[Trip]:
        """Load every trip that decodes cleanly.

        Rows with unrecognized values are logged and left out.

        Raises:
            StoreUnavailable: If the store cannot be read.
        """
        ...

    async def get(self, trip_id: str) -> Trip | None:
        """Reload a single trip, or return ``None`` if it no longer exists.

        Raises:
            StoreUnavailable: If the store cannot be read.
            InvalidTripRecord: If the row holds an unrecognized value.
        """
        ...

    async def save(self, trip: Trip) -> None:
        """Persist every mutable field of *trip*.

        Raises:
            StoreWriteError: If the row cannot be written.
        """
        ...

    async def append(self, draft: TripDraft) -> Trip:
        """Create a new trip and return it with its store-assigned id.

        Raises:
            StoreWriteError: If the row cannot be written.
        """
        ...
