"""In-memory trip store.

Trips are kept as encoded records, so every load and save crosses the same
codec boundary as the PostgreSQL store.  Used by tests and by
``store.type = "memory"`` for local dry runs.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from trip_dispatcher.errors import StoreUnavailable, StoreWriteError
from trip_dispatcher.models import Trip, TripDraft
from trip_dispatcher.storage.rows import (
    Record,
    decode_records,
    draft_to_record,
    trip_from_record,
    trip_to_record,
)

logger = logging.getLogger(__name__)


class InMemoryTripStore:
    """Dict-backed ``TripStore``.

    ``unavailable`` makes every read raise ``StoreUnavailable``;
    ``failing_writes`` holds trip ids whose saves raise ``StoreWriteError``.
    """

    def __init__(self, records: Iterable[Mapping[str, Any]] = ()) -> None:
        self._records: dict[str, Record] = {}
        self._ids = itertools.count(1)
        self.unavailable = False
        self.failing_writes: set[str] = set()
        self.saves = 0
        for record in records:
            self.put_record(record)

    def put_record(self, record: Mapping[str, Any]) -> None:
        """Insert or replace a raw record, bypassing validation."""
        trip_id = str(record["id"])
        self._records[trip_id] = {
            key: (None if value is None else str(value)) for key, value in record.items()
        }

    def record(self, trip_id: str) -> Record:
        return dict(self._records[trip_id])

    async def load_all(self) -> list[Trip]:
        if self.unavailable:
            raise StoreUnavailable("in-memory store marked unavailable")
        return decode_records(self._records.values())

    async def get(self, trip_id: str) -> Trip | None:
        if self.unavailable:
            raise StoreUnavailable("in-memory store marked unavailable")
        record = self._records.get(trip_id)
        if record is None:
            return None
        return trip_from_record(record)

    async def save(self, trip: Trip) -> None:
        if trip.id in self.failing_writes:
            raise StoreWriteError(f"write to trip {trip.id} rejected", trip_id=trip.id)
        if trip.id not in self._records:
            raise StoreWriteError(f"trip {trip.id} does not exist", trip_id=trip.id)
        self._records[trip.id] = trip_to_record(trip)
        self.saves += 1

    async def append(self, draft: TripDraft) -> Trip:
        trip_id = str(next(self._ids))
        while trip_id in self._records:
            trip_id = str(next(self._ids))
        record = draft_to_record(draft)
        record["id"] = trip_id
        self._records[trip_id] = record
        logger.info("Appended trip %s for %s", trip_id, draft.passenger_name)
        return trip_from_record(record)
