"""PostgreSQL-backed trip store.

All trip fields are ``TEXT`` columns holding the same values the row codec
produces.  Date and time stay exactly as entered by whoever created the
trip; a schedule that cannot be parsed is skipped by the sweep rather than
rejected here.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import asyncpg

from trip_dispatcher.db import Database, validate_identifier
from trip_dispatcher.errors import StoreUnavailable, StoreWriteError
from trip_dispatcher.models import Trip, TripDraft
from trip_dispatcher.storage.rows import (
    COLUMNS,
    decode_records,
    draft_to_record,
    trip_from_record,
    trip_to_record,
)

logger = logging.getLogger(__name__)

# Raised by asyncpg for server-side errors, by the socket layer for transport
# errors, and by ``Database.require_pool`` before ``connect()``.
_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError)


class PostgresTripStore:
    """``TripStore`` backed by a single PostgreSQL table."""

    def __init__(self, db: Database, table: str = "trips") -> None:
        self._db = db
        self.table = validate_identifier(table, kind="table name")
        self._select = f"SELECT id, {', '.join(COLUMNS)} FROM {self.table}"

    async def ensure_schema(self) -> None:
        """Create the trips table if it does not exist."""
        columns = ",\n    ".join(f"{name} TEXT" for name in COLUMNS)
        await self._db.require_pool().execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                {columns}
            )
            """
        )
        logger.info("Ensured table %s exists", self.table)

    async def load_all(self) -> Sequence[Trip]:
        try:
            rows = await self._db.require_pool().fetch(f"{self._select} ORDER BY created_at, id")
        except _STORE_ERRORS as exc:
            raise StoreUnavailable(f"failed to load trips: {exc}") from exc
        return decode_records(dict(row) for row in rows)

    async def get(self, trip_id: str) -> Trip | None:
        try:
            row = await self._db.require_pool().fetchrow(f"{self._select} WHERE id = $1", trip_id)
        except _STORE_ERRORS as exc:
            raise StoreUnavailable(f"failed to load trip {trip_id}: {exc}") from exc
        if row is None:
            return None
        return trip_from_record(dict(row))

    async def save(self, trip: Trip) -> None:
        record = trip_to_record(trip)
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(COLUMNS, start=2))
        try:
            status = await self._db.require_pool().execute(
                f"UPDATE {self.table} SET {assignments} WHERE id = $1",
                trip.id,
                *(record[name] for name in COLUMNS),
            )
        except _STORE_ERRORS as exc:
            raise StoreWriteError(f"failed to save trip {trip.id}: {exc}", trip_id=trip.id) from exc
        if status == "UPDATE 0":
            raise StoreWriteError(f"trip {trip.id} does not exist", trip_id=trip.id)

    async def append(self, draft: TripDraft) -> Trip:
        record = draft_to_record(draft)
        placeholders = ", ".join(f"${i}" for i in range(1, len(COLUMNS) + 1))
        try:
            row = await self._db.require_pool().fetchrow(
                f"INSERT INTO {self.table} ({', '.join(COLUMNS)}) VALUES ({placeholders}) "
                f"RETURNING id, {', '.join(COLUMNS)}",
                *(record[name] for name in COLUMNS),
            )
        except _STORE_ERRORS as exc:
            raise StoreWriteError(f"failed to append trip: {exc}") from exc
        logger.info("Appended trip %s for %s", row["id"], draft.passenger_name)
        return trip_from_record(dict(row))
