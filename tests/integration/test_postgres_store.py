"""Integration tests for PostgresTripStore against a real PostgreSQL."""

from __future__ import annotations

import shutil
from datetime import timedelta

import pytest

from tests.conftest import DRIVER_CHAT, PASSENGER_CHAT, TZ, from_driver, make_trip
from trip_dispatcher.connectors.base import RecordingChannel
from trip_dispatcher.dispatcher import DispatchContext, Dispatcher
from trip_dispatcher.errors import StoreUnavailable, StoreWriteError
from trip_dispatcher.models import DriverFlow, PassengerFlow, TripDraft
from trip_dispatcher.storage.postgres import PostgresTripStore
from trip_dispatcher.storage.rows import trip_to_record

docker_available = shutil.which("docker") is not None
pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not docker_available, reason="Docker not available"),
]


def _draft(**overrides) -> TripDraft:
    trip = make_trip(until=timedelta(hours=20))
    values = {
        "passenger_name": trip.passenger_name,
        "passenger_phone": trip.passenger_phone,
        "scheduled_date": trip.scheduled_date,
        "scheduled_time": trip.scheduled_time,
        "origin": trip.origin,
        "destination": trip.destination,
        "driver_name": trip.driver_name,
        "driver_phone": trip.driver_phone,
    }
    values.update(overrides)
    return TripDraft(**values)


async def test_append_get_and_save(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresTripStore(db)
        await store.ensure_schema()

        created = await store.append(_draft())
        assert created.id
        assert created.passenger_flow is None
        assert created.reminder_level == 0

        created.passenger_flow = PassengerFlow.RECOGNITION
        created.passenger_chat_id = PASSENGER_CHAT
        await store.save(created)

        reloaded = await store.get(created.id)
        assert reloaded == created
        assert [t.id for t in await store.load_all()] == [created.id]


async def test_load_all_skips_invalid_rows(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresTripStore(db)
        await store.ensure_schema()
        good = await store.append(_draft())
        bad = await store.append(_draft(passenger_name="Bruno"))
        await db.require_pool().execute(
            "UPDATE trips SET driver_flow = 'lost' WHERE id = $1", bad.id
        )

        assert [t.id for t in await store.load_all()] == [good.id]


async def test_save_of_unknown_trip_fails(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresTripStore(db)
        await store.ensure_schema()
        with pytest.raises(StoreWriteError):
            await store.save(make_trip("missing"))
        assert await store.get("missing") is None


async def test_custom_table_in_schema(provisioned_database):
    async with provisioned_database(schema="ops") as db:
        await db.require_pool().execute("CREATE SCHEMA IF NOT EXISTS ops")
        store = PostgresTripStore(db, table="viagens")
        await store.ensure_schema()
        created = await store.append(_draft())
        exists = await db.require_pool().fetchval(
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = 'ops' AND table_name = 'viagens'"
        )
        assert exists == 1
        assert (await store.get(created.id)).passenger_name == "Ana"


async def test_closed_pool_is_unavailable(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresTripStore(db)
        await store.ensure_schema()
    with pytest.raises(StoreUnavailable):
        await store.load_all()


async def test_dispatcher_round_trip(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresTripStore(db)
        await store.ensure_schema()
        trip = await store.append(_draft())
        trip.driver_flow = DriverFlow.AWAITING_ACCEPTANCE
        await store.save(trip)

        channel = RecordingChannel()
        dispatcher = Dispatcher(DispatchContext(store=store, channel=channel, tz=TZ))
        handled = await dispatcher.handle_message(from_driver("5678"))

        assert handled.trip_id == trip.id
        reloaded = await store.get(trip.id)
        assert reloaded.driver_flow is DriverFlow.ACCEPTED
        assert reloaded.driver_chat_id == DRIVER_CHAT
        assert reloaded.last_interaction_at is not None
        assert trip_to_record(reloaded)["driver_flow"] == "accepted"
