"""Shared test fixtures for the trip dispatcher test suite.

Every scenario is anchored on a fixed sweep instant ``NOW`` so schedules can
be written relative to it with ``scheduled_in``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from trip_dispatcher.connectors.base import InboundMessage, RecordingChannel
from trip_dispatcher.dispatcher import DispatchContext, Dispatcher
from trip_dispatcher.models import Trip
from trip_dispatcher.storage.memory import InMemoryTripStore
from trip_dispatcher.storage.rows import trip_to_record

TZ = ZoneInfo("America/Sao_Paulo")
# 09:00 local time.
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

PASSENGER_PHONE = "(11) 98765-4321"
PASSENGER_CHAT = "5511987654321@c.us"
DRIVER_PHONE = "11 91234-5678"
DRIVER_CHAT = "5511912345678@c.us"


def scheduled_in(delta: timedelta, now: datetime = NOW) -> dict[str, str]:
    """Return ``scheduled_date``/``scheduled_time`` for ``now + delta`` in ``TZ``."""
    local = (now + delta).astimezone(TZ)
    return {
        "scheduled_date": local.strftime("%Y-%m-%d"),
        "scheduled_time": local.strftime("%H:%M"),
    }


def make_trip(trip_id: str = "1", *, until: timedelta = timedelta(hours=20), **fields: Any) -> Trip:
    """Build a trip departing ``until`` after ``NOW``."""
    values: dict[str, Any] = {
        "passenger_name": "Ana",
        "passenger_phone": PASSENGER_PHONE,
        "driver_name": "Carlos",
        "driver_phone": DRIVER_PHONE,
        "origin": "Aeroporto GRU",
        "destination": "Av. Paulista, 1000",
        **scheduled_in(until),
    }
    values.update(fields)
    return Trip(id=trip_id, **values)


def message(body: str, sender_id: str, *, phone: str | None = None) -> InboundMessage:
    return InboundMessage(sender_id=sender_id, body=body, sender_phone=phone)


def from_passenger(body: str) -> InboundMessage:
    return message(body, PASSENGER_CHAT, phone="5511987654321")


def from_driver(body: str) -> InboundMessage:
    return message(body, DRIVER_CHAT, phone="5511912345678")


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def store_with() -> Callable[..., InMemoryTripStore]:
    """Build an in-memory store seeded with the given trips."""

    def _build(*trips: Trip) -> InMemoryTripStore:
        return InMemoryTripStore(trip_to_record(trip) for trip in trips)

    return _build


@pytest.fixture
def dispatcher_for(
    channel: RecordingChannel, clock: FrozenClock
) -> Callable[[InMemoryTripStore], Dispatcher]:
    """Build a dispatcher over *store* with the shared channel and clock."""

    def _build(store: InMemoryTripStore, **kwargs: Any) -> Dispatcher:
        kwargs.setdefault("name", "test")
        context = DispatchContext(store=store, channel=channel, tz=TZ, clock=clock)
        return Dispatcher(context, **kwargs)

    return _build
