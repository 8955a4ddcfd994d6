"""Tests for trip schedule parsing, activity predicates and identity binding."""

from __future__ import annotations

from datetime import datetime

import pytest

from tests.conftest import TZ, make_trip
from trip_dispatcher.errors import MalformedSchedule
from trip_dispatcher.models import (
    DriverFlow,
    PassengerFlow,
    RatingStatus,
    parse_schedule,
)

pytestmark = pytest.mark.unit


class TestParseSchedule:
    def test_iso_date(self):
        assert parse_schedule("2026-03-11", "08:30", TZ) == datetime(2026, 3, 11, 8, 30, tzinfo=TZ)

    def test_day_first_date_and_seconds(self):
        assert parse_schedule("11/03/2026", "08:30:15", TZ) == datetime(
            2026, 3, 11, 8, 30, 15, tzinfo=TZ
        )

    @pytest.mark.parametrize(
        ("raw_date", "raw_time"),
        [("", "08:30"), ("2026-03-11", ""), ("amanhã", "08:30"), ("2026-03-11", "8h30")],
    )
    def test_malformed(self, raw_date, raw_time):
        with pytest.raises(MalformedSchedule):
            parse_schedule(raw_date, raw_time, TZ)


class TestActivity:
    def test_new_trip_is_active_on_both_tracks(self):
        trip = make_trip()
        assert trip.passenger_active
        assert trip.driver_active
        assert trip.is_active

    def test_driver_track_inactive_without_phone(self):
        trip = make_trip(driver_phone=None)
        assert not trip.driver_active
        assert trip.is_active

    @pytest.mark.parametrize("state", [DriverFlow.RATING_ANSWERED, DriverFlow.UNAVAILABLE])
    def test_driver_terminal_states(self, state):
        assert not make_trip(driver_flow=state).driver_active

    def test_passenger_finished_by_answered_rating(self):
        trip = make_trip(rating_status=RatingStatus.ANSWERED)
        assert not trip.passenger_active

    def test_inactive_when_both_tracks_finished(self):
        trip = make_trip(
            passenger_flow=PassengerFlow.FINALIZED,
            rating_status=RatingStatus.ANSWERED,
            driver_flow=DriverFlow.RATING_ANSWERED,
        )
        assert not trip.is_active


class TestBinding:
    def test_first_bind_wins(self):
        trip = make_trip()
        assert trip.bind_driver("a@c.us")
        assert not trip.bind_driver("b@c.us")
        assert trip.driver_chat_id == "a@c.us"

    def test_rebinding_same_identity_is_accepted(self):
        trip = make_trip(passenger_chat_id="a@c.us")
        assert trip.bind_passenger("a@c.us")

    def test_recipients_fall_back_to_phone(self):
        trip = make_trip()
        assert trip.passenger_recipient == trip.passenger_phone
        assert trip.driver_recipient == trip.driver_phone
        trip.bind_passenger("p@c.us")
        assert trip.passenger_recipient == "p@c.us"

    def test_codes(self):
        trip = make_trip()
        assert trip.passenger_code == "4321"
        assert trip.driver_code == "5678"
