"""Tests for the time-window rules applied on each sweep tick."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from tests.conftest import DRIVER_CHAT, NOW, PASSENGER_CHAT, TZ, make_trip
from trip_dispatcher.errors import MalformedSchedule
from trip_dispatcher.models import (
    Confirmation,
    DriverFlow,
    PassengerFlow,
    RatingStatus,
    Track,
)
from trip_dispatcher.reminders import apply_due, due_rules

pytestmark = pytest.mark.unit

H = timedelta(hours=1)
M = timedelta(minutes=1)


def _fired(trip, now=NOW):
    return [t.rule for t in apply_due(trip, now, TZ)]


def _confirmed_passenger(**fields):
    values = {
        "passenger_chat_id": PASSENGER_CHAT,
        "passenger_confirmation": Confirmation.CONFIRMED,
        "passenger_flow": PassengerFlow.TRIP_CONFIRMED,
        "driver_phone": None,
    }
    values.update(fields)
    return make_trip(**values)


# ---------------------------------------------------------------------------
# Passenger track
# ---------------------------------------------------------------------------


class TestPassengerFirstContact:
    def test_fires_inside_24h_window(self):
        trip = make_trip(until=20 * H, driver_phone=None)
        transitions = apply_due(trip, NOW, TZ)

        assert [t.rule for t in transitions] == ["passenger_first_contact"]
        assert trip.passenger_flow is PassengerFlow.RECOGNITION
        outbound = transitions[0].outbound
        assert len(outbound) == 2
        assert {o.recipient_id for o in outbound} == {trip.passenger_phone}
        assert "4321" in outbound[1].text

    def test_window_upper_bound_is_inclusive(self):
        assert _fired(make_trip(until=24 * H, driver_phone=None)) == ["passenger_first_contact"]
        assert _fired(make_trip(until=24 * H + M, driver_phone=None)) == []

    def test_not_after_departure(self):
        assert _fired(make_trip(until=-M, driver_phone=None)) == []

    def test_opted_out_passenger_gets_nothing(self):
        trip = make_trip(until=20 * H, passenger_confirmation=Confirmation.OPTED_OUT)
        assert _fired(trip) == ["driver_assignment"]
        assert trip.passenger_flow is None

    def test_fires_once(self):
        trip = make_trip(until=20 * H, driver_phone=None)
        _fired(trip)
        assert _fired(trip) == []


class TestPassengerReminders:
    @pytest.mark.parametrize(
        ("until", "rule", "level"),
        [
            (45 * M, "passenger_reminder_1h", 1),
            (60 * M, "passenger_reminder_1h", 1),
            (30 * M, "passenger_reminder_30m", 2),
            (11 * M, "passenger_reminder_30m", 2),
            (10 * M, "passenger_reminder_10m", 3),
            (1 * M, "passenger_reminder_10m", 3),
        ],
    )
    def test_windows(self, until, rule, level):
        trip = _confirmed_passenger(until=until)
        assert _fired(trip) == [rule]
        assert trip.reminder_level == level

    def test_reminder_goes_to_bound_identity(self):
        trip = _confirmed_passenger(until=45 * M)
        [transition] = apply_due(trip, NOW, TZ)
        assert transition.outbound[0].recipient_id == PASSENGER_CHAT

    def test_two_ticks_in_same_window_send_once(self):
        trip = _confirmed_passenger(until=45 * M)
        assert _fired(trip) == ["passenger_reminder_1h"]
        assert _fired(trip, NOW + 30 * timedelta(seconds=1)) == []

    def test_level_never_decreases(self):
        # First seen at 20 minutes out: the 1 hour window was missed.
        trip = _confirmed_passenger(until=20 * M)
        assert _fired(trip) == ["passenger_reminder_30m"]
        assert _fired(trip, NOW + 15 * M) == ["passenger_reminder_10m"]
        assert trip.reminder_level == 3
        assert _fired(trip, NOW + 16 * M) == []

    def test_unbound_passenger_gets_no_reminder(self):
        trip = _confirmed_passenger(until=45 * M, passenger_chat_id=None)
        assert _fired(trip) == []

    def test_no_reminder_outside_windows(self):
        assert _fired(_confirmed_passenger(until=2 * H)) == []


class TestPassengerRating:
    def test_requested_a_day_after_departure(self):
        trip = _confirmed_passenger(until=-24 * H)
        assert _fired(trip) == ["passenger_rating_request"]
        assert trip.passenger_flow is PassengerFlow.RATING_PENDING
        assert trip.rating_status is RatingStatus.SENT

    def test_not_before_a_day(self):
        assert _fired(_confirmed_passenger(until=-23 * H)) == []

    def test_requested_only_once(self):
        trip = _confirmed_passenger(until=-30 * H, rating_status=RatingStatus.SENT)
        assert _fired(trip) == []

    def test_finished_passenger_track_is_ignored(self):
        trip = _confirmed_passenger(
            until=-30 * H,
            passenger_flow=PassengerFlow.FINALIZED,
            rating_status=RatingStatus.ANSWERED,
        )
        assert due_rules(trip, NOW, TZ) == []


# ---------------------------------------------------------------------------
# Driver track
# ---------------------------------------------------------------------------


def _driver_trip(**fields):
    values = {
        "passenger_flow": PassengerFlow.FINALIZED,
        "rating_status": RatingStatus.ANSWERED,
        "driver_chat_id": DRIVER_CHAT,
    }
    values.update(fields)
    return make_trip(**values)


class TestDriverRules:
    def test_assignment_goes_to_raw_phone(self):
        trip = _driver_trip(until=20 * H, driver_chat_id=None)
        [transition] = apply_due(trip, NOW, TZ)
        assert transition.rule == "driver_assignment"
        assert transition.track is Track.DRIVER
        assert trip.driver_flow is DriverFlow.AWAITING_ACCEPTANCE
        assert [o.recipient_id for o in transition.outbound] == [trip.driver_phone] * 2

    def test_no_driver_phone_no_driver_rules(self):
        trip = _driver_trip(until=20 * H, driver_phone=None, driver_chat_id=None)
        assert _fired(trip) == []

    @pytest.mark.parametrize(
        ("state", "until", "rule", "new_state"),
        [
            (DriverFlow.ACCEPTED, 12 * H, "driver_reminder_12h", DriverFlow.REMINDER_12H),
            (DriverFlow.ACCEPTED, 61 * M, "driver_reminder_12h", DriverFlow.REMINDER_12H),
            (DriverFlow.ACCEPTED, 60 * M, "driver_reminder_1h", DriverFlow.REMINDER_1H),
            (DriverFlow.REMINDER_12H, 30 * M, "driver_reminder_1h", DriverFlow.REMINDER_1H),
            (
                DriverFlow.REMINDER_1H,
                -4 * H,
                "driver_distance_request",
                DriverFlow.REQUEST_DISTANCE,
            ),
            (DriverFlow.ACCEPTED, -10 * H, "driver_distance_request", DriverFlow.REQUEST_DISTANCE),
        ],
    )
    def test_transitions(self, state, until, rule, new_state):
        trip = _driver_trip(until=until, driver_flow=state)
        assert _fired(trip) == [rule]
        assert trip.driver_flow is new_state

    def test_unaccepted_trip_gets_no_reminders(self):
        assert _fired(_driver_trip(until=30 * M, driver_flow=DriverFlow.AWAITING_ACCEPTANCE)) == []

    def test_distance_request_window(self):
        assert _fired(_driver_trip(until=-3 * H, driver_flow=DriverFlow.REMINDER_1H)) == []
        assert _fired(_driver_trip(until=-24 * H, driver_flow=DriverFlow.REMINDER_1H)) == []

    def test_rating_after_completion_info(self):
        trip = _driver_trip(
            until=-25 * H,
            driver_flow=DriverFlow.COMPLETION_INFO_DONE,
            distance_traveled=Decimal("25"),
        )
        assert _fired(trip) == ["driver_rating_request"]
        assert trip.driver_flow is DriverFlow.RATING_SENT

    def test_no_rating_without_distance(self):
        trip = _driver_trip(until=-25 * H, driver_flow=DriverFlow.REMINDER_1H)
        assert _fired(trip) == []

    def test_unavailable_driver_is_terminal(self):
        trip = _driver_trip(until=20 * H, driver_flow=DriverFlow.UNAVAILABLE)
        assert _fired(trip) == []


class TestBothTracks:
    def test_one_transition_per_track_per_tick(self):
        trip = make_trip(until=20 * H)
        transitions = apply_due(trip, NOW, TZ)
        assert [(t.track, t.rule) for t in transitions] == [
            (Track.PASSENGER, "passenger_first_contact"),
            (Track.DRIVER, "driver_assignment"),
        ]

    def test_due_rules_does_not_mutate(self):
        trip = make_trip(until=20 * H)
        assert len(due_rules(trip, NOW, TZ)) == 2
        assert trip.passenger_flow is None
        assert trip.driver_flow is None

    def test_malformed_schedule(self):
        trip = make_trip(scheduled_time="depois do almoço")
        with pytest.raises(MalformedSchedule):
            apply_due(trip, NOW, TZ)
