"""Tests for the message-driven passenger and driver flows."""

from __future__ import annotations

from decimal import Decimal

import pytest

from tests.conftest import (
    DRIVER_CHAT,
    PASSENGER_CHAT,
    from_driver,
    from_passenger,
    make_trip,
    message,
)
from trip_dispatcher import messages
from trip_dispatcher.flows import DRIVER_FLOW, FLOWS, PASSENGER_FLOW
from trip_dispatcher.flows.driver import parse_amount, parse_minutes
from trip_dispatcher.models import (
    Confirmation,
    DriverFlow,
    PassengerFlow,
    RatingStatus,
    Track,
)

pytestmark = pytest.mark.unit


def test_flows_cover_both_tracks():
    assert FLOWS[Track.PASSENGER] is PASSENGER_FLOW
    assert FLOWS[Track.DRIVER] is DRIVER_FLOW


# ---------------------------------------------------------------------------
# Passenger
# ---------------------------------------------------------------------------


class TestPassengerFlow:
    def test_recognition_with_correct_code(self):
        trip = make_trip(passenger_flow=PassengerFlow.RECOGNITION, passenger_chat_id=PASSENGER_CHAT)
        result = PASSENGER_FLOW.handle(trip, from_passenger("4321"))

        assert result.transitioned
        assert result.replies == [messages.passenger_recognized()]
        assert trip.passenger_flow is PassengerFlow.PASSENGER_COUNT
        assert trip.passenger_confirmation is Confirmation.CONFIRMED

    def test_recognition_binds_unbound_sender(self):
        trip = make_trip(passenger_flow=PassengerFlow.RECOGNITION)
        PASSENGER_FLOW.handle(trip, from_passenger("4321"))
        assert trip.passenger_chat_id == PASSENGER_CHAT

    def test_recognition_with_wrong_code(self):
        trip = make_trip(passenger_flow=PassengerFlow.RECOGNITION, passenger_chat_id=PASSENGER_CHAT)
        result = PASSENGER_FLOW.handle(trip, from_passenger("1234"))

        assert not result.transitioned
        assert result.replies == [messages.INVALID_CODE]
        assert trip.passenger_flow is PassengerFlow.RECOGNITION
        assert trip.passenger_confirmation is None

    def test_recognition_bound_to_someone_else_is_silent(self):
        trip = make_trip(passenger_flow=PassengerFlow.RECOGNITION, passenger_chat_id="other@c.us")
        result = PASSENGER_FLOW.handle(trip, from_passenger("4321"))
        assert result.replies == []
        assert trip.passenger_flow is PassengerFlow.RECOGNITION

    def test_count_then_luggage(self):
        trip = make_trip(passenger_flow=PassengerFlow.PASSENGER_COUNT)

        result = PASSENGER_FLOW.handle(trip, from_passenger("2"))
        assert trip.passenger_count == "2 pessoas"
        assert trip.passenger_flow is PassengerFlow.LUGGAGE
        assert result.replies == [messages.luggage_prompt()]

        result = PASSENGER_FLOW.handle(trip, from_passenger(" 5 "))
        assert trip.luggage_count == "Não vou levar malas"
        assert trip.passenger_flow is PassengerFlow.TRIP_CONFIRMED
        assert result.replies == [messages.passenger_details_thanks()]

    @pytest.mark.parametrize("state", [PassengerFlow.PASSENGER_COUNT, PassengerFlow.LUGGAGE])
    @pytest.mark.parametrize("body", ["9", "duas", ""])
    def test_invalid_option_reprompts(self, state, body):
        trip = make_trip(passenger_flow=state)
        result = PASSENGER_FLOW.handle(trip, from_passenger(body))
        assert result.replies == [messages.INVALID_OPTION]
        assert trip.passenger_flow is state
        assert trip.passenger_count is None

    def test_rating_finalizes(self):
        trip = make_trip(
            passenger_flow=PassengerFlow.RATING_PENDING, rating_status=RatingStatus.SENT
        )
        result = PASSENGER_FLOW.handle(trip, from_passenger("3"))

        assert trip.passenger_rating == 3
        assert trip.passenger_flow is PassengerFlow.FINALIZED
        assert trip.rating_status is RatingStatus.ANSWERED
        assert "Lamentamos" in result.replies[0]
        assert not trip.passenger_active

    def test_rating_rejects_other_values(self):
        trip = make_trip(passenger_flow=PassengerFlow.RATING_PENDING)
        result = PASSENGER_FLOW.handle(trip, from_passenger("4"))
        assert result.replies == [messages.INVALID_OPTION]
        assert trip.passenger_rating is None

    def test_state_without_handler_is_ignored(self):
        trip = make_trip(passenger_flow=PassengerFlow.TRIP_CONFIRMED)
        result = PASSENGER_FLOW.handle(trip, from_passenger("oi"))
        assert result.replies == []
        assert not result.transitioned

    def test_stale_message_is_dropped(self):
        # Resolved while luggage was pending, but the row moved on before the lock.
        trip = make_trip(passenger_flow=PassengerFlow.TRIP_CONFIRMED)
        result = PASSENGER_FLOW.handle(trip, from_passenger("2"), PassengerFlow.LUGGAGE)
        assert result.replies == []
        assert trip.luggage_count is None


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class TestDriverAcceptance:
    def test_accepts_with_code(self):
        trip = make_trip(driver_flow=DriverFlow.AWAITING_ACCEPTANCE)
        result = DRIVER_FLOW.handle(trip, from_driver("5678"), DriverFlow.AWAITING_ACCEPTANCE)

        assert result.transitioned
        assert trip.driver_flow is DriverFlow.ACCEPTED
        assert trip.driver_chat_id == DRIVER_CHAT
        assert result.replies == [messages.driver_accepted(trip)]

    def test_wrong_code(self):
        trip = make_trip(driver_flow=DriverFlow.AWAITING_ACCEPTANCE, driver_chat_id=DRIVER_CHAT)
        result = DRIVER_FLOW.handle(trip, from_driver("0000"))
        assert result.replies == [messages.INVALID_CODE]
        assert trip.driver_flow is DriverFlow.AWAITING_ACCEPTANCE

    def test_bound_to_other_driver(self):
        trip = make_trip(driver_flow=DriverFlow.AWAITING_ACCEPTANCE, driver_chat_id="first@c.us")
        result = DRIVER_FLOW.handle(trip, message("5678", "second@lid"))
        assert result.replies == [messages.ALREADY_ACCEPTED]
        assert trip.driver_chat_id == "first@c.us"

    def test_already_accepted_by_other_driver(self):
        trip = make_trip(driver_flow=DriverFlow.ACCEPTED, driver_chat_id="first@c.us")
        result = DRIVER_FLOW.handle(
            trip, message("5678", "second@lid"), DriverFlow.AWAITING_ACCEPTANCE
        )
        assert result.replies == [messages.ALREADY_ACCEPTED]
        assert trip.driver_flow is DriverFlow.ACCEPTED

    def test_stale_non_code_message_is_silent(self):
        trip = make_trip(driver_flow=DriverFlow.ACCEPTED, driver_chat_id="first@c.us")
        result = DRIVER_FLOW.handle(
            trip, message("oi", "second@lid"), DriverFlow.AWAITING_ACCEPTANCE
        )
        assert result.replies == []


class TestDriverCompletion:
    def test_full_completion_sequence(self):
        trip = make_trip(driver_flow=DriverFlow.REQUEST_DISTANCE, driver_chat_id=DRIVER_CHAT)

        assert DRIVER_FLOW.handle(trip, from_driver("25,5")).replies == [
            messages.DISTANCE_RECORDED
        ]
        assert trip.distance_traveled == Decimal("25.50")
        assert trip.driver_flow is DriverFlow.REQUEST_FARE

        assert DRIVER_FLOW.handle(trip, from_driver("80")).replies == [messages.FARE_RECORDED]
        assert trip.final_fare == Decimal("80.00")

        assert DRIVER_FLOW.handle(trip, from_driver("45 min")).replies == [
            messages.DURATION_RECORDED
        ]
        assert trip.duration_minutes == 45

        result = DRIVER_FLOW.handle(trip, from_driver("  Trânsito intenso  "))
        assert result.replies == [messages.driver_completion_thanks(trip)]
        assert trip.driver_note == "Trânsito intenso"
        assert trip.driver_flow is DriverFlow.COMPLETION_INFO_DONE

    @pytest.mark.parametrize(
        ("state", "reply"),
        [
            (DriverFlow.REQUEST_DISTANCE, messages.INVALID_DISTANCE),
            (DriverFlow.REQUEST_FARE, messages.INVALID_FARE),
            (DriverFlow.REQUEST_DURATION, messages.INVALID_DURATION),
        ],
    )
    def test_invalid_numbers_reprompt(self, state, reply):
        trip = make_trip(driver_flow=state, driver_chat_id=DRIVER_CHAT)
        result = DRIVER_FLOW.handle(trip, from_driver("muito"))
        assert result.replies == [reply]
        assert trip.driver_flow is state

    def test_rating(self):
        trip = make_trip(driver_flow=DriverFlow.RATING_SENT, driver_chat_id=DRIVER_CHAT)
        result = DRIVER_FLOW.handle(trip, from_driver("1"))
        assert trip.driver_rating == 1
        assert trip.driver_flow is DriverFlow.RATING_ANSWERED
        assert result.replies == [messages.driver_rating_thanks(trip, "1")]
        assert not trip.driver_active


class TestParsers:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("25", Decimal("25.00")),
            ("25,555", Decimal("25.56")),
            (" 0.125 ", Decimal("0.13")),
            ("0", Decimal("0.00")),
            ("25 km", Decimal("25.00")),
            ("25km", Decimal("25.00")),
            ("50,5 reais", Decimal("50.50")),
        ],
    )
    def test_parse_amount(self, text, expected):
        assert parse_amount(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["", "abc", "-5", "inf", "NaN", "1.2.3", "1e30", "km 25", "123456789012345678901234567890"],
    )
    def test_parse_amount_rejects(self, text):
        assert parse_amount(text) is None

    def test_parse_minutes(self):
        assert parse_minutes("1h 30") == 130
        assert parse_minutes("45") == 45
        assert parse_minutes("uma hora") is None
