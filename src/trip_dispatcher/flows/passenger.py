"""Passenger track: recognition → passenger count → luggage → rating."""

from __future__ import annotations

import logging

from trip_dispatcher import messages
from trip_dispatcher.connectors.base import InboundMessage
from trip_dispatcher.flows.base import FlowResult, TrackFlow, option_handler
from trip_dispatcher.models import (
    Confirmation,
    PassengerFlow,
    RatingStatus,
    Track,
    Trip,
)

logger = logging.getLogger(__name__)


def _recognition(trip: Trip, message: InboundMessage) -> FlowResult:
    if not trip.passenger_code or message.text != trip.passenger_code:
        return FlowResult.reprompt(messages.INVALID_CODE)
    if not trip.bind_passenger(message.sender_id):
        logger.info(
            "Trip %s passenger already bound to %s; ignoring code from %s",
            trip.id,
            trip.passenger_chat_id,
            message.sender_id,
        )
        return FlowResult()
    trip.passenger_confirmation = Confirmation.CONFIRMED
    trip.passenger_flow = PassengerFlow.PASSENGER_COUNT
    return FlowResult.advance(messages.passenger_recognized())


def _record_count(trip: Trip, choice: str) -> FlowResult:
    trip.passenger_count = messages.PASSENGER_COUNT_OPTIONS[choice]
    trip.passenger_flow = PassengerFlow.LUGGAGE
    return FlowResult.advance(messages.luggage_prompt())


def _record_luggage(trip: Trip, choice: str) -> FlowResult:
    trip.luggage_count = messages.LUGGAGE_OPTIONS[choice]
    trip.passenger_flow = PassengerFlow.TRIP_CONFIRMED
    return FlowResult.advance(messages.passenger_details_thanks())


def _record_rating(trip: Trip, choice: str) -> FlowResult:
    trip.passenger_rating = int(choice)
    trip.passenger_flow = PassengerFlow.FINALIZED
    trip.rating_status = RatingStatus.ANSWERED
    return FlowResult.advance(messages.passenger_rating_thanks(trip, choice))


PASSENGER_FLOW = TrackFlow(
    Track.PASSENGER,
    "passenger_flow",
    {
        PassengerFlow.RECOGNITION: _recognition,
        PassengerFlow.PASSENGER_COUNT: option_handler(
            messages.PASSENGER_COUNT_OPTIONS, _record_count, messages.INVALID_OPTION
        ),
        PassengerFlow.LUGGAGE: option_handler(
            messages.LUGGAGE_OPTIONS, _record_luggage, messages.INVALID_OPTION
        ),
        PassengerFlow.RATING_PENDING: option_handler(
            messages.RATING_OPTIONS, _record_rating, messages.INVALID_OPTION
        ),
    },
)
