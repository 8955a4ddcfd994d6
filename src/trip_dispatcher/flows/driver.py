"""Driver track: acceptance, post-trip completion info and rating.

Acceptance is the one place where two senders can race for the same trip:
both may resolve against a snapshot in which the trip still awaits
acceptance, but only the first to take the trip lock wins.  The loser sees
either a trip bound to someone else or a state that already moved on, and
is told the trip was confirmed by another driver.
"""

from __future__ import annotations

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from trip_dispatcher import messages
from trip_dispatcher.connectors.base import InboundMessage
from trip_dispatcher.flows.base import FlowResult, TrackFlow, option_handler
from trip_dispatcher.models import DriverFlow, Track, Trip

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")
_NON_DIGITS = re.compile(r"\D")
# A number, optionally followed by a unit such as "km" or "reais".
_AMOUNT = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:[^\d\s.,]\D*)?")


def parse_amount(text: str) -> Decimal | None:
    """Parse a non-negative decimal with ``,`` or ``.`` as separator.

    A trailing unit is ignored (``"25 km"`` is 25).  Returns the value
    rounded to two decimals, or ``None`` when invalid or too large to round.
    """
    match = _AMOUNT.fullmatch(text.strip())
    if match is None:
        return None
    try:
        return Decimal(match.group(1).replace(",", ".")).quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def parse_minutes(text: str) -> int | None:
    """Parse a duration in minutes, ignoring any non-digit characters."""
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return None
    return int(digits)


def _reject_duplicate(trip: Trip, message: InboundMessage) -> FlowResult:
    logger.info(
        "Duplicate acceptance of trip %s from %s (bound to %s, state %s)",
        trip.id,
        message.sender_id,
        trip.driver_chat_id,
        trip.driver_flow,
    )
    return FlowResult.reprompt(messages.ALREADY_ACCEPTED)


def _acceptance(trip: Trip, message: InboundMessage) -> FlowResult:
    if not trip.driver_code or message.text != trip.driver_code:
        return FlowResult.reprompt(messages.INVALID_CODE)
    if not trip.bind_driver(message.sender_id):
        return _reject_duplicate(trip, message)
    trip.driver_flow = DriverFlow.ACCEPTED
    return FlowResult.advance(messages.driver_accepted(trip))


def _distance(trip: Trip, message: InboundMessage) -> FlowResult:
    value = parse_amount(message.text)
    if value is None:
        return FlowResult.reprompt(messages.INVALID_DISTANCE)
    trip.distance_traveled = value
    trip.driver_flow = DriverFlow.REQUEST_FARE
    return FlowResult.advance(messages.DISTANCE_RECORDED)


def _fare(trip: Trip, message: InboundMessage) -> FlowResult:
    value = parse_amount(message.text)
    if value is None:
        return FlowResult.reprompt(messages.INVALID_FARE)
    trip.final_fare = value
    trip.driver_flow = DriverFlow.REQUEST_DURATION
    return FlowResult.advance(messages.FARE_RECORDED)


def _duration(trip: Trip, message: InboundMessage) -> FlowResult:
    minutes = parse_minutes(message.text)
    if minutes is None:
        return FlowResult.reprompt(messages.INVALID_DURATION)
    trip.duration_minutes = minutes
    trip.driver_flow = DriverFlow.REQUEST_NOTE
    return FlowResult.advance(messages.DURATION_RECORDED)


def _note(trip: Trip, message: InboundMessage) -> FlowResult:
    trip.driver_note = message.body.strip()
    trip.driver_flow = DriverFlow.COMPLETION_INFO_DONE
    return FlowResult.advance(messages.driver_completion_thanks(trip))


def _record_rating(trip: Trip, choice: str) -> FlowResult:
    trip.driver_rating = int(choice)
    trip.driver_flow = DriverFlow.RATING_ANSWERED
    return FlowResult.advance(messages.driver_rating_thanks(trip, choice))


class DriverTrackFlow(TrackFlow):
    def on_stale(self, trip: Trip, message: InboundMessage, resolved_state: Any) -> FlowResult:
        if (
            resolved_state is DriverFlow.AWAITING_ACCEPTANCE
            and trip.driver_code
            and message.text == trip.driver_code
            and trip.driver_chat_id != message.sender_id
        ):
            return _reject_duplicate(trip, message)
        return super().on_stale(trip, message, resolved_state)


DRIVER_FLOW = DriverTrackFlow(
    Track.DRIVER,
    "driver_flow",
    {
        DriverFlow.AWAITING_ACCEPTANCE: _acceptance,
        DriverFlow.REQUEST_DISTANCE: _distance,
        DriverFlow.REQUEST_FARE: _fare,
        DriverFlow.REQUEST_DURATION: _duration,
        DriverFlow.REQUEST_NOTE: _note,
        DriverFlow.RATING_SENT: option_handler(
            messages.RATING_OPTIONS, _record_rating, messages.INVALID_OPTION
        ),
    },
)
