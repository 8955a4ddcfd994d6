"""Time-driven transitions evaluated on every sweep tick.

Each track has an ordered table of ``WindowRule`` entries.  On a tick, the
first rule of a track whose guard holds is applied: it advances the trip's
state and yields the outbound messages for that transition.  At most one
rule fires per track per tick, so a trip sees at most one passenger message
batch and one driver message batch per tick.

Windows are half-open on the side closer to departure.  A window missed
because no tick ran during it is not compensated; the trip simply becomes
eligible for the next rule.

``until`` is ``scheduled_at - now`` (positive before departure) and
``since`` is ``now - scheduled_at``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo

from trip_dispatcher import messages
from trip_dispatcher.models import (
    Confirmation,
    DriverFlow,
    PassengerFlow,
    RatingStatus,
    Track,
    Trip,
)

ONE_DAY = timedelta(hours=24)
TWELVE_HOURS = timedelta(hours=12)
FOUR_HOURS = timedelta(hours=4)
ONE_HOUR = timedelta(hours=1)
THIRTY_MINUTES = timedelta(minutes=30)
TEN_MINUTES = timedelta(minutes=10)
ZERO = timedelta(0)


@dataclass(frozen=True)
class Outbound:
    """One message to deliver after a transition has been persisted."""

    track: Track
    recipient_id: str
    text: str


@dataclass(frozen=True)
class WindowRule:
    name: str
    track: Track
    guard: Callable[[Trip, timedelta], bool]
    advance: Callable[[Trip], None]
    render: Callable[[Trip], list[Outbound]]


@dataclass(frozen=True)
class SweepTransition:
    """A rule that fired for one trip on one tick."""

    rule: str
    track: Track
    outbound: list[Outbound]


# ---------------------------------------------------------------------------
# Passenger rules (all require the passenger not to have opted out)
# ---------------------------------------------------------------------------


def _passenger_eligible(trip: Trip) -> bool:
    return trip.passenger_confirmation is not Confirmation.OPTED_OUT


def _to_passenger(trip: Trip, *texts: str, first_contact: bool = False) -> list[Outbound]:
    recipient = trip.passenger_phone if first_contact else trip.passenger_recipient
    return [Outbound(Track.PASSENGER, recipient, text) for text in texts]


def _reminder_rule(name: str, level: int, lower: timedelta, upper: timedelta, lead: str):
    def guard(trip: Trip, until: timedelta) -> bool:
        return (
            _passenger_eligible(trip)
            and bool(trip.passenger_chat_id)
            and trip.reminder_level < level
            and lower < until <= upper
        )

    def advance(trip: Trip) -> None:
        trip.reminder_level = level

    def render(trip: Trip) -> list[Outbound]:
        return _to_passenger(trip, messages.passenger_reminder(trip, lead))

    return WindowRule(name, Track.PASSENGER, guard, advance, render)


def _first_contact_guard(trip: Trip, until: timedelta) -> bool:
    return (
        _passenger_eligible(trip)
        and trip.passenger_confirmation is None
        and trip.passenger_flow is None
        and ZERO < until <= ONE_DAY
    )


def _first_contact_advance(trip: Trip) -> None:
    trip.passenger_flow = PassengerFlow.RECOGNITION


def _first_contact_render(trip: Trip) -> list[Outbound]:
    return _to_passenger(
        trip,
        messages.passenger_trip_confirmation(trip),
        messages.passenger_code_prompt(trip),
        first_contact=True,
    )


def _passenger_rating_guard(trip: Trip, until: timedelta) -> bool:
    return (
        _passenger_eligible(trip)
        and trip.rating_status is None
        and bool(trip.passenger_chat_id)
        and -until >= ONE_DAY
    )


def _passenger_rating_advance(trip: Trip) -> None:
    trip.passenger_flow = PassengerFlow.RATING_PENDING
    trip.rating_status = RatingStatus.SENT


PASSENGER_RULES: tuple[WindowRule, ...] = (
    WindowRule(
        "passenger_first_contact",
        Track.PASSENGER,
        _first_contact_guard,
        _first_contact_advance,
        _first_contact_render,
    ),
    _reminder_rule("passenger_reminder_1h", 1, THIRTY_MINUTES, ONE_HOUR, "1 hora"),
    _reminder_rule("passenger_reminder_30m", 2, TEN_MINUTES, THIRTY_MINUTES, "30 minutos"),
    _reminder_rule("passenger_reminder_10m", 3, ZERO, TEN_MINUTES, "10 minutos"),
    WindowRule(
        "passenger_rating_request",
        Track.PASSENGER,
        _passenger_rating_guard,
        _passenger_rating_advance,
        lambda trip: _to_passenger(trip, messages.passenger_rating_request(trip)),
    ),
)


# ---------------------------------------------------------------------------
# Driver rules (all require a driver phone)
# ---------------------------------------------------------------------------

_BEFORE_COMPLETION = frozenset(
    {DriverFlow.ACCEPTED, DriverFlow.REMINDER_12H, DriverFlow.REMINDER_1H}
)
_RATEABLE = _BEFORE_COMPLETION | {DriverFlow.COMPLETION_INFO_DONE}


def _to_driver(trip: Trip, *texts: str, first_contact: bool = False) -> list[Outbound]:
    recipient = trip.driver_phone if first_contact else trip.driver_recipient
    return [Outbound(Track.DRIVER, recipient or "", text) for text in texts]


def _set_driver_flow(state: DriverFlow) -> Callable[[Trip], None]:
    def advance(trip: Trip) -> None:
        trip.driver_flow = state

    return advance


DRIVER_RULES: tuple[WindowRule, ...] = (
    WindowRule(
        "driver_assignment",
        Track.DRIVER,
        lambda trip, until: trip.driver_flow is None and ZERO < until <= ONE_DAY,
        _set_driver_flow(DriverFlow.AWAITING_ACCEPTANCE),
        lambda trip: _to_driver(
            trip,
            messages.driver_assignment(trip),
            messages.driver_code_prompt(trip),
            first_contact=True,
        ),
    ),
    WindowRule(
        "driver_reminder_12h",
        Track.DRIVER,
        lambda trip, until: trip.driver_flow is DriverFlow.ACCEPTED
        and ONE_HOUR < until <= TWELVE_HOURS,
        _set_driver_flow(DriverFlow.REMINDER_12H),
        lambda trip: _to_driver(trip, messages.driver_reminder_12h(trip)),
    ),
    WindowRule(
        "driver_reminder_1h",
        Track.DRIVER,
        lambda trip, until: trip.driver_flow in (DriverFlow.ACCEPTED, DriverFlow.REMINDER_12H)
        and ZERO < until <= ONE_HOUR,
        _set_driver_flow(DriverFlow.REMINDER_1H),
        lambda trip: _to_driver(trip, messages.driver_reminder_1h(trip)),
    ),
    WindowRule(
        "driver_distance_request",
        Track.DRIVER,
        lambda trip, until: trip.driver_flow in _BEFORE_COMPLETION
        and FOUR_HOURS <= -until < ONE_DAY
        and trip.distance_traveled is None,
        _set_driver_flow(DriverFlow.REQUEST_DISTANCE),
        lambda trip: _to_driver(trip, messages.driver_distance_request(trip)),
    ),
    WindowRule(
        "driver_rating_request",
        Track.DRIVER,
        lambda trip, until: trip.distance_traveled is not None
        and trip.driver_flow in _RATEABLE
        and -until >= ONE_DAY,
        _set_driver_flow(DriverFlow.RATING_SENT),
        lambda trip: _to_driver(trip, messages.driver_rating_request(trip)),
    ),
)


def _first_match(rules: tuple[WindowRule, ...], trip: Trip, until: timedelta) -> WindowRule | None:
    for rule in rules:
        if rule.guard(trip, until):
            return rule
    return None


def due_rules(trip: Trip, now: datetime, tz: tzinfo) -> list[WindowRule]:
    """Return the rules that would fire for *trip* at *now*, without applying them.

    Raises ``MalformedSchedule`` when the trip's schedule cannot be parsed.
    """
    until = trip.scheduled_at(tz) - now
    due: list[WindowRule] = []
    if trip.passenger_active:
        passenger_rule = _first_match(PASSENGER_RULES, trip, until)
        if passenger_rule is not None:
            due.append(passenger_rule)
    if trip.driver_active:
        driver_rule = _first_match(DRIVER_RULES, trip, until)
        if driver_rule is not None:
            due.append(driver_rule)
    return due


def apply_due(trip: Trip, now: datetime, tz: tzinfo) -> list[SweepTransition]:
    """Advance *trip* in place for this tick and return the fired transitions.

    Raises ``MalformedSchedule`` when the trip's schedule cannot be parsed.
    """
    transitions: list[SweepTransition] = []
    for rule in due_rules(trip, now, tz):
        rule.advance(trip)
        transitions.append(SweepTransition(rule.name, rule.track, rule.render(trip)))
    return transitions


__all__ = [
    "DRIVER_RULES",
    "PASSENGER_RULES",
    "Outbound",
    "SweepTransition",
    "WindowRule",
    "apply_due",
    "due_rules",
]
