"""Inbound sender → trip resolution.

``resolve`` binds an inbound chat sender to at most one trip and track by
walking an ordered tier table and stopping at the first tier that matches:

1. ``passenger_session``: sender is the bound passenger of a trip awaiting
   a passenger reply.
2. ``driver_session``: sender is the bound driver of a trip awaiting a
   driver reply.
3. ``driver_first_contact``: sender phone matches the driver phone of an
   unbound trip awaiting acceptance.  Binds the driver identity.
4. ``passenger_first_contact``: sender phone matches the passenger phone of
   exactly one unbound trip in recognition.  Ambiguous matches are refused.
   Binds the passenger identity.
5. ``code_fallback``: for senders without a matchable phone.  The
   message text is compared with the last-4-digits code of every unbound
   pending driver trip, then every unbound pending passenger trip.

Tiers 3 and 4 only apply to senders that carry a phone; tier 5 only to
senders that do not.  Resolution itself never mutates a trip: the binding is
returned as part of the ``Resolution`` and applied by the dispatcher to the
freshly reloaded row, where the first bind wins.

Tier 5 matches on a 4-digit code that many phone numbers share; with several
trips pending at once it can bind a sender to the wrong trip.  This is a
known gap kept as-is until the intended behaviour is confirmed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from trip_dispatcher.connectors.base import InboundMessage
from trip_dispatcher.models import (
    DRIVER_AWAITING_REPLY,
    PASSENGER_AWAITING_REPLY,
    DriverFlow,
    PassengerFlow,
    Track,
    Trip,
)
from trip_dispatcher.phones import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """A resolved (trip, track) pair for one inbound message.

    Attributes
    ----------
    trip:
        The matched trip, as seen in the snapshot used for resolution.
    track:
        Which state machine the message is addressed to.
    tier:
        Name of the tier that matched.
    state:
        The track state the sender was answering when resolved.
    binds:
        Whether the sender identity must be bound onto the trip.
    """

    trip: Trip
    track: Track
    tier: str
    state: PassengerFlow | DriverFlow | None
    binds: bool = False

    def apply_binding(self, trip: Trip, sender_id: str) -> bool:
        """Bind *sender_id* onto *trip* if this resolution requires it.

        Returns ``False`` when the track is already bound to a different
        identity (the existing binding is kept).
        """
        if not self.binds:
            return True
        if self.track is Track.PASSENGER:
            return trip.bind_passenger(sender_id)
        return trip.bind_driver(sender_id)


TierFn = Callable[[InboundMessage, Sequence[Trip]], Resolution | None]


@dataclass(frozen=True)
class ResolutionTier:
    name: str
    match: TierFn
    needs_phone: bool | None = None
    """``True``: only for senders with a phone; ``False``: only without one;
    ``None``: always evaluated."""

    def applies_to(self, message: InboundMessage) -> bool:
        if self.needs_phone is None:
            return True
        return self.needs_phone == (message.sender_phone is not None)


def _passenger_session(message: InboundMessage, trips: Sequence[Trip]) -> Resolution | None:
    for trip in trips:
        if (
            trip.passenger_chat_id == message.sender_id
            and trip.passenger_flow in PASSENGER_AWAITING_REPLY
        ):
            return Resolution(trip, Track.PASSENGER, "passenger_session", trip.passenger_flow)
    return None


def _driver_session(message: InboundMessage, trips: Sequence[Trip]) -> Resolution | None:
    for trip in trips:
        if trip.driver_chat_id == message.sender_id and trip.driver_flow in DRIVER_AWAITING_REPLY:
            return Resolution(trip, Track.DRIVER, "driver_session", trip.driver_flow)
    return None


def _driver_first_contact(message: InboundMessage, trips: Sequence[Trip]) -> Resolution | None:
    sender_phone = normalize_phone(message.sender_phone)
    if not sender_phone:
        return None
    for trip in trips:
        if (
            not trip.driver_chat_id
            and trip.driver_phone
            and normalize_phone(trip.driver_phone) == sender_phone
            and trip.driver_flow is DriverFlow.AWAITING_ACCEPTANCE
        ):
            return Resolution(
                trip,
                Track.DRIVER,
                "driver_first_contact",
                DriverFlow.AWAITING_ACCEPTANCE,
                binds=True,
            )
    return None


def _passenger_first_contact(message: InboundMessage, trips: Sequence[Trip]) -> Resolution | None:
    sender_phone = normalize_phone(message.sender_phone)
    if not sender_phone:
        return None
    pending = [
        trip
        for trip in trips
        if trip.passenger_flow is PassengerFlow.RECOGNITION
        and not trip.passenger_chat_id
        and normalize_phone(trip.passenger_phone) == sender_phone
    ]
    if len(pending) > 1:
        logger.info(
            "Ambiguous passenger first contact from %s: %d pending trips; refusing to guess",
            message.sender_id,
            len(pending),
        )
        return None
    if not pending:
        return None
    return Resolution(
        pending[0],
        Track.PASSENGER,
        "passenger_first_contact",
        PassengerFlow.RECOGNITION,
        binds=True,
    )


def _code_fallback(message: InboundMessage, trips: Sequence[Trip]) -> Resolution | None:
    code = message.text
    if not code:
        return None
    for trip in trips:
        if (
            trip.driver_flow is DriverFlow.AWAITING_ACCEPTANCE
            and not trip.driver_chat_id
            and code == trip.driver_code
        ):
            return Resolution(
                trip, Track.DRIVER, "code_fallback", DriverFlow.AWAITING_ACCEPTANCE, binds=True
            )
    for trip in trips:
        if (
            trip.passenger_flow is PassengerFlow.RECOGNITION
            and not trip.passenger_chat_id
            and code == trip.passenger_code
        ):
            return Resolution(
                trip, Track.PASSENGER, "code_fallback", PassengerFlow.RECOGNITION, binds=True
            )
    return None


RESOLUTION_TIERS: tuple[ResolutionTier, ...] = (
    ResolutionTier("passenger_session", _passenger_session),
    ResolutionTier("driver_session", _driver_session),
    ResolutionTier("driver_first_contact", _driver_first_contact, needs_phone=True),
    ResolutionTier("passenger_first_contact", _passenger_first_contact, needs_phone=True),
    ResolutionTier("code_fallback", _code_fallback, needs_phone=False),
)


def resolve(
    message: InboundMessage,
    trips: Sequence[Trip],
    tiers: Sequence[ResolutionTier] = RESOLUTION_TIERS,
) -> Resolution | None:
    """Return the first tier match for *message* among *trips*, or ``None``."""
    for tier in tiers:
        if not tier.applies_to(message):
            continue
        resolution = tier.match(message, trips)
        if resolution is not None:
            logger.info(
                "Resolved %s to trip %s (%s track, tier=%s, state=%s)",
                message.sender_id,
                resolution.trip.id,
                resolution.track,
                resolution.tier,
                resolution.state,
            )
            return resolution
    return None


__all__ = ["RESOLUTION_TIERS", "Resolution", "ResolutionTier", "resolve"]
