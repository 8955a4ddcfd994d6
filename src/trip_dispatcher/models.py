"""Trip record and flow-state types.

A ``Trip`` is one scheduled transport job.  It carries two independent
finite-state tracks over the same record:

- the passenger track (``passenger_flow``), driven by the sweep and by the
  passenger's chat replies;
- the driver track (``driver_flow``), driven by the sweep and by the
  driver's chat replies.

``None`` stands for the *unset* state on both tracks.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal

from trip_dispatcher.errors import MalformedSchedule
from trip_dispatcher.phones import last_four_digits


class Track(enum.StrEnum):
    """One of the two per-trip state machines."""

    PASSENGER = "passenger"
    DRIVER = "driver"


class PassengerFlow(enum.StrEnum):
    RECOGNITION = "recognition"
    PASSENGER_COUNT = "passenger_count"
    LUGGAGE = "luggage"
    TRIP_CONFIRMED = "trip_confirmed"
    RATING_PENDING = "rating_pending"
    FINALIZED = "finalized"


class DriverFlow(enum.StrEnum):
    AWAITING_ACCEPTANCE = "awaiting_24h_acceptance"
    ACCEPTED = "accepted"
    REMINDER_12H = "reminder_12h"
    REMINDER_1H = "reminder_1h"
    REQUEST_DISTANCE = "request_distance"
    REQUEST_FARE = "request_fare"
    REQUEST_DURATION = "request_duration"
    REQUEST_NOTE = "request_note"
    COMPLETION_INFO_DONE = "completion_info_done"
    RATING_SENT = "rating_sent"
    RATING_ANSWERED = "rating_answered"
    # Set by operators outside this system.
    UNAVAILABLE = "unavailable"


class RatingStatus(enum.StrEnum):
    SENT = "sent"
    ANSWERED = "answered"


class Confirmation(enum.StrEnum):
    """Passenger confirmation flag; ``None`` means not yet confirmed."""

    CONFIRMED = "true"
    OPTED_OUT = "no"


# Passenger states in which a reply from the bound passenger is expected.
PASSENGER_AWAITING_REPLY = frozenset(
    {
        PassengerFlow.RECOGNITION,
        PassengerFlow.PASSENGER_COUNT,
        PassengerFlow.LUGGAGE,
        PassengerFlow.RATING_PENDING,
    }
)

# Driver states in which a reply from the bound driver is expected.
DRIVER_AWAITING_REPLY = frozenset(
    {
        DriverFlow.AWAITING_ACCEPTANCE,
        DriverFlow.REQUEST_DISTANCE,
        DriverFlow.REQUEST_FARE,
        DriverFlow.REQUEST_DURATION,
        DriverFlow.REQUEST_NOTE,
        DriverFlow.RATING_SENT,
    }
)

DRIVER_TERMINAL = frozenset({DriverFlow.RATING_ANSWERED, DriverFlow.UNAVAILABLE})

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")
_TIME_FORMATS = ("%H:%M", "%H:%M:%S")


def parse_schedule(raw_date: str | None, raw_time: str | None, tz: tzinfo) -> datetime:
    """Combine a stored date and time into an aware instant in *tz*.

    Raises
    ------
    MalformedSchedule
        If either part is missing or matches none of the accepted formats.
    """
    if not raw_date or not raw_time:
        raise MalformedSchedule(f"missing date or time ({raw_date!r}, {raw_time!r})")

    parsed_date = _parse_first(raw_date.strip(), _DATE_FORMATS)
    parsed_time = _parse_first(raw_time.strip(), _TIME_FORMATS)
    if parsed_date is None or parsed_time is None:
        raise MalformedSchedule(f"unparseable schedule ({raw_date!r}, {raw_time!r})")

    return datetime.combine(parsed_date.date(), parsed_time.time(), tzinfo=tz)


def _parse_first(value: str, formats: tuple[str, ...]) -> datetime | None:
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


@dataclass
class TripDraft:
    """Fields supplied when a new trip is created."""

    passenger_name: str
    passenger_phone: str
    scheduled_date: str
    scheduled_time: str
    origin: str
    destination: str
    driver_name: str | None = None
    driver_phone: str | None = None


@dataclass
class Trip:
    """Mutable trip record, one per scheduled transport job."""

    id: str
    passenger_name: str = ""
    passenger_phone: str = ""
    passenger_chat_id: str | None = None
    driver_name: str = ""
    driver_phone: str | None = None
    driver_chat_id: str | None = None
    scheduled_date: str = ""
    scheduled_time: str = ""
    origin: str = ""
    destination: str = ""

    # Passenger track
    passenger_confirmation: Confirmation | None = None
    passenger_flow: PassengerFlow | None = None
    reminder_level: int = 0
    rating_status: RatingStatus | None = None
    passenger_rating: int | None = None
    passenger_count: str | None = None
    luggage_count: str | None = None

    # Driver track
    driver_flow: DriverFlow | None = None
    distance_traveled: Decimal | None = None
    final_fare: Decimal | None = None
    duration_minutes: int | None = None
    driver_note: str | None = None
    driver_rating: int | None = None

    last_interaction_at: datetime | None = None

    # -- derived values ---------------------------------------------------

    def scheduled_at(self, tz: tzinfo) -> datetime:
        """Return the scheduled instant; raises ``MalformedSchedule``."""
        return parse_schedule(self.scheduled_date, self.scheduled_time, tz)

    @property
    def passenger_code(self) -> str:
        return last_four_digits(self.passenger_phone)

    @property
    def driver_code(self) -> str:
        return last_four_digits(self.driver_phone)

    @property
    def passenger_recipient(self) -> str:
        """Bound passenger chat identity, falling back to the raw phone."""
        return self.passenger_chat_id or self.passenger_phone

    @property
    def driver_recipient(self) -> str | None:
        """Bound driver chat identity, falling back to the raw phone."""
        return self.driver_chat_id or self.driver_phone

    # -- activity predicates ----------------------------------------------

    @property
    def passenger_active(self) -> bool:
        return (
            self.passenger_flow is not PassengerFlow.FINALIZED
            and self.rating_status is not RatingStatus.ANSWERED
        )

    @property
    def driver_active(self) -> bool:
        return bool(self.driver_phone) and self.driver_flow not in DRIVER_TERMINAL

    @property
    def is_active(self) -> bool:
        """True while at least one track is not yet terminal."""
        return self.passenger_active or self.driver_active

    # -- identity binding (first bind wins) ---------------------------------

    def bind_passenger(self, chat_id: str) -> bool:
        """Bind the passenger chat identity if none is bound yet."""
        if self.passenger_chat_id:
            return self.passenger_chat_id == chat_id
        self.passenger_chat_id = chat_id
        return True

    def bind_driver(self, chat_id: str) -> bool:
        """Bind the driver chat identity if none is bound yet."""
        if self.driver_chat_id:
            return self.driver_chat_id == chat_id
        self.driver_chat_id = chat_id
        return True
