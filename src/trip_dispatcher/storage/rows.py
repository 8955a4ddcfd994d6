"""Codec between flat store records and ``Trip`` values.

Stores keep every trip field as text, keyed by the ``Trip`` attribute name.
Decoding is strict: an unknown flow state, rating status or confirmation
value, or a non-numeric numeric field, raises ``InvalidTripRecord`` so raw
strings never reach the state machines.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from trip_dispatcher.errors import InvalidTripRecord
from trip_dispatcher.models import (
    Confirmation,
    DriverFlow,
    PassengerFlow,
    RatingStatus,
    Trip,
    TripDraft,
)

logger = logging.getLogger(__name__)

Record = dict[str, str | None]

TEXT_FIELDS = (
    "passenger_name",
    "passenger_phone",
    "driver_name",
    "scheduled_date",
    "scheduled_time",
    "origin",
    "destination",
)
OPTIONAL_TEXT_FIELDS = (
    "passenger_chat_id",
    "driver_phone",
    "driver_chat_id",
    "passenger_count",
    "luggage_count",
    "driver_note",
)
COLUMNS: tuple[str, ...] = (
    *TEXT_FIELDS,
    *OPTIONAL_TEXT_FIELDS,
    "passenger_confirmation",
    "passenger_flow",
    "reminder_level",
    "rating_status",
    "passenger_rating",
    "driver_flow",
    "distance_traveled",
    "final_fare",
    "duration_minutes",
    "driver_rating",
    "last_interaction_at",
)

_UNSET_CONFIRMATION = {"", "false"}
_OPTED_OUT = {"no", "nao", "não"}


def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _enum(cls: type[enum.StrEnum], record: Mapping[str, Any], name: str) -> Any:
    value = record.get(name)
    if _blank(value):
        return None
    try:
        return cls(str(value).strip())
    except ValueError:
        raise InvalidTripRecord(
            f"unknown {name} value {value!r}", trip_id=_id_of(record), field=name
        ) from None


def _confirmation(record: Mapping[str, Any]) -> Confirmation | None:
    value = record.get("passenger_confirmation")
    normalized = "" if value is None else str(value).strip().lower()
    if normalized in _UNSET_CONFIRMATION:
        return None
    if normalized in _OPTED_OUT:
        return Confirmation.OPTED_OUT
    if normalized == Confirmation.CONFIRMED:
        return Confirmation.CONFIRMED
    raise InvalidTripRecord(
        f"unknown passenger_confirmation value {value!r}",
        trip_id=_id_of(record),
        field="passenger_confirmation",
    )


def _int(
    record: Mapping[str, Any],
    name: str,
    *,
    low: int | None = None,
    high: int | None = None,
) -> int | None:
    value = record.get(name)
    if _blank(value):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        raise InvalidTripRecord(
            f"non-integer {name} value {value!r}", trip_id=_id_of(record), field=name
        ) from None
    if (low is not None and number < low) or (high is not None and number > high):
        raise InvalidTripRecord(
            f"{name} value {number} out of range", trip_id=_id_of(record), field=name
        )
    return number


def _decimal(record: Mapping[str, Any], name: str) -> Decimal | None:
    value = record.get(name)
    if _blank(value):
        return None
    try:
        number = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        raise InvalidTripRecord(
            f"non-numeric {name} value {value!r}", trip_id=_id_of(record), field=name
        ) from None
    if not number.is_finite():
        raise InvalidTripRecord(
            f"non-finite {name} value {value!r}", trip_id=_id_of(record), field=name
        )
    return number


def _timestamp(record: Mapping[str, Any], name: str) -> datetime | None:
    value = record.get(name)
    if _blank(value):
        return None
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidTripRecord(
            f"invalid {name} timestamp {value!r}", trip_id=_id_of(record), field=name
        ) from None


def _id_of(record: Mapping[str, Any]) -> str | None:
    value = record.get("id")
    return None if value is None else str(value)


def trip_from_record(record: Mapping[str, Any]) -> Trip:
    """Decode a store record into a ``Trip``.

    Raises:
        InvalidTripRecord: If any field holds an unrecognized value.
    """
    trip_id = _id_of(record)
    if not trip_id:
        raise InvalidTripRecord("record has no id", field="id")

    text = {name: str(record.get(name) or "").strip() for name in TEXT_FIELDS}
    optional = {
        name: (None if _blank(record.get(name)) else str(record[name]).strip())
        for name in OPTIONAL_TEXT_FIELDS
    }
    # The driver note is stored verbatim.
    if optional["driver_note"] is not None:
        optional["driver_note"] = str(record["driver_note"])

    return Trip(
        id=trip_id,
        **text,
        **optional,
        passenger_confirmation=_confirmation(record),
        passenger_flow=_enum(PassengerFlow, record, "passenger_flow"),
        reminder_level=_int(record, "reminder_level", low=0, high=3) or 0,
        rating_status=_enum(RatingStatus, record, "rating_status"),
        passenger_rating=_int(record, "passenger_rating", low=1, high=3),
        driver_flow=_enum(DriverFlow, record, "driver_flow"),
        distance_traveled=_decimal(record, "distance_traveled"),
        final_fare=_decimal(record, "final_fare"),
        duration_minutes=_int(record, "duration_minutes", low=0),
        driver_rating=_int(record, "driver_rating", low=1, high=3),
        last_interaction_at=_timestamp(record, "last_interaction_at"),
    )


def _encode(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def trip_to_record(trip: Trip) -> Record:
    """Encode *trip* into a flat record, including its id."""
    record: Record = {"id": trip.id}
    for name in COLUMNS:
        record[name] = _encode(getattr(trip, name))
    return record


def draft_to_record(draft: TripDraft) -> Record:
    """Encode a new trip; every track field starts unset."""
    record: Record = {name: None for name in COLUMNS}
    record.update(
        passenger_name=draft.passenger_name,
        passenger_phone=draft.passenger_phone,
        driver_name=draft.driver_name or "",
        driver_phone=draft.driver_phone or None,
        scheduled_date=draft.scheduled_date,
        scheduled_time=draft.scheduled_time,
        origin=draft.origin,
        destination=draft.destination,
        reminder_level="0",
    )
    return record


def decode_records(records: Iterable[Mapping[str, Any]]) -> list[Trip]:
    """Decode *records*, logging and skipping the ones that are invalid."""
    trips: list[Trip] = []
    for record in records:
        try:
            trips.append(trip_from_record(record))
        except InvalidTripRecord as exc:
            logger.warning("Skipping trip record %s: %s", exc.trip_id or "<no id>", exc)
    return trips
