"""Phone and date helpers shared by identity resolution and message templates."""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")

# Country prefix dropped during normalization (Brazil).
COUNTRY_PREFIX = "55"


def digits_only(value: object) -> str:
    """Return only the decimal digits of *value* (``None`` → ``""``)."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def normalize_phone(value: object) -> str:
    """Normalize a raw phone string for comparison.

    Strips every non-digit; when the result starts with the country prefix
    and is at least 12 digits long, the prefix is dropped.  Two phones are
    considered the same party iff their normalized forms are equal.
    """
    digits = digits_only(value)
    if digits.startswith(COUNTRY_PREFIX) and len(digits) >= 12:
        digits = digits[len(COUNTRY_PREFIX) :]
    return digits


def last_four_digits(value: object) -> str:
    """Return the last-4-digits confirmation code of a raw phone string."""
    return digits_only(value)[-4:]


def format_phone(value: str | None) -> str:
    """Render a phone as ``(AA)NNNNN-NNNN`` / ``(AA)NNNN-NNNN`` for display.

    Values that do not look like a local number are returned unchanged.
    """
    if not value:
        return ""
    digits = digits_only(value)
    if digits.startswith(COUNTRY_PREFIX) and len(digits) > 11:
        digits = digits[len(COUNTRY_PREFIX) :]
    if len(digits) == 11:
        return f"({digits[:2]}){digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[:2]}){digits[2:6]}-{digits[6:]}"
    return value


def format_date(value: str | None) -> str:
    """Render an ISO ``YYYY-MM-DD`` date as ``DD/MM/YYYY``."""
    if not value:
        return ""
    parts = value.split("-")
    if len(parts) != 3:
        return value
    return f"{parts[2]}/{parts[1]}/{parts[0]}"
