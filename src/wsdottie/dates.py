"""Date codec for the two encodings the WSDOT/WSF services emit.

Legacy encoding: ``/Date(1700000000000-0700)/``, sometimes with escaped
slashes (``\\/Date(...)\\/``) when nested inside JSON strings. The offset is
accepted but never applied: the millisecond value is taken as UTC, which is
what every historical consumer of this data has observed.

Standard encoding: ISO-8601, date-only or date+time, with or without an
offset. Naive values are read as UTC.

Detection is structural. ``classify_date`` returns one of three tagged
variants so the unrecognised case cannot be skipped by accident.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Annotated, Any

from pydantic import BeforeValidator

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_LEGACY_DATE = re.compile(r"\\?/Date\((-?\d+)([+-]\d{4})?\)\\?/")
_STANDARD_DATE = re.compile(
    r"\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?"
)


@dataclass(frozen=True)
class LegacyDate:
    raw: str
    millis: int
    offset: str | None  # "+HHMM" / "-HHMM" as received; never applied
    value: datetime


@dataclass(frozen=True)
class StandardDate:
    raw: str
    value: datetime


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


DateVariant = LegacyDate | StandardDate | Unrecognized


def classify_date(value: Any) -> DateVariant:
    """Detect which encoding ``value`` uses, parsing it on the way."""
    if not isinstance(value, str):
        return Unrecognized(value)

    match = _LEGACY_DATE.fullmatch(value)
    if match is not None:
        millis = int(match.group(1))
        try:
            decoded = EPOCH + timedelta(milliseconds=millis)
        except OverflowError:
            return Unrecognized(value)
        return LegacyDate(raw=value, millis=millis, offset=match.group(2), value=decoded)

    if _STANDARD_DATE.fullmatch(value):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return Unrecognized(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return StandardDate(raw=value, value=parsed)

    return Unrecognized(value)


def is_date_string(value: Any) -> bool:
    return not isinstance(classify_date(value), Unrecognized)


def decode_date(value: str | None) -> datetime | None:
    """Decode either encoding to an aware datetime.

    ``None`` decodes to ``None`` without touching the parser. Anything else
    that is not a recognised date string raises ``ValueError``.
    """
    if value is None:
        return None
    variant = classify_date(value)
    match variant:
        case LegacyDate():
            return variant.value
        case StandardDate():
            return variant.value
        case Unrecognized():
            raise ValueError(f"Unrecognised date string: {value!r}")


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - EPOCH) // timedelta(milliseconds=1)


def encode_legacy(value: datetime | int, offset: str | None = None) -> str:
    """Render ``/Date(ms[offset])/``. ``offset`` is copied through verbatim."""
    millis = value if isinstance(value, int) else to_epoch_ms(value)
    return f"/Date({millis}{offset or ''})/"


def encode_standard(value: datetime | date) -> str:
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def convert_dates(data: Any) -> Any:
    """Return a copy of ``data`` with every date-shaped string decoded.

    Walks dicts, lists and tuples. Strings that match neither encoding, or
    match one but fail to parse, are left exactly as they were.
    """
    if isinstance(data, str):
        variant = classify_date(data)
        if isinstance(variant, Unrecognized):
            return data
        return variant.value
    if isinstance(data, dict):
        return {key: convert_dates(item) for key, item in data.items()}
    if isinstance(data, list):
        return [convert_dates(item) for item in data]
    if isinstance(data, tuple):
        return tuple(convert_dates(item) for item in data)
    return data


def _coerce_date_field(value: Any) -> Any:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return decode_date(value)
    raise ValueError(f"expected a date string, got {type(value).__name__}")


# Contract field type for dates that must be decoded at validation time
WsdotDateTime = Annotated[datetime, BeforeValidator(_coerce_date_field)]
