"""
Timestamp normalization.

User records written by different clients carry ``createdAt`` as a store
timestamp, a ``{"seconds": ...}`` wrapper or an ISO string. Everything
that reads a timestamp goes through parse_timestamp() and gets back an
aware UTC datetime.
"""
from datetime import date, datetime, time, timezone
from typing import Any, Mapping, Optional


class TimestampParseError(ValueError):
    """Raised when a value cannot be interpreted as an instant."""


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch(seconds: Optional[float]) -> Optional[datetime]:
    """Convert epoch seconds (as sent by Stripe) to an aware datetime."""
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _from_mapping(value: Mapping[str, Any]) -> datetime:
    seconds = value.get("seconds", value.get("_seconds"))
    if seconds is None:
        raise TimestampParseError(f"Mapping has no seconds field: {sorted(value)}")
    nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
    try:
        return from_epoch(float(seconds) + float(nanos) / 1e9)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise TimestampParseError(f"Invalid seconds value: {seconds!r}") from e


def _from_string(value: str) -> datetime:
    text = value.strip()
    if not text:
        raise TimestampParseError("Empty timestamp string")
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise TimestampParseError(f"Not an ISO-8601 timestamp: {value!r}") from e
    return _aware(parsed)


def parse_timestamp(value: Any) -> datetime:
    """Normalize any supported timestamp shape to an aware UTC datetime.

    Raises:
        TimestampParseError: If the value has none of the supported shapes
    """
    if isinstance(value, datetime):
        return _aware(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, bool) or value is None:
        raise TimestampParseError(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return from_epoch(value)
        except (OverflowError, OSError, ValueError) as e:
            raise TimestampParseError(f"Epoch out of range: {value!r}") from e
    if isinstance(value, str):
        return _from_string(value)
    if isinstance(value, Mapping):
        return _from_mapping(value)

    # Store-native timestamp types (firestore DatetimeWithNanoseconds, protobuf Timestamp)
    for attr in ("to_datetime", "ToDatetime"):
        converter = getattr(value, attr, None)
        if callable(converter):
            return _aware(converter())
    seconds = getattr(value, "seconds", None)
    if isinstance(seconds, (int, float)):
        return _from_mapping({"seconds": seconds, "nanoseconds": getattr(value, "nanoseconds", 0) or getattr(value, "nanos", 0)})

    raise TimestampParseError(f"Unsupported timestamp type: {type(value).__name__}")


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with millisecond precision and a Z suffix."""
    if value is None:
        return None
    return _aware(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_query_date(value: str) -> datetime:
    """Parse a startDate/endDate query parameter (date or datetime)."""
    text = (value or "").strip()
    if len(text) == 10:
        try:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
        except ValueError as e:
            raise TimestampParseError(f"Invalid date: {value!r}") from e
    return _from_string(text)
