"""
Key Generation

Helpers for generating row keys and partition keys, including reverse
chronological keys that make the newest entities sort first in a table that
orders keys ascending.

Time arithmetic uses 100ns ticks counted from 0001-01-01T00:00:00Z so that keys
match those produced by other table storage clients:

    generate_partition_key(datetime(2024, 1, 1, 12, 3, tzinfo=UTC))
    # -> '2516981900999999999' (12:03 rounded to 12:05, then reversed)

All inputs are normalized to UTC first. Naive datetimes are taken as UTC.

Row keys from `generate_row_key` carry the reversed time in the ULID
timestamp, which has millisecond resolution. Two timestamps less than one
millisecond apart share a time component and their keys are ordered by the
ULID random part only.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo

from ulid import ULID

from src.exceptions import InvalidArgumentError
from src.tables.entity import PARTITION_KEY

TICKS_PER_MICROSECOND = 10
TICKS_PER_MILLISECOND = 10_000

# 9999-12-31T23:59:59.9999999Z
MAX_TICKS = 3_155_378_975_999_999_999
# 1970-01-01T00:00:00Z
UNIX_EPOCH_TICKS = 621_355_968_000_000_000

DEFAULT_ROUNDING = timedelta(minutes=5)

_MIN_DATETIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)


def to_utc(timestamp: datetime) -> datetime:
    """Normalize a datetime to UTC; naive values are assumed to already be UTC."""
    if not isinstance(timestamp, datetime):
        raise InvalidArgumentError("timestamp", "must be a datetime")
    if timestamp.tzinfo is None or timestamp.utcoffset() is None:
        return timestamp.replace(tzinfo=timezone.utc)
    try:
        return timestamp.astimezone(timezone.utc)
    except OverflowError as e:
        raise InvalidArgumentError("timestamp", "outside the representable range") from e


def to_ticks(timestamp: datetime) -> int:
    """Convert a datetime to ticks since 0001-01-01T00:00:00Z."""
    delta = to_utc(timestamp) - _MIN_DATETIME
    return (delta // _ONE_MICROSECOND) * TICKS_PER_MICROSECOND


def from_ticks(ticks: int) -> datetime:
    """Convert ticks back to an aware UTC datetime (microsecond precision)."""
    if not 0 <= ticks <= MAX_TICKS:
        raise InvalidArgumentError("ticks", f"{ticks} is outside the representable range")
    return _MIN_DATETIME + timedelta(microseconds=ticks // TICKS_PER_MICROSECOND)


def interval_ticks(interval: timedelta) -> int:
    """Length of a rounding interval in ticks; must be positive."""
    if not isinstance(interval, timedelta):
        raise InvalidArgumentError("interval", "must be a timedelta")
    ticks = (interval // _ONE_MICROSECOND) * TICKS_PER_MICROSECOND
    if ticks <= 0:
        raise InvalidArgumentError("interval", "must be greater than zero")
    return ticks


def round_ticks(ticks: int, interval: int) -> int:
    """Round ticks to the nearest interval boundary, ties going up."""
    rounded = (ticks + interval // 2 + 1) // interval * interval
    if rounded > MAX_TICKS:
        raise InvalidArgumentError("timestamp", "rounds past the maximum representable time")
    return rounded


def round_timestamp(timestamp: datetime, interval: timedelta = DEFAULT_ROUNDING) -> datetime:
    """Round a timestamp to the nearest `interval` boundary (UTC)."""
    return from_ticks(round_ticks(to_ticks(timestamp), interval_ticks(interval)))


def to_reverse_chronological(timestamp: datetime) -> datetime:
    """Mirror a timestamp around the maximum time so later times become earlier."""
    return from_ticks(MAX_TICKS - to_ticks(timestamp))


def format_ticks(ticks: int) -> str:
    """Fixed width rendering so string order matches numeric order."""
    return f"{ticks:019d}"


def new_id() -> str:
    """New globally unique, time sortable identifier (ULID)."""
    return str(ULID())


def generate_row_key(timestamp: datetime) -> str:
    """
    Generate a row key that sorts newest first.

    The ULID time component is taken from the reverse chronological
    timestamp, so for timestamps at least one millisecond apart a later
    `timestamp` always yields a lexicographically smaller key.

    Args:
        timestamp: Event time of the entity

    Returns:
        26 character ULID string
    """
    reversed_ticks = MAX_TICKS - to_ticks(timestamp)
    milliseconds = (reversed_ticks - UNIX_EPOCH_TICKS) // TICKS_PER_MILLISECOND
    if milliseconds < 0:
        raise InvalidArgumentError("timestamp", "too far in the future for a time ordered id")
    return str(ULID.from_timestamp(milliseconds))


def generate_partition_key(
    timestamp: datetime,
    interval: timedelta = DEFAULT_ROUNDING,
) -> str:
    """
    Generate a reverse chronological partition key.

    The timestamp is rounded to the nearest `interval`, so entities created in
    the same interval share one partition, and newer intervals sort first.

    Args:
        timestamp: Event time of the entity
        interval: Rounding interval (default 5 minutes)

    Returns:
        19 digit zero padded string of reversed ticks

    Raises:
        InvalidArgumentError: If `interval` is not positive
    """
    rounded = round_ticks(to_ticks(timestamp), interval_ticks(interval))
    return format_ticks(MAX_TICKS - rounded)


def generate_partition_key_range_query(start: datetime, end: datetime) -> str:
    """
    Filter matching partitions whose (un-reversed) interval start is in [start, end).

    Reversing flips comparison direction, so the upper calendar bound becomes
    the lower key bound. Both key bounds are shifted by one tick to keep
    `start` inclusive and `end` exclusive with a `ge`/`lt` pair.

    Raises:
        InvalidArgumentError: If `start` is not before `end`
    """
    start_ticks = to_ticks(start)
    end_ticks = to_ticks(end)
    if start_ticks >= end_ticks:
        raise InvalidArgumentError("start", "must be earlier than end")

    lower = format_ticks(MAX_TICKS - end_ticks + 1)
    upper = format_ticks(MAX_TICKS - start_ticks + 1)
    return f"({PARTITION_KEY} ge '{lower}') and ({PARTITION_KEY} lt '{upper}')"


def generate_partition_key_query(day: date, zone: tzinfo | None = None) -> str:
    """
    Filter matching every partition of one calendar day.

    Args:
        day: The calendar day
        zone: Time zone the day is expressed in (default UTC)
    """
    if not isinstance(day, date) or isinstance(day, datetime):
        raise InvalidArgumentError("day", "must be a date")
    zone = zone or timezone.utc
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return generate_partition_key_range_query(start, end)


# Name used by callers that think of row keys as time ordered identifiers.
# Ordering is at millisecond granularity; within one millisecond it is random.
generate_time_ordered_id = generate_row_key
