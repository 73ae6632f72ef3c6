from datetime import datetime, timezone


def to_millis(value: datetime) -> datetime:
    # BSON keeps datetimes to the millisecond
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def as_utc(value: datetime) -> datetime:
    # naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return to_millis(value.replace(tzinfo=timezone.utc))
    return to_millis(value.astimezone(timezone.utc))


def now_utc() -> datetime:
    return to_millis(datetime.now(timezone.utc))


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open ranges [a_start, a_end) and [b_start, b_end); touching ends do not overlap."""
    return a_start < b_end and b_start < a_end
