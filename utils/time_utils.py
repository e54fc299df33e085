from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every ``DateTimeField`` is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_datetime(value: date | datetime | None) -> datetime | None:
    """Привести дату к ``datetime`` (полночь), ``datetime`` вернуть как есть."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)
