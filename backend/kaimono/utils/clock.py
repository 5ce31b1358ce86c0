from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC; SQLite drops tzinfo on round-trip and comparisons must agree
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
