import datetime


def utcnow() -> datetime.datetime:
    """Current time as naive UTC, the convention google-auth uses for expiry"""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    """
    Normalize an expiry to naive UTC.
    Aware values are converted to UTC first, naive values are assumed UTC.
    """
    if value is None or not isinstance(value, datetime.datetime):
        return value
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc)
    return value.replace(tzinfo=None)
