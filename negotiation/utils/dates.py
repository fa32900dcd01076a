from datetime import datetime, timezone

from dateutil import parser


def utcnow():
    """Naive UTC now; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value):
    """Parse an ISO-8601 string (or pass a datetime through) into naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    parsed = parser.isoparse(value)
    return to_naive_utc(parsed)


def isoformat(value):
    return value.isoformat() + "Z" if value else None
