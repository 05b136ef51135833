"""Time helpers shared by models and services."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: datetime) -> str:
    """Serialize a UTC datetime for storage.

    Microseconds are always written so stored values compare lexically in
    chronological order.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def utc_iso() -> str:
    return to_iso(utcnow())
