from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC; naive values are assumed to be UTC already"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_until(target: datetime, now: Optional[datetime] = None) -> int:
    now = as_utc(now) if now else utcnow()
    return int((as_utc(target) - now).total_seconds() // 60)


def parse_timestamp(value) -> datetime:
    """Accept a datetime or an ISO-8601 string (``Z`` suffix allowed) and return aware UTC"""
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))
