"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def today_iso(today: Optional[date] = None) -> str:
    """Calendar day as an ISO string ("YYYY-MM-DD"), the key for daily counters"""
    return (today or utcnow().date()).isoformat()


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(days=days)


def window_start(minutes: int, now: Optional[datetime] = None) -> datetime:
    """Start of a rolling rate-limit window ending at now"""
    return (now or utcnow()) - timedelta(minutes=minutes)


def minute_bucket(now: Optional[datetime] = None) -> datetime:
    """Truncate to the minute so concurrent records share one window row"""
    return (now or utcnow()).replace(second=0, microsecond=0)
