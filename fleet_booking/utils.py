"""
Utility functions used across the application
Keep these pure functions without side effects
"""
import uuid
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Tuple

Clock = Callable[[], datetime]

# ============================================================
# ID Generation
# ============================================================

def generate_id() -> str:
    """Generate a reservation id"""
    return str(uuid.uuid4())

def generate_request_id() -> str:
    """Generate unique request ID for tracing"""
    return f"req_{uuid.uuid4().hex[:12]}"

# ============================================================
# Time
# ============================================================

def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)

def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def local_today(now: datetime, tz: tzinfo) -> date:
    """Calendar date of an instant in the residence timezone"""
    return ensure_aware(now).astimezone(tz).date()

def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """
    Half-open bounds [day 00:00, next day 00:00) of a local calendar day

    DST days are 23 or 25 hours long, the bounds follow the wall clock.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end

def minutes_between(start: datetime, end: datetime) -> float:
    """Elapsed minutes, computed in UTC so DST shifts count as real time"""
    start = ensure_aware(start).astimezone(timezone.utc)
    end = ensure_aware(end).astimezone(timezone.utc)
    return (end - start).total_seconds() / 60
