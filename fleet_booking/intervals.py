"""
Interval model and conflict checking

Intervals are half-open [start, end): a booking ending at 16:00 and one
starting at 16:00 do not conflict. This matches the store-side exclusion
constraint tstzrange(start_time, end_time, '[)').
"""
from datetime import datetime
from typing import Iterable, Optional, Union

from .exceptions import InvalidIntervalError, ResourceUnavailableError
from .models import Interval, Reservation, Resource
from .utils import ensure_aware

IntervalLike = Union[Interval, Reservation]


def _bounds(value: IntervalLike):
    if isinstance(value, Reservation):
        return value.start_time, value.end_time
    return value.start, value.end


def overlaps(a: IntervalLike, b: IntervalLike) -> bool:
    """True iff the two half-open intervals share at least one instant"""
    a_start, a_end = _bounds(a)
    b_start, b_end = _bounds(b)
    return a_start < b_end and b_start < a_end


def validate_interval(start: datetime, end: datetime) -> Interval:
    """Reject zero-length and inverted intervals"""
    start = ensure_aware(start)
    end = ensure_aware(end)
    if start >= end:
        raise InvalidIntervalError(start, end)
    return Interval(start=start, end=end)


def ensure_bookable(resource: Resource):
    """Workshop flag hard-disables booking, independent of the timeline"""
    if resource.in_maintenance:
        raise ResourceUnavailableError(
            resource.id,
            reason=f"{resource.name} is in the workshop and cannot be booked"
        )


def find_conflict(
    candidate: IntervalLike,
    existing: Iterable[Reservation],
    exclude_id: Optional[str] = None
) -> Optional[Reservation]:
    """
    First non-cancelled reservation overlapping the candidate

    Args:
        candidate: Requested interval
        existing: Reservations of the same vehicle
        exclude_id: Reservation being rescheduled (never conflicts with itself)

    Returns:
        The conflicting reservation, or None
    """
    for reservation in existing:
        if reservation.is_cancelled:
            continue
        if exclude_id is not None and reservation.id == exclude_id:
            continue
        if overlaps(candidate, reservation):
            return reservation
    return None
