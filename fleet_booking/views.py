"""
Derived reservation views

All classifications in one ReservationViews are computed against the same
`now`, so a booking can never show up as both current and past in one render.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional

from .models import Reservation, ReservationStatus
from .utils import day_bounds, ensure_aware


def current_reservation(reservations: Iterable[Reservation], now: datetime) -> Optional[Reservation]:
    """ACTIVE reservation whose interval contains now"""
    for r in reservations:
        if r.status == ReservationStatus.ACTIVE and r.start_time <= now < r.end_time:
            return r
    return None


def active_set(reservations: Iterable[Reservation], now: datetime) -> List[Reservation]:
    """Non-cancelled reservations that have not ended, earliest first"""
    return sorted(
        (r for r in reservations if not r.is_cancelled and r.end_time > now),
        key=lambda r: r.start_time
    )


def past_set(reservations: Iterable[Reservation], now: datetime) -> List[Reservation]:
    """Ended or cancelled reservations, most recent first"""
    return sorted(
        (r for r in reservations if r.is_cancelled or r.end_time <= now),
        key=lambda r: r.start_time,
        reverse=True
    )


def upcoming_soon(
    reservations: Iterable[Reservation],
    now: datetime,
    lookahead: timedelta
) -> Optional[Reservation]:
    """Earliest not-yet-started active booking starting within the lookahead window"""
    for r in active_set(reservations, now):
        if r.start_time > now:
            return r if r.start_time - now <= lookahead else None
    return None


def history(
    reservations: Iterable[Reservation],
    tz: tzinfo,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None
) -> List[Reservation]:
    """All reservations starting within [from_date, to_date] local days, most recent first"""
    lower = day_bounds(from_date, tz)[0] if from_date else None
    upper = day_bounds(to_date, tz)[1] if to_date else None
    selected = [
        r for r in reservations
        if (lower is None or r.start_time >= lower)
        and (upper is None or r.start_time < upper)
    ]
    return sorted(selected, key=lambda r: r.start_time, reverse=True)


@dataclass
class ReservationViews:
    """Snapshot of every derived view for one evaluation pass"""
    now: datetime
    current: Optional[Reservation] = None
    upcoming: Optional[Reservation] = None
    active: List[Reservation] = field(default_factory=list)
    past: List[Reservation] = field(default_factory=list)

    @classmethod
    def compute(
        cls,
        reservations: Iterable[Reservation],
        now: datetime,
        lookahead: timedelta = timedelta(minutes=60)
    ) -> "ReservationViews":
        now = ensure_aware(now)
        rows = list(reservations)
        return cls(
            now=now,
            current=current_reservation(rows, now),
            upcoming=upcoming_soon(rows, now, lookahead),
            active=active_set(rows, now),
            past=past_set(rows, now),
        )

    def to_dict(self) -> dict:
        return {
            "now": self.now.isoformat(),
            "current": self.current.model_dump(mode="json") if self.current else None,
            "upcoming": self.upcoming.model_dump(mode="json") if self.upcoming else None,
            "active": [r.model_dump(mode="json") for r in self.active],
            "past": [r.model_dump(mode="json") for r in self.past],
        }
