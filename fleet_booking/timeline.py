"""
Timeline projection of reservations onto a day/hour grid

Day bounds are half-open like booking intervals, so a booking ending exactly
at midnight renders on its own day only.
"""
from datetime import date, tzinfo
from typing import Iterable, List, Optional

from .config import settings
from .models import Reservation, Resource, ResourceTimeline, TimelineBlock
from .utils import day_bounds, minutes_between


def project_day(
    reservations: Iterable[Reservation],
    day: date,
    tz: Optional[tzinfo] = None,
    pixels_per_hour: Optional[int] = None,
    min_width_px: Optional[int] = None
) -> List[TimelineBlock]:
    """
    Clip each non-cancelled reservation to the day and compute its geometry

    Args:
        reservations: Bookings of one or more vehicles
        day: Local calendar day to render
        tz: Residence timezone (defaults to settings)
        pixels_per_hour: Width of one hour column
        min_width_px: Floor for rendered width so short bookings stay clickable

    Returns:
        Blocks ordered by offset; bookings with no overlap are dropped
    """
    tz = tz or settings.tz
    px_per_minute = (pixels_per_hour or settings.timeline_pixels_per_hour) / 60
    min_width = min_width_px if min_width_px is not None else settings.timeline_min_width_px
    day_start, day_end = day_bounds(day, tz)

    blocks = []
    for r in reservations:
        if r.is_cancelled:
            continue
        start = max(r.start_time, day_start)
        end = min(r.end_time, day_end)
        if end <= start:
            continue

        offset = minutes_between(day_start, start)
        duration = minutes_between(start, end)
        blocks.append(TimelineBlock(
            reservation_id=r.id,
            resource_id=r.resource_id,
            label=r.display_name,
            offset_minutes=offset,
            duration_minutes=duration,
            left_px=round(offset * px_per_minute, 2),
            width_px=round(max(min_width, duration * px_per_minute), 2),
            continues_before=r.start_time < day_start,
            continues_after=r.end_time > day_end,
        ))

    blocks.sort(key=lambda b: b.offset_minutes)
    return blocks


def project_fleet(
    resources: Iterable[Resource],
    reservations: Iterable[Reservation],
    day: date,
    tz: Optional[tzinfo] = None
) -> List[ResourceTimeline]:
    """One timeline row per vehicle"""
    rows = list(reservations)
    return [
        ResourceTimeline(
            resource=resource,
            blocks=project_day([r for r in rows if r.resource_id == resource.id], day, tz)
        )
        for resource in resources
    ]
