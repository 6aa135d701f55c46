"""
Guest bookings

A guest is a free-text label on a reservation, not an entity: it has no
identity, no conflict set of its own and is never validated against a
registry. Suggestions only feed the booking form's autocomplete.
"""
from typing import Iterable, List, Optional

from .models import Reservation
from .stores import ReservationStore


def guest_names(reservations: Iterable[Reservation], requester_id: Optional[str] = None) -> List[str]:
    """
    Distinct guest names, most recently booked first

    Names differing only in case are the same guest; the spelling of the
    most recent booking wins.
    """
    guests = [
        r for r in reservations
        if r.is_for_guest and r.guest_name and r.guest_name.strip()
        and (requester_id is None or r.requester_id == requester_id)
    ]
    guests.sort(key=lambda r: r.start_time, reverse=True)

    seen = set()
    names = []
    for r in guests:
        name = r.guest_name.strip()
        if name.casefold() in seen:
            continue
        seen.add(name.casefold())
        names.append(name)
    return names


async def get_guest_name_suggestions(
    store: ReservationStore,
    requester_id: Optional[str] = None
) -> List[str]:
    """Previously used guest names for autocomplete"""
    return guest_names(await store.list_reservations(), requester_id)


def filter_suggestions(suggestions: Iterable[str], typed: str) -> List[str]:
    """Case-insensitive substring match; nothing typed shows nothing"""
    needle = typed.strip().casefold()
    if not needle:
        return []
    return [s for s in suggestions if needle in s.casefold()]
