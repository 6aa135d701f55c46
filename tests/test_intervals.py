"""
Property-Based Tests for interval overlap and conflict detection

Invariants:
- Overlap is symmetric
- Touching intervals ([a, b) and [b, c)) never overlap
- An interval always overlaps itself
- Cancelled bookings and the excluded booking never conflict
"""
import pytest
from datetime import datetime, timedelta, timezone
from hypothesis import HealthCheck, given, settings, strategies as st, assume

from fleet_booking.exceptions import InvalidIntervalError, ResourceUnavailableError
from fleet_booking.intervals import ensure_bookable, find_conflict, overlaps, validate_interval
from fleet_booking.models import Interval, ReservationStatus, Resource

from conftest import local, make_reservation


# ============================================================
# Test Data Strategies
# ============================================================

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


@st.composite
def instant_strategy(draw):
    """Aware instants on a 5-minute grid over two years"""
    steps = draw(st.integers(min_value=0, max_value=2 * 365 * 24 * 12))
    return BASE + timedelta(minutes=5 * steps)


@st.composite
def interval_strategy(draw):
    """Valid intervals (start < end), 5 minutes to 3 days long"""
    start = draw(instant_strategy())
    duration = draw(st.integers(min_value=1, max_value=3 * 24 * 12))
    return Interval(start=start, end=start + timedelta(minutes=5 * duration))


# ============================================================
# Property Tests
# ============================================================

@pytest.mark.property
@given(a=interval_strategy(), b=interval_strategy())
def test_overlap_is_symmetric(a, b):
    """Property: overlaps(a, b) == overlaps(b, a)"""
    assert overlaps(a, b) == overlaps(b, a)


@pytest.mark.property
@given(a=interval_strategy(), extra=st.integers(min_value=1, max_value=500))
def test_touching_intervals_do_not_overlap(a, extra):
    """Property: an interval starting exactly at another's end is free"""
    b = Interval(start=a.end, end=a.end + timedelta(minutes=extra))
    assert not overlaps(a, b)
    assert not overlaps(b, a)


@pytest.mark.property
@given(a=interval_strategy())
def test_interval_overlaps_itself(a):
    assert overlaps(a, a)


@pytest.mark.property
@given(a=interval_strategy(), b=interval_strategy())
def test_overlap_matches_shared_instant(a, b):
    """Property: overlap iff the later start is before the earlier end"""
    assert overlaps(a, b) == (max(a.start, b.start) < min(a.end, b.end))


@pytest.mark.property
@given(candidate=interval_strategy(), other=interval_strategy())
def test_cancelled_reservations_never_conflict(candidate, other):
    cancelled = make_reservation(
        "car-1", other.start, other.end, status=ReservationStatus.CANCELLED
    )
    assert find_conflict(candidate, [cancelled]) is None


@pytest.mark.property
@given(candidate=interval_strategy(), other=interval_strategy())
@settings(suppress_health_check=[HealthCheck.filter_too_much])
def test_excluded_reservation_never_conflicts(candidate, other):
    assume(overlaps(candidate, other))
    existing = make_reservation("car-1", other.start, other.end, reservation_id="self")
    assert find_conflict(candidate, [existing]) is existing
    assert find_conflict(candidate, [existing], exclude_id="self") is None


# ============================================================
# Example Tests
# ============================================================

class TestValidateInterval:

    def test_valid_interval(self):
        interval = validate_interval(local(9), local(11))
        assert interval.start == local(9)
        assert interval.end == local(11)

    def test_zero_length_rejected(self):
        with pytest.raises(InvalidIntervalError) as exc_info:
            validate_interval(local(9), local(9))
        assert "no duration" in exc_info.value.message

    def test_inverted_rejected(self):
        with pytest.raises(InvalidIntervalError) as exc_info:
            validate_interval(local(11), local(9))
        assert exc_info.value.error_code == "INVALID_INTERVAL"
        assert "after start" in exc_info.value.message

    def test_naive_datetimes_are_utc(self):
        interval = validate_interval(datetime(2025, 3, 10, 8), datetime(2025, 3, 10, 9))
        assert interval.start.tzinfo is timezone.utc


class TestFindConflict:

    def test_returns_first_overlapping_booking(self):
        morning = make_reservation("car-1", local(9), local(11))
        afternoon = make_reservation("car-1", local(14), local(16))
        conflict = find_conflict(Interval(start=local(15), end=local(17)), [morning, afternoon])
        assert conflict is afternoon

    def test_boundary_touch_is_free(self):
        afternoon = make_reservation("car-1", local(14), local(16))
        assert find_conflict(Interval(start=local(16), end=local(18)), [afternoon]) is None
        assert find_conflict(Interval(start=local(12), end=local(14)), [afternoon]) is None

    def test_containment_conflicts(self):
        long_booking = make_reservation("car-1", local(8), local(20))
        assert find_conflict(Interval(start=local(12), end=local(13)), [long_booking]) is long_booking


class TestEnsureBookable:

    def test_workshop_vehicle_rejected(self):
        van = Resource(id="car-3", name="Citroen Berlingo", in_workshop=True)
        with pytest.raises(ResourceUnavailableError) as exc_info:
            ensure_bookable(van)
        assert "Citroen Berlingo" in exc_info.value.message

    def test_maintenance_alias_accepted(self):
        van = Resource.model_validate({"id": "car-3", "name": "Van", "in_maintenance": True})
        assert van.in_maintenance

    def test_available_vehicle_passes(self):
        ensure_bookable(Resource(id="car-1", name="Seat Leon"))
