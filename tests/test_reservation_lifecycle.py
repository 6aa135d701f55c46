"""
Tests for the reservation lifecycle manager

Coverage:
- Booking scenarios (conflict, boundary touch, reschedule, cancel-then-book,
  finish early, workshop vehicle)
- Self-exclusion on reschedule and cancelled exclusion
- Idempotent cancel
- finish_now monotonicity
- Guest bookings, notes, purge on vehicle removal
- Store-side exclusion backstop for racing creates
- Store failures surfaced as RemoteFailure
"""
import asyncio
from datetime import timedelta

import pytest
from hypothesis import given, settings as hypothesis_settings, strategies as st, HealthCheck

from fleet_booking.exceptions import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    InvalidIntervalError,
    RemoteFailure,
    ReservationNotFoundError,
    ResourceNotFoundError,
    ResourceUnavailableError,
    ValidationError,
)
from fleet_booking.models import ReservationStatus
from fleet_booking.reservations import ReservationManager
from fleet_booking.stores import InMemoryReservationStore
from fleet_booking.views import active_set

from conftest import MADRID, TODAY, FrozenClock, local, make_reservation


class YieldingReservationStore(InMemoryReservationStore):
    """Suspends on every read so concurrent requests interleave between check and write"""

    async def list_reservations(self, resource_id=None):
        rows = await super().list_reservations(resource_id)
        await asyncio.sleep(0)
        return rows


class FailingReservationStore(InMemoryReservationStore):

    async def insert(self, reservation):
        raise ConnectionError("connection reset by peer")


# ============================================================
# Booking scenarios
# ============================================================

class TestCreate:

    @pytest.mark.asyncio
    async def test_overlap_rejected_with_conflicting_booking(self, manager):
        existing = await manager.create("car-1", "user-1", local(14), local(16), requester_name="Ana")

        with pytest.raises(ConflictError) as exc_info:
            await manager.create("car-1", "user-2", local(15), local(17))

        assert exc_info.value.conflicting.id == existing.id
        assert exc_info.value.error_code == "RESERVATION_CONFLICT"
        assert "Ana" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_boundary_touch_accepted(self, manager):
        await manager.create("car-1", "user-1", local(14), local(16))
        later = await manager.create("car-1", "user-2", local(16), local(18))

        assert later.status == ReservationStatus.ACTIVE
        assert later.start_time == local(16)

    @pytest.mark.asyncio
    async def test_other_vehicle_is_independent(self, manager):
        await manager.create("car-1", "user-1", local(14), local(16))
        other = await manager.create("car-2", "user-2", local(14), local(16))
        assert other.resource_id == "car-2"

    @pytest.mark.asyncio
    async def test_workshop_vehicle_rejected_for_any_interval(self, manager):
        with pytest.raises(ResourceUnavailableError):
            await manager.create("car-3", "user-1", local(14), local(16))
        with pytest.raises(ResourceUnavailableError):
            await manager.create("car-3", "user-1", local(16), local(14))

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected_before_conflict_check(self, manager):
        await manager.create("car-1", "user-1", local(14), local(16))
        with pytest.raises(InvalidIntervalError):
            await manager.create("car-1", "user-2", local(15), local(15))
        with pytest.raises(InvalidIntervalError):
            await manager.create("car-1", "user-2", local(17), local(15))

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, manager):
        with pytest.raises(ResourceNotFoundError):
            await manager.create("car-99", "user-1", local(14), local(16))

    @pytest.mark.asyncio
    async def test_notes_are_trimmed(self, manager):
        created = await manager.create("car-1", "user-1", local(14), local(16), notes="  airport  ")
        assert created.notes == "airport"

    @pytest.mark.asyncio
    async def test_create_invalidates_requester_snapshot(self, manager, dashboard, snapshot_store, resident):
        await dashboard.refresh(resident, TODAY)
        assert dashboard.current("user-1", TODAY) is not None

        await manager.create("car-1", "user-1", local(14), local(16))

        assert dashboard.current("user-1", TODAY) is None
        assert await snapshot_store.get("dashboard:user-1:2025-03-10") is None


class TestGuestBookings:

    @pytest.mark.asyncio
    async def test_guest_booking_consumes_vehicle_interval(self, manager):
        guest = await manager.create(
            "car-1", "user-1", local(14), local(16),
            guest_name=" Pablo ", requester_name="Ana"
        )
        assert guest.is_for_guest
        assert guest.guest_name == "Pablo"
        assert guest.requester_id == "user-1"
        assert guest.display_name == "Pablo (guest, booked by Ana)"

        with pytest.raises(ConflictError):
            await manager.create("car-1", "user-2", local(15), local(17))

    @pytest.mark.asyncio
    async def test_blank_guest_name_rejected(self, manager):
        with pytest.raises(ValidationError):
            await manager.create("car-1", "user-1", local(14), local(16), guest_name="   ")

    @pytest.mark.asyncio
    async def test_guest_suggestions_for_requester(self, manager, clock):
        await manager.create("car-1", "user-1", local(12), local(13), guest_name="Pablo")
        await manager.create("car-1", "user-1", local(14), local(15), guest_name="Lucia")
        await manager.create("car-2", "user-2", local(14), local(15), guest_name="Jorge")

        assert await manager.guest_suggestions("user-1") == ["Lucia", "Pablo"]

# ============================================================
# Reschedule
# ============================================================

class TestReschedule:

    @pytest.mark.asyncio
    async def test_overlapping_own_previous_interval_accepted(self, manager):
        x = await manager.create("car-1", "user-1", local(10), local(12))

        moved = await manager.reschedule(x.id, local(11), local(13))

        assert moved.start_time == local(11)
        assert moved.end_time == local(13)
        assert (await manager.get_reservation(x.id)).end_time == local(13)

    @pytest.mark.asyncio
    async def test_conflict_with_other_booking(self, manager):
        x = await manager.create("car-1", "user-1", local(10), local(12))
        other = await manager.create("car-1", "user-2", local(13), local(15))

        with pytest.raises(ConflictError) as exc_info:
            await manager.reschedule(x.id, local(11), local(14))

        assert exc_info.value.conflicting.id == other.id
        unchanged = await manager.get_reservation(x.id)
        assert unchanged.end_time == local(12)

    @pytest.mark.asyncio
    async def test_cancelled_reservation_cannot_be_rescheduled(self, manager):
        x = await manager.create("car-1", "user-1", local(10), local(12))
        await manager.cancel(x.id, "user-1")

        with pytest.raises(IllegalTransitionError) as exc_info:
            await manager.reschedule(x.id, local(13), local(14))
        assert exc_info.value.current_status == "CANCELLED"
        assert exc_info.value.operation == "reschedule"

    @pytest.mark.asyncio
    async def test_invalid_interval(self, manager):
        x = await manager.create("car-1", "user-1", local(10), local(12))
        with pytest.raises(InvalidIntervalError):
            await manager.reschedule(x.id, local(12), local(12))

    @pytest.mark.asyncio
    async def test_unknown_reservation(self, manager):
        with pytest.raises(ReservationNotFoundError):
            await manager.reschedule("nope", local(12), local(13))

    @pytest.mark.property
    @given(
        shift=st.integers(min_value=-23, max_value=23),
        length=st.integers(min_value=1, max_value=48)
    )
    @hypothesis_settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_self_exclusion_property(self, resource_store, shift, length):
        """Property: moving a booking anywhere only its old interval occupies always succeeds"""

        async def scenario():
            manager = ReservationManager(
                resource_store, InMemoryReservationStore(), now=FrozenClock(local(8)), tz=MADRID
            )
            original = await manager.create("car-1", "user-1", local(12), local(14))
            start = local(12) + timedelta(minutes=5 * shift)
            moved = await manager.reschedule(original.id, start, start + timedelta(minutes=5 * length))
            assert moved.id == original.id
            assert moved.start_time == start

        asyncio.run(scenario())

# ============================================================
# Cancel
# ============================================================

class TestCancel:

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_interval(self, manager):
        y = await manager.create("car-1", "user-1", local(9), local(11))
        await manager.cancel(y.id, "user-1")

        replacement = await manager.create("car-1", "user-2", local(9, 30), local(10, 30))
        assert replacement.status == ReservationStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, manager):
        y = await manager.create("car-1", "user-1", local(9), local(11))
        neighbour = await manager.create("car-1", "user-2", local(11), local(12))

        first = await manager.cancel(y.id, "user-1")
        second = await manager.cancel(y.id, "admin-1")

        assert first.status == ReservationStatus.CANCELLED
        assert second.status == ReservationStatus.CANCELLED
        assert second.updated_at == first.updated_at
        assert (await manager.get_reservation(neighbour.id)).status == ReservationStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancelled_reservation_kept_for_history(self, manager):
        y = await manager.create("car-1", "user-1", local(9), local(11))
        await manager.cancel(y.id, "user-1")

        history = await manager.history("car-1")
        assert [r.id for r in history] == [y.id]

    @pytest.mark.asyncio
    async def test_unknown_reservation(self, manager):
        with pytest.raises(ReservationNotFoundError):
            await manager.cancel("nope", "user-1")

# ============================================================
# Finish early
# ============================================================

class TestFinishNow:

    @pytest.mark.asyncio
    async def test_ongoing_booking_ends_now(self, manager, clock):
        z = await manager.create("car-1", "user-1", local(9), local(12))

        finished = await manager.finish_now(z.id)

        assert finished.end_time == clock()
        assert finished.end_time == local(10, 30)
        assert finished.status == ReservationStatus.ACTIVE
        assert finished.id not in [r.id for r in active_set([finished], clock())]

    @pytest.mark.asyncio
    async def test_frees_rest_of_interval(self, manager):
        z = await manager.create("car-1", "user-1", local(9), local(12))
        await manager.finish_now(z.id)

        follow_up = await manager.create("car-1", "user-2", local(10, 30), local(12))
        assert follow_up.start_time == local(10, 30)

    @pytest.mark.asyncio
    async def test_future_booking_rejected(self, manager):
        later = await manager.create("car-1", "user-1", local(15), local(16))
        with pytest.raises(IllegalTransitionError) as exc_info:
            await manager.finish_now(later.id)
        assert exc_info.value.operation == "finish"

    @pytest.mark.asyncio
    async def test_cancelled_booking_rejected(self, manager):
        z = await manager.create("car-1", "user-1", local(9), local(12))
        await manager.cancel(z.id, "user-1")
        with pytest.raises(IllegalTransitionError):
            await manager.finish_now(z.id)

    @pytest.mark.asyncio
    async def test_already_ended_is_noop(self, manager):
        done = await manager.create("car-1", "user-1", local(8), local(9))
        unchanged = await manager.finish_now(done.id)
        assert unchanged.end_time == local(9)

    @pytest.mark.asyncio
    async def test_started_exactly_now_never_inverts(self, manager, clock):
        z = await manager.create("car-1", "user-1", local(10, 30), local(11))
        finished = await manager.finish_now(z.id)
        assert finished.end_time >= finished.start_time

# ============================================================
# Notes and purge
# ============================================================

class TestNotes:

    @pytest.mark.asyncio
    async def test_set_and_clear_note(self, manager):
        r = await manager.create("car-1", "user-1", local(14), local(16))

        noted = await manager.set_note(r.id, "child seat", "user-1")
        assert noted.notes == "child seat"

        cleared = await manager.set_note(r.id, "", "user-1")
        assert cleared.notes is None

    @pytest.mark.asyncio
    async def test_note_allowed_on_cancelled(self, manager):
        r = await manager.create("car-1", "user-1", local(14), local(16))
        await manager.cancel(r.id, "user-1")
        noted = await manager.set_note(r.id, "trip postponed", "user-1")
        assert noted.notes == "trip postponed"
        assert noted.status == ReservationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_only_requester_edits_note(self, manager, reservation_store):
        r = await manager.create("car-1", "user-1", local(14), local(16), notes="airport")

        with pytest.raises(AuthorizationError) as exc_info:
            await manager.set_note(r.id, "overwritten by someone else", "user-2")

        assert exc_info.value.status_code == 403
        assert (await reservation_store.get_reservation(r.id)).notes == "airport"


class TestPurge:

    @pytest.mark.asyncio
    async def test_purge_keeps_finished_bookings(self, manager):
        past = await manager.create("car-1", "user-1", local(7), local(8))
        ongoing = await manager.create("car-1", "user-1", local(10), local(11))
        future = await manager.create("car-1", "user-2", local(15), local(16))
        other_car = await manager.create("car-2", "user-2", local(15), local(16))

        deleted = await manager.purge_future_reservations("car-1")

        assert deleted == 2
        remaining = {r.id for r in await manager.list_reservations()}
        assert remaining == {past.id, other_car.id}
        assert ongoing.id not in remaining
        assert future.id not in remaining

# ============================================================
# Store-side exclusion
# ============================================================

class TestStoreExclusion:

    @pytest.mark.asyncio
    async def test_store_rejects_overlapping_insert(self):
        store = InMemoryReservationStore()
        await store.insert(make_reservation("car-1", local(14), local(16), reservation_id="a"))

        with pytest.raises(ConflictError) as exc_info:
            await store.insert(make_reservation("car-1", local(15), local(17), reservation_id="b"))
        assert exc_info.value.conflicting.id == "a"

    @pytest.mark.asyncio
    async def test_store_rejects_reactivating_taken_interval(self):
        store = InMemoryReservationStore()
        await store.insert(make_reservation(
            "car-1", local(14), local(16), reservation_id="a", status=ReservationStatus.CANCELLED
        ))
        await store.insert(make_reservation("car-1", local(14), local(16), reservation_id="b"))

        with pytest.raises(ConflictError):
            await store.update("a", {"status": ReservationStatus.ACTIVE})

    @pytest.mark.asyncio
    async def test_racing_creates_only_one_wins(self, resource_store, clock):
        manager = ReservationManager(
            resource_store, YieldingReservationStore(), now=clock, tz=MADRID
        )

        results = await asyncio.gather(
            manager.create("car-1", "user-1", local(14), local(16)),
            manager.create("car-1", "user-2", local(15), local(17)),
            return_exceptions=True
        )

        created = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert len(await manager.list_reservations("car-1")) == 1

# ============================================================
# Collaborator failures
# ============================================================

class TestRemoteFailure:

    @pytest.mark.asyncio
    async def test_driver_error_becomes_remote_failure(self, resource_store, clock):
        manager = ReservationManager(resource_store, FailingReservationStore(), now=clock, tz=MADRID)

        with pytest.raises(RemoteFailure) as exc_info:
            await manager.create("car-1", "user-1", local(14), local(16))

        assert exc_info.value.status_code == 503
        assert exc_info.value.operation == "insert_reservation"
