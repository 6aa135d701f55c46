"""
Reservation lifecycle management

Creates, reschedules, cancels and early-finishes vehicle bookings.
Conflict checking here is the fast path; the reservation store enforces the
same exclusion inside its write as the backstop for racing requests.
"""
from datetime import date, datetime, timedelta, tzinfo
from typing import Awaitable, List, Optional, Protocol

from .config import settings
from .exceptions import (
    AuthorizationError,
    BookingException,
    ConflictError,
    IllegalTransitionError,
    RemoteFailure,
    ReservationNotFoundError,
    ResourceNotFoundError,
    ValidationError,
)
from .guests import get_guest_name_suggestions
from .intervals import ensure_bookable, find_conflict, validate_interval
from .logging_config import get_logger
from .metrics import (
    reservation_attempts_total,
    reservation_conflicts_total,
    reservation_operations_total,
)
from .models import Reservation, ReservationStatus, Resource
from .stores import ReservationStore, ResourceStore
from .utils import Clock, generate_id, local_today, utcnow
from .views import ReservationViews, history

logger = get_logger(__name__)


class SnapshotInvalidator(Protocol):
    async def invalidate(self, user_id: str, day: date) -> None:
        ...


class ReservationManager:
    """
    Lifecycle operations for vehicle reservations

    State machine: ACTIVE is the only non-terminal status, CANCELLED is
    terminal. finish_now shortens an ongoing booking without changing its
    status.
    """

    def __init__(
        self,
        resources: ResourceStore,
        reservations: ReservationStore,
        snapshot_cache: Optional[SnapshotInvalidator] = None,
        now: Clock = utcnow,
        tz: Optional[tzinfo] = None,
        lookahead: Optional[timedelta] = None
    ):
        self.resources = resources
        self.reservations = reservations
        self.snapshot_cache = snapshot_cache
        self.now = now
        self.tz = tz or settings.tz
        self.lookahead = lookahead or timedelta(minutes=settings.upcoming_lookahead_minutes)

    # ============================================================
    # Store access
    # ============================================================

    async def _remote(self, operation: str, call: Awaitable):
        """Await a store call, surfacing driver errors as RemoteFailure"""
        try:
            return await call
        except BookingException:
            raise
        except Exception as e:
            logger.error("store_call_failed", operation=operation, error=str(e), exc_info=True)
            raise RemoteFailure(operation, str(e))

    async def get_resource(self, resource_id: str) -> Resource:
        resource = await self._remote("get_resource", self.resources.get_resource(resource_id))
        if resource is None:
            raise ResourceNotFoundError(resource_id)
        return resource

    async def list_resources(self) -> List[Resource]:
        return await self._remote("list_resources", self.resources.list_resources())

    async def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self._remote(
            "get_reservation", self.reservations.get_reservation(reservation_id)
        )
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def list_reservations(self, resource_id: Optional[str] = None) -> List[Reservation]:
        return await self._remote(
            "list_reservations", self.reservations.list_reservations(resource_id)
        )

    async def _invalidate_snapshot(self, user_id: str, now: datetime):
        if self.snapshot_cache is None:
            return
        await self.snapshot_cache.invalidate(user_id, local_today(now, self.tz))

    # ============================================================
    # Lifecycle
    # ============================================================

    async def create(
        self,
        resource_id: str,
        requester_id: str,
        start: datetime,
        end: datetime,
        notes: Optional[str] = None,
        guest_name: Optional[str] = None,
        requester_name: Optional[str] = None
    ) -> Reservation:
        """
        Book a vehicle

        Raises:
            ResourceNotFoundError: unknown vehicle
            ResourceUnavailableError: vehicle in the workshop
            InvalidIntervalError: start not strictly before end
            ConflictError: overlaps an active booking of the same vehicle
        """
        try:
            resource = await self.get_resource(resource_id)
            ensure_bookable(resource)
            interval = validate_interval(start, end)

            if guest_name is not None:
                guest_name = guest_name.strip()
                if not guest_name:
                    raise ValidationError("guest_name", "guest name must not be empty")

            existing = await self.list_reservations(resource_id)
            conflicting = find_conflict(interval, existing)
            if conflicting is not None:
                raise ConflictError(conflicting)

            candidate = Reservation(
                id=generate_id(),
                resource_id=resource_id,
                requester_id=requester_id,
                requester_name=requester_name,
                start_time=interval.start,
                end_time=interval.end,
                status=ReservationStatus.ACTIVE,
                notes=(notes or "").strip() or None,
                is_for_guest=guest_name is not None,
                guest_name=guest_name,
            )
            created = await self._remote("insert_reservation", self.reservations.insert(candidate))
        except ConflictError as e:
            reservation_conflicts_total.labels(operation="create").inc()
            reservation_attempts_total.labels(operation="create", outcome="conflict").inc()
            logger.info(
                "reservation_conflict",
                resource_id=resource_id,
                requester_id=requester_id,
                conflicting_id=e.conflicting.id
            )
            raise
        except BookingException as e:
            reservation_attempts_total.labels(operation="create", outcome=e.error_code.lower()).inc()
            logger.info(
                "reservation_rejected",
                resource_id=resource_id,
                requester_id=requester_id,
                reason=e.error_code
            )
            raise

        reservation_attempts_total.labels(operation="create", outcome="created").inc()
        logger.info(
            "reservation_created",
            reservation_id=created.id,
            resource_id=resource_id,
            requester_id=requester_id,
            for_guest=created.is_for_guest,
            start_time=created.start_time.isoformat(),
            end_time=created.end_time.isoformat()
        )
        await self._invalidate_snapshot(requester_id, self.now())
        return created

    async def reschedule(
        self,
        reservation_id: str,
        new_start: datetime,
        new_end: datetime
    ) -> Reservation:
        """
        Move an ACTIVE booking to a new interval

        The booking never conflicts with its own previous interval.
        """
        try:
            reservation = await self.get_reservation(reservation_id)
            if reservation.is_cancelled:
                raise IllegalTransitionError(
                    "A cancelled reservation cannot be rescheduled",
                    reservation_id,
                    current_status=reservation.status.value,
                    operation="reschedule"
                )

            resource = await self.get_resource(reservation.resource_id)
            ensure_bookable(resource)
            interval = validate_interval(new_start, new_end)

            existing = await self.list_reservations(reservation.resource_id)
            conflicting = find_conflict(interval, existing, exclude_id=reservation_id)
            if conflicting is not None:
                raise ConflictError(conflicting)

            updated = await self._remote(
                "update_reservation",
                self.reservations.update(
                    reservation_id,
                    {"start_time": interval.start, "end_time": interval.end}
                )
            )
        except ConflictError as e:
            reservation_conflicts_total.labels(operation="reschedule").inc()
            reservation_attempts_total.labels(operation="reschedule", outcome="conflict").inc()
            logger.info(
                "reservation_conflict",
                reservation_id=reservation_id,
                conflicting_id=e.conflicting.id
            )
            raise
        except BookingException as e:
            reservation_attempts_total.labels(operation="reschedule", outcome=e.error_code.lower()).inc()
            logger.info("reschedule_rejected", reservation_id=reservation_id, reason=e.error_code)
            raise

        reservation_attempts_total.labels(operation="reschedule", outcome="updated").inc()
        logger.info(
            "reservation_rescheduled",
            reservation_id=reservation_id,
            previous_start=reservation.start_time.isoformat(),
            previous_end=reservation.end_time.isoformat(),
            start_time=updated.start_time.isoformat(),
            end_time=updated.end_time.isoformat()
        )
        await self._invalidate_snapshot(updated.requester_id, self.now())
        return updated

    async def cancel(self, reservation_id: str, acting_user_id: str) -> Reservation:
        """
        Cancel a reservation (ACTIVE -> CANCELLED)

        Cancelling an already-cancelled reservation succeeds without changes.
        """
        reservation = await self.get_reservation(reservation_id)

        if reservation.is_cancelled:
            reservation_operations_total.labels(operation="cancel", outcome="noop").inc()
            logger.warning(
                "reservation_cancel_noop",
                reservation_id=reservation_id,
                acting_user_id=acting_user_id
            )
            return reservation

        cancelled = await self._remote(
            "update_reservation",
            self.reservations.update(reservation_id, {"status": ReservationStatus.CANCELLED})
        )
        reservation_operations_total.labels(operation="cancel", outcome="cancelled").inc()
        logger.info(
            "reservation_cancelled",
            reservation_id=reservation_id,
            resource_id=reservation.resource_id,
            acting_user_id=acting_user_id,
            on_behalf=acting_user_id != reservation.requester_id
        )
        await self._invalidate_snapshot(reservation.requester_id, self.now())
        return cancelled

    async def finish_now(self, reservation_id: str) -> Reservation:
        """
        End an ongoing booking at the current instant

        Raises:
            IllegalTransitionError: booking cancelled or not started yet
        """
        reservation = await self.get_reservation(reservation_id)
        now = self.now()

        if reservation.is_cancelled:
            reservation_operations_total.labels(operation="finish", outcome="rejected").inc()
            raise IllegalTransitionError(
                "A cancelled reservation cannot be finished",
                reservation_id,
                current_status=reservation.status.value,
                operation="finish"
            )
        if reservation.start_time > now:
            reservation_operations_total.labels(operation="finish", outcome="rejected").inc()
            raise IllegalTransitionError(
                "The reservation has not started yet; cancel it instead",
                reservation_id,
                current_status=reservation.status.value,
                operation="finish"
            )
        if reservation.end_time <= now:
            reservation_operations_total.labels(operation="finish", outcome="noop").inc()
            logger.info("reservation_finish_noop", reservation_id=reservation_id)
            return reservation

        finished = await self._remote(
            "update_reservation",
            self.reservations.update(reservation_id, {"end_time": now})
        )
        reservation_operations_total.labels(operation="finish", outcome="finished").inc()
        logger.info(
            "reservation_finished_early",
            reservation_id=reservation_id,
            scheduled_end=reservation.end_time.isoformat(),
            end_time=now.isoformat()
        )
        await self._invalidate_snapshot(reservation.requester_id, now)
        return finished

    async def set_note(self, reservation_id: str, text: Optional[str], acting_user_id: str) -> Reservation:
        """
        Replace the note; empty text removes it

        Any status may carry a note, but only the requester may edit it.

        Raises:
            AuthorizationError: acting_user_id is not the requester
        """
        reservation = await self.get_reservation(reservation_id)
        if acting_user_id != reservation.requester_id:
            reservation_operations_total.labels(operation="note", outcome="forbidden").inc()
            logger.warning(
                "reservation_note_forbidden",
                reservation_id=reservation_id,
                acting_user_id=acting_user_id
            )
            raise AuthorizationError(reservation_id, acting_user_id, "edit the note of")
        note = (text or "").strip() or None
        updated = await self._remote(
            "update_reservation",
            self.reservations.update(reservation_id, {"notes": note})
        )
        reservation_operations_total.labels(operation="note", outcome="updated").inc()
        logger.info("reservation_note_updated", reservation_id=reservation_id, cleared=note is None)
        return updated

    async def purge_future_reservations(self, resource_id: str) -> int:
        """
        Delete a vehicle's bookings that have not ended

        Called when the vehicle itself is removed from the fleet.
        """
        now = self.now()
        rows = await self.list_reservations(resource_id)
        doomed = [r for r in rows if r.end_time >= now]
        for r in doomed:
            await self._remote("delete_reservation", self.reservations.delete(r.id))
        logger.info("reservations_purged", resource_id=resource_id, deleted=len(doomed))
        return len(doomed)

    # ============================================================
    # Views
    # ============================================================

    async def views(self, resource_id: Optional[str] = None) -> ReservationViews:
        rows = await self.list_reservations(resource_id)
        return ReservationViews.compute(rows, self.now(), self.lookahead)

    async def guest_suggestions(self, requester_id: Optional[str] = None) -> List[str]:
        """Guest names previously booked (by the requester, when given)"""
        return await self._remote(
            "guest_suggestions", get_guest_name_suggestions(self.reservations, requester_id)
        )

    async def history(
        self,
        resource_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[Reservation]:
        rows = await self.list_reservations(resource_id)
        return history(rows, self.tz, from_date, to_date)
