"""
Dashboard snapshot cache (stale-while-revalidate)

load() renders the cached snapshot for (user, day) immediately and starts a
background refresh. refresh() recomputes the whole aggregate from the
collaborator stores and replaces the cached snapshot in one write. Every
published snapshot carries a per-key generation number: a refresh that
started before a newer publish (another refresh, an optimistic edit or an
invalidation) is discarded instead of overwriting newer state.

Booking conflict checks never read from here.
"""
import asyncio
from datetime import date, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Union

from .cache import SnapshotStore, oldest_kept_day, snapshot_key
from .config import settings
from .exceptions import BookingException, RemoteFailure
from .intervals import overlaps
from .logging_config import get_logger
from .metrics import (
    optimistic_rollbacks_total,
    snapshot_cache_requests_total,
    snapshot_refresh_duration_seconds,
    snapshot_refresh_failures_total,
)
from .models import (
    ConfirmedMeal, DashboardSnapshot, FleetStats, Interval, MealOrder,
    MealTemplate, MealType, PlannedMeal, ReservationStatus, User
)
from .stores import MaintenanceStore, MealStore, ReservationStore, ResourceStore
from .utils import Clock, day_bounds, local_today, utcnow

logger = get_logger(__name__)

MAINTENANCE_MODULE = "maintenance"


def resolve_daily_meals(
    templates: Iterable[MealTemplate],
    orders: Iterable[MealOrder],
    day: date
) -> Dict[MealType, Optional[Union[ConfirmedMeal, PlannedMeal]]]:
    """
    Meal state per slot: an explicit order wins over the weekly template

    A slot with neither has no service planned (None).
    """
    orders = list(orders)
    templates = [t for t in templates if t.day_of_week == day.weekday()]
    meals = {}
    for meal_type in MealType:
        order = next((o for o in orders if o.meal_type == meal_type), None)
        if order is not None:
            meals[meal_type] = ConfirmedMeal(order=order)
            continue
        template = next((t for t in templates if t.meal_type == meal_type), None)
        meals[meal_type] = PlannedMeal(template=template) if template else None
    return meals


class DashboardService:
    """Per-user, per-day dashboard snapshots with background refresh"""

    def __init__(
        self,
        resources: ResourceStore,
        reservations: ReservationStore,
        meals: MealStore,
        maintenance: MaintenanceStore,
        snapshots: SnapshotStore,
        now: Clock = utcnow,
        tz: Optional[tzinfo] = None,
        retention_days: Optional[int] = None,
        quick_resources: Optional[int] = None,
        agenda_switch_hour: Optional[int] = None
    ):
        self.resources = resources
        self.reservations = reservations
        self.meals = meals
        self.maintenance = maintenance
        self.snapshots = snapshots
        self.now = now
        self.tz = tz or settings.tz
        self.retention_days = retention_days or settings.snapshot_retention_days
        self.quick_resources = quick_resources or settings.dashboard_quick_resources
        self.agenda_switch_hour = (
            agenda_switch_hour if agenda_switch_hour is not None else settings.agenda_switch_hour
        )

        self._views: Dict[str, DashboardSnapshot] = {}
        self._generation: Dict[str, int] = {}
        self._published: Dict[str, int] = {}
        self._refreshing: Dict[str, asyncio.Task] = {}

    # ============================================================
    # Generations
    # ============================================================

    def _next_generation(self, key: str) -> int:
        self._generation[key] = self._generation.get(key, 0) + 1
        return self._generation[key]

    def _publish(self, key: str, snapshot: DashboardSnapshot, generation: int) -> bool:
        if generation < self._published.get(key, 0):
            return False
        self._views[key] = snapshot
        self._published[key] = generation
        return True

    def _day(self, day: Optional[date]) -> date:
        return day or local_today(self.now(), self.tz)

    # ============================================================
    # Reads
    # ============================================================

    def current(self, user_id: str, day: Optional[date] = None) -> Optional[DashboardSnapshot]:
        """In-memory view for the key (last loaded, refreshed or optimistic snapshot)"""
        return self._views.get(snapshot_key(user_id, self._day(day)))

    def pending_refresh(self, user_id: str, day: Optional[date] = None) -> Optional[asyncio.Task]:
        return self._refreshing.get(snapshot_key(user_id, self._day(day)))

    async def load(self, user: User, day: Optional[date] = None) -> Optional[DashboardSnapshot]:
        """
        Cached snapshot for (user, day), possibly stale, plus a background refresh

        Returns None on the first load of the day; the refresh populates it.
        """
        day = self._day(day)
        key = snapshot_key(user.id, day)

        try:
            cached = await self.snapshots.get(key)
        except Exception as e:
            snapshot_cache_requests_total.labels(result="error").inc()
            logger.error("snapshot_load_error", key=key, error=str(e))
            cached = None
        else:
            snapshot_cache_requests_total.labels(result="hit" if cached else "miss").inc()

        if cached is not None and key not in self._views:
            self._views[key] = cached

        self.schedule_refresh(user, day)
        return self._views.get(key)

    # ============================================================
    # Refresh
    # ============================================================

    def schedule_refresh(self, user: User, day: Optional[date] = None) -> asyncio.Task:
        """Start a background refresh, sharing one in flight for the same key"""
        day = self._day(day)
        key = snapshot_key(user.id, day)
        task = self._refreshing.get(key)
        if task is not None and not task.done():
            return task

        task = asyncio.create_task(self._background_refresh(user, day))
        self._refreshing[key] = task
        task.add_done_callback(lambda t, k=key: self._forget_refresh(k, t))
        return task

    def _forget_refresh(self, key: str, task: asyncio.Task):
        if self._refreshing.get(key) is task:
            del self._refreshing[key]

    async def _background_refresh(self, user: User, day: date) -> Optional[DashboardSnapshot]:
        try:
            return await self.refresh(user, day)
        except RemoteFailure:
            # previous snapshot stays visible; failure already logged
            return None

    async def refresh(self, user: User, day: Optional[date] = None) -> DashboardSnapshot:
        """
        Recompute and publish the snapshot for (user, day)

        Raises:
            RemoteFailure: a collaborator store failed; the previous snapshot is kept
        """
        day = self._day(day)
        key = snapshot_key(user.id, day)
        generation = self._next_generation(key)

        try:
            with snapshot_refresh_duration_seconds.time():
                snapshot = await self._compute(user, day)
        except BookingException as e:
            snapshot_refresh_failures_total.inc()
            logger.error("snapshot_refresh_failed", key=key, error=e.message)
            raise RemoteFailure("refresh_dashboard", e.message)
        except Exception as e:
            snapshot_refresh_failures_total.inc()
            logger.error("snapshot_refresh_failed", key=key, error=str(e), exc_info=True)
            raise RemoteFailure("refresh_dashboard", str(e))

        if not self._publish(key, snapshot, generation):
            logger.info("snapshot_refresh_superseded", key=key, generation=generation)
            return self._views.get(key, snapshot)

        today = local_today(self.now(), self.tz)
        if day >= oldest_kept_day(today, self.retention_days):
            await self.snapshots.put(key, snapshot)
        else:
            logger.debug("snapshot_not_persisted", key=key, reason="outside_retention")
        await self.snapshots.prune(user.id, today, self.retention_days)
        logger.info(
            "snapshot_refreshed",
            key=key,
            available=snapshot.stats.available_resources,
            total=snapshot.stats.total_resources,
            bookings=len(snapshot.reservations)
        )
        return snapshot

    async def _compute(self, user: User, day: date) -> DashboardSnapshot:
        now = self.now()
        resources, reservations = await asyncio.gather(
            self.resources.list_resources(),
            self.reservations.list_reservations(),
        )

        in_use = {
            r.resource_id for r in reservations
            if r.status == ReservationStatus.ACTIVE and r.start_time <= now < r.end_time
        }
        bookable = [r for r in resources if not r.in_maintenance and r.id not in in_use]

        local_now = now.astimezone(self.tz)
        view_date = day
        if day == local_now.date() and local_now.hour >= self.agenda_switch_hour:
            view_date = day + timedelta(days=1)
        agenda_start, agenda_end = day_bounds(view_date, self.tz)
        agenda = Interval(start=agenda_start, end=agenda_end)
        agenda_bookings = sorted(
            (r for r in reservations if not r.is_cancelled and overlaps(agenda, r)),
            key=lambda r: r.start_time
        )

        templates, orders = await asyncio.gather(
            self.meals.list_templates(user.id),
            self.meals.list_orders(user.id, day),
        )

        tickets: List = []
        if user.has_access(MAINTENANCE_MODULE):
            tickets = [t for t in await self.maintenance.list_tickets() if t.is_active]

        return DashboardSnapshot(
            user_id=user.id,
            day=day,
            view_date=view_date,
            stats=FleetStats(
                available_resources=len(bookable),
                total_resources=len(resources)
            ),
            quick_resources=bookable[:self.quick_resources],
            reservations=agenda_bookings,
            daily_meals=resolve_daily_meals(templates, orders, day),
            active_tickets=tickets,
            refreshed_at=now,
        )

    # ============================================================
    # Invalidation
    # ============================================================

    async def invalidate(self, user_id: str, day: date) -> None:
        """Drop the snapshot for (user, day); refreshes already in flight are discarded"""
        key = snapshot_key(user_id, day)
        self._published[key] = self._next_generation(key)
        self._views.pop(key, None)
        try:
            await self.snapshots.delete(key)
        except Exception as e:
            logger.error("snapshot_invalidate_error", key=key, error=str(e))
        logger.debug("snapshot_invalidated", key=key)

    # ============================================================
    # Optimistic mutation
    # ============================================================

    async def update_meal(
        self,
        user: User,
        meal_type: MealType,
        option: str,
        is_bag: bool = False,
        day: Optional[date] = None
    ) -> DashboardSnapshot:
        """
        Change a meal order, showing the new value before the store confirms

        On failure the authoritative state is reloaded (no compensating
        write) and RemoteFailure is raised.
        """
        day = self._day(day)
        key = snapshot_key(user.id, day)

        base = self._views.get(key) or await self.snapshots.get(key)
        if base is None:
            base = await self.refresh(user, day)

        meals = dict(base.daily_meals)
        meals[meal_type] = ConfirmedMeal(order=MealOrder(
            user_id=user.id,
            day=day,
            meal_type=meal_type,
            option=option,
            is_bag=is_bag,
            status="confirmed"
        ))
        optimistic = base.model_copy(update={"daily_meals": meals})
        self._publish(key, optimistic, self._next_generation(key))

        try:
            await self.meals.upsert_order(user.id, day, meal_type, option, is_bag)
        except Exception as e:
            optimistic_rollbacks_total.labels(kind="meal").inc()
            logger.warning(
                "meal_update_failed",
                user_id=user.id,
                meal_type=meal_type.value,
                error=str(e)
            )
            try:
                await self.refresh(user, day)
            except RemoteFailure:
                self._publish(key, base, self._next_generation(key))
                logger.error("meal_update_reload_failed", key=key)
            raise RemoteFailure("update_meal", str(e))

        logger.info("meal_updated", user_id=user.id, meal_type=meal_type.value, option=option)
        return self._views.get(key, optimistic)
