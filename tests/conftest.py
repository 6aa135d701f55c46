"""
Shared fixtures: a controllable clock and in-memory collaborator stores
"""
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from fleet_booking.cache import InMemorySnapshotStore
from fleet_booking.dashboard import DashboardService
from fleet_booking.models import (
    FuelType, MaintenanceTicket, MealTemplate, MealType, ModulePermission,
    Reservation, ReservationStatus, Resource, TicketStatus, User, UserRole
)
from fleet_booking.reservations import ReservationManager
from fleet_booking.stores import (
    InMemoryMaintenanceStore,
    InMemoryMealStore,
    InMemoryReservationStore,
    InMemoryResourceStore,
)

MADRID = ZoneInfo("Europe/Madrid")

# Monday
TODAY = date(2025, 3, 10)


def local(hour: int, minute: int = 0, day: date = TODAY) -> datetime:
    """Aware datetime on a local Madrid wall clock"""
    return datetime.combine(day, time(hour, minute), tzinfo=MADRID)


class FrozenClock:
    """Injectable `now` that tests move by hand"""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def set(self, now: datetime):
        self.current = now


def make_reservation(
    resource_id: str,
    start: datetime,
    end: datetime,
    requester_id: str = "user-1",
    status: ReservationStatus = ReservationStatus.ACTIVE,
    reservation_id: str = None,
    **extra
) -> Reservation:
    return Reservation(
        id=reservation_id or f"res-{resource_id}-{start.isoformat()}",
        resource_id=resource_id,
        requester_id=requester_id,
        start_time=start,
        end_time=end,
        status=status,
        **extra
    )


@pytest.fixture
def clock():
    return FrozenClock(local(10, 30))


@pytest.fixture
def vehicles():
    return [
        Resource(id="car-1", name="Seat Leon", plate="1234ABC", fuel_type=FuelType.DIESEL),
        Resource(id="car-2", name="Renault Zoe", plate="5678DEF", fuel_type=FuelType.ELECTRIC),
        Resource(id="car-3", name="Citroen Berlingo", plate="9012GHI", in_workshop=True),
    ]


@pytest.fixture
def resource_store(vehicles):
    return InMemoryResourceStore(vehicles)


@pytest.fixture
def reservation_store():
    return InMemoryReservationStore()


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def meal_store():
    return InMemoryMealStore(templates=[
        MealTemplate(user_id="user-1", day_of_week=0, meal_type=MealType.LUNCH, option="menu A"),
        MealTemplate(user_id="user-1", day_of_week=0, meal_type=MealType.DINNER, option="soup", is_bag=True),
    ])


@pytest.fixture
def maintenance_store():
    return InMemoryMaintenanceStore([
        MaintenanceTicket(id="t-1", title="Broken mirror", status=TicketStatus.OPEN, resource_id="car-3"),
        MaintenanceTicket(id="t-2", title="Tyre change", status=TicketStatus.CLOSED, resource_id="car-1"),
    ])


@pytest.fixture
def resident():
    return User(id="user-1", display_name="Ana Garcia")


@pytest.fixture
def restricted_resident():
    return User(
        id="user-2",
        display_name="Luis Perez",
        permissions={"maintenance": ModulePermission(view=False)}
    )


@pytest.fixture
def admin():
    return User(id="admin-1", display_name="Marta", role=UserRole.ADMIN)


@pytest.fixture
def dashboard(resource_store, reservation_store, meal_store, maintenance_store, snapshot_store, clock):
    return DashboardService(
        resources=resource_store,
        reservations=reservation_store,
        meals=meal_store,
        maintenance=maintenance_store,
        snapshots=snapshot_store,
        now=clock,
        tz=MADRID,
        retention_days=3,
        quick_resources=5,
        agenda_switch_hour=18
    )


@pytest.fixture
def manager(resource_store, reservation_store, dashboard, clock):
    return ReservationManager(
        resources=resource_store,
        reservations=reservation_store,
        snapshot_cache=dashboard,
        now=clock,
        tz=MADRID,
        lookahead=timedelta(minutes=60)
    )
