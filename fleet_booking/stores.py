"""
Collaborator store interfaces and in-memory implementations

The in-memory stores are the authoritative store for tests and single-process
deployments. Like the PostgreSQL adapter they serialize writes and re-check
the overlap exclusion inside the write, so two racing overlapping inserts
cannot both succeed.
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Iterable, List, Optional

from .exceptions import ConflictError, ReservationNotFoundError
from .intervals import find_conflict
from .logging_config import get_logger
from .models import (
    MaintenanceTicket, MealOrder, MealTemplate, MealType,
    Reservation, ReservationStatus, Resource, User
)
from .utils import generate_id, utcnow

logger = get_logger(__name__)

# ============================================================
# Interfaces
# ============================================================

class ResourceStore(ABC):

    @abstractmethod
    async def list_resources(self) -> List[Resource]:
        ...

    @abstractmethod
    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        ...


class ReservationStore(ABC):

    @abstractmethod
    async def list_reservations(self, resource_id: Optional[str] = None) -> List[Reservation]:
        ...

    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def insert(self, reservation: Reservation) -> Reservation:
        """Persist a reservation; raises ConflictError on an overlapping active interval"""

    @abstractmethod
    async def update(self, reservation_id: str, fields: dict) -> Reservation:
        """Apply a partial update; raises ConflictError on an overlapping active interval"""

    @abstractmethod
    async def delete(self, reservation_id: str) -> None:
        ...


class IdentityProvider(ABC):

    @abstractmethod
    async def current_user(self) -> User:
        ...


class MealStore(ABC):

    @abstractmethod
    async def list_templates(self, user_id: str) -> List[MealTemplate]:
        ...

    @abstractmethod
    async def list_orders(self, user_id: str, day: date) -> List[MealOrder]:
        ...

    @abstractmethod
    async def upsert_order(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        option: str,
        is_bag: bool
    ) -> MealOrder:
        ...


class MaintenanceStore(ABC):

    @abstractmethod
    async def list_tickets(self) -> List[MaintenanceTicket]:
        ...

# ============================================================
# In-memory implementations
# ============================================================

class InMemoryResourceStore(ResourceStore):

    def __init__(self, resources: Iterable[Resource] = ()):
        self._resources: Dict[str, Resource] = {r.id: r for r in resources}

    def add(self, resource: Resource):
        self._resources[resource.id] = resource

    async def list_resources(self) -> List[Resource]:
        return [r.model_copy() for r in self._resources.values()]

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        resource = self._resources.get(resource_id)
        return resource.model_copy() if resource else None


class InMemoryReservationStore(ReservationStore):
    """Reservation store with serialized writes and an overlap exclusion check"""

    def __init__(self, reservations: Iterable[Reservation] = ()):
        self._rows: Dict[str, Reservation] = {r.id: r for r in reservations}
        self._write_lock = asyncio.Lock()

    async def list_reservations(self, resource_id: Optional[str] = None) -> List[Reservation]:
        return [
            r.model_copy(deep=True)
            for r in self._rows.values()
            if resource_id is None or r.resource_id == resource_id
        ]

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        row = self._rows.get(reservation_id)
        return row.model_copy(deep=True) if row else None

    def _check_exclusion(self, row: Reservation):
        if row.status != ReservationStatus.ACTIVE:
            return
        siblings = [r for r in self._rows.values() if r.resource_id == row.resource_id]
        conflicting = find_conflict(row, siblings, exclude_id=row.id)
        if conflicting is not None:
            logger.warning(
                "reservation_exclusion_violation",
                reservation_id=row.id,
                conflicting_id=conflicting.id,
                resource_id=row.resource_id
            )
            raise ConflictError(conflicting.model_copy(deep=True))

    async def insert(self, reservation: Reservation) -> Reservation:
        async with self._write_lock:
            now = utcnow()
            row = reservation.model_copy(
                update={
                    "id": reservation.id or generate_id(),
                    "created_at": now,
                    "updated_at": now,
                },
                deep=True
            )
            self._check_exclusion(row)
            self._rows[row.id] = row
            return row.model_copy(deep=True)

    async def update(self, reservation_id: str, fields: dict) -> Reservation:
        async with self._write_lock:
            current = self._rows.get(reservation_id)
            if current is None:
                raise ReservationNotFoundError(reservation_id)
            row = current.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            if {"start_time", "end_time", "status"} & fields.keys():
                self._check_exclusion(row)
            self._rows[reservation_id] = row
            return row.model_copy(deep=True)

    async def delete(self, reservation_id: str) -> None:
        async with self._write_lock:
            self._rows.pop(reservation_id, None)


class StaticIdentityProvider(IdentityProvider):

    def __init__(self, user: User):
        self.user = user

    async def current_user(self) -> User:
        return self.user


class InMemoryMealStore(MealStore):

    def __init__(
        self,
        templates: Iterable[MealTemplate] = (),
        orders: Iterable[MealOrder] = ()
    ):
        self.templates: List[MealTemplate] = list(templates)
        self.orders: Dict[tuple, MealOrder] = {
            (o.user_id, o.day, o.meal_type): o for o in orders
        }

    async def list_templates(self, user_id: str) -> List[MealTemplate]:
        return [t for t in self.templates if t.user_id == user_id]

    async def list_orders(self, user_id: str, day: date) -> List[MealOrder]:
        return [o for (uid, d, _), o in self.orders.items() if uid == user_id and d == day]

    async def upsert_order(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        option: str,
        is_bag: bool
    ) -> MealOrder:
        key = (user_id, day, meal_type)
        existing = self.orders.get(key)
        order = MealOrder(
            id=existing.id if existing else generate_id(),
            user_id=user_id,
            day=day,
            meal_type=meal_type,
            option=option,
            is_bag=is_bag,
            status="confirmed"
        )
        self.orders[key] = order
        return order


class InMemoryMaintenanceStore(MaintenanceStore):

    def __init__(self, tickets: Iterable[MaintenanceTicket] = ()):
        self.tickets: List[MaintenanceTicket] = list(tickets)

    async def list_tickets(self) -> List[MaintenanceTicket]:
        return list(self.tickets)
