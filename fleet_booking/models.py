"""
Pydantic models for bookings, collaborators and dashboard snapshots
All models in one place for simplicity
"""
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator, model_validator
from typing import Annotated, Optional, List, Dict, Union, Literal
from datetime import date, datetime
from enum import Enum

from .utils import ensure_aware

# ============================================================
# Enums
# ============================================================

class ReservationStatus(str, Enum):
    """Reservation statuses; CANCELLED is terminal"""
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"

class FuelType(str, Enum):
    GASOLINE = "gasoline"
    DIESEL = "diesel"
    ELECTRIC = "electric"

class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"

class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

# ============================================================
# Base Models
# ============================================================

class TimestampMixin(BaseModel):
    """Mixin for timestamp fields"""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ============================================================
# Identity
# ============================================================

class ModulePermission(BaseModel):
    view: bool = False
    admin: bool = False

class User(BaseModel):
    """Acting user as reported by the identity collaborator"""
    id: str
    display_name: str
    role: UserRole = UserRole.USER
    permissions: Optional[Dict[str, ModulePermission]] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def has_access(self, module: str) -> bool:
        """
        Module visibility

        Admins see everything. Users without a permission map are
        unrestricted; once a map exists only listed modules with
        view=True are visible.
        """
        if self.is_admin:
            return True
        if not self.permissions:
            return True
        perms = self.permissions.get(module)
        return bool(perms and perms.view)

# ============================================================
# Vehicle Models
# ============================================================

class Resource(BaseModel):
    """Bookable vehicle (owned by the fleet administration)"""
    id: str
    name: str = Field(..., min_length=1, max_length=100)
    plate: Optional[str] = Field(None, max_length=20)
    fuel_type: Optional[FuelType] = None
    image_url: Optional[str] = None
    next_service_date: Optional[date] = None
    in_workshop: bool = Field(
        default=False,
        validation_alias=AliasChoices("in_workshop", "in_maintenance"),
        description="Hard-disables booking regardless of the timeline"
    )

    @property
    def in_maintenance(self) -> bool:
        return self.in_workshop

# ============================================================
# Reservation Models
# ============================================================

class Interval(BaseModel):
    """Half-open [start, end) time range"""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

class Reservation(TimestampMixin):
    """Complete reservation record"""
    id: str
    resource_id: str
    requester_id: str
    requester_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: ReservationStatus = ReservationStatus.ACTIVE
    notes: Optional[str] = None
    is_for_guest: bool = False
    guest_name: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @property
    def is_cancelled(self) -> bool:
        return self.status == ReservationStatus.CANCELLED

    @property
    def interval(self) -> Interval:
        return Interval(start=self.start_time, end=self.end_time)

    @property
    def display_name(self) -> str:
        """Who the booking is shown for; guests are attributed to the requester"""
        booked_by = self.requester_name or self.requester_id
        if self.is_for_guest and self.guest_name:
            return f"{self.guest_name} (guest, booked by {booked_by})"
        return booked_by

class ReservationCreate(BaseModel):
    """Request body for creating a reservation"""
    resource_id: str
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = Field(None, max_length=2000)
    is_for_guest: bool = False
    guest_name: Optional[str] = Field(None, max_length=120)

    @model_validator(mode="after")
    def validate_guest(self):
        """A guest booking needs the guest's name"""
        if self.is_for_guest and not (self.guest_name or "").strip():
            raise ValueError("guest_name is required when is_for_guest is set")
        if not self.is_for_guest:
            self.guest_name = None
        return self

class ReservationReschedule(BaseModel):
    start_time: datetime
    end_time: datetime

class NoteUpdate(BaseModel):
    notes: str = Field("", max_length=2000)

# ============================================================
# Meal Models
# ============================================================

class MealOrder(BaseModel):
    """Explicit order for one meal of one day"""
    id: Optional[str] = None
    user_id: str
    day: date
    meal_type: MealType
    option: str
    is_bag: bool = False
    status: str = "confirmed"

class MealTemplate(BaseModel):
    """Weekly default for a meal"""
    id: Optional[str] = None
    user_id: str
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    meal_type: MealType
    option: str
    is_bag: bool = False

class ConfirmedMeal(BaseModel):
    kind: Literal["confirmed"] = "confirmed"
    order: MealOrder

class PlannedMeal(BaseModel):
    kind: Literal["planned"] = "planned"
    template: MealTemplate

DailyMeal = Annotated[Union[ConfirmedMeal, PlannedMeal], Field(discriminator="kind")]

class MealUpdate(BaseModel):
    meal_type: MealType
    option: str = Field(..., min_length=1, max_length=40)
    is_bag: bool = False

# ============================================================
# Maintenance Models
# ============================================================

class MaintenanceTicket(BaseModel):
    id: str
    title: str
    status: TicketStatus
    resource_id: Optional[str] = None
    assigned_user_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)

# ============================================================
# Dashboard Models
# ============================================================

class FleetStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    available_resources: int
    total_resources: int

class DashboardSnapshot(BaseModel):
    """
    Point-in-time dashboard aggregate for one user on one calendar day

    Immutable: refreshes and optimistic edits build a new instance and
    replace the cached one wholesale.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    day: date
    view_date: date
    stats: FleetStats
    quick_resources: List[Resource] = []
    reservations: List[Reservation] = []
    daily_meals: Dict[MealType, Optional[DailyMeal]] = {}
    active_tickets: List[MaintenanceTicket] = []
    refreshed_at: datetime

# ============================================================
# Timeline Models
# ============================================================

class TimelineBlock(BaseModel):
    """One reservation clipped to one rendered day"""
    model_config = ConfigDict(frozen=True)

    reservation_id: str
    resource_id: str
    label: str
    offset_minutes: float
    duration_minutes: float
    left_px: float
    width_px: float
    continues_before: bool = False
    continues_after: bool = False

class ResourceTimeline(BaseModel):
    resource: Resource
    blocks: List[TimelineBlock] = []

# ============================================================
# System Models
# ============================================================

class HealthStatus(BaseModel):
    status: str
    version: str
    timestamp: datetime
    checks: Dict[str, str] = {}
