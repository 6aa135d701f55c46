"""
HTTP API for reservations, timelines and the dashboard

The acting user always comes from the identity collaborator; request
bodies never carry a requester id.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .dashboard import DashboardService
from .exceptions import BookingException
from .guests import filter_suggestions
from .logging_config import get_logger
from .models import (
    DashboardSnapshot, MealUpdate, NoteUpdate, Reservation, ReservationCreate,
    ReservationReschedule, ResourceTimeline, TimelineBlock, User
)
from .reservations import ReservationManager
from .timeline import project_day, project_fleet
from .utils import local_today

router = APIRouter(prefix="/api/v1", tags=["reservations"])
logger = get_logger(__name__)

# ============================================================
# Dependencies
# ============================================================

def get_manager(request: Request) -> ReservationManager:
    return request.app.state.manager


def get_dashboard(request: Request) -> DashboardService:
    return request.app.state.dashboard


async def get_current_user(request: Request) -> User:
    return await request.app.state.identity.current_user()


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Administrative actions (finish early)"""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required"
        )
    return user

# ============================================================
# Reservations
# ============================================================

@router.get("/resources/{resource_id}/reservations", response_model=Dict[str, Any])
async def reservation_views(
    resource_id: str,
    manager: ReservationManager = Depends(get_manager)
):
    """
    Current, upcoming, active and past bookings of one vehicle

    All four views are evaluated against the same instant.
    """
    await manager.get_resource(resource_id)
    views = await manager.views(resource_id)
    return views.to_dict()


@router.get("/resources/{resource_id}/history", response_model=List[Reservation])
async def reservation_history(
    resource_id: str,
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
    manager: ReservationManager = Depends(get_manager)
):
    await manager.get_resource(resource_id)
    return await manager.history(resource_id, from_date, to_date)


@router.post("/reservations", response_model=Reservation, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    body: ReservationCreate,
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_manager)
):
    return await manager.create(
        resource_id=body.resource_id,
        requester_id=user.id,
        start=body.start_time,
        end=body.end_time,
        notes=body.notes,
        guest_name=body.guest_name if body.is_for_guest else None,
        requester_name=user.display_name
    )


@router.patch("/reservations/{reservation_id}", response_model=Reservation)
async def reschedule_reservation(
    reservation_id: str,
    body: ReservationReschedule,
    manager: ReservationManager = Depends(get_manager)
):
    return await manager.reschedule(reservation_id, body.start_time, body.end_time)


@router.post("/reservations/{reservation_id}/cancel", response_model=Reservation)
async def cancel_reservation(
    reservation_id: str,
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_manager)
):
    return await manager.cancel(reservation_id, user.id)


@router.post("/reservations/{reservation_id}/finish", response_model=Reservation)
async def finish_reservation(
    reservation_id: str,
    admin: User = Depends(require_admin),
    manager: ReservationManager = Depends(get_manager)
):
    logger.info("finish_requested", reservation_id=reservation_id, admin_id=admin.id)
    return await manager.finish_now(reservation_id)


@router.put("/reservations/{reservation_id}/note", response_model=Reservation)
async def update_note(
    reservation_id: str,
    body: NoteUpdate,
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_manager)
):
    return await manager.set_note(reservation_id, body.notes, user.id)


@router.get("/guests/suggestions", response_model=List[str])
async def guest_suggestions(
    q: str = Query("", max_length=120),
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_manager)
):
    """Previously used guest names matching what the user has typed"""
    return filter_suggestions(await manager.guest_suggestions(user.id), q)

# ============================================================
# Timeline
# ============================================================

@router.get("/resources/{resource_id}/timeline", response_model=List[TimelineBlock])
async def resource_timeline(
    resource_id: str,
    day: Optional[date] = None,
    manager: ReservationManager = Depends(get_manager)
):
    await manager.get_resource(resource_id)
    day = day or local_today(manager.now(), manager.tz)
    return project_day(await manager.list_reservations(resource_id), day, manager.tz)


@router.get("/timeline", response_model=List[ResourceTimeline])
async def fleet_timeline(
    day: Optional[date] = None,
    manager: ReservationManager = Depends(get_manager)
):
    """One row per vehicle for the day view"""
    day = day or local_today(manager.now(), manager.tz)
    resources = await manager.list_resources()
    return project_fleet(resources, await manager.list_reservations(), day, manager.tz)

# ============================================================
# Dashboard
# ============================================================

@router.get("/dashboard", tags=["dashboard"])
async def get_dashboard_snapshot(
    day: Optional[date] = None,
    user: User = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard)
):
    """
    Cached dashboard for the user, possibly stale

    A refresh always runs in the background; `snapshot` is null on the
    first visit of the day until that refresh lands.
    """
    snapshot = await dashboard.load(user, day)
    return {
        "snapshot": snapshot.model_dump(mode="json") if snapshot else None,
        "refreshing": True
    }


@router.post("/dashboard/meals", response_model=DashboardSnapshot, tags=["dashboard"])
async def update_meal(
    body: MealUpdate,
    day: Optional[date] = None,
    user: User = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard)
):
    return await dashboard.update_meal(user, body.meal_type, body.option, body.is_bag, day)

# ============================================================
# Exception Handlers
# ============================================================

async def booking_exception_handler(request: Request, exc: BookingException):
    """Map domain errors to their HTTP status with the error payload"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": jsonable_errors(exc)
        }
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred"
        }
    )


def jsonable_errors(exc: RequestValidationError) -> List[dict]:
    # ctx may hold the raw ValueError raised by a model validator
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(BookingException, booking_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
