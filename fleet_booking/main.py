"""
Residence Fleet Booking - Main Application
FastAPI application wiring the reservation manager, dashboard cache and stores
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response

from .api import register_exception_handlers, router
from .cache import InMemorySnapshotStore, RedisSnapshotStore, SnapshotStore
from .config import settings
from .dashboard import DashboardService
from .database import DatabasePool
from .logging_config import configure_logging, get_logger
from .metrics import render_metrics
from .middleware import RequestTracingMiddleware
from .models import HealthStatus, User, UserRole
from .reservations import ReservationManager
from .stores import (
    IdentityProvider,
    InMemoryMaintenanceStore,
    InMemoryMealStore,
    InMemoryReservationStore,
    InMemoryResourceStore,
    MaintenanceStore,
    MealStore,
    ReservationStore,
    ResourceStore,
    StaticIdentityProvider,
)
from .utils import Clock, utcnow

logger = get_logger(__name__)


def default_identity() -> IdentityProvider:
    return StaticIdentityProvider(User(
        id=settings.identity_user_id,
        display_name=settings.identity_display_name,
        role=UserRole.ADMIN if settings.identity_is_admin else UserRole.USER
    ))


def wire_services(
    app: FastAPI,
    resources: ResourceStore,
    reservations: ReservationStore,
    snapshots: SnapshotStore,
    meals: MealStore,
    maintenance: MaintenanceStore,
    identity: IdentityProvider,
    now: Clock = utcnow
):
    """Build the dashboard and manager over the given stores and publish them on app.state"""
    dashboard = DashboardService(
        resources=resources,
        reservations=reservations,
        meals=meals,
        maintenance=maintenance,
        snapshots=snapshots,
        now=now
    )
    app.state.resources = resources
    app.state.reservations = reservations
    app.state.snapshots = snapshots
    app.state.identity = identity
    app.state.dashboard = dashboard
    app.state.manager = ReservationManager(
        resources=resources,
        reservations=reservations,
        snapshot_cache=dashboard,
        now=now
    )

# ============================================================
# Application Factory
# ============================================================

def create_app(
    resources: Optional[ResourceStore] = None,
    reservations: Optional[ReservationStore] = None,
    snapshots: Optional[SnapshotStore] = None,
    meals: Optional[MealStore] = None,
    maintenance: Optional[MaintenanceStore] = None,
    identity: Optional[IdentityProvider] = None,
    now: Clock = utcnow
) -> FastAPI:
    """
    Create the FastAPI application

    Stores passed in are used as-is. Otherwise the in-memory stores are wired
    immediately and replaced at startup by PostgreSQL / Redis when
    FLEET_DATABASE_URL / FLEET_REDIS_URL are configured.
    """
    use_database = resources is None and reservations is None and bool(settings.database_url)
    use_redis = snapshots is None and bool(settings.redis_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle (startup/shutdown)
        """
        configure_logging(settings.log_level, settings.json_logs)
        logger.info("app_starting", name=settings.app_name, version=settings.app_version)

        db_pool = None
        redis_store = None
        if use_database:
            db_pool = DatabasePool()
            await db_pool.initialize()
            app.state.db_pool = db_pool
        if use_redis:
            redis_store = RedisSnapshotStore(settings.redis_url)

        if db_pool or redis_store:
            wire_services(
                app,
                resources=db_pool or app.state.resources,
                reservations=db_pool or app.state.reservations,
                snapshots=redis_store or app.state.snapshots,
                meals=app.state.dashboard.meals,
                maintenance=app.state.dashboard.maintenance,
                identity=app.state.identity,
                now=now
            )
            logger.info("stores_wired", database=bool(db_pool), redis=bool(redis_store))

        yield

        logger.info("app_stopping")
        if redis_store:
            await redis_store.close()
        if db_pool:
            await db_pool.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Conflict-free vehicle booking with a cached resident dashboard",
        lifespan=lifespan
    )
    app.add_middleware(RequestTracingMiddleware)

    wire_services(
        app,
        resources=resources or InMemoryResourceStore(),
        reservations=reservations or InMemoryReservationStore(),
        snapshots=snapshots or InMemorySnapshotStore(),
        meals=meals or InMemoryMealStore(),
        maintenance=maintenance or InMemoryMaintenanceStore(),
        identity=identity or default_identity(),
        now=now
    )

    app.include_router(router)
    register_exception_handlers(app)

    # ============================================================
    # System Endpoints
    # ============================================================

    @app.get("/health", response_model=HealthStatus, tags=["System"])
    async def health_check(request: Request):
        """Store connectivity and overall status"""
        checks = {}
        overall_status = "healthy"

        db_pool = getattr(request.app.state, "db_pool", None)
        if db_pool is None:
            checks["database"] = "in-memory"
        else:
            try:
                await db_pool.ping()
                checks["database"] = "healthy"
            except Exception as e:
                checks["database"] = f"unhealthy: {e}"
                overall_status = "degraded"

        snapshots = request.app.state.snapshots
        checks["snapshots"] = "redis" if isinstance(snapshots, RedisSnapshotStore) else "in-memory"

        return HealthStatus(
            status=overall_status,
            version=settings.app_version,
            timestamp=utcnow(),
            checks=checks
        )

    @app.get("/metrics", tags=["System"])
    async def prometheus_metrics():
        """Prometheus metrics in text exposition format"""
        payload, content_type = render_metrics()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app()


def run():
    uvicorn.run(
        "fleet_booking.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
