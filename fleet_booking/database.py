"""
PostgreSQL resource and reservation stores

The EXCLUDE constraint on reservations is the authoritative guard against
two overlapping ACTIVE bookings of the same vehicle; the manager's in-memory
conflict check only gives the user a fast, specific answer.
"""
import asyncpg
from typing import Optional, List, Dict, Any, AsyncGenerator
from contextlib import asynccontextmanager

from .config import settings
from .exceptions import ConflictError, RemoteFailure, ReservationNotFoundError
from .logging_config import get_logger
from .models import Reservation, ReservationStatus, Resource
from .stores import ReservationStore, ResourceStore

logger = get_logger(__name__)

SCHEMA = """
CREATE EXTENSION IF NOT EXISTS btree_gist;

CREATE TABLE IF NOT EXISTS vehicles (
    id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name            TEXT NOT NULL,
    license_plate   TEXT,
    fuel_type       TEXT,
    image_url       TEXT,
    next_revision   DATE,
    in_workshop     BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE TABLE IF NOT EXISTS reservations (
    id              UUID PRIMARY KEY,
    vehicle_id      UUID NOT NULL REFERENCES vehicles(id) ON DELETE CASCADE,
    user_id         TEXT NOT NULL,
    user_name       TEXT,
    start_time      TIMESTAMPTZ NOT NULL,
    end_time        TIMESTAMPTZ NOT NULL,
    status          TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE', 'CANCELLED')),
    notes           TEXT,
    is_for_guest    BOOLEAN NOT NULL DEFAULT FALSE,
    guest_name      TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT reservation_interval_valid CHECK (start_time <= end_time),
    CONSTRAINT no_reservation_overlap EXCLUDE USING gist (
        vehicle_id WITH =,
        tstzrange(start_time, end_time, '[)') WITH &&
    ) WHERE (status = 'ACTIVE')
);

CREATE INDEX IF NOT EXISTS idx_reservations_vehicle ON reservations(vehicle_id, start_time);
CREATE INDEX IF NOT EXISTS idx_reservations_guest_name
    ON reservations(guest_name) WHERE is_for_guest AND guest_name IS NOT NULL;
"""

RESERVATION_COLUMNS = """
    id::text AS id, vehicle_id::text AS resource_id, user_id AS requester_id,
    user_name AS requester_name, start_time, end_time, status, notes,
    is_for_guest, guest_name, created_at, updated_at
"""

# Reservation field -> column, for partial updates
UPDATABLE_COLUMNS = {
    "start_time": "start_time",
    "end_time": "end_time",
    "status": "status",
    "notes": "notes",
}


def row_to_reservation(row) -> Reservation:
    return Reservation(**dict(row))


def row_to_resource(row) -> Resource:
    return Resource(
        id=str(row["id"]),
        name=row["name"],
        plate=row["license_plate"],
        fuel_type=row["fuel_type"],
        image_url=row["image_url"],
        next_service_date=row["next_revision"],
        in_workshop=row["in_workshop"],
    )


class DatabasePool(ResourceStore, ReservationStore):
    """
    Async PostgreSQL connection pool serving the vehicle and reservation stores
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.database_url
        self.pool: Optional[asyncpg.Pool] = None
        self._initialized = False

    async def initialize(self, create_schema: bool = True):
        """Create connection pool (and schema)"""
        if self._initialized:
            return

        try:
            logger.info("database_pool_creating")
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                command_timeout=settings.db_command_timeout,
                server_settings={'application_name': 'fleet_booking'}
            )
            if create_schema:
                async with self.pool.acquire() as conn:
                    await conn.execute(SCHEMA)

            self._initialized = True
            logger.info("database_pool_ready", **self.get_stats())

        except (asyncpg.PostgresError, OSError) as e:
            logger.error("database_pool_failed", error=str(e))
            raise RemoteFailure("connect_database", str(e))

    async def close(self):
        """Close connection pool"""
        if self.pool:
            await self.pool.close()
            self._initialized = False
            logger.info("database_pool_closed")

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[asyncpg.Connection, None]:
        if not self.pool:
            raise RemoteFailure("acquire_connection", "Database pool not initialized")
        async with self.pool.acquire() as conn:
            yield conn

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics"""
        if not self.pool:
            return {"status": "not_initialized"}

        return {
            "size": self.pool.get_size(),
            "min_size": self.pool.get_min_size(),
            "max_size": self.pool.get_max_size(),
            "free_connections": self.pool.get_idle_size(),
        }

    async def ping(self) -> bool:
        async with self.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    # ============================================================
    # Vehicle Operations
    # ============================================================

    async def list_resources(self) -> List[Resource]:
        try:
            async with self.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM vehicles ORDER BY name")
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("list_resources", str(e))
        return [row_to_resource(r) for r in rows]

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        try:
            async with self.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM vehicles WHERE id = $1::uuid", resource_id)
        except asyncpg.DataError:
            return None
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("get_resource", str(e))
        return row_to_resource(row) if row else None

    # ============================================================
    # Reservation Operations
    # ============================================================

    async def list_reservations(self, resource_id: Optional[str] = None) -> List[Reservation]:
        query = f"SELECT {RESERVATION_COLUMNS} FROM reservations"
        params = []
        if resource_id is not None:
            query += " WHERE vehicle_id = $1::uuid"
            params.append(resource_id)
        query += " ORDER BY start_time"

        try:
            async with self.acquire() as conn:
                rows = await conn.fetch(query, *params)
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("list_reservations", str(e))
        return [row_to_reservation(r) for r in rows]

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        try:
            async with self.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {RESERVATION_COLUMNS} FROM reservations WHERE id = $1::uuid",
                    reservation_id
                )
        except asyncpg.DataError:
            return None
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("get_reservation", str(e))
        return row_to_reservation(row) if row else None

    async def _raise_overlap(self, conn, resource_id: str, start, end, exclude_id: Optional[str]):
        """Translate an exclusion violation into ConflictError naming the blocking booking"""
        row = await conn.fetchrow(f"""
            SELECT {RESERVATION_COLUMNS}
            FROM reservations
            WHERE vehicle_id = $1::uuid
              AND status = 'ACTIVE'
              AND tstzrange(start_time, end_time, '[)') && tstzrange($2, $3, '[)')
              AND ($4::uuid IS NULL OR id <> $4::uuid)
            ORDER BY start_time
            LIMIT 1
        """, resource_id, start, end, exclude_id)
        if row is None:
            raise RemoteFailure("write_reservation", "overlap detected but blocking booking vanished")
        logger.warning(
            "reservation_exclusion_violation",
            resource_id=resource_id,
            conflicting_id=row["id"]
        )
        raise ConflictError(row_to_reservation(row))

    async def insert(self, reservation: Reservation) -> Reservation:
        try:
            async with self.acquire() as conn:
                try:
                    row = await conn.fetchrow(f"""
                        INSERT INTO reservations (
                            id, vehicle_id, user_id, user_name, start_time, end_time,
                            status, notes, is_for_guest, guest_name
                        ) VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7, $8, $9, $10)
                        RETURNING {RESERVATION_COLUMNS}
                    """,
                        reservation.id,
                        reservation.resource_id,
                        reservation.requester_id,
                        reservation.requester_name,
                        reservation.start_time,
                        reservation.end_time,
                        reservation.status.value,
                        reservation.notes,
                        reservation.is_for_guest,
                        reservation.guest_name,
                    )
                except asyncpg.exceptions.ExclusionViolationError:
                    await self._raise_overlap(
                        conn, reservation.resource_id,
                        reservation.start_time, reservation.end_time, None
                    )
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("insert_reservation", str(e))
        return row_to_reservation(row)

    async def update(self, reservation_id: str, fields: dict) -> Reservation:
        assignments = []
        params: List[Any] = [reservation_id]
        for field, value in fields.items():
            column = UPDATABLE_COLUMNS.get(field)
            if column is None:
                raise ValueError(f"Field not updatable: {field}")
            if isinstance(value, ReservationStatus):
                value = value.value
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")
        assignments.append("updated_at = NOW()")

        try:
            async with self.acquire() as conn:
                try:
                    row = await conn.fetchrow(f"""
                        UPDATE reservations SET {', '.join(assignments)}
                        WHERE id = $1::uuid
                        RETURNING {RESERVATION_COLUMNS}
                    """, *params)
                except asyncpg.exceptions.ExclusionViolationError:
                    current = await conn.fetchrow(
                        "SELECT vehicle_id::text AS resource_id, start_time, end_time "
                        "FROM reservations WHERE id = $1::uuid",
                        reservation_id
                    )
                    await self._raise_overlap(
                        conn,
                        current["resource_id"],
                        fields.get("start_time", current["start_time"]),
                        fields.get("end_time", current["end_time"]),
                        reservation_id
                    )
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("update_reservation", str(e))

        if row is None:
            raise ReservationNotFoundError(reservation_id)
        return row_to_reservation(row)

    async def delete(self, reservation_id: str) -> None:
        try:
            async with self.acquire() as conn:
                await conn.execute("DELETE FROM reservations WHERE id = $1::uuid", reservation_id)
        except (asyncpg.PostgresError, OSError) as e:
            raise RemoteFailure("delete_reservation", str(e))
