"""
Dashboard snapshot stores

Snapshots are keyed by user and local calendar day and are always written
as one whole value, so a reader sees either the previous snapshot or the new
one, never a mix. Old days are pruned to a bounded retention window.
"""
import json
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from .config import settings
from .logging_config import get_logger
from .models import DashboardSnapshot

logger = get_logger(__name__)

KEY_PREFIX = "dashboard"


def snapshot_key(user_id: str, day: date) -> str:
    """dashboard:{user_id}:{YYYY-MM-DD}"""
    return f"{KEY_PREFIX}:{user_id}:{day.isoformat()}"


def user_prefix(user_id: str) -> str:
    return f"{KEY_PREFIX}:{user_id}:"


def key_day(key: str) -> Optional[date]:
    """Calendar day encoded in a snapshot key, None for foreign keys"""
    try:
        return date.fromisoformat(key.rsplit(":", 1)[1])
    except (IndexError, ValueError):
        return None


def oldest_kept_day(today: date, retention_days: int) -> date:
    """First day inside the retention window, today included"""
    return today - timedelta(days=retention_days - 1)


class SnapshotStore(ABC):
    """Local key-value store for dashboard snapshots"""

    @abstractmethod
    async def get(self, key: str) -> Optional[DashboardSnapshot]:
        ...

    @abstractmethod
    async def put(self, key: str, snapshot: DashboardSnapshot) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self, prefix: str) -> List[str]:
        ...

    async def prune(self, user_id: str, today: date, retention_days: int) -> int:
        """
        Delete a user's snapshots older than the retention window

        Args:
            user_id: Owner of the snapshots
            today: Current local day (kept)
            retention_days: Number of most recent days kept, today included

        Returns:
            Number of deleted keys
        """
        oldest_kept = oldest_kept_day(today, retention_days)
        deleted = 0
        for key in await self.keys(user_prefix(user_id)):
            day = key_day(key)
            if day is not None and day < oldest_kept:
                await self.delete(key)
                deleted += 1
        if deleted:
            logger.info("snapshot_pruned", user_id=user_id, keys_deleted=deleted)
        return deleted


class InMemorySnapshotStore(SnapshotStore):
    """Process-local snapshot store"""

    def __init__(self):
        self._entries: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[DashboardSnapshot]:
        raw = self._entries.get(key)
        if raw is None:
            return None
        return DashboardSnapshot.model_validate_json(raw)

    async def put(self, key: str, snapshot: DashboardSnapshot) -> None:
        self._entries[key] = snapshot.model_dump_json()

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def keys(self, prefix: str) -> List[str]:
        return [k for k in self._entries if k.startswith(prefix)]


class RedisSnapshotStore(SnapshotStore):
    """
    Redis-backed snapshot store

    Each snapshot is a single JSON string written with SETEX, which also
    bounds its lifetime to the retention window.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None, retention_days: Optional[int] = None):
        """
        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            client: Pre-built redis.asyncio client (tests, shared pools)
            retention_days: TTL of each snapshot in days
        """
        if client is None:
            client = redis.from_url(redis_url or settings.redis_url, decode_responses=True)
        self.redis = client
        self.ttl = (retention_days or settings.snapshot_retention_days) * 86400

    async def get(self, key: str) -> Optional[DashboardSnapshot]:
        try:
            cached = await self.redis.get(key)
        except Exception as e:
            logger.error("snapshot_get_error", key=key, error=str(e))
            return None
        if not cached:
            return None
        try:
            return DashboardSnapshot.model_validate_json(cached)
        except (PydanticValidationError, json.JSONDecodeError) as e:
            logger.warning("snapshot_parse_error", key=key, error=str(e))
            return None

    async def put(self, key: str, snapshot: DashboardSnapshot) -> None:
        try:
            await self.redis.setex(key, self.ttl, snapshot.model_dump_json())
            logger.debug("snapshot_set", key=key, ttl=self.ttl)
        except Exception as e:
            logger.error("snapshot_set_error", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        try:
            deleted = await self.redis.delete(key)
            logger.debug("snapshot_delete", key=key, deleted=deleted)
        except Exception as e:
            logger.error("snapshot_delete_error", key=key, error=str(e))

    async def keys(self, prefix: str) -> List[str]:
        keys = []
        try:
            async for key in self.redis.scan_iter(match=f"{prefix}*"):
                keys.append(key)
        except Exception as e:
            logger.error("snapshot_scan_error", prefix=prefix, error=str(e))
        return keys

    async def close(self):
        await self.redis.aclose()
