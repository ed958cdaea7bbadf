"""
Redis connection manager for the dub tracker.
Holds the persisted season snapshots and the per-job run locks.
"""
from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
SEASON_SNAPSHOT_KEY = "snap:season:{year}:{season}"
DUB_VERDICT_KEY = "snap:dub:{entity_id}"
JOB_LOCK_KEY = "lock:job:{job_type}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


def season_snapshot_key(season: str, year: int) -> str:
    return _fmt(SEASON_SNAPSHOT_KEY, season=season.lower(), year=year)


def dub_verdict_key(entity_id: int) -> str:
    return _fmt(DUB_VERDICT_KEY, entity_id=entity_id)


class RedisManager:
    """Async Redis pool with snapshot and lock helpers."""

    def __init__(self, settings: Settings | None = None, client: Optional[Redis] = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = client

    async def connect(self) -> None:
        """Initialize the connection pool."""
        if self._pool is not None:
            return
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Snapshot helpers ────────────────────────────────────────────────
    async def set_snapshot(self, key: str, data: str, ttl_s: int) -> None:
        """Store a JSON snapshot with a retention TTL."""
        await self.client.set(key, data, ex=ttl_s)

    async def get_snapshot(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def delete_snapshot(self, key: str) -> None:
        await self.client.delete(key)

    # ── Job locks ───────────────────────────────────────────────────────

    # Lua script: atomically delete only if we hold the lock
    _RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("del", KEYS[1])
    return 1
end
return 0
"""

    async def try_acquire_job_lock(self, job_type: str, owner: str, ttl_s: int) -> bool:
        """SET NX on the job's lock key. False means another run holds it."""
        key = _fmt(JOB_LOCK_KEY, job_type=job_type)
        return bool(await self.client.set(key, owner, nx=True, ex=ttl_s))

    async def release_job_lock(self, job_type: str, owner: str) -> bool:
        """Atomically release the lock only if `owner` still holds it."""
        key = _fmt(JOB_LOCK_KEY, job_type=job_type)
        result = await self.client.eval(self._RELEASE_LOCK_SCRIPT, 1, key, owner)
        return bool(result)
