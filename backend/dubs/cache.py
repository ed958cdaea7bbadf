"""
Two-tier reconciliation cache.

MemoryCache: in-process verdict memo with a fixed short TTL.
SnapshotCache: Redis-backed verdict and season-bucket snapshots whose freshness
depends on how long ago the subject's season ended.
Redis keys are kept for the retention period; freshness is tracked in the envelope.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Iterable, Optional, TypeVar

from redis.exceptions import RedisError

from shared.models.domain import DUB_FIELDS, CatalogEntity, DubVerdict
from shared.models.enums import LifecycleState, Season
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_LOOKUPS
from shared.utils.redis_manager import RedisManager, dub_verdict_key, season_snapshot_key

from catalog.seasons import months_since_season_end
from dubs.config import DubSettings, get_dub_settings

logger = get_logger(__name__)

T = TypeVar("T")


def compute_ttl(
    lifecycle: Optional[LifecycleState],
    season: Optional[Season],
    year: Optional[int],
    now: datetime,
    settings: DubSettings,
) -> int:
    """
    Snapshot TTL in seconds.

    Active titles and running or upcoming seasons refresh often; seasons over
    for longer than the historical threshold rarely; anything between sits in the middle.
    """
    if lifecycle is not None and lifecycle.is_active:
        return settings.snapshot_active_ttl_s
    if season is None or year is None:
        return settings.snapshot_recent_ttl_s
    months = months_since_season_end(season, year, now.date())
    if months < 0:
        return settings.snapshot_active_ttl_s
    if months > settings.historical_after_months:
        return settings.snapshot_historical_ttl_s
    return settings.snapshot_recent_ttl_s


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    stored_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class MemoryCache(Generic[T]):
    """Concurrency-safe in-process map with per-entry expiry. Expired entries are pruned on write."""

    def __init__(self, ttl_s: int, clock: Clock = utc_now) -> None:
        self._ttl = timedelta(seconds=ttl_s)
        self._clock = clock
        self._entries: dict[int, CacheEntry[T]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: int) -> Optional[T]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_fresh(self._clock()):
                del self._entries[key]
                return None
            return entry.payload

    async def put(self, key: int, value: T) -> None:
        now = self._clock()
        async with self._lock:
            expired = [k for k, entry in self._entries.items() if not entry.is_fresh(now)]
            for stale in expired:
                del self._entries[stale]
            self._entries[key] = CacheEntry(value, now, now + self._ttl)

    async def invalidate(self, key: int) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class SeasonSnapshot:
    season: Season
    year: int
    entities: list[CatalogEntity]
    stored_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class SnapshotCache:
    """Persisted tier. Redis failures degrade to a miss and are logged."""

    def __init__(
        self,
        redis: RedisManager,
        settings: DubSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._redis = redis
        self._settings = settings or get_dub_settings()
        self._clock = clock

    def _envelope(self, payload: object, ttl_s: int) -> str:
        now = self._clock()
        return json.dumps({
            "stored_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl_s)).isoformat(),
            "payload": payload,
        })

    async def _read(self, key: str) -> Optional[dict]:
        try:
            raw = await self._redis.get_snapshot(key)
        except RedisError as exc:
            logger.warning("snapshot_read_failed", key=key, error=str(exc))
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            data["stored_at"] = datetime.fromisoformat(data["stored_at"])
            data["expires_at"] = datetime.fromisoformat(data["expires_at"])
            if "payload" not in data:
                raise KeyError("payload")
            return data
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("snapshot_corrupt", key=key, error=str(exc))
            return None

    async def _write(self, key: str, data: str) -> None:
        try:
            await self._redis.set_snapshot(key, data, ttl_s=self._settings.snapshot_retention_s)
        except RedisError as exc:
            logger.warning("snapshot_write_failed", key=key, error=str(exc))

    # ── Verdicts ────────────────────────────────────────────────────────

    async def get(self, entity_id: int) -> Optional[DubVerdict]:
        data = await self._read(dub_verdict_key(entity_id))
        if data is None or self._clock() >= data["expires_at"]:
            return None
        try:
            return DubVerdict.model_validate(data["payload"])
        except ValueError as exc:
            logger.warning("snapshot_corrupt", entity_id=entity_id, error=str(exc))
            return None

    async def put(self, verdict: DubVerdict, ttl_s: int) -> None:
        await self._write(
            dub_verdict_key(verdict.entity_id),
            self._envelope(verdict.model_dump(mode="json"), ttl_s),
        )

    async def invalidate(self, entity_id: int) -> None:
        try:
            await self._redis.delete_snapshot(dub_verdict_key(entity_id))
        except RedisError as exc:
            logger.warning("snapshot_delete_failed", entity_id=entity_id, error=str(exc))

    # ── Season buckets ──────────────────────────────────────────────────

    async def get_season(self, season: Season, year: int) -> Optional[SeasonSnapshot]:
        """The stored bucket regardless of freshness; callers decide whether to refresh."""
        data = await self._read(season_snapshot_key(season.value, year))
        if data is None:
            return None
        try:
            entities = [CatalogEntity.model_validate(e) for e in data["payload"]]
        except (ValueError, TypeError) as exc:
            logger.warning("snapshot_corrupt", season=season.value, year=year, error=str(exc))
            return None
        return SeasonSnapshot(season, year, entities, data["stored_at"], data["expires_at"])

    async def put_season(self, season: Season, year: int, entities: list[CatalogEntity]) -> SeasonSnapshot:
        ttl_s = compute_ttl(None, season, year, self._clock(), self._settings)
        payload = [e.model_dump(mode="json") for e in entities]
        await self._write(season_snapshot_key(season.value, year), self._envelope(payload, ttl_s))
        now = self._clock()
        return SeasonSnapshot(season, year, entities, now, now + timedelta(seconds=ttl_s))


def merge_season_entities(
    existing: Iterable[CatalogEntity],
    fresh: Iterable[CatalogEntity],
) -> list[CatalogEntity]:
    """
    Fresh values win per entity, except dub enrichment fields the fresh copy
    does not supply, which are carried over. Entities missing from the refresh are kept.
    """
    previous = {e.external_id: e for e in existing}
    merged: list[CatalogEntity] = []
    seen: set[int] = set()
    for entity in fresh:
        seen.add(entity.external_id)
        old = previous.get(entity.external_id)
        if old is not None:
            carried = {
                name: getattr(old, name)
                for name in DUB_FIELDS
                if getattr(entity, name) in (None, []) and getattr(old, name) not in (None, [])
            }
            if carried:
                entity = entity.model_copy(update=carried)
        merged.append(entity)
    merged.extend(e for e in previous.values() if e.external_id not in seen)
    return merged


class ReconciliationCache:
    """Memory tier in front of the optional snapshot tier, keyed by entity id."""

    def __init__(
        self,
        settings: DubSettings | None = None,
        snapshots: Optional[SnapshotCache] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_dub_settings()
        self._clock = clock
        self.memory: MemoryCache[DubVerdict] = MemoryCache(self._settings.memory_ttl_s, clock)
        self.snapshots = snapshots

    async def get(self, entity_id: int) -> Optional[DubVerdict]:
        verdict = await self.memory.get(entity_id)
        if verdict is not None:
            CACHE_LOOKUPS.labels(tier="memory", result="hit").inc()
            return verdict
        CACHE_LOOKUPS.labels(tier="memory", result="miss").inc()
        if self.snapshots is None:
            return None
        verdict = await self.snapshots.get(entity_id)
        CACHE_LOOKUPS.labels(tier="snapshot", result="hit" if verdict else "miss").inc()
        if verdict is not None:
            await self.memory.put(entity_id, verdict)
        return verdict

    async def put(self, entity: CatalogEntity, verdict: DubVerdict) -> None:
        await self.memory.put(entity.external_id, verdict)
        if self.snapshots is not None:
            ttl_s = compute_ttl(
                entity.lifecycle_state, entity.season, entity.year, self._clock(), self._settings
            )
            await self.snapshots.put(verdict, ttl_s)

    async def invalidate(self, entity_id: int) -> None:
        await self.memory.invalidate(entity_id)
        if self.snapshots is not None:
            await self.snapshots.invalidate(entity_id)
