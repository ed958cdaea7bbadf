"""
Trigger interface exposed to the host.

JobRunner wraps the sync orchestrator and the dub resolver behind callable
job entry points, marks running jobs in Redis so overlapping triggers are
visible in the logs, and hands out JobHandles for submitted work.
"""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from redis.exceptions import RedisError

from shared.config import Settings, get_settings
from shared.errors import DubTrackError
from shared.models.domain import CatalogEntity, DubVerdict, PlatformStat, SeasonDubStats, SyncRun
from shared.models.enums import DubStatus, JobType, RunStatus, Season
from shared.store import EntityStore
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger, run_context
from shared.utils.metrics import CACHE_LOOKUPS, SYNC_RUNS
from shared.utils.redis_manager import RedisManager

from catalog.orchestrator import CatalogSyncOrchestrator
from catalog.seasons import current_season, next_season
from dubs.cache import SnapshotCache, merge_season_entities
from dubs.config import DubSettings, get_dub_settings
from dubs.resolver import DubResolver

logger = get_logger(__name__)

T = TypeVar("T")

CONFIRMED_CONFIDENCE = 80


@dataclass
class JobHandle(Generic[T]):
    """A submitted job. Status moves from RUNNING to SUCCESS or ERROR exactly once."""
    name: str
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    _task: Optional["asyncio.Task[T]"] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.status != RunStatus.RUNNING

    async def wait(self) -> T:
        if self._task is None:
            raise RuntimeError(f"job {self.name} was never started")
        return await self._task


class JobRunner:
    """Callable job entry points; no scheduling of its own."""

    def __init__(
        self,
        orchestrator: CatalogSyncOrchestrator,
        resolver: DubResolver,
        store: EntityStore,
        redis: Optional[RedisManager] = None,
        snapshots: Optional[SnapshotCache] = None,
        settings: Settings | None = None,
        dub_settings: DubSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._orchestrator = orchestrator
        self._resolver = resolver
        self._store = store
        self._redis = redis
        self._snapshots = snapshots
        self._settings = settings or get_settings()
        self._dub_settings = dub_settings or get_dub_settings()
        self._clock = clock
        self._owner = self._settings.instance_id or uuid.uuid4().hex
        self._handles: list[JobHandle[Any]] = []

    # ── Overlap detection ───────────────────────────────────────────────

    @asynccontextmanager
    async def _running_marker(self, job_type: JobType) -> AsyncIterator[None]:
        """Marks the job as running. A second trigger is logged, not blocked."""
        acquired = False
        if self._redis is not None:
            try:
                acquired = await self._redis.try_acquire_job_lock(
                    job_type.value, self._owner, self._settings.job_lock_ttl_s
                )
                if not acquired:
                    logger.warning("sync_run_overlap", job_type=job_type.value, owner=self._owner)
            except RedisError as exc:
                logger.warning("job_lock_unavailable", job_type=job_type.value, error=str(exc))
        try:
            yield
        finally:
            if acquired:
                try:
                    await self._redis.release_job_lock(job_type.value, self._owner)
                except RedisError as exc:
                    logger.warning("job_lock_release_failed", job_type=job_type.value, error=str(exc))

    # ── Catalog jobs ────────────────────────────────────────────────────

    async def run_season_sync(self, season: Season | None = None, year: int | None = None) -> SyncRun:
        if season is None or year is None:
            season, year = current_season(self._clock())
        async with self._running_marker(JobType.SEASON_SYNC):
            run = await self._orchestrator.season_sync(season, year)
        if self._snapshots is not None:
            for bucket in ((season, year), next_season(season, year)):
                try:
                    await self.refresh_season_listing(*bucket)
                except DubTrackError as exc:
                    logger.warning("season_snapshot_refresh_failed", season=bucket[0].value, year=bucket[1], error=str(exc))
        return run

    async def run_daily_update(self) -> SyncRun:
        async with self._running_marker(JobType.DAILY_UPDATE):
            return await self._orchestrator.daily_update()

    # ── Dub jobs ────────────────────────────────────────────────────────

    async def resolve_dub_status(self, entity: CatalogEntity) -> DubVerdict:
        return await self._resolver.resolve(entity)

    async def batch_resolve_dub_status(
        self, entities: Iterable[CatalogEntity], concurrency: Optional[int] = None
    ) -> list[DubVerdict]:
        return await self._resolver.batch_resolve(entities, concurrency)

    async def _record(self, run: SyncRun) -> None:
        try:
            await self._store.record_sync_run(run)
        except DubTrackError as exc:
            logger.error("sync_run_record_failed", run_id=str(run.id), error=str(exc))

    async def run_dub_sync(self) -> SyncRun:
        """Re-resolve the most popular ongoing and finished titles."""
        run = SyncRun(job_type=JobType.DUB_SYNC, started_at=self._clock())
        await self._record(run)
        async with self._running_marker(JobType.DUB_SYNC):
            try:
                with run_context(str(run.id), run.job_type.value):
                    candidates = await self._store.find_dub_sync_candidates(self._dub_settings.dub_sync_limit)
                    for entity in candidates:
                        await self._resolver.cache.invalidate(entity.external_id)
                    verdicts = await self._resolver.batch_resolve(candidates)
            except Exception as exc:
                run.errors.append(str(exc))
                run.complete(RunStatus.ERROR, self._clock())
                await self._record(run)
                SYNC_RUNS.labels(job_type=run.job_type.value, status=RunStatus.ERROR.value).inc()
                logger.exception("dub_sync_failed", run_id=str(run.id), error=str(exc))
                raise
        run.updated = sum(1 for v in verdicts if v.has_dub)
        run.complete(RunStatus.SUCCESS, self._clock())
        await self._record(run)
        SYNC_RUNS.labels(job_type=run.job_type.value, status=RunStatus.SUCCESS.value).inc()
        logger.info("dub_sync_completed", run_id=str(run.id), checked=len(verdicts), dubbed=run.updated)
        return run

    async def set_dub_override(
        self,
        entity: CatalogEntity,
        has_dub: bool,
        platforms: Iterable[str] = (),
        status: Optional[DubStatus] = None,
        episodes: Optional[int] = None,
    ) -> DubVerdict:
        return await self._resolver.set_override(entity, has_dub, platforms, status, episodes)

    async def clear_dub_override(self, entity: CatalogEntity) -> DubVerdict:
        return await self._resolver.clear_override(entity)

    # ── Submission ──────────────────────────────────────────────────────

    def submit(self, name: str, job: Callable[[], Awaitable[T]]) -> JobHandle[T]:
        """Start `job` in the background and return its handle. Finished handles are dropped here."""
        handle: JobHandle[T] = JobHandle(name=name, started_at=self._clock())

        async def run() -> T:
            try:
                result = await job()
            except Exception as exc:
                handle.status = RunStatus.ERROR
                handle.error = str(exc)
                logger.exception("job_failed", job=name, error=str(exc))
                raise
            else:
                handle.status = RunStatus.SUCCESS
                return result
            finally:
                handle.completed_at = self._clock()

        handle._task = asyncio.create_task(run(), name=name)
        self._handles = [h for h in self._handles if not h.done]
        self._handles.append(handle)
        logger.info("job_submitted", job=name)
        return handle

    @property
    def handles(self) -> list[JobHandle[Any]]:
        return list(self._handles)

    # ── Read paths ──────────────────────────────────────────────────────

    async def refresh_season_listing(self, season: Season, year: int) -> list[CatalogEntity]:
        """Reload a bucket from the store and merge it into the stored snapshot."""
        fresh = await self._store.find_entities_by_season(season, year)
        if self._snapshots is None:
            return fresh
        previous = await self._snapshots.get_season(season, year)
        merged = merge_season_entities(previous.entities if previous else [], fresh)
        await self._snapshots.put_season(season, year, merged)
        logger.debug("season_snapshot_refreshed", season=season.value, year=year, entities=len(merged))
        return merged

    async def get_season_listing(self, season: Season, year: int) -> list[CatalogEntity]:
        """Serve a fresh snapshot as is; otherwise refresh it from the store."""
        if self._snapshots is not None:
            snapshot = await self._snapshots.get_season(season, year)
            if snapshot is not None and snapshot.is_fresh(self._clock()):
                CACHE_LOOKUPS.labels(tier="season", result="hit").inc()
                return snapshot.entities
            CACHE_LOOKUPS.labels(tier="season", result="stale" if snapshot else "miss").inc()
        return await self.refresh_season_listing(season, year)

    async def recent_sync_runs(self, limit: int = 10, job_type: Optional[JobType] = None) -> list[SyncRun]:
        return await self._store.recent_sync_runs(limit, job_type)

    async def platform_stats(self) -> list[PlatformStat]:
        return await self._store.platform_stats()

    async def season_dub_stats(self, season: Season, year: int) -> SeasonDubStats:
        entities = await self._store.find_entities_by_season(season, year)
        dubbed = [e for e in entities if e.has_dub]
        platforms: dict[str, int] = {}
        for entity in dubbed:
            for platform in entity.dub_platforms:
                platforms[platform] = platforms.get(platform, 0) + 1
        total = len(entities)
        return SeasonDubStats(
            season=season,
            year=year,
            total=total,
            dubbed=len(dubbed),
            confirmed=sum(1 for e in dubbed if (e.dub_confidence or 0) >= CONFIRMED_CONFIDENCE),
            percentage=int(len(dubbed) * 100 / total + 0.5) if total else 0,
            platforms=dict(sorted(platforms.items(), key=lambda kv: kv[1], reverse=True)),
        )
