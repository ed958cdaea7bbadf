"""
Dub status resolution.
Cache first; on a miss, probe every source in cascade order, fuse, record
provenance, write positive or override verdicts back to the store, then cache both tiers.
"""
from __future__ import annotations

import asyncio
from typing import Iterable, Optional, Sequence

from shared.models.domain import CatalogEntity, DubOverride, DubRecord, DubVerdict
from shared.models.enums import CASCADE_ORDER, DubStatus, SourceName
from shared.store import EntityStore
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger
from shared.utils.metrics import DUB_RESOLUTIONS, RESOLUTION_LATENCY, atrack_latency

from dubs.cache import ReconciliationCache
from dubs.confidence import contributing_results, fuse_verdict
from dubs.config import DubSettings, get_dub_settings
from dubs.platforms import canonical_platform
from dubs.sources.base import Applicable, DubSource, ProbeResult

logger = get_logger(__name__)


class DubResolver:
    """Runs the source cascade for one title or a batch of titles."""

    def __init__(
        self,
        sources: Sequence[DubSource],
        store: EntityStore,
        cache: ReconciliationCache,
        settings: DubSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        rank = {name: i for i, name in enumerate(CASCADE_ORDER)}
        self._sources = sorted(sources, key=lambda s: rank[s.name])
        self._store = store
        self._cache = cache
        self._settings = settings or get_dub_settings()
        self._clock = clock

    @property
    def cache(self) -> ReconciliationCache:
        return self._cache

    async def probe_all(self, entity: CatalogEntity) -> list[ProbeResult]:
        """Probe sources strictly in order. Only a terminal result stops the cascade."""
        results: list[ProbeResult] = []
        for source in self._sources:
            result = await source.probe(entity)
            results.append(result)
            if isinstance(result, Applicable) and result.terminal:
                break
        return results

    async def resolve(self, entity: CatalogEntity) -> DubVerdict:
        cached = await self._cache.get(entity.external_id)
        if cached is not None:
            return cached

        async with atrack_latency(RESOLUTION_LATENCY):
            results = await self.probe_all(entity)
            verdict = fuse_verdict(
                entity.external_id,
                results,
                self._clock(),
                scrape_requires_corroboration=self._settings.scrape_requires_corroboration,
            )
        DUB_RESOLUTIONS.labels(has_dub=str(verdict.has_dub).lower()).inc()

        await self._store.record_dub_provenance(verdict)
        decided_by_override = verdict.sources == [SourceName.OVERRIDE.value]
        if verdict.has_dub or decided_by_override or entity.has_dub:
            await self._store.update_entity_dub_fields(verdict)
        if verdict.has_dub:
            await self._write_dub_records(entity, results)
        # Cached only once the store agrees with it
        await self._cache.put(entity, verdict)

        logger.info(
            "dub_resolved",
            entity_id=entity.external_id,
            has_dub=verdict.has_dub,
            confidence=verdict.confidence,
            sources=verdict.sources,
        )
        return verdict

    async def _write_dub_records(self, entity: CatalogEntity, results: list[ProbeResult]) -> None:
        """Per-platform rows for positive contributors; persisted rows are already stored."""
        contributors = contributing_results(results, self._settings.scrape_requires_corroboration)
        written: set[str] = set()
        for result in contributors:
            if not result.has_dub or result.source == SourceName.PERSISTED:
                continue
            for hit in result.platforms:
                platform = canonical_platform(hit.name)
                if not platform or platform.casefold() in written:
                    continue
                written.add(platform.casefold())
                status = DubStatus.FINISHED if hit.status == DubStatus.FINISHED else DubStatus.ONGOING
                await self._store.upsert_dub_record(DubRecord(
                    entity_id=entity.external_id,
                    platform=platform,
                    status=status,
                    episodes_dubbed=hit.episodes,
                ))

    async def batch_resolve(
        self,
        entities: Iterable[CatalogEntity],
        concurrency: Optional[int] = None,
    ) -> list[DubVerdict]:
        """
        Resolve many titles with a bounded worker pool pulling from one queue.

        Results come back in input order. A title whose resolution fails gets
        the safe default (no dub, confidence 0).
        """
        items = list(entities)
        workers = max(1, concurrency or self._settings.batch_concurrency)
        queue: asyncio.Queue[tuple[int, CatalogEntity]] = asyncio.Queue()
        for index, entity in enumerate(items):
            queue.put_nowait((index, entity))
        verdicts: list[Optional[DubVerdict]] = [None] * len(items)

        async def worker() -> None:
            while True:
                try:
                    index, entity = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    verdicts[index] = await self.resolve(entity)
                except Exception as exc:
                    logger.warning(
                        "dub_resolve_failed",
                        entity_id=entity.external_id,
                        error=str(exc) or exc.__class__.__name__,
                    )
                    verdicts[index] = DubVerdict(entity_id=entity.external_id, resolved_at=self._clock())
                finally:
                    queue.task_done()

        await asyncio.gather(*(worker() for _ in range(min(workers, len(items)) or 1)))
        logger.info("dub_batch_resolved", count=len(items), workers=workers)
        return [v for v in verdicts if v is not None]

    # ── Manual overrides ────────────────────────────────────────────────

    async def set_override(
        self,
        entity: CatalogEntity,
        has_dub: bool,
        platforms: Iterable[str] = (),
        status: Optional[DubStatus] = None,
        episodes: Optional[int] = None,
        set_by: str = "manual",
    ) -> DubVerdict:
        """Store an override, drop cached verdicts for the title, and resolve again."""
        await self._store.set_override(DubOverride(
            entity_id=entity.external_id,
            has_dub=has_dub,
            platforms=list(platforms),
            status=status,
            episodes=episodes,
            set_by=set_by,
            set_at=self._clock(),
        ))
        await self._cache.invalidate(entity.external_id)
        logger.info("dub_override_set", entity_id=entity.external_id, has_dub=has_dub, set_by=set_by)
        return await self.resolve(entity)

    async def clear_override(self, entity: CatalogEntity) -> DubVerdict:
        removed = await self._store.clear_override(entity.external_id)
        await self._cache.invalidate(entity.external_id)
        logger.info("dub_override_cleared", entity_id=entity.external_id, removed=removed)
        return await self.resolve(entity)
