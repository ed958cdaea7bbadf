"""
Catalog sync orchestration.

season_sync pages a season bucket (and the following one) into the store;
daily_update refreshes titles that are still airing and closes out titles
whose observed episode count has reached the known total.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from shared.config import Settings, get_settings
from shared.errors import DubTrackError, RateLimited, TransportError
from shared.models.domain import CATALOG_FIELDS, CatalogEntity, CatalogPage, SyncRun
from shared.models.enums import (
    LIFECYCLE_TRANSITIONS,
    JobType,
    LifecycleState,
    RunStatus,
    Season,
    UpsertAction,
)
from shared.store import EntityStore
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger, run_context
from shared.utils.metrics import CATALOG_UPSERTS, SYNC_RUNS

from catalog.client import CatalogClient
from catalog.seasons import current_season, next_season

logger = get_logger(__name__)

T = TypeVar("T")

# Fields a later catalog response may legitimately clear
_CLEARABLE_FIELDS = frozenset({"next_episode_at", "next_episode_number"})


class PageFetchFailed(DubTrackError):
    """A listing page could not be fetched after one retry; the run must stop."""


def plan_update(existing: CatalogEntity, fresh: CatalogEntity) -> tuple[dict[str, Any], list[str]]:
    """
    Field-level diff of catalog-owned fields.

    Returns (changes, conflicts). Episode regressions and disallowed lifecycle
    moves are reported as conflicts and left out of the changes; the stored value wins.
    """
    changes: dict[str, Any] = {}
    conflicts: list[str] = []
    for name in CATALOG_FIELDS:
        old = getattr(existing, name)
        new = getattr(fresh, name)
        if new == old:
            continue
        if name == "episodes_observed":
            if new > old:
                changes[name] = new
            else:
                conflicts.append(f"episodes_observed {old} -> {new}")
            continue
        if name == "lifecycle_state":
            if new in LIFECYCLE_TRANSITIONS[old]:
                changes[name] = new
            else:
                conflicts.append(f"lifecycle_state {old.value} -> {new.value}")
            continue
        if (new is None or new == []) and name not in _CLEARABLE_FIELDS:
            continue
        changes[name] = new
    return changes, conflicts


class CatalogSyncOrchestrator:
    """Diff-upserts catalog listings into the store and records one SyncRun per call."""

    def __init__(
        self,
        catalog: CatalogClient,
        store: EntityStore,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock

    # ── Upsert ──────────────────────────────────────────────────────────

    async def upsert(self, fresh: CatalogEntity) -> UpsertAction:
        """Insert an unseen title, apply a diff to a known one, or do nothing."""
        existing = await self._store.find_entity(fresh.external_id)
        if existing is None:
            outcome = await self._store.upsert_entity(fresh.external_id, fresh.catalog_fields())
            action = UpsertAction.ADDED if outcome.is_new else UpsertAction.UPDATED
            CATALOG_UPSERTS.labels(outcome=action.value).inc()
            return action

        changes, conflicts = plan_update(existing, fresh)
        for conflict in conflicts:
            event = (
                "episodes_regression_ignored"
                if conflict.startswith("episodes_observed")
                else "lifecycle_transition_rejected"
            )
            logger.warning(event, external_id=fresh.external_id, detail=conflict)

        if not changes:
            CATALOG_UPSERTS.labels(outcome=UpsertAction.UNCHANGED.value).inc()
            return UpsertAction.UNCHANGED

        await self._store.upsert_entity(fresh.external_id, changes)
        CATALOG_UPSERTS.labels(outcome=UpsertAction.UPDATED.value).inc()
        logger.debug("entity_updated", external_id=fresh.external_id, fields=sorted(changes))
        return UpsertAction.UPDATED

    async def _apply(self, run: SyncRun, fresh: CatalogEntity) -> Optional[UpsertAction]:
        """Upsert one item, isolating its failure into the run's error list."""
        try:
            action = await self.upsert(fresh)
        except DubTrackError as exc:
            CATALOG_UPSERTS.labels(outcome="failed").inc()
            run.errors.append(f"{fresh.external_id}: {exc}")
            logger.warning("catalog_item_failed", external_id=fresh.external_id, error=str(exc))
            return None
        if action == UpsertAction.ADDED:
            run.added += 1
        elif action == UpsertAction.UPDATED:
            run.updated += 1
        return action

    # ── Run bookkeeping ─────────────────────────────────────────────────

    async def _record(self, run: SyncRun) -> None:
        try:
            await self._store.record_sync_run(run)
        except DubTrackError as exc:
            logger.error("sync_run_record_failed", run_id=str(run.id), error=str(exc))

    async def _finish(self, run: SyncRun, status: RunStatus) -> SyncRun:
        run.complete(status, self._clock())
        await self._record(run)
        SYNC_RUNS.labels(job_type=run.job_type.value, status=status.value).inc()
        logger.info(
            "sync_run_completed",
            run_id=str(run.id),
            job_type=run.job_type.value,
            status=status.value,
            added=run.added,
            updated=run.updated,
            errors=len(run.errors),
        )
        return run

    async def _with_retry(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        """One retry on transport failure or rate limiting, then PageFetchFailed."""
        try:
            return await call()
        except (TransportError, RateLimited) as first:
            logger.warning("catalog_fetch_retry", what=what, error=str(first))
            try:
                return await call()
            except (TransportError, RateLimited) as exc:
                raise PageFetchFailed(f"{what}: {exc}") from exc

    async def _run(self, run: SyncRun, body: Callable[[SyncRun], Awaitable[None]]) -> SyncRun:
        await self._record(run)
        logger.info("sync_run_started", run_id=str(run.id), job_type=run.job_type.value)
        try:
            with run_context(str(run.id), run.job_type.value):
                await body(run)
        except PageFetchFailed as exc:
            run.errors.append(str(exc))
            return await self._finish(run, RunStatus.ERROR)
        except Exception as exc:
            run.errors.append(f"unexpected: {exc}")
            await self._finish(run, RunStatus.ERROR)
            raise
        return await self._finish(run, RunStatus.SUCCESS)

    # ── Season sync ─────────────────────────────────────────────────────

    async def season_sync(
        self,
        season: Season | None = None,
        year: int | None = None,
        include_next: bool = True,
    ) -> SyncRun:
        """
        Sync one season bucket, then the following one so upcoming titles are pre-seeded.
        Defaults to the current season by the injected clock.
        """
        if season is None or year is None:
            season, year = current_season(self._clock())
        buckets = [(season, year)]
        if include_next:
            buckets.append(next_season(season, year))

        async def body(run: SyncRun) -> None:
            for bucket_season, bucket_year in buckets:
                await self._sync_bucket(run, bucket_season, bucket_year)

        return await self._run(SyncRun(job_type=JobType.SEASON_SYNC, started_at=self._clock()), body)

    async def _sync_bucket(self, run: SyncRun, season: Season, year: int) -> None:
        page = 1
        while True:
            result: CatalogPage = await self._with_retry(
                f"{season.value} {year} page {page}",
                lambda: self._catalog.fetch_season_page(season, year, page),
            )
            run.errors.extend(result.rejected)
            for entity in result.items:
                await self._apply(run, entity)
            logger.debug(
                "season_page_synced",
                season=season.value,
                year=year,
                page=page,
                items=len(result.items),
            )
            if not result.has_next_page:
                break
            page += 1

    # ── Daily update ────────────────────────────────────────────────────

    async def daily_update(self) -> SyncRun:
        """Refresh ONGOING titles the catalog still lists as airing, then close out finish candidates."""

        async def body(run: SyncRun) -> None:
            ongoing = await self._store.find_entities_by_state(LifecycleState.ONGOING)
            airing_ids = await self._with_retry("airing listing", self._catalog.fetch_airing_ids)
            targets = [e for e in ongoing if e.external_id in airing_ids]
            logger.info(
                "daily_update_targets",
                ongoing=len(ongoing),
                airing=len(airing_ids),
                targets=len(targets),
            )

            for entity in targets:
                try:
                    fresh = await self._catalog.fetch_entity(entity.external_id)
                except DubTrackError as exc:
                    run.errors.append(f"{entity.external_id}: {exc}")
                    logger.warning("catalog_detail_failed", external_id=entity.external_id, error=str(exc))
                    continue
                if fresh is not None:
                    await self._apply(run, fresh)

            for candidate in await self._store.find_finish_candidates():
                finished = candidate.model_copy(update={"lifecycle_state": LifecycleState.FINISHED})
                action = await self._apply(run, finished)
                if action == UpsertAction.UPDATED:
                    logger.info(
                        "entity_marked_finished",
                        external_id=candidate.external_id,
                        episodes=candidate.episodes_observed,
                    )

        return await self._run(SyncRun(job_type=JobType.DAILY_UPDATE, started_at=self._clock()), body)
