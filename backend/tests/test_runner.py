"""
Tests for the job trigger interface: overlap marking, dub sync runs,
season listings, statistics and submitted job handles.

Run: pytest backend/tests/test_runner.py -v
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

import jobs.runner as runner_module
from catalog.orchestrator import CatalogSyncOrchestrator
from dubs.cache import ReconciliationCache, SnapshotCache
from dubs.resolver import DubResolver
from dubs.sources import OverrideSource, PatternDubSource, PersistedDubSource
from jobs.runner import JobRunner
from shared.errors import PersistenceError
from shared.models.enums import JobType, LifecycleState, RunStatus, Season
from tests.fakes import make_entity


@pytest.fixture
def snapshots(fake_redis, dub_settings, clock) -> SnapshotCache:
    return SnapshotCache(fake_redis, dub_settings, clock)


@pytest.fixture
def runner(catalog, store, fake_redis, snapshots, settings, dub_settings, clock) -> JobRunner:
    orchestrator = CatalogSyncOrchestrator(catalog, store, settings=settings, clock=clock)
    resolver = DubResolver(
        [OverrideSource(store), PersistedDubSource(store), PatternDubSource()],
        store,
        ReconciliationCache(dub_settings, snapshots, clock),
        dub_settings,
        clock,
    )
    return JobRunner(
        orchestrator,
        resolver,
        store,
        redis=fake_redis,
        snapshots=snapshots,
        settings=settings,
        dub_settings=dub_settings,
        clock=clock,
    )


# ── Overlap marking ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_overlapping_trigger_is_logged_and_still_runs(
    runner: JobRunner, fake_redis, monkeypatch: pytest.MonkeyPatch
) -> None:
    logger = MagicMock()
    monkeypatch.setattr(runner_module, "logger", logger)
    fake_redis.values["lock:job:daily_update"] = "other-instance"

    run = await runner.run_daily_update()

    assert run.status == RunStatus.SUCCESS
    assert logger.warning.call_args.args[0] == "sync_run_overlap"
    assert fake_redis.values["lock:job:daily_update"] == "other-instance"


@pytest.mark.asyncio
async def test_lock_released_after_run(runner: JobRunner, fake_redis) -> None:
    await runner.run_daily_update()
    assert "lock:job:daily_update" not in fake_redis.values


# ── Catalog jobs ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_season_sync_refreshes_both_snapshots(runner: JobRunner, catalog, fake_redis) -> None:
    catalog.pages[(Season.SPRING, 2024)] = [[make_entity(1), make_entity(2)]]
    catalog.pages[(Season.SUMMER, 2024)] = [[make_entity(3, season=Season.SUMMER)]]

    run = await runner.run_season_sync(Season.SPRING, 2024)

    assert run.added == 3
    assert "snap:season:2024:spring" in fake_redis.values
    assert "snap:season:2024:summer" in fake_redis.values
    listing = await runner.get_season_listing(Season.SPRING, 2024)
    assert [e.external_id for e in listing] == [2, 1]


# ── Dub jobs ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_resolve_dub_status(runner: JobRunner) -> None:
    verdict = await runner.resolve_dub_status(make_entity(1, title_english="One Piece"))
    assert verdict.has_dub is True
    assert verdict.confidence == 30
    assert verdict.platforms == ["Crunchyroll", "Funimation"]


@pytest.mark.asyncio
async def test_batch_resolve_dub_status(runner: JobRunner) -> None:
    verdicts = await runner.batch_resolve_dub_status(
        [make_entity(1, title_english="Chainsaw Man"), make_entity(2)], concurrency=2
    )
    assert [(v.entity_id, v.has_dub) for v in verdicts] == [(1, True), (2, False)]


@pytest.mark.asyncio
async def test_dub_sync_counts_dubbed_titles(runner: JobRunner, store) -> None:
    store.entities[1] = make_entity(1, title_english="Dr. Stone")
    store.entities[2] = make_entity(2, lifecycle_state=LifecycleState.FINISHED)
    store.entities[3] = make_entity(3, title_english="Naruto", lifecycle_state=LifecycleState.NOT_STARTED)

    run = await runner.run_dub_sync()

    assert run.job_type == JobType.DUB_SYNC
    assert run.status == RunStatus.SUCCESS
    assert run.updated == 1
    assert [r.status for r in store.run_writes] == [RunStatus.RUNNING, RunStatus.SUCCESS]
    assert store.entities[1].has_dub is True
    assert store.entities[3].has_dub is None


@pytest.mark.asyncio
async def test_dub_sync_survives_run_record_failure(runner: JobRunner, store) -> None:
    store.entities[1] = make_entity(1, title_english="Dr. Stone")
    store.record_sync_run = AsyncMock(side_effect=PersistenceError("database unavailable"))

    run = await runner.run_dub_sync()

    assert run.status == RunStatus.SUCCESS
    assert run.updated == 1
    assert store.record_sync_run.await_count == 2


@pytest.mark.asyncio
async def test_dub_override_round_trip(runner: JobRunner, store) -> None:
    entity = make_entity(1)
    verdict = await runner.set_dub_override(entity, True, ["Crunchyroll"])
    assert verdict.confidence == 100
    assert (await runner.resolve_dub_status(entity)).sources == ["override"]

    await runner.clear_dub_override(entity)
    assert 1 not in store.overrides


# ── Read paths ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fresh_season_listing_skips_store(runner: JobRunner, store) -> None:
    store.entities[1] = make_entity(1)
    await runner.refresh_season_listing(Season.SPRING, 2024)
    store.entities[2] = make_entity(2)

    listing = await runner.get_season_listing(Season.SPRING, 2024)

    assert [e.external_id for e in listing] == [1]


@pytest.mark.asyncio
async def test_stale_season_listing_is_refreshed(runner: JobRunner, store, clock) -> None:
    store.entities[1] = make_entity(1, has_dub=True, dub_confidence=70, dub_platforms=["Hulu"])
    await runner.refresh_season_listing(Season.SPRING, 2024)
    store.entities[1] = make_entity(1, episodes_observed=4)
    store.entities[2] = make_entity(2)
    clock.advance(minutes=16)

    listing = await runner.get_season_listing(Season.SPRING, 2024)

    by_id = {e.external_id: e for e in listing}
    assert sorted(by_id) == [1, 2]
    assert by_id[1].episodes_observed == 4
    assert by_id[1].dub_platforms == ["Hulu"]


@pytest.mark.asyncio
async def test_season_dub_stats(runner: JobRunner, store) -> None:
    store.entities[1] = make_entity(1, has_dub=True, dub_confidence=100, dub_platforms=["Crunchyroll", "Hulu"])
    store.entities[2] = make_entity(2, has_dub=True, dub_confidence=30, dub_platforms=["Crunchyroll"])
    store.entities[3] = make_entity(3, has_dub=False)
    store.entities[4] = make_entity(4, season=Season.WINTER, has_dub=True)

    stats = await runner.season_dub_stats(Season.SPRING, 2024)

    assert stats.total == 3
    assert stats.dubbed == 2
    assert stats.confirmed == 1
    assert stats.percentage == 67
    assert stats.platforms == {"Crunchyroll": 2, "Hulu": 1}


@pytest.mark.asyncio
async def test_negative_override_removes_title_from_season_stats(runner: JobRunner, store) -> None:
    store.entities[1] = make_entity(1, title_english="Naruto")
    await runner.resolve_dub_status(store.entities[1])
    assert (await runner.season_dub_stats(Season.SPRING, 2024)).dubbed == 1

    await runner.set_dub_override(store.entities[1], has_dub=False)

    stats = await runner.season_dub_stats(Season.SPRING, 2024)
    assert stats.dubbed == 0
    assert stats.platforms == {}


@pytest.mark.asyncio
async def test_recent_runs_and_platform_stats(runner: JobRunner, catalog) -> None:
    await runner.run_season_sync(Season.SPRING, 2024)
    await runner.resolve_dub_status(make_entity(9, title_english="Bleach: Thousand-Year Blood War"))

    runs = await runner.recent_sync_runs(job_type=JobType.SEASON_SYNC)
    assert len(runs) == 1
    stats = await runner.platform_stats()
    assert {s.platform for s in stats} == {"Hulu", "Disney+"}


# ── Submission ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_submit_success(runner: JobRunner) -> None:
    handle = runner.submit("daily-update", runner.run_daily_update)
    run = await handle.wait()
    assert handle.done
    assert handle.status == RunStatus.SUCCESS
    assert handle.completed_at is not None
    assert run.job_type == JobType.DAILY_UPDATE
    assert runner.handles == [handle]


@pytest.mark.asyncio
async def test_submit_failure(runner: JobRunner) -> None:
    async def boom() -> None:
        raise RuntimeError("store offline")

    handle = runner.submit("broken", boom)
    with pytest.raises(RuntimeError):
        await handle.wait()
    assert handle.status == RunStatus.ERROR
    assert handle.error == "store offline"


@pytest.mark.asyncio
async def test_submit_drops_finished_handles(runner: JobRunner) -> None:
    first = runner.submit("daily-update", runner.run_daily_update)
    await first.wait()

    second = runner.submit("daily-update", runner.run_daily_update)

    assert runner.handles == [second]
    await second.wait()
