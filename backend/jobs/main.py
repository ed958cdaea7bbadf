"""
Jobs entrypoint.
Wires the components and runs one job by name: season-sync, daily-update or dub-sync.
"""
from __future__ import annotations

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

# Ensure backend root is on path when run as python -m jobs.main
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.config import Settings, get_settings
from shared.store import SQLEntityStore
from shared.utils.database import DatabaseManager
from shared.utils.http_client import RateLimitedFetcher
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from catalog.client import CatalogClient
from catalog.orchestrator import CatalogSyncOrchestrator
from dubs.cache import ReconciliationCache, SnapshotCache
from dubs.config import DubSettings, get_dub_settings
from dubs.resolver import DubResolver
from dubs.sources import (
    CatalogDubSource,
    CommunityDubSource,
    OverrideSource,
    PatternDubSource,
    PersistedDubSource,
    ScrapeDubSource,
)
from jobs.runner import JobRunner

logger = get_logger(__name__)

JOBS = ("season-sync", "daily-update", "dub-sync")


def build_runner(
    settings: Settings,
    dub_settings: DubSettings,
    db: DatabaseManager,
    redis: RedisManager,
    fetcher: RateLimitedFetcher,
) -> JobRunner:
    store = SQLEntityStore(db)
    catalog = CatalogClient(fetcher, settings)
    snapshots = SnapshotCache(redis, dub_settings)
    sources = [
        OverrideSource(store, dub_settings.weight_override),
        PersistedDubSource(store, dub_settings.weight_persisted),
        CatalogDubSource(catalog, dub_settings.weight_catalog),
        CommunityDubSource(
            fetcher,
            dub_settings.weight_community,
            min_score=dub_settings.community_min_score,
            min_members=dub_settings.community_min_members,
            settings=settings,
        ),
        ScrapeDubSource(fetcher, dub_settings.weight_scrape, settings=settings),
        PatternDubSource(dub_settings.weight_pattern),
    ]
    resolver = DubResolver(sources, store, ReconciliationCache(dub_settings, snapshots), dub_settings)
    orchestrator = CatalogSyncOrchestrator(catalog, store, settings)
    return JobRunner(orchestrator, resolver, store, redis, snapshots, settings, dub_settings)


@asynccontextmanager
async def connected_runner() -> AsyncIterator[JobRunner]:
    settings = get_settings()
    dub_settings = get_dub_settings()
    db = DatabaseManager(settings)
    redis = RedisManager(settings)
    fetcher = RateLimitedFetcher(settings)
    try:
        try:
            await db.connect()
            await redis.connect()
        except Exception as e:
            logger.exception("startup_connect_failed", error=str(e))
            raise
        await fetcher.start()
        yield build_runner(settings, dub_settings, db, redis, fetcher)
    finally:
        await fetcher.close()
        await redis.disconnect()
        await db.disconnect()


async def main(job: str) -> int:
    setup_logging("jobs", extra_context={"job": job})
    start_metrics_server()
    async with connected_runner() as runner:
        if job == "season-sync":
            run = await runner.run_season_sync()
        elif job == "daily-update":
            run = await runner.run_daily_update()
        else:
            run = await runner.run_dub_sync()
    logger.info("job_finished", job=job, status=run.status.value, added=run.added, updated=run.updated)
    return 0 if run.status.value == "success" else 1


def cli() -> None:
    name = sys.argv[1] if len(sys.argv) > 1 else "season-sync"
    if name not in JOBS:
        print(f"usage: python -m jobs.main [{'|'.join(JOBS)}]", file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(name)))


if __name__ == "__main__":
    cli()
