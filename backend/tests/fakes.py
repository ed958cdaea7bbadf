"""
In-memory stand-ins for the store, the catalog client, Redis, the clock and sleep.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from shared.errors import PersistenceError, TransportError
from shared.models.domain import (
    CatalogDubInfo,
    CatalogEntity,
    CatalogPage,
    DubOverride,
    DubRecord,
    DubVerdict,
    PlatformStat,
    SyncRun,
    UpsertOutcome,
)
from shared.models.enums import DubStatus, JobType, LifecycleState, Season
from shared.store import EntityStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSleep:
    """Records requested delays and advances a monotonic counter instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []
        self.elapsed = 0.0

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.elapsed += seconds

    def monotonic(self) -> float:
        return self.elapsed


class InMemoryEntityStore(EntityStore):
    def __init__(self) -> None:
        self.entities: dict[int, CatalogEntity] = {}
        self.runs: dict[uuid.UUID, SyncRun] = {}
        self.run_writes: list[SyncRun] = []
        self.dub_records: dict[tuple[int, str], DubRecord] = {}
        self.overrides: dict[int, DubOverride] = {}
        self.provenance: list[DubVerdict] = []
        self.fail_upsert_for: set[int] = set()
        self.upsert_calls: list[tuple[int, dict[str, Any]]] = []

    async def upsert_entity(self, external_id: int, fields: dict[str, Any]) -> UpsertOutcome:
        if external_id in self.fail_upsert_for:
            raise PersistenceError(f"write rejected for {external_id}")
        self.upsert_calls.append((external_id, dict(fields)))
        existing = self.entities.get(external_id)
        if existing is None:
            self.entities[external_id] = CatalogEntity(external_id=external_id, **fields)
            return UpsertOutcome(is_new=True)
        update = dict(fields)
        if "episodes_observed" in update:
            update["episodes_observed"] = max(existing.episodes_observed, update["episodes_observed"])
        if existing.lifecycle_state == LifecycleState.FINISHED:
            update.pop("lifecycle_state", None)
        self.entities[external_id] = existing.model_copy(update=update)
        return UpsertOutcome(is_new=False)

    async def find_entity(self, external_id: int) -> Optional[CatalogEntity]:
        return self.entities.get(external_id)

    async def find_entities_by_state(self, state: LifecycleState) -> list[CatalogEntity]:
        return [e for e in self.entities.values() if e.lifecycle_state == state]

    async def find_entities_by_season(self, season: Season, year: int) -> list[CatalogEntity]:
        found = [e for e in self.entities.values() if e.season == season and e.year == year]
        return sorted(found, key=lambda e: e.popularity or 0, reverse=True)

    async def find_finish_candidates(self) -> list[CatalogEntity]:
        return [
            e for e in self.entities.values()
            if e.lifecycle_state == LifecycleState.ONGOING
            and e.total_episode_count is not None
            and e.episodes_observed >= e.total_episode_count
        ]

    async def find_dub_sync_candidates(self, limit: int) -> list[CatalogEntity]:
        found = [
            e for e in self.entities.values()
            if e.lifecycle_state in (LifecycleState.ONGOING, LifecycleState.FINISHED)
        ]
        return sorted(found, key=lambda e: e.popularity or 0, reverse=True)[:limit]

    async def update_entity_dub_fields(self, verdict: DubVerdict) -> None:
        entity = self.entities.get(verdict.entity_id)
        if entity is None:
            return
        self.entities[verdict.entity_id] = entity.model_copy(update={
            "has_dub": verdict.has_dub,
            "dub_confidence": verdict.confidence,
            "dub_platforms": list(verdict.platforms),
            "dub_sources": list(verdict.sources),
            "dub_checked_at": verdict.resolved_at,
        })

    async def record_sync_run(self, run: SyncRun) -> None:
        snapshot = run.model_copy(deep=True)
        self.runs[run.id] = snapshot
        self.run_writes.append(snapshot)

    async def recent_sync_runs(self, limit: int = 10, job_type: Optional[JobType] = None) -> list[SyncRun]:
        runs = [r for r in self.runs.values() if job_type is None or r.job_type == job_type]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)[:limit]

    async def upsert_dub_record(self, record: DubRecord) -> None:
        key = (record.entity_id, record.platform)
        existing = self.dub_records.get(key)
        if existing is not None:
            record = record.model_copy(
                update={"episodes_dubbed": max(existing.episodes_dubbed, record.episodes_dubbed)}
            )
        self.dub_records[key] = record

    async def find_dub_records(self, entity_id: int) -> list[DubRecord]:
        return [r for (eid, _), r in self.dub_records.items() if eid == entity_id]

    async def find_override(self, entity_id: int) -> Optional[DubOverride]:
        return self.overrides.get(entity_id)

    async def set_override(self, override: DubOverride) -> None:
        self.overrides[override.entity_id] = override

    async def clear_override(self, entity_id: int) -> bool:
        return self.overrides.pop(entity_id, None) is not None

    async def record_dub_provenance(self, verdict: DubVerdict) -> None:
        self.provenance.append(verdict)

    async def platform_stats(self) -> list[PlatformStat]:
        stats: dict[str, PlatformStat] = {}
        for record in self.dub_records.values():
            if record.status == DubStatus.NONE:
                continue
            stat = stats.setdefault(record.platform, PlatformStat(platform=record.platform))
            stat.total += 1
            if record.status == DubStatus.FINISHED:
                stat.finished += 1
            else:
                stat.ongoing += 1
        return sorted(stats.values(), key=lambda s: s.total, reverse=True)


class FakeCatalog:
    """Scripted catalog: season pages per bucket, entity details, airing ids, dub info."""

    def __init__(self) -> None:
        self.pages: dict[tuple[Season, int], list[list[CatalogEntity]]] = {}
        self.details: dict[int, CatalogEntity] = {}
        self.airing_ids: set[int] = set()
        self.dub_info: dict[int, CatalogDubInfo] = {}
        self.page_failures: dict[tuple[Season, int, int], int] = {}
        self.airing_failures = 0
        self.page_calls: list[tuple[Season, int, int]] = []
        self.detail_calls: list[int] = []

    async def fetch_season_page(
        self, season: Season, year: int, page: int, page_size: int | None = None
    ) -> CatalogPage:
        self.page_calls.append((season, year, page))
        remaining = self.page_failures.get((season, year, page), 0)
        if remaining:
            self.page_failures[(season, year, page)] = remaining - 1
            raise TransportError("catalog", "timeout after 12.0s")
        pages = self.pages.get((season, year), [])
        if not pages:
            return CatalogPage(items=[], page=page, has_next_page=False)
        return CatalogPage(items=pages[page - 1], page=page, has_next_page=page < len(pages))

    async def fetch_entity(self, external_id: int) -> Optional[CatalogEntity]:
        self.detail_calls.append(external_id)
        return self.details.get(external_id)

    async def fetch_airing_ids(self, max_pages: int | None = None) -> set[int]:
        if self.airing_failures:
            self.airing_failures -= 1
            raise TransportError("catalog", "HTTP 502", status_code=502)
        return set(self.airing_ids)

    async def fetch_dub_info(self, external_id: int) -> Optional[CatalogDubInfo]:
        return self.dub_info.get(external_id)


class FakeRedis:
    """Just enough of RedisManager for snapshots and job locks."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set_snapshot(self, key: str, data: str, ttl_s: int) -> None:
        self.values[key] = data
        self.ttls[key] = ttl_s

    async def get_snapshot(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def delete_snapshot(self, key: str) -> None:
        self.values.pop(key, None)

    async def try_acquire_job_lock(self, job_type: str, owner: str, ttl_s: int) -> bool:
        key = f"lock:job:{job_type}"
        if key in self.values:
            return False
        self.values[key] = owner
        return True

    async def release_job_lock(self, job_type: str, owner: str) -> bool:
        key = f"lock:job:{job_type}"
        if self.values.get(key) == owner:
            del self.values[key]
            return True
        return False


def make_entity(external_id: int, **overrides: Any) -> CatalogEntity:
    fields: dict[str, Any] = {
        "external_id": external_id,
        "secondary_id": external_id + 10_000,
        "title_romaji": f"Title {external_id}",
        "season": Season.SPRING,
        "year": 2024,
        "total_episode_count": 12,
        "episodes_observed": 3,
        "lifecycle_state": LifecycleState.ONGOING,
        "popularity": 1000 + external_id,
    }
    fields.update(overrides)
    return CatalogEntity(**fields)
