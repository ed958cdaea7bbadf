"""
Persistent store consumed by the sync orchestrator and the dub resolver.

`EntityStore` is the interface; `SQLEntityStore` implements it over the
async SQLAlchemy engine. Any SQLAlchemy failure surfaces as PersistenceError.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Optional

from sqlalchemy import case, delete, func, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import PersistenceError
from shared.models.domain import (
    CatalogEntity,
    DubOverride,
    DubRecord,
    DubVerdict,
    PlatformStat,
    SyncRun,
    UpsertOutcome,
)
from shared.models.enums import DubStatus, JobType, LifecycleState, Season
from shared.models.orm import (
    AnimeORM,
    DubOverrideORM,
    DubProvenanceORM,
    DubRecordORM,
    SyncRunORM,
)
from shared.utils.clock import Clock, utc_now
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
    """Enum members to their stored string values."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}


class EntityStore(ABC):
    """Storage operations the core depends on. Implementations must be safe under concurrent calls."""

    # ── Catalog entities ────────────────────────────────────────────────
    @abstractmethod
    async def upsert_entity(self, external_id: int, fields: dict[str, Any]) -> UpsertOutcome:
        """Insert, or update only the given fields of, the entity keyed by `external_id`."""

    @abstractmethod
    async def find_entity(self, external_id: int) -> Optional[CatalogEntity]:
        ...

    @abstractmethod
    async def find_entities_by_state(self, state: LifecycleState) -> list[CatalogEntity]:
        ...

    @abstractmethod
    async def find_entities_by_season(self, season: Season, year: int) -> list[CatalogEntity]:
        """Entities in one season bucket, most popular first."""

    @abstractmethod
    async def find_finish_candidates(self) -> list[CatalogEntity]:
        """ONGOING entities whose observed episodes have reached the known total."""

    @abstractmethod
    async def find_dub_sync_candidates(self, limit: int) -> list[CatalogEntity]:
        """ONGOING or FINISHED entities, most popular first."""

    @abstractmethod
    async def update_entity_dub_fields(self, verdict: DubVerdict) -> None:
        ...

    # ── Job log ─────────────────────────────────────────────────────────
    @abstractmethod
    async def record_sync_run(self, run: SyncRun) -> None:
        """Insert or overwrite the run row keyed by run.id."""

    @abstractmethod
    async def recent_sync_runs(self, limit: int = 10, job_type: Optional[JobType] = None) -> list[SyncRun]:
        ...

    # ── Dub records / overrides / provenance ────────────────────────────
    @abstractmethod
    async def upsert_dub_record(self, record: DubRecord) -> None:
        ...

    @abstractmethod
    async def find_dub_records(self, entity_id: int) -> list[DubRecord]:
        ...

    @abstractmethod
    async def find_override(self, entity_id: int) -> Optional[DubOverride]:
        ...

    @abstractmethod
    async def set_override(self, override: DubOverride) -> None:
        ...

    @abstractmethod
    async def clear_override(self, entity_id: int) -> bool:
        """Remove an override. False when none existed."""

    @abstractmethod
    async def record_dub_provenance(self, verdict: DubVerdict) -> None:
        ...

    @abstractmethod
    async def platform_stats(self) -> list[PlatformStat]:
        """Dub records per platform (NONE excluded), largest first."""


class SQLEntityStore(EntityStore):
    """PostgreSQL-backed store. Schema is owned by migrations outside this package."""

    def __init__(self, db: DatabaseManager, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    @asynccontextmanager
    async def _session(self, op: str, write: bool = False) -> AsyncIterator[AsyncSession]:
        ctx = self._db.write_session() if write else self._db.read_session()
        try:
            async with ctx as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("store_operation_failed", op=op, error=str(exc))
            raise PersistenceError(f"{op} failed: {exc}") from exc

    # ── Catalog entities ────────────────────────────────────────────────

    async def upsert_entity(self, external_id: int, fields: dict[str, Any]) -> UpsertOutcome:
        values = _column_values(fields)
        values["updated_at"] = self._clock()
        insert = pg_insert(AnimeORM).values(external_id=external_id, **values)
        set_: dict[str, Any] = dict(values)
        # Guard the monotonic columns against write reordering between concurrent runs
        if "episodes_observed" in set_:
            set_["episodes_observed"] = func.greatest(
                AnimeORM.episodes_observed, insert.excluded.episodes_observed
            )
        if "lifecycle_state" in set_:
            set_["lifecycle_state"] = case(
                (AnimeORM.lifecycle_state == LifecycleState.FINISHED.value, AnimeORM.lifecycle_state),
                else_=insert.excluded.lifecycle_state,
            )
        stmt = (
            insert.on_conflict_do_update(index_elements=["external_id"], set_=set_)
            # xmax is 0 only on a freshly inserted tuple
            .returning(literal_column("(xmax = 0)"))
        )
        async with self._session("upsert_entity", write=True) as session:
            result = await session.execute(stmt)
            is_new = bool(result.scalar_one())
        return UpsertOutcome(is_new=is_new)

    async def find_entity(self, external_id: int) -> Optional[CatalogEntity]:
        async with self._session("find_entity") as session:
            row = await session.get(AnimeORM, external_id)
            return CatalogEntity.model_validate(row) if row else None

    async def find_entities_by_state(self, state: LifecycleState) -> list[CatalogEntity]:
        return await self._select_entities(
            "find_entities_by_state",
            select(AnimeORM).where(AnimeORM.lifecycle_state == state.value),
        )

    async def find_entities_by_season(self, season: Season, year: int) -> list[CatalogEntity]:
        stmt = (
            select(AnimeORM)
            .where(AnimeORM.season == season.value, AnimeORM.year == year)
            .order_by(AnimeORM.popularity.desc().nulls_last())
        )
        return await self._select_entities("find_entities_by_season", stmt)

    async def find_finish_candidates(self) -> list[CatalogEntity]:
        stmt = select(AnimeORM).where(
            AnimeORM.lifecycle_state == LifecycleState.ONGOING.value,
            AnimeORM.total_episode_count.is_not(None),
            AnimeORM.episodes_observed >= AnimeORM.total_episode_count,
        )
        return await self._select_entities("find_finish_candidates", stmt)

    async def find_dub_sync_candidates(self, limit: int) -> list[CatalogEntity]:
        stmt = (
            select(AnimeORM)
            .where(AnimeORM.lifecycle_state.in_(
                [LifecycleState.ONGOING.value, LifecycleState.FINISHED.value]
            ))
            .order_by(AnimeORM.popularity.desc().nulls_last())
            .limit(limit)
        )
        return await self._select_entities("find_dub_sync_candidates", stmt)

    async def _select_entities(self, op: str, stmt: Any) -> list[CatalogEntity]:
        async with self._session(op) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [CatalogEntity.model_validate(r) for r in rows]

    async def update_entity_dub_fields(self, verdict: DubVerdict) -> None:
        async with self._session("update_entity_dub_fields", write=True) as session:
            row = await session.get(AnimeORM, verdict.entity_id)
            if row is None:
                logger.debug("dub_fields_entity_missing", entity_id=verdict.entity_id)
                return
            row.has_dub = verdict.has_dub
            row.dub_confidence = verdict.confidence
            row.dub_platforms = list(verdict.platforms)
            row.dub_sources = list(verdict.sources)
            row.dub_checked_at = verdict.resolved_at

    # ── Job log ─────────────────────────────────────────────────────────

    async def record_sync_run(self, run: SyncRun) -> None:
        values = {
            "job_type": run.job_type.value,
            "status": run.status.value,
            "added": run.added,
            "updated": run.updated,
            "errors": list(run.errors),
            "started_at": run.started_at,
            "completed_at": run.completed_at,
        }
        stmt = pg_insert(SyncRunORM).values(id=run.id, **values).on_conflict_do_update(
            index_elements=["id"], set_=values
        )
        async with self._session("record_sync_run", write=True) as session:
            await session.execute(stmt)

    async def recent_sync_runs(self, limit: int = 10, job_type: Optional[JobType] = None) -> list[SyncRun]:
        stmt = select(SyncRunORM).order_by(SyncRunORM.started_at.desc()).limit(limit)
        if job_type is not None:
            stmt = stmt.where(SyncRunORM.job_type == job_type.value)
        async with self._session("recent_sync_runs") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [SyncRun.model_validate(r) for r in rows]

    # ── Dub records / overrides / provenance ────────────────────────────

    async def upsert_dub_record(self, record: DubRecord) -> None:
        now = self._clock()
        stmt = pg_insert(DubRecordORM).values(
            anime_id=record.entity_id,
            platform=record.platform,
            dub_status=record.status.value,
            episodes_dubbed=record.episodes_dubbed,
            updated_at=now,
        ).on_conflict_do_update(
            constraint="uq_dub_platform",
            set_={
                "dub_status": record.status.value,
                "episodes_dubbed": func.greatest(DubRecordORM.episodes_dubbed, record.episodes_dubbed),
                "updated_at": now,
            },
        )
        async with self._session("upsert_dub_record", write=True) as session:
            await session.execute(stmt)

    async def find_dub_records(self, entity_id: int) -> list[DubRecord]:
        stmt = select(DubRecordORM).where(DubRecordORM.anime_id == entity_id)
        async with self._session("find_dub_records") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                DubRecord(
                    entity_id=r.anime_id,
                    platform=r.platform,
                    status=DubStatus(r.dub_status),
                    episodes_dubbed=r.episodes_dubbed,
                    updated_at=r.updated_at,
                )
                for r in rows
            ]

    async def find_override(self, entity_id: int) -> Optional[DubOverride]:
        async with self._session("find_override") as session:
            row = await session.get(DubOverrideORM, entity_id)
            if row is None:
                return None
            return DubOverride(
                entity_id=row.anime_id,
                has_dub=row.has_dub,
                platforms=list(row.platforms or []),
                status=DubStatus(row.dub_status) if row.dub_status else None,
                episodes=row.episodes,
                set_by=row.set_by,
                set_at=row.set_at,
            )

    async def set_override(self, override: DubOverride) -> None:
        values = {
            "has_dub": override.has_dub,
            "platforms": list(override.platforms),
            "dub_status": override.status.value if override.status else None,
            "episodes": override.episodes,
            "set_by": override.set_by,
            "set_at": override.set_at,
        }
        stmt = pg_insert(DubOverrideORM).values(anime_id=override.entity_id, **values).on_conflict_do_update(
            index_elements=["anime_id"], set_=values
        )
        async with self._session("set_override", write=True) as session:
            await session.execute(stmt)

    async def clear_override(self, entity_id: int) -> bool:
        stmt = delete(DubOverrideORM).where(DubOverrideORM.anime_id == entity_id)
        async with self._session("clear_override", write=True) as session:
            result = await session.execute(stmt)
            return (result.rowcount or 0) > 0

    async def record_dub_provenance(self, verdict: DubVerdict) -> None:
        async with self._session("record_dub_provenance", write=True) as session:
            session.add(DubProvenanceORM(
                anime_id=verdict.entity_id,
                has_dub=verdict.has_dub,
                confidence=verdict.confidence,
                platforms=list(verdict.platforms),
                sources=list(verdict.sources),
                resolved_at=verdict.resolved_at,
            ))

    async def platform_stats(self) -> list[PlatformStat]:
        total = func.count().label("total")
        stmt = (
            select(
                DubRecordORM.platform,
                total,
                func.sum(case((DubRecordORM.dub_status == DubStatus.FINISHED.value, 1), else_=0)).label("finished"),
                func.sum(case((DubRecordORM.dub_status == DubStatus.ONGOING.value, 1), else_=0)).label("ongoing"),
            )
            .where(DubRecordORM.dub_status != DubStatus.NONE.value)
            .group_by(DubRecordORM.platform)
            .order_by(total.desc())
        )
        async with self._session("platform_stats") as session:
            rows = (await session.execute(stmt)).all()
            return [
                PlatformStat(
                    platform=r.platform,
                    total=int(r.total),
                    finished=int(r.finished or 0),
                    ongoing=int(r.ongoing or 0),
                )
                for r in rows
            ]
