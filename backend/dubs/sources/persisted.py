"""
Previously resolved per-platform dub rows.
Rows that are all NONE are an explicit "confirmed no dub", which is a verdict, not absence of data.
"""
from __future__ import annotations

from shared.models.domain import CatalogEntity
from shared.models.enums import DubStatus, SourceName
from shared.store import EntityStore

from dubs.sources.base import DubSource, PlatformHit, ProbeResult


class PersistedDubSource(DubSource):
    def __init__(self, store: EntityStore, weight: int = 0) -> None:
        super().__init__(weight)
        self._store = store

    @property
    def name(self) -> SourceName:
        return SourceName.PERSISTED

    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        records = await self._store.find_dub_records(entity.external_id)
        if not records:
            return self.not_applicable("never checked")
        dubbed = [r for r in records if r.status != DubStatus.NONE]
        if not dubbed:
            return self.applicable(False)
        return self.applicable(
            True,
            [PlatformHit(name=r.platform, status=r.status, episodes=r.episodes_dubbed) for r in dubbed],
        )
