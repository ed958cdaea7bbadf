"""Manually curated verdicts. When present, they decide the outcome on their own."""
from __future__ import annotations

from shared.models.domain import CatalogEntity
from shared.models.enums import DubStatus, SourceName
from shared.store import EntityStore

from dubs.platforms import canonical_platform
from dubs.sources.base import DubSource, PlatformHit, ProbeResult


class OverrideSource(DubSource):
    def __init__(self, store: EntityStore, weight: int = 100) -> None:
        super().__init__(weight)
        self._store = store

    @property
    def name(self) -> SourceName:
        return SourceName.OVERRIDE

    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        override = await self._store.find_override(entity.external_id)
        if override is None:
            return self.not_applicable("no override")
        status = override.status or DubStatus.ONGOING
        platforms = [
            PlatformHit(name=canonical_platform(p) or p, status=status, episodes=override.episodes or 0)
            for p in override.platforms
        ]
        return self.applicable(override.has_dub, platforms, terminal=True)
