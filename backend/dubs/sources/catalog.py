"""
Dub hints from the upstream catalog: English-language streaming links,
dub markers in link URLs and streaming episode titles, and dubbing studios.
"""
from __future__ import annotations

import re

from shared.models.domain import CatalogDubInfo, CatalogEntity
from shared.models.enums import SourceName

from catalog.client import CatalogClient
from dubs.platforms import canonical_platform, is_dub_studio, known_platform
from dubs.sources.base import DubSource, PlatformHit, ProbeResult, hits

_URL_MARKERS = ("/dub", "-dub", "english")
_EPISODE_TITLE = re.compile(r"english|\bdub\b", re.IGNORECASE)


def inspect_dub_info(info: CatalogDubInfo) -> tuple[bool, list[PlatformHit]]:
    """(has English audio evidence, platforms carrying it)."""
    has_dub = False
    platforms: list[str] = []

    for link in info.external_links:
        if (link.language or "").lower() == "english" and known_platform(link.site):
            has_dub = True
            platforms.append(known_platform(link.site))
        if link.url and any(marker in link.url.lower() for marker in _URL_MARKERS):
            has_dub = True
            platform = known_platform(link.site)
            if platform:
                platforms.append(platform)

    for episode in info.streaming_episodes:
        if episode.title and _EPISODE_TITLE.search(episode.title):
            has_dub = True
            platform = canonical_platform(episode.site)
            if platform:
                platforms.append(platform)

    if any(is_dub_studio(studio) for studio in info.studios):
        has_dub = True

    return has_dub, hits(platforms)


class CatalogDubSource(DubSource):
    def __init__(self, catalog: CatalogClient, weight: int = 30) -> None:
        super().__init__(weight)
        self._catalog = catalog

    @property
    def name(self) -> SourceName:
        return SourceName.CATALOG

    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        info = await self._catalog.fetch_dub_info(entity.external_id)
        if info is None:
            return self.not_applicable("title not in catalog")
        has_dub, platforms = inspect_dub_info(info)
        return self.applicable(has_dub, platforms if has_dub else ())
