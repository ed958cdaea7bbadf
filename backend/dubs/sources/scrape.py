"""
Unofficial stream listing. Least trusted source: any failure is silent,
and the resolver ignores it unless another source corroborates.
"""
from __future__ import annotations

from shared.config import Settings, get_settings
from shared.errors import DubTrackError
from shared.models.domain import CatalogEntity
from shared.models.enums import DubStatus, SourceName
from shared.utils.http_client import RateLimitedFetcher
from shared.utils.logging import get_logger

from dubs.platforms import canonical_platform
from dubs.sources.base import DubSource, PlatformHit, ProbeResult

logger = get_logger(__name__)

SOURCE = "scrape"


class ScrapeDubSource(DubSource):
    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        weight: int = 20,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(weight)
        self._fetcher = fetcher
        self._settings = settings or get_settings()

    @property
    def name(self) -> SourceName:
        return SourceName.SCRAPE

    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        url = f"{self._settings.scrape_api_url}/anime/{entity.external_id}"
        try:
            body = await self._fetcher.fetch_json(
                SOURCE,
                "GET",
                url,
                headers={"Accept": "application/json", "User-Agent": self._settings.scrape_user_agent},
            )
        except DubTrackError as exc:
            logger.debug("scrape_unavailable", entity_id=entity.external_id, error=str(exc))
            return self.not_applicable("unavailable")

        streams = body.get("streams") if isinstance(body, dict) else None
        if not isinstance(streams, list):
            return self.not_applicable("no stream listing")

        platforms: list[PlatformHit] = []
        for stream in streams:
            if not isinstance(stream, dict):
                continue
            if stream.get("audio") != "en" and stream.get("dub") is not True:
                continue
            name = canonical_platform(stream.get("service"))
            if not name:
                continue
            status = DubStatus.FINISHED if stream.get("status") == "FINISHED" else DubStatus.ONGOING
            platforms.append(PlatformHit(name=name, status=status))
        return self.applicable(bool(platforms), platforms)
