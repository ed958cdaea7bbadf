"""
Community wiki data keyed by the secondary id: licensor, producer and studio
credits plus streaming listings.
"""
from __future__ import annotations

from typing import Any

from shared.config import Settings, get_settings
from shared.errors import ShapeError, TransportError
from shared.models.domain import CatalogEntity
from shared.models.enums import SourceName
from shared.utils.http_client import RateLimitedFetcher

from dubs.platforms import is_dub_company, is_major_licensor, known_platform
from dubs.sources.base import DubSource, ProbeResult, hits

SOURCE = "community"


def _names(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    out = []
    for item in items:
        name = item.get("name") if isinstance(item, dict) else item
        if isinstance(name, str) and name:
            out.append(name)
    return out


class CommunityDubSource(DubSource):
    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        weight: int = 40,
        min_score: float = 7.0,
        min_members: int = 100_000,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(weight)
        self._fetcher = fetcher
        self._settings = settings or get_settings()
        self._min_score = min_score
        self._min_members = min_members

    @property
    def name(self) -> SourceName:
        return SourceName.COMMUNITY

    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        if not entity.secondary_id:
            return self.not_applicable("no secondary id")
        url = f"{self._settings.community_api_url}/anime/{entity.secondary_id}/full"
        try:
            body = await self._fetcher.fetch_json(SOURCE, "GET", url)
        except TransportError as exc:
            if exc.status_code == 404:
                return self.not_applicable("not listed")
            raise
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ShapeError(SOURCE, "response has no data object")
        return self.evaluate(data)

    def evaluate(self, data: dict[str, Any]) -> ProbeResult:
        companies = _names(data.get("producers")) + _names(data.get("licensors")) + _names(data.get("studios"))
        has_dub = any(is_dub_company(c) for c in companies)

        score = data.get("score") or 0
        members = data.get("members") or 0
        if not has_dub and score >= self._min_score and members >= self._min_members:
            has_dub = any(is_major_licensor(c) for c in companies)

        platforms = [known_platform(s) for s in _names(data.get("streaming"))]
        return self.applicable(has_dub, hits(platforms) if has_dub else ())
