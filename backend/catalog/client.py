"""
GraphQL catalog client.
Every call goes through the shared RateLimitedFetcher under the "catalog" source.
"""
from __future__ import annotations

from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.errors import ShapeError, TransportError
from shared.models.domain import CatalogDubInfo, CatalogEntity, CatalogPage
from shared.models.enums import Season
from shared.utils.http_client import RateLimitedFetcher
from shared.utils.logging import get_logger

from catalog.transform import SOURCE, media_to_dub_info, media_to_entity

logger = get_logger(__name__)

_MEDIA_FIELDS = """
    id
    idMal
    title { romaji english native }
    season
    seasonYear
    episodes
    status
    format
    genres
    studios(isMain: true) { nodes { name } }
    nextAiringEpisode { airingAt episode }
    coverImage { extraLarge large }
    averageScore
    popularity
"""

SEASON_PAGE_QUERY = """
query ($season: MediaSeason, $year: Int, $page: Int, $perPage: Int) {
  Page(page: $page, perPage: $perPage) {
    pageInfo { currentPage hasNextPage }
    media(season: $season, seasonYear: $year, type: ANIME, sort: POPULARITY_DESC) {%s}
  }
}
""" % _MEDIA_FIELDS

ENTITY_QUERY = """
query ($id: Int) {
  Media(id: $id, type: ANIME) {%s
    airingSchedule(notYetAired: false, page: 1, perPage: 50) { nodes { episode airingAt } }
  }
}
""" % _MEDIA_FIELDS

AIRING_IDS_QUERY = """
query ($page: Int, $perPage: Int) {
  Page(page: $page, perPage: $perPage) {
    pageInfo { currentPage hasNextPage }
    media(status: RELEASING, type: ANIME, sort: POPULARITY_DESC) { id }
  }
}
"""

DUB_INFO_QUERY = """
query ($id: Int) {
  Media(id: $id, type: ANIME) {
    id
    externalLinks { site url language type }
    streamingEpisodes { site title url }
    studios(isMain: false) { nodes { name } }
  }
}
"""


class CatalogClient:
    """Query interface over the upstream GraphQL catalog."""

    def __init__(self, fetcher: RateLimitedFetcher, settings: Settings | None = None) -> None:
        self._fetcher = fetcher
        self._settings = settings or get_settings()

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        body = await self._fetcher.fetch_json(
            SOURCE,
            "POST",
            self._settings.catalog_api_url,
            json={"query": query, "variables": variables},
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        if not isinstance(body, dict):
            raise ShapeError(SOURCE, "response body is not an object")
        if body.get("errors") and not body.get("data"):
            messages = "; ".join(str(e.get("message", e)) for e in body["errors"] if isinstance(e, dict))
            raise ShapeError(SOURCE, f"graphql errors: {messages or body['errors']}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise ShapeError(SOURCE, "response has no data object")
        return data

    @staticmethod
    def _page_of(data: dict[str, Any]) -> tuple[list[Any], dict[str, Any]]:
        page = data.get("Page")
        if not isinstance(page, dict) or not isinstance(page.get("media"), list):
            raise ShapeError(SOURCE, "Page.media missing")
        return page["media"], page.get("pageInfo") or {}

    async def fetch_season_page(
        self, season: Season, year: int, page: int, page_size: int | None = None
    ) -> CatalogPage:
        """
        One page of a season bucket.

        Items that fail to parse are reported in `rejected` rather than
        failing the page; transport failures propagate.
        """
        data = await self._query(
            SEASON_PAGE_QUERY,
            {
                "season": season.value,
                "year": year,
                "page": page,
                "perPage": page_size or self._settings.catalog_page_size,
            },
        )
        media, info = self._page_of(data)
        items: list[CatalogEntity] = []
        rejected: list[str] = []
        for raw in media:
            try:
                items.append(media_to_entity(raw))
            except ShapeError as exc:
                rejected.append(str(exc))
        return CatalogPage(
            items=items,
            rejected=rejected,
            page=info.get("currentPage") or page,
            has_next_page=bool(info.get("hasNextPage")),
        )

    async def fetch_entity(self, external_id: int) -> Optional[CatalogEntity]:
        """Full detail for one title, including aired schedule. None when the catalog has no such title."""
        try:
            data = await self._query(ENTITY_QUERY, {"id": external_id})
        except TransportError as exc:
            if exc.status_code == 404:
                return None
            raise
        media = data.get("Media")
        return media_to_entity(media) if media else None

    async def fetch_airing_ids(self, max_pages: int | None = None) -> set[int]:
        """Ids in the catalog's "currently airing" listing, capped at `max_pages` pages."""
        limit = max_pages or self._settings.airing_max_pages
        ids: set[int] = set()
        page = 1
        while page <= limit:
            data = await self._query(
                AIRING_IDS_QUERY, {"page": page, "perPage": self._settings.catalog_page_size}
            )
            media, info = self._page_of(data)
            ids.update(m["id"] for m in media if isinstance(m, dict) and isinstance(m.get("id"), int))
            if not info.get("hasNextPage"):
                break
            page += 1
        logger.debug("airing_ids_fetched", count=len(ids), pages=page)
        return ids

    async def fetch_dub_info(self, external_id: int) -> Optional[CatalogDubInfo]:
        data = await self._query(DUB_INFO_QUERY, {"id": external_id})
        media = data.get("Media")
        return media_to_dub_info(media) if media else None
