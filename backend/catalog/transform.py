"""
Upstream GraphQL media objects → CatalogEntity.
Pure functions; a malformed media object raises ShapeError.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from shared.errors import ShapeError
from shared.models.domain import CatalogDubInfo, CatalogEntity, ExternalLink, StreamingEpisode
from shared.models.enums import LifecycleState, Season

SOURCE = "catalog"

STATUS_MAP: dict[str, LifecycleState] = {
    "RELEASING": LifecycleState.ONGOING,
    "FINISHED": LifecycleState.FINISHED,
    "NOT_YET_RELEASED": LifecycleState.NOT_STARTED,
    "CANCELLED": LifecycleState.CANCELLED,
    "HIATUS": LifecycleState.HIATUS,
}


def map_status(status: Optional[str]) -> LifecycleState:
    return STATUS_MAP.get(status or "", LifecycleState.NOT_STARTED)


def derive_episodes_observed(media: dict[str, Any]) -> int:
    """
    Latest aired schedule entry; else next airing episode minus one;
    else the total when the title is finished; else zero.
    """
    nodes = (media.get("airingSchedule") or {}).get("nodes") or []
    aired = [n.get("episode") for n in nodes if isinstance(n, dict) and n.get("episode")]
    if aired:
        return max(aired)
    next_airing = media.get("nextAiringEpisode") or {}
    if next_airing.get("episode"):
        return max(int(next_airing["episode"]) - 1, 0)
    if media.get("status") == "FINISHED":
        return media.get("episodes") or 0
    return 0


def _epoch(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _season(value: Optional[str]) -> Optional[Season]:
    try:
        return Season(value) if value else None
    except ValueError:
        return None


def _require_id(media: Any) -> int:
    if not isinstance(media, dict) or not isinstance(media.get("id"), int):
        raise ShapeError(SOURCE, f"media without integer id: {str(media)[:120]}")
    return media["id"]


def media_to_entity(media: dict[str, Any]) -> CatalogEntity:
    external_id = _require_id(media)
    title = media.get("title") or {}
    next_airing = media.get("nextAiringEpisode") or {}
    cover = media.get("coverImage") or {}
    studios = (media.get("studios") or {}).get("nodes") or []
    try:
        return CatalogEntity(
            external_id=external_id,
            secondary_id=media.get("idMal"),
            title_romaji=title.get("romaji"),
            title_english=title.get("english"),
            title_native=title.get("native"),
            season=_season(media.get("season")),
            year=media.get("seasonYear"),
            format=media.get("format"),
            total_episode_count=media.get("episodes"),
            episodes_observed=derive_episodes_observed(media),
            lifecycle_state=map_status(media.get("status")),
            next_episode_at=_epoch(next_airing.get("airingAt")),
            next_episode_number=next_airing.get("episode"),
            popularity=media.get("popularity"),
            score=media.get("averageScore"),
            studios=[s["name"] for s in studios if s.get("name")],
            genres=list(media.get("genres") or []),
            cover_image_url=cover.get("extraLarge") or cover.get("large"),
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise ShapeError(SOURCE, f"media {external_id}: {exc}") from exc


def media_to_dub_info(media: dict[str, Any]) -> CatalogDubInfo:
    external_id = _require_id(media)
    try:
        return CatalogDubInfo(
            external_id=external_id,
            external_links=[ExternalLink.model_validate(link) for link in media.get("externalLinks") or []],
            streaming_episodes=[
                StreamingEpisode.model_validate(ep) for ep in media.get("streamingEpisodes") or []
            ],
            studios=[s["name"] for s in (media.get("studios") or {}).get("nodes") or [] if s.get("name")],
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise ShapeError(SOURCE, f"media {external_id}: {exc}") from exc
