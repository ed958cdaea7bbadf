"""
Pydantic v2 domain models shared across the dub tracker.
These are the canonical internal representations, NOT ORM models.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import DubStatus, JobType, LifecycleState, RunStatus, Season


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Catalog ─────────────────────────────────────────────────────────────
class ExternalLink(DomainModel):
    site: Optional[str] = None
    url: Optional[str] = None
    language: Optional[str] = None
    type: Optional[str] = None


class StreamingEpisode(DomainModel):
    site: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None


# Fields the catalog itself owns. Anything else on CatalogEntity is a local enrichment.
CATALOG_FIELDS: tuple[str, ...] = (
    "secondary_id",
    "title_romaji",
    "title_english",
    "title_native",
    "season",
    "year",
    "format",
    "total_episode_count",
    "episodes_observed",
    "lifecycle_state",
    "next_episode_at",
    "next_episode_number",
    "popularity",
    "score",
    "studios",
    "genres",
    "cover_image_url",
)

DUB_FIELDS: tuple[str, ...] = (
    "has_dub",
    "dub_confidence",
    "dub_platforms",
    "dub_sources",
    "dub_checked_at",
)


class CatalogEntity(DomainModel):
    """One tracked title, keyed by the upstream catalog id."""
    external_id: int
    secondary_id: Optional[int] = None
    title_romaji: Optional[str] = None
    title_english: Optional[str] = None
    title_native: Optional[str] = None
    season: Optional[Season] = None
    year: Optional[int] = None
    format: Optional[str] = None
    total_episode_count: Optional[int] = None
    episodes_observed: int = 0
    lifecycle_state: LifecycleState = LifecycleState.NOT_STARTED
    next_episode_at: Optional[datetime] = None
    next_episode_number: Optional[int] = None
    popularity: Optional[int] = None
    score: Optional[int] = None
    studios: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    cover_image_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    # Denormalized dub verdict, written back by the resolver
    has_dub: Optional[bool] = None
    dub_confidence: Optional[int] = None
    dub_platforms: list[str] = Field(default_factory=list)
    dub_sources: list[str] = Field(default_factory=list)
    dub_checked_at: Optional[datetime] = None

    @property
    def title(self) -> str:
        return self.title_romaji or self.title_english or self.title_native or "Unknown"

    @property
    def titles(self) -> list[str]:
        return [t for t in (self.title_romaji, self.title_english, self.title_native) if t]

    def catalog_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in CATALOG_FIELDS}


class CatalogPage(DomainModel):
    items: list[CatalogEntity] = Field(default_factory=list)
    # Messages for items on the page that could not be parsed
    rejected: list[str] = Field(default_factory=list)
    page: int = 1
    has_next_page: bool = False


class CatalogDubInfo(DomainModel):
    """English-audio hints the catalog exposes for one title."""
    external_id: int
    external_links: list[ExternalLink] = Field(default_factory=list)
    streaming_episodes: list[StreamingEpisode] = Field(default_factory=list)
    studios: list[str] = Field(default_factory=list)


class UpsertOutcome(DomainModel):
    is_new: bool


# ── Dubs ────────────────────────────────────────────────────────────────
class DubVerdict(DomainModel):
    """Resolved dub status for one entity. Superseded, never versioned."""
    entity_id: int
    has_dub: bool = False
    confidence: int = Field(default=0, ge=0, le=100)
    platforms: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    resolved_at: datetime = Field(default_factory=_utcnow)


class DubRecord(DomainModel):
    """Per-platform dub row in the persistent store."""
    entity_id: int
    platform: str
    status: DubStatus
    episodes_dubbed: int = 0
    updated_at: Optional[datetime] = None


class DubOverride(DomainModel):
    """Manually curated verdict; fully determines the outcome when present."""
    entity_id: int
    has_dub: bool
    platforms: list[str] = Field(default_factory=list)
    status: Optional[DubStatus] = None
    episodes: Optional[int] = None
    set_by: str = "manual"
    set_at: datetime = Field(default_factory=_utcnow)


class PlatformStat(DomainModel):
    platform: str
    total: int = 0
    finished: int = 0
    ongoing: int = 0


class SeasonDubStats(DomainModel):
    season: Season
    year: int
    total: int = 0
    dubbed: int = 0
    confirmed: int = 0
    percentage: int = 0
    platforms: dict[str, int] = Field(default_factory=dict)


# ── Jobs ────────────────────────────────────────────────────────────────
class SyncRun(DomainModel):
    """One execution of a sync job. completed_at is set once, on the terminal transition."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    job_type: JobType
    status: RunStatus = RunStatus.RUNNING
    added: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def complete(self, status: RunStatus, at: datetime) -> None:
        if self.completed_at is not None:
            raise ValueError(f"sync run {self.id} already completed")
        self.status = status
        self.completed_at = at
