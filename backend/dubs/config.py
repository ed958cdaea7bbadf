"""
Dub resolver configuration.
Uses DT_DUB_ prefix; database, Redis and upstream URLs come from shared.config.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DubSettings(BaseSettings):
    """Resolver-specific settings; use get_settings() for Redis/DB."""

    model_config = SettingsConfigDict(
        env_prefix="DT_DUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Per-source confidence contribution
    weight_override: int = Field(default=100, description="Terminal; forces confidence to 100")
    weight_persisted: int = Field(default=0, description="Authoritative for has_dub, adds no confidence")
    weight_catalog: int = 30
    weight_community: int = 40
    weight_scrape: int = 20
    weight_pattern: int = 30
    scrape_requires_corroboration: bool = Field(
        default=True, description="Scrape counts only alongside another positive source"
    )

    # Cache TTLs (seconds)
    memory_ttl_s: int = Field(default=6 * 3600, description="In-process verdict memo")
    snapshot_active_ttl_s: int = Field(default=15 * 60, description="Current or upcoming season")
    snapshot_recent_ttl_s: int = Field(default=2 * 3600, description="Season ended within the threshold")
    snapshot_historical_ttl_s: int = Field(default=7 * 86400, description="Season ended long ago")
    snapshot_retention_s: int = Field(default=30 * 86400, description="Redis key expiry for snapshots")
    historical_after_months: float = Field(default=6.0, description="Months after season end that count as historical")

    # Community heuristic
    community_min_score: float = 7.0
    community_min_members: int = 100_000

    # Batch resolution
    batch_concurrency: int = Field(default=3, description="Workers pulling from the batch queue")
    dub_sync_limit: int = Field(default=500, description="Titles re-checked per dub sync run")

    @field_validator("batch_concurrency")
    @classmethod
    def clamp_concurrency(cls, value: int) -> int:
        return max(1, value)


@lru_cache(maxsize=1)
def get_dub_settings() -> DubSettings:
    return DubSettings()
