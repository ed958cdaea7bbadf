"""
SQLAlchemy 2.0 ORM models for the dub tracker.
Schema and indices are owned by the host's migrations; these only map rows.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class AnimeORM(Base):
    __tablename__ = "anime"

    external_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    secondary_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    title_romaji: Mapped[Optional[str]] = mapped_column(String(500))
    title_english: Mapped[Optional[str]] = mapped_column(String(500))
    title_native: Mapped[Optional[str]] = mapped_column(String(500))
    season: Mapped[Optional[str]] = mapped_column(String(10))
    year: Mapped[Optional[int]] = mapped_column(SmallInteger)
    format: Mapped[Optional[str]] = mapped_column(String(20))
    total_episode_count: Mapped[Optional[int]] = mapped_column(Integer)
    episodes_observed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifecycle_state: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started")
    next_episode_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    next_episode_number: Mapped[Optional[int]] = mapped_column(Integer)
    popularity: Mapped[Optional[int]] = mapped_column(Integer)
    score: Mapped[Optional[int]] = mapped_column(SmallInteger)
    studios: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    genres: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    cover_image_url: Mapped[Optional[str]] = mapped_column(Text)

    has_dub: Mapped[Optional[bool]] = mapped_column(Boolean)
    dub_confidence: Mapped[Optional[int]] = mapped_column(SmallInteger)
    dub_platforms: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    dub_sources: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    dub_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DubRecordORM(Base):
    __tablename__ = "dubs"
    __table_args__ = (
        UniqueConstraint("anime_id", "platform", name="uq_dub_platform"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    anime_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("anime.external_id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(100), nullable=False)
    dub_status: Mapped[str] = mapped_column(String(20), nullable=False)
    episodes_dubbed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DubOverrideORM(Base):
    __tablename__ = "dub_overrides"

    anime_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("anime.external_id", ondelete="CASCADE"), primary_key=True
    )
    has_dub: Mapped[bool] = mapped_column(Boolean, nullable=False)
    platforms: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    dub_status: Mapped[Optional[str]] = mapped_column(String(20))
    episodes: Mapped[Optional[int]] = mapped_column(Integer)
    set_by: Mapped[str] = mapped_column(String(100), nullable=False, default="manual")
    set_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DubProvenanceORM(Base):
    """Append-only log of resolved verdicts and the sources behind them."""
    __tablename__ = "dub_provenance"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    anime_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    has_dub: Mapped[bool] = mapped_column(Boolean, nullable=False)
    confidence: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    platforms: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    sources: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SyncRunORM(Base):
    __tablename__ = "sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
