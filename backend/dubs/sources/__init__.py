from dubs.sources.base import Applicable, DubSource, NotApplicable, PlatformHit, ProbeResult
from dubs.sources.catalog import CatalogDubSource
from dubs.sources.community import CommunityDubSource
from dubs.sources.override import OverrideSource
from dubs.sources.pattern import PatternDubSource
from dubs.sources.persisted import PersistedDubSource
from dubs.sources.scrape import ScrapeDubSource

__all__ = [
    "Applicable",
    "CatalogDubSource",
    "CommunityDubSource",
    "DubSource",
    "NotApplicable",
    "OverrideSource",
    "PatternDubSource",
    "PersistedDubSource",
    "PlatformHit",
    "ProbeResult",
    "ScrapeDubSource",
]
