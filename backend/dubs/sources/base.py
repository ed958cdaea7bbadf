"""
Uniform probe contract for dub sources.
A probe returns Applicable (a partial verdict) or NotApplicable (with a reason); it never raises.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from shared.models.domain import CatalogEntity
from shared.models.enums import DubStatus, SourceName
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_PROBES

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlatformHit:
    """One platform a source reports English audio on."""
    name: str
    status: DubStatus = DubStatus.ONGOING
    episodes: int = 0


@dataclass(frozen=True)
class Applicable:
    source: SourceName
    has_dub: bool
    platforms: tuple[PlatformHit, ...] = ()
    weight: int = 0
    terminal: bool = False

    @property
    def platform_names(self) -> list[str]:
        return [p.name for p in self.platforms]


@dataclass(frozen=True)
class NotApplicable:
    source: SourceName
    reason: str


ProbeResult = Union[Applicable, NotApplicable]


class DubSource(ABC):
    """Base for the override, persisted, catalog, community, scrape and pattern sources."""

    def __init__(self, weight: int = 0) -> None:
        self._weight = weight

    @property
    @abstractmethod
    def name(self) -> SourceName:
        pass

    @property
    def weight(self) -> int:
        return self._weight

    async def probe(self, entity: CatalogEntity) -> ProbeResult:
        try:
            result = await self._probe(entity)
        except Exception as exc:
            logger.warning(
                "source_probe_failed",
                source=self.name.value,
                entity_id=entity.external_id,
                error=str(exc) or exc.__class__.__name__,
            )
            result = NotApplicable(self.name, f"{exc.__class__.__name__}: {exc}")
        outcome = "not_applicable"
        if isinstance(result, Applicable):
            outcome = "positive" if result.has_dub else "negative"
        SOURCE_PROBES.labels(source=self.name.value, outcome=outcome).inc()
        return result

    @abstractmethod
    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        """Source-specific lookup. May raise; probe() converts failures to NotApplicable."""
        pass

    def applicable(
        self,
        has_dub: bool,
        platforms: Iterable[PlatformHit] = (),
        terminal: bool = False,
    ) -> Applicable:
        return Applicable(
            source=self.name,
            has_dub=has_dub,
            platforms=tuple(platforms),
            weight=self._weight,
            terminal=terminal,
        )

    def not_applicable(self, reason: str) -> NotApplicable:
        return NotApplicable(self.name, reason)


def hits(names: Iterable[Optional[str]], status: DubStatus = DubStatus.ONGOING) -> list[PlatformHit]:
    """PlatformHits for the non-empty names, in order."""
    return [PlatformHit(name=n, status=status) for n in names if n]
