"""
Fusion of partial verdicts into one DubVerdict.
Override applies -> it alone decides, confidence 100.
Otherwise each positive source adds its weight; the sum is capped at 100.
"""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from shared.models.domain import DubVerdict
from shared.models.enums import SourceName

from dubs.platforms import normalize_platforms
from dubs.sources.base import Applicable, ProbeResult

# Positives from these sources corroborate a scrape hit
_CORROBORATING = frozenset({SourceName.CATALOG, SourceName.COMMUNITY, SourceName.PATTERN})

MAX_CONFIDENCE = 100


def contributing_results(
    results: Sequence[ProbeResult],
    scrape_requires_corroboration: bool = True,
) -> list[Applicable]:
    """
    Applicable results that take part in the verdict, in the order given.

    Negative results contribute nothing, except the persisted "confirmed no dub",
    which is kept so the verdict records that the title was checked.
    """
    applicable = [r for r in results if isinstance(r, Applicable)]
    terminal = next((r for r in applicable if r.terminal), None)
    if terminal is not None:
        return [terminal]

    corroborated = any(r.has_dub and r.source in _CORROBORATING for r in applicable)
    out: list[Applicable] = []
    for result in applicable:
        if result.has_dub:
            if result.source == SourceName.SCRAPE and scrape_requires_corroboration and not corroborated:
                continue
            out.append(result)
        elif result.source == SourceName.PERSISTED:
            out.append(result)
    return out


def fuse_verdict(
    entity_id: int,
    results: Sequence[ProbeResult],
    resolved_at: datetime,
    scrape_requires_corroboration: bool = True,
) -> DubVerdict:
    contributors = contributing_results(results, scrape_requires_corroboration)

    if contributors and contributors[0].terminal:
        override = contributors[0]
        return DubVerdict(
            entity_id=entity_id,
            has_dub=override.has_dub,
            confidence=MAX_CONFIDENCE,
            platforms=normalize_platforms(override.platform_names),
            sources=[override.source.value],
            resolved_at=resolved_at,
        )

    positives = [r for r in contributors if r.has_dub]
    confidence = max(0, min(sum(r.weight for r in positives), MAX_CONFIDENCE))
    return DubVerdict(
        entity_id=entity_id,
        has_dub=bool(positives),
        confidence=confidence,
        platforms=normalize_platforms(name for r in positives for name in r.platform_names),
        sources=[r.source.value for r in contributors],
        resolved_at=resolved_at,
    )
