"""Last resort: title match against franchises that are reliably dubbed."""
from __future__ import annotations

import re

from shared.models.domain import CatalogEntity
from shared.models.enums import SourceName

from dubs.sources.base import DubSource, ProbeResult, hits

KNOWN_DUBBED_FRANCHISES: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), platforms)
    for pattern, platforms in (
        (r"naruto|boruto", ("Crunchyroll", "Hulu")),
        (r"one piece", ("Crunchyroll", "Funimation")),
        (r"dragon ball", ("Crunchyroll", "Funimation")),
        (r"my hero academia|boku no hero", ("Crunchyroll", "Funimation")),
        (r"demon slayer|kimetsu no yaiba", ("Crunchyroll", "Funimation")),
        (r"jujutsu kaisen", ("Crunchyroll",)),
        (r"attack on titan|shingeki no kyojin", ("Crunchyroll", "Funimation")),
        (r"black clover", ("Crunchyroll", "Funimation")),
        (r"bleach", ("Hulu", "Disney+")),
        (r"hunter.*hunter", ("Crunchyroll", "Netflix")),
        (r"fullmetal alchemist", ("Crunchyroll", "Funimation")),
        (r"sword art online", ("Crunchyroll", "Hulu")),
        (r"re:zero|re zero", ("Crunchyroll",)),
        (r"konosuba", ("Crunchyroll",)),
        (r"mob psycho", ("Crunchyroll",)),
        (r"one punch man", ("Crunchyroll", "Hulu")),
        (r"spy.*family", ("Crunchyroll",)),
        (r"chainsaw man", ("Crunchyroll",)),
        (r"tokyo revengers", ("Crunchyroll",)),
        (r"dr\.?\s*stone", ("Crunchyroll", "Funimation")),
        (r"fire force|enen no shouboutai", ("Crunchyroll", "Funimation")),
        (r"fairy tail", ("Crunchyroll", "Funimation")),
        (r"overlord", ("Crunchyroll", "Funimation")),
        (r"that time i got reincarnated as a slime|tensei shitara slime", ("Crunchyroll",)),
        (r"mushoku tensei", ("Crunchyroll", "Funimation")),
    )
)


def match_franchise(titles: list[str]) -> tuple[str, ...] | None:
    for pattern, platforms in KNOWN_DUBBED_FRANCHISES:
        if any(pattern.search(title) for title in titles):
            return platforms
    return None


class PatternDubSource(DubSource):
    def __init__(self, weight: int = 30) -> None:
        super().__init__(weight)

    @property
    def name(self) -> SourceName:
        return SourceName.PATTERN

    async def _probe(self, entity: CatalogEntity) -> ProbeResult:
        platforms = match_franchise(entity.titles)
        if platforms is None:
            return self.not_applicable("no franchise match")
        return self.applicable(True, hits(platforms))
