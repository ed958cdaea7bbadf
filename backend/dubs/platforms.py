"""
Streaming platform names and the company/studio lists used as dub signals.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

# Lowercased upstream spelling → canonical platform name
PLATFORM_ALIASES: dict[str, str] = {
    "crunchyroll": "Crunchyroll",
    "funimation": "Funimation",
    "hidive": "HIDIVE",
    "netflix": "Netflix",
    "amazon": "Amazon",
    "amazon prime": "Amazon",
    "amazon prime video": "Amazon",
    "prime video": "Amazon",
    "hulu": "Hulu",
    "disney+": "Disney+",
    "disney plus": "Disney+",
    "hbo max": "Max",
    "max": "Max",
    "adult swim": "Adult Swim",
    "toonami": "Adult Swim",
}

# Sites whose presence in catalog links counts as a dub-capable platform
DUB_PLATFORMS: frozenset[str] = frozenset(PLATFORM_ALIASES.values())

# Studios that produce English dubs
DUB_STUDIOS: tuple[str, ...] = (
    "Funimation",
    "Bang Zoom",
    "Studiopolis",
    "NYAV Post",
    "Sound Cadence Studios",
    "Okratron 5000",
    "VSI Los Angeles",
    "Spliced Bread Productions",
    "Kocha Sound",
    "PCB Productions",
)

# Licensors, producers and studios known to commission English dubs
DUB_COMPANIES: tuple[str, ...] = (
    "Funimation",
    "Crunchyroll",
    "Aniplex of America",
    "Viz Media",
    "Sentai Filmworks",
    "Bang Zoom! Entertainment",
    "Studiopolis",
    "NYAV Post",
    "Sound Cadence Studios",
    "ADV Films",
    "Geneon",
    "Media Play",
    "Bandai Entertainment",
    "Manga Entertainment",
    "Discotek Media",
    "NIS America",
    "Ponycan USA",
    "Eleven Arts",
)

# Licensors that dub their popular titles but are not dub companies themselves
MAJOR_LICENSORS: frozenset[str] = frozenset({
    "Aniplex",
    "Netflix",
    "HIDIVE",
    "Toho",
    "Warner Bros. Japan",
})

_MAJOR_FOLDED = frozenset(n.casefold() for n in MAJOR_LICENSORS)

_WS = re.compile(r"\s+")


def canonical_platform(name: Optional[str]) -> Optional[str]:
    """Canonical name for a platform; unknown names are returned trimmed, blanks as None."""
    if not name:
        return None
    cleaned = _WS.sub(" ", name).strip()
    if not cleaned:
        return None
    return PLATFORM_ALIASES.get(cleaned.lower(), cleaned)


def known_platform(name: Optional[str]) -> Optional[str]:
    """Canonical name only when the platform is on the dub-capable list."""
    canonical = canonical_platform(name)
    return canonical if canonical in DUB_PLATFORMS else None


def normalize_platforms(names: Iterable[Optional[str]]) -> list[str]:
    """Alias-fold and dedup case-insensitively, keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        canonical = canonical_platform(name)
        if canonical is None:
            continue
        key = canonical.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(canonical)
    return out


def is_dub_company(name: Optional[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(company.lower() in lowered for company in DUB_COMPANIES)


def is_major_licensor(name: Optional[str]) -> bool:
    return bool(name) and name.strip().casefold() in _MAJOR_FOLDED


def is_dub_studio(name: Optional[str]) -> bool:
    return bool(name) and name in DUB_STUDIOS
