"""Season bucket arithmetic."""
from __future__ import annotations

from datetime import date, datetime

from shared.models.enums import Season

_SEASONS = list(Season)


def season_for_month(month: int) -> Season:
    """Jan-Mar WINTER, Apr-Jun SPRING, Jul-Sep SUMMER, Oct-Dec FALL."""
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {month}")
    return _SEASONS[(month - 1) // 3]


def current_season(now: datetime | date) -> tuple[Season, int]:
    return season_for_month(now.month), now.year


def next_season(season: Season, year: int) -> tuple[Season, int]:
    nxt = _SEASONS[(season.ordinal + 1) % 4]
    return nxt, (year + 1 if nxt == Season.WINTER else year)


def season_end(season: Season, year: int) -> date:
    """First day after the season's last month."""
    month = (season.ordinal + 1) * 3 + 1
    if month > 12:
        return date(year + 1, 1, 1)
    return date(year, month, 1)


def is_season_finished(season: Season, year: int, today: date) -> bool:
    return today >= season_end(season, year)


def months_since_season_end(season: Season, year: int, today: date) -> float:
    """Whole-day distance from season end, in 30-day months. Negative while the season runs."""
    return (today - season_end(season, year)).days / 30
