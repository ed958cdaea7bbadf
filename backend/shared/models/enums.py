"""Domain enumerations for the dub tracker."""
from __future__ import annotations

from enum import Enum


class Season(str, Enum):
    WINTER = "WINTER"
    SPRING = "SPRING"
    SUMMER = "SUMMER"
    FALL = "FALL"

    @property
    def ordinal(self) -> int:
        return list(Season).index(self)


class LifecycleState(str, Enum):
    NOT_STARTED = "not_started"
    ONGOING = "ongoing"
    FINISHED = "finished"
    HIATUS = "hiatus"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (LifecycleState.NOT_STARTED, LifecycleState.ONGOING, LifecycleState.HIATUS)


# Allowed forward moves; anything else is a ConflictingState and the stored value wins.
LIFECYCLE_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.NOT_STARTED: frozenset({
        LifecycleState.ONGOING,
        LifecycleState.FINISHED,
        LifecycleState.HIATUS,
        LifecycleState.CANCELLED,
    }),
    LifecycleState.ONGOING: frozenset({
        LifecycleState.FINISHED,
        LifecycleState.HIATUS,
        LifecycleState.CANCELLED,
    }),
    LifecycleState.HIATUS: frozenset({
        LifecycleState.ONGOING,
        LifecycleState.FINISHED,
        LifecycleState.CANCELLED,
    }),
    LifecycleState.CANCELLED: frozenset({
        LifecycleState.ONGOING,
        LifecycleState.FINISHED,
    }),
    LifecycleState.FINISHED: frozenset(),
}


class JobType(str, Enum):
    SEASON_SYNC = "season_sync"
    DAILY_UPDATE = "daily_update"
    DUB_SYNC = "dub_sync"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class DubStatus(str, Enum):
    """Per-platform dub record status. NONE is an explicit "confirmed no dub"."""
    ONGOING = "ONGOING"
    FINISHED = "FINISHED"
    NONE = "NONE"


class SourceName(str, Enum):
    """Dub sources in cascade order."""
    OVERRIDE = "override"
    PERSISTED = "persisted"
    CATALOG = "catalog"
    COMMUNITY = "community"
    SCRAPE = "scrape"
    PATTERN = "pattern"


CASCADE_ORDER: tuple[SourceName, ...] = tuple(SourceName)


class UpsertAction(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
