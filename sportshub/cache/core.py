"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Timezone-aware current UTC time. Default clock for every component."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StatusGroup(Enum):
    """Volatility groups for fixture statuses."""
    LIVE = "live"
    FINISHED = "finished"
    DISRUPTED = "disrupted"   # postponed / cancelled / abandoned / suspended
    SCHEDULED = "scheduled"


class MatchStatus(Enum):
    """API-Football short status codes."""
    TBD = "TBD"
    NOT_STARTED = "NS"
    FIRST_HALF = "1H"
    HALFTIME = "HT"
    SECOND_HALF = "2H"
    EXTRA_TIME = "ET"
    BREAK_TIME = "BT"
    PENALTIES = "P"
    INTERRUPTED = "INT"
    LIVE = "LIVE"
    FULL_TIME = "FT"
    AFTER_EXTRA_TIME = "AET"
    AFTER_PENALTIES = "PEN"
    AWARDED = "AWD"
    WALKOVER = "WO"
    POSTPONED = "PST"
    CANCELLED = "CANC"
    ABANDONED = "ABD"
    SUSPENDED = "SUSP"
    UNKNOWN = "?"

    @classmethod
    def parse(cls, code: Optional[str]) -> "MatchStatus":
        """Parse a short code; anything unrecognised becomes UNKNOWN."""
        try:
            return cls((code or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def group(self) -> StatusGroup:
        return _STATUS_GROUPS.get(self, StatusGroup.SCHEDULED)


_STATUS_GROUPS: Dict[MatchStatus, StatusGroup] = {
    MatchStatus.FIRST_HALF: StatusGroup.LIVE,
    MatchStatus.HALFTIME: StatusGroup.LIVE,
    MatchStatus.SECOND_HALF: StatusGroup.LIVE,
    MatchStatus.EXTRA_TIME: StatusGroup.LIVE,
    MatchStatus.BREAK_TIME: StatusGroup.LIVE,
    MatchStatus.PENALTIES: StatusGroup.LIVE,
    MatchStatus.INTERRUPTED: StatusGroup.LIVE,
    MatchStatus.LIVE: StatusGroup.LIVE,
    MatchStatus.FULL_TIME: StatusGroup.FINISHED,
    MatchStatus.AFTER_EXTRA_TIME: StatusGroup.FINISHED,
    MatchStatus.AFTER_PENALTIES: StatusGroup.FINISHED,
    MatchStatus.AWARDED: StatusGroup.FINISHED,
    MatchStatus.WALKOVER: StatusGroup.FINISHED,
    MatchStatus.POSTPONED: StatusGroup.DISRUPTED,
    MatchStatus.CANCELLED: StatusGroup.DISRUPTED,
    MatchStatus.ABANDONED: StatusGroup.DISRUPTED,
    MatchStatus.SUSPENDED: StatusGroup.DISRUPTED,
}


def classify_status(code: Optional[str]) -> StatusGroup:
    """Map a raw short status code onto its volatility group."""
    return MatchStatus.parse(code).group


class CacheTier(Enum):
    """
    TTL classes shared by the store and the HTTP Cache-Control headers.

    Value is (ttl_seconds, cache_control).
    """
    BYPASS = (0, "no-store, no-cache, must-revalidate")
    LIVE = (60, "no-store, no-cache, must-revalidate")
    SHORT = (300, "public, s-maxage=300, stale-while-revalidate=150")
    MEDIUM = (3600, "public, s-maxage=3600, stale-while-revalidate=1800")
    LONG = (21600, "public, s-maxage=21600, stale-while-revalidate=10800")
    VERY_LONG = (86400, "public, s-maxage=86400, stale-while-revalidate=43200")
    STATIC = (604800, "public, s-maxage=86400, stale-while-revalidate=43200")

    @property
    def seconds(self) -> int:
        return self.value[0]

    @property
    def cache_control(self) -> str:
        return self.value[1]


@dataclass
class StaleRead:
    """
    Result of a stale-while-revalidate lookup.

    ``is_stale`` tells the caller a background refresh is due; ``ttl_seconds``
    is the TTL the list was classified with when it was stored.
    """
    data: Any
    is_stale: bool
    expires_at: Optional[datetime] = None
    ttl_seconds: Optional[int] = None


@dataclass
class CacheEntrySnapshot:
    """Read-only view of a stored cache row, used by admin endpoints and tests."""
    endpoint: str
    params_key: str
    payload: Any
    cached_at: datetime
    expires_at: datetime
    ttl_seconds: int
    hit_count: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "endpoint": self.endpoint,
            "paramsKey": self.params_key,
            "cachedAt": self.cached_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "ttlSeconds": self.ttl_seconds,
            "hitCount": self.hit_count,
        }
