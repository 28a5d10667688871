"""
Adaptive TTL configuration and endpoint-to-tier mapping.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .core import CacheTier, StatusGroup, as_utc, classify_status, utc_now


class EndpointKind(Enum):
    """Families of API-Football endpoints with different caching behaviors."""
    FIXTURES = "fixtures"                 # adaptive, by match status
    SEASON_AGGREGATE = "season_aggregate" # standings-like, 6 hours
    REFERENCE = "reference"               # teams/players/leagues, 7 days
    OTHER = "other"                       # 1 hour


# Fixed tiers for non-adaptive endpoint kinds
TTL_CONFIG: Dict[EndpointKind, CacheTier] = {
    EndpointKind.SEASON_AGGREGATE: CacheTier.LONG,
    EndpointKind.REFERENCE: CacheTier.STATIC,
    EndpointKind.OTHER: CacheTier.MEDIUM,
}

SEASON_AGGREGATE_ENDPOINTS = frozenset({
    "standings",
    "teams/statistics",
    "players/topscorers",
    "players/topassists",
})

REFERENCE_ROOTS = frozenset({
    "teams",
    "players",
    "leagues",
    "venues",
    "countries",
    "coachs",
    "trophies",
    "transfers",
})

# Kickoffs closer than this are "imminent" and get the short tier
IMMINENT_KICKOFF_WINDOW = timedelta(hours=2)


def _normalize_endpoint(endpoint: str) -> str:
    """'/fixtures?live=all' -> 'fixtures'"""
    path = (endpoint or "").split("?", 1)[0]
    return path.strip().strip("/").lower()


def get_kind_for_endpoint(endpoint: str) -> EndpointKind:
    """
    Determine the endpoint family for TTL purposes.

    Args:
        endpoint: API endpoint path (e.g., "/standings", "/fixtures/events")

    Returns:
        EndpointKind for caching behavior
    """
    path = _normalize_endpoint(endpoint)
    root = path.split("/", 1)[0]

    if root == "fixtures":
        return EndpointKind.FIXTURES
    if path in SEASON_AGGREGATE_ENDPOINTS:
        return EndpointKind.SEASON_AGGREGATE
    if root in REFERENCE_ROOTS:
        return EndpointKind.REFERENCE
    return EndpointKind.OTHER


def parse_kickoff(date_value: Any, timestamp: Any = None) -> Optional[datetime]:
    """Parse an ISO date string or a unix timestamp into aware UTC."""
    if isinstance(date_value, datetime):
        return as_utc(date_value)
    if isinstance(date_value, str) and date_value:
        try:
            return as_utc(datetime.fromisoformat(date_value.replace("Z", "+00:00")))
        except ValueError:
            pass
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return None


def _status_code(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("short")
    if isinstance(value, str):
        return value
    return None


def _record_fields(record: Any) -> Optional[Tuple[Optional[str], Optional[datetime]]]:
    """
    Pull (status, kickoff) from a fixture-like record.

    Understands the raw API shape ({"fixture": {"status": {"short"}, "date"}})
    and the flat cached shape ({"status": "FT", "date": ...}).
    Returns None for anything that is not a fixture record.
    """
    if not isinstance(record, dict):
        return None

    fixture = record.get("fixture")
    if isinstance(fixture, dict) and "status" in fixture:
        return (
            _status_code(fixture.get("status")),
            parse_kickoff(fixture.get("date"), fixture.get("timestamp")),
        )

    if "status" in record:
        return (
            _status_code(record.get("status")),
            parse_kickoff(record.get("date"), record.get("timestamp")),
        )

    return None


def extract_records(payload: Any) -> List[Tuple[Optional[str], Optional[datetime]]]:
    """Flatten a payload (list, single record or raw envelope) into (status, kickoff) pairs."""
    if payload is None:
        return []
    if isinstance(payload, dict):
        if "response" in payload:
            return extract_records(payload["response"])
        fields = _record_fields(payload)
        return [fields] if fields else []
    if isinstance(payload, (list, tuple)):
        records = []
        for item in payload:
            fields = _record_fields(item)
            if fields:
                records.append(fields)
        return records
    return []


def classify_records(
    records: Iterable[Tuple[Optional[str], Optional[datetime]]],
    now: Optional[datetime] = None,
) -> CacheTier:
    """
    Pick a tier for a set of fixture records. First match wins:

    1. any live                      -> LIVE (60s)
    2. all finished                  -> VERY_LONG (24h)
    3. any postponed/cancelled/etc.  -> LONG (6h)
    4. any kickoff within 2 hours    -> SHORT (5m)
    5. otherwise                     -> MEDIUM (1h)

    An empty record set is MEDIUM: there is nothing to classify.
    """
    records = list(records)
    if not records:
        return CacheTier.MEDIUM

    now = as_utc(now) if now else utc_now()
    groups = [classify_status(status) for status, _ in records]

    if any(g == StatusGroup.LIVE for g in groups):
        return CacheTier.LIVE
    if all(g == StatusGroup.FINISHED for g in groups):
        return CacheTier.VERY_LONG
    if any(g == StatusGroup.DISRUPTED for g in groups):
        return CacheTier.LONG

    horizon = now + IMMINENT_KICKOFF_WINDOW
    for _, kickoff in records:
        if kickoff is not None and now < kickoff <= horizon:
            return CacheTier.SHORT

    return CacheTier.MEDIUM


def get_tier_for_endpoint(
    endpoint: str,
    payload: Any,
    now: Optional[datetime] = None,
) -> CacheTier:
    """Adaptive tier for fixture endpoints, fixed tier for everything else."""
    kind = get_kind_for_endpoint(endpoint)
    if kind == EndpointKind.FIXTURES:
        return classify_records(extract_records(payload), now)
    return TTL_CONFIG[kind]


def compute_ttl(
    endpoint: str,
    payload: Any,
    now: Optional[datetime] = None,
) -> int:
    """
    Compute how long a response should stay fresh.

    Args:
        endpoint: API endpoint path
        payload: Response body (the envelope's ``response`` field)
        now: Reference time, defaults to current UTC

    Returns:
        TTL in seconds
    """
    return get_tier_for_endpoint(endpoint, payload, now).seconds


def resolve_ttl(
    endpoint: str,
    payload: Any,
    ttl_override: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Apply the override rule on top of the adaptive policy.

    An explicit TTL always wins; 0 means "do not cache".

    Raises:
        ValueError: If ttl_override is negative
    """
    if ttl_override is not None:
        if ttl_override < 0:
            raise ValueError(f"TTL must be >= 0, got {ttl_override}")
        return int(ttl_override)
    return compute_ttl(endpoint, payload, now)


def tier_for_ttl(ttl_seconds: int) -> CacheTier:
    """Smallest tier that covers ``ttl_seconds``."""
    if ttl_seconds <= 0:
        return CacheTier.BYPASS
    for tier in (
        CacheTier.LIVE,
        CacheTier.SHORT,
        CacheTier.MEDIUM,
        CacheTier.LONG,
        CacheTier.VERY_LONG,
    ):
        if ttl_seconds <= tier.seconds:
            return tier
    return CacheTier.STATIC


def cache_control_header(ttl_seconds: int) -> str:
    """Cache-Control value for an HTTP response carrying data cached for ``ttl_seconds``."""
    return tier_for_ttl(ttl_seconds).cache_control
