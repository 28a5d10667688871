"""
Team fixtures cache with stale-while-revalidate.

Second-layer cache for *processed* fixture lists that feed the form
indicators on standings tables. The underlying API requests go through
the CacheManager and its adaptive TTL; this layer adds a grace window in
which expired lists are still served while a refresh runs in the
background.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from sportshub.errors import SportsHubError, StoreError, UpstreamError
from sportshub.models import TeamFixturesCache
from .core import StaleRead, StatusGroup, as_utc, classify_status, utc_now
from .manager import CacheManager
from .store import session_scope
from .ttl_policies import parse_kickoff, classify_records, extract_records

logger = logging.getLogger("cache.team_fixtures")

DEFAULT_GRACE_SECONDS = 7200  # 2 hours of stale serving after expiry
FORM_LENGTH = 5

# Undated fixtures sort as the oldest
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class CachedFixture:
    """One finished or scheduled match, reduced to what form needs."""
    fixture_id: int
    date: str
    home_team_id: int
    away_team_id: int
    home_goals: int
    away_goals: int
    status: str

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "CachedFixture":
        """Build from a raw API-Football fixture record."""
        fixture = item.get("fixture") or {}
        teams = item.get("teams") or {}
        goals = item.get("goals") or {}
        return cls(
            fixture_id=fixture.get("id"),
            date=fixture.get("date"),
            home_team_id=(teams.get("home") or {}).get("id"),
            away_team_id=(teams.get("away") or {}).get("id"),
            home_goals=goals.get("home") or 0,
            away_goals=goals.get("away") or 0,
            status=(fixture.get("status") or {}).get("short"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedFixture":
        return cls(
            fixture_id=data["fixtureId"],
            date=data["date"],
            home_team_id=data["homeTeamId"],
            away_team_id=data["awayTeamId"],
            home_goals=data["homeGoals"],
            away_goals=data["awayGoals"],
            status=data["status"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixtureId": self.fixture_id,
            "date": self.date,
            "homeTeamId": self.home_team_id,
            "awayTeamId": self.away_team_id,
            "homeGoals": self.home_goals,
            "awayGoals": self.away_goals,
            "status": self.status,
        }


class TeamFixturesStore:
    """
    Persistent (team, league, season) -> fixture list store.

    Three read outcomes:
    - fresh:  now < expires_at                         -> is_stale=False
    - stale:  expires_at <= now < expires_at + grace   -> is_stale=True
    - miss:   now >= expires_at + grace                -> None
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._grace = timedelta(seconds=grace_seconds)
        self._clock = clock

    def _now(self) -> datetime:
        return as_utc(self._clock()).replace(tzinfo=None)

    def _to_read(self, row: TeamFixturesCache, now: datetime) -> Optional[StaleRead]:
        if now >= row.expires_at + self._grace:
            return None
        return StaleRead(
            data=[CachedFixture.from_dict(f) for f in row.fixtures],
            is_stale=now >= row.expires_at,
            expires_at=as_utc(row.expires_at),
            ttl_seconds=row.ttl_seconds,
        )

    async def get(self, team_id: int, league_id: int, season: int) -> Optional[StaleRead]:
        """
        Get cached fixtures for a team.

        Returns:
            StaleRead (fresh or stale) or None when absent / too old to serve
        """
        return await asyncio.to_thread(self._get_sync, team_id, league_id, season)

    def _get_sync(self, team_id: int, league_id: int, season: int) -> Optional[StaleRead]:
        now = self._now()
        with session_scope(self._session_factory) as session:
            row = (
                session.query(TeamFixturesCache)
                .filter(
                    TeamFixturesCache.team_id == team_id,
                    TeamFixturesCache.league_id == league_id,
                    TeamFixturesCache.season == season,
                )
                .first()
            )
            if row is None:
                return None
            return self._to_read(row, now)

    async def get_all(self, league_id: int, season: int) -> Dict[int, StaleRead]:
        """All servable team lists for a league/season, keyed by team id."""
        return await asyncio.to_thread(self._get_all_sync, league_id, season)

    def _get_all_sync(self, league_id: int, season: int) -> Dict[int, StaleRead]:
        now = self._now()
        result: Dict[int, StaleRead] = {}
        with session_scope(self._session_factory) as session:
            rows = (
                session.query(TeamFixturesCache)
                .filter(
                    TeamFixturesCache.league_id == league_id,
                    TeamFixturesCache.season == season,
                )
                .all()
            )
            for row in rows:
                read = self._to_read(row, now)
                if read is not None:
                    result[row.team_id] = read
        return result

    async def put(
        self,
        team_id: int,
        league_id: int,
        season: int,
        fixtures: List[CachedFixture],
    ) -> int:
        """
        Upsert a team's fixture list with an adaptive TTL over the whole list.

        Returns:
            The TTL applied, in seconds
        """
        return await asyncio.to_thread(self._put_sync, team_id, league_id, season, fixtures)

    def ttl_for(self, fixtures: List[CachedFixture]) -> int:
        """Adaptive TTL for a whole list, by the same rules as raw fixture responses."""
        records = extract_records([f.to_dict() for f in fixtures])
        return classify_records(records, as_utc(self._clock())).seconds

    def _put_sync(self, team_id: int, league_id: int, season: int, fixtures: List[CachedFixture]) -> int:
        serialized = [f.to_dict() for f in fixtures]
        ttl_seconds = self.ttl_for(fixtures)
        now = self._now()
        values = {
            "fixtures": serialized,
            "cached_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
            "ttl_seconds": ttl_seconds,
        }
        with session_scope(self._session_factory) as session:
            row = (
                session.query(TeamFixturesCache)
                .filter(
                    TeamFixturesCache.team_id == team_id,
                    TeamFixturesCache.league_id == league_id,
                    TeamFixturesCache.season == season,
                )
                .first()
            )
            if row is None:
                session.add(TeamFixturesCache(
                    team_id=team_id, league_id=league_id, season=season, **values
                ))
            else:
                for name, value in values.items():
                    setattr(row, name, value)

        logger.info(f"Stored {len(fixtures)} fixtures for team {team_id} (TTL: {ttl_seconds}s)")
        return ttl_seconds

    async def invalidate(
        self,
        league_id: Optional[int] = None,
        season: Optional[int] = None,
        team_id: Optional[int] = None,
    ) -> int:
        """
        Delete cached lists, e.g. after a match in the league finished.

        Returns:
            Number of rows deleted
        """
        return await asyncio.to_thread(self._invalidate_sync, league_id, season, team_id)

    def _invalidate_sync(self, league_id: Optional[int], season: Optional[int], team_id: Optional[int]) -> int:
        with session_scope(self._session_factory) as session:
            query = session.query(TeamFixturesCache)
            if league_id is not None:
                query = query.filter(TeamFixturesCache.league_id == league_id)
            if season is not None:
                query = query.filter(TeamFixturesCache.season == season)
            if team_id is not None:
                query = query.filter(TeamFixturesCache.team_id == team_id)
            deleted = query.delete(synchronize_session=False)
        logger.info(f"Invalidated {deleted} team fixture lists")
        return deleted

    async def purge_expired(self) -> int:
        """Delete rows that are past expiry plus the grace window."""
        return await asyncio.to_thread(self._purge_expired_sync)

    def _purge_expired_sync(self) -> int:
        cutoff = self._now() - self._grace
        with session_scope(self._session_factory) as session:
            deleted = (
                session.query(TeamFixturesCache)
                .filter(TeamFixturesCache.expires_at <= cutoff)
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Purged {deleted} expired team fixture lists")
        return deleted


def calculate_form(fixtures: List[CachedFixture], team_id: int, venue: str = "all") -> str:
    """
    Calculate a form string from fixtures for a specific team.

    Takes the five most recent finished matches (filtered by venue) and
    renders them oldest -> newest, e.g. "WWDLW".

    Args:
        fixtures: Team fixture list
        team_id: Team whose perspective results are computed from
        venue: "home", "away" or "all"
    """
    relevant = []
    for f in fixtures:
        if classify_status(f.status) != StatusGroup.FINISHED:
            continue
        if venue == "home" and f.home_team_id != team_id:
            continue
        if venue == "away" and f.away_team_id != team_id:
            continue
        relevant.append(f)

    # Newest first, keep the last five
    relevant.sort(key=lambda f: parse_kickoff(f.date) or _EARLIEST, reverse=True)
    last_five = relevant[:FORM_LENGTH]

    form = []
    for f in last_five:
        is_home = f.home_team_id == team_id
        team_goals = f.home_goals if is_home else f.away_goals
        opponent_goals = f.away_goals if is_home else f.home_goals
        if team_goals > opponent_goals:
            form.append("W")
        elif team_goals < opponent_goals:
            form.append("L")
        else:
            form.append("D")

    return "".join(reversed(form))


class TeamFormService:
    """
    Serves team fixture lists with stale-while-revalidate.

    - fresh: served as-is
    - stale: served, plus one background refresh per team/league/season
    - miss:  refreshed inline
    """

    def __init__(
        self,
        manager: CacheManager,
        store: TeamFixturesStore,
        last: int = 10,
        refresh_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            manager: Fetch orchestrator used for upstream fixture lists
            store: Team fixtures store
            last: How many recent fixtures to keep per team
            refresh_delay_seconds: Base delay between teams in a league refresh
            sleep: Awaitable sleep (swap for tests)
        """
        self._manager = manager
        self._store = store
        self._last = last
        self._base_delay = refresh_delay_seconds
        self._sleep = sleep

    @staticmethod
    def refresh_key(team_id: int, league_id: int, season: int) -> str:
        return f"team-fixtures:{team_id}:{league_id}:{season}"

    async def get_team_fixtures(self, team_id: int, league_id: int, season: int) -> StaleRead:
        """
        Get a team's recent fixtures, refreshing as needed.

        Raises:
            UpstreamError / ConfigurationError: Only on a full miss whose refresh fails
        """
        try:
            cached = await self._store.get(team_id, league_id, season)
        except StoreError as e:
            logger.warning(f"Team fixtures read failed, treating as miss: {e}")
            cached = None

        if cached is not None:
            if cached.is_stale:
                self.schedule_refresh(team_id, league_id, season)
            return cached

        fixtures = await self.refresh(team_id, league_id, season)
        return StaleRead(data=fixtures, is_stale=False, ttl_seconds=self._store.ttl_for(fixtures))

    def schedule_refresh(self, team_id: int, league_id: int, season: int) -> bool:
        """
        Trigger a background refresh unless one is already running.

        Returns:
            True if a refresh task was started
        """
        key = self.refresh_key(team_id, league_id, season)
        if self._manager.deduplicator.is_pending(key):
            logger.debug(f"Already revalidating: {key}")
            return False

        logger.info(f"Serving stale fixtures, revalidating: {key}")
        self._manager.spawn(
            self.refresh(team_id, league_id, season),
            f"Background revalidation {key}",
        )
        return True

    async def refresh(self, team_id: int, league_id: int, season: int) -> List[CachedFixture]:
        """Fetch the latest fixtures for a team and store them (deduplicated per key)."""

        async def operation() -> List[CachedFixture]:
            raw = await self._manager.fetch_with_cache(
                "/fixtures",
                {"team": team_id, "league": league_id, "season": season, "last": self._last},
            )
            fixtures = [CachedFixture.from_api(item) for item in raw or []]
            try:
                await self._store.put(team_id, league_id, season, fixtures)
            except StoreError as e:
                logger.error(f"Failed to store fixtures for team {team_id}: {e}")
            return fixtures

        return await self._manager.dedupe(self.refresh_key(team_id, league_id, season), operation)

    async def get_team_form(self, team_id: int, league_id: int, season: int) -> Dict[str, Any]:
        """Home, away and overall form strings plus the staleness flag and list TTL."""
        read = await self.get_team_fixtures(team_id, league_id, season)
        fixtures = read.data
        return {
            "teamId": team_id,
            "home": calculate_form(fixtures, team_id, "home"),
            "away": calculate_form(fixtures, team_id, "away"),
            "all": calculate_form(fixtures, team_id, "all"),
            "isStale": read.is_stale,
            "ttlSeconds": read.ttl_seconds,
        }

    async def refresh_league(self, team_ids: List[int], league_id: int, season: int) -> Dict[str, int]:
        """
        Refresh cached fixtures for every team in a league/season.

        Teams are processed one at a time with an adaptive delay: the delay
        shrinks after each success and grows on rate-limit errors; three
        consecutive rate-limit errors stop the run. Teams that already have
        servable data are skipped.

        Returns:
            {"success": n, "failed": n, "skipped": n}
        """
        success = failed = skipped = 0
        delay = self._base_delay
        consecutive_rate_limits = 0

        for index, team_id in enumerate(team_ids):
            if index > 0:
                await self._sleep(delay)

            try:
                existing = await self._store.get(team_id, league_id, season)
            except StoreError:
                existing = None
            if existing is not None and existing.data:
                logger.info(f"Team {team_id} already cached, skipping")
                skipped += 1
                continue

            logger.info(f"Fetching fixtures for team {team_id} ({index + 1}/{len(team_ids)})")
            try:
                await self.refresh(team_id, league_id, season)
            except UpstreamError as e:
                failed += 1
                if not e.is_rate_limited:
                    logger.error(f"Failed to refresh fixtures for team {team_id}: {e}")
                    continue
                consecutive_rate_limits += 1
                delay = min(5 * self._base_delay, self._base_delay * 1.5 ** (consecutive_rate_limits - 1))
                logger.error(f"Rate limit hit for team {team_id}, attempt {consecutive_rate_limits}")
                if consecutive_rate_limits >= 3:
                    logger.error("Too many rate limits, stopping refresh")
                    break
            except SportsHubError as e:
                failed += 1
                logger.error(f"Failed to refresh fixtures for team {team_id}: {e}")
            else:
                success += 1
                consecutive_rate_limits = 0
                delay = max(self._base_delay, delay - 0.1 * self._base_delay)

        return {"success": success, "failed": failed, "skipped": skipped}
