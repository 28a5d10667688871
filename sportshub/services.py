"""
API-Football service layer
Endpoint wrappers on top of the CacheManager; no TTL means adaptive caching
"""
from typing import Any, Dict, List, Optional

from sportshub.cache import CacheManager, CacheTier

# Explicit TTLs (seconds) for endpoints that opt out of adaptive caching
CACHE_TTL = {
    "LIVE": CacheTier.BYPASS.seconds,  # no cache
    "SHORT": CacheTier.SHORT.seconds,
    "MEDIUM": CacheTier.MEDIUM.seconds,
    "LONG": CacheTier.LONG.seconds,
    "VERY_LONG": CacheTier.VERY_LONG.seconds,
    "STATIC": CacheTier.STATIC.seconds,
}

FIXTURES = "/fixtures"
FIXTURES_H2H = "/fixtures/headtohead"
FIXTURES_STATISTICS = "/fixtures/statistics"
FIXTURES_EVENTS = "/fixtures/events"
FIXTURES_LINEUPS = "/fixtures/lineups"
LEAGUES = "/leagues"
STANDINGS = "/standings"
TEAMS = "/teams"
TEAM_STATISTICS = "/teams/statistics"
PLAYERS = "/players"


class FootballService:
    """
    Typed entry points used by route handlers.

    Usage:
        service = FootballService(manager)
        fixture = await service.get_fixture_by_id(12345)
    """

    def __init__(self, manager: CacheManager):
        self.manager = manager

    # ===== FIXTURES =====

    async def get_fixture_by_id(self, fixture_id: int) -> Optional[Dict[str, Any]]:
        """
        Single fixture with adaptive TTL
        - Live: 60s
        - Finished: 24h
        - Upcoming: 1h, or 5m when kickoff is under 2h away
        """
        data = await self.manager.fetch_with_cache(FIXTURES, {"id": fixture_id})
        return data[0] if data else None

    async def get_live_fixtures(self) -> List[Dict[str, Any]]:
        """All live fixtures, never cached."""
        return await self.manager.fetch_with_cache(FIXTURES, {"live": "all"}, CACHE_TTL["LIVE"])

    async def get_fixtures_by_date(self, date: str, league_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(FIXTURES, {"date": date, "league": league_id})

    async def get_fixtures_by_league(self, league_id: int, season: int) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(FIXTURES, {"league": league_id, "season": season})

    async def get_fixtures_by_team(
        self, team_id: int, season: int, league_id: int, last: int = 10
    ) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(
            FIXTURES, {"team": team_id, "season": season, "league": league_id, "last": last}
        )

    async def get_fixture_statistics(self, fixture_id: int) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(FIXTURES_STATISTICS, {"fixture": fixture_id})

    async def get_fixture_events(self, fixture_id: int) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(FIXTURES_EVENTS, {"fixture": fixture_id})

    async def get_fixture_lineups(self, fixture_id: int) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(FIXTURES_LINEUPS, {"fixture": fixture_id})

    async def get_h2h_fixtures(self, team1_id: int, team2_id: int) -> List[Dict[str, Any]]:
        """Head-to-head history; historical so explicitly long."""
        return await self.manager.fetch_with_cache(
            FIXTURES_H2H, {"h2h": f"{team1_id}-{team2_id}"}, CACHE_TTL["LONG"]
        )

    # ===== LEAGUES / STANDINGS =====

    async def get_leagues(self, country: Optional[str] = None, season: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(
            LEAGUES, {"country": country, "season": season}, CACHE_TTL["STATIC"]
        )

    async def get_standings(self, league_id: int, season: int) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(
            STANDINGS, {"league": league_id, "season": season}, CACHE_TTL["LONG"]
        )

    # ===== TEAMS =====

    async def get_team_by_id(self, team_id: int) -> Optional[Dict[str, Any]]:
        data = await self.manager.fetch_with_cache(TEAMS, {"id": team_id}, CACHE_TTL["STATIC"])
        return data[0] if data else None

    async def get_team_statistics(self, team_id: int, league_id: int, season: int) -> Any:
        return await self.manager.fetch_with_cache(
            TEAM_STATISTICS, {"team": team_id, "league": league_id, "season": season}, CACHE_TTL["LONG"]
        )

    # ===== PLAYERS =====

    async def get_player_by_id(self, player_id: int, season: Optional[int] = None) -> Optional[Dict[str, Any]]:
        data = await self.manager.fetch_with_cache(
            PLAYERS, {"id": player_id, "season": season}, CACHE_TTL["LONG"]
        )
        return data[0] if data else None

    async def search_players(self, name: str, season: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.manager.fetch_with_cache(
            PLAYERS, {"search": name, "season": season}, CACHE_TTL["LONG"]
        )


def team_ids_from_standings(standings: List[Dict[str, Any]]) -> List[int]:
    """
    Pull team ids out of a /standings response.

    Shape: [{"league": {"standings": [[{"team": {"id": ...}}, ...], ...]}}]
    """
    team_ids: List[int] = []
    for entry in standings or []:
        for group in (entry.get("league") or {}).get("standings") or []:
            for row in group:
                team_id = (row.get("team") or {}).get("id")
                if team_id is not None and team_id not in team_ids:
                    team_ids.append(team_id)
    return team_ids
