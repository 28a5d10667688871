"""
Tests for the team fixtures cache (stale-while-revalidate) and form strings.
"""
import asyncio
from datetime import timedelta

import pytest

from sportshub.cache import CachedFixture, TeamFormService, calculate_form
from sportshub.errors import UpstreamError

TEAM = 33
LEAGUE = 39
SEASON = 2024


def cached(fixture_id, days_ago, home, away, home_goals, away_goals, status="FT", clock=None):
    kickoff = clock.current - timedelta(days=days_ago)
    return CachedFixture(
        fixture_id=fixture_id,
        date=kickoff.isoformat(),
        home_team_id=home,
        away_team_id=away,
        home_goals=home_goals,
        away_goals=away_goals,
        status=status,
    )


@pytest.fixture
def finished_list(clock):
    return [
        cached(1, 21, TEAM, 40, 2, 0, clock=clock),   # W home
        cached(2, 14, 41, TEAM, 1, 1, clock=clock),   # D away
        cached(3, 7, TEAM, 42, 0, 3, clock=clock),    # L home
    ]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(manager, team_store, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return TeamFormService(manager, team_store, sleep=fake_sleep)


# =============================================================================
# CachedFixture
# =============================================================================

class TestCachedFixture:

    def test_from_api(self, api_fixture):
        fixture = CachedFixture.from_api(
            api_fixture(fixture_id=7, status="FT", home_id=1, away_id=2, home_goals=3, away_goals=None)
        )
        assert fixture.fixture_id == 7
        assert fixture.home_team_id == 1
        assert fixture.away_team_id == 2
        assert fixture.home_goals == 3
        assert fixture.away_goals == 0
        assert fixture.status == "FT"

    def test_dict_roundtrip_uses_camel_case(self, finished_list):
        data = finished_list[0].to_dict()
        assert set(data) == {
            "fixtureId", "date", "homeTeamId", "awayTeamId", "homeGoals", "awayGoals", "status",
        }
        assert CachedFixture.from_dict(data) == finished_list[0]


# =============================================================================
# Store
# =============================================================================

class TestTeamFixturesStore:

    @pytest.mark.asyncio
    async def test_finished_list_is_fresh_for_a_day(self, team_store, finished_list):
        ttl = await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        read = await team_store.get(TEAM, LEAGUE, SEASON)

        assert ttl == 86400
        assert read.is_stale is False
        assert read.data == finished_list

    @pytest.mark.asyncio
    async def test_upcoming_match_shortens_ttl(self, team_store, finished_list, clock):
        upcoming = cached(4, 0, TEAM, 43, 0, 0, status="NS", clock=clock)
        upcoming.date = (clock.current + timedelta(hours=1)).isoformat()

        ttl = await team_store.put(TEAM, LEAGUE, SEASON, finished_list + [upcoming])

        assert ttl == 300

    @pytest.mark.asyncio
    async def test_stale_inside_grace_window(self, team_store, finished_list, clock):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        clock.advance(hours=24, minutes=30)

        read = await team_store.get(TEAM, LEAGUE, SEASON)

        assert read is not None
        assert read.is_stale is True
        assert read.data == finished_list

    @pytest.mark.asyncio
    async def test_stale_exactly_at_expiry(self, team_store, finished_list, clock):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        clock.advance(hours=24)

        assert (await team_store.get(TEAM, LEAGUE, SEASON)).is_stale is True

    @pytest.mark.asyncio
    async def test_miss_past_grace_window(self, team_store, finished_list, clock):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        clock.advance(hours=27)

        assert await team_store.get(TEAM, LEAGUE, SEASON) is None

    @pytest.mark.asyncio
    async def test_get_all_returns_servable_lists(self, team_store, finished_list, clock):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        await team_store.put(50, LEAGUE, SEASON, finished_list)
        await team_store.put(60, 140, SEASON, finished_list)

        result = await team_store.get_all(LEAGUE, SEASON)

        assert set(result) == {TEAM, 50}

    @pytest.mark.asyncio
    async def test_invalidate_and_purge(self, team_store, finished_list, clock):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        await team_store.put(50, LEAGUE, SEASON, finished_list)
        await team_store.put(60, 140, SEASON, finished_list)

        assert await team_store.invalidate(league_id=LEAGUE, season=SEASON, team_id=TEAM) == 1
        assert await team_store.invalidate(league_id=140) == 1

        clock.advance(hours=24 + 2, seconds=1)
        assert await team_store.purge_expired() == 1


# =============================================================================
# Form
# =============================================================================

class TestCalculateForm:

    def test_oldest_to_newest(self, finished_list):
        assert calculate_form(finished_list, TEAM) == "WDL"

    def test_venue_filters(self, finished_list):
        assert calculate_form(finished_list, TEAM, "home") == "WL"
        assert calculate_form(finished_list, TEAM, "away") == "D"

    def test_only_last_five_finished(self, clock):
        fixtures = [cached(i, 30 - i, TEAM, 40, 1, 0, clock=clock) for i in range(6)]
        fixtures[0].home_goals = 0  # oldest is a draw and must drop off
        fixtures.append(cached(99, 0, TEAM, 40, 0, 5, status="NS", clock=clock))
        fixtures.append(cached(98, 1, TEAM, 40, 0, 5, status="PST", clock=clock))

        assert calculate_form(fixtures, TEAM) == "WWWWW"

    def test_awarded_counts_as_finished(self, clock):
        fixtures = [cached(1, 3, TEAM, 40, 3, 0, status="AWD", clock=clock)]
        assert calculate_form(fixtures, TEAM) == "W"

    def test_empty(self):
        assert calculate_form([], TEAM) == ""


# =============================================================================
# Service (stale-while-revalidate)
# =============================================================================

class TestTeamFormService:

    @pytest.mark.asyncio
    async def test_miss_refreshes_inline(self, service, manager, upstream, api_fixture, team_store):
        upstream.payload = [api_fixture(fixture_id=1, home_id=TEAM, away_id=40)]

        read = await service.get_team_fixtures(TEAM, LEAGUE, SEASON)

        assert read.is_stale is False
        assert [f.fixture_id for f in read.data] == [1]
        assert upstream.calls == [
            ("/fixtures", {"team": TEAM, "league": LEAGUE, "season": SEASON, "last": 10})
        ]
        assert (await team_store.get(TEAM, LEAGUE, SEASON)).data == read.data
        await manager.drain()

    @pytest.mark.asyncio
    async def test_fresh_hit_does_not_call_upstream(self, service, upstream, team_store, finished_list):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)

        read = await service.get_team_fixtures(TEAM, LEAGUE, SEASON)

        assert read.is_stale is False
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_stale_served_then_revalidated(
        self, service, manager, upstream, api_fixture, team_store, finished_list, clock
    ):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)
        clock.advance(hours=24, minutes=30)
        upstream.payload = [api_fixture(fixture_id=77, home_id=TEAM, away_id=40)]

        read = await service.get_team_fixtures(TEAM, LEAGUE, SEASON)

        assert read.is_stale is True
        assert read.data == finished_list

        await manager.drain()
        assert len(upstream.calls) == 1
        refreshed = await team_store.get(TEAM, LEAGUE, SEASON)
        assert refreshed.is_stale is False
        assert [f.fixture_id for f in refreshed.data] == [77]

    @pytest.mark.asyncio
    async def test_no_second_refresh_while_one_is_running(self, service, manager, upstream, api_fixture):
        upstream.payload = [api_fixture(home_id=TEAM)]
        upstream.delay = 0.05

        running = asyncio.create_task(service.refresh(TEAM, LEAGUE, SEASON))
        await asyncio.sleep(0)

        assert manager.deduplicator.is_pending(TeamFormService.refresh_key(TEAM, LEAGUE, SEASON))
        assert service.schedule_refresh(TEAM, LEAGUE, SEASON) is False

        await running
        assert len(upstream.calls) == 1
        await manager.drain()

    @pytest.mark.asyncio
    async def test_miss_with_upstream_failure_raises(self, service, upstream):
        upstream.error = UpstreamError("API-Football error: 503", status_code=503)

        with pytest.raises(UpstreamError):
            await service.get_team_fixtures(TEAM, LEAGUE, SEASON)

    @pytest.mark.asyncio
    async def test_get_team_form(self, service, team_store, finished_list):
        await team_store.put(TEAM, LEAGUE, SEASON, finished_list)

        form = await service.get_team_form(TEAM, LEAGUE, SEASON)

        assert form == {
            "teamId": TEAM, "home": "WL", "away": "D", "all": "WDL", "isStale": False, "ttlSeconds": 86400,
        }

    @pytest.mark.asyncio
    async def test_inline_refresh_reports_list_ttl(self, service, manager, upstream, api_fixture):
        upstream.payload = [
            api_fixture(fixture_id=1, status="1H", home_id=TEAM, away_id=40),
            api_fixture(fixture_id=2, status="FT", home_id=41, away_id=TEAM),
        ]

        read = await service.get_team_fixtures(TEAM, LEAGUE, SEASON)
        await manager.drain()

        assert read.is_stale is False
        assert read.ttl_seconds == 60


class TestRefreshLeague:

    @pytest.mark.asyncio
    async def test_counts_success_failure_and_skips(
        self, service, manager, upstream, api_fixture, team_store, finished_list, sleeps
    ):
        await team_store.put(1, LEAGUE, SEASON, finished_list)

        def respond(endpoint, params):
            if params["team"] == 3:
                raise UpstreamError("API-Football error: 500", status_code=500)
            return [api_fixture(home_id=params["team"])]

        upstream.payload = respond

        result = await service.refresh_league([1, 2, 3], LEAGUE, SEASON)

        assert result == {"success": 1, "failed": 1, "skipped": 1}
        assert sleeps == [2.0, 2.0]
        await manager.drain()

    @pytest.mark.asyncio
    async def test_stops_after_three_rate_limits(self, service, upstream, sleeps):
        upstream.error = UpstreamError("API-Football error: 429", status_code=429)

        result = await service.refresh_league([1, 2, 3, 4, 5], LEAGUE, SEASON)

        assert result == {"success": 0, "failed": 3, "skipped": 0}
        assert sleeps == [2.0, 3.0]
        assert len(upstream.calls) == 3
