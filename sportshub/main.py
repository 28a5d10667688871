"""
Sports Hub - Main FastAPI Application
API-Football data served through the adaptive cache layer
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from config.settings import settings
from sportshub import __version__
from sportshub.api_client import ApiFootballClient
from sportshub.cache import (
    ApiMetrics,
    CacheManager,
    CacheStore,
    CacheTier,
    RequestDeduplicator,
    TeamFixturesStore,
    TeamFormService,
    cache_control_header,
    compute_ttl,
)
from sportshub.db import init_db, make_engine, make_session_factory
from sportshub.errors import ConfigurationError, StoreError, UpstreamError
from sportshub.services import (
    FIXTURES,
    FIXTURES_EVENTS,
    FIXTURES_LINEUPS,
    FIXTURES_STATISTICS,
    FootballService,
    team_ids_from_standings,
)

logger = logging.getLogger("main")

APP_VERSION = f"v{__version__}"
APP_NAME = "Sports Hub"
APP_STAGE = "Beta"


def parse_season(season_str: str) -> int:
    """Convert '2024-25' or '2024' to season year (2024)."""
    try:
        if "-" in season_str:
            return int(season_str.split("-")[0])
        return int(season_str)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid season: {season_str}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the cache components once per process and tear them down on exit."""
    logging.basicConfig(level=settings.log_level)

    engine = make_engine(settings.cache_database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)

    metrics = ApiMetrics()
    deduplicator = RequestDeduplicator(
        window_seconds=settings.dedup_window_seconds,
        sweep_interval_seconds=settings.dedup_sweep_interval_seconds,
        metrics=metrics,
    )
    client = ApiFootballClient.from_settings(metrics=metrics)
    manager = CacheManager(CacheStore(session_factory), deduplicator, client, metrics=metrics)
    team_store = TeamFixturesStore(
        session_factory, grace_seconds=settings.team_fixtures_grace_seconds
    )

    app.state.cache_manager = manager
    app.state.team_fixtures_store = team_store
    app.state.team_form = TeamFormService(
        manager,
        team_store,
        last=settings.team_fixtures_last,
        refresh_delay_seconds=settings.refresh_delay_seconds,
    )

    deduplicator.start()
    try:
        yield
    finally:
        await manager.close()
        await deduplicator.dispose()
        engine.dispose()


app = FastAPI(
    title=f"{APP_NAME} ({APP_STAGE})",
    description="Cached API-Football proxy with adaptive TTL and request deduplication",
    version=APP_VERSION,
    lifespan=lifespan,
)


# ===== DEPENDENCIES =====

def get_cache_manager(request: Request) -> CacheManager:
    return request.app.state.cache_manager


def get_team_fixtures_store(request: Request) -> TeamFixturesStore:
    return request.app.state.team_fixtures_store


def get_team_form_service(request: Request) -> TeamFormService:
    return request.app.state.team_form


def get_football_service(manager: CacheManager = Depends(get_cache_manager)) -> FootballService:
    return FootballService(manager)


# ===== ERROR HANDLING =====

def _error(message: str, status: int, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"error": {"message": message, "code": code}},
        headers={"Cache-Control": CacheTier.BYPASS.cache_control},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc}")
    return _error(str(exc), 500, "configuration_error")


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.warning(f"Upstream error on {request.url.path}: {exc}")
    code = "rate_limited" if exc.is_rate_limited else "upstream_error"
    return _error(exc.message, 502, code)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error on {request.url.path}: {exc}")
    return _error("Cache store unavailable", 503, "store_error")


def _cached_json(content, ttl_seconds: int) -> JSONResponse:
    """JSON response whose Cache-Control follows the core TTL classification."""
    return JSONResponse(content=content, headers={"Cache-Control": cache_control_header(ttl_seconds)})


# ===== SYSTEM =====

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "source": "api-football", "mode": "cached"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "stage": APP_STAGE,
        "full": f"{APP_NAME} {APP_VERSION} ({APP_STAGE})"
    }


# ===== CACHE ADMIN =====

@app.get("/cache/stats")
async def cache_stats(manager: CacheManager = Depends(get_cache_manager)):
    """Persistent store counters plus in-process deduplicator and metrics."""
    stats = {"store": await manager.get_cache_stats()}
    stats.update(manager.get_stats())
    return JSONResponse(content=stats, headers={"Cache-Control": CacheTier.BYPASS.cache_control})


@app.delete("/cache")
async def clear_cache(
    endpoint: Optional[str] = Query(default=None, description="Only clear this endpoint"),
    params: Optional[str] = Query(default=None, description='JSON object, e.g. {"id": 12345}'),
    manager: CacheManager = Depends(get_cache_manager),
):
    """Clear the whole cache, every entry for one endpoint, or one exact entry."""
    parsed = None
    if params is not None:
        if endpoint is None:
            raise HTTPException(status_code=422, detail="params require an endpoint")
        try:
            parsed = json.loads(params)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Invalid params JSON: {params}")
        if not isinstance(parsed, dict):
            raise HTTPException(status_code=422, detail="params must be a JSON object")

    deleted = await manager.clear_cache(endpoint, parsed)
    if parsed is not None:
        message = f"Cache cleared for entry: {endpoint} {params}"
    elif endpoint:
        message = f"Cache cleared for endpoint: {endpoint}"
    else:
        message = "All cache cleared"
    return {"message": message, "deleted": deleted}


@app.post("/cache/cleanup")
async def cleanup_cache(
    manager: CacheManager = Depends(get_cache_manager),
    team_store: TeamFixturesStore = Depends(get_team_fixtures_store),
):
    """Physically remove expired rows from both cache tables."""
    deleted = await manager.store.purge_expired()
    deleted_team_fixtures = await team_store.purge_expired()
    return {
        "message": "Cache cleanup completed",
        "deleted": deleted,
        "deletedTeamFixtures": deleted_team_fixtures,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/cache/team-fixtures/refresh")
async def refresh_team_fixtures(
    league: int = Query(default=settings.premier_league_id, description="League ID"),
    season: str = Query(default=str(settings.current_season), description="Season year (e.g., '2024' for 2024-25)"),
    service: FootballService = Depends(get_football_service),
    form_service: TeamFormService = Depends(get_team_form_service),
):
    """Warm the team fixtures cache for every team in a league table."""
    season_year = parse_season(season)
    standings = await service.get_standings(league, season_year)
    team_ids = team_ids_from_standings(standings)
    result = await form_service.refresh_league(team_ids, league, season_year)
    return {"league": league, "season": season_year, "teams": len(team_ids), **result}


# ===== DATA =====

@app.get("/fixtures/live")
async def live_fixtures(service: FootballService = Depends(get_football_service)):
    """All live fixtures, straight from upstream."""
    data = await service.get_live_fixtures()
    return _cached_json(data, CacheTier.BYPASS.seconds)


@app.get("/fixtures/{fixture_id}")
async def fixture_detail(fixture_id: int, service: FootballService = Depends(get_football_service)):
    """Single fixture; Cache-Control follows the match status."""
    fixture = await service.get_fixture_by_id(fixture_id)
    if fixture is None:
        raise HTTPException(status_code=404, detail=f"Fixture {fixture_id} not found")
    return _cached_json(fixture, compute_ttl(FIXTURES, [fixture]))


@app.get("/fixtures/{fixture_id}/events")
async def fixture_events(fixture_id: int, service: FootballService = Depends(get_football_service)):
    """Goals, cards and substitutions for a fixture."""
    data = await service.get_fixture_events(fixture_id)
    return _cached_json(data, compute_ttl(FIXTURES_EVENTS, data))


@app.get("/fixtures/{fixture_id}/statistics")
async def fixture_statistics(fixture_id: int, service: FootballService = Depends(get_football_service)):
    """Per-team match statistics."""
    data = await service.get_fixture_statistics(fixture_id)
    return _cached_json(data, compute_ttl(FIXTURES_STATISTICS, data))


@app.get("/fixtures/{fixture_id}/lineups")
async def fixture_lineups(fixture_id: int, service: FootballService = Depends(get_football_service)):
    data = await service.get_fixture_lineups(fixture_id)
    return _cached_json(data, compute_ttl(FIXTURES_LINEUPS, data))


@app.get("/fixtures")
async def fixtures_by_date(
    date: str = Query(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD"),
    league: Optional[int] = Query(default=None),
    service: FootballService = Depends(get_football_service),
):
    """Fixtures on a date, optionally for one league."""
    data = await service.get_fixtures_by_date(date, league)
    return _cached_json(data, compute_ttl(FIXTURES, data))


@app.get("/standings")
async def standings(
    league: int = Query(default=settings.premier_league_id, description="League ID"),
    season: str = Query(default=str(settings.current_season), description="Season year (e.g., '2024' for 2024-25)"),
    service: FootballService = Depends(get_football_service),
):
    """League table."""
    season_year = parse_season(season)
    data = await service.get_standings(league, season_year)
    return _cached_json(
        {"league": league, "season": season_year, "standings": data},
        CacheTier.LONG.seconds,
    )


@app.get("/teams/{team_id}/form")
async def team_form(
    team_id: int,
    league: int = Query(default=settings.premier_league_id, description="League ID"),
    season: str = Query(default=str(settings.current_season), description="Season year (e.g., '2024' for 2024-25)"),
    team_form_service: TeamFormService = Depends(get_team_form_service),
):
    """Recent form (home/away/all); stale data is served while a refresh runs."""
    form = await team_form_service.get_team_form(team_id, league, parse_season(season))
    # Stale lists are being revalidated; downstream caches should not hold them
    ttl_seconds = CacheTier.BYPASS.seconds if form["isStale"] else form["ttlSeconds"]
    return _cached_json(form, ttl_seconds)
